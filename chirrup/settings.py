"""Django settings for Chirrup.

Deployment-specific values come from environment variables.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def env_list(name, default=""):
    return [x for x in os.environ.get(name, default).split() if x]


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "chirrup-development-only")
DEBUG = env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = env_list("DJANGO_ALLOWED_HOSTS", "localhost 127.0.0.1 testserver")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "chirrup.feeds",
    "chirrup.hubs",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "chirrup.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DATABASES = {
    "default": {
        "ENGINE": os.environ.get("DATABASE_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("DATABASE_NAME", str(BASE_DIR / "chirrup.sqlite3")),
        "USER": os.environ.get("DATABASE_USER", ""),
        "PASSWORD": os.environ.get("DATABASE_PASSWORD", ""),
        "HOST": os.environ.get("DATABASE_HOST", ""),
        "PORT": os.environ.get("DATABASE_PORT", ""),
    }
}

if DATABASES["default"]["ENGINE"] == "django.db.backends.sqlite3":
    # SQLite ignores SELECT ... FOR UPDATE, so writers take the database lock
    # as their transaction begins, and wait their turn for it.
    DATABASES["default"]["OPTIONS"] = {"transaction_mode": "IMMEDIATE", "timeout": 20}
    # A file rather than memory, so connections from several threads share it.
    DATABASES["default"]["TEST"] = {"NAME": str(BASE_DIR / "chirrup-test.sqlite3")}

DEFAULT_AUTO_FIELD = "django.db.models.AutoField"

LANGUAGE_CODE = "en"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
LOGIN_URL = "/admin/login/"
LOGIN_REDIRECT_URL = "/"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "{levelname} {asctime} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "chirrup": {
            "handlers": ["console"],
            "level": os.environ.get("CHIRRUP_LOG_LEVEL", "INFO"),
        },
    },
}

# Celery is used only when HUBS_USE_QUEUE is set.
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_TASK_ALWAYS_EAGER = env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_SERIALIZER = "json"

# Host (and optional port) used for absolute URLs of feeds and tag URIs of updates.
FEEDS_DOMAIN = os.environ.get("FEEDS_DOMAIN", "localhost:8000")
FEEDS_DOMAIN_INSECURE = env_bool("FEEDS_DOMAIN_INSECURE", True)
# Hubs advertised by (and pinged for) newly created local feeds.
FEEDS_HUB_URLS = env_list("FEEDS_HUB_URLS")
FEEDS_FETCH_AGENT = os.environ.get(
    "FEEDS_FETCH_AGENT", "Chirrup (+https://github.com/chirrup/chirrup)"
)

# Seconds to wait for a hub or remote feed before giving up on it.
HUBS_TIMEOUT = float(os.environ.get("HUBS_TIMEOUT", "5"))
HUBS_SEND_REQUESTS = env_bool("HUBS_SEND_REQUESTS", False)
HUBS_USE_QUEUE = env_bool("HUBS_USE_QUEUE", False)
