"""Celery application for queued hub traffic."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "chirrup.settings")

app = Celery("chirrup")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
