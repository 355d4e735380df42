from django.apps import AppConfig


class FeedsConfig(AppConfig):
    name = "chirrup.feeds"

    def ready(self):
        """Wire up signals for this app."""
        from django.contrib.auth import get_user_model
        from django.db.models.signals import post_save

        from .models import handle_user_post_save

        post_save.connect(handle_user_post_save, sender=get_user_model())
