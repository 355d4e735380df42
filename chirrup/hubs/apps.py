from django.apps import AppConfig


class HubsConfig(AppConfig):
    """Standard configuration for the Chirrup hubs app."""

    name = "chirrup.hubs"
