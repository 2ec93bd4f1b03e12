"""App configuration for the generator module."""

from django.apps import AppConfig


class GeneratorConfig(AppConfig):
    """Connect the generator app with Django's app registry."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'generator'
