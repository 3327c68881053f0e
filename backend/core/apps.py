from django.apps import AppConfig


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.core'

    def ready(self):
        """Connect reference-data cache invalidation"""
        import backend.core.model_cache  # noqa: F401
