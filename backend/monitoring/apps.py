from django.apps import AppConfig


class MonitoringConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.monitoring'

    def ready(self):
        import backend.monitoring.errors  # noqa: F401
