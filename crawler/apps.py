from django.apps.config import AppConfig


class CrawlerAppConfig(AppConfig):
    name = "crawler"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        # Register the tasks so get_registered_task works outside a worker
        from . import tasks  # NOQA
