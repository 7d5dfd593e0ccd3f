from django.apps.config import AppConfig


class CivicacheAppConfig(AppConfig):
    name = "civicache"
    verbose_name = "Civitai cache"
    default_auto_field = "django.db.models.BigAutoField"
