from civicache.celery import app as celery_app
from civicache.version import VERSION, get_civicache_version

__all__ = ["celery_app", "VERSION"]


def get_version():
    return get_civicache_version()
