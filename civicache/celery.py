import os

import sentry_sdk
from celery import Celery
from sentry_sdk.integrations.celery import CeleryIntegration

from civicache.version import get_civicache_version


def init_worker_sentry(dsn=None):
    """
    Report task failures to Sentry when a DSN is configured. Workers don't
    load the Django settings module before the app is built, so the DSN is
    read from the environment here.
    """
    dsn = dsn or os.environ.get("SENTRY_BACKEND_DSN")
    if not dsn:
        return False
    sentry_sdk.init(
        dsn,
        environment=os.environ.get("CIVICACHE_ENVIRONMENT"),
        release=get_civicache_version(),
        integrations=[CeleryIntegration()],
    )
    return True


init_worker_sentry()

app = Celery("civicache")

# Every Django setting prefixed with CELERY_ configures the app, e.g.
# CELERY_TASK_ROUTES sends crawler tasks to the "crawler" queue.
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
