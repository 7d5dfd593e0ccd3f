import os

import sentry_sdk
import structlog
from django.core.management.utils import get_random_secret_key
from sentry_sdk.integrations.django import DjangoIntegration

from civicache.version import get_civicache_version

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Build paths inside the project like this: os.path.join(SITE_ROOT_DIR, ...)
CIVICACHE_APP_DIR = os.path.abspath(os.path.dirname(__file__))
SITE_ROOT_DIR = os.path.dirname(CIVICACHE_APP_DIR)
LOG_DIR = os.environ.get("CIVICACHE_LOG_DIR", os.path.join(SITE_ROOT_DIR, "logs"))

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", get_random_secret_key())

CIVICACHE_ENVIRONMENT = os.environ.get("CIVICACHE_ENVIRONMENT", "development")

ALLOWED_HOSTS = ["*"]

DEBUG = False

LANGUAGE_CODE = "en-us"
ROOT_URLCONF = "civicache.urls"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("POSTGRESQL_DB", "civicache"),
        "USER": os.getenv("POSTGRESQL_USER", "civicache"),
        "PASSWORD": os.getenv("POSTGRESQL_PW"),
        "HOST": os.getenv("POSTGRESQL_HOST", "localhost"),
        "PORT": os.getenv("POSTGRESQL_PORT", "5432"),
        "CONN_MAX_AGE": 0,
    }
}

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "civicache.apps.CivicacheAppConfig",
    "crawler.apps.CrawlerAppConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

REST_FRAMEWORK = {
    "UNAUTHENTICATED_USER": None,
}

################################################################################
# Civitai API
################################################################################

CIVITAI_API_BASE_URL = os.environ.get(
    "CIVITAI_API_BASE_URL", "https://civitai.com/api/v1"
)
CIVITAI_API_KEY = os.environ.get("CIVITAI_API_KEY", "")
CIVITAI_USER_AGENT = os.environ.get(
    "CIVITAI_USER_AGENT", f"civicache/{get_civicache_version()}"
)
# Seconds
CIVITAI_REQUEST_TIMEOUT = int(os.environ.get("CIVITAI_REQUEST_TIMEOUT", 10))
CIVITAI_MAX_RETRIES = int(os.environ.get("CIVITAI_MAX_RETRIES", 5))
# Seconds; the nth retry waits n² times this
CIVITAI_RETRY_BACKOFF = float(os.environ.get("CIVITAI_RETRY_BACKOFF", 1))

################################################################################
# Crawler
################################################################################

CRAWLER_DEFAULT_PRIORITY = 10
CRAWLER_PAGE_SIZE = int(os.environ.get("CRAWLER_PAGE_SIZE", 100))
# Retries of a page after its first attempt, so ten attempts in all
CRAWLER_PAGE_MAX_RETRIES = int(os.environ.get("CRAWLER_PAGE_MAX_RETRIES", 9))
# Seconds; the nth retry of a page waits n² times this
CRAWLER_PAGE_RETRY_BACKOFF = int(os.environ.get("CRAWLER_PAGE_RETRY_BACKOFF", 1))
CRAWLER_UNPROCESSED_BATCH_SIZE = 100
# Seconds an in_progress run may go without an update before another worker
# may take it over. Must exceed the longest page retry countdown.
CRAWLER_STALE_RUN_SECONDS = int(os.environ.get("CRAWLER_STALE_RUN_SECONDS", 30 * 60))
CRAWLER_UNSTORED_BATCH_SIZE = 100

################################################################################
# Asset worker
################################################################################

ASSETS_WORKER_URL = os.environ.get("ASSETS_WORKER_URL", "")
ASSETS_SECRET = os.environ.get("ASSETS_SECRET", "")
ASSETS_BATCH_SIZE = 100
ASSETS_MAX_PARALLEL_BATCHES = 4
ASSETS_REQUEST_TIMEOUT = 60

################################################################################
# Celery
################################################################################

# Crawler tasks are routed to their own queue, which runs with one process:
#   celery -A civicache worker -Q crawler --concurrency=1
REDIS_URL = os.environ.get(
    "REDIS_URL",
    "redis://%s:%s/0"
    % (
        os.environ.get("REDIS_ADDRESS", "localhost"),
        os.environ.get("REDIS_PORT") or 6379,
    ),
)

CELERY_BROKER_URL = REDIS_URL
CELERY_RESULT_BACKEND = REDIS_URL
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_IMPORTS = ("crawler.tasks",)
CELERY_TASK_ROUTES = {"crawler.tasks.*": {"queue": "crawler"}}
CELERY_TASK_ACKS_LATE = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True

################################################################################
# Logging
################################################################################

os.makedirs(LOG_DIR, exist_ok=True)


def _log_file(filename, formatter="plain", level="INFO"):
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["celery_task_id"],
        "filename": os.path.join(LOG_DIR, filename),
        "when": "midnight",
        "backupCount": 14,
    }


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "celery_task_id": {"()": "crawler.logging.CeleryTaskIDFilter"},
    },
    "formatters": {
        "plain": {
            "format": "{asctime} {levelname:<7} {name}{task_id}: {message}",
            "style": "{",
        },
        "json": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.processors.JSONRenderer(),
        },
        "console": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.dev.ConsoleRenderer(colors=False),
        },
    },
    "handlers": {
        "stream": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "plain",
            "filters": ["celery_task_id"],
        },
        "file": _log_file("civicache.log"),
        "celery": _log_file("crawler-worker.log"),
        "structlog_file": _log_file("events.jsonl", formatter="json", level="DEBUG"),
        "structlog_console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "console",
        },
    },
    "loggers": {
        "django": {"handlers": ["file"], "level": "WARNING"},
        "celery": {"handlers": ["celery"], "level": "INFO"},
        "civicache": {"handlers": ["file"], "level": "INFO"},
        "crawler": {"handlers": ["celery"], "level": "INFO"},
        "structlog": {"handlers": ["structlog_file"], "level": "DEBUG"},
    },
}

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

################################################################################
# Sentry
################################################################################

SENTRY_BACKEND_DSN = os.environ.get("SENTRY_BACKEND_DSN", "")

APPLICATION_VERSION = get_civicache_version()

sentry_sdk.init(
    dsn=SENTRY_BACKEND_DSN,
    environment=CIVICACHE_ENVIRONMENT,
    release=APPLICATION_VERSION,
    integrations=[DjangoIntegration()],
)
