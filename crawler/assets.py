"""
Hands image download work to the external asset worker

The worker copies each source file into object storage and calls back to the
storage view when it is done. Dispatch is best-effort: a batch which fails is
logged and reported. Images the worker never stored are sent again by
`crawler.tasks.dispatch_unstored_images_task`.
"""

import concurrent.futures
from dataclasses import dataclass
from logging import getLogger
from typing import Optional

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from more_itertools.more import chunked

from civicache.logging import CrawlerLogger
from civicache.utils.errors import get_error_message

logger = getLogger(__name__)
structured_logger = CrawlerLogger.get_logger(__name__)

#: The worker rejects larger batches
MAX_BATCH_SIZE = 100


@dataclass(frozen=True)
class BatchResult:
    index: int
    size: int
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


def get_worker_config():
    worker_url = getattr(settings, "ASSETS_WORKER_URL", None)
    secret = getattr(settings, "ASSETS_SECRET", None)
    if not worker_url:
        raise ImproperlyConfigured("ASSETS_WORKER_URL must be set to dispatch assets")
    if not secret:
        raise ImproperlyConfigured("ASSETS_SECRET must be set to dispatch assets")
    return worker_url.rstrip("/"), secret


def post_batch(endpoint, secret, index, batch):
    try:
        resp = requests.post(
            endpoint,
            json={"tasks": batch},
            headers={
                "Authorization": f"Bearer {secret}",
                "User-Agent": settings.CIVITAI_USER_AGENT,
            },
            timeout=settings.ASSETS_REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        error = get_error_message(exc)
        structured_logger.warning(
            "Asset batch was not accepted by the worker.",
            event_code="asset_batch_failed",
            reason=error,
            reason_code="asset_worker_error",
            batch_index=index,
            batch_size=len(batch),
        )
        status_code = exc.response.status_code if exc.response is not None else None
        return BatchResult(index, len(batch), False, status_code, error)

    structured_logger.debug(
        "Asset batch accepted by the worker.",
        event_code="asset_batch_accepted",
        batch_index=index,
        batch_size=len(batch),
    )
    return BatchResult(index, len(batch), True, resp.status_code)


def dispatch_asset_tasks(tasks):
    """
    Send `{"sourceUrl", "storageKey"}` tasks to the asset worker in batches.

    Batches are posted in parallel and independently; the result for each is
    returned rather than raised. Missing worker configuration raises
    ImproperlyConfigured before anything is sent.
    """

    worker_url, secret = get_worker_config()

    if not tasks:
        return []

    batch_size = max(1, min(settings.ASSETS_BATCH_SIZE, MAX_BATCH_SIZE))
    endpoint = f"{worker_url}/enqueue"
    batches = list(chunked(tasks, batch_size))

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=min(len(batches), settings.ASSETS_MAX_PARALLEL_BATCHES)
    ) as executor:
        results = list(
            executor.map(
                lambda args: post_batch(endpoint, secret, *args), enumerate(batches)
            )
        )

    failed = [result for result in results if not result.ok]
    structured_logger.info(
        "Asset tasks dispatched.",
        event_code="asset_tasks_dispatched",
        task_count=len(tasks),
        batch_count=len(batches),
        failed_batch_count=len(failed),
    )
    return results
