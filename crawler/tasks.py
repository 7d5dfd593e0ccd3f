"""
Celery tasks driving the crawler

See the package docstring for how these fit together. All crawler tasks are
routed to the "crawler" queue, which must be served by a worker with a
concurrency of one.
"""

from logging import getLogger

import requests
from django.conf import settings

from civicache.celery import app as celery_app
from civicache.logging import CrawlerLogger
from civicache.storage import image_asset_task, unstored_images
from civicache.utils.errors import get_error_message

from . import pipeline
from .assets import dispatch_asset_tasks
from .exceptions import QueryFetchError, RunNotFound, TransientQueryFetchError
from .models import EntitySnapshot, Run
from .orchestrator import (
    claim_next_run,
    enqueue_worker,
    fail_run,
    get_run,
    run_one_page,
)
from .snapshots import unlinked_snapshots

logger = getLogger(__name__)
structured_logger = CrawlerLogger.get_logger(__name__)

TRANSIENT_ERRORS = (requests.Timeout, requests.ConnectionError)

FETCH_RETRY_ERRORS = (TransientQueryFetchError,) + TRANSIENT_ERRORS


def is_transient_error(exc):
    if isinstance(exc, QueryFetchError):
        return exc.is_transient
    return isinstance(exc, TRANSIENT_ERRORS)


def get_page_retry_countdown(exc, retries):
    """
    Decide what happens after a page failed on attempt number `retries + 1`.

    Returns the delay in seconds before the page should be retried, or None if
    the run should be failed instead: the error is not transient or the retry
    budget is spent.
    """

    if not is_transient_error(exc):
        return None
    if retries >= settings.CRAWLER_PAGE_MAX_RETRIES:
        return None
    return (retries + 1) ** 2 * settings.CRAWLER_PAGE_RETRY_BACKOFF


@celery_app.task(bind=True, ignore_result=True)
def crawl_worker_task(self, run_pk=None):
    """
    Read one page of the highest priority pending run and queue the next
    worker. With `run_pk` this is a retry of a page which failed, and the run
    is still in_progress.
    """

    if run_pk is None:
        run = claim_next_run(task_id=self.request.id)
        if run is None:
            logger.info("No pending crawl runs; crawl worker is stopping")
            return None
    else:
        try:
            run = get_run(run_pk)
        except RunNotFound:
            logger.warning("Run %s was deleted before its page was retried", run_pk)
            return None
        if run.status != Run.Status.IN_PROGRESS:
            logger.warning(
                "Run %s is %s and will not be retried", run, run.get_status_display()
            )
            return None
        run.task_id = self.request.id
        run.save(update_fields=["task_id", "modified"])

    try:
        outcome = run_one_page(run)
    except Exception as exc:
        error = get_error_message(exc)
        countdown = get_page_retry_countdown(exc, self.request.retries)
        if countdown is not None:
            run.retry_count = self.request.retries + 1
            run.error = error
            run.save(update_fields=["retry_count", "error", "modified"])
            structured_logger.warning(
                "Crawl page failed and will be retried.",
                event_code="crawl_page_retry",
                reason=error,
                reason_code="transient_error",
                run=run,
                attempt=self.request.retries + 1,
                countdown=countdown,
            )
            raise self.retry(
                exc=exc,
                countdown=countdown,
                kwargs={"run_pk": run.pk},
                max_retries=settings.CRAWLER_PAGE_MAX_RETRIES,
            )

        logger.exception("Crawl page for %s failed", run)
        fail_run(run, error)
        enqueue_worker()
        return None

    logger.info(
        "Read %d items from %s (%d new images); run is %s",
        outcome.items_read,
        run,
        outcome.images_created,
        run.get_status_display(),
    )
    enqueue_worker()
    return None


@celery_app.task(ignore_result=True)
def start_crawl_worker():
    """
    Start the crawl worker loop by hand, e.g. after a worker outage or once a
    failed run has been reactivated
    """

    enqueue_worker()


@celery_app.task(ignore_result=True)
def dispatch_assets_task(tasks):
    results = dispatch_asset_tasks(tasks)
    return [result.ok for result in results]


@celery_app.task(ignore_result=True)
def process_unlinked_snapshots_task(
    entity_type=EntitySnapshot.EntityType.IMAGE, after_pk=0
):
    """
    Ingest snapshots which never produced a record, typically after a
    validation or extraction bug has been fixed. Handles one batch and queues
    itself for the next until a short batch is found.
    """

    batch_size = settings.CRAWLER_UNPROCESSED_BATCH_SIZE
    snapshots = unlinked_snapshots(entity_type, after_pk=after_pk, limit=batch_size)
    if not snapshots:
        logger.info("No unlinked %s snapshots after %s", entity_type, after_pk)
        return

    results = pipeline.ingest_snapshots([snapshot.pk for snapshot in snapshots])

    structured_logger.info(
        "Unlinked snapshots reprocessed.",
        event_code="unlinked_snapshots_processed",
        entity_type=entity_type,
        snapshot_count=len(snapshots),
        linked_count=sum(1 for result in results if result.ok),
        failed_count=sum(1 for result in results if not result.ok),
    )

    if len(snapshots) == batch_size:
        process_unlinked_snapshots_task.delay(entity_type, after_pk=snapshots[-1].pk)


@celery_app.task(ignore_result=True)
def dispatch_unstored_images_task(after_pk=0):
    """
    Send images whose file was never stored to the asset worker again, e.g.
    after a batch was rejected or the worker lost its queue. Handles one batch
    and queues itself for the next until a short batch is found.
    """

    batch_size = settings.CRAWLER_UNSTORED_BATCH_SIZE
    images = unstored_images(after_pk=after_pk, limit=batch_size)
    if not images:
        logger.info("No unstored images after %s", after_pk)
        return

    results = dispatch_asset_tasks([image_asset_task(image) for image in images])

    structured_logger.info(
        "Unstored images dispatched.",
        event_code="unstored_images_dispatched",
        image_count=len(images),
        failed_batch_count=sum(1 for result in results if not result.ok),
    )

    if len(images) == batch_size:
        dispatch_unstored_images_task.delay(after_pk=images[-1].pk)


@celery_app.task(
    autoretry_for=FETCH_RETRY_ERRORS,
    retry_backoff=60,
    retry_backoff_max=60 * 60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def fetch_model_task(model_id):
    results = pipeline.fetch_model(model_id)
    return [result.entity_pk for result in results if result.ok]


@celery_app.task(
    autoretry_for=FETCH_RETRY_ERRORS,
    retry_backoff=60,
    retry_backoff_max=60 * 60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def fetch_model_version_task(version_id):
    results = pipeline.fetch_model_version(version_id)
    return [result.entity_pk for result in results if result.ok]


@celery_app.task(
    autoretry_for=FETCH_RETRY_ERRORS,
    retry_backoff=60,
    retry_backoff_max=60 * 60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def fetch_model_version_by_hash_task(file_hash):
    results = pipeline.fetch_model_version_by_hash(file_hash)
    return [result.entity_pk for result in results if result.ok]


@celery_app.task(
    autoretry_for=FETCH_RETRY_ERRORS,
    retry_backoff=60,
    retry_backoff_max=60 * 60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def fetch_creator_task(username):
    creator = pipeline.fetch_creator(username)
    return creator.pk if creator else None
