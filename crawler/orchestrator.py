"""
Crawl runs: creating them, claiming the next one and reading one page

A Run's URL carries its pagination cursor, so the Run record is all that is
needed to pick a crawl back up. Pages of one run are read strictly in order.
"""

from dataclasses import dataclass
from logging import getLogger
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from civicache.logging import CrawlerLogger
from civicache.models import NSFWLevel, SortOrder, TimePeriod
from civicache.utils.celery import get_registered_task
from civicache.utils.url import build_url, get_path_and_query, with_query_param

from .client import CivitaiClient
from .exceptions import RunNotFound
from .models import EntitySnapshot, Run, stale_run_timeout
from .pipeline import ingest_snapshots
from .snapshots import insert_snapshots

logger = getLogger(__name__)
structured_logger = CrawlerLogger.get_logger(__name__)

CURSOR_PARAM = "cursor"


@dataclass
class PageOutcome:
    """
    What happened when one page of a run was read
    """

    run: Run
    items_read: int
    images_created: int
    next_cursor: Optional[str]
    completed: bool


def enqueue_worker():
    """
    Queue one crawl worker once the current transaction commits
    """

    crawl_worker_task = get_registered_task("crawler.tasks.crawl_worker_task")
    transaction.on_commit(lambda: crawl_worker_task.delay())


def create_run(url, items_target, priority=None):
    if items_target < 1:
        raise ValueError("A run must target at least one item")

    run = Run.objects.create(
        url=url,
        items_target=items_target,
        priority=settings.CRAWLER_DEFAULT_PRIORITY if priority is None else priority,
    )

    structured_logger.info(
        "Crawl run created.",
        event_code="crawl_run_created",
        run=run,
        url=url,
        items_target=items_target,
        priority=run.priority,
    )

    enqueue_worker()
    return run


def _validate_choice(name, value, choices):
    if value is not None and value not in choices.values:
        raise ValueError(
            "%s must be one of %s, not %r" % (name, ", ".join(choices.values), value)
        )


def images_url(**params):
    """
    Build a deterministic /images listing URL after checking the parameters
    which only take a fixed set of values
    """

    _validate_choice("sort", params.get("sort"), SortOrder)
    _validate_choice("period", params.get("period"), TimePeriod)
    nsfw = params.get("nsfw")
    if not isinstance(nsfw, bool):
        _validate_choice("nsfw", nsfw, NSFWLevel)

    params.setdefault("limit", settings.CRAWLER_PAGE_SIZE)
    return build_url(settings.CIVITAI_API_BASE_URL, ["images"], params)


def add_images_by_model_version_run(
    model_version_id,
    items_target,
    nsfw=None,
    sort=None,
    period=None,
    priority=None,
):
    url = images_url(
        modelVersionId=model_version_id, nsfw=nsfw, sort=sort, period=period
    )
    return create_run(url, items_target, priority=priority)


def add_images_by_model_run(
    model_id, items_target, nsfw=None, sort=None, period=None, priority=None
):
    url = images_url(modelId=model_id, nsfw=nsfw, sort=sort, period=period)
    return create_run(url, items_target, priority=priority)


def add_images_by_username_run(
    username, items_target, nsfw=None, sort=None, period=None, priority=None
):
    url = images_url(username=username, nsfw=nsfw, sort=sort, period=period)
    return create_run(url, items_target, priority=priority)


def add_images_by_post_run(post_id, items_target, nsfw=None, priority=None):
    url = images_url(postId=post_id, nsfw=nsfw)
    return create_run(url, items_target, priority=priority)


def add_images_top_of_period_run(
    items_target,
    period=TimePeriod.MONTH,
    sort=SortOrder.MOST_COLLECTED,
    nsfw=True,
    priority=None,
):
    """
    Queue a crawl of the most popular images of a period. The defaults give
    the monthly most-collected listing.
    """

    url = images_url(nsfw=nsfw, sort=sort, period=period)
    return create_run(url, items_target, priority=priority)


def claim_next_run(task_id=None):
    """
    Mark the next run to crawl as in_progress and return it, or return None
    when there is nothing to do.

    A task which is delivered again after its worker died first gets back the
    run it had claimed under the same task id. Otherwise the pending run with
    the highest priority is claimed, oldest first for equal priorities, and
    in_progress runs which went stale are taken over like pending ones. The
    row lock keeps two workers from claiming the same run where the database
    supports it.
    """

    with transaction.atomic():
        runs = Run.objects.select_for_update(skip_locked=True)

        run = None
        if task_id:
            run = runs.filter(status=Run.Status.IN_PROGRESS, task_id=task_id).first()
            if run is not None:
                structured_logger.info(
                    "Crawl run resumed by a redelivered task.",
                    event_code="crawl_run_resumed",
                    run=run,
                    url=run.url,
                )
                return run

        stale_cutoff = timezone.now() - stale_run_timeout()
        run = (
            runs.filter(
                Q(status=Run.Status.PENDING)
                | Q(status=Run.Status.IN_PROGRESS, modified__lt=stale_cutoff)
            )
            .order_by("-priority", "created", "pk")
            .first()
        )
        if run is None:
            return None

        if run.status == Run.Status.IN_PROGRESS:
            structured_logger.warning(
                "Stale crawl run taken over.",
                event_code="crawl_run_stale",
                reason="Run was in_progress without an update since %s"
                % run.modified.isoformat(),
                reason_code="stale_run",
                run=run,
            )

        run.status = Run.Status.IN_PROGRESS
        run.last_started = timezone.now()
        run.finished = None
        if task_id:
            run.task_id = task_id
        run.save()

    structured_logger.info(
        "Crawl run claimed.", event_code="crawl_run_claimed", run=run, url=run.url
    )
    return run


def get_run(run_pk):
    try:
        return Run.objects.get(pk=run_pk)
    except Run.DoesNotExist as exc:
        raise RunNotFound(f"Run {run_pk} does not exist") from exc


def is_run_complete(total_read, target, page_items, next_cursor):
    return total_read >= target or page_items == 0 or not next_cursor


def next_run_url(url, next_cursor):
    """
    Return the run URL for the following page: the cursor parameter is set to
    `next_cursor`, or removed when there is none
    """

    return with_query_param(url, CURSOR_PARAM, next_cursor or None)


def complete_page(run, page_items, next_cursor):
    """
    Record a successfully read page: advance the cursor and item count, then
    either complete the run or return it to pending
    """

    run.items_read += page_items
    run.url = next_run_url(run.url, next_cursor)
    run.error = ""
    run.retry_count = 0

    if is_run_complete(run.items_read, run.items_target, page_items, next_cursor):
        run.status = Run.Status.COMPLETED
        run.finished = timezone.now()
    else:
        run.status = Run.Status.PENDING
        run.finished = None

    run.save()

    structured_logger.info(
        "Crawl page recorded.",
        event_code="crawl_page_recorded",
        run=run,
        items_read=run.items_read,
        items_target=run.items_target,
        page_items=page_items,
    )
    return run


def fail_run(run, error):
    run.mark_failed(error)
    structured_logger.error(
        "Crawl run failed.",
        event_code="crawl_run_failed",
        reason=error,
        reason_code="run_failed",
        run=run,
    )
    return run


def run_one_page(run, client=None):
    """
    Read the next page of a run: snapshot every item, ingest the snapshots and
    update the run.

    Errors are left to the caller, which decides between retrying the page
    and failing the run. Re-reading a page after a crash is safe since
    snapshots and records are both keyed by upstream id.
    """

    client = client or CivitaiClient()

    page = client.fetch_url(run.url)
    query_key = get_path_and_query(run.url)

    with transaction.atomic():
        insert_results = insert_snapshots(
            EntitySnapshot.EntityType.IMAGE, page.items, query_key
        )
        ingest_results = ingest_snapshots(
            [result.snapshot_id for result in insert_results]
        )

    images_created = sum(1 for result in ingest_results if result.inserted)
    failures = [result for result in ingest_results if not result.ok]

    structured_logger.info(
        "Crawl page ingested.",
        event_code="crawl_page_ingested",
        run=run,
        url=run.url,
        item_count=len(page.items),
        snapshots_created=sum(1 for result in insert_results if result.inserted),
        images_created=images_created,
        failures=len(failures),
    )

    complete_page(run, len(page.items), page.next_cursor)

    return PageOutcome(
        run,
        items_read=len(page.items),
        images_created=images_created,
        next_cursor=page.next_cursor,
        completed=run.status == Run.Status.COMPLETED,
    )
