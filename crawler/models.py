"""
See the module-level docstring for implementation details
"""

import datetime
from logging import getLogger

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

logger = getLogger(__name__)


def default_priority():
    return settings.CRAWLER_DEFAULT_PRIORITY


def stale_run_timeout():
    return datetime.timedelta(seconds=settings.CRAWLER_STALE_RUN_SECONDS)


class EntitySnapshot(models.Model):
    """
    Verbatim copy of one item returned by the upstream API
    """

    class EntityType(models.TextChoices):
        IMAGE = "image"
        MODEL = "model"
        MODEL_VERSION = "modelVersion"

    entity_type = models.CharField(max_length=20, choices=EntityType.choices)
    entity_id = models.BigIntegerField()
    parent_id = models.BigIntegerField(
        help_text="Upstream id of the owning entity, e.g. the model of a version",
        null=True,
        blank=True,
    )

    query_key = models.TextField(
        help_text="Path and query string of the request which returned this item"
    )
    raw_data = models.TextField(help_text="JSON payload exactly as received")

    processed_object_id = models.BigIntegerField(
        help_text="Primary key of the record derived from this snapshot",
        null=True,
        blank=True,
    )

    created = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["entity_type", "entity_id"], name="unique_entity_snapshot"
            )
        ]
        indexes = [
            models.Index(
                fields=["entity_type", "processed_object_id"],
                name="crawler_snapshot_link_idx",
            )
        ]

    def __str__(self):
        return "EntitySnapshot(entity_type=%s, entity_id=%s)" % (
            self.entity_type,
            self.entity_id,
        )


class Run(models.Model):
    """
    One resumable crawl: the URL of the next page to read, including its
    cursor, and how far along we are towards the target
    """

    class Status(models.TextChoices):
        PENDING = "pending"
        IN_PROGRESS = "in_progress"
        COMPLETED = "completed"
        FAILED = "failed"

    url = models.URLField(
        verbose_name="Request URL of the next page, including its cursor",
        max_length=2048,
    )
    items_target = models.PositiveIntegerField()
    items_read = models.PositiveIntegerField(default=0)
    priority = models.IntegerField(
        help_text="Runs with a higher priority are crawled first",
        default=default_priority,
    )
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )

    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)
    last_started = models.DateTimeField(
        help_text="Last time when a worker started processing a page",
        null=True,
        blank=True,
    )
    finished = models.DateTimeField(
        help_text="Time when the run completed or failed", null=True, blank=True
    )

    error = models.TextField(
        help_text="Error message from the last failed page, if any",
        blank=True,
        default="",
    )
    task_id = models.UUIDField(
        help_text="UUID of the last Celery task to process this run",
        null=True,
        blank=True,
    )
    retry_count = models.IntegerField(
        help_text="Number of times the current page was retried", default=0
    )
    failure_history = models.JSONField(
        help_text="Information about previous failures of the run, if any",
        encoder=DjangoJSONEncoder,
        default=list,
    )

    class Meta:
        indexes = [
            models.Index(
                fields=["status", "-priority", "created"], name="crawler_run_claim_idx"
            )
        ]

    def __str__(self):
        return "Run(pk=%s, status=%s, url=%s)" % (self.pk, self.status, self.url)

    def is_stale(self, now=None):
        """
        True for an in_progress run which nothing has updated for
        CRAWLER_STALE_RUN_SECONDS, e.g. because its worker died mid-page
        """

        if self.status != self.Status.IN_PROGRESS or self.modified is None:
            return False
        now = now or timezone.now()
        return self.modified < now - stale_run_timeout()

    def reactivate(self):
        """
        Put a failed or stale run back in the queue. The cursor and item count
        are kept so the crawl resumes where it stopped.
        """

        if self.status == self.Status.FAILED:
            failed = self.finished
        elif self.is_stale():
            failed = self.modified
        else:
            logger.warning(
                "Run %s is neither failed nor stale, so it will not be reactivated",
                self,
            )
            return False

        logger.info("Reactivating run %s", self)
        self.failure_history.append(
            {"failed": failed, "error": self.error, "url": self.url}
        )
        self.status = self.Status.PENDING
        self.error = ""
        self.finished = None
        self.retry_count = 0
        self.save()
        return True

    def mark_failed(self, error, do_save=True):
        self.status = self.Status.FAILED
        self.error = error
        self.finished = timezone.now()
        if do_save:
            self.save()
