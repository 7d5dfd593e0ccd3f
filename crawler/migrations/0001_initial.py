import django.core.serializers.json
from django.db import migrations, models

import crawler.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="EntitySnapshot",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "entity_type",
                    models.CharField(
                        choices=[
                            ("image", "Image"),
                            ("model", "Model"),
                            ("modelVersion", "Model Version"),
                        ],
                        max_length=20,
                    ),
                ),
                ("entity_id", models.BigIntegerField()),
                (
                    "parent_id",
                    models.BigIntegerField(
                        blank=True,
                        help_text=(
                            "Upstream id of the owning entity, e.g. the model of a "
                            "version"
                        ),
                        null=True,
                    ),
                ),
                (
                    "query_key",
                    models.TextField(
                        help_text=(
                            "Path and query string of the request which returned "
                            "this item"
                        )
                    ),
                ),
                (
                    "raw_data",
                    models.TextField(help_text="JSON payload exactly as received"),
                ),
                (
                    "processed_object_id",
                    models.BigIntegerField(
                        blank=True,
                        help_text="Primary key of the record derived from this snapshot",
                        null=True,
                    ),
                ),
                ("created", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [
                    models.Index(
                        fields=["entity_type", "processed_object_id"],
                        name="crawler_snapshot_link_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("entity_type", "entity_id"),
                        name="unique_entity_snapshot",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Run",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "url",
                    models.URLField(
                        max_length=2048,
                        verbose_name="Request URL of the next page, including its cursor",
                    ),
                ),
                ("items_target", models.PositiveIntegerField()),
                ("items_read", models.PositiveIntegerField(default=0)),
                (
                    "priority",
                    models.IntegerField(
                        default=crawler.models.default_priority,
                        help_text="Runs with a higher priority are crawled first",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("in_progress", "In Progress"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("created", models.DateTimeField(auto_now_add=True)),
                ("modified", models.DateTimeField(auto_now=True)),
                (
                    "last_started",
                    models.DateTimeField(
                        blank=True,
                        help_text="Last time when a worker started processing a page",
                        null=True,
                    ),
                ),
                (
                    "finished",
                    models.DateTimeField(
                        blank=True,
                        help_text="Time when the run completed or failed",
                        null=True,
                    ),
                ),
                (
                    "error",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Error message from the last failed page, if any",
                    ),
                ),
                (
                    "task_id",
                    models.UUIDField(
                        blank=True,
                        help_text="UUID of the last Celery task to process this run",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.IntegerField(
                        default=0,
                        help_text="Number of times the current page was retried",
                    ),
                ),
                (
                    "failure_history",
                    models.JSONField(
                        default=list,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Information about previous failures of the run, if any",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(
                        fields=["status", "-priority", "created"],
                        name="crawler_run_claim_idx",
                    )
                ],
            },
        ),
    ]
