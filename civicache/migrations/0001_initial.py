import django.core.serializers.json
import django.db.models.deletion
from django.db import migrations, models


def derived_entity_fields():
    return [
        (
            "id",
            models.BigAutoField(
                auto_created=True,
                primary_key=True,
                serialize=False,
                verbose_name="ID",
            ),
        ),
        ("created", models.DateTimeField(auto_now_add=True)),
        ("modified", models.DateTimeField(auto_now=True)),
        (
            "entity_snapshot",
            models.ForeignKey(
                blank=True,
                help_text="Raw snapshot this record was first derived from",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="crawler.entitysnapshot",
            ),
        ),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [("crawler", "0001_initial")]

    operations = [
        migrations.CreateModel(
            name="Image",
            fields=derived_entity_fields()
            + [
                ("image_id", models.BigIntegerField(unique=True)),
                ("url", models.URLField(max_length=2048)),
                ("width", models.PositiveIntegerField(blank=True, null=True)),
                ("height", models.PositiveIntegerField(blank=True, null=True)),
                ("nsfw", models.BooleanField(default=False)),
                (
                    "nsfw_level",
                    models.CharField(
                        choices=[
                            ("None", "None"),
                            ("Soft", "Soft"),
                            ("Mature", "Mature"),
                            ("X", "X"),
                            ("XXX", "Xxx"),
                        ],
                        default="None",
                        max_length=10,
                    ),
                ),
                ("created_at", models.DateTimeField(blank=True, null=True)),
                (
                    "post_id",
                    models.BigIntegerField(blank=True, db_index=True, null=True),
                ),
                (
                    "blur_hash",
                    models.CharField(blank=True, default="", max_length=100),
                ),
                (
                    "username",
                    models.CharField(
                        blank=True, db_index=True, default="", max_length=255
                    ),
                ),
                ("stats", models.JSONField(blank=True, default=dict)),
                ("total_reactions", models.PositiveIntegerField(default=0)),
                (
                    "model_references",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text=(
                            "Checkpoints and LoRAs referenced by the image metadata"
                        ),
                    ),
                ),
                (
                    "storage_key",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "stored_url",
                    models.URLField(blank=True, default="", max_length=2048),
                ),
                ("stored_size", models.BigIntegerField(blank=True, null=True)),
                ("stored_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={"ordering": ("-image_id",)},
        ),
        migrations.CreateModel(
            name="Model",
            fields=derived_entity_fields()
            + [
                ("model_id", models.BigIntegerField(unique=True)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("type", models.CharField(blank=True, default="", max_length=50)),
                ("nsfw", models.BooleanField(default=False)),
                (
                    "creator_username",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("stats", models.JSONField(blank=True, default=dict)),
                ("tags", models.JSONField(blank=True, default=list)),
                ("version_ids", models.JSONField(blank=True, default=list)),
            ],
        ),
        migrations.CreateModel(
            name="ModelVersion",
            fields=derived_entity_fields()
            + [
                ("version_id", models.BigIntegerField(unique=True)),
                (
                    "model_id",
                    models.BigIntegerField(blank=True, db_index=True, null=True),
                ),
                ("name", models.CharField(max_length=255)),
                ("created_at", models.DateTimeField(blank=True, null=True)),
                (
                    "base_model",
                    models.CharField(blank=True, default="", max_length=100),
                ),
                (
                    "files",
                    models.JSONField(
                        blank=True,
                        default=list,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                    ),
                ),
            ],
        ),
    ]
