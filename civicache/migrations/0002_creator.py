from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [("civicache", "0001_initial")]

    operations = [
        migrations.CreateModel(
            name="Creator",
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
                ("created", models.DateTimeField(auto_now_add=True)),
                ("modified", models.DateTimeField(auto_now=True)),
                ("username", models.CharField(max_length=255, unique=True)),
                (
                    "image",
                    models.URLField(blank=True, default="", max_length=2048),
                ),
                (
                    "link",
                    models.URLField(blank=True, default="", max_length=2048),
                ),
                (
                    "model_count",
                    models.PositiveIntegerField(blank=True, null=True),
                ),
                (
                    "raw_data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Listing entry the creator was first stored from",
                    ),
                ),
            ],
        ),
    ]
