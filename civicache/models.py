from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class NSFWLevel(models.TextChoices):
    NONE = "None"
    SOFT = "Soft"
    MATURE = "Mature"
    X = "X"
    XXX = "XXX"


class SortOrder(models.TextChoices):
    MOST_REACTIONS = "Most Reactions"
    MOST_COLLECTED = "Most Collected"
    MOST_COMMENTS = "Most Comments"
    NEWEST = "Newest"


class TimePeriod(models.TextChoices):
    ALL_TIME = "AllTime"
    YEAR = "Year"
    MONTH = "Month"
    WEEK = "Week"
    DAY = "Day"


#: Reaction counters summed into Image.total_reactions
REACTION_STATS = (
    "likeCount",
    "heartCount",
    "laughCount",
    "cryCount",
    "commentCount",
)


def sum_reactions(stats):
    if not stats:
        return 0
    return sum(int(stats.get(field) or 0) for field in REACTION_STATS)


class DerivedEntity(models.Model):
    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    entity_snapshot = models.ForeignKey(
        "crawler.EntitySnapshot",
        help_text="Raw snapshot this record was first derived from",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )

    class Meta:
        abstract = True


class Image(DerivedEntity):
    image_id = models.BigIntegerField(unique=True)

    url = models.URLField(max_length=2048)
    width = models.PositiveIntegerField(null=True, blank=True)
    height = models.PositiveIntegerField(null=True, blank=True)
    nsfw = models.BooleanField(default=False)
    nsfw_level = models.CharField(
        max_length=10, choices=NSFWLevel.choices, default=NSFWLevel.NONE
    )
    created_at = models.DateTimeField(null=True, blank=True)
    post_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    blur_hash = models.CharField(max_length=100, blank=True, default="")
    username = models.CharField(max_length=255, blank=True, default="", db_index=True)

    stats = models.JSONField(default=dict, blank=True)
    total_reactions = models.PositiveIntegerField(default=0)
    model_references = models.JSONField(
        help_text="Checkpoints and LoRAs referenced by the image metadata",
        default=list,
        blank=True,
    )

    storage_key = models.CharField(max_length=255, blank=True, default="")
    stored_url = models.URLField(max_length=2048, blank=True, default="")
    stored_size = models.BigIntegerField(null=True, blank=True)
    stored_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ("-image_id",)

    def __str__(self):
        return f"Image({self.image_id})"


class Model(DerivedEntity):
    model_id = models.BigIntegerField(unique=True)

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    type = models.CharField(max_length=50, blank=True, default="")
    nsfw = models.BooleanField(default=False)
    creator_username = models.CharField(max_length=255, blank=True, default="")
    stats = models.JSONField(default=dict, blank=True)
    tags = models.JSONField(default=list, blank=True)
    version_ids = models.JSONField(default=list, blank=True)

    def __str__(self):
        return f"Model({self.model_id}, {self.name})"


class ModelVersion(DerivedEntity):
    version_id = models.BigIntegerField(unique=True)
    model_id = models.BigIntegerField(null=True, blank=True, db_index=True)

    name = models.CharField(max_length=255)
    created_at = models.DateTimeField(null=True, blank=True)
    base_model = models.CharField(max_length=100, blank=True, default="")
    files = models.JSONField(default=list, blank=True, encoder=DjangoJSONEncoder)

    def __str__(self):
        return f"ModelVersion({self.version_id}, {self.name})"


class Creator(models.Model):
    """
    A Civitai user who publishes models. Creators have no numeric upstream
    id, so they are keyed by username and stored without a snapshot.
    """

    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    username = models.CharField(max_length=255, unique=True)
    image = models.URLField(max_length=2048, blank=True, default="")
    link = models.URLField(max_length=2048, blank=True, default="")
    model_count = models.PositiveIntegerField(null=True, blank=True)
    raw_data = models.JSONField(
        help_text="Listing entry the creator was first stored from",
        default=dict,
        blank=True,
    )

    def __str__(self):
        return f"Creator({self.username})"
