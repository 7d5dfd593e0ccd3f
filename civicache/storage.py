from logging import getLogger

from django.utils import timezone

from .logging import CrawlerLogger
from .models import Image

logger = getLogger(__name__)
structured_logger = CrawlerLogger.get_logger(__name__)

#: Object storage prefix for each kind of stored asset
IMAGE_STORAGE_PREFIX = "images"


def generate_storage_key(kind, natural_id):
    """
    Object storage key for an asset. The key depends only on the kind of
    content and its upstream id so any worker can derive it again.
    """

    return f"{kind}/{natural_id}"


def record_image_storage(image_id, storage_key, stored_url, size=None):
    """
    Record where the asset worker stored an image's file.

    Raises Image.DoesNotExist if no image has the given upstream id.
    """

    image = Image.objects.get(image_id=image_id)

    if image.storage_key and image.storage_key != storage_key:
        structured_logger.warning(
            "Stored image key does not match the key we assigned.",
            event_code="image_storage_key_mismatch",
            reason=f"Expected {image.storage_key} but the worker used {storage_key}",
            reason_code="storage_key_mismatch",
            image=image,
        )

    image.storage_key = storage_key
    image.stored_url = stored_url
    image.stored_size = size
    image.stored_at = timezone.now()
    image.save(
        update_fields=[
            "storage_key",
            "stored_url",
            "stored_size",
            "stored_at",
            "modified",
        ]
    )

    structured_logger.info(
        "Image asset stored.",
        event_code="image_storage_recorded",
        image=image,
        storage_key=storage_key,
        stored_size=size,
    )
    return image


def image_asset_task(image):
    """
    The asset worker task which copies an image's source file into storage
    """

    storage_key = image.storage_key or generate_storage_key(
        IMAGE_STORAGE_PREFIX, image.image_id
    )
    return {"sourceUrl": image.url, "storageKey": storage_key}


def unstored_images(after_pk=0, limit=100):
    """
    Return up to `limit` images whose file the asset worker has not reported
    as stored, ordered by primary key and starting after `after_pk`
    """

    return list(
        Image.objects.filter(stored_at__isnull=True, pk__gt=after_pk).order_by("pk")[
            :limit
        ]
    )
