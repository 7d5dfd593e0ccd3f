import hmac
import json
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.cache import never_cache
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .logging import CrawlerLogger
from .models import Image
from .serializers import ImageStorageSerializer
from .storage import record_image_storage

logger = logging.getLogger(__name__)
structured_logger = CrawlerLogger.get_logger(__name__)


@never_cache
@csrf_exempt
@require_POST
def update_image_storage(request: HttpRequest) -> JsonResponse:
    """
    Callback used by the asset worker once it has copied an image into object
    storage.

    The worker authenticates with the same shared secret it is given when
    tasks are dispatched to it.

    Request Format:
        ```json
        {
            "imageId": 1234,
            "storageKey": "images/1234",
            "storedUrl": "https://assets.example.com/images/1234",
            "size": 524288,
            "secret": "..."
        }
        ```

    Returns:
        response (JsonResponse): `{"ok": true}` on success. Errors use status
            400 for a malformed body, 401 for a bad secret, 404 for an unknown
            image and 500 when no secret is configured.
    """

    expected_secret = getattr(settings, "ASSETS_SECRET", None)
    if not expected_secret:
        logger.error("ASSETS_SECRET is not configured; rejecting storage callback")
        return JsonResponse({"error": "Storage callback is not configured"}, status=500)

    try:
        body = json.loads(request.body)
    except ValueError:
        return JsonResponse({"error": "Request body must be JSON"}, status=400)

    serializer = ImageStorageSerializer(data=body)
    if not serializer.is_valid():
        return JsonResponse({"error": serializer.errors}, status=400)
    data = serializer.validated_data

    if not hmac.compare_digest(
        data["secret"].encode("utf-8"), expected_secret.encode("utf-8")
    ):
        structured_logger.warning(
            "Storage callback rejected.",
            event_code="image_storage_unauthorized",
            reason="The shared secret did not match",
            reason_code="invalid_secret",
            image_id=data["imageId"],
        )
        return JsonResponse({"error": "Unauthorized"}, status=401)

    try:
        record_image_storage(
            data["imageId"], data["storageKey"], data["storedUrl"], data.get("size")
        )
    except Image.DoesNotExist:
        return JsonResponse(
            {"error": f"Image {data['imageId']} does not exist"}, status=404
        )

    return JsonResponse({"ok": True})
