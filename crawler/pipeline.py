"""
Ingestion of raw snapshots into Image, Model and ModelVersion records

Every step is safe to repeat. A record is looked up by its upstream id before
anything is derived, so a second arrival of the same entity only links its
snapshot to the record which already exists.
"""

import json
from dataclasses import dataclass
from logging import getLogger
from typing import Optional

from django.db import transaction

from civicache.extractors import extract_model_references, references_to_json
from civicache.logging import CrawlerLogger
from civicache.models import Creator, Image, Model, ModelVersion, sum_reactions
from civicache.serializers import (
    ImageSerializer,
    ModelSerializer,
    ModelVersionSerializer,
)
from civicache.storage import (
    IMAGE_STORAGE_PREFIX,
    generate_storage_key,
    image_asset_task,
)
from civicache.utils.celery import get_registered_task
from civicache.utils.errors import get_error_message
from civicache.utils.url import get_path_and_query

from .client import CivitaiClient
from .exceptions import SnapshotNotFound
from .models import EntitySnapshot
from .snapshots import backlink, insert_if_absent, load_payload

logger = getLogger(__name__)
structured_logger = CrawlerLogger.get_logger(__name__)


@dataclass
class IngestResult:
    """
    Outcome of ingesting one snapshot.

    Attributes:
        snapshot_id: The snapshot which was ingested
        inserted: Whether a new record was created; False for a duplicate
        entity_pk: Primary key of the record the snapshot is linked to
        natural_id: Upstream id of that record
        error: Human-readable failure message, if the snapshot failed
        error_code: One of the error codes below, if the snapshot failed
        asset_task: Download task for a newly created image, if any
    """

    snapshot_id: int
    inserted: bool = False
    entity_pk: Optional[int] = None
    natural_id: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    asset_task: Optional[dict] = None

    @property
    def ok(self):
        return self.error_code is None


SNAPSHOT_NOT_FOUND = "snapshot_not_found"
INVALID_JSON = "invalid_json"
PARSE_FAILED = "parse_failed"
UNSUPPORTED_ENTITY_TYPE = "unsupported_entity_type"
INGEST_FAILED = "ingest_failed"


class EntityHandler:
    """
    Describes how one type of snapshot becomes a derived record
    """

    entity_type = None
    model = None
    natural_key = None
    serializer_class = None

    def get_fields(self, snapshot, data, payload):
        raise NotImplementedError

    def get_asset_task(self, entity):
        return None


class ImageHandler(EntityHandler):
    entity_type = EntitySnapshot.EntityType.IMAGE
    model = Image
    natural_key = "image_id"
    serializer_class = ImageSerializer

    def get_fields(self, snapshot, data, payload):
        stats = dict(data["stats"])
        references = extract_model_references(payload.get("meta") or {})
        return {
            "url": data["url"],
            "width": data["width"],
            "height": data["height"],
            "nsfw": data["nsfw"],
            "nsfw_level": data["nsfwLevel"],
            "created_at": data["createdAt"],
            "post_id": data.get("postId"),
            "blur_hash": data.get("hash") or "",
            "username": data.get("username") or "",
            "stats": stats,
            "total_reactions": sum_reactions(stats),
            "model_references": references_to_json(references),
            "storage_key": generate_storage_key(IMAGE_STORAGE_PREFIX, data["id"]),
        }

    def get_asset_task(self, entity):
        return image_asset_task(entity)


class ModelHandler(EntityHandler):
    entity_type = EntitySnapshot.EntityType.MODEL
    model = Model
    natural_key = "model_id"
    serializer_class = ModelSerializer

    def get_fields(self, snapshot, data, payload):
        creator = data.get("creator") or {}
        return {
            "name": data["name"],
            "description": data.get("description") or "",
            "type": data["type"],
            "nsfw": data["nsfw"],
            "creator_username": creator.get("username") or "",
            "stats": dict(data["stats"]),
            "tags": data["tags"],
            "version_ids": [
                version["id"]
                for version in data["modelVersions"]
                if isinstance(version.get("id"), int)
            ],
        }


class ModelVersionHandler(EntityHandler):
    entity_type = EntitySnapshot.EntityType.MODEL_VERSION
    model = ModelVersion
    natural_key = "version_id"
    serializer_class = ModelVersionSerializer

    def get_fields(self, snapshot, data, payload):
        return {
            # Versions embedded in a model payload don't repeat the model id
            "model_id": data.get("modelId") or snapshot.parent_id,
            "name": data["name"],
            "created_at": data.get("createdAt"),
            "base_model": data["baseModel"],
            "files": [dict(file) for file in data["files"]],
        }


HANDLERS = {
    handler.entity_type: handler
    for handler in (ImageHandler(), ModelHandler(), ModelVersionHandler())
}


def _failure(snapshot_id, error_code, error, **context):
    structured_logger.warning(
        "Snapshot could not be ingested.",
        event_code="snapshot_ingest_failed",
        reason=error,
        reason_code=error_code,
        snapshot_id=snapshot_id,
        **context,
    )
    return IngestResult(snapshot_id=snapshot_id, error=error, error_code=error_code)


def get_snapshot(snapshot_id):
    try:
        return EntitySnapshot.objects.get(pk=snapshot_id)
    except EntitySnapshot.DoesNotExist as exc:
        raise SnapshotNotFound(f"Snapshot {snapshot_id} does not exist") from exc


def ingest_snapshot(snapshot_id):
    """
    Derive a record from one snapshot and link the snapshot to it.

    Problems with the snapshot itself are returned as an IngestResult with an
    error code rather than raised. The payload of a snapshot which fails to
    parse stays stored, unlinked, until it is reprocessed.
    """

    try:
        snapshot = get_snapshot(snapshot_id)
    except SnapshotNotFound as exc:
        return _failure(snapshot_id, SNAPSHOT_NOT_FOUND, str(exc))

    handler = HANDLERS.get(snapshot.entity_type)
    if handler is None:
        return _failure(
            snapshot_id,
            UNSUPPORTED_ENTITY_TYPE,
            f"No handler for entity type {snapshot.entity_type!r}",
            snapshot=snapshot,
        )

    try:
        payload = load_payload(snapshot)
    except ValueError as exc:
        return _failure(
            snapshot_id, INVALID_JSON, f"Invalid JSON: {exc}", snapshot=snapshot
        )

    serializer = handler.serializer_class(data=payload)
    if not serializer.is_valid():
        errors = serializer.errors
        return _failure(
            snapshot_id,
            PARSE_FAILED,
            f"Payload does not match the {snapshot.entity_type} schema: "
            f"{json.dumps(errors, default=str)}",
            snapshot=snapshot,
        )
    data = serializer.validated_data
    natural_id = data["id"]
    lookup = {handler.natural_key: natural_id}

    existing = handler.model.objects.filter(**lookup).first()
    if existing is not None:
        if snapshot.processed_object_id != existing.pk:
            backlink(snapshot.pk, existing.pk)
        structured_logger.debug(
            "Snapshot is a duplicate of an existing record.",
            event_code="snapshot_duplicate",
            snapshot=snapshot,
            entity_pk=existing.pk,
        )
        return IngestResult(
            snapshot_id=snapshot.pk,
            inserted=False,
            entity_pk=existing.pk,
            natural_id=natural_id,
        )

    defaults = handler.get_fields(snapshot, data, payload)
    defaults["entity_snapshot"] = snapshot

    with transaction.atomic():
        # If another ingestion got here first, this returns its record
        entity, created = handler.model.objects.get_or_create(
            defaults=defaults, **lookup
        )
        backlink(snapshot.pk, entity.pk)

    structured_logger.info(
        "Snapshot ingested.",
        event_code="snapshot_ingested",
        snapshot=snapshot,
        entity_pk=entity.pk,
        inserted=created,
    )

    return IngestResult(
        snapshot_id=snapshot.pk,
        inserted=created,
        entity_pk=entity.pk,
        natural_id=natural_id,
        asset_task=handler.get_asset_task(entity) if created else None,
    )


def ingest_snapshots(snapshot_ids):
    """
    Ingest a batch of snapshots, returning one IngestResult per snapshot in the
    same order. One snapshot failing never stops the others.

    Images created by the batch are sent to the asset worker in a single
    background task once the surrounding transaction commits.
    """

    results = []
    for snapshot_id in snapshot_ids:
        try:
            with transaction.atomic():
                result = ingest_snapshot(snapshot_id)
        except Exception as exc:
            logger.exception("Unhandled error ingesting snapshot %s", snapshot_id)
            result = _failure(snapshot_id, INGEST_FAILED, get_error_message(exc))
        results.append(result)

    asset_tasks = [result.asset_task for result in results if result.asset_task]
    if asset_tasks:
        dispatch_assets_task = get_registered_task("crawler.tasks.dispatch_assets_task")
        transaction.on_commit(lambda: dispatch_assets_task.delay(asset_tasks))

    return results


def _snapshot(entity_type, payload, query_key, parent_id=None):
    insert_result = insert_if_absent(
        entity_type, payload["id"], query_key, payload, parent_id=parent_id
    )
    return insert_result.snapshot_id


def fetch_model(model_id, client=None):
    """
    Fetch a model with its embedded versions and ingest all of them
    """

    client = client or CivitaiClient()
    payload, url = client.get_model(model_id)
    query_key = get_path_and_query(url)

    snapshot_ids = [_snapshot(EntitySnapshot.EntityType.MODEL, payload, query_key)]
    for version in payload.get("modelVersions") or []:
        if not isinstance(version, dict) or not isinstance(version.get("id"), int):
            continue
        snapshot_ids.append(
            _snapshot(
                EntitySnapshot.EntityType.MODEL_VERSION,
                version,
                query_key,
                parent_id=payload["id"],
            )
        )
    return ingest_snapshots(snapshot_ids)


def fetch_model_version(version_id, client=None):
    client = client or CivitaiClient()
    payload, url = client.get_model_version(version_id)
    snapshot_id = _snapshot(
        EntitySnapshot.EntityType.MODEL_VERSION,
        payload,
        get_path_and_query(url),
        parent_id=payload.get("modelId"),
    )
    return ingest_snapshots([snapshot_id])


def fetch_model_version_by_hash(file_hash, client=None):
    """
    Look a model version up by the hash of one of its files. The version's
    model is fetched too unless we already have it.
    """

    client = client or CivitaiClient()
    payload, url = client.get_model_version_by_hash(file_hash)
    snapshot_id = _snapshot(
        EntitySnapshot.EntityType.MODEL_VERSION,
        payload,
        get_path_and_query(url),
        parent_id=payload.get("modelId"),
    )
    results = ingest_snapshots([snapshot_id])

    model_id = payload.get("modelId")
    if model_id and not Model.objects.filter(model_id=model_id).exists():
        results.extend(fetch_model(model_id, client=client))
    return results


def store_creator(payload):
    """
    Store a /creators listing entry unless a creator with that username
    already exists. Returns the creator and whether it was created.
    """

    with transaction.atomic():
        creator, created = Creator.objects.get_or_create(
            username=payload["username"],
            defaults={
                "image": payload.get("image") or "",
                "link": payload.get("link") or "",
                "model_count": payload.get("modelCount"),
                "raw_data": payload,
            },
        )

    structured_logger.info(
        "Creator stored." if created else "Creator already stored.",
        event_code="creator_stored" if created else "creator_exists",
        username=creator.username,
        creator_pk=creator.pk,
    )
    return creator, created


def fetch_creator(username, client=None):
    """
    Return the stored creator for `username`, looking it up on Civitai first
    if we don't have it yet. Returns None when Civitai has no such creator.
    """

    creator = Creator.objects.filter(username__iexact=username).first()
    if creator is not None:
        return creator

    client = client or CivitaiClient()
    payload, url = client.find_creator(username)
    if payload is None:
        structured_logger.warning(
            "Creator not found on Civitai.",
            event_code="creator_not_found",
            reason=f"No creator named {username} in {url}",
            reason_code="not_found",
            username=username,
        )
        return None

    creator, _ = store_creator(payload)
    return creator
