"""
Storage of raw API payloads

A snapshot is written once per upstream entity and its payload is never
overwritten: fetching the same entity again returns the existing snapshot.
"""

import json
from dataclasses import dataclass
from logging import getLogger

from django.db import transaction

from .models import EntitySnapshot

logger = getLogger(__name__)


@dataclass(frozen=True)
class SnapshotInsertResult:
    snapshot_id: int
    inserted: bool


def serialize_payload(payload):
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def insert_if_absent(entity_type, entity_id, query_key, payload, parent_id=None):
    """
    Store `payload` for (entity_type, entity_id) unless a snapshot already
    exists for it.

    The unique constraint decides concurrent inserts: whichever transaction
    loses the race finds the winner's row and reports inserted=False.
    """

    defaults = {
        "query_key": query_key,
        "raw_data": serialize_payload(payload),
        "parent_id": parent_id,
    }

    with transaction.atomic():
        snapshot, created = EntitySnapshot.objects.get_or_create(
            entity_type=entity_type, entity_id=entity_id, defaults=defaults
        )

    if not created:
        logger.debug(
            "Snapshot for %s %s already exists as %s",
            entity_type,
            entity_id,
            snapshot.pk,
        )

    return SnapshotInsertResult(snapshot.pk, created)


def insert_snapshots(entity_type, items, query_key, parent_id=None):
    """
    Snapshot every item of a page, returning one SnapshotInsertResult per item
    in page order
    """

    return [
        insert_if_absent(entity_type, item["id"], query_key, item, parent_id=parent_id)
        for item in items
    ]


def backlink(snapshot_id, processed_object_id):
    """
    Point a snapshot at the record derived from it. Repeating the call, or
    correcting the pointer, is harmless.
    """

    return EntitySnapshot.objects.filter(pk=snapshot_id).update(
        processed_object_id=processed_object_id
    )


def unlinked_snapshots(entity_type, after_pk=0, limit=100):
    """
    Return up to `limit` snapshots of `entity_type` which were never linked to
    a derived record, ordered by primary key and starting after `after_pk`
    """

    return list(
        EntitySnapshot.objects.filter(
            entity_type=entity_type,
            processed_object_id__isnull=True,
            pk__gt=after_pk,
        ).order_by("pk")[:limit]
    )


def load_payload(snapshot):
    return json.loads(snapshot.raw_data)
