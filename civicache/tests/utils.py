import json

from civicache.models import Image, Model, ModelVersion
from crawler.models import EntitySnapshot, Run


def image_payload(image_id=1001, **overrides):
    """
    An /images listing item shaped like the ones the upstream API returns
    """

    payload = {
        "id": image_id,
        "url": f"https://image.civitai.test/{image_id}.jpeg",
        "hash": "U7Hfm$9F00~q",
        "width": 832,
        "height": 1216,
        "nsfw": False,
        "nsfwLevel": "None",
        "createdAt": "2024-03-01T12:00:00.000Z",
        "postId": 555,
        "stats": {
            "likeCount": 3,
            "heartCount": 2,
            "laughCount": 0,
            "cryCount": 1,
            "commentCount": 4,
        },
        "meta": {
            "prompt": "a lighthouse at dusk <lora:detailface:0.8>",
            "Model": "dreamshaper_8",
            "hashes": {"model": "879DB523C3"},
        },
        "username": "painter",
    }
    payload.update(overrides)
    return payload


def model_payload(model_id=4384, version_ids=(128713,), **overrides):
    payload = {
        "id": model_id,
        "name": "DreamShaper",
        "description": "<p>General purpose model</p>",
        "type": "Checkpoint",
        "nsfw": False,
        "stats": {"downloadCount": 10},
        "creator": {"username": "Lykon"},
        "tags": [{"name": "anime"}, "base model"],
        "modelVersions": [
            model_version_payload(version_id, model_id=None)
            for version_id in version_ids
        ],
    }
    payload.update(overrides)
    return payload


def model_version_payload(version_id=128713, model_id=4384, **overrides):
    payload = {
        "id": version_id,
        "name": "8",
        "createdAt": "2023-07-29T18:12:24.000Z",
        "baseModel": "SD 1.5",
        "files": [
            {
                "id": 94012,
                "name": "dreamshaper_8.safetensors",
                "type": "Model",
                "sizeKB": 2082642.6,
                "hashes": {"AutoV2": "879DB523C3"},
                "downloadUrl": f"https://civitai.test/api/download/{version_id}",
                "primary": True,
            }
        ],
    }
    if model_id is not None:
        payload["modelId"] = model_id
    payload.update(overrides)
    return payload


def create_snapshot(
    *,
    entity_type=EntitySnapshot.EntityType.IMAGE,
    entity_id=None,
    payload=None,
    query_key="/api/v1/images?limit=100",
    parent_id=None,
    **kwargs,
):
    if payload is None:
        payload = image_payload(entity_id or 1001)
    if entity_id is None:
        entity_id = payload["id"]
    raw_data = payload if isinstance(payload, str) else json.dumps(payload)
    return EntitySnapshot.objects.create(
        entity_type=entity_type,
        entity_id=entity_id,
        query_key=query_key,
        raw_data=raw_data,
        parent_id=parent_id,
        **kwargs,
    )


def create_image(*, image_id=1001, url=None, **kwargs):
    kwargs.setdefault("storage_key", f"images/{image_id}")
    return Image.objects.create(
        image_id=image_id,
        url=url or f"https://image.civitai.test/{image_id}.jpeg",
        **kwargs,
    )


def create_model(*, model_id=4384, name="DreamShaper", **kwargs):
    return Model.objects.create(model_id=model_id, name=name, **kwargs)


def create_model_version(*, version_id=128713, name="8", **kwargs):
    return ModelVersion.objects.create(version_id=version_id, name=name, **kwargs)


def create_run(
    *,
    url="https://civitai.test/api/v1/images?limit=20&modelId=4384",
    items_target=50,
    status=Run.Status.PENDING,
    **kwargs,
):
    return Run.objects.create(
        url=url, items_target=items_target, status=status, **kwargs
    )
