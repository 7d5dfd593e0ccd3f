"""
Model reference extraction

Image metadata from the upstream API describes the checkpoints and LoRAs used
to produce an image in several overlapping ways, depending on which generator
wrote it and which version of the API serialized it. Each known shape has its
own matcher below. All matchers run on every payload and their sightings are
consolidated into one reference per model.

A reference is identified by the strongest discriminator it carries, in this
order: version id, model id, hash, and finally the type plus lowercased name.
When two sightings share any discriminator they are merged, with the first
non-null value winning for each field.
"""

import re
from dataclasses import asdict, dataclass
from logging import getLogger
from typing import Any, Iterable, Optional

logger = getLogger(__name__)

CHECKPOINT = "checkpoint"
LORA = "lora"

LORA_PROMPT_PATTERN = re.compile(r"<lora:([^:]+):([^>]+)>")


@dataclass(frozen=True)
class ModelReference:
    type: str
    model_id: Optional[int] = None
    version_id: Optional[int] = None
    name: Optional[str] = None
    hash: Optional[str] = None
    weight: Optional[float] = None

    def keys(self):
        """
        Return the discriminator keys of this reference, strongest first
        """

        keys = []
        if self.version_id is not None:
            keys.append(f"versionId:{self.version_id}")
        if self.model_id is not None:
            keys.append(f"id:{self.model_id}")
        if self.hash:
            keys.append(f"hash:{self.hash.lower()}")
        if self.name:
            keys.append(f"{self.type}:name:{self.name.lower()}")
        return keys

    def merge(self, other: "ModelReference") -> "ModelReference":
        """
        Combine two sightings of the same model. Values already present on
        this reference are kept; the other only fills in what is missing.
        """

        return ModelReference(
            type=self.type or other.type,
            model_id=_first_not_none(self.model_id, other.model_id),
            version_id=_first_not_none(self.version_id, other.version_id),
            name=self.name or other.name,
            hash=self.hash or other.hash,
            weight=_first_not_none(self.weight, other.weight),
        )

    def to_dict(self):
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data):
        return cls(
            type=data["type"],
            model_id=data.get("model_id"),
            version_id=data.get("version_id"),
            name=data.get("name"),
            hash=data.get("hash"),
            weight=data.get("weight"),
        )


def _first_not_none(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _as_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_float(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_str(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _resource_type(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip().lower()


def from_civitai_resources(meta: dict) -> list[ModelReference]:
    """
    `meta.civitaiResources`: written by the site's own generator, always
    carries the model version id.
    """

    references = []
    for resource in meta.get("civitaiResources") or []:
        if not isinstance(resource, dict):
            continue
        resource_type = _resource_type(resource.get("type"))
        if resource_type not in (CHECKPOINT, LORA):
            continue
        references.append(
            ModelReference(
                type=resource_type,
                version_id=_as_int(resource.get("modelVersionId")),
                name=_as_str(resource.get("modelVersionName")),
                weight=_as_float(resource.get("weight")),
            )
        )
    return references


def from_resources(meta: dict) -> list[ModelReference]:
    """
    `meta.resources`: the looser array most third-party generators write. A
    bare "model" type means the checkpoint.
    """

    references = []
    for resource in meta.get("resources") or []:
        if not isinstance(resource, dict):
            continue
        resource_type = _resource_type(resource.get("type"))
        if resource_type == "model":
            resource_type = CHECKPOINT
        if resource_type not in (CHECKPOINT, LORA):
            continue
        references.append(
            ModelReference(
                type=resource_type,
                model_id=_as_int(resource.get("modelId")),
                version_id=_as_int(resource.get("modelVersionId")),
                name=_as_str(resource.get("name")),
                hash=_as_str(resource.get("hash")),
                weight=_as_float(resource.get("weight")),
            )
        )
    return references


def from_model_field(meta: dict) -> list[ModelReference]:
    name = _as_str(meta.get("Model"))
    if not name:
        return []
    return [
        ModelReference(
            type=CHECKPOINT, name=name, hash=_as_str(meta.get("Model hash"))
        )
    ]


def from_hashes(meta: dict) -> list[ModelReference]:
    """
    `meta.hashes`: "model" holds the checkpoint hash, "lora:<name>" keys hold
    one hash per LoRA.
    """

    hashes = meta.get("hashes")
    if not isinstance(hashes, dict):
        return []

    references = []
    checkpoint_hash = _as_str(hashes.get("model"))
    if checkpoint_hash:
        references.append(ModelReference(type=CHECKPOINT, hash=checkpoint_hash))

    for key, value in hashes.items():
        if not key.startswith("lora:"):
            continue
        references.append(
            ModelReference(type=LORA, name=_as_str(key[5:]), hash=_as_str(value))
        )
    return references


def from_prompt(meta: dict) -> list[ModelReference]:
    prompt = meta.get("prompt")
    if not isinstance(prompt, str):
        return []
    return [
        ModelReference(type=LORA, name=_as_str(name), weight=_as_float(weight))
        for name, weight in LORA_PROMPT_PATTERN.findall(prompt)
    ]


MATCHERS = (
    from_civitai_resources,
    from_resources,
    from_model_field,
    from_hashes,
    from_prompt,
)


def extract_model_references(metadata: Any) -> list[ModelReference]:
    """
    Return the consolidated model references found in an image's metadata.

    `metadata` may be the image's `meta` object or a whole image payload. This
    never raises: a matcher which trips over an unexpected structure is
    skipped and the others still contribute.
    """

    if not isinstance(metadata, dict):
        return []

    meta = metadata.get("meta")
    if not isinstance(meta, dict):
        meta = metadata

    references = []
    for matcher in MATCHERS:
        try:
            references.extend(matcher(meta))
        except Exception as exc:
            logger.debug(
                "Reference matcher %s skipped malformed metadata: %s",
                matcher.__name__,
                exc,
            )

    return consolidate_references(references)


def consolidate_references(
    references: Iterable[ModelReference],
) -> list[ModelReference]:
    """
    Collapse sightings of the same model into a single reference.

    Every discriminator key of every sighting is registered against the group
    it lands in, so a later sighting that matches by any one of them joins that
    group. A sighting that matches several groups joins them together. The
    oldest group's values take precedence in each merge. References with no
    discriminator at all are kept as they are.
    """

    groups: list[Optional[ModelReference]] = []
    key_to_group: dict[str, int] = {}

    for reference in references:
        keys = reference.keys()
        if not keys:
            groups.append(reference)
            continue

        matched = sorted({key_to_group[key] for key in keys if key in key_to_group})
        if not matched:
            index = len(groups)
            groups.append(reference)
        else:
            index = matched[0]
            merged = groups[index]
            for other in matched[1:]:
                merged = merged.merge(groups[other])
                groups[other] = None
                for key, group in key_to_group.items():
                    if group == other:
                        key_to_group[key] = index
            groups[index] = merged.merge(reference)

        for key in keys:
            key_to_group[key] = index

    consolidated = [group for group in groups if group is not None]
    return _pair_primary_checkpoint(consolidated)


def _pair_primary_checkpoint(references: list[ModelReference]) -> list[ModelReference]:
    """
    The "Model" field and `hashes.model` both describe the image's primary
    checkpoint, one by name and one by hash. When the metadata leaves exactly
    one checkpoint known only by name and exactly one known only by hash, they
    are the same model.
    """

    name_only = [
        i
        for i, ref in enumerate(references)
        if ref.type == CHECKPOINT
        and ref.name
        and not ref.hash
        and ref.model_id is None
        and ref.version_id is None
    ]
    hash_only = [
        i
        for i, ref in enumerate(references)
        if ref.type == CHECKPOINT
        and ref.hash
        and not ref.name
        and ref.model_id is None
        and ref.version_id is None
    ]
    if len(name_only) != 1 or len(hash_only) != 1:
        return references

    first, second = sorted((name_only[0], hash_only[0]))
    paired = list(references)
    paired[first] = references[first].merge(references[second])
    del paired[second]
    return paired


def references_to_json(references: Iterable[ModelReference]) -> list[dict]:
    return [reference.to_dict() for reference in references]
