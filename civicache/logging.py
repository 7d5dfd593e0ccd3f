"""
Structured logging for the crawler

Log calls name what happened with a stable `event_code` so log queries don't
depend on message wording. Crawl objects can be passed by role (`run=run`,
`image=image`) and are flattened into plain id and status fields.
"""

import warnings
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

import structlog

Extractor = Callable[[Any], dict[str, Any]]

LEVELS_REQUIRING_REASON = frozenset(["warning", "error"])


def _run_fields(run) -> dict[str, Any]:
    return {
        "run_id": getattr(run, "pk", None),
        "run_status": getattr(run, "status", None),
    }


def _snapshot_fields(snapshot) -> dict[str, Any]:
    return {
        "snapshot_id": getattr(snapshot, "pk", None),
        "entity_type": getattr(snapshot, "entity_type", None),
        "entity_id": getattr(snapshot, "entity_id", None),
    }


def _derived_fields(entity, **natural_keys) -> dict[str, Any]:
    fields = _snapshot_fields(getattr(entity, "entity_snapshot", None))
    for field_name, attribute in natural_keys.items():
        fields[field_name] = getattr(entity, attribute, None)
    return fields


def _image_fields(image) -> dict[str, Any]:
    return _derived_fields(image, image_id="image_id")


def _model_fields(model) -> dict[str, Any]:
    return _derived_fields(model, model_id="model_id")


def _model_version_fields(version) -> dict[str, Any]:
    return _derived_fields(version, model_id="model_id", version_id="version_id")


#: Context keys which are expanded for every logger
DEFAULT_EXTRACTORS: Mapping[str, Extractor] = MappingProxyType(
    {
        "run": _run_fields,
        "snapshot": _snapshot_fields,
        "image": _image_fields,
        "model": _model_fields,
        "model_version": _model_version_fields,
    }
)


class CrawlerLogger:
    """
    Wraps a structlog logger and enforces the crawler's logging conventions.

    Every call needs a message and an `event_code`. Warnings and errors also
    need a `reason` and a machine-readable `reason_code`.

    ```python
    structured_logger = CrawlerLogger.get_logger(__name__)

    structured_logger.warning(
        "Snapshot could not be ingested.",
        event_code="snapshot_ingest_failed",
        reason="nsfwLevel: not a valid choice",
        reason_code="parse_failed",
        snapshot=snapshot,
    )
    ```

    Objects passed under these keys are expanded:

    - `run`: `run_id`, `run_status`
    - `snapshot`: `snapshot_id`, `entity_type`, `entity_id`
    - `image`: `image_id` and the fields of its snapshot
    - `model`: `model_id` and the fields of its snapshot
    - `model_version`: `model_id`, `version_id` and the fields of its snapshot

    A value passed explicitly (`run_id=...`) beats an expanded one, and fields
    whose value is `None` are left out.
    """

    def __init__(self, logger, context: Optional[dict[str, Any]] = None):
        self._logger = logger
        self._context = dict(context or {})
        self._extractors: dict[str, Extractor] = dict(DEFAULT_EXTRACTORS)

    @classmethod
    def get_logger(cls, name: str) -> "CrawlerLogger":
        """
        Return a logger for a module, usually called with `__name__`. Records
        go to the `structlog.<name>` stdlib logger so they can be routed
        separately from plain log lines.
        """
        return cls(structlog.get_logger(f"structlog.{name}"))

    def register_extractor(self, key: str, extractor: Extractor) -> None:
        """
        Expand `key` with `extractor` on this logger only
        """
        if key in DEFAULT_EXTRACTORS:
            warnings.warn(
                f"Overriding the '{key}' extractor on one logger does not change "
                f"the defaults used when images, models or versions expand "
                f"their snapshot.",
                UserWarning,
                stacklevel=2,
            )
        self._extractors[key] = extractor

    def unregister_extractor(self, key: str) -> None:
        self._extractors.pop(key, None)

    def bind(self, **kwargs: Any) -> "CrawlerLogger":
        """
        Return a copy of this logger with extra context attached to every call
        """
        return CrawlerLogger(self._logger, context={**self._context, **kwargs})

    def _build_fields(self, event_code, reason, reason_code, context):
        fields = {"event_code": event_code}
        if reason:
            fields["reason"] = reason
        if reason_code:
            fields["reason_code"] = reason_code

        merged = {**self._context, **context}

        for key, extractor in self._extractors.items():
            obj = merged.pop(key, None)
            if not obj:
                continue
            for field_name, value in extractor(obj).items():
                if value is not None:
                    fields.setdefault(field_name, value)

        # Anything left was passed directly and takes precedence
        fields.update({k: v for k, v in merged.items() if v is not None})
        return fields

    def log(
        self,
        level: str,
        message: str,
        *,
        event_code: str,
        reason: Optional[str] = None,
        reason_code: Optional[str] = None,
        **context: Any,
    ) -> None:
        """
        Emit a record at `level`. Prefer the level methods below.

        Raises ValueError when the message, event code or, for warnings and
        errors, the reason fields are missing.
        """
        if not message:
            raise ValueError("A log message is required.")
        if not event_code:
            raise ValueError("Structured logs need an 'event_code'.")
        if level in LEVELS_REQUIRING_REASON and not (reason and reason_code):
            raise ValueError(
                f"{level.capitalize()} logs need both 'reason' and 'reason_code'."
            )

        fields = self._build_fields(event_code, reason, reason_code, context)
        getattr(self._logger, level)(message, **fields)

    def debug(self, message: str, *, event_code: str, **kwargs):
        self.log("debug", message, event_code=event_code, **kwargs)

    def info(self, message: str, *, event_code: str, **kwargs):
        self.log("info", message, event_code=event_code, **kwargs)

    def warning(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "warning",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )

    def error(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "error",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )
