"""
Classify inbound responder messages.

The responder is an external producer, so the exact message shape is never
trusted up front. Shapes are tried in a fixed priority order; the first whose
identifying fields are all present and non-empty wins.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

from ..payloads import BatchChunk, ChangePackage, PreliminaryAnnouncement

logger = logging.getLogger(__name__)


class PayloadKind(Enum):
    """Recognized message shapes."""

    PRELIMINARY = "preliminary"
    BATCH_CHUNK = "batch_chunk"
    DIRECT_PACKAGE = "direct_package"
    UNRECOGNIZED = "unrecognized"


# Diagnoses for UNRECOGNIZED messages
MALFORMED_JSON = "malformed_json"
RECOGNIZED_BUT_MALFORMED = "recognized_but_malformed"
FOREIGN_FORMAT = "foreign_format"

PRELIMINARY_WRAPPERS = ("aiPreliminaryResponse", "preliminaryResponse")
BATCH_WRAPPERS = ("aiBatchResponse", "batchResponse")
PACKAGE_WRAPPERS = ("aiOutputPackage", "outputPackage")

_CHANGESET_KEYS = ("changesetId", "aiChangesetId", "changeset_id")
_RETRIEVAL_KEYS = ("retrievalGuid", "retrievalId", "retrieval_id")
_FILE_CHANGE_KEYS = ("fileChanges", "file_changes")
_BATCH_COUNT_KEYS = ("numberOfBatches", "number_of_batches")


@dataclass
class Classification:
    """Result of classifying one inbound message."""

    kind: PayloadKind
    preliminary: PreliminaryAnnouncement | None = None
    batch: BatchChunk | None = None
    package: ChangePackage | None = None
    diagnosis: str | None = None
    detail: str = ""

    @property
    def is_recognized(self) -> bool:
        return self.kind != PayloadKind.UNRECOGNIZED


def _strip_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```json"):
        text = text[7:].strip()
    elif text.startswith("```"):
        text = text[3:].strip()
    if text.endswith("```"):
        text = text[:-3].strip()
    return text


def _candidates(data: dict[str, Any], wrappers: tuple[str, ...]) -> list[dict[str, Any]]:
    """Wrapped objects first, then the bare root."""
    found = [data[key] for key in wrappers if isinstance(data.get(key), dict)]
    found.append(data)
    return found


def _has_any(data: dict[str, Any], keys: tuple[str, ...]) -> bool:
    return any(data.get(key) not in (None, "") for key in keys)


def _validate(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"{model.__name__} did not validate: {e.error_count()} error(s)")
        return None


def _match_preliminary(data: dict[str, Any]) -> Classification | None:
    for candidate in _candidates(data, PRELIMINARY_WRAPPERS):
        if "payload" in candidate or not _has_any(candidate, _RETRIEVAL_KEYS):
            continue
        if not _has_any(candidate, _BATCH_COUNT_KEYS):
            continue
        announcement = _validate(PreliminaryAnnouncement, candidate)
        if announcement and announcement.retrieval_id and announcement.number_of_batches >= 1:
            return Classification(kind=PayloadKind.PRELIMINARY, preliminary=announcement)
    return None


def _match_batch_chunk(data: dict[str, Any]) -> Classification | None:
    for candidate in _candidates(data, BATCH_WRAPPERS):
        if not isinstance(candidate.get("payload"), dict):
            continue
        if not _has_any(candidate, _RETRIEVAL_KEYS):
            continue
        chunk = _validate(BatchChunk, candidate)
        if chunk and chunk.retrieval_id and chunk.batch_number >= 1 and chunk.total_batches >= 1:
            return Classification(
                kind=PayloadKind.BATCH_CHUNK,
                batch=chunk,
                package=chunk.as_package(),
            )
    return None


def _match_direct_package(data: dict[str, Any]) -> Classification | None:
    for candidate in _candidates(data, PACKAGE_WRAPPERS):
        if not _has_any(candidate, _CHANGESET_KEYS):
            continue
        package = _validate(ChangePackage, candidate)
        if package and package.changeset_id:
            return Classification(kind=PayloadKind.DIRECT_PACKAGE, package=package)
    return None


ShapeMatcher = Callable[[dict[str, Any]], "Classification | None"]

# Evaluated in order; the first match wins.
SHAPE_MATCHERS: tuple[ShapeMatcher, ...] = (
    _match_preliminary,
    _match_batch_chunk,
    _match_direct_package,
)


def _looks_like_ours(data: dict[str, Any]) -> bool:
    """Known identifying fields at the root or inside a known wrapper."""
    scopes = [data]
    for key in PRELIMINARY_WRAPPERS + BATCH_WRAPPERS + PACKAGE_WRAPPERS:
        wrapped = data.get(key)
        if isinstance(wrapped, dict):
            scopes.append(wrapped)
            if isinstance(wrapped.get("payload"), dict):
                scopes.append(wrapped["payload"])
    if isinstance(data.get("payload"), dict):
        scopes.append(data["payload"])

    for scope in scopes:
        if _has_any(scope, _CHANGESET_KEYS) or _has_any(scope, _RETRIEVAL_KEYS):
            return True
        if any(isinstance(scope.get(key), list) for key in _FILE_CHANGE_KEYS):
            return True
    return False


def classify_payload(raw: str) -> Classification:
    """
    Determine the shape of an inbound message.

    Args:
        raw: Raw message text (JSON, optionally inside a Markdown fence)

    Returns:
        Classification; UNRECOGNIZED carries a diagnosis
    """
    try:
        data = json.loads(_strip_fence(raw))
    except json.JSONDecodeError as e:
        return Classification(
            kind=PayloadKind.UNRECOGNIZED,
            diagnosis=MALFORMED_JSON,
            detail=str(e),
        )

    if not isinstance(data, dict):
        return Classification(
            kind=PayloadKind.UNRECOGNIZED,
            diagnosis=FOREIGN_FORMAT,
            detail=f"Top-level JSON {type(data).__name__} is not an object",
        )

    for matcher in SHAPE_MATCHERS:
        result = matcher(data)
        if result is not None:
            return result

    if _looks_like_ours(data):
        return Classification(
            kind=PayloadKind.UNRECOGNIZED,
            diagnosis=RECOGNIZED_BUT_MALFORMED,
            detail="Message carries changeflow fields but matches no known shape",
        )
    return Classification(
        kind=PayloadKind.UNRECOGNIZED,
        diagnosis=FOREIGN_FORMAT,
        detail="Message is valid JSON but not a changeflow response",
    )


__all__ = [
    "FOREIGN_FORMAT",
    "MALFORMED_JSON",
    "RECOGNIZED_BUT_MALFORMED",
    "SHAPE_MATCHERS",
    "Classification",
    "PayloadKind",
    "classify_payload",
]
