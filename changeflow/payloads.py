"""
Wire models exchanged with the responder.

Inbound messages (announcements, batch chunks, change packages) are produced
by an external agent, so every model ignores unknown keys and accepts both the
camelCase wire names and snake_case field names. Outbound request parts are
serialized with camelCase aliases and without null fields.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import PayloadFormatError
from .project_schema import FileAction


class WireModel(BaseModel):
    """Base for camelCase wire models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _changeset_field() -> Any:
    return Field(
        default="",
        validation_alias=AliasChoices("changesetId", "aiChangesetId", "changeset_id"),
        serialization_alias="changesetId",
    )


def _retrieval_field() -> Any:
    return Field(
        default=None,
        validation_alias=AliasChoices("retrievalGuid", "retrievalId", "retrieval_id"),
        serialization_alias="retrievalGuid",
    )


def encode_content(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_content(encoded: str) -> bytes:
    """
    Decode base64 resource content.

    Raises:
        PayloadFormatError: If the text is not valid base64
    """
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadFormatError(f"Invalid base64 content: {e}") from e


# =============================================================================
# Inbound
# =============================================================================


class FileChange(WireModel):
    """One proposed resource change."""

    path: str
    action: FileAction
    content_base64: str | None = None
    based_on_hash: str | None = None
    new_hash: str | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def has_content(self) -> bool:
        return bool(self.content_base64)

    def decoded_content(self) -> bytes:
        return decode_content(self.content_base64 or "")


class TaskUpdate(WireModel):
    """Task status block reported by the responder."""

    task_id: str | None = None
    new_status: str | None = None
    ai_notes: str | None = None
    updated_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.task_id or self.new_status or self.ai_notes)


class ChangePackage(WireModel):
    """A complete (or consolidated) set of proposed changes."""

    changeset_id: str = _changeset_field()
    human_request_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("humanRequestId", "human_request_id"),
        serialization_alias="humanRequestId",
    )
    task_updates: TaskUpdate | None = None
    file_changes: list[FileChange] = Field(default_factory=list)
    roadmap_suggestions: list[str] = Field(default_factory=list)
    overall_comment: str | None = Field(
        default=None,
        validation_alias=AliasChoices("overallComment", "overallAiComment", "overall_comment"),
    )
    retrieval_id: str | None = _retrieval_field()
    batch_number: int | None = None
    total_batches: int | None = None
    is_last_batch: bool | None = None

    @field_validator("file_changes", "roadmap_suggestions", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class PreliminaryAnnouncement(WireModel):
    """Announces that the response will arrive in several batches."""

    changeset_id: str = _changeset_field()
    human_request_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("humanRequestId", "human_request_id"),
    )
    status: str | None = None
    number_of_batches: int = 0
    retrieval_id: str | None = _retrieval_field()
    estimated_total_size_bytes: int | None = None
    instructions_for_cli: str | None = None


class BatchChunk(WireModel):
    """One batch of a multi-batch response."""

    retrieval_id: str | None = _retrieval_field()
    changeset_id: str = _changeset_field()
    batch_number: int = 0
    total_batches: int = 0
    is_last_batch: bool = False
    payload_type: str | None = None
    payload: ChangePackage

    def as_package(self) -> ChangePackage:
        """The embedded package, carrying this chunk's retrieval metadata."""
        return self.payload.model_copy(
            update={
                "changeset_id": self.payload.changeset_id or self.changeset_id,
                "retrieval_id": self.retrieval_id,
                "batch_number": self.batch_number,
                "total_batches": self.total_batches,
                "is_last_batch": self.is_last_batch,
            }
        )


# =============================================================================
# Outbound
# =============================================================================


class FileToProcess(WireModel):
    """Resource declared in part 1 of a request."""

    path: str
    action: str
    hash: str | None = None
    content_base64: str | None = None
    content_detail: str | None = None


class FileData(WireModel):
    """Deferred resource content carried by a later part."""

    path: str
    content_base64: str


class RequestPart(WireModel):
    """One part of an outbound request."""

    human_request_group_id: str | None = None
    part_number: int = 1
    total_parts: int = 1
    task_id: str
    task_description: str | None = None
    files_to_process: list[FileToProcess] = Field(default_factory=list)
    file_data: list[FileData] = Field(default_factory=list)

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps({"humanRequest": self.to_wire()}, indent=indent)

    def serialized_size(self) -> int:
        """Size in bytes of the compact serialized part."""
        return len(self.to_json(indent=None).encode("utf-8"))


__all__ = [
    "BatchChunk",
    "ChangePackage",
    "FileChange",
    "FileData",
    "FileToProcess",
    "PreliminaryAnnouncement",
    "RequestPart",
    "TaskUpdate",
    "WireModel",
    "decode_content",
    "encode_content",
]
