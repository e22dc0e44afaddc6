"""Exception taxonomy for changeflow."""

from __future__ import annotations


class ChangeflowError(Exception):
    """Base class for every error raised by the engine."""


class ProjectNotFoundError(ChangeflowError):
    """No project document exists at the given root."""


class ProjectStateError(ChangeflowError):
    """The project document exists but cannot be read or written."""


class PayloadFormatError(ChangeflowError):
    """An inbound message matches no known shape, or is missing required fields."""

    def __init__(self, message: str, diagnosis: str | None = None):
        super().__init__(message)
        self.diagnosis = diagnosis


class TaskNotFoundError(ChangeflowError):
    """A referenced task does not exist."""

    def __init__(self, task_id: str | None):
        super().__init__(f"Task not found: {task_id or 'N/A'}")
        self.task_id = task_id


class RetrievalSessionError(ChangeflowError):
    """The active retrieval session does not match the inbound batch."""


class InvalidTaskStateError(ChangeflowError):
    """The task is not in a state that allows the requested operation."""


class BackupError(ChangeflowError):
    """A backup could not be created or read."""


class UnsafePathError(ChangeflowError):
    """A resource path resolves outside the project root."""


__all__ = [
    "BackupError",
    "ChangeflowError",
    "InvalidTaskStateError",
    "PayloadFormatError",
    "ProjectNotFoundError",
    "ProjectStateError",
    "RetrievalSessionError",
    "TaskNotFoundError",
    "UnsafePathError",
]
