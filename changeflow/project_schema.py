"""
Project document schema for changeflow.

Pydantic models for changeflow.json, the single persisted project state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ResourceType(str, Enum):
    """Kind of tracked resource."""

    LOCAL_FILE = "LocalFile"
    URL = "URL"
    TEXT_SNIPPET = "TextSnippet"


class ResourceStatus(str, Enum):
    """Lifecycle of a tracked resource."""

    UNMODIFIED = "unmodified"
    MODIFIED_LOCALLY = "modified_locally"
    AWAITING_AI_CHANGES = "awaiting_ai_changes"
    AI_MODIFIED = "ai_modified"
    NEEDS_MANUAL_MERGE = "needs_manual_merge"
    MERGED = "merged"


class TaskStatus(str, Enum):
    """Task status values."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    PENDING_HUMAN_INPUT = "pending_human_input"
    PENDING_HUMAN_INPUT_PARTS = "pending_human_input_parts"
    PENDING_AI_PROCESSING = "pending_ai_processing"
    BLOCKED = "blocked"
    IN_REVIEW = "in_review"
    PENDING_HUMAN_REVIEW = "pending_human_review"
    DONE = "done"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_AI_BATCHES = "awaiting_ai_batches"
    ARCHIVED = "archived"


class TaskType(str, Enum):
    """Agile task type."""

    STORY = "Story"
    TASK = "Task"
    BUG = "Bug"
    EPIC = "Epic"
    SPIKE = "Spike"


class TaskPriority(str, Enum):
    """Agile task priority."""

    HIGHEST = "Highest"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    LOWEST = "Lowest"


class FileAction(str, Enum):
    """Action applied to a resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Markers stored in RelatedResource.content_detail
DEFERRED_CONTENT = "provided_in_next_part"
UNAVAILABLE_CONTENT = "unavailable"


class Resource(BaseModel):
    """A tracked artifact, keyed by its project-relative path."""

    path: str
    type: ResourceType = ResourceType.LOCAL_FILE
    local_hash: str | None = None
    last_sent_hash: str | None = None
    status: ResourceStatus = ResourceStatus.UNMODIFIED
    conflict_file: str | None = None
    notes: str | None = None

    model_config = {"use_enum_values": True}

    @property
    def is_local_file(self) -> bool:
        return self.type == ResourceType.LOCAL_FILE


class RelatedResource(BaseModel):
    """
    Task-scoped snapshot of a resource captured at request-preparation time.

    Independent copy: it keeps the request-time hash even if the tracked
    Resource changes later.
    """

    path: str
    type: ResourceType = ResourceType.LOCAL_FILE
    action: FileAction = FileAction.UPDATE
    hash_at_request_time: str | None = None
    sent_in_part: int | None = None
    content_detail: str | None = None

    model_config = {"use_enum_values": True}

    @property
    def is_deferred(self) -> bool:
        """Content still has to be sent in a later part."""
        return self.sent_in_part is None and self.content_detail == DEFERRED_CONTENT


class Task(BaseModel):
    """A unit of work exchanged with the responder."""

    task_id: str
    branch: str = "develop"
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    assigned_to: str = "ai"
    related_resources: list[RelatedResource] = Field(default_factory=list)
    request_group_id: str | None = None
    request_total_parts: int | None = None
    request_parts_sent: int = 0
    human_notes: str | None = None
    ai_notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Agile metadata, opaque to the engine
    type: TaskType | None = None
    priority: TaskPriority | None = None
    story_points: int | None = None
    sprint: str | None = None
    epic_link: str | None = None
    due_date: datetime | None = None
    labels: list[str] = Field(default_factory=list)

    model_config = {"use_enum_values": True}

    def find_snapshot(self, path: str) -> RelatedResource | None:
        for snapshot in self.related_resources:
            if snapshot.path == path:
                return snapshot
        return None

    def touch(self) -> None:
        self.updated_at = utc_now()


class RetrievalSession(BaseModel):
    """In-progress multi-batch inbound transfer."""

    retrieval_id: str
    changeset_id: str = ""
    human_request_id: str | None = None
    total_batches: int
    received_batches: int = 0
    batch_payloads: list[str] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.received_batches >= self.total_batches


class ProjectSettings(BaseModel):
    """Per-project size budgets."""

    max_request_payload_bytes: int = 500 * 1024
    max_single_message_bytes: int = 500 * 1024
    approx_max_context_tokens: int = 8000


class ProjectState(BaseModel):
    """
    Root document persisted as changeflow.json.

    Owns every Resource and Task. At most one retrieval session is active.
    """

    project_name: str = "MyChangeflowProject"
    version: str = "0.1.0"
    current_branch: str = "develop"
    next_task_id: int = 1
    next_request_group_id: int = 101
    settings: ProjectSettings = Field(default_factory=ProjectSettings)
    resources: list[Resource] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    roadmap: list[str] = Field(default_factory=list)
    active_retrieval: RetrievalSession | None = None

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",
    }

    def find_resource(self, path: str) -> Resource | None:
        for resource in self.resources:
            if resource.path == path:
                return resource
        return None

    def find_task(self, task_id: str | None) -> Task | None:
        if not task_id:
            return None
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    def find_task_for_request(self, request_id: str | None) -> Task | None:
        """Find a task by its own id or by its request group id."""
        if not request_id:
            return None
        for task in self.tasks:
            if task.task_id == request_id or task.request_group_id == request_id:
                return task
        return None

    def remove_resource(self, path: str) -> bool:
        resource = self.find_resource(path)
        if resource is None:
            return False
        self.resources.remove(resource)
        return True

    def allocate_task_id(self) -> str:
        task_id = f"task_{self.next_task_id}"
        self.next_task_id += 1
        return task_id

    def allocate_request_group_id(self) -> str:
        group_id = f"hrg_{self.next_request_group_id}"
        self.next_request_group_id += 1
        return group_id


class BackupInfo(BaseModel):
    """Manifest of one backup unit (backup_info.json)."""

    backup_id: str
    created_at: datetime
    task_id: str | None = None
    changeset_id: str | None = None
    paths: list[str] = Field(default_factory=list)
    notes: str = ""


__all__ = [
    "DEFERRED_CONTENT",
    "UNAVAILABLE_CONTENT",
    "BackupInfo",
    "FileAction",
    "ProjectSettings",
    "ProjectState",
    "RelatedResource",
    "Resource",
    "ResourceStatus",
    "ResourceType",
    "RetrievalSession",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TaskType",
    "utc_now",
]
