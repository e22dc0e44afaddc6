"""
Outbound Request Splitter.

Builds the request parts sent to the responder. Part 1 declares every
related resource and carries as much content as fits in the size budget;
the remaining content is deferred and sent by continuation parts, one part
per call, until nothing is deferred.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import EngineConfig
from .errors import InvalidTaskStateError, PayloadFormatError, TaskNotFoundError, UnsafePathError
from .hashing import hash_bytes, short_hash
from .ignore import IgnoreRules
from .paths import resolve_in_project, to_project_path
from .payloads import FileData, FileToProcess, RequestPart, decode_content, encode_content
from .project_schema import (
    DEFERRED_CONTENT,
    UNAVAILABLE_CONTENT,
    FileAction,
    ProjectState,
    RelatedResource,
    Resource,
    ResourceStatus,
    ResourceType,
    Task,
    TaskStatus,
)
from .task_lifecycle import TaskLifecycle, is_archived

logger = logging.getLogger(__name__)

# Share of the byte budget usable by part 1 and by continuation parts
FIRST_PART_BUDGET_RATIO = 0.9
CONTINUATION_BUDGET_RATIO = 0.95

# Per-resource framing overhead added to the size estimate
FIRST_PART_RESOURCE_OVERHEAD = 100
CONTINUATION_RESOURCE_OVERHEAD = 50

CHARS_PER_TOKEN = 4
TOKEN_ESTIMATE_OVERHEAD_CHARS = 500

# Task fields a caller may set when preparing a request
TASK_FIELDS = frozenset(
    {
        "branch",
        "assigned_to",
        "human_notes",
        "type",
        "priority",
        "story_points",
        "sprint",
        "epic_link",
        "due_date",
        "labels",
    }
)


@dataclass
class PreparedPart:
    """One request part, ready to hand to the responder."""

    part: RequestPart
    task_id: str
    estimated_tokens: int
    token_warning: bool = False
    skipped: list[str] = field(default_factory=list)

    @property
    def part_number(self) -> int:
        return self.part.part_number

    @property
    def total_parts(self) -> int:
        return self.part.total_parts

    @property
    def more_parts(self) -> bool:
        return self.part.part_number < self.part.total_parts

    @property
    def next_step(self) -> str:
        if self.more_parts:
            return f"Send this part, then continue the request for {self.task_id} to build part {self.part_number + 1}"
        return f"All parts prepared for {self.task_id}; awaiting the responder's changes"

    def to_json(self, indent: int | None = 2) -> str:
        return self.part.to_json(indent=indent)


def estimate_tokens(part: RequestPart) -> int:
    """Rough token estimate: description plus decoded content, four chars per token."""
    total_chars = len(part.task_description or "")
    encoded = [f.content_base64 for f in part.files_to_process if f.content_base64]
    encoded.extend(d.content_base64 for d in part.file_data if d.content_base64)
    for content in encoded:
        try:
            total_chars += len(decode_content(content).decode("utf-8", errors="replace"))
        except PayloadFormatError:
            continue
    total_chars += TOKEN_ESTIMATE_OVERHEAD_CHARS
    return total_chars // CHARS_PER_TOKEN


def _entry_size(path: str, encoded: str, overhead: int) -> int:
    return len(path.encode("utf-8")) + len(encoded.encode("ascii")) + overhead


class RequestSplitter:
    """
    Prepares request parts for tasks.

    Mutates the given ProjectState; the caller owns loading and saving it
    (normally through a ProjectUnitOfWork).
    """

    def __init__(
        self,
        root: Path,
        ignore_rules: IgnoreRules | None = None,
        config: EngineConfig | None = None,
    ):
        self.root = Path(root).resolve()
        self.config = config or EngineConfig()
        self.ignore_rules = ignore_rules or IgnoreRules.load(
            self.root,
            self.config.ignore_file_name,
            self.config.project_file_name,
            self.config.backups_dir_name,
        )
        self.lifecycle = TaskLifecycle()

    def _budget(self, state: ProjectState) -> int:
        if self.config.max_request_bytes_override:
            return self.config.max_request_bytes_override
        return state.settings.max_request_payload_bytes

    # ------------------------------------------------------------------
    # Part 1
    # ------------------------------------------------------------------

    def prepare_request(
        self,
        state: ProjectState,
        task_id: str | None = None,
        description: str | None = None,
        resources: Iterable[str] = (),
        new_resources: Iterable[str] = (),
        fields: dict[str, Any] | None = None,
    ) -> PreparedPart:
        """
        Create or refresh a task and build part 1 of its request.

        Args:
            state: Project state (mutated)
            task_id: Existing task to refresh, or id for a new task
            description: Task description; required for a new task
            resources: Existing resources to include (file paths, or paths of
                tracked non-file resources)
            new_resources: Paths of files the responder should create
            fields: Optional task metadata (see TASK_FIELDS)

        Raises:
            ValueError: Neither task_id nor description given, missing
                description for a new task, or an unknown field
            InvalidTaskStateError: The task is archived
        """
        if not task_id and not description:
            raise ValueError("A task id or a task description is required")

        task = self._get_or_create_task(state, task_id, description)
        if fields:
            unknown = set(fields) - TASK_FIELDS
            if unknown:
                raise ValueError(f"Unknown task field(s): {', '.join(sorted(unknown))}")
            for name, value in fields.items():
                setattr(task, name, value)

        skipped: list[str] = []
        snapshots, contents = self._capture_snapshots(state, resources, skipped)
        snapshots.extend(self._capture_new_resources(new_resources, snapshots, skipped))

        task.related_resources = snapshots
        task.request_parts_sent = 0
        task.request_total_parts = None

        part = RequestPart(
            human_request_group_id=task.request_group_id,
            part_number=1,
            task_id=task.task_id,
            task_description=task.description,
        )
        limit = self._budget(state) * FIRST_PART_BUDGET_RATIO
        current = part.serialized_size()

        for snapshot in snapshots:
            entry = FileToProcess(
                path=snapshot.path,
                action=snapshot.action.value if isinstance(snapshot.action, FileAction) else snapshot.action,
                hash=snapshot.hash_at_request_time,
            )
            if snapshot.type != ResourceType.LOCAL_FILE:
                entry.content_detail = f"type:{ResourceType(snapshot.type).value}"
                snapshot.content_detail = entry.content_detail
                snapshot.sent_in_part = 1
            elif snapshot.path in contents:
                encoded = encode_content(contents[snapshot.path])
                size = _entry_size(snapshot.path, encoded, FIRST_PART_RESOURCE_OVERHEAD)
                if current + size < limit:
                    entry.content_base64 = encoded
                    current += size
                    snapshot.sent_in_part = 1
                else:
                    entry.content_detail = DEFERRED_CONTENT
                    snapshot.content_detail = DEFERRED_CONTENT
            else:
                # create: declared only, no content
                snapshot.sent_in_part = 1
            part.files_to_process.append(entry)

        prepared = self._finish_part(state, task, part)
        prepared.skipped = skipped
        return prepared

    def _get_or_create_task(self, state: ProjectState, task_id: str | None, description: str | None) -> Task:
        task = state.find_task(task_id)
        if task is None:
            if not description:
                raise ValueError(f"A description is required to create task {task_id}")
            task = Task(
                task_id=task_id or state.allocate_task_id(),
                description=description,
                branch=state.current_branch,
            )
            state.tasks.append(task)
            logger.info(f"Created task {task.task_id}")
            return task

        if is_archived(task):
            raise InvalidTaskStateError(f"Task {task.task_id} is archived")
        if description:
            task.description = description
        task.touch()
        return task

    def _capture_snapshots(
        self,
        state: ProjectState,
        resources: Iterable[str],
        skipped: list[str],
    ) -> tuple[list[RelatedResource], dict[str, bytes]]:
        snapshots: list[RelatedResource] = []
        contents: dict[str, bytes] = {}
        seen: set[str] = set()

        for raw_path in resources:
            tracked = state.find_resource(raw_path)
            if tracked is not None and not tracked.is_local_file:
                if raw_path not in seen:
                    seen.add(raw_path)
                    snapshots.append(
                        RelatedResource(path=tracked.path, type=tracked.type, hash_at_request_time=tracked.local_hash)
                    )
                continue

            try:
                path = to_project_path(self.root, raw_path)
            except UnsafePathError as e:
                skipped.append(str(e))
                logger.warning(str(e))
                continue
            if path in seen:
                continue
            if self.ignore_rules.is_ignored(path):
                message = f"Resource {path} is ignored by {self.config.ignore_file_name}; not included"
                skipped.append(message)
                logger.warning(message)
                continue

            full_path = self.root / path
            if not full_path.is_file():
                message = f"Resource not found: {path}"
                skipped.append(message)
                logger.warning(message)
                continue
            try:
                data = full_path.read_bytes()
            except OSError as e:
                message = f"Could not read {path}: {e}"
                skipped.append(message)
                logger.warning(message)
                continue

            seen.add(path)
            contents[path] = data
            snapshots.append(RelatedResource(path=path, hash_at_request_time=hash_bytes(data)))
        return snapshots, contents

    def _capture_new_resources(
        self,
        new_resources: Iterable[str],
        existing: list[RelatedResource],
        skipped: list[str],
    ) -> list[RelatedResource]:
        seen = {s.path for s in existing}
        snapshots = []
        for raw_path in new_resources:
            try:
                path = to_project_path(self.root, raw_path)
            except UnsafePathError as e:
                skipped.append(str(e))
                logger.warning(str(e))
                continue
            if path in seen:
                continue
            if self.ignore_rules.is_ignored(path):
                message = f"New resource {path} is ignored by {self.config.ignore_file_name}; not included"
                skipped.append(message)
                logger.warning(message)
                continue
            seen.add(path)
            snapshots.append(RelatedResource(path=path, action=FileAction.CREATE))
        return snapshots

    # ------------------------------------------------------------------
    # Continuation parts
    # ------------------------------------------------------------------

    def continue_request(self, state: ProjectState, task_id: str) -> PreparedPart:
        """
        Build the next part of a split request.

        Raises:
            TaskNotFoundError: No such task
            InvalidTaskStateError: The task has no remaining parts to send
        """
        task = state.find_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if (
            task.status != TaskStatus.PENDING_HUMAN_INPUT_PARTS
            or task.request_total_parts is None
            or task.request_parts_sent >= task.request_total_parts
        ):
            raise InvalidTaskStateError(f"Task {task_id} has no pending request parts")

        part_number = task.request_parts_sent + 1
        part = RequestPart(
            human_request_group_id=task.request_group_id,
            part_number=part_number,
            task_id=task.task_id,
        )
        limit = self._budget(state) * CONTINUATION_BUDGET_RATIO
        current = part.serialized_size()

        for snapshot in task.related_resources:
            if not snapshot.is_deferred:
                continue
            data = self._reread(snapshot)
            if data is None:
                snapshot.content_detail = UNAVAILABLE_CONTENT
                snapshot.sent_in_part = part_number
                continue

            encoded = encode_content(data)
            size = _entry_size(snapshot.path, encoded, CONTINUATION_RESOURCE_OVERHEAD)
            if current + size >= limit:
                if part.file_data:
                    continue
                logger.warning(
                    f"{snapshot.path} ({size} bytes) exceeds the part budget; sending it alone in part {part_number}"
                )
            part.file_data.append(FileData(path=snapshot.path, content_base64=encoded))
            current += size
            snapshot.sent_in_part = part_number

        return self._finish_part(state, task, part)

    def _reread(self, snapshot: RelatedResource) -> bytes | None:
        try:
            full_path = resolve_in_project(self.root, snapshot.path)
            data = full_path.read_bytes()
        except (OSError, UnsafePathError) as e:
            logger.warning(f"Deferred resource {snapshot.path} is unavailable: {e}")
            return None

        current_hash = hash_bytes(data)
        if snapshot.hash_at_request_time and current_hash != snapshot.hash_at_request_time:
            logger.warning(
                f"{snapshot.path} changed since the request was prepared "
                f"({short_hash(snapshot.hash_at_request_time)} -> {short_hash(current_hash)})"
            )
            snapshot.hash_at_request_time = current_hash
        return data

    # ------------------------------------------------------------------
    # Shared bookkeeping
    # ------------------------------------------------------------------

    def _finish_part(self, state: ProjectState, task: Task, part: RequestPart) -> PreparedPart:
        part_number = part.part_number
        more_deferred = any(s.is_deferred for s in task.related_resources)

        if more_deferred:
            if task.request_group_id is None:
                task.request_group_id = state.allocate_request_group_id()
                logger.info(f"Request for {task.task_id} will be split (group {task.request_group_id})")
            part.total_parts = part_number + 1
            self.lifecycle.require_transition(task, TaskStatus.PENDING_HUMAN_INPUT_PARTS)
        else:
            part.total_parts = part_number
            self.lifecycle.require_transition(task, TaskStatus.PENDING_AI_PROCESSING)

        part.human_request_group_id = task.request_group_id
        task.request_total_parts = part.total_parts
        task.request_parts_sent = part_number

        for snapshot in task.related_resources:
            if snapshot.sent_in_part == part_number and snapshot.content_detail != UNAVAILABLE_CONTENT:
                self._mark_sent(state, snapshot)

        tokens = estimate_tokens(part)
        token_warning = tokens > state.settings.approx_max_context_tokens
        if token_warning:
            logger.warning(
                f"Part {part_number} of {task.task_id} is about {tokens} tokens, "
                f"above the limit of {state.settings.approx_max_context_tokens}"
            )
        logger.info(f"Prepared part {part_number}/{part.total_parts} for {task.task_id} (~{tokens} tokens)")
        return PreparedPart(part=part, task_id=task.task_id, estimated_tokens=tokens, token_warning=token_warning)

    @staticmethod
    def _mark_sent(state: ProjectState, snapshot: RelatedResource) -> None:
        resource = state.find_resource(snapshot.path)
        if resource is None:
            resource = Resource(path=snapshot.path, type=snapshot.type)
            state.resources.append(resource)
        if (
            snapshot.action == FileAction.UPDATE
            and snapshot.hash_at_request_time is not None
            and resource.is_local_file
        ):
            resource.last_sent_hash = snapshot.hash_at_request_time
            resource.local_hash = snapshot.hash_at_request_time
        resource.status = ResourceStatus.AWAITING_AI_CHANGES


__all__ = [
    "CONTINUATION_BUDGET_RATIO",
    "FIRST_PART_BUDGET_RATIO",
    "PreparedPart",
    "RequestSplitter",
    "TASK_FIELDS",
    "estimate_tokens",
]
