"""TaskLifecycle - manage task status transitions."""

from __future__ import annotations

import logging
from typing import Literal

from .errors import InvalidTaskStateError, TaskNotFoundError
from .project_schema import ProjectState, Task, TaskStatus, utc_now

logger = logging.getLogger(__name__)

# Statuses the responder may report for a task
RESPONSE_STATUSES = frozenset(
    {
        TaskStatus.TODO,
        TaskStatus.IN_PROGRESS,
        TaskStatus.PENDING_HUMAN_INPUT,
        TaskStatus.BLOCKED,
        TaskStatus.IN_REVIEW,
        TaskStatus.PENDING_HUMAN_REVIEW,
        TaskStatus.DONE,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
    }
)

# A requested completion is downgraded to review when a resource needs a human
COMPLETION_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.COMPLETED})


class TaskLifecycle:
    """
    Manage task status transitions.

    Valid transitions follow the request/response cycle:
    - any open status → PENDING_HUMAN_INPUT_PARTS | PENDING_AI_PROCESSING (request prepared)
    - PENDING_HUMAN_INPUT_PARTS → PENDING_HUMAN_INPUT_PARTS (more parts) | PENDING_AI_PROCESSING (last part)
    - PENDING_AI_PROCESSING → AWAITING_AI_BATCHES | any response status
    - AWAITING_AI_BATCHES → any response status
    - any status → ARCHIVED
    - ARCHIVED → (terminal)
    """

    VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]]

    def __init__(self):
        request_statuses = {TaskStatus.PENDING_HUMAN_INPUT_PARTS, TaskStatus.PENDING_AI_PROCESSING}
        self.VALID_TRANSITIONS = {
            status: request_statuses | {TaskStatus.ARCHIVED}
            for status in TaskStatus
            if status != TaskStatus.ARCHIVED
        }
        self.VALID_TRANSITIONS[TaskStatus.PENDING_AI_PROCESSING] |= RESPONSE_STATUSES | {
            TaskStatus.AWAITING_AI_BATCHES
        }
        self.VALID_TRANSITIONS[TaskStatus.AWAITING_AI_BATCHES] |= RESPONSE_STATUSES
        self.VALID_TRANSITIONS[TaskStatus.ARCHIVED] = set()  # Terminal

    def can_transition(self, from_status: TaskStatus | str, to_status: TaskStatus | str) -> bool:
        """Check if a transition is valid."""
        try:
            source, target = TaskStatus(from_status), TaskStatus(to_status)
        except ValueError:
            return False
        return target in self.VALID_TRANSITIONS.get(source, set())

    def transition(self, task: Task, to_status: TaskStatus) -> bool:
        """
        Attempt to transition a task to a new status.

        Returns True if successful, False if transition is invalid.
        """
        if not self.can_transition(task.status, to_status):
            logger.debug(f"Rejected transition {task.task_id}: {task.status} -> {to_status}")
            return False
        task.status = TaskStatus(to_status)
        task.touch()
        return True

    def require_transition(self, task: Task, to_status: TaskStatus) -> None:
        """Like transition(), but raises InvalidTaskStateError when rejected."""
        if not self.transition(task, to_status):
            raise InvalidTaskStateError(
                f"Task {task.task_id} cannot move from '{TaskStatus(task.status).value}' "
                f"to '{TaskStatus(to_status).value}'"
            )


def is_archived(task: Task) -> bool:
    return task.status == TaskStatus.ARCHIVED


def resolve_response_status(requested: str | None, needs_review: bool) -> TaskStatus:
    """
    Status a task takes after a complete response is integrated.

    Args:
        requested: Status reported by the responder, if any
        needs_review: True when any resource was skipped or merged

    Returns:
        The status to apply. A requested done/completed becomes
        pending_human_review when needs_review is set; an unknown or
        missing status also yields pending_human_review.
    """
    if not requested:
        return TaskStatus.PENDING_HUMAN_REVIEW

    try:
        status = TaskStatus(requested.strip().lower())
    except ValueError:
        logger.warning(f"Unknown task status '{requested}' reported; using pending_human_review")
        return TaskStatus.PENDING_HUMAN_REVIEW

    if status not in RESPONSE_STATUSES:
        logger.warning(f"Task status '{requested}' cannot be set by a response; using pending_human_review")
        return TaskStatus.PENDING_HUMAN_REVIEW

    if status in COMPLETION_STATUSES and needs_review:
        logger.info(f"Requested status '{status.value}' downgraded: resources need review")
        return TaskStatus.PENDING_HUMAN_REVIEW
    return status


def archive_task(state: ProjectState, task_id: str) -> Task:
    """
    Archive (soft-delete) a task. Archived tasks are kept in the document.

    Raises:
        TaskNotFoundError: If no such task exists
    """
    task = state.find_task(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    if is_archived(task):
        logger.info(f"Task {task_id} is already archived")
        return task
    TaskLifecycle().require_transition(task, TaskStatus.ARCHIVED)
    logger.info(f"Archived task {task_id}")
    return task


def add_task_note(
    state: ProjectState,
    task_id: str,
    message: str,
    author: Literal["human", "ai"] = "human",
) -> Task:
    """
    Append a timestamped note to a task.

    Raises:
        TaskNotFoundError: If no such task exists
        ValueError: For an empty message
    """
    task = state.find_task(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    if not message.strip():
        raise ValueError("Note message is empty")

    line = f"[{utc_now().strftime('%Y-%m-%d %H:%M:%S')} UTC] {message.strip()}"
    if author == "ai":
        task.ai_notes = f"{task.ai_notes}\n{line}" if task.ai_notes else line
    else:
        task.human_notes = f"{task.human_notes}\n{line}" if task.human_notes else line
    task.touch()
    return task


__all__ = [
    "COMPLETION_STATUSES",
    "RESPONSE_STATUSES",
    "TaskLifecycle",
    "add_task_note",
    "archive_task",
    "is_archived",
    "resolve_response_status",
]
