"""Confirming a manual merge of a conflicting resource."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import InvalidTaskStateError
from .hashing import hash_file
from .paths import resolve_in_project, to_project_path
from .project_schema import ProjectState, ResourceStatus

logger = logging.getLogger(__name__)

CONFLICT_MARKER_PATTERN = re.compile(r"^(<{7}|={7}|>{7})(\s|$)", re.MULTILINE)


@dataclass
class ResolveResult:
    """Outcome of marking a resource resolved."""

    path: str
    resolved: bool
    local_hash: str | None = None
    warnings: list[str] = field(default_factory=list)


def has_conflict_markers(text: str) -> bool:
    return CONFLICT_MARKER_PATTERN.search(text) is not None


def mark_resolved(state: ProjectState, root: Path, path: str, allow_markers: bool = False) -> ResolveResult:
    """
    Mark a resource in needs_manual_merge as merged.

    Args:
        state: Project state (mutated on success)
        root: Project root
        path: Resource path (project-relative or absolute under root)
        allow_markers: Confirm even if conflict markers remain in the file

    Raises:
        InvalidTaskStateError: The resource is untracked or not awaiting a merge
        UnsafePathError: The path lies outside the project
    """
    project_path = to_project_path(root, path)
    resource = state.find_resource(project_path)
    if resource is None:
        raise InvalidTaskStateError(f"Resource is not tracked: {project_path}")
    if resource.status != ResourceStatus.NEEDS_MANUAL_MERGE:
        raise InvalidTaskStateError(
            f"Resource {project_path} is '{ResourceStatus(resource.status).value}', not awaiting a manual merge"
        )

    result = ResolveResult(path=project_path, resolved=False)
    full_path = resolve_in_project(root, project_path)
    if not full_path.is_file():
        result.warnings.append(f"File not found: {project_path}")
        return result

    try:
        text = full_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        result.warnings.append(f"Could not read {project_path}: {e}")
        return result

    if has_conflict_markers(text):
        if not allow_markers:
            result.warnings.append(f"{project_path} still contains conflict markers")
            return result
        message = f"{project_path} still contains conflict markers; marking it merged anyway"
        logger.warning(message)
        result.warnings.append(message)

    resource.local_hash = hash_file(full_path)
    resource.status = ResourceStatus.MERGED
    resource.last_sent_hash = None
    resource.conflict_file = None
    logger.info(f"Resource {project_path} marked as merged")

    result.resolved = True
    result.local_hash = resource.local_hash
    return result


__all__ = [
    "CONFLICT_MARKER_PATTERN",
    "ResolveResult",
    "has_conflict_markers",
    "mark_resolved",
]
