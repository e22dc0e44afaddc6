"""
Conflict detection and resolution for proposed resource changes.

For every update against a tracked local file, three hashes are compared: the
current disk hash, the hash last sent to the responder, and the hash the
change declares it was based on. Local drift (disk ≠ last sent) is a conflict
that an injected ConflictResolver settles; a mismatched base hash alone is an
advisory staleness warning.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from ..errors import PayloadFormatError, UnsafePathError
from ..hashing import hash_bytes, hash_file, short_hash
from ..paths import resolve_in_project
from ..payloads import FileChange
from ..project_schema import FileAction, ProjectState, Resource, ResourceStatus, ResourceType

logger = logging.getLogger(__name__)


class ConflictChoice(Enum):
    """Resolution taken for one conflicting resource."""

    OVERWRITE = "overwrite"
    SKIP = "skip"
    MERGE = "merge"


class ChangeOutcome(Enum):
    """What happened to one proposed change."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    REFERENCE_UPDATED = "reference_updated"
    SKIPPED_CONFLICT = "skipped_conflict"
    MERGE_MARKERS_WRITTEN = "merge_markers_written"
    SKIPPED_NO_CONTENT = "skipped_no_content"
    FAILED = "failed"


@dataclass
class ConflictContext:
    """Everything a resolver needs to decide one conflict."""

    path: str
    disk_hash: str
    last_sent_hash: str
    based_on_hash: str | None
    task_id: str | None = None

    def describe(self) -> str:
        return (
            f"{self.path} changed locally since it was sent "
            f"(disk {short_hash(self.disk_hash)}, sent {short_hash(self.last_sent_hash)}, "
            f"change based on {short_hash(self.based_on_hash)})"
        )


@dataclass
class ResourceResult:
    """Per-resource result of applying one change."""

    path: str
    action: str
    outcome: ChangeOutcome
    simulated: bool = False
    conflict: bool = False
    choice: ConflictChoice | None = None
    stale_warning: bool = False
    error: str | None = None
    messages: list[str] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        """Skipped or merged: a human still has to act on this resource."""
        return self.outcome in (ChangeOutcome.SKIPPED_CONFLICT, ChangeOutcome.MERGE_MARKERS_WRITTEN)

    @property
    def applied(self) -> bool:
        return self.outcome in (
            ChangeOutcome.CREATED,
            ChangeOutcome.UPDATED,
            ChangeOutcome.DELETED,
            ChangeOutcome.REFERENCE_UPDATED,
        )


class ConflictResolver(Protocol):
    """Decides how a local-drift conflict is resolved."""

    def resolve_conflict(self, context: ConflictContext) -> ConflictChoice:
        ...


class InteractiveResolver:
    """
    Asks a human, blocking until a valid answer is given.

    There is no timeout: the whole process waits on the prompt.
    """

    CHOICES = {
        "o": ConflictChoice.OVERWRITE,
        "s": ConflictChoice.SKIP,
        "m": ConflictChoice.MERGE,
    }

    def __init__(
        self,
        prompt: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
    ):
        self.prompt = prompt
        self.output = output

    def resolve_conflict(self, context: ConflictContext) -> ConflictChoice:
        self.output(f"Conflict: {context.describe()}")
        while True:
            answer = self.prompt(f"{context.path}: [o]verwrite, [s]kip, [m]erge? ").strip().lower()
            if answer in self.CHOICES:
                return self.CHOICES[answer]


class FixedResolver:
    """Applies one configured choice to every conflict."""

    def __init__(self, choice: ConflictChoice):
        self.choice = choice

    def resolve_conflict(self, context: ConflictContext) -> ConflictChoice:
        logger.info(f"Resolving conflict on {context.path} with policy '{self.choice.value}'")
        return self.choice


class SimulatedResolver:
    """Used in simulation: reports the conflict and simulates an overwrite."""

    def resolve_conflict(self, context: ConflictContext) -> ConflictChoice:
        logger.info(f"Simulation: would prompt for {context.path}; simulating overwrite")
        return ConflictChoice.OVERWRITE


def resolver_for_policy(
    policy: str,
    prompt: Callable[[str], str] = input,
    output: Callable[[str], None] = print,
) -> ConflictResolver:
    """Build the resolver for a configured policy name."""
    if policy == "prompt":
        return InteractiveResolver(prompt=prompt, output=output)
    try:
        return FixedResolver(ConflictChoice(policy))
    except ValueError:
        raise ValueError(f"Unknown conflict policy: {policy}") from None


def build_conflict_block(local: bytes, incoming: bytes, task_id: str | None) -> bytes:
    """Textual conflict block holding both versions, for manual resolution."""
    local_text = local.decode("utf-8", errors="replace")
    incoming_text = incoming.decode("utf-8", errors="replace")
    lines = [
        "<<<<<<< local",
        local_text.rstrip("\n"),
        "=======",
        incoming_text.rstrip("\n"),
        f">>>>>>> responder (task {task_id or 'N/A'})",
        "",
    ]
    return "\n".join(lines).encode("utf-8")


class ChangeApplier:
    """
    Applies proposed changes to disk and to the tracked Resources.

    In simulation every disk write and delete becomes a report-only branch;
    the in-memory state is still updated so callers see the simulated result.
    Simulation never prompts: an interactive resolver is replaced by
    SimulatedResolver, a fixed policy is kept.
    """

    def __init__(self, root: Path, resolver: ConflictResolver, simulate: bool = False):
        self.root = Path(root)
        if simulate and isinstance(resolver, InteractiveResolver):
            resolver = SimulatedResolver()
        self.resolver = resolver
        self.simulate = simulate

    def apply(self, state: ProjectState, change: FileChange, task_id: str | None = None) -> ResourceResult:
        """
        Apply one change.

        Never raises for per-resource problems; they are reported as FAILED.
        """
        try:
            full_path = resolve_in_project(self.root, change.path)
        except UnsafePathError as e:
            logger.error(str(e))
            return self._result(change, ChangeOutcome.FAILED, str(e))

        if change.action == FileAction.DELETE:
            return self._delete(state, change, full_path)

        if not change.has_content:
            message = f"Skipping {change.path}: no content supplied"
            logger.warning(message)
            return self._result(change, ChangeOutcome.SKIPPED_NO_CONTENT, message)

        try:
            content = change.decoded_content()
        except PayloadFormatError as e:
            logger.error(f"{change.path}: {e}")
            return self._result(change, ChangeOutcome.FAILED, str(e))

        resource = state.find_resource(change.path)
        if resource is None:
            resource = Resource(path=change.path, type=ResourceType.LOCAL_FILE)
            state.resources.append(resource)

        if not resource.is_local_file:
            resource.status = ResourceStatus.AI_MODIFIED
            return self._result(
                change,
                ChangeOutcome.REFERENCE_UPDATED,
                f"Reference {change.path} ({resource.type}) marked as modified",
            )

        result = self._result(change, ChangeOutcome.UPDATED)
        if change.action == FileAction.UPDATE:
            disk_hash = hash_file(full_path)
            if (
                resource.last_sent_hash is not None
                and disk_hash is not None
                and disk_hash != resource.last_sent_hash
            ):
                context = ConflictContext(
                    path=change.path,
                    disk_hash=disk_hash,
                    last_sent_hash=resource.last_sent_hash,
                    based_on_hash=change.based_on_hash,
                    task_id=task_id,
                )
                logger.warning(f"Conflict: {context.describe()}")
                result.conflict = True
                result.choice = self.resolver.resolve_conflict(context)
                result.messages.append(context.describe())

                if result.choice == ConflictChoice.SKIP:
                    resource.status = ResourceStatus.NEEDS_MANUAL_MERGE
                    result.outcome = ChangeOutcome.SKIPPED_CONFLICT
                    result.messages.append(f"Skipped {change.path}; marked for manual merge")
                    return result
                if result.choice == ConflictChoice.MERGE:
                    return self._write_merge(resource, full_path, content, task_id, result)
            elif (
                resource.last_sent_hash is not None
                and change.based_on_hash is not None
                and resource.last_sent_hash != change.based_on_hash
            ):
                result.stale_warning = True
                message = (
                    f"{change.path}: change is based on {short_hash(change.based_on_hash)} "
                    f"but {short_hash(resource.last_sent_hash)} was last sent"
                )
                logger.warning(message)
                result.messages.append(message)

        return self._write(resource, full_path, content, change, result)

    def _write(
        self,
        resource: Resource,
        full_path: Path,
        content: bytes,
        change: FileChange,
        result: ResourceResult,
    ) -> ResourceResult:
        existed = full_path.exists()
        result.outcome = (
            ChangeOutcome.CREATED
            if change.action == FileAction.CREATE and not existed
            else ChangeOutcome.UPDATED
        )
        if self.simulate:
            result.messages.append(f"Would write {change.path} ({len(content)} bytes)")
            resource.status = ResourceStatus.AI_MODIFIED
            return result

        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(content)
        except OSError as e:
            logger.error(f"Could not write {change.path}: {e}")
            result.outcome = ChangeOutcome.FAILED
            result.messages.append(f"Could not write {change.path}: {e}")
            return result

        resource.local_hash = hash_bytes(content)
        resource.status = ResourceStatus.AI_MODIFIED
        resource.last_sent_hash = None
        resource.conflict_file = None
        result.messages.append(f"{result.outcome.value.capitalize()} {change.path}")
        return result

    def _write_merge(
        self,
        resource: Resource,
        full_path: Path,
        content: bytes,
        task_id: str | None,
        result: ResourceResult,
    ) -> ResourceResult:
        resource.status = ResourceStatus.NEEDS_MANUAL_MERGE
        resource.conflict_file = None
        result.outcome = ChangeOutcome.MERGE_MARKERS_WRITTEN
        if self.simulate:
            result.messages.append(f"Would write conflict markers into {resource.path}")
            return result

        try:
            local = full_path.read_bytes() if full_path.exists() else b""
            full_path.write_bytes(build_conflict_block(local, content, task_id))
        except OSError as e:
            # file left as it was; the resource still awaits a manual merge
            result.outcome = ChangeOutcome.SKIPPED_CONFLICT
            result.error = f"Could not write conflict markers to {resource.path}: {e}"
            logger.error(result.error)
            result.messages.append(result.error)
            return result

        result.messages.append(f"Conflict markers written to {resource.path}; resolve them, then mark it resolved")
        return result

    def _delete(self, state: ProjectState, change: FileChange, full_path: Path) -> ResourceResult:
        result = self._result(change, ChangeOutcome.DELETED)
        if self.simulate:
            result.messages.append(f"Would delete {change.path}")
            state.remove_resource(change.path)
            return result

        if full_path.exists():
            try:
                full_path.unlink()
            except OSError as e:
                logger.error(f"Could not delete {change.path}: {e}")
                result.outcome = ChangeOutcome.FAILED
                result.messages.append(f"Could not delete {change.path}: {e}")
                return result
            result.messages.append(f"Deleted {change.path}")
        else:
            result.messages.append(f"{change.path} was already absent")
        state.remove_resource(change.path)
        return result

    def _result(self, change: FileChange, outcome: ChangeOutcome, message: str | None = None) -> ResourceResult:
        result = ResourceResult(
            path=change.path,
            action=change.action.value if isinstance(change.action, FileAction) else str(change.action),
            outcome=outcome,
            simulated=self.simulate,
        )
        if message:
            result.messages.append(message)
        return result


__all__ = [
    "ChangeApplier",
    "ChangeOutcome",
    "ConflictChoice",
    "ConflictContext",
    "ConflictResolver",
    "FixedResolver",
    "InteractiveResolver",
    "ResourceResult",
    "SimulatedResolver",
    "build_conflict_block",
    "resolver_for_policy",
]
