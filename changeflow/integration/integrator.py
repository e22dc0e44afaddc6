"""
Change integration: one inbound message against one unit of work.

    classify → (retrieval session) → locate task → backup → apply → task status

Every failure is converted into an IntegrationResult; nothing here raises for
a bad message, a missing task or a failed backup.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..backup import BackupManager
from ..config import EngineConfig
from ..errors import BackupError, RetrievalSessionError, TaskNotFoundError, UnsafePathError
from ..paths import resolve_in_project
from ..payloads import ChangePackage
from ..project_schema import ProjectState, Task, TaskStatus
from ..project_store import ProjectStore, ProjectUnitOfWork
from ..task_lifecycle import TaskLifecycle, is_archived, resolve_response_status
from .classifier import Classification, PayloadKind, classify_payload
from .conflicts import ChangeApplier, ChangeOutcome, ConflictResolver, ResourceResult, resolver_for_policy
from .retrieval import accept_batch, begin_retrieval

logger = logging.getLogger(__name__)


class IntegrationOutcome(Enum):
    """Overall result of one integration call."""

    FORMAT_ERROR = "format_error"
    LOOKUP_ERROR = "lookup_error"
    ABORTED = "aborted"
    AWAITING_BATCH = "awaiting_batch"
    APPLIED = "applied"
    NO_CHANGES = "no_changes"


@dataclass
class IntegrationResult:
    """Summary of one integration call."""

    outcome: IntegrationOutcome
    simulated: bool = False
    kind: PayloadKind | None = None
    diagnosis: str | None = None
    changeset_id: str | None = None
    task_id: str | None = None
    task_status: str | None = None
    backup_id: str | None = None
    resources: list[ResourceResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    overall_comment: str | None = None
    next_step: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (
            IntegrationOutcome.AWAITING_BATCH,
            IntegrationOutcome.APPLIED,
            IntegrationOutcome.NO_CHANGES,
        )

    @property
    def needs_review(self) -> bool:
        return any(r.needs_review for r in self.resources)

    @property
    def failed_resources(self) -> list[ResourceResult]:
        return [r for r in self.resources if r.outcome == ChangeOutcome.FAILED]

    def summary(self) -> str:
        prefix = "[simulation] " if self.simulated else ""
        lines = [f"{prefix}{self.outcome.value}" + (f" (task {self.task_id})" if self.task_id else "")]
        for resource in self.resources:
            lines.append(f"  {resource.path}: {resource.outcome.value}")
        lines.extend(f"  warning: {w}" for w in self.warnings)
        if self.next_step:
            lines.append(f"  next: {self.next_step}")
        return "\n".join(lines)


def decline_without_backup(reason: str) -> bool:
    """Default backup-failure policy: never proceed without a backup."""
    return False


class ChangeIntegrator:
    """
    Integrates responder messages into a project.

    Usage:
        integrator = ChangeIntegrator(resolver=FixedResolver(ConflictChoice.SKIP))
        with store.unit_of_work() as uow:
            result = integrator.integrate(uow, raw_message)
    """

    def __init__(
        self,
        resolver: ConflictResolver,
        confirm_without_backup: Callable[[str], bool] = decline_without_backup,
        config: EngineConfig | None = None,
    ):
        """
        Initialize integrator.

        Args:
            resolver: Decides local-drift conflicts (ignored in simulation)
            confirm_without_backup: Asked whether to continue when a backup
                cannot be created; receives the failure reason
            config: Engine configuration (backup directory and file names)
        """
        self.resolver = resolver
        self.confirm_without_backup = confirm_without_backup
        self.config = config or EngineConfig()
        self.lifecycle = TaskLifecycle()

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        prompt: Callable[[str], str] = input,
        confirm_without_backup: Callable[[str], bool] = decline_without_backup,
    ) -> "ChangeIntegrator":
        return cls(
            resolver=resolver_for_policy(config.conflict_policy, prompt=prompt),
            confirm_without_backup=confirm_without_backup,
            config=config,
        )

    def run(self, store: ProjectStore, raw: str, simulate: bool = False) -> IntegrationResult:
        """Open a unit of work on ``store`` and integrate one message."""
        with store.unit_of_work(simulate=simulate) as uow:
            return self.integrate(uow, raw)

    def integrate(self, uow: ProjectUnitOfWork, raw: str) -> IntegrationResult:
        """
        Integrate one inbound message.

        Mutates uow.state; on format, lookup and abort outcomes the unit of
        work is discarded so nothing is persisted.
        """
        state = uow.state
        classification = classify_payload(raw)
        result = IntegrationResult(
            outcome=IntegrationOutcome.NO_CHANGES,
            simulated=uow.simulate,
            kind=classification.kind,
        )

        if not classification.is_recognized:
            return self._format_error(uow, result, classification)

        if classification.kind == PayloadKind.PRELIMINARY:
            return self._begin(state, classification, result)

        package = classification.package
        assert package is not None
        result.changeset_id = package.changeset_id or None

        from_session = False
        session = state.active_retrieval
        if package.retrieval_id and session is not None and session.retrieval_id == package.retrieval_id:
            try:
                progress = accept_batch(state, raw, package)
            except RetrievalSessionError as e:
                return self._lookup_error(uow, result, str(e))
            if not progress.complete:
                result.outcome = IntegrationOutcome.AWAITING_BATCH
                result.next_step = progress.next_fetch.responder_message if progress.next_fetch else None
                self._mark_awaiting(state, package)
                return result
            package = progress.package
            assert package is not None
            result.changeset_id = package.changeset_id or None
            from_session = True

        task = self._locate_task(state, package)
        if task is None and not from_session:
            missing = package.task_updates.task_id if package.task_updates else None
            message = str(TaskNotFoundError(missing or package.human_request_id))
            if classification.kind == PayloadKind.BATCH_CHUNK:
                message = f"No active retrieval session for {package.retrieval_id}; {message}"
            return self._lookup_error(uow, result, message)
        if classification.kind == PayloadKind.BATCH_CHUNK and not from_session:
            message = (
                f"Batch {package.batch_number} of retrieval {package.retrieval_id} has no active session; "
                f"applying it on its own"
            )
            logger.warning(message)
            result.warnings.append(message)
        if task is None:
            result.warnings.append("No task located for this response; task status not updated")
        else:
            result.task_id = task.task_id

        return self._apply(uow, package, task, result)

    # ------------------------------------------------------------------

    def _format_error(
        self, uow: ProjectUnitOfWork, result: IntegrationResult, classification: Classification
    ) -> IntegrationResult:
        uow.discard()
        result.outcome = IntegrationOutcome.FORMAT_ERROR
        result.diagnosis = classification.diagnosis
        message = f"Unrecognized message ({classification.diagnosis}): {classification.detail}"
        logger.error(message)
        result.warnings.append(message)
        return result

    def _lookup_error(self, uow: ProjectUnitOfWork, result: IntegrationResult, message: str) -> IntegrationResult:
        uow.discard()
        result.outcome = IntegrationOutcome.LOOKUP_ERROR
        logger.error(message)
        result.warnings.append(message)
        return result

    def _begin(self, state: ProjectState, classification: Classification, result: IntegrationResult) -> IntegrationResult:
        announcement = classification.preliminary
        assert announcement is not None
        instruction = begin_retrieval(state, announcement)
        result.outcome = IntegrationOutcome.AWAITING_BATCH
        result.changeset_id = announcement.changeset_id or None
        result.next_step = instruction.responder_message

        task = state.find_task_for_request(announcement.human_request_id)
        if task is not None:
            result.task_id = task.task_id
            if not is_archived(task):
                self.lifecycle.transition(task, TaskStatus.AWAITING_AI_BATCHES)
            result.task_status = TaskStatus(task.status).value
        return result

    def _mark_awaiting(self, state: ProjectState, package: ChangePackage) -> None:
        task = self._locate_task(state, package)
        if task is not None and not is_archived(task):
            self.lifecycle.transition(task, TaskStatus.AWAITING_AI_BATCHES)

    @staticmethod
    def _locate_task(state: ProjectState, package: ChangePackage) -> Task | None:
        if package.task_updates is not None and package.task_updates.task_id:
            task = state.find_task(package.task_updates.task_id)
            if task is not None:
                return task
        return state.find_task_for_request(package.human_request_id)

    def _backup_paths(self, root: Path, package: ChangePackage) -> list[str]:
        paths = []
        for change in package.file_changes:
            try:
                full_path = resolve_in_project(root, change.path)
            except UnsafePathError:
                continue
            if full_path.is_file():
                paths.append(change.path)
        return paths

    def _apply(
        self,
        uow: ProjectUnitOfWork,
        package: ChangePackage,
        task: Task | None,
        result: IntegrationResult,
    ) -> IntegrationResult:
        state = uow.state
        task_id = task.task_id if task else None
        result.overall_comment = package.overall_comment

        if package.file_changes:
            if uow.simulate:
                result.warnings.append("Simulation: a backup would be created before applying changes")
            else:
                backups = BackupManager(uow.root, self.config.project_file_name, self.config.backups_dir_name)
                try:
                    result.backup_id = backups.create_backup(
                        self._backup_paths(uow.root, package),
                        task_id=task_id,
                        changeset_id=package.changeset_id or None,
                    )
                except BackupError as e:
                    logger.error(str(e))
                    result.warnings.append(str(e))
                    if not self.confirm_without_backup(str(e)):
                        uow.discard()
                        result.outcome = IntegrationOutcome.ABORTED
                        result.next_step = "Integration aborted; fix the backup problem and integrate the message again"
                        return result
                    result.warnings.append("Proceeding without a backup")

        applier = ChangeApplier(uow.root, self.resolver, simulate=uow.simulate)
        for change in package.file_changes:
            result.resources.append(applier.apply(state, change, task_id))

        if task is not None:
            self._update_task(task, package, result)

        for suggestion in package.roadmap_suggestions:
            if suggestion not in state.roadmap:
                state.roadmap.append(suggestion)

        if result.resources or package.task_updates is not None:
            result.outcome = IntegrationOutcome.APPLIED
        else:
            result.outcome = IntegrationOutcome.NO_CHANGES

        if result.needs_review:
            result.next_step = "Review resources marked for manual merge, then mark them resolved"
        for resource in result.resources:
            if resource.outcome == ChangeOutcome.FAILED:
                result.warnings.extend(resource.messages)
            elif resource.error:
                result.warnings.append(resource.error)
        logger.info(
            f"Integrated changeset {package.changeset_id or 'N/A'}: "
            f"{len(result.resources)} change(s), outcome {result.outcome.value}"
        )
        return result

    def _update_task(self, task: Task, package: ChangePackage, result: IntegrationResult) -> None:
        if is_archived(task):
            message = f"Task {task.task_id} is archived; its status was left unchanged"
            logger.warning(message)
            result.warnings.append(message)
            result.task_status = TaskStatus.ARCHIVED.value
            return

        update = package.task_updates
        status = resolve_response_status(update.new_status if update else None, result.needs_review)
        if update is not None and update.new_status and status.value != update.new_status.strip().lower():
            result.warnings.append(
                f"Task {task.task_id}: requested status '{update.new_status}' recorded as '{status.value}'"
            )

        task.status = status
        if update is not None and update.ai_notes:
            task.ai_notes = update.ai_notes
        task.touch()
        if update is not None and update.updated_at is not None:
            task.updated_at = update.updated_at
        result.task_status = status.value
        logger.info(f"Task {task.task_id} is now {status.value}")


__all__ = [
    "ChangeIntegrator",
    "IntegrationOutcome",
    "IntegrationResult",
    "decline_without_backup",
]
