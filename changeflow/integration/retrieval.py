"""
Retrieval session state machine.

Tracks a multi-batch inbound transfer:

    Absent → Active(received=k, total=n) → Absent

The session lives on ProjectState.active_retrieval and is cleared once every
batch has arrived and the batches are consolidated into one package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import RetrievalSessionError
from ..payloads import ChangePackage, FileChange, PreliminaryAnnouncement, TaskUpdate
from ..project_schema import ProjectState, RetrievalSession
from .classifier import PayloadKind, classify_payload

logger = logging.getLogger(__name__)

# A bare package carrying retrieval metadata also counts as a batch
_BATCH_KINDS = (PayloadKind.BATCH_CHUNK, PayloadKind.DIRECT_PACKAGE)


@dataclass
class FetchInstruction:
    """Advisory instruction: fetch batch N of retrieval G."""

    retrieval_id: str
    batch_number: int
    total_batches: int

    @property
    def message(self) -> str:
        return (
            f"Fetch batch {self.batch_number} of {self.total_batches} "
            f"for retrieval {self.retrieval_id}"
        )

    @property
    def responder_message(self) -> str:
        """Text to send to the responder to obtain the batch."""
        return (
            f"Please provide batch {self.batch_number} for retrievalGuid "
            f"'{self.retrieval_id}'."
        )


@dataclass
class BatchProgress:
    """Outcome of accepting one batch."""

    received: int
    total: int
    next_fetch: FetchInstruction | None = None
    package: ChangePackage | None = None

    @property
    def complete(self) -> bool:
        return self.package is not None


def begin_retrieval(state: ProjectState, announcement: PreliminaryAnnouncement) -> FetchInstruction:
    """
    Open a retrieval session for a preliminary announcement.

    Re-announcing the active retrieval keeps its progress. A different
    retrieval id replaces the active session.
    """
    retrieval_id = announcement.retrieval_id or ""
    active = state.active_retrieval

    if active is not None and active.retrieval_id == retrieval_id:
        logger.info(f"Retrieval {retrieval_id} already active ({active.received_batches}/{active.total_batches})")
        active.human_request_id = active.human_request_id or announcement.human_request_id
        return FetchInstruction(
            retrieval_id=retrieval_id,
            batch_number=active.received_batches + 1,
            total_batches=active.total_batches,
        )

    if active is not None:
        logger.warning(
            f"Replacing active retrieval {active.retrieval_id} "
            f"({active.received_batches}/{active.total_batches} received) with {retrieval_id}"
        )

    state.active_retrieval = RetrievalSession(
        retrieval_id=retrieval_id,
        changeset_id=announcement.changeset_id,
        human_request_id=announcement.human_request_id,
        total_batches=announcement.number_of_batches,
    )
    logger.info(f"Response is batched: {announcement.number_of_batches} batch(es), retrieval {retrieval_id}")
    return FetchInstruction(
        retrieval_id=retrieval_id,
        batch_number=1,
        total_batches=announcement.number_of_batches,
    )


def accept_batch(state: ProjectState, raw: str, package: ChangePackage) -> BatchProgress:
    """
    Record one batch against the active session.

    Args:
        state: Project state holding the session
        raw: Raw batch message, stored for consolidation
        package: The batch's change package (with retrieval metadata)

    Returns:
        Progress; carries the consolidated package once complete

    Raises:
        RetrievalSessionError: Retrieval id mismatch or out-of-order batch
    """
    session = state.active_retrieval
    if session is None or session.retrieval_id != package.retrieval_id:
        raise RetrievalSessionError(f"No active retrieval session for {package.retrieval_id}")

    expected = session.received_batches + 1
    if package.batch_number and package.batch_number != expected:
        raise RetrievalSessionError(
            f"Batch {package.batch_number} received for retrieval {session.retrieval_id}, "
            f"expected batch {expected}"
        )

    session.batch_payloads.append(raw)
    session.received_batches += 1
    logger.info(f"Batch {session.received_batches}/{session.total_batches} received for {session.retrieval_id}")

    if session.received_batches < session.total_batches:
        return BatchProgress(
            received=session.received_batches,
            total=session.total_batches,
            next_fetch=FetchInstruction(
                retrieval_id=session.retrieval_id,
                batch_number=session.received_batches + 1,
                total_batches=session.total_batches,
            ),
        )

    logger.info(f"All batches received for {session.retrieval_id}, consolidating")
    consolidated = consolidate_batches(session.batch_payloads)
    consolidated = consolidated.model_copy(
        update={
            "changeset_id": consolidated.changeset_id or session.changeset_id or package.changeset_id,
            "human_request_id": (
                consolidated.human_request_id or package.human_request_id or session.human_request_id
            ),
            "retrieval_id": session.retrieval_id,
        }
    )
    received, total = session.received_batches, session.total_batches
    state.active_retrieval = None
    return BatchProgress(received=received, total=total, package=consolidated)


def consolidate_batches(payloads: list[str]) -> ChangePackage:
    """
    Merge stored batch messages into one change package.

    File changes are deduplicated by path; a later batch overrides an earlier
    one for the same path. The last non-empty task-update block wins.
    """
    packages: list[ChangePackage] = []
    for index, raw in enumerate(payloads, start=1):
        classification = classify_payload(raw)
        if classification.kind not in _BATCH_KINDS or classification.package is None:
            logger.warning(f"Stored batch #{index} could not be re-read; skipping it")
            continue
        packages.append(classification.package)

    packages.sort(key=lambda p: p.batch_number or 0)

    changes: dict[str, FileChange] = {}
    task_update: TaskUpdate | None = None
    changeset_id = ""
    human_request_id: str | None = None
    roadmap: list[str] = []
    comments: list[str] = []

    for package in packages:
        for change in package.file_changes:
            changes[change.path] = change
        if package.task_updates is not None and not package.task_updates.is_empty:
            task_update = package.task_updates
        changeset_id = changeset_id or package.changeset_id
        human_request_id = human_request_id or package.human_request_id
        roadmap.extend(package.roadmap_suggestions)
        if package.overall_comment:
            comments.append(package.overall_comment)

    return ChangePackage(
        changeset_id=changeset_id,
        human_request_id=human_request_id,
        task_updates=task_update,
        file_changes=list(changes.values()),
        roadmap_suggestions=roadmap,
        overall_comment="\n".join(comments) or None,
    )


def fetch_instruction(state: ProjectState, retrieval_id: str, batch_number: int) -> FetchInstruction:
    """
    Build the instruction for fetching a batch of the active retrieval.

    Raises:
        RetrievalSessionError: If retrieval_id is not the active session
    """
    session = state.active_retrieval
    if session is None or session.retrieval_id != retrieval_id:
        raise RetrievalSessionError(f"No active retrieval session for {retrieval_id}")
    if batch_number < 1 or batch_number > session.total_batches:
        raise RetrievalSessionError(
            f"Batch {batch_number} is outside 1..{session.total_batches} for {retrieval_id}"
        )
    return FetchInstruction(
        retrieval_id=retrieval_id,
        batch_number=batch_number,
        total_batches=session.total_batches,
    )


__all__ = [
    "BatchProgress",
    "FetchInstruction",
    "accept_batch",
    "begin_retrieval",
    "consolidate_batches",
    "fetch_instruction",
]
