"""Inbound side of the engine: classify, reassemble and apply responder messages."""

from .classifier import Classification, PayloadKind, classify_payload
from .conflicts import (
    ChangeApplier,
    ChangeOutcome,
    ConflictChoice,
    ConflictContext,
    ConflictResolver,
    FixedResolver,
    InteractiveResolver,
    ResourceResult,
    SimulatedResolver,
    resolver_for_policy,
)
from .integrator import ChangeIntegrator, IntegrationOutcome, IntegrationResult
from .retrieval import BatchProgress, FetchInstruction, accept_batch, begin_retrieval, consolidate_batches

__all__ = [
    # Classification
    "Classification",
    "PayloadKind",
    "classify_payload",
    # Retrieval sessions
    "BatchProgress",
    "FetchInstruction",
    "accept_batch",
    "begin_retrieval",
    "consolidate_batches",
    # Conflicts
    "ChangeApplier",
    "ChangeOutcome",
    "ConflictChoice",
    "ConflictContext",
    "ConflictResolver",
    "FixedResolver",
    "InteractiveResolver",
    "ResourceResult",
    "SimulatedResolver",
    "resolver_for_policy",
    # Orchestration
    "ChangeIntegrator",
    "IntegrationOutcome",
    "IntegrationResult",
]
