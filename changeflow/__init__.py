"""changeflow: change-integration engine for file-based work exchange.

Tracks tasks and the resources they touch in a single project document
(changeflow.json) and exchanges them with an external responder:

- Outbound: requests split into resumable, size-bounded parts
- Inbound: multi-batch responses reassembled, conflicts with local edits
  detected and resolved, every destructive write guarded by a backup
"""

__version__ = "0.1.0"

# Project state
from .project_schema import (
    ProjectState,
    RelatedResource,
    Resource,
    ResourceStatus,
    ResourceType,
    Task,
    TaskStatus,
)
from .project_store import ProjectStore, ProjectUnitOfWork

# Outbound
from .splitter import PreparedPart, RequestSplitter

# Inbound
from .integration import (
    ChangeIntegrator,
    ConflictChoice,
    FixedResolver,
    IntegrationOutcome,
    IntegrationResult,
    InteractiveResolver,
    classify_payload,
)

# Supporting services
from .backup import BackupManager, RestoreReport
from .resolution import ResolveResult, mark_resolved
from .task_lifecycle import TaskLifecycle, add_task_note, archive_task
from .ignore import IgnoreRules

# Config & errors
from .config import EngineConfig
from .errors import ChangeflowError

__all__ = [
    # Project state
    "ProjectState",
    "RelatedResource",
    "Resource",
    "ResourceStatus",
    "ResourceType",
    "Task",
    "TaskStatus",
    "ProjectStore",
    "ProjectUnitOfWork",
    # Outbound
    "PreparedPart",
    "RequestSplitter",
    # Inbound
    "ChangeIntegrator",
    "ConflictChoice",
    "FixedResolver",
    "IntegrationOutcome",
    "IntegrationResult",
    "InteractiveResolver",
    "classify_payload",
    # Supporting services
    "BackupManager",
    "RestoreReport",
    "ResolveResult",
    "mark_resolved",
    "TaskLifecycle",
    "add_task_note",
    "archive_task",
    "IgnoreRules",
    # Config & errors
    "EngineConfig",
    "ChangeflowError",
]
