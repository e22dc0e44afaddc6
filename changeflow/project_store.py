"""
Project store for changeflow.

Loads and saves changeflow.json at a project root and provides the
load → mutate → save unit of work every operation runs inside.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .errors import ProjectNotFoundError, ProjectStateError
from .project_schema import ProjectState

logger = logging.getLogger(__name__)

PROJECT_FILE_NAME = "changeflow.json"


class ProjectStore:
    """
    Reads and writes the project document for one project root.

    The document is rewritten wholesale on every save. There is no locking:
    concurrent invocations against the same root are not supported.
    """

    def __init__(self, root: Path | str, file_name: str = PROJECT_FILE_NAME):
        """
        Initialize project store.

        Args:
            root: Project root directory
            file_name: Name of the project document inside the root
        """
        self.root = Path(root).resolve()
        self.file_name = file_name

    @property
    def path(self) -> Path:
        """Path of the project document."""
        return self.root / self.file_name

    def exists(self) -> bool:
        return self.path.exists()

    def initialize(self, project_name: str | None = None, branch: str = "develop") -> ProjectState:
        """
        Write a fresh, empty project document.

        Raises:
            ProjectStateError: If a document already exists
        """
        if self.exists():
            raise ProjectStateError(f"Project already initialized: {self.path}")
        state = ProjectState(
            project_name=project_name or self.root.name,
            current_branch=branch,
        )
        self.save(state)
        return state

    def load(self) -> ProjectState:
        """
        Load the project document.

        Raises:
            ProjectNotFoundError: If the document does not exist
            ProjectStateError: If it cannot be read or parsed
        """
        if not self.exists():
            raise ProjectNotFoundError(f"No {self.file_name} found in {self.root}")
        try:
            return ProjectState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise ProjectStateError(f"Could not read {self.path}: {e}") from e

    def save(self, state: ProjectState) -> Path:
        """
        Atomically write the project document.

        Uses write-to-temp-then-rename so a failed write never leaves a
        truncated document behind.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix="changeflow_",
            dir=self.root,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
            os.replace(temp_path, self.path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise ProjectStateError(f"Could not save {self.path}: {e}") from e
        return self.path

    def unit_of_work(self, simulate: bool = False) -> "ProjectUnitOfWork":
        """Open a load → mutate → save unit of work."""
        return ProjectUnitOfWork(self, simulate=simulate)


class ProjectUnitOfWork:
    """
    One load → mutate → save cycle against the project document.

    Usage:
        with store.unit_of_work() as uow:
            task = uow.state.find_task("task_1")
            ...

    The state is saved when the block exits without an exception, unless the
    unit runs in simulation mode or discard() was called. In simulation mode
    the loaded state is an isolated in-memory copy that is never persisted.
    """

    def __init__(self, store: ProjectStore, simulate: bool = False):
        self.store = store
        self.simulate = simulate
        self._state: ProjectState | None = None
        self._discarded = False

    @property
    def root(self) -> Path:
        return self.store.root

    @property
    def state(self) -> ProjectState:
        if self._state is None:
            raise ProjectStateError("Unit of work is not open")
        return self._state

    @property
    def discarded(self) -> bool:
        return self._discarded

    def discard(self) -> None:
        """Drop every mutation made in this unit."""
        self._discarded = True

    def __enter__(self) -> "ProjectUnitOfWork":
        self._state = self.store.load()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            return
        if self.simulate:
            logger.info("Simulation: project document not saved")
            return
        if self._discarded:
            logger.info("Unit of work discarded: project document not saved")
            return
        self.store.save(self.state)


__all__ = [
    "PROJECT_FILE_NAME",
    "ProjectStore",
    "ProjectUnitOfWork",
]
