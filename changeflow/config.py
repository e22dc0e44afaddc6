"""
Configuration management for changeflow.

Engine settings live in ~/.changeflow/config.json. Per-project size budgets
are stored in the project document instead (ProjectSettings).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv

from .ignore import BACKUPS_DIR_NAME, IGNORE_FILE_NAME
from .project_store import PROJECT_FILE_NAME

logger = logging.getLogger(__name__)

CONFLICT_POLICIES = ("prompt", "overwrite", "skip", "merge")

ENV_CONFLICT_POLICY = "CHANGEFLOW_CONFLICT_POLICY"
ENV_MAX_REQUEST_BYTES = "CHANGEFLOW_MAX_REQUEST_BYTES"


def default_config_path() -> Path:
    return Path.home() / ".changeflow" / "config.json"


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


@dataclass
class EngineConfig:
    """
    Engine configuration.

    Conflict policies:
    - "prompt": Ask the operator for every conflict
    - "overwrite": Always apply the responder's content
    - "skip": Leave local content, mark for manual merge
    - "merge": Write conflict markers into the file
    """

    project_file_name: str = PROJECT_FILE_NAME
    backups_dir_name: str = BACKUPS_DIR_NAME
    ignore_file_name: str = IGNORE_FILE_NAME
    conflict_policy: Literal["prompt", "overwrite", "skip", "merge"] = "prompt"
    default_branch: str = "develop"
    max_request_bytes_override: int | None = None

    def __post_init__(self):
        if self.conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(
                f"Unknown conflict policy '{self.conflict_policy}', expected one of {', '.join(CONFLICT_POLICIES)}"
            )
        if self.max_request_bytes_override is not None and self.max_request_bytes_override <= 0:
            raise ValueError("max_request_bytes_override must be positive")

    @classmethod
    def load(cls, path: Path | None = None, project_root: Path | None = None) -> "EngineConfig":
        """
        Load configuration from file, then apply environment overrides.

        A missing or unreadable file yields the defaults. When project_root is
        given, ``<project_root>/.env`` is loaded first.
        """
        if path is None:
            path = default_config_path()

        data: dict[str, Any] = {}
        if path.exists():
            try:
                with open(path) as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    data = _filter_dataclass_fields(loaded, cls)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Could not read {path}: {e}; using defaults")

        if project_root is not None:
            env_file = Path(project_root) / ".env"
            if env_file.exists():
                load_dotenv(env_file)

        policy = os.getenv(ENV_CONFLICT_POLICY)
        if policy:
            data["conflict_policy"] = policy.strip().lower()

        max_bytes = os.getenv(ENV_MAX_REQUEST_BYTES)
        if max_bytes:
            try:
                data["max_request_bytes_override"] = int(max_bytes)
            except ValueError:
                logger.warning(f"Ignoring {ENV_MAX_REQUEST_BYTES}={max_bytes!r}: not an integer")

        return cls(**data)

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = default_config_path()

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)


__all__ = [
    "CONFLICT_POLICIES",
    "ENV_CONFLICT_POLICY",
    "ENV_MAX_REQUEST_BYTES",
    "EngineConfig",
    "default_config_path",
]
