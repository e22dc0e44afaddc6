"""
Ignore rules for outbound requests.

Gitignore-style matching via the pathspec library: built-in defaults first,
then the project's ignore file, so a ``!pattern`` line there can re-include a
path the defaults exclude.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pathspec

from .project_store import PROJECT_FILE_NAME

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".changeflowignore"
BACKUPS_DIR_NAME = ".changeflow_backups"

DEFAULT_IGNORE_PATTERNS = [
    ".git/",
    ".vs/",
    ".vscode/",
    ".idea/",
    "bin/",
    "obj/",
    "**/bin/",
    "**/obj/",
    "__pycache__/",
    "*.lock",
    "*.suo",
    "*.user",
]


def _read_patterns(ignore_path: Path) -> list[str]:
    patterns = []
    for line in ignore_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line)
    return patterns


class IgnoreRules:
    """Compiled ignore patterns for one project root."""

    def __init__(self, patterns: list[str]):
        self.patterns = list(patterns)
        self._spec = pathspec.PathSpec.from_lines("gitignore", self.patterns)

    @classmethod
    def load(
        cls,
        root: Path,
        ignore_file_name: str = IGNORE_FILE_NAME,
        project_file_name: str = PROJECT_FILE_NAME,
        backups_dir_name: str = BACKUPS_DIR_NAME,
    ) -> "IgnoreRules":
        """Build rules from the defaults and ``<root>/<ignore_file_name>``."""
        patterns = [f"{backups_dir_name}/", f"/{project_file_name}"]
        patterns.extend(DEFAULT_IGNORE_PATTERNS)

        ignore_path = Path(root) / ignore_file_name
        if ignore_path.is_file():
            try:
                patterns.extend(_read_patterns(ignore_path))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read {ignore_path}: {e}; using default ignore rules")
        return cls(patterns)

    def is_ignored(self, project_path: str) -> bool:
        """Check a ``/``-separated project-relative path."""
        return self._spec.match_file(project_path.replace("\\", "/"))


__all__ = [
    "BACKUPS_DIR_NAME",
    "DEFAULT_IGNORE_PATTERNS",
    "IGNORE_FILE_NAME",
    "IgnoreRules",
]
