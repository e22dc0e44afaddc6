"""Project-relative resource paths."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath

from .errors import UnsafePathError


def to_project_path(root: Path, path: str | Path) -> str:
    """
    Normalise ``path`` to a ``/``-separated path relative to ``root``.

    Relative inputs are taken relative to ``root``.

    Raises:
        UnsafePathError: If the path lies outside the project root
    """
    root = Path(root).resolve()
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    candidate = Path(os.path.normpath(candidate))
    try:
        relative = candidate.relative_to(root)
    except ValueError:
        raise UnsafePathError(f"Path is outside the project: {path}") from None
    if str(relative) in ("", "."):
        raise UnsafePathError(f"Path does not name a resource: {path}")
    return relative.as_posix()


def resolve_in_project(root: Path, project_path: str) -> Path:
    """
    Map a project-relative path back to an absolute path under ``root``.

    Raises:
        UnsafePathError: For absolute paths or paths escaping the root
    """
    pure = PurePosixPath(project_path.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or not pure.parts:
        raise UnsafePathError(f"Unsafe resource path: {project_path}")
    return Path(root).resolve().joinpath(*pure.parts)


__all__ = ["resolve_in_project", "to_project_path"]
