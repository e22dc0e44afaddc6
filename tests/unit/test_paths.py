"""Tests for project-relative path handling."""

import pytest

from changeflow.errors import UnsafePathError
from changeflow.paths import resolve_in_project, to_project_path


class TestToProjectPath:
    """Tests for to_project_path."""

    def test_relative_path(self, project_root):
        """Relative input is taken relative to the root."""
        assert to_project_path(project_root, "src/app.py") == "src/app.py"

    def test_absolute_path_under_root(self, project_root):
        """Absolute input under the root is made relative."""
        assert to_project_path(project_root, project_root / "docs" / "a.md") == "docs/a.md"

    def test_normalizes_dots(self, project_root):
        """Redundant segments are collapsed."""
        assert to_project_path(project_root, "src/./lib/../app.py") == "src/app.py"

    def test_outside_root_rejected(self, project_root):
        """Paths escaping the root raise UnsafePathError."""
        with pytest.raises(UnsafePathError):
            to_project_path(project_root, "../elsewhere.txt")

    def test_root_itself_rejected(self, project_root):
        """The root does not name a resource."""
        with pytest.raises(UnsafePathError):
            to_project_path(project_root, ".")


class TestResolveInProject:
    """Tests for resolve_in_project."""

    def test_resolves_under_root(self, project_root):
        assert resolve_in_project(project_root, "a/b.txt") == project_root / "a" / "b.txt"

    def test_backslashes_accepted(self, project_root):
        """Windows-style separators from the responder are normalised."""
        assert resolve_in_project(project_root, "a\\b.txt") == project_root / "a" / "b.txt"

    @pytest.mark.parametrize("bad", ["../escape.txt", "a/../../escape.txt", "/etc/passwd", ""])
    def test_unsafe_paths_rejected(self, project_root, bad):
        """Absolute, parent-escaping and empty paths are refused."""
        with pytest.raises(UnsafePathError):
            resolve_in_project(project_root, bad)
