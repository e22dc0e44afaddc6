"""Tests for confirming manual merges."""

import pytest

from changeflow.errors import InvalidTaskStateError, UnsafePathError
from changeflow.hashing import hash_bytes
from changeflow.integration.conflicts import build_conflict_block
from changeflow.project_schema import ProjectState, Resource, ResourceStatus
from changeflow.resolution import has_conflict_markers, mark_resolved


def merge_state(path="a.txt"):
    return ProjectState(
        resources=[Resource(path=path, status=ResourceStatus.NEEDS_MANUAL_MERGE, last_sent_hash="f" * 64)]
    )


class TestConflictMarkers:
    def test_detects_generated_block(self):
        block = build_conflict_block(b"mine\n", b"theirs\n", "task_1").decode("utf-8")
        assert has_conflict_markers(block)

    def test_plain_text(self):
        assert not has_conflict_markers("a = 1\n# ======= not a marker line\n")


class TestMarkResolved:
    """Tests for mark_resolved."""

    def test_clean_file_is_merged(self, project_root, write_file):
        write_file("a.txt", b"merged by hand\n")
        state = merge_state()

        result = mark_resolved(state, project_root, "a.txt")

        resource = state.find_resource("a.txt")
        assert result.resolved
        assert resource.status == ResourceStatus.MERGED
        assert resource.local_hash == hash_bytes(b"merged by hand\n")
        assert resource.last_sent_hash is None

    def test_absolute_path_accepted(self, project_root, write_file):
        full_path = write_file("a.txt", b"ok\n")
        result = mark_resolved(merge_state(), project_root, str(full_path))
        assert result.resolved
        assert result.path == "a.txt"

    def test_markers_block_resolution(self, project_root, write_file):
        write_file("a.txt", build_conflict_block(b"mine", b"theirs", "task_1"))
        state = merge_state()

        result = mark_resolved(state, project_root, "a.txt")

        assert not result.resolved
        assert result.warnings
        assert state.find_resource("a.txt").status == ResourceStatus.NEEDS_MANUAL_MERGE

    def test_markers_allowed_when_confirmed(self, project_root, write_file):
        write_file("a.txt", build_conflict_block(b"mine", b"theirs", "task_1"))
        state = merge_state()

        result = mark_resolved(state, project_root, "a.txt", allow_markers=True)

        assert result.resolved
        assert result.warnings
        assert state.find_resource("a.txt").status == ResourceStatus.MERGED

    def test_missing_file(self, project_root):
        state = merge_state()
        result = mark_resolved(state, project_root, "a.txt")
        assert not result.resolved
        assert state.find_resource("a.txt").status == ResourceStatus.NEEDS_MANUAL_MERGE

    def test_untracked_resource(self, project_root, write_file):
        write_file("b.txt", b"x")
        with pytest.raises(InvalidTaskStateError):
            mark_resolved(merge_state(), project_root, "b.txt")

    def test_resource_not_awaiting_merge(self, project_root, write_file):
        write_file("a.txt", b"x")
        state = ProjectState(resources=[Resource(path="a.txt", status=ResourceStatus.AI_MODIFIED)])
        with pytest.raises(InvalidTaskStateError):
            mark_resolved(state, project_root, "a.txt")

    def test_path_outside_project(self, project_root):
        with pytest.raises(UnsafePathError):
            mark_resolved(merge_state(), project_root, "../outside.txt")
