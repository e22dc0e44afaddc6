"""Tests for BackupManager."""

import json

import pytest

from changeflow.backup import BACKUP_FILES_DIR, BACKUP_INFO_FILE_NAME, BackupManager
from changeflow.errors import BackupError
from changeflow.project_store import PROJECT_FILE_NAME


class TestCreateBackup:
    """Tests for create_backup."""

    @pytest.fixture
    def manager(self, store):
        return BackupManager(store.root)

    def test_captures_document_and_files(self, manager, write_file, project_root):
        write_file("a.txt", b"alpha")
        write_file("src/b.py", b"beta")

        backup_id = manager.create_backup(["a.txt", "src/b.py"], task_id="task_1", changeset_id="cs_1")
        backup_dir = project_root / ".changeflow_backups" / backup_id

        assert (backup_dir / PROJECT_FILE_NAME).exists()
        assert (backup_dir / BACKUP_FILES_DIR / "a.txt").read_bytes() == b"alpha"
        assert (backup_dir / BACKUP_FILES_DIR / "src" / "b.py").read_bytes() == b"beta"

        info = json.loads((backup_dir / BACKUP_INFO_FILE_NAME).read_text())
        assert info["backup_id"] == backup_id
        assert info["task_id"] == "task_1"
        assert info["changeset_id"] == "cs_1"
        assert info["paths"] == ["a.txt", "src/b.py"]

    def test_manifest_lists_only_captured_paths(self, manager, write_file):
        """Paths missing on disk are not in the manifest."""
        write_file("a.txt", b"alpha")
        backup_id = manager.create_backup(["a.txt", "missing.txt"])
        assert manager.read_info(backup_id).paths == ["a.txt"]

    def test_ids_are_unique_and_sortable(self, manager):
        first = manager.create_backup([])
        second = manager.create_backup([])
        assert first != second
        assert len(first) == 20 and first.isdigit()
        assert sorted([second, first]) == [first, second]

    def test_failure_removes_partial_backup(self, manager, project_root):
        with pytest.raises(BackupError):
            manager.create_backup(["../outside.txt"])
        assert list((project_root / ".changeflow_backups").iterdir()) == []


class TestRestoreBackup:
    """Tests for restore_backup."""

    def test_restores_exact_bytes(self, store, write_file, project_root):
        manager = BackupManager(store.root)
        write_file("a.txt", b"before")
        write_file("bin.dat", bytes(range(256)))
        document_before = store.path.read_bytes()
        backup_id = manager.create_backup(["a.txt", "bin.dat"])

        write_file("a.txt", b"after")
        (project_root / "bin.dat").unlink()
        with store.unit_of_work() as uow:
            uow.state.roadmap.append("changed")

        report = manager.restore_backup(backup_id)

        assert report.success
        assert (project_root / "a.txt").read_bytes() == b"before"
        assert (project_root / "bin.dat").read_bytes() == bytes(range(256))
        assert store.path.read_bytes() == document_before
        assert sorted(report.restored) == sorted([PROJECT_FILE_NAME, "a.txt", "bin.dat"])

    def test_backup_is_kept(self, store, write_file):
        manager = BackupManager(store.root)
        write_file("a.txt", b"x")
        backup_id = manager.create_backup(["a.txt"])
        manager.restore_backup(backup_id)
        assert manager.latest_backup_id() == backup_id

    def test_missing_captured_file_is_warning(self, store, write_file, project_root):
        manager = BackupManager(store.root)
        write_file("a.txt", b"x")
        backup_id = manager.create_backup(["a.txt"])
        (project_root / ".changeflow_backups" / backup_id / BACKUP_FILES_DIR / "a.txt").unlink()

        report = manager.restore_backup(backup_id)
        assert report.success
        assert any("a.txt" in w for w in report.warnings)

    def test_unknown_id(self, store):
        report = BackupManager(store.root).restore_backup("20000101000000000000")
        assert not report.success
        assert report.warnings

    def test_corrupt_manifest(self, store, project_root):
        manager = BackupManager(store.root)
        backup_id = manager.create_backup([])
        (project_root / ".changeflow_backups" / backup_id / BACKUP_INFO_FILE_NAME).write_text("{")
        assert not manager.restore_backup(backup_id).success


class TestListBackups:
    """Tests for list_backups."""

    def test_empty(self, store):
        manager = BackupManager(store.root)
        assert manager.list_backups() == []
        assert manager.latest_backup_id() is None

    def test_newest_first(self, store):
        manager = BackupManager(store.root)
        ids = [manager.create_backup([]) for _ in range(3)]
        assert [b.backup_id for b in manager.list_backups()] == list(reversed(ids))
        assert manager.latest_backup_id() == ids[-1]
