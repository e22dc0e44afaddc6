"""
Backup Manager for changeflow.

Manages immutable backup units in <root>/.changeflow_backups/{backup_id}/:

    {backup_id}/
        changeflow.json      copy of the project document
        files/...            captured resource bytes, by project path
        backup_info.json     manifest (BackupInfo)
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from .errors import BackupError, UnsafePathError
from .ignore import BACKUPS_DIR_NAME
from .paths import resolve_in_project
from .project_schema import BackupInfo, utc_now
from .project_store import PROJECT_FILE_NAME

logger = logging.getLogger(__name__)

BACKUP_INFO_FILE_NAME = "backup_info.json"
BACKUP_FILES_DIR = "files"


@dataclass
class RestoreReport:
    """Result of restoring one backup."""

    backup_id: str
    success: bool
    restored: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class BackupManager:
    """Creates, lists and restores backups for one project root."""

    def __init__(
        self,
        root: Path,
        project_file_name: str = PROJECT_FILE_NAME,
        backups_dir_name: str = BACKUPS_DIR_NAME,
    ):
        """
        Initialize backup manager.

        Args:
            root: Project root directory
            project_file_name: Name of the project document
            backups_dir_name: Directory (under root) holding backup units
        """
        self.root = Path(root).resolve()
        self.project_file_name = project_file_name
        self.backups_dir = self.root / backups_dir_name

    def _backup_dir(self, backup_id: str) -> Path:
        if not backup_id or "/" in backup_id or "\\" in backup_id or backup_id in (".", ".."):
            raise BackupError(f"Invalid backup id: {backup_id!r}")
        return self.backups_dir / backup_id

    def _allocate_dir(self) -> tuple[str, Path]:
        """Claim a fresh, unique backup directory named by UTC timestamp."""
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        while True:
            backup_id = utc_now().strftime("%Y%m%d%H%M%S%f")
            backup_dir = self.backups_dir / backup_id
            try:
                backup_dir.mkdir()
            except FileExistsError:
                continue
            return backup_id, backup_dir

    def create_backup(
        self,
        paths: list[str],
        task_id: str | None = None,
        changeset_id: str | None = None,
        notes: str | None = None,
    ) -> str:
        """
        Capture the project document and the current bytes of ``paths``.

        Paths that do not exist on disk are not captured and are left out of
        the manifest.

        Returns:
            The new backup id

        Raises:
            BackupError: If the backup could not be written completely
        """
        try:
            backup_id, backup_dir = self._allocate_dir()
        except OSError as e:
            raise BackupError(f"Could not create backup directory in {self.backups_dir}: {e}") from e

        try:
            document = self.root / self.project_file_name
            if document.exists():
                shutil.copy2(document, backup_dir / self.project_file_name)

            captured: list[str] = []
            for project_path in dict.fromkeys(paths):
                source = resolve_in_project(self.root, project_path)
                if not source.is_file():
                    continue
                target = backup_dir / BACKUP_FILES_DIR / project_path
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
                captured.append(project_path)

            info = BackupInfo(
                backup_id=backup_id,
                created_at=utc_now(),
                task_id=task_id,
                changeset_id=changeset_id,
                paths=captured,
                notes=notes or f"Backup before integrating changes for task '{task_id or 'N/A'}'.",
            )
            (backup_dir / BACKUP_INFO_FILE_NAME).write_text(info.model_dump_json(indent=2), encoding="utf-8")
        except (OSError, UnsafePathError) as e:
            shutil.rmtree(backup_dir, ignore_errors=True)
            raise BackupError(f"Could not create backup {backup_id}: {e}") from e

        logger.info(f"Backup {backup_id} created ({len(captured)} file(s))")
        return backup_id

    def read_info(self, backup_id: str) -> BackupInfo:
        """
        Read a backup manifest.

        Raises:
            BackupError: Unknown id or unreadable manifest
        """
        info_path = self._backup_dir(backup_id) / BACKUP_INFO_FILE_NAME
        if not info_path.is_file():
            raise BackupError(f"Backup not found: {backup_id}")
        try:
            return BackupInfo.model_validate_json(info_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise BackupError(f"Invalid backup manifest for {backup_id}: {e}") from e

    def restore_backup(self, backup_id: str) -> RestoreReport:
        """
        Copy the document and every manifested path back into the project.

        The backup itself is kept.
        """
        report = RestoreReport(backup_id=backup_id, success=False)
        try:
            info = self.read_info(backup_id)
        except BackupError as e:
            logger.error(str(e))
            report.warnings.append(str(e))
            return report

        backup_dir = self._backup_dir(backup_id)
        try:
            document = backup_dir / self.project_file_name
            if document.is_file():
                shutil.copy2(document, self.root / self.project_file_name)
                report.restored.append(self.project_file_name)
            else:
                report.warnings.append(f"{self.project_file_name} not found in backup {backup_id}")

            for project_path in info.paths:
                source = backup_dir / BACKUP_FILES_DIR / project_path
                if not source.is_file():
                    report.warnings.append(f"{project_path} not found in backup {backup_id}")
                    continue
                target = resolve_in_project(self.root, project_path)
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
                report.restored.append(project_path)
        except (OSError, UnsafePathError) as e:
            logger.error(f"Restore of {backup_id} failed: {e}")
            report.warnings.append(f"Restore failed: {e}")
            return report

        for warning in report.warnings:
            logger.warning(warning)
        logger.info(f"Restored backup {backup_id} ({len(report.restored)} file(s))")
        report.success = True
        return report

    def list_backups(self) -> list[BackupInfo]:
        """All readable manifests, newest first."""
        if not self.backups_dir.is_dir():
            return []

        backups = []
        for entry in self.backups_dir.iterdir():
            if not entry.is_dir():
                continue
            try:
                backups.append(self.read_info(entry.name))
            except BackupError as e:
                logger.warning(str(e))
        return sorted(backups, key=lambda b: (b.created_at, b.backup_id), reverse=True)

    def latest_backup_id(self) -> str | None:
        backups = self.list_backups()
        return backups[0].backup_id if backups else None


__all__ = [
    "BACKUP_FILES_DIR",
    "BACKUP_INFO_FILE_NAME",
    "BackupManager",
    "RestoreReport",
]
