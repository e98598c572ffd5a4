"""Temporary copies of file and directory content taken before a mutation.

Backups live under ``<temp_dir>/backups`` and are keyed by
``(transaction_id, operation_id)``, so concurrent transactions in one process
never collide. They are the only record of what existed before a change.
"""

import shutil
from pathlib import Path

from scaffold_rollback.fs.paths import (
    BACKUPS_DIRNAME,
    ensure_dir,
    get_backup_path,
)
from scaffold_rollback.utils.debug import debug


class BackupStore:
    """Creates, restores and discards per-operation backups."""

    def __init__(self, temp_dir: Path) -> None:
        self.temp_dir = temp_dir
        self.backup_dir = temp_dir / BACKUPS_DIRNAME

    def ensure(self) -> None:
        """Create the backup directory if needed."""
        ensure_dir(self.backup_dir)

    def backup(self, transaction_id: str, operation_id: str, original: Path) -> Path:
        """Copy ``original`` to a fresh backup location.

        Args:
            transaction_id: Owning transaction
            operation_id: Operation the backup belongs to
            original: Existing file or directory to preserve

        Returns:
            Path of the backup copy

        Raises:
            OSError: If the copy cannot be made
        """
        self.ensure()
        backup_path = get_backup_path(
            self.backup_dir, transaction_id, operation_id, original
        )
        if original.is_dir() and not original.is_symlink():
            shutil.copytree(original, backup_path, symlinks=True)
        else:
            shutil.copy2(original, backup_path)
        debug(f"Backed up {original} to {backup_path}")
        return backup_path

    def restore(self, backup_path: Path, destination: Path) -> None:
        """Copy a backup back to ``destination`` and then discard it.

        Raises:
            OSError: If the copy fails; the backup is kept in that case
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        if backup_path.is_dir() and not backup_path.is_symlink():
            shutil.copytree(
                backup_path, destination, symlinks=True, dirs_exist_ok=True
            )
            shutil.rmtree(backup_path)
        else:
            shutil.copy2(backup_path, destination)
            backup_path.unlink()
        debug(f"Restored {destination} from {backup_path}")

    def discard(self, backup_path: Path) -> bool:
        """Delete a backup. Returns False if it was already gone.

        Raises:
            OSError: If the backup exists but cannot be deleted
        """
        try:
            if backup_path.is_dir() and not backup_path.is_symlink():
                shutil.rmtree(backup_path)
            else:
                backup_path.unlink()
        except FileNotFoundError:
            return False
        debug(f"Discarded backup: {backup_path}")
        return True

    def backups_for(self, transaction_id: str) -> list[Path]:
        """List backup files belonging to one transaction."""
        if not self.backup_dir.is_dir():
            return []
        return sorted(self.backup_dir.glob(f"backup_{transaction_id}_*"))

    def purge(self) -> None:
        """Remove the whole temp directory (backups and journals).

        Raises:
            OSError: If removal fails
        """
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)
            debug(f"Removed temp directory: {self.temp_dir}")
