"""Reversal of journaled operations.

The executor receives operations newest first and undoes each one
independently. A failure is recorded and the remaining operations are still
attempted; the caller decides whether the result is an error.
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, assert_never

import structlog

from scaffold_rollback.core.errors import BackupMissing
from scaffold_rollback.fs.backup_store import BackupStore
from scaffold_rollback.fs.paths import is_empty_dir
from scaffold_rollback.journal.operations import (
    CopyFile,
    CreateDirectory,
    CreateFile,
    ModifyFile,
    MoveFile,
    Operation,
)


@dataclass
class RollbackResult:
    """Outcome of reversing a list of operations.

    Attributes:
        reversed: Ids of operations undone, in the order they were undone
        failed: Ids of operations whose reversal raised
        skipped: Ids of operations never completed, so nothing to undo
        warnings: Non-fatal notes (e.g. non-empty directories left in place)
        errors: Failure text per failed operation id
        leftover_paths: Paths touched by failed operations
    """

    reversed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    leftover_paths: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class RollbackExecutor:
    """Undoes operations using the backups held by a ``BackupStore``."""

    def __init__(self, backups: BackupStore, logger: Any = None) -> None:
        self._backups = backups
        self._logger = logger or structlog.get_logger(__name__)

    def run(self, operations: list[Operation]) -> RollbackResult:
        """Reverse ``operations`` in the order given (newest first).

        Args:
            operations: Operations to undo, most recent first

        Returns:
            RollbackResult listing reversed, failed and skipped ids
        """
        result = RollbackResult()
        for operation in operations:
            if not operation.completed:
                try:
                    self._restore_incomplete(operation)
                except OSError as e:
                    self._record_failure(result, operation, e)
                    continue
                result.skipped.append(operation.id)
                continue

            try:
                warning = self.reverse(operation)
            except (OSError, BackupMissing) as e:
                self._record_failure(result, operation, e)
                continue

            if warning:
                self._logger.warning(
                    "rollback.operation_warning",
                    operation_id=operation.id,
                    warning=warning,
                )
                result.warnings.append(warning)
            result.reversed.append(operation.id)

        return result

    def _record_failure(
        self, result: RollbackResult, operation: Operation, error: Exception
    ) -> None:
        self._logger.error(
            "rollback.operation_failed",
            operation_id=operation.id,
            kind=operation.kind,
            target=str(operation.target),
            error=str(error),
        )
        result.failed.append(operation.id)
        result.errors[operation.id] = str(error)
        result.leftover_paths.extend(operation.paths)

    def _restore_incomplete(self, operation: Operation) -> None:
        """Put back what an unfinished modification or move may have touched.

        Writes are atomic and a failed move leaves its source in place, so the
        backup usually matches what is on disk already. Restoring it is
        harmless then and also consumes it.
        """
        if isinstance(operation, ModifyFile):
            backup, destination = operation.backup_path, operation.target
        elif isinstance(operation, MoveFile):
            backup, destination = operation.backup_path, operation.source
        else:
            return
        if backup is None or not backup.exists():
            return
        self._backups.restore(backup, destination)
        self._logger.debug(
            "rollback.incomplete_restored",
            operation_id=operation.id,
            target=str(destination),
        )

    def reverse(self, operation: Operation) -> str | None:
        """Undo a single operation.

        Returns:
            A warning message when the reversal was deliberately partial

        Raises:
            OSError: If a filesystem call fails
            BackupMissing: If a recorded backup is gone
        """
        match operation:
            case CreateFile():
                _remove_file(operation.target)
                self._logger.debug("rollback.file_removed", target=str(operation.target))
                return None
            case CreateDirectory():
                return self._reverse_directory(operation)
            case ModifyFile():
                return self._reverse_modification(operation)
            case CopyFile():
                _remove_file(operation.target)
                self._logger.debug("rollback.copy_removed", target=str(operation.target))
                return None
            case MoveFile():
                return self._reverse_move(operation)
            case _:
                assert_never(operation)

    def _reverse_directory(self, operation: CreateDirectory) -> str | None:
        target = operation.target
        if operation.existed or not target.exists():
            return None
        if not target.is_dir():
            return f"Cannot roll back directory {target}: path is no longer a directory"
        if not is_empty_dir(target):
            return f"Cannot roll back directory {target}: not empty"
        target.rmdir()
        self._logger.debug("rollback.directory_removed", target=str(target))
        return None

    def _reverse_modification(self, operation: ModifyFile) -> str | None:
        if operation.backup_path is None:
            _remove_file(operation.target)
            self._logger.debug(
                "rollback.modification_removed", target=str(operation.target)
            )
            return None

        if not operation.backup_path.exists():
            raise BackupMissing(operation.id, operation.backup_path)

        self._backups.restore(operation.backup_path, operation.target)
        self._logger.debug("rollback.modification_restored", target=str(operation.target))
        return None

    def _reverse_move(self, operation: MoveFile) -> str | None:
        if operation.backup_path is None:
            # Without a copy of the source, move the target back instead.
            if operation.source.exists() or not operation.target.exists():
                return (
                    f"No backup for move {operation.source} -> {operation.target}; "
                    "left both paths as they are"
                )
            operation.source.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(operation.target, operation.source)
            return (
                f"No backup for move {operation.source} -> {operation.target}; "
                "moved target back"
            )

        if not operation.backup_path.exists():
            raise BackupMissing(operation.id, operation.backup_path)

        self._backups.restore(operation.backup_path, operation.source)
        _remove_file(operation.target)
        self._logger.debug(
            "rollback.move_restored",
            source=str(operation.source),
            target=str(operation.target),
        )
        return None


def _remove_file(path: Path) -> None:
    """Delete a file if present. Directories are removed recursively."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)
