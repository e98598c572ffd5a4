"""Custom exceptions for scaffold-rollback.

Record calls raise a ``FileOperationFailed`` subclass carrying the affected
path(s) with the OS error chained as ``__cause__``. Rollback raises
``RollbackFailed`` only after every reversal was attempted.
"""

from pathlib import Path
from typing import Any


class ScaffoldRollbackError(Exception):
    """Base exception for all scaffold-rollback errors.

    All custom exceptions inherit from this base class to allow broad
    exception handling by callers that just want to report the failure.
    """

    pass


class TransactionNotFound(ScaffoldRollbackError):
    """Raised when a transaction or snapshot id is not tracked.

    Always a caller bug (the id was never started, or it was already
    committed or rolled back); retrying will not help.

    Attributes:
        identifier: The unknown transaction or snapshot id
        kind: Either "transaction" or "snapshot"
    """

    def __init__(self, identifier: str, kind: str = "transaction") -> None:
        self.identifier = identifier
        self.kind = kind
        super().__init__(f"{kind.capitalize()} not found: {identifier}")

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for reports."""
        return {
            "error": "transaction_not_found",
            "kind": self.kind,
            "id": self.identifier,
        }

    def __repr__(self) -> str:
        return f"TransactionNotFound(identifier={self.identifier!r}, kind={self.kind!r})"


class FileOperationFailed(ScaffoldRollbackError):
    """Raised when the filesystem call behind a record operation fails.

    The operation stays in the journal with ``completed=False`` so a later
    rollback does not try to reverse it.

    Attributes:
        operation: Short operation name (e.g. "create_file")
        path: Target path of the operation
        source: Source path for copy and move operations
        operation_id: Journal id of the failed operation, when one was recorded
        reason: Text of the underlying error
    """

    operation = "file_operation"

    def __init__(
        self,
        path: Path | str,
        reason: str,
        source: Path | str | None = None,
        operation_id: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.source = Path(source) if source is not None else None
        self.reason = reason
        self.operation_id = operation_id

        if self.source is not None:
            message = f"{self.operation} failed: {self.source} -> {self.path}: {reason}"
        else:
            message = f"{self.operation} failed: {self.path}: {reason}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for reports."""
        result: dict[str, Any] = {
            "error": f"{self.operation}_failed",
            "path": str(self.path),
            "reason": self.reason,
        }
        if self.source is not None:
            result["source"] = str(self.source)
        if self.operation_id is not None:
            result["operation_id"] = self.operation_id
        return result

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(path={str(self.path)!r}, "
            f"source={str(self.source) if self.source else None!r}, "
            f"reason={self.reason!r})"
        )


class FileCreationFailed(FileOperationFailed):
    operation = "create_file"


class DirectoryCreationFailed(FileOperationFailed):
    operation = "create_directory"


class FileModificationFailed(FileOperationFailed):
    operation = "modify_file"


class FileCopyFailed(FileOperationFailed):
    operation = "copy_file"


class FileMoveFailed(FileOperationFailed):
    operation = "move_file"


class BackupMissing(ScaffoldRollbackError):
    """Raised during reversal when a recorded backup is no longer on disk.

    Distinguishes "a backup was taken but is gone" from "there was nothing to
    back up"; the target is left untouched so nothing else is lost.
    """

    def __init__(self, operation_id: str, backup_path: Path) -> None:
        self.operation_id = operation_id
        self.backup_path = backup_path
        super().__init__(
            f"Backup for operation {operation_id} is missing: {backup_path}"
        )


class RollbackFailed(ScaffoldRollbackError):
    """Raised when one or more reversals failed during a rollback.

    Attributes:
        completed_operation_ids: Operations that were reversed successfully
        failed_operation_ids: Operations whose reversal failed
        leftover_paths: Paths of the failed operations, for manual inspection
    """

    def __init__(
        self,
        reason: str,
        completed_operation_ids: list[str],
        failed_operation_ids: list[str] | None = None,
        leftover_paths: list[Path] | None = None,
    ) -> None:
        self.reason = reason
        self.completed_operation_ids = list(completed_operation_ids)
        self.failed_operation_ids = list(failed_operation_ids or [])
        self.leftover_paths = list(leftover_paths or [])

        message = f"Rollback failed: {reason}"
        if self.completed_operation_ids:
            message += (
                ". Rolled back operations: "
                + ", ".join(self.completed_operation_ids)
            )
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for reports."""
        return {
            "error": "rollback_failed",
            "reason": self.reason,
            "completed_operation_ids": self.completed_operation_ids,
            "failed_operation_ids": self.failed_operation_ids,
            "leftover_paths": [str(path) for path in self.leftover_paths],
        }

    def __repr__(self) -> str:
        return (
            f"RollbackFailed(completed={len(self.completed_operation_ids)}, "
            f"failed={self.failed_operation_ids!r})"
        )


class EmergencyCleanupFailed(ScaffoldRollbackError):
    """Raised when the last-resort project directory removal fails.

    Fatal: the project directory must be cleaned up by hand.
    """

    def __init__(self, project_path: Path | str, reason: str) -> None:
        self.project_path = Path(project_path)
        self.reason = reason
        super().__init__(
            f"Emergency cleanup of {self.project_path} failed: {reason}. "
            "Manual cleanup is required."
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for reports."""
        return {
            "error": "emergency_cleanup_failed",
            "project_path": str(self.project_path),
            "reason": self.reason,
        }

    def __repr__(self) -> str:
        return (
            f"EmergencyCleanupFailed(project_path={str(self.project_path)!r}, "
            f"reason={self.reason!r})"
        )
