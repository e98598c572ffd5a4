"""Transaction manager for reversible scaffolding runs.

The manager records every filesystem mutation of a generation run before
performing it, keeps backups of anything it overwrites or moves, and can undo
a whole transaction (or everything after a snapshot) newest first.

Typical use by a project generator::

    manager = RollbackManager()
    with manager.transaction("create my-app", project_path) as tx:
        manager.record_directory_creation(tx, project_path / "src")
        manager.record_file_creation(tx, project_path / "src" / "index.ts", "export {}")

Leaving the block normally commits; an exception rolls back and re-raises.
"""

import errno
import os
import shutil
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

import structlog

from scaffold_rollback.core.errors import (
    DirectoryCreationFailed,
    EmergencyCleanupFailed,
    FileCopyFailed,
    FileCreationFailed,
    FileModificationFailed,
    FileMoveFailed,
    FileOperationFailed,
    RollbackFailed,
)
from scaffold_rollback.fs.backup_store import BackupStore
from scaffold_rollback.fs.journal_file import (
    JournalWriter,
    load_interrupted_journals,
)
from scaffold_rollback.fs.paths import (
    ensure_dir,
    missing_ancestors,
    normalize_path,
    resolve_temp_dir,
)
from scaffold_rollback.journal.executor import RollbackExecutor, RollbackResult
from scaffold_rollback.journal.journal import TransactionJournal
from scaffold_rollback.journal.operations import (
    CopyFile,
    CreateDirectory,
    CreateFile,
    ModifyFile,
    MoveFile,
    Operation,
    Snapshot,
    TransactionStatus,
)

OpT = TypeVar("OpT", bound=Operation)


@dataclass
class RecoveryOutcome:
    """Result of rolling back one interrupted journal.

    Attributes:
        transaction_id: Transaction the journal belonged to
        journal_path: Journal file that was replayed
        result: Reversal outcome
    """

    transaction_id: str
    journal_path: Path
    result: RollbackResult = field(default_factory=RollbackResult)


class RollbackManager:
    """Records, executes and reverses filesystem operations per transaction.

    Instances are independent; there is no process-wide singleton. Two
    managers sharing a temp directory stay collision free because backup and
    journal names embed the transaction id.
    """

    def __init__(
        self,
        temp_dir: Path | str | None = None,
        *,
        persist_journal: bool = True,
        logger: Any = None,
    ) -> None:
        """Initialize the manager.

        Args:
            temp_dir: Location for backups and journals (see resolve_temp_dir)
            persist_journal: Write a JSONL journal per transaction so an
                interrupted run can be rolled back by the next process
            logger: Optional structlog logger instance
        """
        self.temp_dir = resolve_temp_dir(temp_dir)
        self.persist_journal = persist_journal
        self._logger = logger or structlog.get_logger(__name__)
        self._journal = TransactionJournal()
        self._backups = BackupStore(self.temp_dir)
        self._executor = RollbackExecutor(self._backups, logger=self._logger)
        self._writers: dict[str, JournalWriter] = {}

    # Transaction lifecycle

    def start_transaction(
        self, description: str, project_path: Path | str | None = None
    ) -> str:
        """Start a new transaction and return its id."""
        ensure_dir(self.temp_dir)
        transaction_id = self._journal.begin()

        if self.persist_journal:
            writer = JournalWriter(
                self.temp_dir,
                transaction_id,
                description,
                normalize_path(project_path) if project_path is not None else None,
            )
            writer.write_header()
            self._writers[transaction_id] = writer

        self._logger.debug(
            "transaction.started",
            transaction_id=transaction_id,
            description=description,
        )
        return transaction_id

    def commit_transaction(self, transaction_id: str) -> None:
        """Finish a transaction successfully and drop its backups.

        Backup cleanup failures are logged, never raised.

        Raises:
            TransactionNotFound: If the id is not tracked
        """
        operations = self._journal.discard(transaction_id)
        self._discard_backups(transaction_id, operations, sweep=True)

        writer = self._writers.pop(transaction_id, None)
        if writer is not None:
            self._close_journal(writer, remove=True)

        self._logger.debug(
            "transaction.committed",
            transaction_id=transaction_id,
            operation_count=len(operations),
        )

    def rollback_transaction(self, transaction_id: str) -> RollbackResult:
        """Undo every completed operation of a transaction, newest first.

        The transaction stops being tracked whatever the outcome.

        Raises:
            TransactionNotFound: If the id is not tracked
            RollbackFailed: If any reversal failed
        """
        operations = self._journal.discard(transaction_id)
        result = self._executor.run(list(reversed(operations)))
        # Restores consume their backups; a failed rollback keeps the rest for
        # manual recovery.
        if result.ok:
            self._discard_backups(transaction_id, [], sweep=True)

        writer = self._writers.pop(transaction_id, None)
        if writer is not None:
            if result.ok:
                self._close_journal(writer, remove=True)
            else:
                self._close_journal(writer, status="rollback_failed")

        if not result.ok:
            raise RollbackFailed(
                f"Failed to roll back {len(result.failed)} operations",
                result.reversed,
                result.failed,
                result.leftover_paths,
            )

        self._logger.info(
            "transaction.rolled_back",
            transaction_id=transaction_id,
            reversed_count=len(result.reversed),
            warnings=len(result.warnings),
        )
        return result

    @contextmanager
    def transaction(
        self, description: str, project_path: Path | str | None = None
    ) -> Iterator[str]:
        """Run a block inside a transaction.

        Commits when the block exits normally. On an exception the
        transaction is rolled back and the original exception re-raised; a
        failing rollback is chained as its cause.
        """
        transaction_id = self.start_transaction(description, project_path)
        try:
            yield transaction_id
        except BaseException as exc:
            try:
                self.rollback_transaction(transaction_id)
            except RollbackFailed as rollback_error:
                raise exc from rollback_error
            raise
        else:
            self.commit_transaction(transaction_id)

    # Recording

    def record_file_creation(
        self,
        transaction_id: str,
        path: Path | str,
        content: str | bytes | None = None,
    ) -> CreateFile:
        """Record and write a new file.

        Missing parent directories are recorded as their own directory
        operations. Without ``content`` the file is only registered (it was
        produced by a collaborator such as a template renderer). With
        ``content`` an existing path is refused, since rollback deletes it;
        use ``record_file_modification`` to change an existing file.

        Raises:
            TransactionNotFound: If the id is not tracked
            FileCreationFailed: If the path exists or the write fails
        """
        target = normalize_path(path)
        self._record_parents(transaction_id, target, FileCreationFailed)
        operation = CreateFile(
            id=self._journal.next_operation_id(transaction_id),
            target=target,
            content=content,
        )

        def write() -> None:
            if content is not None:
                _refuse_existing(target)
                _write_content(target, content)

        return self._execute(transaction_id, operation, write, FileCreationFailed)

    def record_directory_creation(
        self, transaction_id: str, path: Path | str
    ) -> CreateDirectory:
        """Record and create a directory. An existing directory is success.

        Raises:
            TransactionNotFound: If the id is not tracked
            DirectoryCreationFailed: If the directory cannot be made
        """
        target = normalize_path(path)
        self._record_parents(transaction_id, target, DirectoryCreationFailed)
        operation = CreateDirectory(
            id=self._journal.next_operation_id(transaction_id),
            target=target,
            existed=target.is_dir(),
        )
        return self._execute(
            transaction_id,
            operation,
            lambda: target.mkdir(exist_ok=True),
            DirectoryCreationFailed,
        )

    def record_file_modification(
        self,
        transaction_id: str,
        path: Path | str,
        new_content: str | bytes,
    ) -> ModifyFile:
        """Record and overwrite a file, backing up what was there.

        Raises:
            TransactionNotFound: If the id is not tracked
            FileModificationFailed: If the backup or the write fails
        """
        target = normalize_path(path)
        self._record_parents(transaction_id, target, FileModificationFailed)
        operation_id = self._journal.next_operation_id(transaction_id)

        backup_path, backup_error = self._take_backup(
            transaction_id, operation_id, target
        )
        operation = ModifyFile(
            id=operation_id,
            target=target,
            content=new_content,
            backup_path=backup_path,
        )

        def write() -> None:
            if backup_error is not None:
                raise backup_error
            _write_content(target, new_content)

        return self._execute(
            transaction_id, operation, write, FileModificationFailed
        )

    def record_file_copy(
        self,
        transaction_id: str,
        source_path: Path | str,
        target_path: Path | str,
    ) -> CopyFile:
        """Record and perform a copy. The source is never touched.

        Raises:
            TransactionNotFound: If the id is not tracked
            FileCopyFailed: If the copy fails
        """
        source = normalize_path(source_path)
        target = normalize_path(target_path)
        self._record_parents(transaction_id, target, FileCopyFailed, source=source)
        operation = CopyFile(
            id=self._journal.next_operation_id(transaction_id),
            source=source,
            target=target,
        )

        def copy() -> None:
            _refuse_existing(target)
            if source.is_dir():
                shutil.copytree(source, target)
            else:
                shutil.copy2(source, target)

        return self._execute(
            transaction_id, operation, copy, FileCopyFailed, source=source
        )

    def record_file_move(
        self,
        transaction_id: str,
        source_path: Path | str,
        target_path: Path | str,
    ) -> MoveFile:
        """Record and perform a move, backing up the source first.

        Directory sources are backed up as a whole tree.

        Raises:
            TransactionNotFound: If the id is not tracked
            FileMoveFailed: If the backup or the move fails
        """
        source = normalize_path(source_path)
        target = normalize_path(target_path)
        self._record_parents(transaction_id, target, FileMoveFailed, source=source)
        operation_id = self._journal.next_operation_id(transaction_id)

        backup_path, backup_error = self._take_backup(
            transaction_id, operation_id, source
        )
        operation = MoveFile(
            id=operation_id,
            source=source,
            target=target,
            backup_path=backup_path,
        )

        def move() -> None:
            if backup_error is not None:
                raise backup_error
            _refuse_existing(target)
            shutil.move(source, target)

        return self._execute(
            transaction_id, operation, move, FileMoveFailed, source=source
        )

    # Snapshots

    def create_snapshot(
        self,
        transaction_id: str,
        description: str,
        project_path: Path | str | None = None,
    ) -> Snapshot:
        """Capture the transaction's current operation list.

        Raises:
            TransactionNotFound: If the id is not tracked
        """
        snapshot = self._journal.snapshot(
            transaction_id,
            description,
            normalize_path(project_path) if project_path is not None else None,
        )
        self._logger.debug(
            "snapshot.created",
            transaction_id=transaction_id,
            snapshot_id=snapshot.id,
            operation_count=len(snapshot.operations),
        )
        return snapshot

    def rollback_to_snapshot(self, snapshot_id: str) -> RollbackResult:
        """Undo everything recorded after a snapshot, newest first.

        The owning transaction stays open; the reversed operations leave its
        journal and the snapshot remains available.

        Raises:
            TransactionNotFound: If the snapshot or its transaction is unknown
            RollbackFailed: If any reversal failed
        """
        snapshot = self._journal.get_snapshot(snapshot_id)
        transaction_id = snapshot.transaction_id
        captured = snapshot.operation_ids
        later = [
            op
            for op in self._journal.operations(transaction_id)
            if op.id not in captured
        ]

        result = self._executor.run(list(reversed(later)))
        undone = set(result.reversed) | set(result.skipped)
        self._journal.remove(transaction_id, undone)

        writer = self._writers.get(transaction_id)
        if writer is not None and undone:
            writer.record_discarded(sorted(undone))

        if not result.ok:
            raise RollbackFailed(
                f"Failed to roll back {len(result.failed)} operations "
                f"to snapshot {snapshot_id}",
                result.reversed,
                result.failed,
                result.leftover_paths,
            )

        self._logger.info(
            "snapshot.rolled_back",
            snapshot_id=snapshot_id,
            reversed_count=len(result.reversed),
        )
        return result

    # Cleanup and introspection

    def emergency_cleanup(self, project_path: Path | str) -> None:
        """Delete ``project_path`` recursively, ignoring the journal.

        Lossy last resort for when the journal cannot be trusted.

        Raises:
            EmergencyCleanupFailed: If the directory cannot be removed
        """
        target = normalize_path(project_path)
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()
            else:
                return
        except OSError as e:
            self._logger.error(
                "emergency_cleanup.failed", project_path=str(target), error=str(e)
            )
            raise EmergencyCleanupFailed(target, str(e)) from e

        self._logger.info("emergency_cleanup.removed", project_path=str(target))

    def get_transaction_status(self, transaction_id: str) -> TransactionStatus:
        return self._journal.status(transaction_id)

    def get_active_transactions(self) -> list[str]:
        return self._journal.transaction_ids()

    def get_snapshots(self) -> list[Snapshot]:
        return self._journal.snapshots()

    def cleanup_temp_directory(self) -> None:
        """Remove the temp directory. Failures are logged as warnings.

        Skipped while transactions are active, because their backups and
        journals live there.
        """
        active = self._journal.transaction_ids()
        if active:
            self._logger.warning(
                "temp_directory.cleanup_skipped",
                temp_dir=str(self.temp_dir),
                active_transactions=active,
            )
            return
        for writer in self._writers.values():
            writer.close()
        self._writers.clear()
        try:
            self._backups.purge()
        except OSError as e:
            self._logger.warning(
                "temp_directory.cleanup_failed",
                temp_dir=str(self.temp_dir),
                error=str(e),
            )
            return
        self._logger.debug("temp_directory.cleaned", temp_dir=str(self.temp_dir))

    def recover_interrupted(
        self, project_path: Path | str | None = None
    ) -> list[RecoveryOutcome]:
        """Roll back transactions left behind by a process that died.

        Only journals without a terminal line and not owned by this manager
        are replayed. Fully reversed journals are deleted; journals with
        failures are kept and marked ``rollback_failed``.

        Args:
            project_path: Limit recovery to journals for this project root
        """
        wanted = normalize_path(project_path) if project_path is not None else None
        outcomes: list[RecoveryOutcome] = []

        for record in load_interrupted_journals(self.temp_dir):
            if record.transaction_id in self._writers:
                continue
            if wanted is not None and record.project_path != wanted:
                continue

            result = self._executor.run(list(reversed(record.operations)))
            outcomes.append(
                RecoveryOutcome(
                    transaction_id=record.transaction_id,
                    journal_path=record.path,
                    result=result,
                )
            )

            if result.ok:
                record.path.unlink(missing_ok=True)
            else:
                with JournalWriter(
                    self.temp_dir,
                    record.transaction_id,
                    record.description,
                    resume=True,
                ) as writer:
                    writer.finish("rollback_failed")

            self._logger.info(
                "recovery.transaction_rolled_back",
                transaction_id=record.transaction_id,
                reversed_count=len(result.reversed),
                failed_count=len(result.failed),
            )

        return outcomes

    # Internals

    def _record_parents(
        self,
        transaction_id: str,
        target: Path,
        error_cls: type[FileOperationFailed],
        source: Path | None = None,
    ) -> None:
        """Create and record each missing ancestor of ``target``."""
        for directory in missing_ancestors(target):
            operation = CreateDirectory(
                id=self._journal.next_operation_id(transaction_id),
                target=directory,
            )
            self._execute(
                transaction_id,
                operation,
                lambda d=directory: d.mkdir(exist_ok=True),
                error_cls,
                source=source,
            )

    def _take_backup(
        self, transaction_id: str, operation_id: str, original: Path
    ) -> tuple[Path | None, OSError | None]:
        """Back up ``original`` if it exists.

        A failed backup is returned rather than raised so the operation is
        still journaled before the error surfaces.
        """
        if not (original.exists() or original.is_symlink()):
            return None, None
        try:
            return self._backups.backup(transaction_id, operation_id, original), None
        except OSError as e:
            error = OSError(f"backup failed: {e}")
            error.__cause__ = e
            return None, error

    def _discard_backups(
        self, transaction_id: str, operations: list[Operation], *, sweep: bool
    ) -> None:
        """Delete backups held by ``operations``; failures are warnings."""
        backup_paths = {
            operation.backup_path
            for operation in operations
            if isinstance(operation, (ModifyFile, MoveFile))
            and operation.backup_path is not None
        }
        if sweep:
            backup_paths.update(self._backups.backups_for(transaction_id))

        for backup_path in sorted(backup_paths):
            try:
                self._backups.discard(backup_path)
            except OSError as e:
                self._logger.warning(
                    "transaction.backup_cleanup_failed",
                    transaction_id=transaction_id,
                    backup_path=str(backup_path),
                    error=str(e),
                )

    def _append(self, transaction_id: str, operation: Operation) -> None:
        self._journal.append(transaction_id, operation)
        writer = self._writers.get(transaction_id)
        if writer is not None:
            writer.record_operation(operation)

    def _execute(
        self,
        transaction_id: str,
        operation: OpT,
        action: Callable[[], Any],
        error_cls: type[FileOperationFailed],
        source: Path | None = None,
    ) -> OpT:
        """Append ``operation``, run ``action``, then flag it completed.

        Journal write errors fail the operation before its action runs.
        """
        try:
            self._append(transaction_id, operation)
            action()
        except (OSError, UnicodeError) as e:
            self._logger.warning(
                "operation.failed",
                transaction_id=transaction_id,
                operation_id=operation.id,
                kind=operation.kind,
                target=str(operation.target),
                error=str(e),
            )
            raise error_cls(
                operation.target, str(e), source=source, operation_id=operation.id
            ) from e

        completed = operation.mark_completed()
        self._journal.replace(transaction_id, completed)
        writer = self._writers.get(transaction_id)
        if writer is not None:
            try:
                writer.record_completed(operation.id)
            except OSError as e:
                # The change is on disk; recovery treats it as unfinished.
                self._logger.warning(
                    "journal.write_failed",
                    transaction_id=transaction_id,
                    operation_id=operation.id,
                    error=str(e),
                )

        self._logger.debug(
            "operation.recorded",
            transaction_id=transaction_id,
            operation_id=operation.id,
            kind=operation.kind,
            target=str(operation.target),
        )
        return completed  # type: ignore[return-value]

    def _close_journal(
        self,
        writer: JournalWriter,
        *,
        remove: bool = False,
        status: str | None = None,
    ) -> None:
        try:
            if remove:
                writer.remove()
            elif status is not None:
                writer.finish(status)  # type: ignore[arg-type]
        except OSError as e:
            self._logger.warning(
                "journal.cleanup_failed",
                transaction_id=writer.transaction_id,
                journal_path=str(writer.path),
                error=str(e),
            )


def _refuse_existing(target: Path) -> None:
    # Rollback of a new file, copy or move only deletes the target.
    if target.exists() or target.is_symlink():
        raise FileExistsError(errno.EEXIST, "target already exists", str(target))


def _write_content(path: Path, content: str | bytes) -> None:
    """Replace ``path`` atomically; a failed write leaves it untouched."""
    data = content if isinstance(content, bytes) else content.encode("utf-8")
    destination = path.resolve()
    staging = destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        with open(staging, "xb") as handle:
            handle.write(data)
        if destination.exists():
            shutil.copymode(destination, staging)
        os.replace(staging, destination)
    except BaseException:
        staging.unlink(missing_ok=True)
        raise
