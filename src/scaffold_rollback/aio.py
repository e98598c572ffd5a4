"""Async facade over RollbackManager.

Blocking filesystem work runs in worker threads via anyio. Calls for the same
transaction are serialized with a per-transaction lock so operation N+1 never
starts before operation N is flagged completed; different transactions run
independently.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

import anyio
import anyio.to_thread

from scaffold_rollback.journal.executor import RollbackResult
from scaffold_rollback.journal.operations import (
    CopyFile,
    CreateDirectory,
    CreateFile,
    ModifyFile,
    MoveFile,
    Snapshot,
    TransactionStatus,
)
from scaffold_rollback.manager import RecoveryOutcome, RollbackManager

T = TypeVar("T")


class AsyncRollbackManager:
    """Coroutine wrappers for every RollbackManager operation."""

    def __init__(self, manager: RollbackManager | None = None, **kwargs: Any) -> None:
        self.manager = manager or RollbackManager(**kwargs)
        self._locks: dict[str, anyio.Lock] = {}

    def _lock_for(self, transaction_id: str) -> anyio.Lock:
        lock = self._locks.get(transaction_id)
        if lock is None:
            lock = self._locks[transaction_id] = anyio.Lock()
        return lock

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await anyio.to_thread.run_sync(partial(func, *args))

    async def _run_locked(
        self, transaction_id: str, func: Callable[..., T], *args: Any
    ) -> T:
        async with self._lock_for(transaction_id):
            return await self._run(func, transaction_id, *args)

    async def start_transaction(
        self, description: str, project_path: Path | str | None = None
    ) -> str:
        return await self._run(
            self.manager.start_transaction, description, project_path
        )

    async def record_file_creation(
        self,
        transaction_id: str,
        path: Path | str,
        content: str | bytes | None = None,
    ) -> CreateFile:
        return await self._run_locked(
            transaction_id, self.manager.record_file_creation, path, content
        )

    async def record_directory_creation(
        self, transaction_id: str, path: Path | str
    ) -> CreateDirectory:
        return await self._run_locked(
            transaction_id, self.manager.record_directory_creation, path
        )

    async def record_file_modification(
        self, transaction_id: str, path: Path | str, new_content: str | bytes
    ) -> ModifyFile:
        return await self._run_locked(
            transaction_id, self.manager.record_file_modification, path, new_content
        )

    async def record_file_copy(
        self, transaction_id: str, source_path: Path | str, target_path: Path | str
    ) -> CopyFile:
        return await self._run_locked(
            transaction_id, self.manager.record_file_copy, source_path, target_path
        )

    async def record_file_move(
        self, transaction_id: str, source_path: Path | str, target_path: Path | str
    ) -> MoveFile:
        return await self._run_locked(
            transaction_id, self.manager.record_file_move, source_path, target_path
        )

    async def create_snapshot(
        self,
        transaction_id: str,
        description: str,
        project_path: Path | str | None = None,
    ) -> Snapshot:
        return await self._run_locked(
            transaction_id, self.manager.create_snapshot, description, project_path
        )

    async def commit_transaction(self, transaction_id: str) -> None:
        try:
            await self._run_locked(transaction_id, self.manager.commit_transaction)
        finally:
            self._locks.pop(transaction_id, None)

    async def rollback_transaction(self, transaction_id: str) -> RollbackResult:
        try:
            return await self._run_locked(
                transaction_id, self.manager.rollback_transaction
            )
        finally:
            self._locks.pop(transaction_id, None)

    async def rollback_to_snapshot(self, snapshot_id: str) -> RollbackResult:
        snapshot = next(
            (s for s in self.manager.get_snapshots() if s.id == snapshot_id), None
        )
        if snapshot is None:
            return await self._run(self.manager.rollback_to_snapshot, snapshot_id)
        async with self._lock_for(snapshot.transaction_id):
            return await self._run(self.manager.rollback_to_snapshot, snapshot_id)

    async def emergency_cleanup(self, project_path: Path | str) -> None:
        await self._run(self.manager.emergency_cleanup, project_path)

    async def cleanup_temp_directory(self) -> None:
        await self._run(self.manager.cleanup_temp_directory)

    async def recover_interrupted(
        self, project_path: Path | str | None = None
    ) -> list[RecoveryOutcome]:
        return await self._run(self.manager.recover_interrupted, project_path)

    def get_transaction_status(self, transaction_id: str) -> TransactionStatus:
        return self.manager.get_transaction_status(transaction_id)

    def get_active_transactions(self) -> list[str]:
        return self.manager.get_active_transactions()

    def get_snapshots(self) -> list[Snapshot]:
        return self.manager.get_snapshots()
