"""In-memory transaction journal.

Keeps the ordered operation list for every tracked transaction id and the
snapshots taken of them. All mutation goes through one re-entrant lock, so
independent transactions may be driven from different threads.
"""

import threading
import uuid
from itertools import count
from pathlib import Path

from scaffold_rollback.core.errors import TransactionNotFound
from scaffold_rollback.journal.operations import (
    Operation,
    Snapshot,
    TransactionStatus,
)


class TransactionJournal:
    """Append-only operation lists keyed by transaction id."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._operations: dict[str, list[Operation]] = {}
        self._snapshots: dict[str, Snapshot] = {}
        self._transaction_seq = count(1)
        self._operation_seq: dict[str, count] = {}
        self._snapshot_seq: dict[str, count] = {}

    def begin(self) -> str:
        """Register a fresh, empty transaction and return its id."""
        with self._lock:
            transaction_id = (
                f"tx_{next(self._transaction_seq):04d}_{uuid.uuid4().hex[:8]}"
            )
            self._operations[transaction_id] = []
            self._operation_seq[transaction_id] = count(1)
            self._snapshot_seq[transaction_id] = count(1)
            return transaction_id

    def next_operation_id(self, transaction_id: str) -> str:
        """Allocate the next operation id within a transaction."""
        with self._lock:
            self._require(transaction_id)
            seq = next(self._operation_seq[transaction_id])
            # Transaction seq prefix keeps ids distinct across transactions.
            prefix = transaction_id.split("_")[1]
            return f"op_{prefix}_{seq:06d}"

    def append(self, transaction_id: str, operation: Operation) -> None:
        with self._lock:
            self._require(transaction_id).append(operation)

    def replace(self, transaction_id: str, operation: Operation) -> None:
        """Swap in an updated copy of an operation, matched by id."""
        with self._lock:
            operations = self._require(transaction_id)
            for index, existing in enumerate(operations):
                if existing.id == operation.id:
                    operations[index] = operation
                    return
            raise KeyError(operation.id)

    def remove(self, transaction_id: str, operation_ids: set[str]) -> None:
        """Drop operations from a transaction's live list."""
        with self._lock:
            operations = self._require(transaction_id)
            operations[:] = [op for op in operations if op.id not in operation_ids]

    def operations(self, transaction_id: str) -> list[Operation]:
        """Return a copy of the transaction's operations in record order."""
        with self._lock:
            return list(self._require(transaction_id))

    def contains(self, transaction_id: str) -> bool:
        with self._lock:
            return transaction_id in self._operations

    def discard(self, transaction_id: str) -> list[Operation]:
        """Stop tracking a transaction and its snapshots.

        Returns:
            The operations the transaction held
        """
        with self._lock:
            operations = self._operations.pop(transaction_id, None)
            if operations is None:
                raise TransactionNotFound(transaction_id)
            self._operation_seq.pop(transaction_id, None)
            self._snapshot_seq.pop(transaction_id, None)
            for snapshot_id in [
                sid
                for sid, snap in self._snapshots.items()
                if snap.transaction_id == transaction_id
            ]:
                del self._snapshots[snapshot_id]
            return operations

    def snapshot(
        self, transaction_id: str, description: str, project_path: Path | None
    ) -> Snapshot:
        """Capture the current operation list by value."""
        with self._lock:
            operations = self._require(transaction_id)
            seq = next(self._snapshot_seq[transaction_id])
            snapshot = Snapshot(
                id=f"{transaction_id}_snapshot_{seq}",
                transaction_id=transaction_id,
                operations=tuple(operations),
                description=description,
                project_path=project_path,
            )
            self._snapshots[snapshot.id] = snapshot
            return snapshot

    def get_snapshot(self, snapshot_id: str) -> Snapshot:
        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
            if snapshot is None or snapshot.transaction_id not in self._operations:
                raise TransactionNotFound(snapshot_id, kind="snapshot")
            return snapshot

    def snapshots(self) -> list[Snapshot]:
        with self._lock:
            return list(self._snapshots.values())

    def transaction_ids(self) -> list[str]:
        with self._lock:
            return list(self._operations)

    def status(self, transaction_id: str) -> TransactionStatus:
        with self._lock:
            operations = self._operations.get(transaction_id)
            if operations is None:
                return TransactionStatus(exists=False)
            return TransactionStatus(
                exists=True,
                operation_count=len(operations),
                completed_count=sum(1 for op in operations if op.completed),
            )

    def _require(self, transaction_id: str) -> list[Operation]:
        operations = self._operations.get(transaction_id)
        if operations is None:
            raise TransactionNotFound(transaction_id)
        return operations
