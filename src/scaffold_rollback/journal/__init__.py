"""Operation journal and rollback executor.

This package holds the operation models, the per-transaction journal and the
executor that reverses recorded operations.
"""

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

__all__ = [
    "CopyFile",
    "CreateDirectory",
    "CreateFile",
    "ModifyFile",
    "MoveFile",
    "Operation",
    "RollbackExecutor",
    "RollbackResult",
    "Snapshot",
    "TransactionJournal",
    "TransactionStatus",
]
