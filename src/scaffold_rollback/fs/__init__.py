"""Filesystem helpers for reversible operations.

This module provides path normalization, the backup store that preserves
pre-mutation content, and the JSONL journal files used for crash recovery.
"""

from scaffold_rollback.fs.backup_store import BackupStore
from scaffold_rollback.fs.paths import normalize_path, resolve_temp_dir
from scaffold_rollback.fs.journal_file import (
    JournalRecord,
    JournalWriter,
    load_interrupted_journals,
    read_journal,
)

__all__ = [
    "BackupStore",
    "JournalRecord",
    "JournalWriter",
    "load_interrupted_journals",
    "normalize_path",
    "read_journal",
    "resolve_temp_dir",
]
