"""Append-only JSONL journal files for crash recovery.

Each transaction writes ``<temp_dir>/journals/<transaction_id>.jsonl``:

- a header line (``type: "header"``)
- one ``operation`` line per recorded operation, written before it executes
- one ``completed`` line once the operation's filesystem call succeeded
- a terminal ``end`` line (committed, rolled_back or rollback_failed)

A file without an ``end`` line belongs to a run that died mid-transaction.
"""

import json
import os
import platform
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import ValidationError

from scaffold_rollback.fs.paths import JOURNALS_DIRNAME, ensure_dir
from scaffold_rollback.journal.operations import Operation, parse_operation
from scaffold_rollback.utils.debug import debug

SCHEMA_VERSION = "1.0"

EndStatus = Literal["committed", "rolled_back", "rollback_failed"]


class JournalWriter:
    """Writes one transaction's journal in JSONL format."""

    def __init__(
        self,
        temp_dir: Path,
        transaction_id: str,
        description: str,
        project_path: Path | None = None,
        resume: bool = False,
    ) -> None:
        """Initialize journal writer.

        Args:
            temp_dir: Process temp directory
            transaction_id: Transaction this journal belongs to
            description: Transaction description, stored in the header
            project_path: Optional project root, stored in the header
            resume: Append to an existing journal without a new header

        Raises:
            OSError: If the journal directory is not writable
        """
        self.transaction_id = transaction_id
        self.description = description
        self.project_path = project_path
        self._journal_dir = temp_dir / JOURNALS_DIRNAME
        self._journal_file: Any = None
        self._header_written = False

        try:
            ensure_dir(self._journal_dir)
        except OSError as e:
            raise OSError(
                f"Cannot create journal directory {self._journal_dir}: {e}. "
                "Ensure the temp directory is writable."
            ) from e

        self.path = self._journal_dir / f"{transaction_id}.jsonl"
        if resume and self.path.exists():
            self._header_written = True

    def write_header(self) -> None:
        """Write journal header with transaction metadata."""
        if self._header_written:
            return

        header = {
            "type": "header",
            "schema_version": SCHEMA_VERSION,
            "transaction_id": self.transaction_id,
            "description": self.description,
            "project_path": str(self.project_path) if self.project_path else None,
            "started_at": datetime.now(UTC).isoformat(),
            "pid": os.getpid(),
            "system": {"os": platform.system()},
        }
        self._write_line(header)
        self._header_written = True

    def record_operation(self, operation: Operation) -> None:
        """Append an operation before it executes."""
        self._append(
            {"type": "operation", "operation": operation.model_dump(mode="json")}
        )

    def record_completed(self, operation_id: str) -> None:
        """Mark an operation's filesystem call as done."""
        self._append({"type": "completed", "operation_id": operation_id})

    def record_discarded(self, operation_ids: list[str]) -> None:
        """Mark operations reversed by a snapshot rollback."""
        self._append({"type": "discarded", "operation_ids": operation_ids})

    def finish(self, status: EndStatus) -> None:
        """Write the terminal line and close the file."""
        self._append(
            {
                "type": "end",
                "status": status,
                "ended_at": datetime.now(UTC).isoformat(),
            }
        )
        self.close()

    def remove(self) -> None:
        """Close and delete the journal file."""
        self.close()
        self.path.unlink(missing_ok=True)
        debug(f"Removed journal: {self.path}")

    def _append(self, entry: dict[str, Any]) -> None:
        if not self._header_written:
            self.write_header()
        self._write_line(entry)

    def _write_line(self, data: dict[str, Any]) -> None:
        if self._journal_file is None:
            self._journal_file = open(self.path, "a", encoding="utf-8")

        json_line = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
        self._journal_file.write(json_line + "\n")
        self._journal_file.flush()

    def close(self) -> None:
        """Close the journal file."""
        if self._journal_file is not None:
            self._journal_file.close()
            self._journal_file = None

    def __enter__(self) -> "JournalWriter":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


@dataclass
class JournalRecord:
    """A journal file read back from disk.

    Attributes:
        path: Journal file location
        transaction_id: Transaction the journal belongs to
        description: Transaction description from the header
        project_path: Project root from the header, if any
        operations: Operations in record order, with completion applied
        status: Terminal status, or None if the run was interrupted
        corrupt_lines: Count of lines that could not be parsed
    """

    path: Path
    transaction_id: str
    description: str = ""
    project_path: Path | None = None
    operations: list[Operation] = field(default_factory=list)
    status: EndStatus | None = None
    corrupt_lines: int = 0

    @property
    def interrupted(self) -> bool:
        return self.status is None


def read_journal(path: Path) -> JournalRecord:
    """Parse one journal file.

    Unparseable lines are counted and skipped; a torn final line is the
    expected shape of a crash during a write.
    """
    record = JournalRecord(path=path, transaction_id=path.stem)
    by_id: dict[str, Operation] = {}
    order: list[str] = []

    with open(path, encoding="utf-8") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
                entry_type = entry["type"]
                if entry_type == "header":
                    record.transaction_id = entry.get("transaction_id", path.stem)
                    record.description = entry.get("description") or ""
                    if entry.get("project_path"):
                        record.project_path = Path(entry["project_path"])
                elif entry_type == "operation":
                    operation = parse_operation(entry["operation"])
                    by_id[operation.id] = operation
                    order.append(operation.id)
                elif entry_type == "completed":
                    op_id = entry["operation_id"]
                    by_id[op_id] = by_id[op_id].mark_completed()
                elif entry_type == "discarded":
                    for op_id in entry["operation_ids"]:
                        by_id.pop(op_id, None)
                elif entry_type == "end":
                    record.status = entry["status"]
            except (json.JSONDecodeError, KeyError, ValidationError) as e:
                record.corrupt_lines += 1
                debug(f"Skipping unreadable journal line in {path}: {e}")

    record.operations = [by_id[op_id] for op_id in order if op_id in by_id]
    return record


def load_interrupted_journals(temp_dir: Path) -> list[JournalRecord]:
    """Return journals under ``temp_dir`` that have no terminal line."""
    journal_dir = temp_dir / JOURNALS_DIRNAME
    if not journal_dir.is_dir():
        return []

    records = []
    for path in sorted(journal_dir.glob("*.jsonl")):
        record = read_journal(path)
        if record.interrupted:
            records.append(record)
    return records
