"""Apply chain for scaffolding a project inside one rollback transaction.

This module provides the ScaffoldChain class, the reference caller of the
RollbackManager: it starts a transaction, records every entry, commits on
success and rolls back on the first failure, then reports which stage failed
and what, if anything, was left on disk.
"""

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, model_validator
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)

from scaffold_rollback.core.errors import (
    EmergencyCleanupFailed,
    FileOperationFailed,
    RollbackFailed,
    TransactionNotFound,
)
from scaffold_rollback.manager import RollbackManager

Mode = Literal["transactional", "dry_run"]
EntryKind = Literal["directory", "file", "modify", "copy", "move"]


class ScaffoldEntry(BaseModel):
    """One filesystem step of a scaffold plan.

    Attributes:
        kind: Operation to perform
        path: Target path, relative paths resolve against the project root
        content: File content for ``file`` and ``modify``
        source: Source path for ``copy`` and ``move``
    """

    kind: EntryKind
    path: Path
    content: str | None = None
    source: Path | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_fields(self) -> "ScaffoldEntry":
        if self.kind in ("copy", "move") and self.source is None:
            raise ValueError(f"{self.kind} entries require a source path")
        if self.kind == "modify" and self.content is None:
            raise ValueError("modify entries require content")
        return self


class ScaffoldPlan(BaseModel):
    """A named list of scaffold entries, as loaded from a manifest file."""

    description: str = "scaffold"
    entries: list[ScaffoldEntry] = Field(default_factory=list)


@dataclass
class ApplyOptions:
    """Options for apply operations.

    Attributes:
        project_path: Project root; relative entry paths resolve against it
        description: Transaction description
        mode: transactional applies for real, dry_run only reports
        emergency_cleanup: Remove the project root if rollback itself fails
    """

    project_path: str
    description: str = "scaffold"
    mode: Mode = "transactional"
    emergency_cleanup: bool = False


@dataclass
class ScaffoldReport:
    """Summary of a scaffold run.

    Attributes:
        status: applied, rolled_back, rollback_failed or dry_run
        total_entries: Number of entries in the plan
        applied_count: Entries applied before the run ended
        transaction_id: Transaction used for the run
        failed_stage: Description of the entry that failed, if any
        error: Text of the failure, if any
        rollback_complete: False when some operations could not be reversed
        leftover_paths: Paths left behind for manual inspection
        emergency_cleanup_done: True when the project root was force removed
    """

    status: Literal["applied", "rolled_back", "rollback_failed", "dry_run"]
    total_entries: int
    applied_count: int = 0
    transaction_id: str | None = None
    failed_stage: str | None = None
    error: str | None = None
    rollback_complete: bool = True
    leftover_paths: list[Path] = field(default_factory=list)
    emergency_cleanup_done: bool = False


class ScaffoldChain:
    """Applies scaffold entries transactionally with logging and Rich output."""

    def __init__(
        self,
        manager: RollbackManager | None = None,
        logger: Any = None,
        ui: Console | None = None,
    ) -> None:
        """Initialize scaffold chain.

        Args:
            manager: RollbackManager to record through (a new one by default)
            logger: Optional structlog logger instance
            ui: Optional Rich console for output
        """
        self._manager = manager or RollbackManager()
        self._logger = logger or structlog.get_logger(__name__)
        self._ui = ui or Console()

    def apply(self, entries: Sequence[ScaffoldEntry], opts: ApplyOptions) -> ScaffoldReport:
        """Apply ``entries`` under one transaction.

        Args:
            entries: Scaffold entries, applied in order
            opts: Apply options

        Returns:
            ScaffoldReport describing the outcome
        """
        root = Path(opts.project_path)
        report = ScaffoldReport(status="applied", total_entries=len(entries))

        if opts.mode == "dry_run":
            for entry in entries:
                self._ui.print(
                    f"🔍 [blue]PLAN[/blue] {entry.kind} {self._resolve(root, entry.path)}"
                )
            report.status = "dry_run"
            return report

        transaction_id = self._manager.start_transaction(opts.description, root)
        report.transaction_id = transaction_id
        bound_logger = self._logger.bind(
            transaction_id=transaction_id,
            project_path=str(root),
            description=opts.description,
        )

        with self._create_progress() as progress:
            task = progress.add_task(f"Scaffold: {opts.description}", total=len(entries))

            for index, entry in enumerate(entries, start=1):
                stage = f"{index}/{len(entries)} {entry.kind} {entry.path}"
                start_time = time.time()
                try:
                    self._apply_entry(transaction_id, root, entry)
                except Exception as e:
                    reason = e.reason if isinstance(e, FileOperationFailed) else str(e)
                    report.failed_stage = stage
                    report.error = str(e)
                    bound_logger.warning(
                        "scaffold.entry_failed",
                        stage=stage,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self._ui.print(f"❌ [red]FAILED[/red] {stage} ({reason})")
                    break

                report.applied_count += 1
                progress.advance(task)
                bound_logger.debug(
                    "scaffold.entry",
                    stage=stage,
                    elapsed_ms=int((time.time() - start_time) * 1000),
                )

        if report.failed_stage is None:
            self._manager.commit_transaction(transaction_id)
            self._ui.print(f"✅ [green]APPLIED[/green] {report.applied_count} entries")
        else:
            self._rollback(transaction_id, root, opts, report)

        bound_logger.info(
            "scaffold.summary",
            status=report.status,
            total_entries=report.total_entries,
            applied_count=report.applied_count,
            failed_stage=report.failed_stage,
            rollback_complete=report.rollback_complete,
            leftover_paths=[str(p) for p in report.leftover_paths],
        )
        return report

    def _apply_entry(self, transaction_id: str, root: Path, entry: ScaffoldEntry) -> None:
        target = self._resolve(root, entry.path)
        if entry.kind == "directory":
            self._manager.record_directory_creation(transaction_id, target)
        elif entry.kind == "file":
            self._manager.record_file_creation(transaction_id, target, entry.content)
        elif entry.kind == "modify":
            self._manager.record_file_modification(
                transaction_id, target, entry.content or ""
            )
        elif entry.kind == "copy":
            assert entry.source is not None
            self._manager.record_file_copy(
                transaction_id, self._resolve(root, entry.source), target
            )
        elif entry.kind == "move":
            assert entry.source is not None
            self._manager.record_file_move(
                transaction_id, self._resolve(root, entry.source), target
            )

    def _rollback(
        self,
        transaction_id: str,
        root: Path,
        opts: ApplyOptions,
        report: ScaffoldReport,
    ) -> None:
        """Roll back a failed run and fill in the report."""
        self._ui.print("🔄 [yellow]Rolling back...[/yellow]")
        try:
            self._manager.rollback_transaction(transaction_id)
        except TransactionNotFound:
            # Ended elsewhere; nothing is known about what remains on disk.
            report.status = "rollback_failed"
            report.rollback_complete = False
            self._ui.print("❌ [red]Rollback impossible[/red] transaction is gone")
            return
        except RollbackFailed as e:
            report.status = "rollback_failed"
            report.rollback_complete = False
            report.leftover_paths = e.leftover_paths
            self._ui.print(f"❌ [red]Rollback incomplete[/red] {e.reason}")
            for path in e.leftover_paths:
                self._ui.print(f"   [red]left behind[/red] {path}")

            if opts.emergency_cleanup:
                try:
                    self._manager.emergency_cleanup(root)
                except EmergencyCleanupFailed as cleanup_error:
                    self._ui.print(
                        f"❌ [red]Emergency cleanup failed[/red] {cleanup_error.reason}"
                    )
                else:
                    report.emergency_cleanup_done = True
                    self._ui.print("⚠️ [yellow]Emergency cleanup removed project[/yellow]")
            return

        report.status = "rolled_back"
        self._ui.print("✅ [green]Rollback completed[/green]")

    @staticmethod
    def _resolve(root: Path, path: Path) -> Path:
        return path if path.is_absolute() else root / path

    def _create_progress(self) -> Progress:
        """Create Rich progress display."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self._ui,
            transient=False,
        )
