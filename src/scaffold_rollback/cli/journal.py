"""CLI commands for inspecting and recovering rollback journals."""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

from rich.console import Console
from rich.table import Table

from scaffold_rollback.chains.apply_chain import (
    ApplyOptions,
    ScaffoldChain,
    ScaffoldPlan,
)
from scaffold_rollback.fs.journal_file import load_interrupted_journals
from scaffold_rollback.fs.paths import resolve_temp_dir
from scaffold_rollback.manager import RollbackManager

app: TyperType = typer.Typer(help="Inspect and recover scaffold rollback journals.")

TempDirOption = Annotated[
    Path | None,
    typer.Option(
        "--temp-dir",
        help="Override for the backup/journal directory location.",
    ),
]
ProjectPathOption = Annotated[
    Path | None,
    typer.Option("--project-path", help="Only act on journals for this project."),
]


def list_journals(temp_dir: TempDirOption = None) -> None:
    """List journals left behind by interrupted runs."""

    resolved = resolve_temp_dir(temp_dir)
    records = load_interrupted_journals(resolved)
    if not records:
        typer.secho(f"No interrupted journals in {resolved}", fg=typer.colors.GREEN)
        return

    table = Table(title="Interrupted transactions")
    table.add_column("Transaction", no_wrap=True)
    table.add_column("Description")
    table.add_column("Project", overflow="fold")
    table.add_column("Completed ops", justify="right", no_wrap=True)
    for record in records:
        completed = sum(1 for op in record.operations if op.completed)
        table.add_row(
            record.transaction_id,
            record.description,
            str(record.project_path or "-"),
            f"{completed}/{len(record.operations)}",
        )
    Console().print(table)


def recover(
    temp_dir: TempDirOption = None, project_path: ProjectPathOption = None
) -> None:
    """Roll back every interrupted transaction found in the journal directory."""

    manager = RollbackManager(temp_dir, persist_journal=False)
    outcomes = manager.recover_interrupted(project_path)
    failed = False
    for outcome in outcomes:
        result = outcome.result
        if result.ok:
            typer.secho(
                f"Rolled back {outcome.transaction_id} "
                f"({len(result.reversed)} operations)",
                fg=typer.colors.GREEN,
            )
        else:
            failed = True
            typer.secho(
                f"Partially rolled back {outcome.transaction_id}: "
                f"{len(result.failed)} operations failed",
                fg=typer.colors.RED,
            )
            for path in result.leftover_paths:
                typer.echo(f"  left behind: {path}")

    if not outcomes:
        typer.secho("Nothing to recover", fg=typer.colors.GREEN)
    if failed:
        raise typer.Exit(code=1)


def cleanup(temp_dir: TempDirOption = None) -> None:
    """Remove the backup/journal directory."""

    manager = RollbackManager(temp_dir, persist_journal=False)
    manager.cleanup_temp_directory()
    typer.secho(f"Removed {manager.temp_dir}", fg=typer.colors.GREEN)


def apply(
    manifest: Annotated[Path, typer.Argument(help="JSON scaffold plan to apply.")],
    project_path: Annotated[
        Path, typer.Option("--project-path", help="Project root for relative paths.")
    ],
    temp_dir: TempDirOption = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Print the plan without applying it.")
    ] = False,
) -> None:
    """Apply a scaffold plan transactionally, rolling back on failure."""

    plan = ScaffoldPlan.model_validate_json(manifest.read_text(encoding="utf-8"))
    chain = ScaffoldChain(manager=RollbackManager(temp_dir))
    report = chain.apply(
        plan.entries,
        ApplyOptions(
            project_path=str(project_path),
            description=plan.description,
            mode="dry_run" if dry_run else "transactional",
        ),
    )
    if report.status in ("applied", "dry_run"):
        return

    typer.secho(
        f"Scaffold failed at {report.failed_stage}: {report.error}",
        fg=typer.colors.RED,
    )
    raise typer.Exit(code=1 if report.rollback_complete else 2)


app.command("journals")(list_journals)
app.command("recover")(recover)
app.command("cleanup")(cleanup)
app.command("apply")(apply)
