"""CLI entrypoints for scaffold-rollback."""

from scaffold_rollback.cli.journal import app as journal_app

__all__ = ["journal_app"]
