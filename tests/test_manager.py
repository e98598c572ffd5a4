"""Tests for the transaction manager."""

import shutil
from pathlib import Path
from unittest.mock import patch

import pytest
from structlog.testing import capture_logs

from scaffold_rollback.core.errors import (
    EmergencyCleanupFailed,
    FileCopyFailed,
    FileCreationFailed,
    FileModificationFailed,
    FileMoveFailed,
    RollbackFailed,
    TransactionNotFound,
)
from scaffold_rollback.fs.backup_store import BackupStore
from scaffold_rollback.journal import executor as executor_module
from scaffold_rollback.journal.operations import CreateDirectory, ModifyFile
from scaffold_rollback.manager import RollbackManager


class TestTransactionLifecycle:
    def test_start_transaction_creates_temp_dir(
        self, manager: RollbackManager, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("create app", "/p")

        assert temp_dir.is_dir()
        assert manager.get_active_transactions() == [tx]
        status = manager.get_transaction_status(tx)
        assert status.exists
        assert status.operation_count == 0

    def test_multiple_transactions_are_tracked(self, manager: RollbackManager) -> None:
        first = manager.start_transaction("one", "/p1")
        second = manager.start_transaction("two", "/p2")

        assert first != second
        assert set(manager.get_active_transactions()) == {first, second}

    def test_unknown_transaction(self, manager: RollbackManager, project: Path) -> None:
        with pytest.raises(TransactionNotFound):
            manager.commit_transaction("tx_missing")
        with pytest.raises(TransactionNotFound):
            manager.rollback_transaction("tx_missing")
        with pytest.raises(TransactionNotFound):
            manager.record_file_creation("tx_missing", project / "a.txt", "x")
        assert not (project / "a.txt").exists()
        assert manager.get_transaction_status("tx_missing").exists is False

    def test_commit_is_terminal(self, manager: RollbackManager, project: Path) -> None:
        tx = manager.start_transaction("t", project)
        manager.record_file_creation(tx, project / "a.txt", "x")
        snapshot = manager.create_snapshot(tx, "checkpoint", project)

        manager.commit_transaction(tx)

        assert (project / "a.txt").read_text() == "x"
        assert manager.get_active_transactions() == []
        assert manager.get_snapshots() == []
        with pytest.raises(TransactionNotFound):
            manager.rollback_transaction(tx)
        with pytest.raises(TransactionNotFound):
            manager.rollback_to_snapshot(snapshot.id)
        with pytest.raises(TransactionNotFound):
            manager.commit_transaction(tx)

    def test_commit_discards_backups(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        modification = manager.record_file_modification(
            tx, project / "package.json", '{"name":"x"}'
        )
        assert modification.backup_path is not None
        assert modification.backup_path.exists()

        manager.commit_transaction(tx)

        assert not modification.backup_path.exists()
        assert list((temp_dir / "backups").iterdir()) == []
        assert list((temp_dir / "journals").iterdir()) == []

    def test_commit_backup_cleanup_failure_is_a_warning(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        manager.record_file_modification(tx, project / "package.json", "{}")

        with (
            patch.object(BackupStore, "discard", side_effect=PermissionError("busy")),
            capture_logs() as logs,
        ):
            manager.commit_transaction(tx)

        assert manager.get_active_transactions() == []
        warnings = [log for log in logs if log["event"] == "transaction.backup_cleanup_failed"]
        assert warnings and warnings[0]["log_level"] == "warning"


class TestRecording:
    def test_file_creation_writes_and_completes(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)

        operation = manager.record_file_creation(tx, project / "index.ts", "export {}")

        assert (project / "index.ts").read_text() == "export {}"
        assert operation.completed
        assert manager.get_transaction_status(tx).completed_count == 1

    def test_file_creation_without_content_only_registers(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        rendered = project / "rendered.txt"
        rendered.write_text("from template")

        manager.record_file_creation(tx, rendered)
        assert rendered.read_text() == "from template"

        manager.rollback_transaction(tx)
        assert not rendered.exists()

    def test_file_creation_accepts_bytes(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)

        manager.record_file_creation(tx, project / "logo.png", b"\x89PNG")

        assert (project / "logo.png").read_bytes() == b"\x89PNG"

    def test_missing_parents_are_recorded(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)

        manager.record_file_creation(tx, project / "a" / "b" / "c.txt", "x")

        status = manager.get_transaction_status(tx)
        assert status.operation_count == 3
        assert status.completed_count == 3

        manager.rollback_transaction(tx)
        assert not (project / "a").exists()

    def test_file_creation_failure_leaves_incomplete_operation(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        target = project / "index.ts"

        with patch(
            "scaffold_rollback.manager._write_content",
            side_effect=PermissionError("Permission denied"),
        ):
            with pytest.raises(FileCreationFailed) as exc_info:
                manager.record_file_creation(tx, target, "export {}")

        assert exc_info.value.path == target
        assert isinstance(exc_info.value.__cause__, PermissionError)
        status = manager.get_transaction_status(tx)
        assert status.operation_count == 1
        assert status.completed_count == 0

        target.write_text("written by someone else")
        result = manager.rollback_transaction(tx)
        assert target.exists()
        assert result.skipped == [exc_info.value.operation_id]

    def test_directory_creation_is_idempotent(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        (project / "src").mkdir()

        operation = manager.record_directory_creation(tx, project / "src")

        assert isinstance(operation, CreateDirectory)
        assert operation.existed
        assert operation.completed

        manager.rollback_transaction(tx)
        assert (project / "src").is_dir()

    def test_modification_of_missing_file_has_no_backup(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)

        operation = manager.record_file_modification(tx, project / "new.json", "{}")

        assert isinstance(operation, ModifyFile)
        assert operation.backup_path is None
        manager.rollback_transaction(tx)
        assert not (project / "new.json").exists()

    def test_modification_backup_failure(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)

        with patch.object(BackupStore, "backup", side_effect=OSError("disk full")):
            with pytest.raises(FileModificationFailed, match="backup failed"):
                manager.record_file_modification(tx, project / "package.json", "new")

        assert (project / "package.json").read_text() == "{}"
        assert manager.get_transaction_status(tx).completed_count == 0

    def test_copy_leaves_source_untouched(
        self, manager: RollbackManager, project: Path, tmp_path: Path
    ) -> None:
        template = tmp_path / "template.txt"
        template.write_text("tpl")
        tx = manager.start_transaction("t", project)

        manager.record_file_copy(tx, template, project / "copied.txt")
        assert (project / "copied.txt").read_text() == "tpl"

        manager.rollback_transaction(tx)
        assert not (project / "copied.txt").exists()
        assert template.read_text() == "tpl"

    def test_copy_refuses_existing_target(
        self, manager: RollbackManager, project: Path, tmp_path: Path
    ) -> None:
        template = tmp_path / "template.txt"
        template.write_text("tpl")
        tx = manager.start_transaction("t", project)

        with pytest.raises(FileCopyFailed):
            manager.record_file_copy(tx, template, project / "package.json")

        manager.rollback_transaction(tx)
        assert (project / "package.json").read_text() == "{}"

    def test_copy_directory(
        self, manager: RollbackManager, project: Path, tmp_path: Path
    ) -> None:
        template_dir = tmp_path / "template"
        (template_dir / "nested").mkdir(parents=True)
        (template_dir / "nested" / "f.txt").write_text("x")
        tx = manager.start_transaction("t", project)

        manager.record_file_copy(tx, template_dir, project / "copied")
        assert (project / "copied" / "nested" / "f.txt").read_text() == "x"

        manager.rollback_transaction(tx)
        assert not (project / "copied").exists()

    def test_move_of_missing_source_fails(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)

        with pytest.raises(FileMoveFailed) as exc_info:
            manager.record_file_move(tx, project / "nope.txt", project / "new.txt")

        assert exc_info.value.source == project / "nope.txt"
        assert manager.get_transaction_status(tx).completed_count == 0


class TestRollback:
    def test_generation_scenario(self, manager: RollbackManager, project: Path) -> None:
        tx = manager.start_transaction("t1", project)
        manager.record_directory_creation(tx, project / "src")
        manager.record_file_creation(tx, project / "src" / "index.ts", "export {}")
        manager.record_file_modification(tx, project / "package.json", '{"name":"x"}')
        assert (project / "package.json").read_text() == '{"name":"x"}'

        result = manager.rollback_transaction(tx)

        assert not (project / "src" / "index.ts").exists()
        assert not (project / "src").exists()
        assert (project / "package.json").read_text() == "{}"
        assert len(result.reversed) == 3
        assert manager.get_active_transactions() == []

    def test_move_scenario(self, manager: RollbackManager, tmp_path: Path) -> None:
        folder = tmp_path / "a"
        folder.mkdir()
        (folder / "old.txt").write_text("hello")
        tx = manager.start_transaction("t2", folder)

        manager.record_file_move(tx, folder / "old.txt", folder / "new.txt")
        assert not (folder / "old.txt").exists()
        assert (folder / "new.txt").read_text() == "hello"

        manager.rollback_transaction(tx)

        assert (folder / "old.txt").read_text() == "hello"
        assert not (folder / "new.txt").exists()

    def test_round_trip_restores_tree(
        self, manager: RollbackManager, project: Path, tmp_path: Path, snapshot_tree
    ) -> None:
        (project / "README.md").write_text("# app")
        (project / "assets").mkdir()
        (project / "assets" / "logo.svg").write_text("<svg/>")
        template = tmp_path / "template.txt"
        template.write_text("tpl")
        before = snapshot_tree(project)

        tx = manager.start_transaction("round trip", project)
        manager.record_directory_creation(tx, project / "src")
        manager.record_directory_creation(tx, project / "assets")
        manager.record_file_creation(tx, project / "src" / "deep" / "a.ts", "a")
        manager.record_file_modification(tx, project / "package.json", '{"v":2}')
        manager.record_file_modification(tx, project / "README.md", "# changed")
        manager.record_file_copy(tx, template, project / "config" / "tpl.txt")
        manager.record_file_move(tx, project / "assets" / "logo.svg", project / "logo.svg")
        assert snapshot_tree(project) != before

        manager.rollback_transaction(tx)

        assert snapshot_tree(project) == before
        assert template.read_text() == "tpl"

    def test_directory_with_unrelated_files_is_kept(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        manager.record_directory_creation(tx, project / "a" / "b")
        (project / "a" / "b" / "user.txt").write_text("mine")

        result = manager.rollback_transaction(tx)

        assert (project / "a" / "b" / "user.txt").read_text() == "mine"
        assert len(result.warnings) == 2

    def test_partial_failure_reports_completed_operations(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        ops = [
            manager.record_file_creation(tx, project / f"{n}.txt", str(n))
            for n in range(1, 6)
        ]
        locked = project / "3.txt"
        real_remove = executor_module._remove_file

        def flaky_remove(path: Path) -> None:
            if path == locked:
                raise PermissionError("locked by another process")
            real_remove(path)

        with patch(
            "scaffold_rollback.journal.executor._remove_file", side_effect=flaky_remove
        ):
            with pytest.raises(RollbackFailed) as exc_info:
                manager.rollback_transaction(tx)

        error = exc_info.value
        assert error.completed_operation_ids == [ops[4].id, ops[3].id, ops[1].id, ops[0].id]
        assert error.failed_operation_ids == [ops[2].id]
        assert error.leftover_paths == [locked]
        assert locked.exists()
        assert manager.get_active_transactions() == []

    def test_failed_rollback_keeps_journal(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        modification = manager.record_file_modification(tx, project / "package.json", "x")
        assert modification.backup_path is not None
        modification.backup_path.unlink()

        with pytest.raises(RollbackFailed):
            manager.rollback_transaction(tx)

        journal = temp_dir / "journals" / f"{tx}.jsonl"
        assert journal.exists()
        assert '"rollback_failed"' in journal.read_text()

    def test_rollback_restores_backup_of_incomplete_modification(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        target = project / "package.json"

        with patch(
            "scaffold_rollback.manager._write_content",
            side_effect=OSError("No space left on device"),
        ):
            with pytest.raises(FileModificationFailed):
                manager.record_file_modification(tx, target, '{"name": "x"}')

        result = manager.rollback_transaction(tx)

        assert len(result.skipped) == 1
        assert target.read_text() == "{}"
        assert list((temp_dir / "backups").iterdir()) == []

    def test_unencodable_modification_leaves_file_intact(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        target = project / "package.json"

        with pytest.raises(FileModificationFailed) as exc_info:
            manager.record_file_modification(tx, target, "bad \ud800")

        assert isinstance(exc_info.value.__cause__, UnicodeEncodeError)
        assert target.read_text() == "{}"
        assert sorted(p.name for p in project.iterdir()) == ["package.json"]

        manager.rollback_transaction(tx)

        assert target.read_text() == "{}"
        assert list((temp_dir / "backups").iterdir()) == []

    def test_existing_file_survives_rollback_of_refused_creation(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        target = project / "package.json"

        with pytest.raises(FileCreationFailed, match="already exists"):
            manager.record_file_creation(tx, target, "generated")

        assert target.read_text() == "{}"
        result = manager.rollback_transaction(tx)
        assert target.read_text() == "{}"
        assert len(result.skipped) == 1

    def test_directory_move_round_trip(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        assets = project / "assets"
        (assets / "img").mkdir(parents=True)
        (assets / "img" / "logo.png").write_bytes(b"\x89PNG")
        tx = manager.start_transaction("t", project)

        operation = manager.record_file_move(tx, assets, project / "static")
        assert operation.backup_path is not None
        assert (project / "static" / "img" / "logo.png").exists()

        result = manager.rollback_transaction(tx)

        assert result.warnings == []
        assert (assets / "img" / "logo.png").read_bytes() == b"\x89PNG"
        assert not (project / "static").exists()
        assert list((temp_dir / "backups").iterdir()) == []

    def test_journal_write_failure_fails_the_operation(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        manager.record_file_creation(tx, project / "a.txt", "a")
        manager._writers[tx].close()
        shutil.rmtree(temp_dir / "journals")

        with pytest.raises(FileCreationFailed) as exc_info:
            manager.record_file_creation(tx, project / "b.txt", "b")

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert not (project / "b.txt").exists()

    def test_transaction_context_commits(
        self, manager: RollbackManager, project: Path
    ) -> None:
        with manager.transaction("ok", project) as tx:
            manager.record_file_creation(tx, project / "a.txt", "x")

        assert (project / "a.txt").exists()
        assert manager.get_active_transactions() == []

    def test_transaction_context_rolls_back_on_error(
        self, manager: RollbackManager, project: Path
    ) -> None:
        with pytest.raises(RuntimeError, match="template failed"):
            with manager.transaction("boom", project) as tx:
                manager.record_file_creation(tx, project / "a.txt", "x")
                raise RuntimeError("template failed")

        assert not (project / "a.txt").exists()
        assert manager.get_active_transactions() == []


class TestSnapshots:
    def test_snapshot_isolation(self, manager: RollbackManager, project: Path) -> None:
        tx = manager.start_transaction("t", project)
        manager.record_file_creation(tx, project / "before.txt", "b")
        snapshot = manager.create_snapshot(tx, "checkpoint", project)
        manager.record_file_creation(tx, project / "one.txt", "1")
        manager.record_file_modification(tx, project / "package.json", "changed")
        manager.record_directory_creation(tx, project / "later")

        assert len(snapshot.operations) == 1

        result = manager.rollback_to_snapshot(snapshot.id)

        assert len(result.reversed) == 3
        assert (project / "before.txt").read_text() == "b"
        assert not (project / "one.txt").exists()
        assert not (project / "later").exists()
        assert (project / "package.json").read_text() == "{}"
        assert manager.get_active_transactions() == [tx]
        assert manager.get_transaction_status(tx).operation_count == 1

        manager.rollback_transaction(tx)
        assert not (project / "before.txt").exists()

    def test_snapshot_survives_its_own_rollback(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        snapshot = manager.create_snapshot(tx, "empty", project)
        manager.record_file_creation(tx, project / "a.txt", "a")
        manager.rollback_to_snapshot(snapshot.id)
        manager.record_file_creation(tx, project / "b.txt", "b")

        manager.rollback_to_snapshot(snapshot.id)

        assert not (project / "a.txt").exists()
        assert not (project / "b.txt").exists()
        assert snapshot in manager.get_snapshots()

    def test_snapshot_ids_do_not_collide(
        self, manager: RollbackManager, project: Path
    ) -> None:
        tx = manager.start_transaction("t", project)

        ids = {manager.create_snapshot(tx, f"s{n}", project).id for n in range(5)}

        assert len(ids) == 5

    def test_unknown_snapshot(self, manager: RollbackManager) -> None:
        with pytest.raises(TransactionNotFound) as exc_info:
            manager.rollback_to_snapshot("tx_0001_ffff_snapshot_1")

        assert exc_info.value.kind == "snapshot"


class TestCleanup:
    def test_emergency_cleanup_removes_project(
        self, manager: RollbackManager, project: Path
    ) -> None:
        (project / "src").mkdir()
        (project / "src" / "a.ts").write_text("a")

        manager.emergency_cleanup(project)

        assert not project.exists()

    def test_emergency_cleanup_of_missing_path(
        self, manager: RollbackManager, tmp_path: Path
    ) -> None:
        manager.emergency_cleanup(tmp_path / "never-created")

    def test_emergency_cleanup_failure_is_fatal(
        self, manager: RollbackManager, project: Path
    ) -> None:
        with patch("shutil.rmtree", side_effect=OSError("Device busy")):
            with pytest.raises(EmergencyCleanupFailed) as exc_info:
                manager.emergency_cleanup(project)

        assert exc_info.value.project_path == project
        assert project.exists()

    def test_cleanup_temp_directory(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        manager.record_file_modification(tx, project / "package.json", "x")
        manager.commit_transaction(tx)
        assert temp_dir.exists()

        manager.cleanup_temp_directory()

        assert not temp_dir.exists()

    def test_cleanup_temp_directory_waits_for_active_transactions(
        self, manager: RollbackManager, project: Path, temp_dir: Path
    ) -> None:
        tx = manager.start_transaction("t", project)
        manager.record_file_modification(tx, project / "package.json", "x")

        with capture_logs() as logs:
            manager.cleanup_temp_directory()

        assert any(log["event"] == "temp_directory.cleanup_skipped" for log in logs)
        manager.record_file_creation(tx, project / "later.txt", "y")
        manager.rollback_transaction(tx)
        assert (project / "package.json").read_text() == "{}"
        assert not (project / "later.txt").exists()

    def test_cleanup_temp_directory_failure_is_a_warning(
        self, manager: RollbackManager, project: Path
    ) -> None:
        manager.commit_transaction(manager.start_transaction("t", project))

        with (
            patch("shutil.rmtree", side_effect=PermissionError("busy")),
            capture_logs() as logs,
        ):
            manager.cleanup_temp_directory()

        assert any(log["event"] == "temp_directory.cleanup_failed" for log in logs)


def test_independent_managers(tmp_path: Path, project: Path) -> None:
    first = RollbackManager(tmp_path / "shared-temp")
    second = RollbackManager(tmp_path / "shared-temp")
    tx_first = first.start_transaction("one", project)
    tx_second = second.start_transaction("two", project)
    first.record_file_modification(tx_first, project / "package.json", "first")
    second.record_file_creation(tx_second, project / "b.txt", "b")

    assert tx_first not in second.get_active_transactions()

    second.rollback_transaction(tx_second)
    first.commit_transaction(tx_first)

    assert not (project / "b.txt").exists()
    assert (project / "package.json").read_text() == "first"


def test_in_memory_only_manager_writes_no_journal(tmp_path: Path, project: Path) -> None:
    manager = RollbackManager(tmp_path / "temp", persist_journal=False)
    tx = manager.start_transaction("t", project)
    manager.record_file_creation(tx, project / "a.txt", "a")

    assert not (tmp_path / "temp" / "journals").exists()
    manager.rollback_transaction(tx)
