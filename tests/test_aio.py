"""Tests for the async manager facade."""

from pathlib import Path

import anyio
import pytest

from scaffold_rollback.aio import AsyncRollbackManager
from scaffold_rollback.core.errors import TransactionNotFound


@pytest.mark.anyio
async def test_async_generation_and_rollback(temp_dir: Path, project: Path) -> None:
    manager = AsyncRollbackManager(temp_dir=temp_dir)
    tx = await manager.start_transaction("async", project)

    await manager.record_directory_creation(tx, project / "src")
    await manager.record_file_creation(tx, project / "src" / "index.ts", "export {}")
    await manager.record_file_modification(tx, project / "package.json", '{"name":"x"}')
    assert manager.get_transaction_status(tx).completed_count == 3

    await manager.rollback_transaction(tx)

    assert not (project / "src").exists()
    assert (project / "package.json").read_text() == "{}"
    assert manager.get_active_transactions() == []


@pytest.mark.anyio
async def test_concurrent_transactions(temp_dir: Path, tmp_path: Path) -> None:
    manager = AsyncRollbackManager(temp_dir=temp_dir)
    roots = [tmp_path / f"project{n}" for n in range(4)]

    async def generate(root: Path) -> None:
        tx = await manager.start_transaction(root.name, root)
        for index in range(5):
            await manager.record_file_creation(tx, root / f"{index}.txt", str(index))
        await manager.commit_transaction(tx)

    async with anyio.create_task_group() as tg:
        for root in roots:
            tg.start_soon(generate, root)

    for root in roots:
        assert sorted(p.name for p in root.iterdir()) == [f"{n}.txt" for n in range(5)]
    assert manager.get_active_transactions() == []


@pytest.mark.anyio
async def test_snapshot_rollback(temp_dir: Path, project: Path) -> None:
    manager = AsyncRollbackManager(temp_dir=temp_dir)
    tx = await manager.start_transaction("t", project)
    await manager.record_file_creation(tx, project / "keep.txt", "k")
    snapshot = await manager.create_snapshot(tx, "checkpoint", project)
    await manager.record_file_creation(tx, project / "drop.txt", "d")

    await manager.rollback_to_snapshot(snapshot.id)
    await manager.commit_transaction(tx)

    assert (project / "keep.txt").exists()
    assert not (project / "drop.txt").exists()


@pytest.mark.anyio
async def test_unknown_transaction(temp_dir: Path) -> None:
    manager = AsyncRollbackManager(temp_dir=temp_dir)

    with pytest.raises(TransactionNotFound):
        await manager.commit_transaction("tx_missing")
    with pytest.raises(TransactionNotFound):
        await manager.rollback_to_snapshot("tx_missing_snapshot_1")
