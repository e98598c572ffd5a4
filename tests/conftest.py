"""Pytest configuration and fixtures for scaffold-rollback tests."""

from pathlib import Path

import pytest

from scaffold_rollback.manager import RollbackManager


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Backup/journal directory kept outside the project tree."""
    return tmp_path / ".scaffold-temp"


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An existing project root with one pre-existing file."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "package.json").write_text("{}")
    return root


@pytest.fixture
def manager(temp_dir: Path) -> RollbackManager:
    return RollbackManager(temp_dir)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def tree_state(root: Path) -> dict[str, bytes | None]:
    """Map every path under ``root`` to its bytes (None for directories)."""
    state: dict[str, bytes | None] = {}
    for path in sorted(root.rglob("*")):
        rel = str(path.relative_to(root))
        state[rel] = None if path.is_dir() else path.read_bytes()
    return state


@pytest.fixture
def snapshot_tree():
    return tree_state
