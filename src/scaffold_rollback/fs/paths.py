"""Path utilities for journaled filesystem operations.

This module provides path normalization, temp directory resolution and
backup naming for the rollback subsystem.
"""

import os
import unicodedata
from pathlib import Path

from scaffold_rollback.utils.debug import debug

DEFAULT_TEMP_DIRNAME = ".scaffold-temp"
BACKUPS_DIRNAME = "backups"
JOURNALS_DIRNAME = "journals"


def normalize_path(path: Path | str, root: Path | None = None) -> Path:
    """Normalize a path for consistent handling.

    Args:
        path: Path to normalize
        root: Optional root directory for relative paths

    Returns:
        Normalized absolute path
    """
    if not isinstance(path, Path):
        path = Path(path)

    path = path.expanduser()
    if not path.is_absolute() and root is not None:
        path = root / path

    # Resolve without requiring the path to exist; targets are often new.
    path = Path(os.path.abspath(path))

    if os.name == "posix":
        path = Path(unicodedata.normalize("NFC", str(path)))

    return path


def resolve_temp_dir(temp_dir: Path | str | None = None) -> Path:
    """Resolve the process-wide temporary directory for backups and journals.

    Args:
        temp_dir: Optional explicit location. Falls back to the
            SCAFFOLD_ROLLBACK_TEMP_DIR environment variable, then to
            ``.scaffold-temp`` under the current working directory.

    Returns:
        Absolute path of the temp directory (not created here).
    """
    chosen: Path | str | None = temp_dir
    env_path = os.getenv("SCAFFOLD_ROLLBACK_TEMP_DIR")
    if chosen is None and env_path:
        chosen = env_path
    if chosen is None:
        chosen = Path.cwd() / DEFAULT_TEMP_DIRNAME

    return normalize_path(chosen)


def get_backup_path(
    backup_dir: Path, transaction_id: str, operation_id: str, original: Path
) -> Path:
    """Build the backup location for one operation.

    Names are unique per ``(transaction_id, operation_id)``; the original
    basename is kept only to make the temp directory readable.
    """
    return backup_dir / f"backup_{transaction_id}_{operation_id}_{original.name}"


def ensure_dir(path: Path) -> None:
    """Create a directory (and parents) if it does not exist.

    Raises:
        OSError: If the directory cannot be created
    """
    if not path.is_dir():
        path.mkdir(parents=True, exist_ok=True)
        debug(f"Created directory: {path}")


def missing_ancestors(path: Path) -> list[Path]:
    """Return the missing parent directories of ``path``, outermost first."""
    missing: list[Path] = []
    parent = path.parent
    while not parent.exists() and parent != parent.parent:
        missing.append(parent)
        parent = parent.parent
    missing.reverse()
    return missing


def is_empty_dir(path: Path) -> bool:
    """Check whether ``path`` is a directory with no entries."""
    with os.scandir(path) as entries:
        return next(entries, None) is None

