"""Opt-in stdout tracing for the backup and journal-file helpers.

Those helpers sit below the manager and have no bound structlog logger, so
they trace through ``debug()`` instead. Tracing is on when
SCAFFOLD_ROLLBACK_DEBUG is ``1``, ``true`` or ``yes`` (any case).
"""

import os
import sys
from typing import Any

_DEBUG_ENABLED = os.environ.get("SCAFFOLD_ROLLBACK_DEBUG", "").lower() in (
    "1",
    "true",
    "yes",
)


def debug(msg: Any) -> None:
    """Write ``[DEBUG] msg`` to stdout when tracing is on.

    The flag is read once at import; tests that flip it reload this module.
    """
    if _DEBUG_ENABLED:
        print(f"[DEBUG] {msg}", file=sys.stdout)
