"""Pydantic models for journaled filesystem operations.

Each operation kind is its own frozen model carrying exactly the fields its
reversal needs. ``Operation`` is the discriminated union over ``kind``:

- CreateFile: a file written (or registered) at ``target``
- CreateDirectory: a directory made at ``target``
- ModifyFile: ``target`` overwritten, prior content kept at ``backup_path``
- CopyFile: ``source`` copied to ``target``
- MoveFile: ``source`` moved to ``target``, prior content kept at ``backup_path``

All schemas use Pydantic v2 for validation and serialization. File payloads
are never serialized; the persisted journal only needs paths to roll back.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_serializer


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BaseOperation(BaseModel):
    """Fields shared by every operation kind.

    Attributes:
        id: Journal id, ordered within its transaction
        target: Absolute path that now exists or was changed
        completed: True only after the filesystem call succeeded
        timestamp: Creation time, for diagnostics
    """

    id: str
    target: Path
    completed: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @field_serializer("target")
    def serialize_target(self, value: Path) -> str:
        return str(value)

    def mark_completed(self) -> "BaseOperation":
        """Return a copy of this operation flagged as completed."""
        return self.model_copy(update={"completed": True})

    @property
    def paths(self) -> list[Path]:
        """Paths this operation touched, for leftover reporting."""
        return [self.target]


class CreateFile(BaseOperation):
    kind: Literal["create_file"] = "create_file"
    content: str | bytes | None = Field(default=None, exclude=True, repr=False)


class CreateDirectory(BaseOperation):
    """Directory creation; ``existed`` marks a directory that was already there."""

    kind: Literal["create_directory"] = "create_directory"
    existed: bool = False


class ModifyFile(BaseOperation):
    kind: Literal["modify_file"] = "modify_file"
    content: str | bytes | None = Field(default=None, exclude=True, repr=False)
    backup_path: Path | None = None

    @field_serializer("backup_path")
    def serialize_backup_path(self, value: Path | None) -> str | None:
        return str(value) if value is not None else None


class CopyFile(BaseOperation):
    kind: Literal["copy_file"] = "copy_file"
    source: Path

    @field_serializer("source")
    def serialize_source(self, value: Path) -> str:
        return str(value)


class MoveFile(BaseOperation):
    kind: Literal["move_file"] = "move_file"
    source: Path
    backup_path: Path | None = None

    @field_serializer("source")
    def serialize_source(self, value: Path) -> str:
        return str(value)

    @field_serializer("backup_path")
    def serialize_backup_path(self, value: Path | None) -> str | None:
        return str(value) if value is not None else None

    @property
    def paths(self) -> list[Path]:
        return [self.source, self.target]


Operation = Annotated[
    CreateFile | CreateDirectory | ModifyFile | CopyFile | MoveFile,
    Field(discriminator="kind"),
]

OperationKind = Literal[
    "create_file", "create_directory", "modify_file", "copy_file", "move_file"
]

operation_adapter: TypeAdapter[Operation] = TypeAdapter(Operation)


def parse_operation(data: dict) -> Operation:
    """Rebuild an operation from its serialized form."""
    return operation_adapter.validate_python(data)


class Snapshot(BaseModel):
    """Point-in-time copy of a transaction's operation list.

    Attributes:
        id: ``{transaction_id}_snapshot_{seq}``
        transaction_id: Owning transaction
        operations: Operations recorded up to the snapshot (value copy)
        description: Diagnostic label
        project_path: Diagnostic project root
        created_at: Capture time
    """

    id: str
    transaction_id: str
    operations: tuple[Operation, ...] = ()
    description: str = ""
    project_path: Path | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @property
    def operation_ids(self) -> set[str]:
        return {operation.id for operation in self.operations}


class TransactionStatus(BaseModel):
    """Read-only view of a tracked transaction."""

    exists: bool
    operation_count: int = 0
    completed_count: int = 0

    model_config = {"frozen": True}
