"""VFSNode model — one row per file or directory of the database adapter.

``path`` is the full storage key: the resolved mountpoint root followed by
the path inside the mountpoint (``/jest/docs/a.txt`` for ``home:/docs/a.txt``
with a ``/{username}`` root).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, LargeBinary
from sqlmodel import Field, SQLModel


class VFSNodeBase(SQLModel):
    """Base fields for a stored node. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    path: str = Field(index=True, unique=True)
    parent_path: str = Field(default="", index=True)
    name: str = Field(default="")
    is_directory: bool = Field(default=False)
    content: bytes = Field(default=b"", sa_type=LargeBinary)
    size_bytes: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class VFSNode(VFSNodeBase, table=True):
    """Default node table, ``deskvfs_nodes``."""

    __tablename__ = "deskvfs_nodes"
