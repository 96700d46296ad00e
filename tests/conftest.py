"""Shared fixtures for deskvfs tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from deskvfs import Filesystem, FilesystemConfig
from deskvfs.fs.types import MountAttributes, Mountpoint, Session, User, VFSContext

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path


@pytest.fixture
def vfs_root(tmp_path: Path) -> Path:
    """VFS root with a home directory for ``jest`` and a shared area."""
    root = tmp_path / "vfs"
    (root / "jest").mkdir(parents=True)
    (root / "shared").mkdir()
    (root / "shared" / "readme.txt").write_text("shared readme")
    (root / "staff").mkdir()
    return root


@pytest.fixture
def config(vfs_root: Path) -> FilesystemConfig:
    return FilesystemConfig(
        root=str(vfs_root),
        mountpoints=[
            {"name": "home", "attributes": {"root": "{vfs}/{username}"}},
            {"name": "shared", "attributes": {"root": "{vfs}/shared", "readOnly": True}},
            {"name": "staff", "attributes": {"root": "{vfs}/staff", "groups": ["admin", "staff"]}},
            {"name": "db", "adapter": "database", "attributes": {"root": "/{username}"}},
        ],
    )


@pytest.fixture
async def filesystem(config: FilesystemConfig) -> AsyncIterator[Filesystem]:
    fs = Filesystem(config)
    await fs.init()
    yield fs
    await fs.destroy()


@pytest.fixture
def jest() -> User:
    return User(id=1, username="jest", groups=["user"])


@pytest.fixture
def admin() -> User:
    return User(id=2, username="admin", groups=["admin", "staff"])


@pytest.fixture
def session(jest: User) -> Session:
    return Session(jest)


@pytest.fixture
def make_context(config: FilesystemConfig, jest: User) -> Callable[..., VFSContext]:
    """Factory for contexts used to call an adapter directly, bypassing the dispatcher."""

    def factory(
        name: str = "home",
        root: str | None = "{vfs}/{username}",
        user: User | None = jest,
        **attrs: Any,
    ) -> VFSContext:
        mount = Mountpoint(name, attributes=MountAttributes(root=root, **attrs))
        return VFSContext(Session(user), mount, config)

    return factory
