"""StorageAdapter protocol — runtime-checkable interfaces.

Split into the core operation set every adapter implements and an opt-in
watch capability, so backends without change notification only provide
the core.

Every path handed to an adapter is already sanitized ``prefix:/path``
text; the adapter resolves the mountpoint's root template itself from the
:class:`~deskvfs.fs.types.VFSContext` it receives, which is what lets one
mountpoint declaration map to per-user physical directories.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .types import FileStat, FileStream, Mountpoint, VFSContext

WatchCallback = Callable[[dict[str, str], str, str], Any]
"""``(segments, relative_path, change_type)``; may return an awaitable."""


@runtime_checkable
class StorageAdapter(Protocol):
    """Core interface every adapter must implement."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Called at mount time.  No-op if not needed."""
        ...

    async def close(self) -> None:
        """Called on unmount / shutdown."""
        ...

    async def capabilities(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> dict[str, Any]: ...

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def exists(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool: ...

    async def stat(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> FileStat: ...

    async def readdir(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> list[FileStat]: ...

    async def readfile(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> FileStream: ...

    async def search(
        self, ctx: VFSContext, root: str, pattern: str, options: dict[str, Any]
    ) -> list[FileStat]: ...

    async def realpath(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> str: ...

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def writefile(
        self, ctx: VFSContext, path: str, data: AsyncIterable[bytes], options: dict[str, Any]
    ) -> int | bool: ...

    async def mkdir(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool: ...

    async def unlink(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool: ...

    async def touch(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool: ...

    async def copy(
        self,
        src_ctx: VFSContext,
        dest_ctx: VFSContext,
        src: str,
        dest: str,
        options: dict[str, Any],
    ) -> bool: ...

    async def rename(
        self,
        src_ctx: VFSContext,
        dest_ctx: VFSContext,
        src: str,
        dest: str,
        options: dict[str, Any],
    ) -> bool: ...


@runtime_checkable
class WatchHandle(Protocol):
    """An open watcher."""

    async def close(self) -> None: ...


@runtime_checkable
class SupportsWatch(Protocol):
    """Opt-in: native change notification over a mountpoint root."""

    async def watch(self, mount: Mountpoint, callback: WatchCallback) -> WatchHandle: ...

