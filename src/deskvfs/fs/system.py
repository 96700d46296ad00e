"""SystemAdapter — local disk storage with native change watching."""

from __future__ import annotations

import asyncio
import contextlib
import fnmatch
import inspect
import logging
import os
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchfiles import Change, awatch

from .exceptions import AdapterError, CapabilityNotSupportedError
from .types import FileStat, FileStream, VFSContext
from .utils import WILDCARD, MimeTypes, join_vfs, path_portion

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

    from deskvfs.config import FilesystemConfig

    from .protocol import WatchCallback
    from .types import Mountpoint

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_CHANGE_TYPES = {
    Change.added: "add",
    Change.modified: "change",
    Change.deleted: "unlink",
}


class SystemWatcher:
    """Background ``watchfiles`` task feeding a watch callback."""

    def __init__(self, task: asyncio.Task[None], stop_event: asyncio.Event, path: str) -> None:
        self._task = task
        self._stop_event = stop_event
        self.path = path

    async def close(self) -> None:
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except TimeoutError:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task


class SystemAdapter:
    """Local disk adapter.

    The real location of a VFS path is the mountpoint's ``attributes.root``
    template, resolved for the requesting user, joined with the path part
    of the VFS path.  Paths reaching the adapter are already sanitized;
    ``_real_path`` still refuses anything that normalizes outside the root.
    """

    supports_range = True

    def __init__(self, config: FilesystemConfig, mime: MimeTypes | None = None) -> None:
        self.config = config
        self.mime = mime or MimeTypes(config.mime.filenames, config.mime.define)

    # =========================================================================
    # Path Resolution
    # =========================================================================

    def _root(self, ctx: VFSContext) -> str:
        template = ctx.mount.template
        if template is None:
            raise CapabilityNotSupportedError(
                f"Mountpoint '{ctx.mount.name}' has no root configured"
            )
        return os.path.abspath(template.resolve(ctx))

    def _real_path(self, ctx: VFSContext, path: str) -> str:
        root = self._root(ctx)
        rel = path_portion(path).lstrip("/")
        real = os.path.normpath(os.path.join(root, rel)) if rel else root
        if os.path.commonpath([root, real]) != root:
            raise AdapterError(f"EACCES: path escapes mountpoint root, '{path}'", "EACCES")
        return real

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> None:
        """No-op for local disk."""

    async def close(self) -> None:
        """No-op; watchers are owned by the filesystem service."""

    async def capabilities(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> dict[str, Any]:
        return {"pagination": False, "sort": False, "range": True}

    # =========================================================================
    # Metadata
    # =========================================================================

    def _create_stat(self, real: str, vfs_path: str) -> FileStat:
        filename = os.path.basename(real)
        try:
            st = os.stat(real)
        except OSError:
            logger.warning("Cannot stat %s", real, exc_info=True)
            return FileStat(
                filename=filename,
                path=vfs_path,
                size=0,
                is_file=True,
                is_directory=False,
                mime=self.mime(filename),
            )
        is_dir = os.path.isdir(real)
        is_file = os.path.isfile(real)
        return FileStat(
            filename=filename,
            path=vfs_path,
            size=st.st_size,
            is_file=is_file,
            is_directory=is_dir,
            mime=self.mime(filename) if is_file else None,
            mtime=st.st_mtime,
        )

    # =========================================================================
    # Read Operations
    # =========================================================================

    async def exists(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        real = self._real_path(ctx, path)
        return await asyncio.to_thread(os.path.exists, real)

    async def stat(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> FileStat:
        real = self._real_path(ctx, path)

        def _stat() -> FileStat:
            os.stat(real)
            return self._create_stat(real, path)

        try:
            return await asyncio.to_thread(_stat)
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e

    async def readdir(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> list[FileStat]:
        real = self._real_path(ctx, path)

        def _scan() -> list[FileStat]:
            entries = [
                self._create_stat(entry.path, join_vfs(path, entry.name))
                for entry in os.scandir(real)
            ]
            entries.sort(key=lambda x: (not x.is_directory, x.filename.lower()))
            return entries

        try:
            return await asyncio.to_thread(_scan)
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e

    async def readfile(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> FileStream:
        real = self._real_path(ctx, path)
        try:
            st = await asyncio.to_thread(os.stat, real)
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e
        if not os.path.isfile(real):
            raise AdapterError(f"EISDIR: illegal operation on a directory, '{path}'", "EISDIR")

        byte_range = options.get("range")
        start, end = (int(byte_range[0]), int(byte_range[1])) if byte_range else (0, None)
        filename = os.path.basename(real)
        return FileStream(
            chunks=_iter_file(real, start, end),
            size=st.st_size,
            mime=self.mime(filename),
            filename=filename,
            range=(start, end) if end is not None else None,
        )

    async def search(
        self, ctx: VFSContext, root: str, pattern: str, options: dict[str, Any]
    ) -> list[FileStat]:
        real_root = self._real_path(ctx, root)
        needle = pattern.lower()

        def _walk() -> list[FileStat]:
            found: list[FileStat] = []
            for dirpath, _dirnames, filenames in os.walk(real_root):
                for name in filenames:
                    if not fnmatch.fnmatchcase(name.lower(), needle):
                        continue
                    real = os.path.join(dirpath, name)
                    rel = os.path.relpath(real, real_root).replace(os.sep, "/")
                    found.append(self._create_stat(real, join_vfs(root, rel)))
            return found

        try:
            return await asyncio.to_thread(_walk)
        except OSError:
            logger.warning("Search failed in %s", real_root, exc_info=True)
            return []

    async def realpath(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> str:
        return self._real_path(ctx, path)

    # =========================================================================
    # Write Operations
    # =========================================================================

    async def writefile(
        self, ctx: VFSContext, path: str, data: AsyncIterable[bytes], options: dict[str, Any]
    ) -> int | bool:
        """Write *data* to disk.  Returns ``False`` if the target is a directory."""
        real = self._real_path(ctx, path)
        # Checked before opening; a concurrent mkdir at this path can still win.
        if await asyncio.to_thread(os.path.isdir, real):
            return False

        try:
            f = await asyncio.to_thread(open, real, "wb")
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e

        written = 0
        try:
            async for chunk in data:
                await asyncio.to_thread(f.write, chunk)
                written += len(chunk)
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e
        finally:
            await asyncio.to_thread(f.close)
        return written

    async def mkdir(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        real = self._real_path(ctx, path)
        try:
            await asyncio.to_thread(os.mkdir, real)
        except FileExistsError as e:
            if options.get("ensure") and await asyncio.to_thread(os.path.isdir, real):
                return True
            raise AdapterError.from_os_error(e, path) from e
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e
        return True

    async def unlink(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        """Remove a file or a directory tree.  Missing targets are not an error."""
        real = self._real_path(ctx, path)

        def _remove() -> None:
            if os.path.isdir(real) and not os.path.islink(real):
                shutil.rmtree(real)
            elif os.path.lexists(real):
                os.unlink(real)

        try:
            await asyncio.to_thread(_remove)
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e
        return True

    async def touch(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        real = self._real_path(ctx, path)

        def _touch() -> None:
            Path(real).parent.mkdir(parents=True, exist_ok=True)
            if not os.path.exists(real):
                Path(real).touch()

        try:
            await asyncio.to_thread(_touch)
        except OSError as e:
            raise AdapterError.from_os_error(e, path) from e
        return True

    async def copy(
        self,
        src_ctx: VFSContext,
        dest_ctx: VFSContext,
        src: str,
        dest: str,
        options: dict[str, Any],
    ) -> bool:
        real_src = self._real_path(src_ctx, src)
        real_dest = self._real_path(dest_ctx, dest)

        def _copy() -> None:
            if os.path.isdir(real_src):
                shutil.copytree(real_src, real_dest, dirs_exist_ok=True)
            else:
                shutil.copy2(real_src, real_dest)

        try:
            await asyncio.to_thread(_copy)
        except OSError as e:
            raise AdapterError.from_os_error(e, src) from e
        return True

    async def rename(
        self,
        src_ctx: VFSContext,
        dest_ctx: VFSContext,
        src: str,
        dest: str,
        options: dict[str, Any],
    ) -> bool:
        real_src = self._real_path(src_ctx, src)
        real_dest = self._real_path(dest_ctx, dest)
        if not await asyncio.to_thread(os.path.lexists, real_src):
            raise AdapterError(f"ENOENT: no such file or directory, '{src}'", "ENOENT")
        try:
            await asyncio.to_thread(shutil.move, real_src, real_dest)
        except OSError as e:
            raise AdapterError.from_os_error(e, src) from e
        return True

    # =========================================================================
    # Watch
    # =========================================================================

    async def watch(self, mount: Mountpoint, callback: WatchCallback) -> SystemWatcher:
        """Watch the mountpoint root with every dynamic segment wildcarded.

        ``callback`` receives the recovered segment values (e.g.
        ``{"username": "jest"}``), the path relative to that root and the
        change type (``add``, ``addDir``, ``change`` or ``unlink``).
        """
        template = mount.template
        if template is None:
            raise CapabilityNotSupportedError(f"Mountpoint '{mount.name}' has no root configured")

        dest = os.path.abspath(template.wildcard(VFSContext(None, mount, self.config)))
        pattern = re.compile(
            re.escape(dest).replace(re.escape(WILDCARD), "([^/]*)") + "/(.*)"
        )
        tokens = template.dynamic_tokens
        watch_root = _static_prefix(dest)
        await asyncio.to_thread(os.makedirs, watch_root, exist_ok=True)

        async def _handle(change: Change, changed: str) -> None:
            match = pattern.match(changed)
            if match is None:
                return
            groups = match.groups()
            segments = dict(zip(tokens, groups[:-1], strict=False))
            change_type = _CHANGE_TYPES.get(change, "change")
            if change is Change.added and await asyncio.to_thread(os.path.isdir, changed):
                change_type = "addDir"
            result = callback(segments, groups[-1], change_type)
            if inspect.isawaitable(result):
                await result

        stop_event = asyncio.Event()

        async def _run() -> None:
            try:
                async for changes in awatch(
                    watch_root, stop_event=stop_event, **mount.attributes.watch_options
                ):
                    for change, changed in sorted(changes, key=lambda c: c[1]):
                        try:
                            await _handle(change, changed)
                        except Exception:
                            logger.warning("Watch callback failed for %s", changed, exc_info=True)
            except Exception:
                logger.warning("Watcher for %s stopped", watch_root, exc_info=True)

        task = asyncio.create_task(_run(), name=f"deskvfs-watch-{mount.name}")
        return SystemWatcher(task, stop_event, watch_root)


def _static_prefix(path: str) -> str:
    """Longest leading run of path components without a wildcard."""
    parts: list[str] = []
    for part in path.split(os.sep):
        if WILDCARD in part:
            break
        parts.append(part)
    return os.sep.join(parts) or os.sep


async def _iter_file(real: str, start: int, end: int | None) -> AsyncIterator[bytes]:
    """Yield the bytes of *real* from *start* to *end* (inclusive) in chunks."""
    f = await asyncio.to_thread(open, real, "rb")
    try:
        if start:
            await asyncio.to_thread(f.seek, start)
        remaining = None if end is None else end - start + 1
        while remaining is None or remaining > 0:
            size = CHUNK_SIZE if remaining is None else min(CHUNK_SIZE, remaining)
            chunk = await asyncio.to_thread(f.read, size)
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk
    finally:
        await asyncio.to_thread(f.close)
