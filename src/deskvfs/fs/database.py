"""DatabaseAdapter — file and directory nodes stored in a SQL table."""

from __future__ import annotations

import fnmatch
import logging
import posixpath
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import select

from deskvfs.models.nodes import VFSNode

from .exceptions import AdapterError, CapabilityNotSupportedError
from .types import FileStat, FileStream
from .utils import MimeTypes, path_portion

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from deskvfs.config import FilesystemConfig
    from deskvfs.models.nodes import VFSNodeBase

    from .types import VFSContext

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def _enoent(path: str) -> AdapterError:
    return AdapterError(f"ENOENT: no such file or directory, '{path}'", "ENOENT")


class DatabaseAdapter:
    """SQL-backed adapter that works with any async SQLAlchemy engine.

    Each node's key is the mountpoint's resolved root template followed by
    the path inside the mountpoint, so a ``/{username}`` root gives every
    user a separate tree inside one table.  The mountpoint root itself is
    an implicit directory and never stored.

    No ranged reads, no watching, no real paths.
    """

    supports_range = False

    def __init__(
        self,
        config: FilesystemConfig,
        *,
        engine: AsyncEngine | None = None,
        url: str = "sqlite+aiosqlite://",
        node_model: type[VFSNodeBase] | None = None,
        mime: MimeTypes | None = None,
    ) -> None:
        self.config = config
        self.mime = mime or MimeTypes(config.mime.filenames, config.mime.define)
        self._engine = engine
        self._owns_engine = engine is None
        self._url = url
        self._model: type[VFSNodeBase] = node_model or VFSNode  # type: ignore[assignment]
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the engine (if not given) and the node table."""
        if self._session_factory is not None:
            return
        if self._engine is None:
            self._engine = create_async_engine(self._url, echo=False)
        model = self._model
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: model.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
            )
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

    async def close(self) -> None:
        """Dispose the engine if this adapter created it."""
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()
            self._engine = None
        self._session_factory = None

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        if self._session_factory is None:
            await self.open()
        assert self._session_factory is not None
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def capabilities(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> dict[str, Any]:
        return {"pagination": False, "sort": False, "range": False}

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _root(self, ctx: VFSContext) -> str:
        template = ctx.mount.template
        resolved = template.resolve(ctx) if template is not None else ""
        return posixpath.normpath("/" + resolved.strip("/"))

    def _key(self, ctx: VFSContext, path: str) -> str:
        root = self._root(ctx)
        return posixpath.normpath(root.rstrip("/") + path_portion(path))

    def _vfs_path(self, ctx: VFSContext, key: str) -> str:
        root = self._root(ctx)
        rel = key if root == "/" else key[len(root):]
        return f"{ctx.mount.name}:{rel or '/'}"

    @staticmethod
    def _subtree_prefix(key: str) -> str:
        return key.rstrip("/") + "/"

    def _to_stat(self, ctx: VFSContext, node: VFSNodeBase) -> FileStat:
        is_dir = node.is_directory
        return FileStat(
            filename=node.name,
            path=self._vfs_path(ctx, node.path),
            size=0 if is_dir else node.size_bytes,
            is_file=not is_dir,
            is_directory=is_dir,
            mime=None if is_dir else self.mime(node.name),
            mtime=node.updated_at.timestamp() if node.updated_at else None,
        )

    def _root_stat(self, ctx: VFSContext, path: str) -> FileStat:
        root = self._root(ctx)
        return FileStat(
            filename=posixpath.basename(root) or ctx.mount.name,
            path=path,
            size=0,
            is_file=False,
            is_directory=True,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _get(self, session: AsyncSession, key: str) -> VFSNodeBase | None:
        model = self._model
        result = await session.execute(
            select(model).where(model.path == key)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def _subtree(self, session: AsyncSession, key: str) -> list[VFSNodeBase]:
        model = self._model
        result = await session.execute(
            select(model).where(
                or_(
                    model.path == key,  # type: ignore[arg-type]
                    model.path.startswith(self._subtree_prefix(key), autoescape=True),  # type: ignore[attr-defined]
                )
            )
        )
        return list(result.scalars().all())

    async def _require_parent(self, session: AsyncSession, ctx: VFSContext, key: str, path: str) -> None:
        parent = posixpath.dirname(key)
        if parent == self._root(ctx) or key == self._root(ctx):
            return
        node = await self._get(session, parent)
        if node is None or not node.is_directory:
            raise _enoent(path)

    def _new_node(self, key: str, *, is_directory: bool, content: bytes = b"") -> VFSNodeBase:
        return self._model(
            path=key,
            parent_path=posixpath.dirname(key),
            name=posixpath.basename(key),
            is_directory=is_directory,
            content=content,
            size_bytes=len(content),
        )

    async def _delete_paths(self, session: AsyncSession, keys: list[str]) -> None:
        if not keys:
            return
        model = self._model
        await session.execute(delete(model).where(model.path.in_(keys)))  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Read Operations
    # ------------------------------------------------------------------

    async def exists(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        key = self._key(ctx, path)
        if key == self._root(ctx):
            return True
        async with self._session() as session:
            return await self._get(session, key) is not None

    async def stat(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> FileStat:
        key = self._key(ctx, path)
        if key == self._root(ctx):
            return self._root_stat(ctx, path)
        async with self._session() as session:
            node = await self._get(session, key)
        if node is None:
            raise _enoent(path)
        return self._to_stat(ctx, node)

    async def readdir(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> list[FileStat]:
        key = self._key(ctx, path)
        model = self._model
        async with self._session() as session:
            if key != self._root(ctx):
                node = await self._get(session, key)
                if node is None:
                    raise _enoent(path)
                if not node.is_directory:
                    raise AdapterError(f"ENOTDIR: not a directory, '{path}'", "ENOTDIR")
            result = await session.execute(
                select(model).where(model.parent_path == key)  # type: ignore[arg-type]
            )
            nodes = list(result.scalars().all())
        entries = [self._to_stat(ctx, node) for node in nodes]
        entries.sort(key=lambda x: (not x.is_directory, x.filename.lower()))
        return entries

    async def readfile(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> FileStream:
        key = self._key(ctx, path)
        if key == self._root(ctx):
            raise AdapterError(f"EISDIR: illegal operation on a directory, '{path}'", "EISDIR")
        async with self._session() as session:
            node = await self._get(session, key)
        if node is None:
            raise _enoent(path)
        if node.is_directory:
            raise AdapterError(f"EISDIR: illegal operation on a directory, '{path}'", "EISDIR")
        return FileStream(
            chunks=_iter_bytes(node.content),
            size=node.size_bytes,
            mime=self.mime(node.name),
            filename=node.name,
        )

    async def search(
        self, ctx: VFSContext, root: str, pattern: str, options: dict[str, Any]
    ) -> list[FileStat]:
        key = self._key(ctx, root)
        needle = pattern.lower()
        async with self._session() as session:
            nodes = await self._subtree(session, key)
        return [
            self._to_stat(ctx, node)
            for node in sorted(nodes, key=lambda n: n.path)
            if not node.is_directory
            and node.path != key
            and fnmatch.fnmatchcase(node.name.lower(), needle)
        ]

    async def realpath(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> str:
        raise CapabilityNotSupportedError(
            f"Mountpoint '{ctx.mount.name}' has no real filesystem path"
        )

    # ------------------------------------------------------------------
    # Write Operations
    # ------------------------------------------------------------------

    async def writefile(
        self, ctx: VFSContext, path: str, data: AsyncIterable[bytes], options: dict[str, Any]
    ) -> int | bool:
        """Store *data*.  Returns ``False`` if the target is a directory."""
        key = self._key(ctx, path)
        if key == self._root(ctx):
            return False
        content = b"".join([chunk async for chunk in data])
        async with self._session() as session:
            node = await self._get(session, key)
            if node is not None and node.is_directory:
                return False
            await self._require_parent(session, ctx, key, path)
            if node is None:
                session.add(self._new_node(key, is_directory=False, content=content))
            else:
                node.content = content
                node.size_bytes = len(content)
                node.updated_at = datetime.now(UTC)
        return len(content)

    async def mkdir(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        key = self._key(ctx, path)
        async with self._session() as session:
            if key == self._root(ctx):
                is_dir: bool | None = True
            else:
                node = await self._get(session, key)
                is_dir = None if node is None else node.is_directory
            if is_dir is not None:
                if options.get("ensure") and is_dir:
                    return True
                raise AdapterError(f"EEXIST: file already exists, '{path}'", "EEXIST")
            await self._require_parent(session, ctx, key, path)
            session.add(self._new_node(key, is_directory=True))
        return True

    async def unlink(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        """Remove a node and everything below it.  Missing targets are not an error."""
        key = self._key(ctx, path)
        async with self._session() as session:
            nodes = await self._subtree(session, key)
            await self._delete_paths(session, [n.path for n in nodes])
        return True

    async def touch(self, ctx: VFSContext, path: str, options: dict[str, Any]) -> bool:
        key = self._key(ctx, path)
        root = self._root(ctx)
        if key == root:
            return True
        async with self._session() as session:
            # Create missing ancestors below the mount root.
            ancestors: list[str] = []
            parent = posixpath.dirname(key)
            while parent != root and parent != "/":
                ancestors.append(parent)
                parent = posixpath.dirname(parent)
            for ancestor in reversed(ancestors):
                node = await self._get(session, ancestor)
                if node is None:
                    session.add(self._new_node(ancestor, is_directory=True))
                elif not node.is_directory:
                    raise AdapterError(f"ENOTDIR: not a directory, '{path}'", "ENOTDIR")
            node = await self._get(session, key)
            if node is None:
                session.add(self._new_node(key, is_directory=False))
            else:
                node.updated_at = datetime.now(UTC)
        return True

    async def copy(
        self,
        src_ctx: VFSContext,
        dest_ctx: VFSContext,
        src: str,
        dest: str,
        options: dict[str, Any],
    ) -> bool:
        src_key = self._key(src_ctx, src)
        dest_key = self._key(dest_ctx, dest)
        if dest_key == src_key or dest_key.startswith(self._subtree_prefix(src_key)):
            raise AdapterError(f"EINVAL: cannot copy '{src}' into itself", "EINVAL")
        async with self._session() as session:
            nodes = await self._subtree(session, src_key)
            if not nodes:
                raise _enoent(src)
            await self._require_parent(session, dest_ctx, dest_key, dest)
            targets = [dest_key + node.path[len(src_key):] for node in nodes]
            await self._delete_paths(session, targets)
            for node, target in zip(nodes, targets, strict=True):
                session.add(
                    self._new_node(target, is_directory=node.is_directory, content=node.content)
                )
        return True

    async def rename(
        self,
        src_ctx: VFSContext,
        dest_ctx: VFSContext,
        src: str,
        dest: str,
        options: dict[str, Any],
    ) -> bool:
        src_key = self._key(src_ctx, src)
        dest_key = self._key(dest_ctx, dest)
        if src_key == dest_key:
            if not await self.exists(src_ctx, src, options):
                raise _enoent(src)
            return True
        if dest_key.startswith(self._subtree_prefix(src_key)):
            raise AdapterError(f"EINVAL: cannot move '{src}' into itself", "EINVAL")
        async with self._session() as session:
            nodes = await self._subtree(session, src_key)
            if not nodes:
                raise _enoent(src)
            await self._require_parent(session, dest_ctx, dest_key, dest)
            targets = [dest_key + node.path[len(src_key):] for node in nodes]
            await self._delete_paths(session, targets)
            await session.flush()
            for node, target in zip(nodes, targets, strict=True):
                node.path = target
                node.parent_path = posixpath.dirname(target)
                node.name = posixpath.basename(target)
                node.updated_at = datetime.now(UTC)
        return True


async def _iter_bytes(content: bytes) -> AsyncIterator[bytes]:
    for offset in range(0, len(content), CHUNK_SIZE):
        yield content[offset:offset + CHUNK_SIZE]
