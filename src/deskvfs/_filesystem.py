"""Filesystem — async facade wiring mountpoints, adapters, dispatch and watches."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from deskvfs.config import FilesystemConfig
from deskvfs.events import EventBus, EventType, MountEvent
from deskvfs.fs.database import DatabaseAdapter
from deskvfs.fs.dispatcher import Dispatcher, VFSRequest
from deskvfs.fs.exceptions import ValidationError
from deskvfs.fs.methods import METHODS
from deskvfs.fs.mounts import MountpointRegistry
from deskvfs.fs.system import SystemAdapter
from deskvfs.fs.types import Mountpoint, Session, User
from deskvfs.fs.utils import MimeTypes
from deskvfs.fs.watch import WatchManager
from deskvfs.server.broadcast import Broadcaster

if TYPE_CHECKING:
    from collections.abc import Callable

    from deskvfs.fs.protocol import StorageAdapter

logger = logging.getLogger(__name__)


def _as_user(user: User | Mapping[str, Any] | None) -> User | None:
    if user is None or isinstance(user, User):
        return user
    return User.from_mapping(user)


def _as_session(value: Session | User | Mapping[str, Any] | None) -> Session:
    if isinstance(value, Session):
        return value
    return Session(_as_user(value))


class Filesystem:
    """Virtual filesystem service.

    Create an instance, ``await init()`` to build the adapters and mount
    the configured mountpoints, then issue requests::

        vfs = Filesystem(FilesystemConfig(root="/srv/vfs"))
        await vfs.init()
        await vfs.call({"method": "writefile", "user": user}, "home:/a.txt", b"hi")
        await vfs.destroy()

    Every instance owns its registry, adapters, watchers, event bus and
    broadcaster.
    """

    def __init__(
        self,
        config: FilesystemConfig | None = None,
        *,
        broadcaster: Broadcaster | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config or FilesystemConfig()
        self.broadcaster = broadcaster or Broadcaster()
        self.event_bus = event_bus or EventBus()
        self._mime = MimeTypes(self.config.mime.filenames, self.config.mime.define)
        self.registry = MountpointRegistry()
        self.dispatcher = Dispatcher(self.registry, self.config)
        self.watches = WatchManager(
            self.config, broadcaster=self.broadcaster, event_bus=self.event_bus
        )
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _adapter_factories(self) -> dict[str, Callable[[FilesystemConfig], StorageAdapter]]:
        factories: dict[str, Callable[[FilesystemConfig], StorageAdapter]] = {
            "system": lambda config: SystemAdapter(config, self._mime),
            "database": lambda config: DatabaseAdapter(config, mime=self._mime),
        }
        factories.update(self.config.adapters)
        return factories

    async def init(self) -> None:
        """Instantiate adapters and mount ``config.mountpoints``."""
        if self._initialized:
            return
        self._initialized = True
        for name, factory in self._adapter_factories().items():
            self.registry.register_adapter(name, factory(self.config))
        for descriptor in self.config.mountpoints:
            await self.mount(descriptor)

    async def destroy(self) -> None:
        """Close watchers and adapters and drop every mountpoint."""
        await self.watches.close_all()
        for mount in self.registry.list_mounts():
            self.registry.remove(mount)
        for name, adapter in self.registry.adapters.items():
            close = getattr(adapter, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:
                logger.warning("Failed to close adapter %s", name, exc_info=True)
        self._initialized = False

    # ------------------------------------------------------------------
    # Mount / Unmount
    # ------------------------------------------------------------------

    async def mount(self, descriptor: Mountpoint | Mapping[str, Any]) -> Mountpoint:
        """Mount *descriptor* and start its watcher if enabled.

        Raises ``ValueError`` when the descriptor has no name or names an
        unknown adapter.
        """
        mount = (
            descriptor
            if isinstance(descriptor, Mountpoint)
            else Mountpoint.from_descriptor(descriptor)
        )
        if mount.adapter is None:
            mount.adapter = self.registry.get_adapter(mount.adapter_name)
        open_ = getattr(mount.adapter, "open", None)
        if open_ is not None:
            await open_()

        self.registry.add(mount)
        logger.info("Mounted %s (%s)", mount.name, mount.adapter_name)
        await self.event_bus.emit(MountEvent(EventType.MOUNTED, mount.name, mount.root))
        await self.watches.watch(mount)
        return mount

    async def unmount(self, mountpoint: Any) -> bool:
        """Unmount *mountpoint*.  Returns False if it was not mounted."""
        if not isinstance(mountpoint, Mountpoint) or mountpoint not in self.registry:
            return False
        await self.watches.unwatch(mountpoint)
        self.registry.remove(mountpoint)
        logger.info("Unmounted %s", mountpoint.name)
        await self.event_bus.emit(
            MountEvent(EventType.UNMOUNTED, mountpoint.name, mountpoint.root)
        )
        return True

    @property
    def mountpoints(self) -> list[Mountpoint]:
        return self.registry.list_mounts()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(self, method: str, request: VFSRequest | Mapping[str, Any]) -> Any:
        """Run *method* with a transport-level request.

        *request* is a :class:`VFSRequest` (its ``method`` is overridden) or
        a mapping with ``fields``, ``files``, ``headers`` and ``session`` or
        ``user``.
        """
        if isinstance(request, VFSRequest):
            vfs_request = VFSRequest(
                method=method,
                fields=request.fields,
                files=request.files,
                session=request.session,
                headers=request.headers,
            )
        else:
            session = request.get("session")
            vfs_request = VFSRequest(
                method=method,
                fields=dict(request.get("fields") or {}),
                files=dict(request.get("files") or {}),
                session=_as_session(session if session is not None else request.get("user")),
                headers=dict(request.get("headers") or {}),
            )
        return await self.dispatcher.dispatch(vfs_request)

    async def call(self, target: Mapping[str, Any], *args: Any) -> Any:
        """Run a VFS method directly, without HTTP.

        Positional arguments fill the method's path fields in order
        (``path``, or ``from``/``to``, or ``root``/``pattern``); ``writefile``
        takes its data next; a trailing mapping is the options.  File
        objects passed as data are read but left open for the caller::

            await vfs.call({"method": "readdir", "user": user}, "home:/")
            await vfs.call({"method": "copy", "user": user}, "home:/a", "home:/b")
        """
        method = target.get("method")
        spec = METHODS.get(method) if isinstance(method, str) else None
        if spec is None:
            raise ValidationError(f"Unknown VFS method '{method}'")

        fields: dict[str, Any] = dict(zip(spec.fields, args, strict=False))
        rest = list(args[len(spec.fields):])
        files: dict[str, Any] = {}
        if spec.name == "writefile" and rest:
            files["upload"] = rest.pop(0)
        if rest:
            fields["options"] = rest.pop(0)

        return await self.dispatcher.dispatch(
            VFSRequest(
                method=spec.name,
                fields=fields,
                files=files,
                session=_as_session(target.get("session") or target.get("user")),
            )
        )

    async def realpath(self, path: str, user: User | Mapping[str, Any] | None = None) -> str:
        """Physical location of *path* for *user*."""
        return await self.call({"method": "realpath", "user": user}, path)

    def mime(self, filename: str) -> str:
        """MIME type of *filename*."""
        return self._mime(filename)
