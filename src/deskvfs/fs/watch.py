"""WatchManager — bridges adapter change notifications to connected clients."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from deskvfs.events import WatchEvent

from .protocol import SupportsWatch
from .types import WatchRegistration
from .utils import to_vfs_path

if TYPE_CHECKING:
    from deskvfs.config import FilesystemConfig
    from deskvfs.events import EventBus
    from deskvfs.server.broadcast import Broadcaster, Client

    from .types import Mountpoint

logger = logging.getLogger(__name__)

WATCH_EVENT = "osjs/vfs:watch:change"


def segment_filter(segments: dict[str, str]) -> Any:
    """Client filter matching users whose attributes equal every segment.

    ``{"username": "jest"}`` only reaches clients logged in as ``jest``;
    an empty mapping reaches everyone.
    """

    def accept(client: Client) -> bool:
        user = client.user
        if user is None:
            return not segments
        return all(str(getattr(user, key, "")) == value for key, value in segments.items())

    return accept


class WatchManager:
    """Owns the open watchers of the mounted mountpoints."""

    def __init__(
        self,
        config: FilesystemConfig,
        *,
        broadcaster: Broadcaster | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config
        self._broadcaster = broadcaster
        self._event_bus = event_bus
        self._watches: list[WatchRegistration] = []

    @property
    def watches(self) -> list[WatchRegistration]:
        return list(self._watches)

    def is_watching(self, mountpoint: Mountpoint) -> bool:
        return any(w.mountpoint_id == mountpoint.id for w in self._watches)

    async def watch(self, mountpoint: Mountpoint) -> WatchRegistration | None:
        """Start watching *mountpoint* when it and the config allow it."""
        attrs = mountpoint.attributes
        if not (attrs.watch and self._config.watch and attrs.root):
            return None
        adapter = mountpoint.adapter
        if not isinstance(adapter, SupportsWatch):
            logger.debug("Adapter for %s does not support watching", mountpoint.name)
            return None

        async def on_change(segments: dict[str, str], relative: str, change_type: str) -> None:
            await self.notify(mountpoint, segments, relative, change_type)

        try:
            handle = await adapter.watch(mountpoint, on_change)
        except Exception:
            logger.warning("Failed to watch mountpoint %s", mountpoint.name, exc_info=True)
            return None
        registration = WatchRegistration(mountpoint.id, handle)
        self._watches.append(registration)
        logger.info("Watching mountpoint %s (%s)", mountpoint.name, attrs.root)
        return registration

    async def notify(
        self,
        mountpoint: Mountpoint,
        segments: dict[str, str],
        relative: str,
        change_type: str,
    ) -> None:
        """Publish one change to the event bus and the matching clients."""
        target = to_vfs_path(mountpoint.name, relative)
        if self._event_bus is not None:
            await self._event_bus.emit(
                WatchEvent(target, change_type, mountpoint.name, dict(segments))
            )
        if self._broadcaster is not None:
            await self._broadcaster.broadcast(
                WATCH_EVENT,
                [{"path": target, "type": change_type}, dict(segments)],
                segment_filter(segments),
            )

    async def unwatch(self, mountpoint: Mountpoint) -> bool:
        """Close the watchers of *mountpoint*.  Returns True if any existed."""
        found = [w for w in self._watches if w.mountpoint_id == mountpoint.id]
        if not found:
            return False
        self._watches = [w for w in self._watches if w.mountpoint_id != mountpoint.id]
        for registration in found:
            try:
                await registration.handle.close()
            except Exception:
                logger.warning("Failed to close watch for %s", mountpoint.name, exc_info=True)
        return True

    async def close_all(self) -> None:
        """Close every watcher, logging (not raising) failures."""
        watches, self._watches = self._watches, []
        results = await asyncio.gather(
            *(w.handle.close() for w in watches), return_exceptions=True
        )
        for registration, result in zip(watches, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Failed to close watch for mountpoint %s",
                    registration.mountpoint_id,
                    exc_info=result,
                )
