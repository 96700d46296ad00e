"""MountpointRegistry — the ordered list of active mountpoints."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .exceptions import MountpointNotFoundError
from .types import Mountpoint
from .utils import get_prefix

if TYPE_CHECKING:
    from .protocol import StorageAdapter

logger = logging.getLogger(__name__)


class MountpointRegistry:
    """Registry of active mountpoints and the adapters they bind to.

    Mountpoints keep insertion order; lookups return the first exact name
    match, so mounting the same name twice leaves the first one in effect.
    Adapter instances are looked up by name when a mountpoint is added.

    Mutations are synchronous: no ``await`` between reading and changing
    the list.
    """

    def __init__(self, adapters: Mapping[str, StorageAdapter] | None = None) -> None:
        self._mounts: list[Mountpoint] = []
        self._adapters: dict[str, StorageAdapter] = dict(adapters or {})

    # ------------------------------------------------------------------
    # Adapters
    # ------------------------------------------------------------------

    def register_adapter(self, name: str, adapter: StorageAdapter) -> None:
        """Add or replace an adapter instance."""
        self._adapters[name] = adapter

    def get_adapter(self, name: str) -> StorageAdapter:
        try:
            return self._adapters[name]
        except KeyError:
            raise ValueError(f"Unknown VFS adapter: {name!r}") from None

    @property
    def adapters(self) -> dict[str, StorageAdapter]:
        return dict(self._adapters)

    # ------------------------------------------------------------------
    # Mountpoints
    # ------------------------------------------------------------------

    def add(self, descriptor: Mountpoint | Mapping[str, Any]) -> Mountpoint:
        """Create (if needed), bind and append a mountpoint."""
        mount = (
            descriptor
            if isinstance(descriptor, Mountpoint)
            else Mountpoint.from_descriptor(descriptor)
        )
        if mount.adapter is None:
            mount.adapter = self.get_adapter(mount.adapter_name)
        self._mounts.append(mount)
        return mount

    def remove(self, mountpoint: Any) -> bool:
        """Remove *mountpoint* by identity.  Returns False if it isn't mounted."""
        for index, mount in enumerate(self._mounts):
            if mount is mountpoint:
                del self._mounts[index]
                return True
        return False

    def find(self, name: str) -> Mountpoint | None:
        for mount in self._mounts:
            if mount.name == name:
                return mount
        return None

    def resolve(self, path: str) -> Mountpoint:
        """Return the mountpoint named by the prefix of *path*."""
        prefix = get_prefix(path)
        mount = self.find(prefix) if prefix else None
        if mount is None:
            raise MountpointNotFoundError(f"Mountpoint not found for '{prefix}'")
        if mount.adapter is None:
            mount.adapter = self.get_adapter(mount.adapter_name)
        return mount

    def list_mounts(self) -> list[Mountpoint]:
        """All active mountpoints, in mount order."""
        return list(self._mounts)

    def __contains__(self, mountpoint: object) -> bool:
        return any(m is mountpoint for m in self._mounts)

    def __len__(self) -> int:
        return len(self._mounts)
