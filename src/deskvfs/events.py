"""EventBus and event types for filesystem change notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of events published by the filesystem."""

    WATCH_CHANGE = "watch_change"
    MOUNTED = "mounted"
    UNMOUNTED = "unmounted"


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """A change observed under a watched mountpoint.

    Attributes:
        path: VFS path of the changed entry (``home:/notes.txt``).
        type: Change kind: ``add``, ``addDir``, ``change`` or ``unlink``.
        mountpoint: Name of the mountpoint the change belongs to.
        segments: Dynamic segment values captured from the real path,
            e.g. ``{"username": "jest"}``.
    """

    path: str
    type: str
    mountpoint: str
    segments: dict[str, str] = field(default_factory=dict)
    event_type: EventType = EventType.WATCH_CHANGE


@dataclass(frozen=True, slots=True)
class MountEvent:
    """A mountpoint was added to or removed from the registry."""

    event_type: EventType
    mountpoint: str
    path: str = ""


class EventBus:
    """Dispatches filesystem events to registered handlers.

    Handlers are called sequentially in registration order.
    Exceptions are logged but never propagated; a failing handler must not
    stop the watcher that produced the event.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Callable[..., Any]]] = {et: [] for et in EventType}

    def register(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Append *handler* to the list for *event_type*."""
        self._handlers[event_type].append(handler)

    def unregister(self, event_type: EventType, handler: Callable[..., Any]) -> bool:
        """Remove first occurrence of *handler*. Return True if found."""
        handlers = self._handlers[event_type]
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def emit(self, event: WatchEvent | MountEvent) -> None:
        """Dispatch *event* to all registered handlers for its type."""
        for handler in list(self._handlers[event.event_type]):
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on %s",
                    handler,
                    event.event_type.value,
                    event.path or event.mountpoint,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        """Remove all registered handlers."""
        for handlers in self._handlers.values():
            handlers.clear()
