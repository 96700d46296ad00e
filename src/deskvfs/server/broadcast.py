"""Broadcaster — pushes named events to connected WebSocket clients."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from deskvfs.fs.types import User

logger = logging.getLogger(__name__)

ClientFilter = Callable[["Client"], bool]


@dataclass(eq=False)
class Client:
    """A connected socket and the user it authenticated as."""

    websocket: Any
    """Anything with an async ``send_text(str)``; Starlette's ``WebSocket``."""

    user: User | None = None
    id: int = field(default=0)


class Broadcaster:
    """Registry of connected clients.

    Messages are JSON ``{"name": ..., "params": [...]}``.  A client whose
    send fails is logged and dropped; the remaining clients still receive
    the message.
    """

    def __init__(self) -> None:
        self._clients: list[Client] = []
        self._next_id = 0

    @property
    def clients(self) -> list[Client]:
        return list(self._clients)

    def add(self, websocket: Any, user: User | None = None) -> Client:
        self._next_id += 1
        client = Client(websocket, user, self._next_id)
        self._clients.append(client)
        return client

    def remove(self, client: Client) -> bool:
        try:
            self._clients.remove(client)
            return True
        except ValueError:
            return False

    async def broadcast(
        self,
        name: str,
        params: list[Any] | None = None,
        predicate: ClientFilter | None = None,
    ) -> int:
        """Send *name*/*params* to every client accepted by *predicate*.

        Returns the number of clients the message was delivered to.
        """
        payload = json.dumps({"name": name, "params": list(params or [])}, ensure_ascii=False)
        targets = [c for c in self._clients if predicate is None or predicate(c)]
        if not targets:
            return 0
        results = await asyncio.gather(
            *(self._safe_send(client, payload) for client in targets),
        )
        return sum(results)

    async def broadcast_all(self, name: str, *params: Any) -> int:
        return await self.broadcast(name, list(params))

    async def broadcast_user(self, username: str, name: str, *params: Any) -> int:
        return await self.broadcast(
            name,
            list(params),
            lambda c: c.user is not None and c.user.username == username,
        )

    async def _safe_send(self, client: Client, payload: str) -> bool:
        try:
            await client.websocket.send_text(payload)
            return True
        except Exception:
            logger.warning("Dropping client %d after failed send", client.id, exc_info=True)
            self.remove(client)
            return False
