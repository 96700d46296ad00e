"""HTTP and WebSocket surface for deskvfs."""

from deskvfs.server.app import create_app, run_server
from deskvfs.server.broadcast import Broadcaster, Client
from deskvfs.server.routes import create_vfs_router

__all__ = ["Broadcaster", "Client", "create_app", "create_vfs_router", "run_server"]
