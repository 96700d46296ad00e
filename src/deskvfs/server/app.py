"""FastAPI application serving the VFS."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from deskvfs.server.routes import Authenticate, create_vfs_router

if TYPE_CHECKING:
    from deskvfs._filesystem import Filesystem


def create_app(filesystem: Filesystem, authenticate: Authenticate) -> FastAPI:
    """Create the FastAPI application for *filesystem*.

    Args:
        filesystem: The VFS to serve; initialised and destroyed with the app.
        authenticate: Called with each request or socket; returns the user
            (a ``User`` or a mapping with ``username``/``groups``) or
            ``None`` to reject it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await filesystem.init()
        yield
        await filesystem.destroy()

    app = FastAPI(title="deskvfs", lifespan=lifespan)
    app.state.filesystem = filesystem
    app.include_router(create_vfs_router(filesystem, authenticate))

    @app.get("/vfs")
    async def mountpoints() -> list[dict[str, object]]:
        return [mount.to_dict() for mount in filesystem.mountpoints]

    return app


def run_server(
    filesystem: Filesystem,
    authenticate: Authenticate,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """Run the VFS server.

    Args:
        filesystem: The VFS to serve
        authenticate: Connection authenticator, see :func:`create_app`
        host: Host to bind to
        port: Port to bind to
    """
    import uvicorn

    app = create_app(filesystem, authenticate)
    uvicorn.run(app, host=host, port=port, log_level="info")
