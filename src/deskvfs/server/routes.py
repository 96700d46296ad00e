"""VFS HTTP and WebSocket routes.

``GET /vfs/<method>`` reads fields from the query string; ``POST`` reads a
JSON object or a form body, where the ``upload`` file part feeds
``writefile``.  ``readfile`` answers with a streamed body, ``206`` when a
``Range`` header was honoured.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.datastructures import UploadFile
from starlette.requests import HTTPConnection

from deskvfs.fs.dispatcher import VFSRequest
from deskvfs.fs.exceptions import ValidationError, VFSError, error_payload, status_for
from deskvfs.fs.methods import METHODS
from deskvfs.fs.types import FileStat, FileStream, Session, User
from deskvfs.fs.utils import parse_options

if TYPE_CHECKING:
    from deskvfs._filesystem import Filesystem

logger = logging.getLogger(__name__)

Authenticate = Callable[[HTTPConnection], Any]
"""Returns the user behind a connection, or ``None`` when unauthenticated."""


async def resolve_user(authenticate: Authenticate, conn: HTTPConnection) -> User | None:
    user = authenticate(conn)
    if inspect.isawaitable(user):
        user = await user
    if user is None or isinstance(user, User):
        return user
    return User.from_mapping(user)


def to_jsonable(result: Any) -> Any:
    """Shape adapter results for a JSON body."""
    if isinstance(result, FileStat):
        return result.to_dict()
    if isinstance(result, (list, tuple)):
        return [to_jsonable(item) for item in result]
    if isinstance(result, Mapping):
        return {key: to_jsonable(value) for key, value in result.items()}
    return result


def content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def stream_response(stream: FileStream, fields: Mapping[str, Any]) -> StreamingResponse:
    """Build the ``readfile`` response, partial content when ranged."""
    headers: dict[str, str] = {}
    status_code = 200
    if stream.range is not None:
        start, end = stream.range
        status_code = 206
        headers["Content-Range"] = f"bytes {start}-{end}/{stream.size}"
        headers["Accept-Ranges"] = "bytes"
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    try:
        options = parse_options(fields.get("options"))
    except ValidationError:
        options = {}
    if options.get("download"):
        headers["Content-Disposition"] = content_disposition(stream.filename)
    return StreamingResponse(
        stream,
        status_code=status_code,
        media_type=stream.mime or "application/octet-stream",
        headers=headers,
    )


async def read_body(request: Request) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a request into ``(fields, files)``."""
    if request.method == "GET":
        return dict(request.query_params), {}

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        fields: dict[str, Any] = {}
        files: dict[str, Any] = {}
        form = await request.form()
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                files[key] = value
            else:
                fields[key] = value
        return fields, files

    raw = await request.body()
    if not raw:
        return dict(request.query_params), {}
    try:
        data = await request.json()
    except ValueError as e:
        raise ValidationError(f"Invalid JSON body: {e}") from e
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")
    return dict(data), {}


def create_vfs_router(filesystem: Filesystem, authenticate: Authenticate) -> APIRouter:
    """Routes for every public VFS method plus the ``/ws`` socket."""
    router = APIRouter(tags=["vfs"])

    def error_response(exc: BaseException) -> JSONResponse:
        return JSONResponse(
            error_payload(exc, development=filesystem.config.development),
            status_code=status_for(exc),
        )

    async def handle(request: Request, method: str) -> Response:
        spec = METHODS.get(method)
        if spec is None or spec.http != request.method:
            return JSONResponse({"error": f"Unknown VFS method '{method}'"}, status_code=404)

        user = await resolve_user(authenticate, request)
        if user is None:
            return JSONResponse({"error": "Access denied"}, status_code=403)

        try:
            fields, files = await read_body(request)
            result = await filesystem.request(
                method,
                VFSRequest(
                    method=method,
                    fields=fields,
                    files=files,
                    session=Session(user),
                    headers=dict(request.headers),
                ),
            )
        except VFSError as e:
            return error_response(e)
        except Exception as e:
            logger.exception("VFS %s failed", method)
            return error_response(e)

        if isinstance(result, FileStream):
            return stream_response(result, fields)
        return JSONResponse(to_jsonable(result))

    @router.get("/vfs/{method}")
    async def vfs_get(request: Request, method: str) -> Response:
        return await handle(request, method)

    @router.post("/vfs/{method}")
    async def vfs_post(request: Request, method: str) -> Response:
        return await handle(request, method)

    @router.websocket("/ws")
    async def vfs_socket(websocket: WebSocket) -> None:
        user = await resolve_user(authenticate, websocket)
        if user is None:
            await websocket.close(code=1008)
            return

        client = filesystem.broadcaster.add(websocket, user)
        logger.debug("Client %d connected as %s", client.id, user.username)
        try:
            await websocket.accept()
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            filesystem.broadcaster.remove(client)

    return router
