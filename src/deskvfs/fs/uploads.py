"""Upload sources for ``writefile`` and cleanup of parser temp files."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Any

from starlette.datastructures import UploadFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class TempUpload:
    """A temporary file written by a body parser.

    Unlike a plain path, it is deleted once the request completes.
    """

    path: str


async def _iter_path(path: str | os.PathLike[str]) -> AsyncIterator[bytes]:
    f = await asyncio.to_thread(open, path, "rb")
    try:
        while chunk := await asyncio.to_thread(f.read, CHUNK_SIZE):
            yield chunk
    finally:
        await asyncio.to_thread(f.close)


async def _iter_reader(reader: Any) -> AsyncIterator[bytes]:
    while True:
        chunk = reader.read(CHUNK_SIZE)
        if inspect.isawaitable(chunk):
            chunk = await chunk
        if not chunk:
            break
        yield chunk if isinstance(chunk, bytes) else str(chunk).encode("utf-8")


async def _iter_single(data: bytes) -> AsyncIterator[bytes]:
    if data:
        yield data


def upload_stream(upload: Any) -> AsyncIterable[bytes]:
    """Turn any supported upload into an async byte stream.

    Accepts bytes/str, :class:`TempUpload`, a filesystem path, an object
    with a (sync or async) ``read(size)`` method such as Starlette's
    ``UploadFile``, or an async iterable of bytes.
    """
    if isinstance(upload, (bytes, bytearray, memoryview)):
        return _iter_single(bytes(upload))
    if isinstance(upload, str):
        return _iter_single(upload.encode("utf-8"))
    if isinstance(upload, TempUpload):
        return _iter_path(upload.path)
    if isinstance(upload, os.PathLike):
        return _iter_path(upload)
    if isinstance(upload, AsyncIterable):
        return upload
    if hasattr(upload, "read"):
        return _iter_reader(upload)
    raise TypeError(f"Unsupported upload type: {type(upload).__name__}")


async def cleanup_uploads(files: Mapping[str, Any]) -> None:
    """Remove parser temp files and close parser-owned uploads.  Never raises.

    Only :class:`TempUpload` files and Starlette ``UploadFile`` parts are
    released; file objects handed in by a caller stay open.
    """
    for name, upload in files.items():
        try:
            if isinstance(upload, TempUpload):
                with contextlib.suppress(FileNotFoundError):
                    await asyncio.to_thread(os.unlink, upload.path)
            elif isinstance(upload, UploadFile):
                await upload.close()
        except Exception:
            logger.warning("Failed to clean up upload %r", name, exc_info=True)
