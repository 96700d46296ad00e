"""VFS method table — how each operation reads its fields and calls the adapter."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import AdapterError, ValidationError
from .uploads import upload_stream

if TYPE_CHECKING:
    from .permissions import ReadOnlyIntent
    from .protocol import StorageAdapter
    from .types import VFSContext


@dataclass
class MethodCall:
    """Everything a method handler needs once permissions have passed."""

    adapter: StorageAdapter
    ctx: VFSContext
    fields: Mapping[str, Any]
    files: Mapping[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    dest_ctx: VFSContext | None = None
    """Destination context for ``copy``/``rename``."""


Handler = Callable[[MethodCall], Awaitable[Any]]


@dataclass(frozen=True)
class MethodSpec:
    """One VFS operation."""

    name: str
    handler: Handler
    http: str | None = "GET"
    """``GET``/``POST`` route verb, ``None`` for internal-only methods."""

    fields: tuple[str, ...] = ("path",)
    """Required path-bearing fields; the first one selects the mountpoint."""

    ro: ReadOnlyIntent = False


def _wrap_boolean(handler: Handler) -> Handler:
    async def wrapped(call: MethodCall) -> bool:
        result = await handler(call)
        return result if isinstance(result, bool) else bool(result)

    return wrapped


def _default(method: str) -> Handler:
    async def handler(call: MethodCall) -> Any:
        fn = getattr(call.adapter, method)
        return await fn(call.ctx, call.fields["path"], call.options)

    return handler


def _diverged(method: str) -> Handler:
    async def handler(call: MethodCall) -> Any:
        fn = getattr(call.adapter, method)
        dest_ctx = call.dest_ctx or call.ctx
        return await fn(call.ctx, dest_ctx, call.fields["from"], call.fields["to"], call.options)

    return handler


async def _writefile(call: MethodCall) -> int:
    upload = call.files.get("upload")
    if upload is None:
        raise ValidationError("Missing required upload")
    result = await call.adapter.writefile(
        call.ctx, call.fields["path"], upload_stream(upload), call.options
    )
    if isinstance(result, int) and not isinstance(result, bool):
        return result
    return -1


async def _mkdir(call: MethodCall) -> bool:
    try:
        return bool(await call.adapter.mkdir(call.ctx, call.fields["path"], call.options))
    except AdapterError as e:
        if call.options.get("ensure") and e.code == "EEXIST":
            return True
        raise


async def _search(call: MethodCall) -> list[Any]:
    if not call.ctx.mount.attributes.searchable:
        return []
    return await call.adapter.search(
        call.ctx, call.fields["root"], str(call.fields["pattern"]), call.options
    )


def _copy_target(fields: Mapping[str, Any]) -> str | None:
    return fields.get("to")


METHODS: dict[str, MethodSpec] = {
    spec.name: spec
    for spec in [
        MethodSpec("capabilities", _default("capabilities")),
        MethodSpec("exists", _wrap_boolean(_default("exists"))),
        MethodSpec("stat", _default("stat")),
        MethodSpec("readdir", _default("readdir")),
        MethodSpec("readfile", _default("readfile")),
        MethodSpec("writefile", _writefile, http="POST", ro=True),
        MethodSpec("mkdir", _mkdir, http="POST", ro=True),
        MethodSpec("rename", _wrap_boolean(_diverged("rename")), http="POST", fields=("from", "to"), ro=True),
        MethodSpec("copy", _wrap_boolean(_diverged("copy")), http="POST", fields=("from", "to"), ro=_copy_target),
        MethodSpec("unlink", _wrap_boolean(_default("unlink")), http="POST", ro=True),
        MethodSpec("search", _search, http="POST", fields=("root", "pattern")),
        MethodSpec("touch", _wrap_boolean(_default("touch")), http="POST", ro=True),
        MethodSpec("realpath", _default("realpath"), http=None),
    ]
}

PATH_FIELDS = ("path", "from", "to", "root")
"""Fields sanitized before any lookup."""
