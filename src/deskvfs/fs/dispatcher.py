"""Dispatcher — runs one VFS request through the mountpoint/permission pipeline.

A request moves through: fields sanitized → mountpoint(s) resolved →
permissions checked → adapter invoked → result shaped.  Every failure
before the adapter call leaves storage untouched.  Upload temp files are
released when the request finishes, whichever way it finishes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import AdapterError, CapabilityNotSupportedError, ValidationError, VFSError
from .methods import METHODS, PATH_FIELDS, MethodCall, MethodSpec
from .permissions import check_permission
from .types import VFSContext
from .uploads import cleanup_uploads
from .utils import parse_options, parse_range_header, sanitize

if TYPE_CHECKING:
    from deskvfs.config import FilesystemConfig

    from .mounts import MountpointRegistry
    from .permissions import ReadOnlyIntent
    from .types import FileStream, Mountpoint, Session

logger = logging.getLogger(__name__)


@dataclass
class VFSRequest:
    """A transport-independent VFS request."""

    method: str
    fields: dict[str, Any] = field(default_factory=dict)
    files: dict[str, Any] = field(default_factory=dict)
    session: Session | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


def sanitize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Copy *fields* with every path-bearing field sanitized."""
    out = dict(fields)
    for key in PATH_FIELDS:
        if out.get(key) is not None:
            out[key] = sanitize(str(out[key]))
    return out


class Dispatcher:
    """Executes VFS methods against the mountpoints of a registry."""

    def __init__(self, registry: MountpointRegistry, config: FilesystemConfig) -> None:
        self._registry = registry
        self._config = config

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def dispatch(self, request: VFSRequest) -> Any:
        """Run *request* and return the shaped adapter result.

        Raises a :class:`~deskvfs.fs.exceptions.VFSError` subclass on
        failure; native ``OSError`` is wrapped into ``AdapterError``.
        """
        try:
            return await self._dispatch(request)
        except VFSError:
            logger.exception("VFS %s failed", request.method)
            raise
        except OSError as e:
            logger.exception("VFS %s failed", request.method)
            raise AdapterError.from_os_error(e) from e
        finally:
            await cleanup_uploads(request.files)

    async def _dispatch(self, request: VFSRequest) -> Any:
        spec = METHODS.get(request.method)
        if spec is None:
            raise ValidationError(f"Unknown VFS method '{request.method}'")

        fields = sanitize_fields(request.fields)
        for name in spec.fields:
            if fields.get(name) in (None, ""):
                raise ValidationError(f"Missing required field '{name}'")
        options = parse_options(fields.get("options"))

        logger.debug("VFS %s %s", spec.name, {k: fields.get(k) for k in spec.fields})

        if spec.name in ("copy", "rename"):
            return await self._diverged(spec, request, fields, options)

        mount = self._check(request, spec.name, fields[spec.fields[0]], spec.ro, fields)
        adapter = self._adapter_for(mount, spec.name)
        ctx = VFSContext(request.session, mount, self._config)

        if spec.name == "readfile":
            await self._apply_range(request, adapter, ctx, fields["path"], options)

        return await spec.handler(
            MethodCall(adapter=adapter, ctx=ctx, fields=fields, files=request.files, options=options)
        )

    # ------------------------------------------------------------------
    # Resolution & permission
    # ------------------------------------------------------------------

    def _check(
        self,
        request: VFSRequest,
        method: str,
        path: str,
        ro: ReadOnlyIntent,
        fields: Mapping[str, Any],
    ) -> Mountpoint:
        mount = self._registry.resolve(path)
        check_permission(request.session, method, mount, ro, fields)
        return mount

    @staticmethod
    def _adapter_for(mount: Mountpoint, method: str) -> Any:
        adapter = mount.adapter
        if adapter is None or not callable(getattr(adapter, method, None)):
            raise CapabilityNotSupportedError(
                f"VFS method '{method}' is not valid for mountpoint '{mount.name}'"
            )
        return adapter

    # ------------------------------------------------------------------
    # copy / rename
    # ------------------------------------------------------------------

    async def _diverged(
        self,
        spec: MethodSpec,
        request: VFSRequest,
        fields: dict[str, Any],
        options: dict[str, Any],
    ) -> bool:
        src_path, dest_path = fields["from"], fields["to"]
        # A rename removes the source, so it needs write access there too.
        src_mount = self._check(request, "readfile", src_path, spec.name == "rename", fields)
        dest_mount = self._check(request, "writefile", dest_path, True, fields)
        self._check(request, spec.name, src_path, spec.ro, fields)

        src_ctx = VFSContext(request.session, src_mount, self._config)
        dest_ctx = VFSContext(request.session, dest_mount, self._config)

        if src_mount.adapter is dest_mount.adapter:
            adapter = self._adapter_for(src_mount, spec.name)
            return await spec.handler(
                MethodCall(
                    adapter=adapter,
                    ctx=src_ctx,
                    dest_ctx=dest_ctx,
                    fields=fields,
                    files=request.files,
                    options=options,
                )
            )

        return await self.transfer(
            src_ctx, dest_ctx, src_path, dest_path, options, remove_source=spec.name == "rename"
        )

    async def transfer(
        self,
        src_ctx: VFSContext,
        dest_ctx: VFSContext,
        src: str,
        dest: str,
        options: dict[str, Any],
        *,
        remove_source: bool = False,
    ) -> bool:
        """Copy (or move) a file between two different adapters.

        Streams ``readfile`` of the source into ``writefile`` of the
        destination, then unlinks the source for moves.  Not atomic: a
        failure after the write leaves both copies in place.
        """
        src_adapter = self._adapter_for(src_ctx.mount, "readfile")
        dest_adapter = self._adapter_for(dest_ctx.mount, "writefile")

        stream: FileStream = await src_adapter.readfile(src_ctx, src, {})
        try:
            result = await dest_adapter.writefile(dest_ctx, dest, stream, options)
        finally:
            await stream.aclose()

        if result is False:
            return False
        if remove_source:
            await self._adapter_for(src_ctx.mount, "unlink").unlink(src_ctx, src, {})
        return True

    # ------------------------------------------------------------------
    # readfile ranges
    # ------------------------------------------------------------------

    @staticmethod
    async def _apply_range(
        request: VFSRequest,
        adapter: Any,
        ctx: VFSContext,
        path: str,
        options: dict[str, Any],
    ) -> None:
        header = request.header("range")
        if not header or not getattr(adapter, "supports_range", False):
            options.pop("range", None)
            return
        stat = await adapter.stat(ctx, path, {})
        if stat.is_directory or stat.size == 0:
            options.pop("range", None)
            return
        start, end, _length = parse_range_header(header, stat.size)
        options["range"] = (start, end)
