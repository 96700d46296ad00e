"""Data model: users, mountpoints, file metadata, streams."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .utils import SegmentTemplate

if TYPE_CHECKING:
    from deskvfs.config import FilesystemConfig

    from .protocol import StorageAdapter, WatchHandle

GroupRule = str | dict[str, list[str]]


@dataclass
class User:
    """The requesting user, as provided by the authentication layer."""

    id: Any = None
    username: str = ""
    groups: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> User:
        return cls(
            id=data.get("id"),
            username=str(data.get("username", "")),
            groups=list(data.get("groups") or []),
        )


@dataclass
class Session:
    """Read-only session context. ``user`` is ``None`` when unauthenticated."""

    user: User | None = None


@dataclass
class MountAttributes:
    """Access and storage attributes of a mountpoint."""

    root: str | None = None
    """Root segment template, e.g. ``{vfs}/{username}``."""

    read_only: bool = False
    groups: list[GroupRule] = field(default_factory=list)
    watch: bool = False
    strict_groups: bool = True
    """Require all listed groups (``True``) or at least one (``False``)."""

    searchable: bool = True
    watch_options: dict[str, Any] = field(default_factory=dict)
    """Passed through to the adapter's watcher."""

    extra: dict[str, Any] = field(default_factory=dict)
    """Unrecognised attributes, kept for adapters."""

    _KEYS = {
        "root": "root",
        "readOnly": "read_only",
        "read_only": "read_only",
        "groups": "groups",
        "watch": "watch",
        "strictGroups": "strict_groups",
        "strict_groups": "strict_groups",
        "searchable": "searchable",
        "watchOptions": "watch_options",
        "watch_options": "watch_options",
    }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> MountAttributes:
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in (data or {}).items():
            attr = cls._KEYS.get(key)
            if attr is None:
                extra[key] = value
            else:
                kwargs[attr] = value
        if "groups" in kwargs:
            kwargs["groups"] = list(kwargs["groups"] or [])
        return cls(**kwargs, extra=extra)


@dataclass(eq=False)
class Mountpoint:
    """A named binding between a VFS prefix and an adapter instance.

    Compared by identity: two mounts with the same name are distinct.
    """

    name: str
    adapter_name: str = "system"
    attributes: MountAttributes = field(default_factory=MountAttributes)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    root: str = ""
    label: str = ""
    adapter: StorageAdapter | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.root:
            self.root = f"{self.name}:/"
        if not self.label:
            self.label = self.name
        self._template = SegmentTemplate(self.attributes.root) if self.attributes.root else None

    @property
    def template(self) -> SegmentTemplate | None:
        """Tokenized ``attributes.root``, or ``None`` when no root is set."""
        return self._template

    @classmethod
    def from_descriptor(cls, descriptor: Mapping[str, Any]) -> Mountpoint:
        """Build from a config-style dict (``name``, ``adapter``, ``attributes``...)."""
        if not descriptor.get("name"):
            raise ValueError("Mountpoint descriptor requires a name")
        attributes = descriptor.get("attributes")
        if not isinstance(attributes, MountAttributes):
            attributes = MountAttributes.from_mapping(attributes)
        kwargs: dict[str, Any] = {
            "name": str(descriptor["name"]),
            "adapter_name": str(descriptor.get("adapter") or "system"),
            "attributes": attributes,
            "label": str(descriptor.get("label") or ""),
            "root": str(descriptor.get("root") or ""),
        }
        if descriptor.get("id"):
            kwargs["id"] = str(descriptor["id"])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        attrs = self.attributes
        return {
            "id": self.id,
            "name": self.name,
            "label": self.label,
            "root": self.root,
            "adapter": self.adapter_name,
            "attributes": {
                "readOnly": attrs.read_only,
                "searchable": attrs.searchable,
                "watch": attrs.watch,
            },
        }


@dataclass
class VFSContext:
    """Per-call context handed to adapters."""

    session: Session | None
    mount: Mountpoint
    config: FilesystemConfig

    @property
    def user(self) -> User | None:
        return self.session.user if self.session is not None else None


@dataclass
class FileStat:
    """File/directory metadata as returned to clients."""

    filename: str
    path: str
    size: int
    is_file: bool
    is_directory: bool
    mime: str | None = None
    mtime: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "path": self.path,
            "size": self.size,
            "isFile": self.is_file,
            "isDirectory": self.is_directory,
            "mime": self.mime,
            "mtime": self.mtime,
        }


@dataclass
class FileStream:
    """An async byte stream plus the metadata needed to send it."""

    chunks: AsyncIterator[bytes]
    size: int | None = None
    """Total size of the file, not of the range."""

    mime: str | None = None
    filename: str = ""
    range: tuple[int, int] | None = None
    """Inclusive ``(start, end)`` when a byte range was served."""

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.chunks

    @property
    def content_length(self) -> int | None:
        if self.range is not None:
            return self.range[1] - self.range[0] + 1
        return self.size

    async def read(self) -> bytes:
        """Drain the stream into memory."""
        return b"".join([chunk async for chunk in self.chunks])

    async def aclose(self) -> None:
        aclose = getattr(self.chunks, "aclose", None)
        if aclose is not None:
            await aclose()


@dataclass
class WatchRegistration:
    """An open watcher belonging to a mountpoint."""

    mountpoint_id: str
    handle: WatchHandle
