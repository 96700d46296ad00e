"""Filesystem service configuration."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any


def _default_root() -> str:
    return os.path.join(os.getcwd(), "vfs")


def _default_mountpoints() -> list[dict[str, Any]]:
    return [
        {
            "name": "osjs",
            "attributes": {"root": "{root}/dist", "readOnly": True},
        },
        {
            "name": "home",
            "attributes": {"root": "{vfs}/{username}"},
        },
    ]


@dataclass
class MimeConfig:
    """MIME lookup overrides."""

    filenames: dict[str, str] = field(
        default_factory=lambda: {"Makefile": "text/x-makefile", ".gitignore": "text/plain"}
    )
    """Exact filename -> MIME type."""

    define: dict[str, list[str]] = field(
        default_factory=lambda: {
            "text/x-lilypond": ["ly", "ily"],
            "text/x-python": ["py"],
            "application/tar+gzip": ["tgz"],
        }
    )
    """MIME type -> list of extensions."""


@dataclass
class FilesystemConfig:
    """Configuration for a :class:`~deskvfs.Filesystem` instance."""

    root: str = field(default_factory=_default_root)
    """Value of the ``{vfs}`` segment."""

    watch: bool = False
    """Global switch for mountpoint watchers."""

    mountpoints: list[dict[str, Any]] = field(default_factory=_default_mountpoints)
    """Mountpoint descriptors mounted on ``init()``."""

    mime: MimeConfig = field(default_factory=MimeConfig)

    development: bool = False
    """Include stack traces in error responses."""

    adapters: dict[str, Callable[..., Any]] = field(default_factory=dict)
    """Extra adapter factories by name, merged over the built-in ones."""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FilesystemConfig:
        """Build from the nested form ``{"vfs": {...}, "mime": {...}, "development": bool}``."""
        vfs = dict(data.get("vfs") or {})
        mime = dict(data.get("mime") or {})
        defaults = MimeConfig()

        kwargs: dict[str, Any] = {
            "watch": bool(vfs.get("watch", False)),
            "development": bool(data.get("development", False)),
            "mime": MimeConfig(
                filenames={**defaults.filenames, **(mime.get("filenames") or {})},
                define={**defaults.define, **(mime.get("define") or {})},
            ),
            "adapters": dict(vfs.get("adapters") or {}),
        }
        if vfs.get("root"):
            kwargs["root"] = str(vfs["root"])
        if "mountpoints" in vfs:
            kwargs["mountpoints"] = [dict(m) for m in vfs["mountpoints"]]
        return cls(**kwargs)
