"""Path utilities, segment templates, range parsing and MIME lookup."""

from __future__ import annotations

import json
import mimetypes
import os
import posixpath
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import ValidationError

if TYPE_CHECKING:
    from .types import VFSContext

# =============================================================================
# Filename Sanitization
# =============================================================================

_ILLEGAL_RE = re.compile(r'[/?<>\\:*|"]')
_CONTROL_RE = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED_RE = re.compile(r"^\.+$")
_WINDOWS_RESERVED_RE = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_WINDOWS_TRAILING_RE = re.compile(r"[. ]+$")

_VFS_PATH_RE = re.compile(r"^([\w-]+):(.*)$", re.DOTALL)

MAX_FILENAME_BYTES = 255


def sanitize_filename(name: str) -> str:
    """Strip characters and names that are illegal in a single file name.

    Examples:
        sanitize_filename('a"b') -> "ab"
        sanitize_filename("..") -> ""
        sanitize_filename("con.txt") -> ""
    """
    name = _ILLEGAL_RE.sub("", name)
    name = _CONTROL_RE.sub("", name)
    name = _RESERVED_RE.sub("", name)
    name = _WINDOWS_RESERVED_RE.sub("", name)
    name = _WINDOWS_TRAILING_RE.sub("", name)

    encoded = name.encode("utf-8")
    if len(encoded) > MAX_FILENAME_BYTES:
        name = encoded[:MAX_FILENAME_BYTES].decode("utf-8", errors="ignore")
    return name


def get_prefix(path: str) -> str:
    """Return the mountpoint prefix of a VFS path.

    Examples:
        get_prefix("home:/docs") -> "home"
        get_prefix("home-dir::/") -> "home-dir"
    """
    return str(path).split(":", 1)[0]


def sanitize(path: str) -> str:
    """Sanitize every segment of a ``prefix:/path`` string.

    The prefix is kept as-is. A string without a usable prefix is returned
    with an empty prefix so mountpoint resolution rejects it.

    Examples:
        sanitize("home:/a/../b") -> "home:/a/b"
        sanitize("home://x*y") -> "home:/xy"
    """
    collapsed = re.sub(r"/+", "/", str(path))
    match = _VFS_PATH_RE.match(collapsed)
    if match is None:
        name, rest = "", collapsed.split(":", 1)[-1]
    else:
        name, rest = match.group(1), match.group(2)

    sane = "/".join(sanitize_filename(s) for s in rest.split("/"))
    sane = re.sub(r"/+", "/", sane)
    return f"{name}:{sane}"


def path_portion(path: str) -> str:
    """Return the part after ``prefix:``, always starting with ``/``."""
    rest = str(path).split(":", 1)[1] if ":" in str(path) else str(path)
    if not rest.startswith("/"):
        rest = "/" + rest
    return rest


def join_vfs(base: str, name: str) -> str:
    """Join a child name onto a VFS directory path."""
    return base.rstrip("/") + "/" + name


# =============================================================================
# Segment Templates
# =============================================================================

WILDCARD = "**"


@dataclass(frozen=True)
class Segment:
    """A ``{token}`` value source. Dynamic segments depend on the request user."""

    dynamic: bool
    resolve: Callable[[VFSContext], str]


def _username(context: VFSContext) -> str:
    session = context.session
    if session is None or session.user is None:
        return ""
    return session.user.username


SEGMENTS: dict[str, Segment] = {
    "root": Segment(dynamic=False, resolve=lambda context: os.getcwd()),
    "vfs": Segment(dynamic=False, resolve=lambda context: context.config.root),
    "username": Segment(dynamic=True, resolve=_username),
}

_TOKEN_RE = re.compile(r"\{(\w+)\}")


class SegmentTemplate:
    """A root template such as ``{vfs}/{username}``, tokenized once.

    Literal text and tokens are kept in order; resolving walks the parts
    instead of re-running the regex for every request.
    """

    def __init__(self, template: str) -> None:
        self.template = template
        self._parts: list[tuple[bool, str]] = []
        pos = 0
        for match in _TOKEN_RE.finditer(template):
            if match.start() > pos:
                self._parts.append((False, template[pos:match.start()]))
            self._parts.append((True, match.group(1)))
            pos = match.end()
        if pos < len(template):
            self._parts.append((False, template[pos:]))

    @property
    def tokens(self) -> list[str]:
        return [value for is_token, value in self._parts if is_token]

    @property
    def dynamic_tokens(self) -> list[str]:
        """Tokens whose value depends on the requesting user, in template order."""
        return [t for t in self.tokens if t in SEGMENTS and SEGMENTS[t].dynamic]

    def resolve(self, context: VFSContext, overrides: Mapping[str, str] | None = None) -> str:
        """Replace every token with its value; unknown tokens become ``""``."""
        out: list[str] = []
        for is_token, value in self._parts:
            if not is_token:
                out.append(value)
            elif overrides is not None and value in overrides:
                out.append(overrides[value])
            elif value in SEGMENTS:
                out.append(SEGMENTS[value].resolve(context))
        return "".join(out)

    def wildcard(self, context: VFSContext) -> str:
        """Resolve static tokens and replace dynamic ones with :data:`WILDCARD`."""
        return self.resolve(context, {t: WILDCARD for t in self.dynamic_tokens})

    def __repr__(self) -> str:
        return f"SegmentTemplate({self.template!r})"


def resolve_segments(context: VFSContext, template: str) -> str:
    """Functional shorthand for ``SegmentTemplate(template).resolve(context)``."""
    return SegmentTemplate(template).resolve(context)


# =============================================================================
# Request Field Helpers
# =============================================================================


def parse_options(value: Any) -> dict[str, Any]:
    """Parse the ``options`` field, sent either as a JSON string or an object."""
    if value is None or value == "":
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid options: {e}") from None
        if not isinstance(parsed, dict):
            raise ValidationError("Invalid options: expected an object")
        return parsed
    raise ValidationError("Invalid options: expected an object")


def parse_range_header(header: str, size: int) -> tuple[int, int, int]:
    """Parse ``bytes=<start>-<end>`` into ``(start, end, length)``.

    A missing end means "until the last byte".  The end is clamped to the
    file size.

    Examples:
        parse_range_header("bytes=0-9", 100) -> (0, 9, 10)
        parse_range_header("bytes=90-", 100) -> (90, 99, 10)
    """
    spec = header.strip()
    if spec.startswith("bytes="):
        spec = spec[len("bytes="):]
    start_s, _, end_s = spec.partition("-")
    try:
        start = int(start_s, 10)
        end = int(end_s, 10) if end_s.strip() else size - 1
    except ValueError:
        raise ValidationError(f"Invalid range: {header}") from None

    end = min(end, size - 1)
    if start < 0 or start > end:
        raise ValidationError(f"Invalid range: {header}")
    return start, end, end - start + 1


def to_vfs_path(prefix: str, relative: str) -> str:
    """Build ``<prefix>:/<relative>`` from a path relative to the mount root."""
    relative = posixpath.normpath("/" + relative.replace(os.sep, "/")).lstrip("/")
    return f"{prefix}:/{relative}" if relative != "." else f"{prefix}:/"


# =============================================================================
# MIME Types
# =============================================================================

DEFAULT_MIME = "application/octet-stream"


class MimeTypes:
    """Filename → MIME type lookup.

    Exact filename overrides win, then the ``define`` table
    (``{"text/x-python": ["py"]}``), then the platform table.
    """

    def __init__(
        self,
        filenames: Mapping[str, str] | None = None,
        define: Mapping[str, list[str]] | None = None,
    ) -> None:
        self.filenames = dict(filenames or {})
        self._extensions: dict[str, str] = {}
        for mime, extensions in (define or {}).items():
            for ext in extensions:
                self._extensions[ext.lower().lstrip(".")] = mime

    def __call__(self, filename: str) -> str:
        name = posixpath.basename(str(filename).replace(os.sep, "/"))
        if name in self.filenames:
            return self.filenames[name]

        _, ext = posixpath.splitext(name)
        ext = ext.lower().lstrip(".")
        if ext and ext in self._extensions:
            return self._extensions[ext]

        mime_type, _ = mimetypes.guess_type(name, strict=False)
        return mime_type or DEFAULT_MIME
