"""deskvfs: the virtual filesystem of a multi-user web desktop.

Named mountpoints over pluggable storage adapters, with per-user roots,
group and read-only policies, HTTP routes and change notifications.
"""

__version__ = "0.1.0"

from deskvfs._filesystem import Filesystem
from deskvfs.config import FilesystemConfig, MimeConfig
from deskvfs.events import EventBus, EventType, MountEvent, WatchEvent
from deskvfs.fs.dispatcher import VFSRequest
from deskvfs.fs.exceptions import (
    AdapterError,
    CapabilityNotSupportedError,
    MountpointNotFoundError,
    PermissionDeniedError,
    ReadOnlyError,
    ValidationError,
    VFSError,
)
from deskvfs.fs.types import FileStat, FileStream, Mountpoint, Session, User
from deskvfs.server import Broadcaster, create_app

__all__ = [
    "AdapterError",
    "Broadcaster",
    "CapabilityNotSupportedError",
    "EventBus",
    "EventType",
    "FileStat",
    "FileStream",
    "Filesystem",
    "FilesystemConfig",
    "MimeConfig",
    "MountEvent",
    "Mountpoint",
    "MountpointNotFoundError",
    "PermissionDeniedError",
    "ReadOnlyError",
    "Session",
    "User",
    "VFSError",
    "VFSRequest",
    "ValidationError",
    "WatchEvent",
    "__version__",
    "create_app",
]
