"""Filesystem layer — adapters, mountpoints, permissions, dispatch."""

from deskvfs.fs.database import DatabaseAdapter
from deskvfs.fs.dispatcher import Dispatcher, VFSRequest
from deskvfs.fs.exceptions import (
    AdapterError,
    CapabilityNotSupportedError,
    MountpointNotFoundError,
    PermissionDeniedError,
    ReadOnlyError,
    ValidationError,
    VFSError,
    error_payload,
    status_for,
)
from deskvfs.fs.methods import METHODS, MethodSpec
from deskvfs.fs.mounts import MountpointRegistry
from deskvfs.fs.permissions import check_permission, check_read_only, validate_groups
from deskvfs.fs.protocol import StorageAdapter, SupportsWatch, WatchHandle
from deskvfs.fs.system import SystemAdapter
from deskvfs.fs.types import (
    FileStat,
    FileStream,
    MountAttributes,
    Mountpoint,
    Session,
    User,
    VFSContext,
)
from deskvfs.fs.uploads import TempUpload
from deskvfs.fs.utils import MimeTypes, get_prefix, sanitize
from deskvfs.fs.watch import WatchManager

__all__ = [
    "METHODS",
    "AdapterError",
    "CapabilityNotSupportedError",
    "DatabaseAdapter",
    "Dispatcher",
    "FileStat",
    "FileStream",
    "MethodSpec",
    "MimeTypes",
    "MountAttributes",
    "Mountpoint",
    "MountpointNotFoundError",
    "MountpointRegistry",
    "PermissionDeniedError",
    "ReadOnlyError",
    "Session",
    "StorageAdapter",
    "SupportsWatch",
    "SystemAdapter",
    "TempUpload",
    "User",
    "VFSContext",
    "VFSError",
    "VFSRequest",
    "ValidationError",
    "WatchHandle",
    "WatchManager",
    "check_permission",
    "check_read_only",
    "error_payload",
    "get_prefix",
    "sanitize",
    "status_for",
]
