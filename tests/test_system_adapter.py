"""Tests for SystemAdapter — local disk storage."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from deskvfs.fs.exceptions import AdapterError, CapabilityNotSupportedError
from deskvfs.fs.system import SystemAdapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from deskvfs.config import FilesystemConfig


async def _data(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


@pytest.fixture
def adapter(config: FilesystemConfig) -> SystemAdapter:
    return SystemAdapter(config)


@pytest.fixture
def home(vfs_root: Path) -> Path:
    return vfs_root / "jest"


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


class TestRealPath:
    async def test_per_user_root(self, adapter, make_context, vfs_root):
        real = await adapter.realpath(make_context(), "home:/test", {})
        assert real == str(vfs_root / "jest" / "test")

    async def test_mount_root(self, adapter, make_context, vfs_root):
        assert await adapter.realpath(make_context(), "home:/", {}) == str(vfs_root / "jest")

    async def test_escape_rejected(self, adapter, make_context):
        with pytest.raises(AdapterError) as exc_info:
            await adapter.realpath(make_context(), "home:/../admin", {})
        assert exc_info.value.code == "EACCES"

    async def test_no_root_configured(self, adapter, make_context):
        with pytest.raises(CapabilityNotSupportedError):
            await adapter.exists(make_context(root=None), "home:/", {})


# ---------------------------------------------------------------------------
# Read operations
# ---------------------------------------------------------------------------


class TestReadOperations:
    async def test_exists(self, adapter, make_context, home):
        (home / "a.txt").write_text("hi")
        ctx = make_context()
        assert await adapter.exists(ctx, "home:/a.txt", {}) is True
        assert await adapter.exists(ctx, "home:/test", {}) is False

    async def test_stat_file(self, adapter, make_context, home):
        (home / "a.txt").write_text("hello")
        stat = await adapter.stat(make_context(), "home:/a.txt", {})
        assert stat.filename == "a.txt"
        assert stat.path == "home:/a.txt"
        assert stat.size == 5
        assert stat.is_file is True
        assert stat.is_directory is False
        assert stat.mime == "text/plain"

    async def test_stat_missing(self, adapter, make_context):
        with pytest.raises(AdapterError) as exc_info:
            await adapter.stat(make_context(), "home:/nope", {})
        assert exc_info.value.code == "ENOENT"
        assert exc_info.value.status_code == 404

    async def test_readdir_directories_first(self, adapter, make_context, home):
        (home / "b.txt").write_text("b")
        (home / "A.txt").write_text("a")
        (home / "zdir").mkdir()
        entries = await adapter.readdir(make_context(), "home:/", {})
        assert [e.filename for e in entries] == ["zdir", "A.txt", "b.txt"]
        assert entries[0].is_directory is True
        assert entries[1].path == "home:/A.txt"

    async def test_readdir_missing(self, adapter, make_context):
        with pytest.raises(AdapterError):
            await adapter.readdir(make_context(), "home:/nope", {})

    async def test_readfile(self, adapter, make_context, home):
        (home / "a.txt").write_bytes(b"0123456789")
        stream = await adapter.readfile(make_context(), "home:/a.txt", {})
        assert stream.size == 10
        assert stream.range is None
        assert stream.mime == "text/plain"
        assert await stream.read() == b"0123456789"

    async def test_readfile_range(self, adapter, make_context, home):
        (home / "a.txt").write_bytes(b"0123456789")
        stream = await adapter.readfile(make_context(), "home:/a.txt", {"range": (2, 5)})
        assert stream.range == (2, 5)
        assert stream.content_length == 4
        assert await stream.read() == b"2345"

    async def test_readfile_directory(self, adapter, make_context, home):
        (home / "dir").mkdir()
        with pytest.raises(AdapterError) as exc_info:
            await adapter.readfile(make_context(), "home:/dir", {})
        assert exc_info.value.code == "EISDIR"

    async def test_search(self, adapter, make_context, home):
        (home / "docs").mkdir()
        (home / "docs" / "Report.TXT").write_text("r")
        (home / "notes.md").write_text("n")
        (home / "docs" / "txt-dir").mkdir()
        found = await adapter.search(make_context(), "home:/", "*.txt", {})
        assert [f.path for f in found] == ["home:/docs/Report.TXT"]

    async def test_capabilities(self, adapter, make_context):
        caps = await adapter.capabilities(make_context(), "home:/", {})
        assert caps == {"pagination": False, "sort": False, "range": True}


# ---------------------------------------------------------------------------
# Write operations
# ---------------------------------------------------------------------------


class TestWriteOperations:
    async def test_writefile_returns_bytes_written(self, adapter, make_context, home):
        written = await adapter.writefile(make_context(), "home:/a.txt", _data(b"ab", b"cd"), {})
        assert written == 4
        assert (home / "a.txt").read_bytes() == b"abcd"

    async def test_writefile_overwrites(self, adapter, make_context, home):
        (home / "a.txt").write_text("old content")
        await adapter.writefile(make_context(), "home:/a.txt", _data(b"new"), {})
        assert (home / "a.txt").read_text() == "new"

    async def test_writefile_to_directory(self, adapter, make_context, home):
        (home / "dir").mkdir()
        assert await adapter.writefile(make_context(), "home:/dir", _data(b"x"), {}) is False

    async def test_writefile_missing_parent(self, adapter, make_context):
        with pytest.raises(AdapterError) as exc_info:
            await adapter.writefile(make_context(), "home:/no/such/file", _data(b"x"), {})
        assert exc_info.value.code == "ENOENT"

    async def test_mkdir(self, adapter, make_context, home):
        assert await adapter.mkdir(make_context(), "home:/dir", {}) is True
        assert (home / "dir").is_dir()

    async def test_mkdir_existing(self, adapter, make_context, home):
        (home / "dir").mkdir()
        with pytest.raises(AdapterError) as exc_info:
            await adapter.mkdir(make_context(), "home:/dir", {})
        assert exc_info.value.code == "EEXIST"

    async def test_mkdir_ensure(self, adapter, make_context, home):
        (home / "dir").mkdir()
        assert await adapter.mkdir(make_context(), "home:/dir", {"ensure": True}) is True

    async def test_mkdir_ensure_over_file(self, adapter, make_context, home):
        (home / "dir").write_text("a file")
        with pytest.raises(AdapterError) as exc_info:
            await adapter.mkdir(make_context(), "home:/dir", {"ensure": True})
        assert exc_info.value.code == "EEXIST"

    async def test_unlink_file_and_tree(self, adapter, make_context, home):
        (home / "a.txt").write_text("a")
        (home / "dir" / "sub").mkdir(parents=True)
        (home / "dir" / "sub" / "b.txt").write_text("b")
        ctx = make_context()
        assert await adapter.unlink(ctx, "home:/a.txt", {}) is True
        assert await adapter.unlink(ctx, "home:/dir", {}) is True
        assert list(home.iterdir()) == []

    async def test_unlink_missing(self, adapter, make_context):
        assert await adapter.unlink(make_context(), "home:/nope", {}) is True

    async def test_touch_creates_parents(self, adapter, make_context, home):
        assert await adapter.touch(make_context(), "home:/a/b/c.txt", {}) is True
        assert (home / "a" / "b" / "c.txt").is_file()

    async def test_touch_keeps_content(self, adapter, make_context, home):
        (home / "a.txt").write_text("keep")
        await adapter.touch(make_context(), "home:/a.txt", {})
        assert (home / "a.txt").read_text() == "keep"

    async def test_copy_file(self, adapter, make_context, home):
        (home / "a.txt").write_text("a")
        ctx = make_context()
        assert await adapter.copy(ctx, ctx, "home:/a.txt", "home:/b.txt", {}) is True
        assert (home / "a.txt").read_text() == "a"
        assert (home / "b.txt").read_text() == "a"

    async def test_copy_directory(self, adapter, make_context, home):
        (home / "dir").mkdir()
        (home / "dir" / "x.txt").write_text("x")
        ctx = make_context()
        await adapter.copy(ctx, ctx, "home:/dir", "home:/dir2", {})
        assert (home / "dir2" / "x.txt").read_text() == "x"

    async def test_copy_missing(self, adapter, make_context):
        ctx = make_context()
        with pytest.raises(AdapterError) as exc_info:
            await adapter.copy(ctx, ctx, "home:/nope", "home:/b", {})
        assert exc_info.value.code == "ENOENT"

    async def test_rename(self, adapter, make_context, home):
        (home / "a.txt").write_text("a")
        ctx = make_context()
        assert await adapter.rename(ctx, ctx, "home:/a.txt", "home:/b.txt", {}) is True
        assert not (home / "a.txt").exists()
        assert (home / "b.txt").read_text() == "a"

    async def test_rename_missing(self, adapter, make_context):
        ctx = make_context()
        with pytest.raises(AdapterError) as exc_info:
            await adapter.rename(ctx, ctx, "home:/nope", "home:/b", {})
        assert exc_info.value.code == "ENOENT"

    async def test_rename_across_mounts(self, adapter, make_context, vfs_root, home):
        (home / "a.txt").write_text("a")
        src = make_context()
        dest = make_context(name="shared", root="{vfs}/shared")
        await adapter.rename(src, dest, "home:/a.txt", "shared:/a.txt", {})
        assert (vfs_root / "shared" / "a.txt").read_text() == "a"
