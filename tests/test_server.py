"""Tests for the FastAPI surface: routes, streaming, errors and sockets."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from deskvfs import Filesystem, FilesystemConfig
from deskvfs.server import create_app

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

USERS = {
    "jest": {"id": 1, "username": "jest", "groups": ["user"]},
    "admin": {"id": 2, "username": "admin", "groups": ["admin", "staff"]},
}

JEST = {"X-User": "jest"}


def authenticate(conn):
    """Look the user up from a header, the way a session middleware would."""
    return USERS.get(conn.headers.get("x-user", ""))


@pytest.fixture
def client(config: FilesystemConfig) -> Iterator[TestClient]:
    app = create_app(Filesystem(config), authenticate)
    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Routing and authentication
# ---------------------------------------------------------------------------


class TestRouting:
    def test_unauthenticated(self, client: TestClient):
        response = client.get("/vfs/exists", params={"path": "home:/"})
        assert response.status_code == 403
        assert response.json() == {"error": "Access denied"}

    def test_unknown_method(self, client: TestClient):
        assert client.get("/vfs/chmod", headers=JEST).status_code == 404

    def test_wrong_verb(self, client: TestClient):
        assert client.post("/vfs/readdir", headers=JEST, json={"path": "home:/"}).status_code == 404
        assert client.get("/vfs/unlink", headers=JEST, params={"path": "home:/"}).status_code == 404

    def test_internal_method_not_routed(self, client: TestClient):
        assert client.get("/vfs/realpath", headers=JEST, params={"path": "home:/"}).status_code == 404

    def test_mountpoint_list(self, client: TestClient):
        response = client.get("/vfs")
        assert [m["name"] for m in response.json()] == ["home", "shared", "staff", "db"]


# ---------------------------------------------------------------------------
# JSON methods
# ---------------------------------------------------------------------------


class TestJsonMethods:
    def test_exists(self, client: TestClient):
        response = client.get("/vfs/exists", headers=JEST, params={"path": "home:/test"})
        assert response.status_code == 200
        assert response.json() is False

    def test_readdir(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "a.txt").write_text("a")
        (vfs_root / "jest" / "dir").mkdir()
        response = client.get("/vfs/readdir", headers=JEST, params={"path": "home:/"})
        body = response.json()
        assert [e["filename"] for e in body] == ["dir", "a.txt"]
        assert body[0]["isDirectory"] is True
        assert body[1]["isFile"] is True
        assert body[1]["path"] == "home:/a.txt"

    def test_mkdir_json_body(self, client: TestClient, vfs_root: Path):
        response = client.post("/vfs/mkdir", headers=JEST, json={"path": "home:/d"})
        assert response.json() is True
        assert (vfs_root / "jest" / "d").is_dir()

    def test_mkdir_ensure_options_string(self, client: TestClient):
        body = {"path": "home:/d", "options": json.dumps({"ensure": True})}
        client.post("/vfs/mkdir", headers=JEST, json=body)
        assert client.post("/vfs/mkdir", headers=JEST, json=body).json() is True

    def test_copy_form_body(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "a.txt").write_text("a")
        response = client.post(
            "/vfs/copy", headers=JEST, data={"from": "home:/a.txt", "to": "db:/a.txt"}
        )
        assert response.json() is True

    def test_search(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "notes.md").write_text("n")
        response = client.post("/vfs/search", headers=JEST, json={"root": "home:/", "pattern": "*.md"})
        assert [e["path"] for e in response.json()] == ["home:/notes.md"]

    def test_invalid_json(self, client: TestClient):
        response = client.post(
            "/vfs/mkdir",
            headers={**JEST, "Content-Type": "application/json"},
            content=b"{nope",
        )
        assert response.status_code == 400

    def test_json_must_be_object(self, client: TestClient):
        response = client.post("/vfs/mkdir", headers=JEST, json=["home:/d"])
        assert response.status_code == 400
        assert "JSON object" in response.json()["error"]


# ---------------------------------------------------------------------------
# Uploads and downloads
# ---------------------------------------------------------------------------


class TestFiles:
    def test_multipart_writefile(self, client: TestClient, vfs_root: Path):
        response = client.post(
            "/vfs/writefile",
            headers=JEST,
            data={"path": "home:/up.txt"},
            files={"upload": ("up.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 200
        assert response.json() == 5
        assert (vfs_root / "jest" / "up.txt").read_bytes() == b"hello"

    def test_writefile_without_upload(self, client: TestClient):
        response = client.post("/vfs/writefile", headers=JEST, data={"path": "home:/up.txt"})
        assert response.status_code == 400

    def test_readfile(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "a.txt").write_bytes(b"0123456789")
        response = client.get("/vfs/readfile", headers=JEST, params={"path": "home:/a.txt"})
        assert response.status_code == 200
        assert response.content == b"0123456789"
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["content-length"] == "10"
        assert "content-disposition" not in response.headers

    def test_readfile_range(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "a.txt").write_bytes(b"0123456789")
        response = client.get(
            "/vfs/readfile",
            headers={**JEST, "Range": "bytes=2-5"},
            params={"path": "home:/a.txt"},
        )
        assert response.status_code == 206
        assert response.content == b"2345"
        assert response.headers["content-range"] == "bytes 2-5/10"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-length"] == "4"

    def test_readfile_range_empty_file(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "e.txt").write_bytes(b"")
        response = client.get(
            "/vfs/readfile",
            headers={**JEST, "Range": "bytes=0-"},
            params={"path": "home:/e.txt"},
        )
        assert response.status_code == 200
        assert response.content == b""

    def test_readfile_download(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "a.txt").write_text("x")
        response = client.get(
            "/vfs/readfile",
            headers=JEST,
            params={"path": "home:/a.txt", "options": json.dumps({"download": True})},
        )
        assert response.headers["content-disposition"] == 'attachment; filename="a.txt"'

    def test_readfile_download_unicode_name(self, client: TestClient, vfs_root: Path):
        (vfs_root / "jest" / "résumé.txt").write_text("x")
        response = client.get(
            "/vfs/readfile",
            headers=JEST,
            params={"path": "home:/résumé.txt", "options": json.dumps({"download": True})},
        )
        assert response.headers["content-disposition"].startswith("attachment; filename*=utf-8''")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_missing_file_is_404(self, client: TestClient):
        response = client.get("/vfs/stat", headers=JEST, params={"path": "home:/nope"})
        assert response.status_code == 404
        assert response.json()["error"].startswith("ENOENT")
        assert "stack" not in response.json()

    def test_read_only_is_403(self, client: TestClient):
        response = client.post(
            "/vfs/writefile",
            headers=JEST,
            data={"path": "shared:/x.txt"},
            files={"upload": ("x.txt", b"x")},
        )
        assert response.status_code == 403
        assert response.json() == {"error": "Mountpoint 'shared' is read-only"}

    def test_group_denied_is_403(self, client: TestClient):
        response = client.get("/vfs/readdir", headers=JEST, params={"path": "staff:/"})
        assert response.status_code == 403

    def test_group_allowed(self, client: TestClient):
        response = client.get("/vfs/readdir", headers={"X-User": "admin"}, params={"path": "staff:/"})
        assert response.status_code == 200

    def test_unknown_mountpoint_is_403(self, client: TestClient):
        response = client.get("/vfs/readdir", headers=JEST, params={"path": "nope:/"})
        assert response.status_code == 403

    def test_development_stack(self, config: FilesystemConfig):
        config.development = True
        app = create_app(Filesystem(config), authenticate)
        with TestClient(app) as c:
            response = c.get("/vfs/stat", headers=JEST, params={"path": "home:/nope"})
        assert response.status_code == 404
        assert "Traceback" in response.json()["stack"]


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


class TestWebSocket:
    def test_broadcast_reaches_client(self, client: TestClient):
        fs: Filesystem = client.app.state.filesystem
        with client.websocket_connect("/ws", headers=JEST) as ws:
            client.portal.call(fs.broadcaster.broadcast_user, "jest", "hello", 1)
            assert ws.receive_json() == {"name": "hello", "params": [1]}

    def test_client_removed_on_disconnect(self, client: TestClient):
        fs: Filesystem = client.app.state.filesystem
        with client.websocket_connect("/ws", headers=JEST) as ws:
            client.portal.call(fs.broadcaster.broadcast_all, "ping")
            ws.receive_json()
            assert len(fs.broadcaster.clients) == 1
        client.portal.call(fs.broadcaster.broadcast_all, "ping")
        assert fs.broadcaster.clients == []

    def test_unauthenticated_rejected(self, client: TestClient):
        with pytest.raises(WebSocketDisconnect), client.websocket_connect("/ws") as ws:
            ws.receive_text()
