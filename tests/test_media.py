"""Tests for uploads, locally served media and the download proxy."""
import threading
from datetime import date
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from io import BytesIO

import pytest

from app.ctc.modules.media import client as media_client
from app.ctc.modules.media.routes import sanitize_download_name
from app.ctc.storage import build_upload_key

ALLOWED = ("res.cloudinary.com",)


class TestValidateDownloadUrl:
    def test_allowed_host(self):
        assert media_client.validate_download_url("https://res.cloudinary.com/demo/raw/a.pdf", ALLOWED) == "res.cloudinary.com"

    def test_subdomain_allowed(self):
        host = media_client.validate_download_url("https://eu.res.cloudinary.com/a.pdf", ALLOWED)
        assert host == "eu.res.cloudinary.com"

    def test_lookalike_host_rejected(self):
        with pytest.raises(media_client.InvalidDownloadUrl, match="Invalid file URL"):
            media_client.validate_download_url("https://res.cloudinary.com.evil.example/a.pdf", ALLOWED)
        with pytest.raises(media_client.InvalidDownloadUrl, match="Invalid file URL"):
            media_client.validate_download_url("https://evil.example/res.cloudinary.com/a.pdf", ALLOWED)

    def test_bad_scheme_or_format(self):
        with pytest.raises(media_client.InvalidDownloadUrl, match="Invalid URL format"):
            media_client.validate_download_url("ftp://res.cloudinary.com/a.pdf", ALLOWED)
        with pytest.raises(media_client.InvalidDownloadUrl, match="Invalid URL format"):
            media_client.validate_download_url("not a url", ALLOWED)


def test_sanitize_download_name():
    assert sanitize_download_name("my file(1).pdf") == "my_file_1_.pdf"
    assert sanitize_download_name('evil"name.txt') == "evil_name.txt"


def test_build_upload_key():
    key = build_upload_key("../../My Notes.pdf", date(2026, 10, 19))
    prefix, _, name = key.rpartition("/")
    assert prefix == "uploads/2026-10-19"
    assert name.endswith("_My_Notes.pdf")


def test_download_requires_params(client):
    r = client.get("/api/download?url=https://res.cloudinary.com/a.pdf")
    assert r.status_code == 400
    assert r.json["error"] == "URL and filename are required"


def test_download_rejects_other_hosts(client):
    r = client.get("/api/download?url=https://example.com/a.pdf&filename=a.pdf")
    assert r.status_code == 400
    assert r.json["error"] == "Invalid file URL"


def test_download_proxies_file(client, monkeypatch):
    seen = {}

    def fake_fetch(url, **kwargs):
        seen["url"] = url
        seen["allowed_hosts"] = kwargs.get("allowed_hosts")
        return media_client.RemoteFile(content=b"%PDF-1.4 data", content_type="application/pdf")

    monkeypatch.setattr(media_client, "fetch_file", fake_fetch)
    r = client.get(
        "/api/download",
        query_string={"url": "https://res.cloudinary.com/demo/raw/a.pdf", "filename": "my file(1).pdf"},
    )
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 data"
    assert r.headers["Content-Type"] == "application/pdf"
    assert r.headers["Content-Disposition"] == 'attachment; filename="my_file_1_.pdf"'
    assert r.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    assert seen["url"] == "https://res.cloudinary.com/demo/raw/a.pdf"
    assert seen["allowed_hosts"] == ("res.cloudinary.com",)


def test_download_upstream_failure(client, monkeypatch):
    def failing_fetch(url, **kwargs):
        raise media_client.DownloadError("HTTP 404 from source")

    monkeypatch.setattr(media_client, "fetch_file", failing_fetch)
    r = client.get(
        "/api/download",
        query_string={"url": "https://res.cloudinary.com/demo/raw/a.pdf", "filename": "a.pdf"},
    )
    assert r.status_code == 500
    assert r.json["error"] == "Failed to fetch file from source"


def test_upload_requires_login(client, csrf):
    csrf()
    r = client.post(
        "/api/upload",
        data={"file": (BytesIO(b"hello"), "hello.txt", "text/plain")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 401


def test_upload_and_serve_locally(client, make_user, login):
    make_user("student@example.com")
    login("student@example.com")

    r = client.post("/api/upload", data={}, content_type="multipart/form-data")
    assert r.status_code == 400

    r = client.post(
        "/api/upload",
        data={"file": (BytesIO(b"hello world"), "hello.txt", "text/plain")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    url = r.json["url"]
    assert url.startswith("/media/uploads/")
    assert r.json["public_id"].endswith("_hello.txt")

    r = client.get(url)
    assert r.status_code == 200
    assert r.data == b"hello world"

    assert client.get("/media/uploads/missing.txt").status_code == 404
    assert client.get("/media/../../etc/passwd").status_code == 404


def test_upload_many_checks_types_and_skips_empty(client, make_user, login):
    make_user("student@example.com")
    login("student@example.com")

    r = client.post(
        "/api/upload/files",
        data={"files": [(BytesIO(b"MZ"), "setup.exe", "application/x-msdownload")]},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert "not allowed" in r.json["error"]

    r = client.post(
        "/api/upload/files",
        data={
            "files": [
                (BytesIO(b"%PDF-1.4"), "syllabus.pdf", "application/pdf"),
                (BytesIO(b""), "empty.txt", "text/plain"),
            ]
        },
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    files = r.json["files"]
    assert len(files) == 1
    assert files[0]["originalName"] == "syllabus.pdf"
    assert files[0]["type"] == "application/pdf"
    assert files[0]["size"] == 8
    assert files[0]["storageKey"].startswith("uploads/")


class _RedirectingSource(BaseHTTPRequestHandler):
    """Stands in for a file host: /file and /elsewhere redirect, the rest serve bytes."""

    def do_GET(self):
        port = self.server.server_address[1]
        if self.path == "/file":
            self._redirect(f"http://localhost:{port}/final")
        elif self.path == "/elsewhere":
            self._redirect(f"http://127.0.0.1:{port}/internal")
        else:
            body = b"FINAL" if self.path == "/final" else b"INTERNAL"
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

    def _redirect(self, location):
        self.send_response(302)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format, *args):
        pass


@pytest.fixture()
def source_port(monkeypatch):
    for var in ("http_proxy", "HTTP_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(var, raising=False)
    server = ThreadingHTTPServer(("127.0.0.1", 0), _RedirectingSource)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


def test_fetch_follows_redirects_within_allowed_hosts(source_port):
    remote = media_client.fetch_file(f"http://localhost:{source_port}/file", allowed_hosts=("localhost",))
    assert remote.content == b"FINAL"


def test_fetch_refuses_redirect_off_allowed_hosts(source_port):
    with pytest.raises(media_client.DownloadError, match="disallowed"):
        media_client.fetch_file(f"http://localhost:{source_port}/elsewhere", allowed_hosts=("localhost",))


def test_download_proxy_does_not_follow_redirect_to_internal_host(ctc_app, client, source_port):
    ctc_app.config["DOWNLOAD_ALLOWED_HOSTS"] = ("localhost",)
    r = client.get(
        "/api/download",
        query_string={"url": f"http://localhost:{source_port}/elsewhere", "filename": "a.txt"},
    )
    assert r.status_code == 500
    assert r.json["error"] == "Failed to fetch file from source"
    assert b"INTERNAL" not in r.data
