from __future__ import annotations

import re

from flask import Blueprint, Response, abort, current_app, g, request, send_file

from app.ctc.constants import ALLOWED_UPLOAD_TYPES
from app.ctc.modules.media import client as media_client
from app.ctc.rbac import require_login
from app.ctc.storage import LocalStorage, StorageError, build_upload_key, storage_from_config

bp = Blueprint("media", __name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.\-_]")


def sanitize_download_name(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def _store(file_storage, data: bytes) -> tuple[str, str, int, str]:
    """Persist one upload. Returns (key, url, size, content_type)."""
    content_type = (file_storage.mimetype or "application/octet-stream").strip()
    storage = storage_from_config(current_app.config)
    key = build_upload_key(file_storage.filename or "file.bin")
    storage.put_bytes(key, data, content_type=content_type)
    return key, storage.public_url(key), len(data), content_type


@bp.post("/api/upload")
@require_login
def upload_single():
    f = request.files.get("file")
    if not f or not f.filename:
        abort(400, description="No file uploaded")
    key, url, _size, _ctype = _store(f, f.read())
    current_app.logger.info("Stored upload key=%s request_id=%s", key, getattr(g, "request_id", None))
    return {"url": url, "public_id": key}


@bp.post("/api/upload/files")
@require_login
def upload_many():
    files = [f for f in request.files.getlist("files") if f and f.filename]
    if not files:
        abort(400, description="No files uploaded")
    for f in files:
        if (f.mimetype or "") not in ALLOWED_UPLOAD_TYPES:
            abort(400, description=f"File type {f.mimetype or 'unknown'} is not allowed.")

    uploaded = []
    for f in files:
        data = f.read()
        if not data:
            continue
        key, url, size, content_type = _store(f, data)
        uploaded.append(
            {
                "originalName": f.filename,
                "filename": key.rsplit("/", 1)[-1],
                "size": size,
                "type": content_type,
                "url": url,
                "storageKey": key,
            }
        )
    return {"success": True, "files": uploaded}


@bp.get("/api/download")
def download_proxy():
    url = (request.args.get("url") or "").strip()
    filename = (request.args.get("filename") or "").strip()
    if not url or not filename:
        abort(400, description="URL and filename are required")

    allowed_hosts = tuple(current_app.config.get("DOWNLOAD_ALLOWED_HOSTS") or ())
    try:
        media_client.validate_download_url(url, allowed_hosts)
    except media_client.InvalidDownloadUrl as e:
        abort(400, description=str(e))

    try:
        remote = media_client.fetch_file(url, allowed_hosts=allowed_hosts)
    except media_client.DownloadError as e:
        current_app.logger.warning("Download proxy failed url=%s err=%s", url, e)
        abort(500, description="Failed to fetch file from source")

    resp = Response(remote.content, status=200, mimetype=remote.content_type)
    resp.headers["Content-Disposition"] = f'attachment; filename="{sanitize_download_name(filename)}"'
    resp.headers["Content-Length"] = str(len(remote.content))
    resp.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp


@bp.get("/media/<path:key>")
def media_file(key: str):
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404, description="Not found")
    try:
        if not storage.exists(key):
            abort(404, description="File not found")
        fh = storage.open(key)
    except StorageError:
        abort(404, description="File not found")
    return send_file(fh, download_name=key.rsplit("/", 1)[-1])
