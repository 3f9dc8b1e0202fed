from __future__ import annotations

import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass

from app.ctc.constants import DOWNLOAD_USER_AGENT


class DownloadError(RuntimeError):
    pass


class InvalidDownloadUrl(ValueError):
    pass


@dataclass(frozen=True)
class RemoteFile:
    content: bytes
    content_type: str


def validate_download_url(url: str, allowed_hosts: tuple[str, ...]) -> str:
    """
    Only http(s) URLs on an allowed host (or a subdomain of one) may be proxied.
    Returns the normalized host.
    """
    try:
        parsed = urllib.parse.urlsplit(url)
        host = (parsed.hostname or "").lower()
    except ValueError as e:
        raise InvalidDownloadUrl("Invalid URL format") from e
    if parsed.scheme not in ("http", "https") or not host:
        raise InvalidDownloadUrl("Invalid URL format")
    for allowed in allowed_hosts:
        if host == allowed or host.endswith("." + allowed):
            return host
    raise InvalidDownloadUrl("Invalid file URL")


class _AllowListRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Follows a redirect only when the target is still on an allowed host."""

    def __init__(self, allowed_hosts: tuple[str, ...]):
        super().__init__()
        self.allowed_hosts = allowed_hosts

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        try:
            validate_download_url(newurl, self.allowed_hosts)
        except InvalidDownloadUrl as e:
            fp.close()
            raise DownloadError(f"Redirect to disallowed URL: {newurl}") from e
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def fetch_file(url: str, *, allowed_hosts: tuple[str, ...] = (), timeout_seconds: int = 30) -> RemoteFile:
    req = urllib.request.Request(url, method="GET")
    req.add_header("User-Agent", DOWNLOAD_USER_AGENT)
    opener = urllib.request.build_opener(_AllowListRedirectHandler(allowed_hosts))
    try:
        with opener.open(req, timeout=timeout_seconds) as resp:
            content = resp.read()
            content_type = resp.headers.get("Content-Type") or "application/octet-stream"
    except urllib.error.HTTPError as e:
        raise DownloadError(f"HTTP {e.code} from source") from e
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise DownloadError(f"Download failed: {e}") from e
    return RemoteFile(content=content, content_type=content_type)
