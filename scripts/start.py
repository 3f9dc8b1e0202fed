#!/usr/bin/env python3
"""
Start the CTC API: release phase (scripts/release.py), then exec gunicorn on app.wsgi:app.

Environment:
    PORT             bind port (default 8080)
    WEB_CONCURRENCY  gunicorn workers (default 2)
    GUNICORN_TIMEOUT worker timeout in seconds (default 60; uploads and the
                     download proxy run inside the request)
    SKIP_RELEASE     "1" to skip migrations + admin seed (e.g. a second web process)

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

WSGI_TARGET = "app.wsgi:app"


def _int_env(environ: dict[str, str], name: str, default: int, *, low: int, high: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")
    return value


def gunicorn_argv(environ: dict[str, str]) -> list[str]:
    port = _int_env(environ, "PORT", 8080, low=1, high=65535)
    workers = _int_env(environ, "WEB_CONCURRENCY", 2, low=1, high=64)
    timeout = _int_env(environ, "GUNICORN_TIMEOUT", 60, low=1, high=3600)
    return [
        "gunicorn",
        WSGI_TARGET,
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        # create_app() disposes the inherited engine in each forked worker.
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    try:
        argv = gunicorn_argv(os.environ)
    except ValueError as e:
        print(f"ERROR: {e}", flush=True)
        sys.exit(1)

    if (os.environ.get("SKIP_RELEASE") or "").strip() == "1":
        print("SKIP_RELEASE=1, not running migrations or the admin seed", flush=True)
    else:
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    print(f"=== Starting CTC API: {' '.join(argv)} ===", flush=True)
    os.execvp("gunicorn", argv)


if __name__ == "__main__":
    main()
