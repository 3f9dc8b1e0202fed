from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any

from flask import abort, request

MAX_PAGE_SIZE = 100


def json_payload() -> dict[str, Any]:
    """Request body as a dict; 400 when it is not a JSON object."""
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict() if request.form else {}
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object")
    return data


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int_arg(name: str, default: int) -> int:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        abort(400, description=f"{name} must be an integer")


def parse_pagination(default_limit: int = 10) -> tuple[int, int]:
    """Read `page`/`limit` query args. Page is 1-based; limit is capped."""
    page = max(_int_arg("page", 1), 1)
    limit = _int_arg("limit", default_limit)
    if limit < 1:
        limit = default_limit
    return page, min(limit, MAX_PAGE_SIZE)


def parse_limit(default: int) -> int:
    limit = _int_arg("limit", default)
    if limit < 1:
        return default
    return min(limit, MAX_PAGE_SIZE)


def pagination_meta(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def like_pattern(term: str) -> str:
    """Substring LIKE pattern with `%`/`_` matched literally (escape char is backslash)."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def parse_iso_date(value: Any) -> date | None:
    """Parse YYYY-MM-DD (or the date part of an ISO datetime)."""
    text = clean_str(value)
    if not text:
        return None
    return date.fromisoformat(text[:10])


def parse_iso_datetime(value: Any) -> datetime | None:
    text = clean_str(value)
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1]
    parsed = datetime.fromisoformat(text)
    return parsed.replace(tzinfo=None)


def isoformat(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")
