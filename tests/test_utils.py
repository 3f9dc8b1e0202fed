from datetime import datetime

import pytest
from werkzeug.exceptions import BadRequest

from app.ctc.utils import as_bool, like_pattern, pagination_meta, parse_iso_datetime, parse_pagination


def test_pagination_meta():
    assert pagination_meta(1, 10, 0) == {
        "page": 1,
        "limit": 10,
        "total": 0,
        "totalPages": 0,
        "hasNext": False,
        "hasPrev": False,
    }
    meta = pagination_meta(2, 10, 25)
    assert meta["totalPages"] == 3
    assert meta["hasNext"] is True
    assert meta["hasPrev"] is True
    assert pagination_meta(3, 10, 25)["hasNext"] is False


def test_like_pattern_escapes_wildcards():
    assert like_pattern("abc") == "%abc%"
    assert like_pattern("100%") == "%100\\%%"
    assert like_pattern("a_b") == "%a\\_b%"
    assert like_pattern("c:\\tmp") == "%c:\\\\tmp%"


def test_parse_pagination(ctc_app):
    with ctc_app.test_request_context("/?page=0&limit=500"):
        assert parse_pagination() == (1, 100)
    with ctc_app.test_request_context("/?limit=0"):
        assert parse_pagination(default_limit=20) == (1, 20)
    with ctc_app.test_request_context("/?page=3&limit=5"):
        assert parse_pagination() == (3, 5)
    with ctc_app.test_request_context("/?page=two"):
        with pytest.raises(BadRequest):
            parse_pagination()


def test_parse_iso_datetime():
    assert parse_iso_datetime("2026-10-19T08:30:00Z") == datetime(2026, 10, 19, 8, 30)
    assert parse_iso_datetime("2026-10-19T08:30:00+00:00") == datetime(2026, 10, 19, 8, 30)
    assert parse_iso_datetime("  ") is None
    with pytest.raises(ValueError):
        parse_iso_datetime("tomorrow")


@pytest.mark.parametrize(
    "value,expected",
    [(True, True), ("true", True), ("Yes", True), ("1", True), ("off", False), (None, False), (0, False)],
)
def test_as_bool(value, expected):
    assert as_bool(value) is expected
