"""Tests for time utilities."""

from datetime import UTC, datetime, timedelta, timezone

from ghmirror.core.utils.time import (
    isoformat_utc,
    parse_github_datetime,
    to_naive_utc,
    utcnow,
    utcnow_naive,
)


def test_utcnow_is_aware() -> None:
    assert utcnow().tzinfo == UTC


def test_utcnow_naive_has_no_tzinfo() -> None:
    assert utcnow_naive().tzinfo is None


def test_parse_github_datetime_z_suffix() -> None:
    assert parse_github_datetime("2024-01-01T00:00:00Z") == datetime(2024, 1, 1)


def test_parse_github_datetime_converts_offsets_to_utc() -> None:
    assert parse_github_datetime("2024-01-01T09:00:00+09:00") == datetime(2024, 1, 1)


def test_parse_github_datetime_bad_input() -> None:
    assert parse_github_datetime(None) is None
    assert parse_github_datetime("") is None
    assert parse_github_datetime("not a date") is None


def test_to_naive_utc() -> None:
    kst = timezone(timedelta(hours=9))
    assert to_naive_utc(datetime(2024, 1, 1, 9, tzinfo=kst)) == datetime(2024, 1, 1)
    assert to_naive_utc(datetime(2024, 1, 1)) == datetime(2024, 1, 1)
    assert to_naive_utc(None) is None


def test_isoformat_utc_treats_naive_as_utc() -> None:
    assert isoformat_utc(datetime(2024, 1, 1)) == "2024-01-01T00:00:00+00:00"
    assert isoformat_utc(None) is None
