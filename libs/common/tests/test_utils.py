from __future__ import annotations

from datetime import datetime

import pytest
from common.utils import now_utc_iso, parse_iso_datetime, tokenize

pytestmark = pytest.mark.unit


def test_tokenize_normalizes_case_and_punctuation() -> None:
    tokens = tokenize("Python, APIs! python;")
    assert tokens == {"python", "apis"}


def test_tokenize_returns_empty_set_for_blank_text() -> None:
    assert tokenize("   ") == set()


def test_tokenize_drops_tokens_made_only_of_punctuation() -> None:
    assert tokenize("Backend - (Madrid) ;") == {"backend", "-", "madrid"}


def test_now_utc_iso_returns_parseable_utc_timestamp() -> None:
    parsed = datetime.fromisoformat(now_utc_iso())
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() is not None
    assert parsed.utcoffset().total_seconds() == 0


def test_parse_iso_datetime_accepts_zulu_suffix_and_naive_values() -> None:
    zulu = parse_iso_datetime("2024-03-01T10:00:00Z")
    naive = parse_iso_datetime("2024-03-01T10:00:00")

    assert zulu is not None and naive is not None
    assert zulu == naive
    assert naive.utcoffset().total_seconds() == 0


def test_parse_iso_datetime_returns_none_for_garbage() -> None:
    assert parse_iso_datetime("not-a-date") is None
    assert parse_iso_datetime(None) is None
    assert parse_iso_datetime("") is None


def test_parse_iso_datetime_normalizes_offsets_to_utc() -> None:
    parsed = parse_iso_datetime("2024-03-01T12:00:00+02:00")
    assert parsed is not None
    assert parsed.isoformat() == "2024-03-01T10:00:00+00:00"


@pytest.mark.parametrize("value", ["9999-12-31T23:59:59-05:00", "0001-01-01T00:00:00+05:00"])
def test_parse_iso_datetime_returns_none_when_utc_value_is_out_of_range(value: str) -> None:
    assert parse_iso_datetime(value) is None
