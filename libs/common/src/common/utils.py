from __future__ import annotations

from datetime import UTC, datetime


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat()


def tokenize(text: str) -> set[str]:
    punctuation = ".,!?;:\"'()[]{}"
    return {token.strip(punctuation) for token in text.lower().split() if token.strip(punctuation)}


def parse_iso_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        normalized = value.strip().replace("Z", "+00:00")
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    try:
        return parsed.astimezone(UTC)
    except OverflowError:
        # Offsets can push the first or last representable day out of range.
        return None
