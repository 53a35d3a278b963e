from __future__ import annotations

import json
import logging
import random
import string
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any
from xml.parsers.expat import ExpatError

import httpx
import xmltodict
from common.utils import now_utc_iso, parse_iso_datetime

from jobswipe.config import DEFAULT_LISTING_PATH
from jobswipe.geo import UNKNOWN, Coordinates, KnownCoordinates, coordinates_from
from jobswipe.models import JobDraft
from jobswipe.skills import extract_skills
from jobswipe.text import decode_entities, normalize_whitespace, strip_html

LOGGER = logging.getLogger("jobswipe.feed")

REMOTE_KEYWORDS = (
    "remote",
    "work from home",
    "home-based",
    "telecommute",
    "virtual",
    "anywhere",
)
COORDINATE_KEY_PAIRS = (("lat", "lng"), ("latitude", "longitude"))
DEFAULT_TITLE = "Untitled Position"
DEFAULT_COMPANY = "Unknown Company"
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class FeedFetchError(RuntimeError):
    """The feed could not be retrieved or parsed; no drafts were produced."""


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        for key in ("name", "#text"):
            if key in value:
                return _text(value[key])
        return None
    if isinstance(value, list):
        for item in value:
            text = _text(item)
            if text:
                return text
        return None
    text = str(value).strip()
    return text or None


def _first_text(entry: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        text = _text(entry.get(key))
        if text:
            return text
    return None


def _parse_pair(raw_latitude: Any, raw_longitude: Any) -> Coordinates:
    try:
        latitude = float(str(raw_latitude).strip())
        longitude = float(str(raw_longitude).strip())
    except (TypeError, ValueError):
        return UNKNOWN
    return coordinates_from(latitude, longitude)


def parse_coordinates(value: Any) -> Coordinates:
    """Parse a "lat,lng" string or a lat/lng (latitude/longitude) mapping.

    Malformed input yields ``UNKNOWN`` rather than an error.
    """
    if isinstance(value, str):
        parts = value.split(",")
        if len(parts) != 2:
            return UNKNOWN
        return _parse_pair(parts[0], parts[1])
    if isinstance(value, Mapping):
        for latitude_key, longitude_key in COORDINATE_KEY_PAIRS:
            if latitude_key in value and longitude_key in value:
                parsed = _parse_pair(_text(value[latitude_key]), _text(value[longitude_key]))
                if isinstance(parsed, KnownCoordinates):
                    return parsed
        return UNKNOWN
    return UNKNOWN


def extract_entry_coordinates(entry: Mapping[str, Any]) -> Coordinates:
    candidates: list[Any] = []
    location = entry.get("location")
    if isinstance(location, Mapping):
        candidates.append(location.get("coordinates"))
    candidates.append(entry.get("coordinates"))
    for candidate in candidates:
        if candidate is None:
            continue
        parsed = parse_coordinates(candidate)
        if isinstance(parsed, KnownCoordinates):
            return parsed
        LOGGER.debug(json.dumps({"event": "coordinates_unparsed", "value": str(candidate)[:200]}))
    return UNKNOWN


def detect_remote(*texts: str | None) -> bool:
    haystack = " ".join(text.lower() for text in texts if text)
    return any(keyword in haystack for keyword in REMOTE_KEYWORDS)


def generate_external_id(rng: random.Random | None = None) -> str:
    chooser = rng or random
    suffix = "".join(chooser.choice(_SUFFIX_ALPHABET) for _ in range(5))
    return f"ext-{int(time.time() * 1000)}-{suffix}"


def parse_posted_at(value: str | None, *, default: str) -> str:
    parsed = parse_iso_datetime(value)
    if parsed is None and value:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None and parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
    if parsed is None:
        return default
    try:
        return parsed.astimezone(UTC).isoformat()
    except OverflowError:
        LOGGER.debug(json.dumps({"event": "posted_at_out_of_range", "value": value}))
        return default


def build_draft(entry: Mapping[str, Any], *, ingested_at: str) -> JobDraft:
    title = normalize_whitespace(decode_entities(_first_text(entry, "title") or DEFAULT_TITLE))
    company = normalize_whitespace(decode_entities(_first_text(entry, "company") or DEFAULT_COMPANY))
    raw_location = _first_text(entry, "location")
    location = normalize_whitespace(decode_entities(raw_location)) if raw_location else None
    raw_description = _first_text(entry, "description", "summary")
    description = strip_html(raw_description)

    coordinates = extract_entry_coordinates(entry)
    latitude = coordinates.latitude if isinstance(coordinates, KnownCoordinates) else None
    longitude = coordinates.longitude if isinstance(coordinates, KnownCoordinates) else None

    skills_source = _first_text(entry, "skills") or description
    external_id = _first_text(entry, "id", "reference") or generate_external_id()

    return JobDraft(
        external_id=external_id,
        title=title or DEFAULT_TITLE,
        company=company or DEFAULT_COMPANY,
        location=location or None,
        description=description,
        category=_first_text(entry, "category", "industry"),
        job_type=_first_text(entry, "type", "contract_type"),
        salary=_first_text(entry, "salary_range", "salary"),
        skills=sorted(extract_skills(skills_source)),
        latitude=latitude,
        longitude=longitude,
        is_remote=detect_remote(title, description, location),
        posted_at=parse_posted_at(_first_text(entry, "date"), default=ingested_at),
        raw=dict(entry),
    )


def locate_listings(document: Mapping[str, Any] | None, listing_path: str) -> list[Any]:
    node: Any = document
    for key in (part for part in listing_path.split("/") if part):
        if not isinstance(node, Mapping):
            return []
        node = node.get(key)
    if node is None:
        return []
    if isinstance(node, list):
        return node
    return [node]


def parse_feed(body: bytes, *, listing_path: str = DEFAULT_LISTING_PATH) -> list[JobDraft]:
    if not body.strip():
        return []
    try:
        document = xmltodict.parse(body, attr_prefix="")
    except ExpatError as exc:
        raise FeedFetchError(f"Feed body is not valid XML: {exc}") from exc

    ingested_at = now_utc_iso()
    drafts: list[JobDraft] = []
    for entry in locate_listings(document, listing_path):
        if not isinstance(entry, Mapping):
            continue
        try:
            drafts.append(build_draft(entry, ingested_at=ingested_at))
        except ValueError as exc:
            raise FeedFetchError(f"Feed entry could not be normalized: {exc}") from exc
    return drafts


async def _download(feed_url: str, client: httpx.AsyncClient | None) -> bytes:
    # No timeout: a stalled feed stalls this sync cycle.
    if client is None:
        async with httpx.AsyncClient(timeout=None, follow_redirects=True) as owned_client:
            response = await owned_client.get(feed_url)
    else:
        response = await client.get(feed_url)
    response.raise_for_status()
    return response.content


async def fetch_jobs(
    feed_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    listing_path: str = DEFAULT_LISTING_PATH,
) -> list[JobDraft]:
    """Fetch the XML feed and normalize every listing into a ``JobDraft``.

    Any transport, HTTP status or parse failure raises ``FeedFetchError`` and
    no drafts are returned.
    """
    try:
        body = await _download(feed_url, client)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise FeedFetchError(f"Failed to fetch feed {feed_url}: {exc}") from exc

    drafts = parse_feed(body, listing_path=listing_path)
    LOGGER.info(
        json.dumps(
            {
                "event": "feed_fetched",
                "feed_url": feed_url,
                "bytes": len(body),
                "drafts": len(drafts),
            }
        )
    )
    return drafts
