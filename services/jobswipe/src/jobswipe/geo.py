"""Coarse geographic heuristics for ranking.

Countries and continents are classified from fixed bounding boxes, and job
location text is matched against keyword tables. Both are approximations:
overlapping boxes resolve to the first listed entry, and border areas may be
misclassified or left unclassified. Callers depend only on ``GeoClassifier``
so an authoritative geocoder can replace ``BoundingBoxClassifier`` later.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Protocol

EARTH_RADIUS_KM = 6371.0

HOME_COUNTRY = "spain"

# Aliases this short ("us", "uk") only count as whole words.
SHORT_KEYWORD_LENGTH = 4


@dataclass(frozen=True)
class KnownCoordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class UnknownCoordinates:
    pass


Coordinates = KnownCoordinates | UnknownCoordinates
UNKNOWN = UnknownCoordinates()


def is_valid_coordinate_pair(latitude: float, longitude: float) -> bool:
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


def coordinates_from(latitude: float | None, longitude: float | None) -> Coordinates:
    if latitude is None or longitude is None:
        return UNKNOWN
    if not is_valid_coordinate_pair(latitude, longitude):
        return UNKNOWN
    return KnownCoordinates(latitude=latitude, longitude=longitude)


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.min_lat <= latitude <= self.max_lat
            and self.min_lon <= longitude <= self.max_lon
        )


COUNTRY_BOXES: tuple[tuple[str, BoundingBox], ...] = (
    ("spain", BoundingBox(36, 44, -10, 5)),
    ("mexico", BoundingBox(14, 33, -120, -86)),
    ("colombia", BoundingBox(-5, 13, -80, -66)),
    ("argentina", BoundingBox(-55, -22, -73, -53)),
    ("chile", BoundingBox(-56, -17, -76, -66)),
    ("peru", BoundingBox(-18, 0, -82, -68)),
    ("united_states", BoundingBox(24, 50, -125, -66)),
    ("united_kingdom", BoundingBox(49, 59, -8, 2)),
)

REGION_BOXES: tuple[tuple[str, BoundingBox], ...] = (
    ("north_america", BoundingBox(15, 72, -168, -52)),
    ("south_america", BoundingBox(-56, 15, -82, -34)),
    ("europe", BoundingBox(36, 71, -10, 40)),
    ("asia", BoundingBox(0, 82, 40, 180)),
    ("africa", BoundingBox(-35, 37, -18, 52)),
    ("oceania", BoundingBox(-47, 0, 110, 180)),
)

COUNTRY_NAMES: dict[str, tuple[str, ...]] = {
    "spain": ("españa", "spain"),
    "mexico": ("méxico", "mexico"),
    "colombia": ("colombia",),
    "argentina": ("argentina",),
    "chile": ("chile",),
    "peru": ("perú", "peru"),
    "united_states": ("estados unidos", "united states", "usa", "eeuu"),
    "united_kingdom": ("reino unido", "united kingdom", "uk"),
}

COUNTRY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "spain": (
        "españa",
        "spain",
        "madrid",
        "barcelona",
        "valencia",
        "sevilla",
        "zaragoza",
        "málaga",
        "malaga",
        "bilbao",
        "alicante",
        "córdoba",
        "cordoba",
        "valladolid",
        "vigo",
        "gijón",
        "gijon",
        "hospitalet",
        "palma",
        "murcia",
        "vitoria",
        "oviedo",
        "sabadell",
        "santander",
        "jerez",
        "pamplona",
        "almería",
        "almeria",
        "donostia",
        "san sebastián",
        "san sebastian",
        "cartagena",
        "jaén",
        "jaen",
        "canarias",
        "cataluña",
        "cataluna",
        "galicia",
        "andalucía",
        "andalucia",
        "castilla",
        "aragón",
        "aragon",
        "asturias",
        "cantabria",
        "navarra",
        "extremadura",
    ),
}

REGION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "north_america": (
        "estados unidos",
        "usa",
        "eeuu",
        "us",
        "canada",
        "méxico",
        "mexico",
        "norteamerica",
        "north america",
    ),
    "south_america": (
        "colombia",
        "venezuela",
        "brasil",
        "argentina",
        "chile",
        "perú",
        "peru",
        "ecuador",
        "bolivia",
        "uruguay",
        "paraguay",
        "sudamerica",
        "latinoamerica",
        "latin america",
        "south america",
    ),
    "europe": (
        "españa",
        "spain",
        "francia",
        "alemania",
        "italia",
        "reino unido",
        "portugal",
        "europa",
        "europe",
    ),
    "asia": ("china", "japón", "japon", "india", "asia"),
    "africa": ("africa", "áfrica", "sudáfrica", "sudafrica", "egipto", "marruecos"),
    "oceania": ("australia", "nueva zelanda", "oceania"),
}


class GeoClassifier(Protocol):
    def country_of(self, latitude: float, longitude: float) -> str | None: ...

    def region_of(self, latitude: float, longitude: float) -> str | None: ...


class BoundingBoxClassifier:
    def __init__(
        self,
        countries: tuple[tuple[str, BoundingBox], ...] = COUNTRY_BOXES,
        regions: tuple[tuple[str, BoundingBox], ...] = REGION_BOXES,
    ) -> None:
        self.countries = countries
        self.regions = regions

    def country_of(self, latitude: float, longitude: float) -> str | None:
        return _first_match(self.countries, latitude, longitude)

    def region_of(self, latitude: float, longitude: float) -> str | None:
        return _first_match(self.regions, latitude, longitude)


def _first_match(
    boxes: tuple[tuple[str, BoundingBox], ...],
    latitude: float,
    longitude: float,
) -> str | None:
    for key, box in boxes:
        if box.contains(latitude, longitude):
            return key
    return None


def _contains_any(text: str | None, keywords: tuple[str, ...]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(_keyword_in(keyword, lowered) for keyword in keywords)


def _keyword_in(keyword: str, lowered: str) -> bool:
    if len(keyword) > SHORT_KEYWORD_LENGTH:
        return keyword in lowered
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", lowered) is not None


def location_matches_country(text: str | None, country: str) -> bool:
    return _contains_any(text, COUNTRY_KEYWORDS.get(country.lower(), ()))


def location_mentions_country_name(text: str | None, country: str) -> bool:
    return _contains_any(text, COUNTRY_NAMES.get(country.lower(), ()))


def location_matches_region(text: str | None, region: str) -> bool:
    return _contains_any(text, REGION_KEYWORDS.get(region.lower(), ()))


def location_keywords(location: str) -> tuple[str, ...]:
    """Keywords a catalog location filter expands to.

    A country key with a keyword table expands to every listed city and
    region; anything else is matched as a single case-insensitive substring.
    """
    normalized = location.strip().lower()
    if normalized in COUNTRY_KEYWORDS:
        return COUNTRY_KEYWORDS[normalized]
    for country, names in COUNTRY_NAMES.items():
        if normalized in names and country in COUNTRY_KEYWORDS:
            return COUNTRY_KEYWORDS[country]
    return (normalized,)
