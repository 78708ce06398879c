"""
Search engine configuration.

Owns every numeric constant that affects which properties and locations a
search returns: radius, result caps, geocoder limits, fan-out width, and
pagination defaults.

Frozen dataclasses provide type checking and IDE support without the
indirection of YAML/JSON config files.  A handful of values can be
overridden from the environment for deployment tuning; see
load_search_config().
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchConfig:
    """Tunables for the location and property search paths."""

    # Geometry
    earth_radius_km: float = 6371.0
    radius_km: float = 15.0

    # Location suggestions
    min_query_length: int = 2
    text_match_limit: int = 5
    prefix_match_limit: int = 3
    coordinate_group_limit: int = 5  # groups per geocoded candidate
    max_suggestions: int = 10

    # Geocoding provider
    country: str = "IN"
    language: str = "en"
    suggestion_geocode_limit: int = 8
    search_geocode_limit: int = 5
    suggestion_place_types: Tuple[str, ...] = (
        "place",
        "locality",
        "neighborhood",
        "district",
        "region",
        "postcode",
    )
    geocode_timeout_seconds: float = 5.0

    # Concurrency
    radius_fanout_workers: int = 4

    # Pagination
    default_page_limit: int = 20


SEARCH_CONFIG = SearchConfig()


def _env_override(name: str, cast, current):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return current
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r (keeping %r)", name, raw, current)
        return current
    if isinstance(value, (int, float)) and value <= 0:
        logger.warning("Ignoring non-positive %s=%r (keeping %r)", name, raw, current)
        return current
    return value


def load_search_config(base: SearchConfig = SEARCH_CONFIG) -> SearchConfig:
    """Return *base* with environment overrides applied.

    Recognised variables: SEARCH_RADIUS_KM, SEARCH_COUNTRY,
    GEOCODER_TIMEOUT_SECONDS, RADIUS_FANOUT_WORKERS.
    """
    return replace(
        base,
        radius_km=_env_override("SEARCH_RADIUS_KM", float, base.radius_km),
        country=_env_override("SEARCH_COUNTRY", str.upper, base.country),
        geocode_timeout_seconds=_env_override(
            "GEOCODER_TIMEOUT_SECONDS", float, base.geocode_timeout_seconds
        ),
        radius_fanout_workers=_env_override(
            "RADIUS_FANOUT_WORKERS", int, base.radius_fanout_workers
        ),
    )
