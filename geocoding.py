"""
Mapbox forward-geocoding client.

Geocoding is an enrichment for search, not a hard dependency: every failure
mode (missing token, HTTP error, timeout, malformed body) is logged and
returned as an empty candidate list.  Callers never need a try/except
around geocode(), and no retries are attempted.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

import health_monitor
from search_config import SEARCH_CONFIG
from search_trace import get_trace

logger = logging.getLogger(__name__)

MAPBOX_BASE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"

PLACE_TYPE_DISPLAY = {
    "place": "City",
    "locality": "Locality",
    "neighborhood": "Area",
    "district": "District",
    "region": "Region",
}


@dataclass(frozen=True)
class LocationCandidate:
    """One geocoded place returned by the provider."""
    id: str
    display_name: str
    subtitle: str
    place_type: str
    place_type_display: str
    coordinates: Tuple[float, float]  # (lat, lng)
    full_address: str

    @property
    def lat(self) -> float:
        return self.coordinates[0]

    @property
    def lng(self) -> float:
        return self.coordinates[1]


def parse_feature(feature: Dict[str, Any]) -> Optional[LocationCandidate]:
    """Turn one Mapbox feature into a LocationCandidate.

    Returns None when the feature has no usable center point.
    """
    center = feature.get("center") or []
    try:
        lng, lat = float(center[0]), float(center[1])
    except (IndexError, KeyError, TypeError, ValueError):
        return None

    place_name = str(feature.get("place_name") or "")
    display_name = str(feature.get("text") or place_name.split(",")[0].strip())
    place_types = feature.get("place_type")
    place_type = str(place_types[0]) if isinstance(place_types, list) and place_types else "place"

    state = ""
    country = ""
    context = feature.get("context")
    for ctx in context if isinstance(context, list) else []:
        if not isinstance(ctx, dict):
            continue
        ctx_id = str(ctx.get("id", ""))
        if ctx_id.startswith("region"):
            state = str(ctx.get("text") or "")
        elif ctx_id.startswith("country"):
            country = str(ctx.get("text") or "")
    subtitle = ", ".join(part for part in (state, country) if part)

    return LocationCandidate(
        id=str(feature.get("id", "")),
        display_name=display_name,
        subtitle=subtitle,
        place_type=place_type,
        place_type_display=PLACE_TYPE_DISPLAY.get(place_type, "Place"),
        coordinates=(lat, lng),
        full_address=place_name,
    )


class MapboxGeocodingClient:
    """Client for the Mapbox Geocoding v5 API."""

    def __init__(
        self,
        access_token: Optional[str],
        country: str = SEARCH_CONFIG.country,
        language: str = SEARCH_CONFIG.language,
        timeout: float = SEARCH_CONFIG.geocode_timeout_seconds,
    ):
        self.access_token = access_token
        self.country = country
        self.language = language
        self.timeout = timeout
        self.base_url = MAPBOX_BASE_URL
        self.session = requests.Session()
        self.session.trust_env = False

    @classmethod
    def from_env(cls, **kwargs) -> "MapboxGeocodingClient":
        return cls(os.environ.get("MAPBOX_ACCESS_TOKEN"), **kwargs)

    def clone(self) -> "MapboxGeocodingClient":
        """A client with the same settings and its own session.

        requests.Session is not thread-safe; each worker thread gets a clone.
        """
        return MapboxGeocodingClient(
            self.access_token,
            country=self.country,
            language=self.language,
            timeout=self.timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _traced_get(self, url: str, params: dict) -> Optional[dict]:
        """GET with trace + health recording. Returns parsed JSON or None."""
        t0 = time.time()
        status_code = 0
        error = None
        data = None
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            status_code = response.status_code
            if response.ok:
                data = response.json()
                if not isinstance(data, dict):
                    error = "unexpected response body"
                    data = None
            else:
                error = f"HTTP {status_code}"
        except requests.Timeout:
            error = "timeout"
        except requests.exceptions.JSONDecodeError:
            error = "invalid JSON"
        except requests.RequestException as e:
            error = f"{type(e).__name__}: {e}"
        elapsed_ms = int((time.time() - t0) * 1000)

        ok = error is None
        trace = get_trace()
        if trace:
            trace.record_provider_call(
                service="mapbox",
                endpoint="geocode",
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                ok=ok,
            )
        health_monitor.record_call("mapbox", ok, elapsed_ms, error)
        if not ok:
            logger.warning("Mapbox geocode failed (%s) after %dms", error, elapsed_ms)
        return data

    def geocode(
        self,
        query: str,
        limit: int,
        place_types: Optional[Sequence[str]] = None,
    ) -> List[LocationCandidate]:
        """Forward-geocode *query*, restricted to the configured country.

        Returns at most *limit* candidates in provider order, or an empty
        list on any failure.
        """
        query = (query or "").strip()
        if not query:
            return []
        if not self.access_token:
            logger.warning("MAPBOX_ACCESS_TOKEN not set; skipping geocode for %r", query)
            return []

        url = f"{self.base_url}/{quote(query, safe='')}.json"
        params = {
            "access_token": self.access_token,
            "country": self.country,
            "language": self.language,
            "limit": limit,
        }
        if place_types:
            params["types"] = ",".join(place_types)

        data = self._traced_get(url, params)
        if data is None:
            return []

        features = data.get("features") or []
        if not isinstance(features, list):
            logger.warning("Mapbox geocode %r: unexpected features type %s", query, type(features).__name__)
            features = []

        candidates = []
        for feature in features:
            if not isinstance(feature, dict):
                continue
            candidate = parse_feature(feature)
            if candidate is not None:
                candidates.append(candidate)
        logger.info("Mapbox geocode %r -> %d candidates", query, len(candidates))
        return candidates[:limit]
