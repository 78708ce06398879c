"""
Result merging for both search paths.

Location suggestions come from three producers (text-matched groups,
coordinate-matched groups, geocoded candidates).  Each is normalized to a
LocationSuggestion and combined in priority order with cross-source
deduplication.  Property results come from two producers (text and radius)
and are merged by listing id, newest first.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from geocoding import LocationCandidate
from property_store import GroupedLocation, PropertyRecord
from search_config import SEARCH_CONFIG

logger = logging.getLogger(__name__)

_PINCODE_RE = re.compile(r"^\d{6}$")

# Sorts below every real timestamp.
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def is_pincode_query(term: str) -> bool:
    """True for a six-digit Indian postal code."""
    return bool(_PINCODE_RE.match((term or "").strip()))


@dataclass
class LocationSuggestion:
    """One entry in the location-suggestion list.

    type is "property" for suggestions backed by listings in the store and
    "mapbox" for geocoded places passed through from the provider.
    """

    type: str
    id: str
    display_name: str
    # property variant
    city: str = ""
    locality: str = ""
    state: str = ""
    pincode: str = ""
    property_count: int = 0
    avg_price: Optional[float] = None
    search_type: str = ""
    search_location: Optional[str] = None
    # mapbox variant
    subtitle: str = ""
    place_type: str = ""
    place_type_display: str = ""
    coordinates: Optional[Tuple[float, float]] = None  # (lat, lng)
    full_address: str = ""

    @property
    def location_key(self) -> Tuple[str, str, str]:
        return (self.city, self.locality, self.state)

    @property
    def normalized_name(self) -> str:
        return self.display_name.strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        if self.type == "mapbox":
            lat, lng = self.coordinates or (None, None)
            return {
                "type": self.type,
                "id": self.id,
                "display_name": self.display_name,
                "subtitle": self.subtitle,
                "place_type": self.place_type,
                "place_type_display": self.place_type_display,
                # GeoJSON order, as the provider returns it
                "coordinates": [lng, lat],
                "full_address": self.full_address,
            }
        d = {
            "type": self.type,
            "id": self.id,
            "display_name": self.display_name,
            "city": self.city,
            "locality": self.locality,
            "state": self.state,
            "pincode": self.pincode,
            "property_count": self.property_count,
            "avg_price": self.avg_price,
            "search_type": self.search_type,
        }
        if self.search_location is not None:
            d["search_location"] = self.search_location
        return d


# =============================================================================
# Normalizing producers
# =============================================================================

def format_display_name(group: GroupedLocation, term: str = "") -> str:
    """Human-readable label for a grouped location.

    A pincode query that hits the group's own pincode puts the pincode up
    front: "Vijay Nagar, Indore - 452010".
    """
    term = (term or "").strip()
    if is_pincode_query(term) and group.pincode == term:
        if group.locality:
            return f"{group.locality}, {group.city} - {group.pincode}"
        return f"{group.city} - {group.pincode}"
    if group.locality:
        return f"{group.locality}, {group.city}, {group.state}"
    return f"{group.city}, {group.state}"


def _suggestion_id(prefix: str, group: GroupedLocation, index: int) -> str:
    raw = f"{prefix}-{group.city}-{group.locality}-{group.pincode}-{index}"
    return re.sub(r"\s+", "-", raw.lower())


def suggestions_from_groups(
    groups: Sequence[GroupedLocation],
    term: str,
    partial: bool = False,
) -> List[LocationSuggestion]:
    """Text-matched groups (or prefix-fallback groups when partial=True)."""
    pincode = is_pincode_query(term)
    if partial:
        search_type = "pincode_partial" if pincode else "text_partial"
        prefix = "broad"
    else:
        search_type = "pincode_match" if pincode else "text_match"
        prefix = "db"
    return [
        LocationSuggestion(
            type="property",
            id=_suggestion_id(prefix, group, i),
            display_name=format_display_name(group, term),
            city=group.city,
            locality=group.locality,
            state=group.state,
            pincode=group.pincode,
            property_count=group.property_count,
            avg_price=group.avg_price,
            search_type=search_type,
        )
        for i, group in enumerate(groups)
    ]


def suggestions_from_candidate_groups(
    candidate_groups: Iterable[Tuple[LocationCandidate, Sequence[GroupedLocation]]],
) -> List[LocationSuggestion]:
    """Coordinate-matched groups, flattened in candidate order.

    Two candidates close to each other find the same localities; only the
    first occurrence of a (city, locality, state) is kept.
    """
    suggestions: List[LocationSuggestion] = []
    seen = set()
    for candidate, groups in candidate_groups:
        for group in groups:
            key = (group.city, group.locality, group.state)
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(LocationSuggestion(
                type="property",
                id=_suggestion_id("coord", group, len(suggestions)),
                display_name=format_display_name(group),
                city=group.city,
                locality=group.locality,
                state=group.state,
                pincode=group.pincode,
                property_count=group.property_count,
                avg_price=group.avg_price,
                search_type="coordinate_match",
                search_location=candidate.full_address,
            ))
    return suggestions


def suggestions_from_candidates(candidates: Sequence[LocationCandidate]) -> List[LocationSuggestion]:
    return [
        LocationSuggestion(
            type="mapbox",
            id=c.id,
            display_name=c.display_name,
            subtitle=c.subtitle,
            place_type=c.place_type,
            place_type_display=c.place_type_display,
            coordinates=c.coordinates,
            full_address=c.full_address,
        )
        for c in candidates
    ]


# =============================================================================
# Merging
# =============================================================================

def merge_location_suggestions(
    text: Sequence[LocationSuggestion],
    coordinate: Sequence[LocationSuggestion],
    geocoded: Sequence[LocationSuggestion],
    max_results: int = SEARCH_CONFIG.max_suggestions,
) -> List[LocationSuggestion]:
    """Combine the three producers in priority order.

    1. text suggestions, as given
    2. coordinate suggestions whose (city, locality, state) no text
       suggestion already has
    3. geocoded suggestions whose normalized display name matches no
       suggestion from 1 or 2 (exact match, not fuzzy)
    """
    text_keys = {s.location_key for s in text}
    coordinate_kept = [s for s in coordinate if s.location_key not in text_keys]

    # Geocoded names are compared against every coordinate result, including
    # those dropped above.
    known_names = {s.normalized_name for s in text}
    known_names.update(s.normalized_name for s in coordinate)
    geocoded_kept = [s for s in geocoded if s.normalized_name not in known_names]

    merged = list(text) + coordinate_kept + geocoded_kept
    if len(merged) > max_results:
        logger.debug("Truncating %d location suggestions to %d", len(merged), max_results)
    return merged[:max_results]


def parse_published_at(value: Optional[str]) -> datetime:
    """Sort key for published_at. Naive timestamps are read as UTC;
    missing or unparseable ones sort oldest.
    """
    if not value:
        return _OLDEST
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def merge_property_results(
    text: Sequence[PropertyRecord],
    radius: Sequence[PropertyRecord],
) -> List[PropertyRecord]:
    """Union of text and radius matches by id, newest first.

    The sort is stable, so equal timestamps keep text-then-radius order.
    """
    seen = set()
    merged = []
    for record in list(text) + list(radius):
        if record.id in seen:
            continue
        seen.add(record.id)
        merged.append(record)
    return sorted(merged, key=lambda r: parse_published_at(r.published_at), reverse=True)
