"""
Text and radius matchers: the two ways a search finds listings in the
Property Store.

TextMatcher is a thin layer over the store's LIKE queries.  RadiusMatcher
scans live listings with coordinates and keeps those within a great-circle
radius of a point; for several geocoded candidates it fans the scans out
over a bounded thread pool.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from geo import distance_km, parse_coordinates
from geocoding import LocationCandidate
from property_store import GroupedLocation, PropertyRecord, PropertyStore, parse_price
from search_config import SEARCH_CONFIG, SearchConfig
from search_filters import SearchFilters, apply_filters
from search_trace import get_trace, set_trace

logger = logging.getLogger(__name__)


class TextMatcher:
    """Case-insensitive substring matching over the four location fields."""

    def __init__(self, store: PropertyStore, config: SearchConfig = SEARCH_CONFIG):
        self.store = store
        self.config = config

    def match_locations(self, term: str) -> List[GroupedLocation]:
        return self.store.find_by_text_match(term, limit=self.config.text_match_limit)

    def match_locations_prefix(self, term: str) -> List[GroupedLocation]:
        """Broader fallback: location fields that start with *term*."""
        return self.store.find_by_text_match(
            term, limit=self.config.prefix_match_limit, prefix=True
        )

    def match_properties(self, filters: SearchFilters) -> List[PropertyRecord]:
        """The property-search text source.

        Free-text location matches any of the four fields; otherwise the
        structured fields are ANDed (and none means every live listing).
        """
        if filters.uses_free_text_location:
            return self.store.find_by_location_text(filters.location)
        return self.store.find_by_fields(
            city=filters.city,
            locality=filters.locality,
            state=filters.state,
            pincode=filters.pincode,
        )


class _CandidateAccumulator:
    """Collects per-candidate results from pool threads.

    Threads finish in any order; ordered() reassembles them in candidate
    order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_index: Dict[int, Any] = {}

    def add(self, index: int, value: Any) -> None:
        with self._lock:
            self._by_index[index] = value

    def ordered(self) -> List[Any]:
        with self._lock:
            return [self._by_index[i] for i in sorted(self._by_index)]

    def unique_records(self) -> List[PropertyRecord]:
        """Flatten per-candidate record lists, first occurrence of an id wins."""
        seen = set()
        merged = []
        for records in self.ordered():
            for record in records:
                if record.id in seen:
                    continue
                seen.add(record.id)
                merged.append(record)
        return merged


def group_records(records: Sequence[PropertyRecord], limit: int) -> List[GroupedLocation]:
    """Group records by (city, locality, state, pincode), most listings first.

    Ties keep first-appearance order.
    """
    groups: "OrderedDict[Tuple[str, str, str, str], List[PropertyRecord]]" = OrderedDict()
    for record in records:
        key = (record.city, record.locality, record.state, record.pincode)
        groups.setdefault(key, []).append(record)

    grouped = []
    for (city, locality, state, pincode), members in groups.items():
        prices = [parse_price(r.selling_price) for r in members]
        prices = [p for p in prices if p is not None]
        grouped.append(GroupedLocation(
            city=city,
            locality=locality,
            state=state,
            pincode=pincode,
            property_count=len(members),
            avg_price=sum(prices) / len(prices) if prices else None,
        ))
    grouped.sort(key=lambda g: -g.property_count)
    return grouped[:limit]


class RadiusMatcher:
    """Great-circle radius search over live listings with coordinates."""

    def __init__(self, store: PropertyStore, config: SearchConfig = SEARCH_CONFIG):
        self.store = store
        self.config = config

    def match(
        self,
        center_lat: float,
        center_lng: float,
        radius_km: Optional[float] = None,
        filters: Optional[SearchFilters] = None,
    ) -> List[PropertyRecord]:
        """Live listings within *radius_km* of the center, in store order."""
        if radius_km is None:
            radius_km = self.config.radius_km

        matched = []
        skipped = 0
        for record in self.store.find_live_with_coordinates():
            coords = parse_coordinates(record.latitude, record.longitude)
            if coords is None:
                skipped += 1
                continue
            if distance_km(center_lat, center_lng, coords[0], coords[1]) <= radius_km:
                matched.append(record)

        if skipped:
            logger.debug("Radius match skipped %d listings with bad coordinates", skipped)
        if filters is not None:
            matched = apply_filters(matched, filters)
        return matched

    def _fan_out(
        self,
        candidates: Sequence[LocationCandidate],
        fn: Callable[[LocationCandidate], Any],
    ) -> _CandidateAccumulator:
        """Run fn(candidate) for every candidate on a bounded pool.

        Store errors raised inside a worker propagate to the caller.
        """
        accumulator = _CandidateAccumulator()
        if not candidates:
            return accumulator

        # Thread-locals don't cross into pool threads
        parent_trace = get_trace()

        def _task(index: int, candidate: LocationCandidate) -> None:
            set_trace(parent_trace)
            accumulator.add(index, fn(candidate))

        workers = max(1, min(self.config.radius_fanout_workers, len(candidates)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_task, i, c) for i, c in enumerate(candidates)]
            for future in futures:
                future.result()
        return accumulator

    def match_candidates(
        self,
        candidates: Sequence[LocationCandidate],
        radius_km: Optional[float] = None,
    ) -> List[PropertyRecord]:
        """One radius query per geocoded candidate, deduplicated by id."""
        def _nearby(candidate: LocationCandidate) -> List[PropertyRecord]:
            records = self.match(candidate.lat, candidate.lng, radius_km=radius_km)
            logger.info(
                "Radius match near %r: %d listings", candidate.full_address, len(records)
            )
            return records

        return self._fan_out(candidates, _nearby).unique_records()

    def match_candidate_groups(
        self,
        candidates: Sequence[LocationCandidate],
    ) -> List[Tuple[LocationCandidate, List[GroupedLocation]]]:
        """Per candidate, nearby listings grouped by location (suggestion path)."""
        def _groups(candidate: LocationCandidate) -> List[GroupedLocation]:
            records = self.match(candidate.lat, candidate.lng)
            return group_records(records, self.config.coordinate_group_limit)

        groups = self._fan_out(candidates, _groups).ordered()
        return list(zip(candidates, groups))
