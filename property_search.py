"""
Search orchestration.

PropertySearchEngine wires the matchers, the geocoder, the merger, the
filter pipeline and the paginator into the two public operations:

  search_locations(query)    -> LocationSearchResult  (autocomplete)
  search_properties(filters) -> PropertySearchResult  (listing search)

Independent reads (the store text match and the geocoder calls) run
concurrently on a small thread pool; the radius fan-out runs on its own
bounded pool inside RadiusMatcher.  Every stage is timed into the request's
SearchTrace when one is set.

Failure semantics:
  - SearchValidationError is raised before any store or provider call.
  - Geocoder problems never surface; the geocoder returns [] and the
    search continues on database results alone.
  - StoreError propagates to the caller.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from geocoding import LocationCandidate, MapboxGeocodingClient
from matchers import RadiusMatcher, TextMatcher
from merger import (
    LocationSuggestion,
    merge_location_suggestions,
    merge_property_results,
    suggestions_from_candidate_groups,
    suggestions_from_candidates,
    suggestions_from_groups,
)
from pagination import SearchResultPage, paginate
from property_store import PropertyStore
from search_config import SEARCH_CONFIG, SearchConfig
from search_filters import SearchFilters, SearchValidationError, apply_filters
from search_trace import (
    enter_stage,
    exit_stage,
    get_trace,
    set_trace,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Result types
# =============================================================================

@dataclass
class LocationSearchResult:
    query: str
    suggestions: List[LocationSuggestion] = field(default_factory=list)
    search_info: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "data": [s.to_dict() for s in self.suggestions],
            "query": self.query,
            "search_info": self.search_info,
        }


@dataclass
class PropertySearchResult:
    page: SearchResultPage
    filters: SearchFilters
    search_info: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = {"success": True}
        out.update(self.page.to_dict())
        out["filters"] = self.filters.to_echo_dict()
        out["search_info"] = self.search_info
        return out


# =============================================================================
# Stage timing
# =============================================================================

def _timed_stage(stage_name, fn, *args, **kwargs):
    """Run *fn* with timing.  Logs duration and re-raises on failure."""
    trace = get_trace()
    enter_stage(stage_name)
    t0 = time.time()
    try:
        result = fn(*args, **kwargs)
        t1 = time.time()
        if trace:
            trace.record_stage(stage_name, t0, t1)
        else:
            logger.info("  [stage] %s OK (%.3fs)", stage_name, t1 - t0)
        return result
    except Exception as exc:
        t1 = time.time()
        if trace:
            trace.record_stage(
                stage_name, t0, t1,
                error_class=type(exc).__name__,
                error_message=str(exc)[:200],
            )
        else:
            logger.warning("  [stage] %s FAILED (%.3fs)", stage_name, t1 - t0, exc_info=True)
        raise
    finally:
        exit_stage()


def _timed_stage_in_thread(parent_trace, stage_name, fn, *args, **kwargs):
    """Run _timed_stage in a pool thread with trace propagation."""
    set_trace(parent_trace)
    return _timed_stage(stage_name, fn, *args, **kwargs)


def _skip_stage(stage_name: str) -> None:
    trace = get_trace()
    if trace:
        now = time.time()
        trace.record_stage(stage_name, now, now, skipped=True)


def _record_counts(counts: Dict[str, int]) -> None:
    trace = get_trace()
    if trace:
        for source, count in counts.items():
            trace.record_count(source, count)


# =============================================================================
# Engine
# =============================================================================

class PropertySearchEngine:
    """Location suggestions and property search over the Property Store."""

    def __init__(
        self,
        store: Optional[PropertyStore] = None,
        geocoder: Optional[MapboxGeocodingClient] = None,
        config: SearchConfig = SEARCH_CONFIG,
    ):
        self.store = store if store is not None else PropertyStore()
        self.config = config
        self.geocoder = geocoder if geocoder is not None else MapboxGeocodingClient.from_env(
            country=config.country,
            timeout=config.geocode_timeout_seconds,
        )
        self.text_matcher = TextMatcher(self.store, config)
        self.radius_matcher = RadiusMatcher(self.store, config)

    def _geocode(self, query: str, limit: int, place_types=None) -> List[LocationCandidate]:
        # Runs on a pool thread; give it a session of its own.
        return self.geocoder.clone().geocode(query, limit, place_types=place_types)

    # ------------------------------------------------------------------
    # Location suggestions
    # ------------------------------------------------------------------

    def search_locations(self, query: Optional[str]) -> LocationSearchResult:
        term = (query or "").strip()
        if len(term) < self.config.min_query_length:
            raise SearchValidationError(
                f"Search query must be at least {self.config.min_query_length} characters"
            )
        cfg = self.config
        parent_trace = get_trace()

        with ThreadPoolExecutor(max_workers=3) as pool:
            text_future = pool.submit(
                _timed_stage_in_thread, parent_trace, "text_match",
                self.text_matcher.match_locations, term,
            )
            suggest_future = pool.submit(
                _timed_stage_in_thread, parent_trace, "geocode_suggestions",
                self._geocode, term, cfg.suggestion_geocode_limit,
                cfg.suggestion_place_types,
            )
            coord_future = pool.submit(
                _timed_stage_in_thread, parent_trace, "geocode_coordinates",
                self._geocode, term, cfg.search_geocode_limit,
            )
            text_groups = text_future.result()
            suggested = suggest_future.result()
            coord_candidates = coord_future.result()

        if coord_candidates:
            candidate_groups = _timed_stage(
                "radius_match", self.radius_matcher.match_candidate_groups, coord_candidates,
            )
        else:
            _skip_stage("radius_match")
            candidate_groups = []

        text = suggestions_from_groups(text_groups, term)
        coordinate = suggestions_from_candidate_groups(candidate_groups)
        geocoded = suggestions_from_candidates(suggested)

        if not text and not coordinate and not geocoded:
            prefix_groups = _timed_stage(
                "prefix_match", self.text_matcher.match_locations_prefix, term,
            )
            text = suggestions_from_groups(prefix_groups, term, partial=True)

        merged = _timed_stage(
            "merge", merge_location_suggestions, text, coordinate, geocoded, cfg.max_suggestions,
        )

        search_info = {
            "text_based_results": len(text),
            "coordinate_based_results": len(coordinate),
            "geocoder_results": len(geocoded),
            "total_combined": len(merged),
        }
        _record_counts(search_info)
        logger.info(
            "Location search %r: text=%d coordinate=%d geocoder=%d combined=%d",
            term, len(text), len(coordinate), len(geocoded), len(merged),
        )
        return LocationSearchResult(query=term, suggestions=merged, search_info=search_info)

    # ------------------------------------------------------------------
    # Property search
    # ------------------------------------------------------------------

    def search_properties(self, filters: SearchFilters) -> PropertySearchResult:
        parent_trace = get_trace()

        if filters.uses_free_text_location:
            with ThreadPoolExecutor(max_workers=2) as pool:
                text_future = pool.submit(
                    _timed_stage_in_thread, parent_trace, "text_match",
                    self.text_matcher.match_properties, filters,
                )
                coord_future = pool.submit(
                    _timed_stage_in_thread, parent_trace, "geocode_coordinates",
                    self._geocode, filters.location, self.config.search_geocode_limit,
                )
                text_records = text_future.result()
                candidates = coord_future.result()

            if candidates:
                radius_records = _timed_stage(
                    "radius_match", self.radius_matcher.match_candidates, candidates,
                )
            else:
                _skip_stage("radius_match")
                radius_records = []
        else:
            # Structured fields are an exact-area request; never widen by radius.
            text_records = _timed_stage("text_match", self.text_matcher.match_properties, filters)
            _skip_stage("geocode_coordinates")
            _skip_stage("radius_match")
            radius_records = []

        text_ids = {r.id for r in text_records}
        radius_only = [r for r in radius_records if r.id not in text_ids]

        merged = _timed_stage("merge", merge_property_results, text_records, radius_records)
        filtered = _timed_stage("filter", apply_filters, merged, filters)
        page = _timed_stage("paginate", paginate, filtered, filters.page, filters.limit)

        search_info = {
            "text_based_results": len(text_records),
            "coordinate_based_results": len(radius_only),
            "total_combined": len(filtered),
        }
        _record_counts(search_info)
        logger.info(
            "Property search location=%r: text=%d radius=%d merged=%d filtered=%d page=%d",
            filters.location, len(text_records), len(radius_only), len(merged),
            len(filtered), filters.page,
        )
        return PropertySearchResult(page=page, filters=filters, search_info=search_info)
