"""
Search filters: the immutable SearchFilters value object, parsing it from
HTTP query args, and the post-merge filter pipeline.

Filters run over the fully merged candidate list, never inside an
individual source, so a listing is judged the same way whether it was found
by text or by radius.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from property_store import PropertyRecord
from search_config import SEARCH_CONFIG


class SearchValidationError(ValueError):
    """Structurally invalid search input. Maps to HTTP 400."""

    pass


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse numeric-as-text ("4500000", "1,200.5") into a Decimal.

    Returns None for missing, blank, or non-numeric values.
    """
    if value is None:
        return None
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def _clean_tokens(values: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    return tuple(str(v).strip() for v in values if v is not None and str(v).strip())


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class SearchFilters:
    """Everything a property search can be constrained by."""

    location: Optional[str] = None
    city: Optional[str] = None
    locality: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    property_types: Tuple[str, ...] = field(default_factory=tuple)
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    bedrooms: Tuple[str, ...] = field(default_factory=tuple)
    bathrooms: Tuple[str, ...] = field(default_factory=tuple)
    min_area: Optional[Decimal] = None
    max_area: Optional[Decimal] = None
    page: int = 1
    limit: int = SEARCH_CONFIG.default_page_limit

    def __post_init__(self):
        for name in ("location", "city", "locality", "state", "pincode"):
            object.__setattr__(self, name, _clean_text(getattr(self, name)))
        for name in ("property_types", "bedrooms", "bathrooms"):
            object.__setattr__(self, name, _clean_tokens(getattr(self, name)))
        for name in ("min_price", "max_price", "min_area", "max_area"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                parsed = parse_decimal(value)
                if parsed is None:
                    raise SearchValidationError(f"{name} must be a number")
                object.__setattr__(self, name, parsed)

        if isinstance(self.page, bool) or not isinstance(self.page, int) or self.page < 1:
            raise SearchValidationError("page must be an integer >= 1")
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise SearchValidationError("limit must be an integer >= 1")

    # ------------------------------------------------------------------
    # Construction from HTTP query args
    # ------------------------------------------------------------------

    @classmethod
    def from_query_args(cls, args) -> "SearchFilters":
        """Build filters from a werkzeug MultiDict (or a plain dict).

        List-valued params (propertyTypes, bedrooms, bathrooms) may be
        repeated: ?bedrooms=2&bedrooms=3.
        """
        def _get(key: str) -> Optional[str]:
            value = args.get(key)
            if isinstance(value, (list, tuple)):
                value = value[0] if value else None
            return value

        def _getlist(key: str) -> List[str]:
            if hasattr(args, "getlist"):
                return args.getlist(key)
            value = args.get(key)
            if value is None:
                return []
            return list(value) if isinstance(value, (list, tuple)) else [value]

        def _number(key: str) -> Optional[Decimal]:
            raw = _get(key)
            if raw is None or not str(raw).strip():
                return None
            parsed = parse_decimal(raw)
            if parsed is None:
                raise SearchValidationError(f"{key} must be a number")
            return parsed

        def _int(key: str, default: int) -> int:
            raw = _get(key)
            if raw is None or not str(raw).strip():
                return default
            try:
                return int(str(raw).strip())
            except ValueError:
                raise SearchValidationError(f"{key} must be an integer") from None

        return cls(
            location=_get("location"),
            city=_get("city"),
            locality=_get("locality"),
            state=_get("state"),
            pincode=_get("pincode"),
            property_types=_getlist("propertyTypes"),
            min_price=_number("minPrice"),
            max_price=_number("maxPrice"),
            bedrooms=_getlist("bedrooms"),
            bathrooms=_getlist("bathrooms"),
            min_area=_number("minArea"),
            max_area=_number("maxArea"),
            page=_int("page", 1),
            limit=_int("limit", SEARCH_CONFIG.default_page_limit),
        )

    # ------------------------------------------------------------------

    @property
    def uses_free_text_location(self) -> bool:
        """Free-text location drives geocoding; structured fields never do."""
        return self.location is not None

    @property
    def has_attribute_filters(self) -> bool:
        return bool(
            self.property_types or self.bedrooms or self.bathrooms
            or self.min_price is not None or self.max_price is not None
            or self.min_area is not None or self.max_area is not None
        )

    def to_echo_dict(self) -> Dict[str, Any]:
        """The filters as applied, for echoing back in responses."""
        def _num(d: Optional[Decimal]):
            if d is None:
                return None
            return int(d) if d == d.to_integral_value() else float(d)

        return {
            "location": self.location,
            "city": self.city,
            "locality": self.locality,
            "state": self.state,
            "pincode": self.pincode,
            "property_types": list(self.property_types) or None,
            "price_range": {"min": _num(self.min_price), "max": _num(self.max_price)},
            "bedrooms": list(self.bedrooms) or None,
            "bathrooms": list(self.bathrooms) or None,
            "area_range": {"min": _num(self.min_area), "max": _num(self.max_area)},
        }


# =============================================================================
# Filter pipeline
# =============================================================================

def _within(value: Optional[Decimal], low: Optional[Decimal], high: Optional[Decimal]) -> bool:
    if low is None and high is None:
        return True
    # An active bound can't be satisfied by an unparseable value.
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def matches_filters(record: PropertyRecord, filters: SearchFilters) -> bool:
    """True if *record* passes every active attribute filter."""
    if filters.property_types and record.property_type not in filters.property_types:
        return False
    if not _within(parse_decimal(record.selling_price), filters.min_price, filters.max_price):
        return False
    if filters.bedrooms and (record.bedrooms or "").strip() not in filters.bedrooms:
        return False
    if filters.bathrooms and (record.bathrooms or "").strip() not in filters.bathrooms:
        return False
    if not _within(parse_decimal(record.total_area), filters.min_area, filters.max_area):
        return False
    return True


def apply_filters(records: Iterable[PropertyRecord], filters: SearchFilters) -> List[PropertyRecord]:
    """Keep the records that pass every active filter, preserving order."""
    if not filters.has_attribute_filters:
        return list(records)
    return [r for r in records if matches_filters(r, filters)]
