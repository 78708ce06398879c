"""
Read-only query interface over published property listings.

Every query is scoped to live listings (is_live = 1).  The search engine
never writes through this class; the schema and write helpers live in
models.py.

Failures are not swallowed here: any sqlite3 error is re-raised as
StoreError so the HTTP layer can answer 500.  Retrying is left to callers
(the search engine does not retry).
"""

import logging
import math
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from models import _get_db

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the property database cannot be read."""

    pass


def parse_price(value: Any) -> Optional[float]:
    """Parse a stored selling price such as "4500000" or "45,00,000".

    Returns None for blank, non-numeric or non-finite values.
    """
    if value is None:
        return None
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        price = float(text)
    except ValueError:
        return None
    return price if math.isfinite(price) else None


class _PriceAverage:
    """SQLite aggregate: mean of the prices parse_price accepts."""

    def __init__(self):
        self.total = 0.0
        self.count = 0

    def step(self, value):
        price = parse_price(value)
        if price is not None:
            self.total += price
            self.count += 1

    def finalize(self):
        return self.total / self.count if self.count else None


@dataclass(frozen=True)
class PropertyRecord:
    """One published, live listing as the search engine sees it."""

    id: str
    city: str = ""
    locality: str = ""
    state: str = ""
    pincode: str = ""
    latitude: Optional[str] = None   # stored as text; may be blank or junk
    longitude: Optional[str] = None
    property_type: str = ""
    selling_price: str = ""          # numeric-as-text
    bedrooms: Optional[str] = None   # tokens like "3" or "5+"
    bathrooms: Optional[str] = None
    total_area: str = ""
    area_unit: str = ""
    title: str = ""
    published_at: Optional[str] = None
    is_live: bool = True

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PropertyRecord":
        return cls(
            id=row["unique_id"],
            city=row["city"] or "",
            locality=row["locality"] or "",
            state=row["state"] or "",
            pincode=row["pincode"] or "",
            latitude=row["latitude"],
            longitude=row["longitude"],
            property_type=row["property_type"] or "",
            selling_price=row["selling_price"] or "",
            bedrooms=row["bedrooms"],
            bathrooms=row["bathrooms"],
            total_area=row["total_area"] or "",
            area_unit=row["area_unit"] or "",
            title=row["property_title"] or "",
            published_at=row["published_at"],
            is_live=bool(row["is_live"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "property_type": self.property_type,
            "city": self.city,
            "locality": self.locality,
            "state": self.state,
            "pincode": self.pincode,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "selling_price": self.selling_price,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "total_area": self.total_area,
            "area_unit": self.area_unit,
            "published_at": self.published_at,
        }


@dataclass(frozen=True)
class GroupedLocation:
    """Live listings aggregated by (city, locality, state, pincode)."""

    city: str
    locality: str
    state: str
    pincode: str
    property_count: int
    avg_price: Optional[float] = None

    @property
    def key(self):
        return (self.city, self.locality, self.state, self.pincode)


def _escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return (
        term.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def _like_param(term: str, prefix: bool = False) -> str:
    # Callers wrap columns with LOWER() to keep matching case-insensitive.
    escaped = _escape_like(term.strip().lower())
    return f"{escaped}%" if prefix else f"%{escaped}%"


_LOCATION_FIELDS = ("city", "locality", "state", "pincode")

# Any of the four location columns contains (or starts with) the term.
_ANY_LOCATION_MATCH = "(" + " OR ".join(
    f"LOWER({col}) LIKE ? ESCAPE '\\'" for col in _LOCATION_FIELDS
) + ")"

_ORDER_NEWEST = "ORDER BY published_at IS NULL, published_at DESC, unique_id"


class PropertyStore:
    """
    Query interface over the published_properties table.

    Usage:
        store = PropertyStore()
        groups = store.find_by_text_match("indore", limit=5)
        records = store.find_live_with_coordinates()
    """

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            conn = _get_db()
            conn.create_aggregate("PRICE_AVG", 1, _PriceAverage)
        except sqlite3.Error as e:
            logger.error("Property store unavailable: %s", e)
            raise StoreError(f"Property store unavailable: {e}") from e
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("Property store query failed: %s", e)
            raise StoreError(f"Property store query failed: {e}") from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Grouped location lookups (location suggestions)
    # ------------------------------------------------------------------

    def find_by_text_match(self, term: str, limit: int = 5, prefix: bool = False) -> List[GroupedLocation]:
        """
        Group live listings whose city/locality/state/pincode contains
        *term* (or starts with it when prefix=True), most listings first.
        """
        param = _like_param(term, prefix=prefix)
        rows = self._query(
            f"""SELECT city, locality, state, pincode,
                       COUNT(*) AS property_count,
                       PRICE_AVG(selling_price) AS avg_price
                FROM published_properties
                WHERE is_live = 1 AND {_ANY_LOCATION_MATCH}
                GROUP BY city, locality, state, pincode
                ORDER BY property_count DESC, city, locality, state, pincode
                LIMIT ?""",
            (param, param, param, param, limit),
        )
        return [
            GroupedLocation(
                city=row["city"] or "",
                locality=row["locality"] or "",
                state=row["state"] or "",
                pincode=row["pincode"] or "",
                property_count=int(row["property_count"]),
                avg_price=float(row["avg_price"]) if row["avg_price"] is not None else None,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Record lookups (property search)
    # ------------------------------------------------------------------

    def find_live_with_coordinates(self) -> List[PropertyRecord]:
        """Live listings whose latitude and longitude are both non-empty.

        Values are not validated here; the radius matcher skips junk.
        """
        rows = self._query(
            f"""SELECT * FROM published_properties
                WHERE is_live = 1
                  AND latitude IS NOT NULL AND TRIM(latitude) != ''
                  AND longitude IS NOT NULL AND TRIM(longitude) != ''
                {_ORDER_NEWEST}"""
        )
        return [PropertyRecord.from_row(r) for r in rows]

    def find_by_location_text(self, term: str) -> List[PropertyRecord]:
        """Live listings where any location field contains *term*."""
        param = _like_param(term)
        rows = self._query(
            f"""SELECT * FROM published_properties
                WHERE is_live = 1 AND {_ANY_LOCATION_MATCH}
                {_ORDER_NEWEST}""",
            (param, param, param, param),
        )
        return [PropertyRecord.from_row(r) for r in rows]

    def find_by_fields(
        self,
        city: Optional[str] = None,
        locality: Optional[str] = None,
        state: Optional[str] = None,
        pincode: Optional[str] = None,
    ) -> List[PropertyRecord]:
        """
        Live listings matching every structured field given.

        Each field is a case-insensitive substring constraint; blank or
        missing fields are ignored, so no fields means every live listing.
        """
        clauses = ["is_live = 1"]
        params: List[Any] = []
        for col, value in zip(_LOCATION_FIELDS, (city, locality, state, pincode)):
            if value and value.strip():
                clauses.append(f"LOWER({col}) LIKE ? ESCAPE '\\'")
                params.append(_like_param(value))
        rows = self._query(
            f"""SELECT * FROM published_properties
                WHERE {" AND ".join(clauses)}
                {_ORDER_NEWEST}""",
            tuple(params),
        )
        return [PropertyRecord.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def count_live(self) -> int:
        rows = self._query("SELECT COUNT(*) AS cnt FROM published_properties WHERE is_live = 1")
        return int(rows[0]["cnt"]) if rows else 0

    def count_live_with_coordinates(self) -> int:
        rows = self._query(
            """SELECT COUNT(*) AS cnt FROM published_properties
               WHERE is_live = 1
                 AND latitude IS NOT NULL AND TRIM(latitude) != ''
                 AND longitude IS NOT NULL AND TRIM(longitude) != ''"""
        )
        return int(rows[0]["cnt"]) if rows else 0

    def sample_live(self, limit: int = 3) -> List[PropertyRecord]:
        rows = self._query(
            f"SELECT * FROM published_properties WHERE is_live = 1 {_ORDER_NEWEST} LIMIT ?",
            (limit,),
        )
        return [PropertyRecord.from_row(r) for r in rows]

    def ping(self) -> None:
        """Raise StoreError unless the database answers a trivial query."""
        self._query("SELECT 1")
