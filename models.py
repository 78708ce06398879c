"""
SQLite persistence for published property listings.

The search engine only ever reads this table (see property_store.py).  The
write helpers here exist for the seeding script and the test suite; the
listing/approval workflow that populates the table in production lives
elsewhere.

No ORM, just raw sqlite3.
"""

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

# Columns a caller may set through save_property().  unique_id is required.
PROPERTY_COLUMNS = (
    "unique_id",
    "property_title",
    "property_type",
    "state",
    "district",
    "city",
    "locality",
    "pincode",
    "latitude",
    "longitude",
    "total_area",
    "area_unit",
    "bedrooms",
    "bathrooms",
    "selling_price",
    "is_live",
    "published_at",
)


def db_path() -> str:
    """Resolve the database path at call time so tests can repoint it."""
    return os.environ.get("PROPERTY_SEARCH_DB_PATH", "properties.db")


def _get_db():
    """Get a sqlite3 connection with WAL mode for concurrent reads."""
    conn = sqlite3.connect(db_path(), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db():
    """Create tables if they don't exist. Safe to call on every startup."""
    conn = _get_db()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS published_properties (
            unique_id       TEXT PRIMARY KEY,
            property_title  TEXT NOT NULL DEFAULT '',
            property_type   TEXT NOT NULL DEFAULT '',
            state           TEXT NOT NULL DEFAULT '',
            district        TEXT NOT NULL DEFAULT '',
            city            TEXT NOT NULL DEFAULT '',
            locality        TEXT NOT NULL DEFAULT '',
            pincode         TEXT NOT NULL DEFAULT '',
            latitude        TEXT,
            longitude       TEXT,
            total_area      TEXT NOT NULL DEFAULT '',
            area_unit       TEXT NOT NULL DEFAULT '',
            bedrooms        TEXT,
            bathrooms       TEXT,
            selling_price   TEXT NOT NULL DEFAULT '',
            is_live         INTEGER NOT NULL DEFAULT 0,
            published_at    TEXT,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_published_live ON published_properties(is_live);
        CREATE INDEX IF NOT EXISTS idx_published_city ON published_properties(city);
        CREATE INDEX IF NOT EXISTS idx_published_pincode ON published_properties(pincode);
        CREATE INDEX IF NOT EXISTS idx_published_at ON published_properties(published_at);
    """)
    conn.commit()
    conn.close()


def save_property(record: Dict[str, Any]) -> str:
    """
    Insert or replace one published listing. Returns its unique_id.

    Unknown keys are ignored.  is_live accepts any truthy value.
    """
    unique_id = record.get("unique_id")
    if not unique_id:
        raise ValueError("unique_id is required")

    values = {col: record.get(col) for col in PROPERTY_COLUMNS if col in record}
    values["is_live"] = 1 if record.get("is_live") else 0
    now = datetime.now(timezone.utc).isoformat()

    cols = list(values) + ["created_at", "updated_at"]
    placeholders = ", ".join("?" for _ in cols)
    updates = [f"{c} = excluded.{c}" for c in values if c != "unique_id"]
    updates.append("updated_at = excluded.updated_at")

    conn = _get_db()
    conn.execute(
        f"""INSERT INTO published_properties ({", ".join(cols)})
            VALUES ({placeholders})
            ON CONFLICT(unique_id) DO UPDATE SET {", ".join(updates)}""",
        tuple(values.values()) + (now, now),
    )
    conn.commit()
    conn.close()
    return unique_id


def save_properties(records: Iterable[Dict[str, Any]]) -> int:
    """Bulk variant of save_property(). Returns the number saved."""
    count = 0
    for record in records:
        save_property(record)
        count += 1
    return count


def set_property_live(unique_id: str, is_live: bool, published_at: Optional[str] = None) -> bool:
    """Flip a listing's live flag. Returns False if the listing doesn't exist."""
    now = datetime.now(timezone.utc).isoformat()
    conn = _get_db()
    if is_live:
        cursor = conn.execute(
            """UPDATE published_properties
               SET is_live = 1, published_at = COALESCE(?, published_at, ?), updated_at = ?
               WHERE unique_id = ?""",
            (published_at, now, now, unique_id),
        )
    else:
        cursor = conn.execute(
            "UPDATE published_properties SET is_live = 0, updated_at = ? WHERE unique_id = ?",
            (now, unique_id),
        )
    conn.commit()
    conn.close()
    return cursor.rowcount > 0


def clear_properties():
    """Delete every listing.  Used by the seeding script's --replace flag."""
    conn = _get_db()
    conn.execute("DELETE FROM published_properties")
    conn.commit()
    conn.close()
