#!/usr/bin/env python3
"""
Seed the property search database with published listings.

Input: a CSV file (header row) or a JSON file (array of objects).  Column
names may be snake_case (unique_id, selling_price) or the camelCase used by
the listing service export (uniqueId, sellingPrice); both are accepted.

This script:
1. Creates the published_properties table if needed
2. Optionally clears existing listings (--replace)
3. Upserts every row by unique_id
4. Optionally prints store counts and a sample (--verify)

Idempotent: re-running with the same file updates rows in place.

Usage:
    python scripts/seed_properties.py listings.csv
    python scripts/seed_properties.py listings.json --replace --verify
    python scripts/seed_properties.py --demo       # a handful of Indore listings
"""

import argparse
import csv
import json
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import PROPERTY_COLUMNS, clear_properties, init_db, save_properties
from property_store import PropertyStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Listing-service export names -> table columns
COLUMN_ALIASES = {
    "uniqueId": "unique_id",
    "id": "unique_id",
    "propertyTitle": "property_title",
    "title": "property_title",
    "propertyType": "property_type",
    "totalArea": "total_area",
    "areaUnit": "area_unit",
    "sellingPrice": "selling_price",
    "isLive": "is_live",
    "publishedAt": "published_at",
}

_TRUE_STRINGS = {"1", "true", "yes", "y", "t"}


def normalize_row(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Map one input row onto table columns.

    Returns None for rows without a unique_id.  is_live defaults to true
    when the column is absent.
    """
    record: Dict[str, Any] = {}
    for key, value in row.items():
        if key is None:
            continue
        column = COLUMN_ALIASES.get(key.strip(), key.strip())
        if column not in PROPERTY_COLUMNS:
            continue
        if isinstance(value, str):
            value = value.strip()
        record[column] = value

    if not record.get("unique_id"):
        return None

    is_live = record.get("is_live", True)
    if isinstance(is_live, str):
        is_live = is_live.lower() in _TRUE_STRINGS
    record["is_live"] = bool(is_live)

    for column in ("latitude", "longitude", "bedrooms", "bathrooms", "published_at"):
        if record.get(column) in ("", None):
            record[column] = None
        elif not isinstance(record[column], str):
            record[column] = str(record[column])
    for column in ("selling_price", "total_area", "pincode"):
        if column in record and record[column] is not None:
            record[column] = str(record[column])
    return record


def read_rows(path: str) -> Iterator[Dict[str, Any]]:
    """Yield raw rows from a .csv or .json file."""
    if path.lower().endswith(".json"):
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON array of objects")
        for item in data:
            if isinstance(item, dict):
                yield item
    else:
        with open(path, newline="", encoding="utf-8") as f:
            yield from csv.DictReader(f)


def demo_rows() -> List[Dict[str, Any]]:
    """A small, hand-checked fixture set around Indore (MP)."""
    now = datetime.now(timezone.utc)
    base = [
        ("IND-0001", "Vijay Nagar", "452010", 22.7533, 75.8937, "apartment", "4500000", "2", "2", "1100"),
        ("IND-0002", "Vijay Nagar", "452010", 22.7510, 75.8950, "apartment", "6200000", "3", "2", "1450"),
        ("IND-0003", "Palasia", "452001", 22.7244, 75.8839, "villa", "12500000", "4", "4", "2800"),
        ("IND-0004", "Rau", "453331", 22.6376, 75.8110, "plot", "2100000", None, None, "1500"),
        ("IND-0005", "Bhawarkuan", "452001", 22.6946, 75.8672, "apartment", "3800000", "2", "1", "950"),
        ("IND-0006", "Nipania", "452010", 22.7645, 75.9245, "apartment", "5600000", "5+", "3", "2100"),
    ]
    rows = []
    for i, (uid, locality, pincode, lat, lng, ptype, price, beds, baths, area) in enumerate(base):
        rows.append({
            "unique_id": uid,
            "property_title": f"{ptype.title()} in {locality}",
            "property_type": ptype,
            "state": "Madhya Pradesh",
            "district": "Indore",
            "city": "Indore",
            "locality": locality,
            "pincode": pincode,
            "latitude": str(lat),
            "longitude": str(lng),
            "total_area": area,
            "area_unit": "sqft",
            "bedrooms": beds,
            "bathrooms": baths,
            "selling_price": price,
            "is_live": True,
            "published_at": (now - timedelta(days=i)).isoformat(),
        })
    return rows


def seed(rows, replace: bool = False) -> int:
    init_db()
    if replace:
        logger.info("Clearing existing listings")
        clear_properties()

    records = []
    skipped = 0
    for row in rows:
        record = normalize_row(row)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.warning("Skipped %d rows without a unique_id", skipped)

    count = save_properties(records)
    logger.info("Saved %d listings", count)
    return count


def verify():
    """Print store counts and a few sample listings."""
    store = PropertyStore()
    logger.info("Live listings: %d", store.count_live())
    logger.info("Live listings with coordinates: %d", store.count_live_with_coordinates())
    for r in store.sample_live(limit=3):
        logger.info("  %s: %s, %s %s (%s, %s)", r.id, r.locality, r.city, r.pincode, r.latitude, r.longitude)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed published property listings")
    parser.add_argument(
        "path", nargs="?", default="",
        help="CSV or JSON file of listings.",
    )
    parser.add_argument(
        "--demo", action="store_true",
        help="Seed a small built-in set of Indore listings instead of a file.",
    )
    parser.add_argument(
        "--replace", action="store_true",
        help="Delete all existing listings before seeding.",
    )
    parser.add_argument(
        "--verify", action="store_true",
        help="Print store counts after seeding.",
    )
    args = parser.parse_args()

    if not args.demo and not args.path:
        parser.error("a file path or --demo is required")

    seed(demo_rows() if args.demo else read_rows(args.path), replace=args.replace)
    if args.verify:
        verify()
