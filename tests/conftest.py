"""Shared fixtures for the property search test suite.

Provides a Flask test client wired to a temporary SQLite database, a
listing factory for seeding the store, and an in-memory geocoder so no
test ever reaches the network.
"""

import atexit
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Point the DB at a temp file BEFORE importing app (it runs init_db() at import)
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)  # close the fd immediately; sqlite3 opens its own handle
os.environ["PROPERTY_SEARCH_DB_PATH"] = _test_db_path
atexit.register(lambda: os.unlink(_test_db_path) if os.path.exists(_test_db_path) else None)

# Tests make many requests from one address
os.environ["RATE_LIMIT_DEFAULT"] = "10000/minute"
os.environ["RATE_LIMIT_SEARCH"] = "10000/minute"

os.environ["BUILDER_SECRET"] = "test-builder-key"
os.environ.pop("BUILDER_MODE", None)
os.environ.pop("MAPBOX_ACCESS_TOKEN", None)
os.environ.pop("SENTRY_DSN", None)

import health_monitor  # noqa: E402
from app import app  # noqa: E402
from geocoding import LocationCandidate  # noqa: E402
from models import clear_properties, init_db, save_properties  # noqa: E402

_BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeGeocoder:
    """In-memory stand-in for MapboxGeocodingClient.

    *results* maps a lower-cased query to the candidates it returns; unknown
    queries return [] (the same thing the real client does on failure).
    """

    def __init__(self, results=None, configured=True):
        self.results = {k.lower(): v for k, v in (results or {}).items()}
        self.is_configured = configured
        self.calls = []

    def clone(self):
        return self

    def geocode(self, query, limit, place_types=None):
        self.calls.append((query, limit, tuple(place_types) if place_types else None))
        return list(self.results.get(query.strip().lower(), []))[:limit]


def make_candidate(name, lat, lng, place_type="place", region="Madhya Pradesh"):
    return LocationCandidate(
        id=f"place.{name.lower().replace(' ', '-')}",
        display_name=name,
        subtitle=f"{region}, India",
        place_type=place_type,
        place_type_display="City" if place_type == "place" else "Locality",
        coordinates=(lat, lng),
        full_address=f"{name}, {region}, India",
    )


def make_property(unique_id, **overrides):
    """A live listing dict ready for models.save_property()."""
    record = {
        "unique_id": unique_id,
        "property_title": f"Listing {unique_id}",
        "property_type": "apartment",
        "state": "Madhya Pradesh",
        "district": "Indore",
        "city": "Indore",
        "locality": "Vijay Nagar",
        "pincode": "452010",
        "latitude": "22.7533",
        "longitude": "75.8937",
        "total_area": "1200",
        "area_unit": "sqft",
        "bedrooms": "2",
        "bathrooms": "2",
        "selling_price": "4500000",
        "is_live": True,
        "published_at": _BASE_TIME.isoformat(),
    }
    record.update(overrides)
    return record


def days_ago(n):
    return (_BASE_TIME - timedelta(days=n)).isoformat()


@pytest.fixture(autouse=True)
def _fresh_db():
    """Empty the listings table before every test, keeping the schema."""
    init_db()
    clear_properties()
    yield


@pytest.fixture(autouse=True)
def _fresh_health_monitor(monkeypatch):
    """Geocoder failures in one test must not leak into another's /healthz."""
    monkeypatch.setattr(health_monitor, "_monitor", health_monitor.HealthMonitor())
    yield


@pytest.fixture()
def seed():
    """Save listing dicts into the store: seed(make_property("a"), ...)."""
    def _seed(*records):
        return save_properties(records)
    return _seed


@pytest.fixture()
def property_factory():
    return make_property


@pytest.fixture()
def candidate_factory():
    return make_candidate


@pytest.fixture()
def fake_geocoder():
    return FakeGeocoder


@pytest.fixture()
def published():
    return days_ago


@pytest.fixture()
def client():
    """Flask test client."""
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
