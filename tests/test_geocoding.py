"""Tests for geocoding.py: feature parsing and the fail-open Mapbox client.

The HTTP session is always mocked; nothing here touches the network.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from geocoding import MapboxGeocodingClient, parse_feature
from search_trace import SearchTrace, clear_trace, set_trace


def _feature(**overrides):
    feature = {
        "id": "place.123",
        "text": "Indore",
        "place_name": "Indore, Madhya Pradesh, India",
        "place_type": ["place"],
        "center": [75.8577, 22.7196],
        "context": [
            {"id": "region.1", "text": "Madhya Pradesh"},
            {"id": "country.1", "text": "India"},
        ],
    }
    feature.update(overrides)
    return feature


def _response(status=200, body=None, json_error=False):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    if json_error:
        resp.json.side_effect = requests.exceptions.JSONDecodeError("no JSON", "", 0)
    else:
        resp.json.return_value = body if body is not None else {"features": []}
    return resp


@pytest.fixture
def client():
    c = MapboxGeocodingClient("test-token", timeout=5.0)
    c.session = MagicMock()
    return c


# ---------------------------------------------------------------------------
# Feature parsing
# ---------------------------------------------------------------------------

class TestParseFeature:

    def test_full_feature(self):
        c = parse_feature(_feature())
        assert c.id == "place.123"
        assert c.display_name == "Indore"
        assert c.subtitle == "Madhya Pradesh, India"
        assert c.place_type == "place"
        assert c.place_type_display == "City"
        assert c.coordinates == (22.7196, 75.8577)
        assert c.lat == 22.7196 and c.lng == 75.8577
        assert c.full_address == "Indore, Madhya Pradesh, India"

    def test_display_name_falls_back_to_place_name(self):
        c = parse_feature(_feature(text=None, place_name="Rau, Indore, Madhya Pradesh"))
        assert c.display_name == "Rau"

    def test_missing_place_type_defaults_to_place(self):
        c = parse_feature(_feature(place_type=[]))
        assert c.place_type == "place"

    def test_unknown_place_type_display(self):
        c = parse_feature(_feature(place_type=["postcode"]))
        assert c.place_type_display == "Place"

    def test_neighborhood_is_area(self):
        c = parse_feature(_feature(place_type=["neighborhood"]))
        assert c.place_type_display == "Area"

    def test_subtitle_region_only(self):
        c = parse_feature(_feature(context=[{"id": "region.9", "text": "Goa"}]))
        assert c.subtitle == "Goa"

    def test_bad_center_is_skipped(self):
        assert parse_feature(_feature(center=[])) is None
        assert parse_feature(_feature(center=["x", "y"])) is None
        assert parse_feature(_feature(center={"lng": 75.8})) is None

    def test_non_dict_context_entries_skipped(self):
        c = parse_feature(_feature(context=["junk", 5, {"id": "region.1", "text": "Madhya Pradesh"}]))
        assert c.subtitle == "Madhya Pradesh"

    def test_odd_shapes_do_not_raise(self):
        c = parse_feature(_feature(context="junk", place_type="place", text=None, place_name=None))
        assert c.subtitle == ""
        assert c.place_type == "place"
        assert c.display_name == ""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TestGeocode:

    def test_request_shape(self, client):
        client.session.get.return_value = _response(body={"features": [_feature()]})

        results = client.geocode("New Delhi", 8, place_types=("place", "locality"))

        assert len(results) == 1
        url = client.session.get.call_args[0][0]
        params = client.session.get.call_args[1]["params"]
        assert url.endswith("/mapbox.places/New%20Delhi.json")
        assert params["country"] == "IN"
        assert params["language"] == "en"
        assert params["limit"] == 8
        assert params["types"] == "place,locality"
        assert client.session.get.call_args[1]["timeout"] == 5.0

    def test_no_types_param_without_place_types(self, client):
        client.session.get.return_value = _response()
        client.geocode("indore", 5)
        assert "types" not in client.session.get.call_args[1]["params"]

    def test_truncates_to_limit(self, client):
        features = [_feature(id=f"place.{i}") for i in range(7)]
        client.session.get.return_value = _response(body={"features": features})
        assert len(client.geocode("indore", 5)) == 5

    def test_skips_unusable_features(self, client):
        features = [_feature(center=None), "junk", _feature(id="place.ok")]
        client.session.get.return_value = _response(body={"features": features})
        results = client.geocode("indore", 5)
        assert [c.id for c in results] == ["place.ok"]

    def test_missing_token_makes_no_request(self):
        c = MapboxGeocodingClient(None)
        c.session = MagicMock()
        assert c.geocode("indore", 5) == []
        c.session.get.assert_not_called()

    def test_blank_query_makes_no_request(self, client):
        assert client.geocode("   ", 5) == []
        client.session.get.assert_not_called()


class TestFailOpen:

    def test_http_error_returns_empty(self, client):
        client.session.get.return_value = _response(status=500)
        assert client.geocode("indore", 5) == []

    def test_timeout_returns_empty(self, client):
        client.session.get.side_effect = requests.Timeout("slow")
        assert client.geocode("indore", 5) == []

    def test_connection_error_returns_empty(self, client):
        client.session.get.side_effect = requests.ConnectionError("refused")
        assert client.geocode("indore", 5) == []

    def test_malformed_json_returns_empty(self, client):
        client.session.get.return_value = _response(json_error=True)
        assert client.geocode("indore", 5) == []

    def test_non_object_body_returns_empty(self, client):
        client.session.get.return_value = _response(body=["not", "a", "dict"])
        assert client.geocode("indore", 5) == []

    @pytest.mark.parametrize("features", [5, "junk", {"id": 1}])
    def test_non_list_features_returns_empty(self, client, features):
        client.session.get.return_value = _response(body={"features": features})
        assert client.geocode("indore", 5) == []

    def test_feature_with_junk_context_still_parsed(self, client):
        body = {"features": [{"center": [75.8, 22.7], "text": "Indore", "context": ["junk"]}]}
        client.session.get.return_value = _response(body=body)
        [candidate] = client.geocode("indore", 5)
        assert candidate.coordinates == (22.7, 75.8)

    def test_invalid_url_reported_as_itself(self, client):
        client.session.get.side_effect = requests.exceptions.InvalidURL("bad host")
        with patch("health_monitor.record_call") as record:
            assert client.geocode("indore", 5) == []
        error = record.call_args[0][3]
        assert error == "InvalidURL: bad host"

    def test_json_decode_error_reported_as_invalid_json(self, client):
        client.session.get.return_value = _response(json_error=True)
        with patch("health_monitor.record_call") as record:
            client.geocode("indore", 5)
        assert record.call_args[0][3] == "invalid JSON"

    def test_failure_recorded_in_health_monitor(self, client):
        client.session.get.side_effect = requests.Timeout("slow")
        with patch("health_monitor.record_call") as record:
            client.geocode("indore", 5)
        service, ok = record.call_args[0][:2]
        assert service == "mapbox"
        assert ok is False


class TestTracing:

    def test_provider_call_recorded(self, client):
        client.session.get.return_value = _response(body={"features": [_feature()]})
        trace = SearchTrace(trace_id="t-1")
        set_trace(trace)
        try:
            client.geocode("indore", 5)
        finally:
            clear_trace()
        assert len(trace.provider_calls) == 1
        call = trace.provider_calls[0]
        assert call.service == "mapbox"
        assert call.status_code == 200
        assert call.ok is True


class TestClientConstruction:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MAPBOX_ACCESS_TOKEN", "env-token")
        c = MapboxGeocodingClient.from_env(country="LK")
        assert c.access_token == "env-token"
        assert c.country == "LK"
        assert c.is_configured

    def test_session_ignores_proxy_env(self):
        assert MapboxGeocodingClient("t").session.trust_env is False

    def test_clone_has_own_session(self):
        original = MapboxGeocodingClient("t", country="IN", timeout=2.0)
        copy = original.clone()
        assert copy.session is not original.session
        assert (copy.access_token, copy.country, copy.timeout) == ("t", "IN", 2.0)
