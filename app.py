import os
import logging
import uuid
from flask import Flask, request, abort, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

import health_monitor
from geocoding import MapboxGeocodingClient
from models import init_db
from property_search import PropertySearchEngine
from property_store import PropertyStore, StoreError
from search_config import load_search_config
from search_filters import SearchFilters, SearchValidationError
from search_trace import SearchTrace, set_trace, clear_trace

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Demote bad user input to a breadcrumb; only real failures become events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            if exc_type is not None and issubclass(exc_type, SearchValidationError):
                sentry_sdk.add_breadcrumb(
                    category="validation",
                    message=str(exc_value),
                    level="info",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Behind a reverse proxy, rewrite remote_addr to the real client IP so
# Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting.  In-memory storage is per-process; with N gunicorn workers
# the effective limit is ~N x nominal.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_SEARCH = os.environ.get("RATE_LIMIT_SEARCH", "30/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)


@limiter.request_filter
def _builder_bypass():
    """Exempt builder-mode requests from all rate limits."""
    return _is_builder(request)

# ---------------------------------------------------------------------------
# Startup: warn immediately if optional config is missing
# ---------------------------------------------------------------------------
if not os.environ.get("MAPBOX_ACCESS_TOKEN"):
    logger.warning(
        "MAPBOX_ACCESS_TOKEN is not set. "
        "Searches will use text matching only (no geocoding or radius search). "
        "For local development, add the token to your .env file."
    )


def _generate_request_id():
    return uuid.uuid4().hex[:10]


# ---------------------------------------------------------------------------
# Builder mode
# ---------------------------------------------------------------------------
BUILDER_MODE_ENV = os.environ.get("BUILDER_MODE", "").lower() == "true"
BUILDER_SECRET = os.environ.get("BUILDER_SECRET", "")


def _is_builder(req):
    """
    Check if current request is in builder mode.

    Enabled if:
      1. BUILDER_MODE=true env var is set, OR
      2. A cookie 'ps_builder' matches the secret, OR
      3. Query param ?builder_key=<secret> is present (sets cookie for session)
    """
    if BUILDER_MODE_ENV:
        return True
    if not BUILDER_SECRET:
        return False
    if req.cookies.get("ps_builder") == BUILDER_SECRET:
        return True
    if req.args.get("builder_key") == BUILDER_SECRET:
        return True
    return False


@app.before_request
def _set_request_context():
    """Set request ID and builder mode on every request."""
    g.request_id = _generate_request_id()
    g.is_builder = _is_builder(request)


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")

    # Set builder cookie if activated via query param
    if BUILDER_SECRET and request.args.get("builder_key") == BUILDER_SECRET:
        response.set_cookie(
            "ps_builder", BUILDER_SECRET,
            max_age=90 * 24 * 3600, httponly=True, samesite="Lax"
        )
    return response


def _check_service_config():
    """Return (ok, missing_keys) for the search service's external config."""
    missing = [key for key in ("MAPBOX_ACCESS_TOKEN",) if not os.environ.get(key)]
    return not missing, missing


def _build_engine():
    """One engine (and one geocoder session) per request."""
    config = load_search_config()
    geocoder = MapboxGeocodingClient.from_env(
        country=config.country,
        timeout=config.geocode_timeout_seconds,
    )
    return PropertySearchEngine(PropertyStore(), geocoder, config)


def _error_body(message):
    return {"error": message, "request_id": getattr(g, "request_id", None)}


# ---------------------------------------------------------------------------
# Search API
# ---------------------------------------------------------------------------

@app.route("/api/search/locations")
@limiter.limit(RATE_LIMIT_SEARCH)
def search_locations():
    """Location autocomplete: ?q=<query> (at least 2 characters)."""
    query = request.args.get("q", "")
    trace = SearchTrace(trace_id=g.request_id, operation="search_locations")
    set_trace(trace)
    try:
        result = _build_engine().search_locations(query)
        body = result.to_dict()
        if g.is_builder:
            body["trace"] = trace.summary_dict()
        return jsonify(body)
    finally:
        trace.log_summary()
        clear_trace()


@app.route("/api/search/properties")
@limiter.limit(RATE_LIMIT_SEARCH)
def search_properties():
    """Property search by free-text location or structured fields, with filters."""
    filters = SearchFilters.from_query_args(request.args)
    trace = SearchTrace(trace_id=g.request_id, operation="search_properties")
    set_trace(trace)
    try:
        result = _build_engine().search_properties(filters)
        body = result.to_dict()
        if g.is_builder:
            body["trace"] = trace.summary_dict()
        return jsonify(body)
    finally:
        trace.log_summary()
        clear_trace()


# ---------------------------------------------------------------------------
# Health and builder-only diagnostics
# ---------------------------------------------------------------------------

@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring.

    A missing geocoder token is "degraded", not down: text search still
    works, so the status code stays 200.
    """
    config_ok, missing = _check_service_config()
    dependencies = health_monitor.get_status()
    any_down = any(d.get("status") == "down" for d in dependencies.values())
    return jsonify({
        "status": "ok" if config_ok and not any_down else "degraded",
        "missing_keys": missing,
        "dependencies": dependencies,
    }), 200


@app.route("/debug/store")
@limiter.exempt
def debug_store():
    """Listing counts and a few sample rows. Builder-only."""
    if not g.is_builder:
        abort(404)

    store = PropertyStore()
    samples = store.sample_live(limit=3)
    return jsonify({
        "live_properties": store.count_live(),
        "live_with_coordinates": store.count_live_with_coordinates(),
        "samples": [
            {
                "id": r.id,
                "city": r.city,
                "locality": r.locality,
                "pincode": r.pincode,
                "latitude": r.latitude,
                "longitude": r.longitude,
            }
            for r in samples
        ],
    })


@app.route("/debug/geocode/<path:query>")
@limiter.exempt
def debug_geocode(query):
    """Raw parsed geocoder candidates for a query. Builder-only."""
    if not g.is_builder:
        abort(404)

    config = load_search_config()
    client = MapboxGeocodingClient.from_env(
        country=config.country,
        timeout=config.geocode_timeout_seconds,
    )
    trace = SearchTrace(trace_id=g.request_id, operation="debug_geocode")
    set_trace(trace)
    try:
        candidates = client.geocode(query, config.search_geocode_limit)
        return jsonify({
            "query": query,
            "configured": client.is_configured,
            "candidates": [
                {
                    "id": c.id,
                    "display_name": c.display_name,
                    "subtitle": c.subtitle,
                    "place_type": c.place_type,
                    "lat": c.lat,
                    "lng": c.lng,
                    "full_address": c.full_address,
                }
                for c in candidates
            ],
            "trace": trace.summary_dict(),
        })
    finally:
        clear_trace()


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(SearchValidationError)
def bad_search_request(e):
    return jsonify(_error_body(str(e))), 400


@app.errorhandler(StoreError)
def store_unavailable(e):
    logger.exception("Property store failure (request_id=%s)", getattr(g, "request_id", None))
    if _sentry_dsn:
        sentry_sdk.capture_exception(e)
    return jsonify(_error_body("Internal server error")), 500


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify(_error_body("Too many requests. Please wait and try again.")), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify(_error_body("Not found")), 404


@app.errorhandler(500)
def internal_error(e):
    return jsonify(_error_body("Internal server error")), 500


@app.errorhandler(HTTPException)
def http_error(e):
    return jsonify(_error_body(e.description or e.name)), e.code


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

# Initialize database on import (safe to call repeatedly)
init_db()

if __name__ == "__main__":
    # Development: run the health probes in this process
    health_monitor.start_monitor()
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
