"""Import sanity tests.

These lightweight tests verify that the WSGI entrypoint and core modules
can be imported without errors, the minimum bar for a deploy.
"""


def test_app_module_imports():
    """The Flask app module must import without errors."""
    import app  # noqa: F401


def test_wsgi_app_object():
    """Gunicorn's 'app:app' entrypoint must resolve to a Flask instance."""
    from app import app as flask_app
    assert flask_app is not None
    assert hasattr(flask_app, "route"), "app object is not a Flask instance"


def test_search_engine_imports():
    """Core symbols used by app.py must be importable."""
    from property_search import PropertySearchEngine
    from search_filters import SearchFilters, SearchValidationError
    from property_store import PropertyStore, StoreError
    assert PropertySearchEngine is not None
    assert SearchFilters is not None
    assert issubclass(SearchValidationError, ValueError)
    assert PropertyStore is not None
    assert issubclass(StoreError, Exception)


def test_gunicorn_hooks_present():
    import gunicorn_config
    assert callable(gunicorn_config.post_fork)
    assert callable(gunicorn_config.when_ready)
