"""
Gunicorn hooks for the search API.

post_fork starts the health monitor (Property Store probe) in each worker.
when_ready runs smoke_test.run_tests against this server once it listens.
"""

import logging
import os
import threading
import time

# Workers need a moment to import app and open the listings DB
SMOKE_TEST_DELAY_SECONDS = float(os.environ.get("SMOKE_TEST_DELAY_SECONDS", "2"))


def when_ready(server):
    """Run smoke test in a background thread once gunicorn is listening."""
    port = os.environ.get("PORT", "8000")
    base_url = f"http://127.0.0.1:{port}"

    def _run_smoke():
        time.sleep(SMOKE_TEST_DELAY_SECONDS)
        logger = logging.getLogger("gunicorn.error")
        try:
            from smoke_test import run_tests
            logger.info("Search API smoke test against %s", base_url)
            if run_tests(base_url):
                logger.info("Search API smoke test passed")
            else:
                logger.error("Search API smoke test failed")
        except Exception:
            logger.exception("Search API smoke test crashed")

    threading.Thread(target=_run_smoke, name="smoke-test", daemon=True).start()


def post_fork(server, worker):
    """Start the health monitor in this gunicorn worker process."""
    try:
        from health_monitor import start_monitor
        start_monitor()
    except Exception as e:
        logging.getLogger(__name__).exception("Failed to start health monitor: %s", e)
