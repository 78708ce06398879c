"""Tests for the gunicorn hooks: health monitor start and post-deploy smoke test."""

from unittest.mock import MagicMock, patch

import gunicorn_config


class _InlineThread:
    """Runs the target on start() so the hook can be asserted synchronously."""

    def __init__(self, target, **kwargs):
        self.target = target

    def start(self):
        self.target()


class TestPostFork:

    def test_starts_health_monitor(self):
        with patch("health_monitor.start_monitor") as start:
            gunicorn_config.post_fork(MagicMock(), MagicMock())
        start.assert_called_once_with()

    def test_monitor_failure_does_not_kill_worker(self):
        with patch("health_monitor.start_monitor", side_effect=RuntimeError("no threads")):
            gunicorn_config.post_fork(MagicMock(), MagicMock())


class TestWhenReady:

    def test_runs_smoke_test_against_local_port(self, monkeypatch):
        monkeypatch.setenv("PORT", "9123")
        monkeypatch.setattr(gunicorn_config, "SMOKE_TEST_DELAY_SECONDS", 0)
        with patch.object(gunicorn_config.threading, "Thread", _InlineThread), \
                patch("smoke_test.run_tests", return_value=True) as run_tests:
            gunicorn_config.when_ready(MagicMock())
        run_tests.assert_called_once_with("http://127.0.0.1:9123")

    def test_smoke_crash_is_logged_not_raised(self, monkeypatch):
        monkeypatch.setattr(gunicorn_config, "SMOKE_TEST_DELAY_SECONDS", 0)
        with patch.object(gunicorn_config.threading, "Thread", _InlineThread), \
                patch("smoke_test.run_tests", side_effect=OSError("refused")):
            gunicorn_config.when_ready(MagicMock())
