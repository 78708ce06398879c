"""
Dependency health for the search service.

Mapbox is tracked passively: every real geocode call is fed in through
record_call() from MapboxGeocodingClient._traced_get, and the status is
derived from the success rate of the most recent calls.  Probing Mapbox
actively would spend quota, so nothing else touches it.

The property store is probed actively by a daemon thread every
HEALTH_CHECK_INTERVAL seconds (ping, then a live-listing count so
/healthz can show an empty index).

One monitor per process, shared through the module-level functions.
"""

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = int(os.environ.get("HEALTH_CHECK_INTERVAL", "300"))

# Success-rate thresholds over the last CALL_WINDOW calls
CALL_WINDOW = 50
HEALTHY_RATE = 0.95
DEGRADED_RATE = 0.70


def _iso(ts: Optional[float] = None) -> str:
    if ts is None:
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def classify(success_rate: float) -> str:
    if success_rate >= HEALTHY_RATE:
        return "healthy"
    if success_rate >= DEGRADED_RATE:
        return "degraded"
    return "down"


@dataclass
class DependencyStatus:
    """Health of one dependency as reported by /healthz."""
    service: str
    mode: str            # "passive" | "active"
    status: str = "unknown"
    latency_ms: int = 0
    checked_at: str = field(default_factory=_iso)
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "status": self.status,
            "mode": self.mode,
            "latency_ms": self.latency_ms,
            "last_checked": self.checked_at,
        }
        if self.error:
            out["error"] = self.error
        out.update(self.details)
        return out


@dataclass
class _Call:
    at: float
    ok: bool
    latency_ms: int
    error: Optional[str] = None


class _CallWindow:
    """Most recent provider call outcomes for one service."""

    def __init__(self, service: str, size: int = CALL_WINDOW):
        self.service = service
        self._calls: deque = deque(maxlen=size)

    def add(self, call: _Call) -> None:
        self._calls.append(call)

    def calls(self) -> List[_Call]:
        return list(self._calls)

    def status(self) -> DependencyStatus:
        calls = self.calls()
        if not calls:
            return DependencyStatus(self.service, "passive", details={"sample_size": 0})

        ok = sum(1 for c in calls if c.ok)
        rate = ok / len(calls)
        last_error = next((c.error for c in reversed(calls) if not c.ok and c.error), None)
        return DependencyStatus(
            self.service,
            "passive",
            status=classify(rate),
            latency_ms=int(sum(c.latency_ms for c in calls) / len(calls)),
            checked_at=_iso(calls[-1].at),
            error=last_error,
            details={"success_rate": round(rate, 3), "sample_size": len(calls)},
        )


def probe_property_store() -> DependencyStatus:
    """Ping the listings database and count what a search can see."""
    from property_store import PropertyStore, StoreError

    store = PropertyStore()
    t0 = time.time()
    try:
        store.ping()
        live = store.count_live()
    except StoreError as e:
        return DependencyStatus(
            "property_store", "active",
            status="down",
            latency_ms=int((time.time() - t0) * 1000),
            error=str(e),
        )
    return DependencyStatus(
        "property_store", "active",
        status="healthy",
        latency_ms=int((time.time() - t0) * 1000),
        details={"live_properties": live},
    )


class HealthMonitor:
    """Thread-safe passive windows plus periodic active probes."""

    def __init__(self, probes=None) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, _CallWindow] = {"mapbox": _CallWindow("mapbox")}
        self._probes = probes if probes is not None else {"property_store": probe_property_store}
        self._probed: Dict[str, DependencyStatus] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def record_call(self, service: str, success: bool, latency_ms: int,
                    error: Optional[str] = None) -> None:
        call = _Call(at=time.time(), ok=success, latency_ms=latency_ms, error=error)
        with self._lock:
            window = self._windows.setdefault(service, _CallWindow(service))
            window.add(call)

    def passive_status(self, service: str) -> DependencyStatus:
        with self._lock:
            window = self._windows.get(service)
            if window is None:
                return DependencyStatus(service, "passive", details={"sample_size": 0})
            return window.status()

    def refresh(self) -> None:
        """Run every active probe once and log status changes."""
        for name, probe in self._probes.items():
            result = probe()
            with self._lock:
                previous = self._probed.get(name)
                self._probed[name] = result
            if previous is not None and previous.status != result.status:
                logger.warning(
                    "[health] %s %s -> %s (error=%s)",
                    name, previous.status, result.status, result.error,
                )
            else:
                logger.info("[health] %s: %s (%dms)", name, result.status, result.latency_ms)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            services = list(self._windows)
            probed = dict(self._probed)
        out = {svc: self.passive_status(svc).to_dict() for svc in services}
        for name in self._probes:
            out[name] = probed.get(name, DependencyStatus(name, "active")).to_dict()
        return out

    # Background thread

    def _run(self) -> None:
        logger.info("[health] monitor started (interval=%ds)", HEALTH_CHECK_INTERVAL)
        while not self._stop_event.is_set():
            try:
                self.refresh()
            except Exception:
                logger.exception("[health] active probe failed")
            self._stop_event.wait(timeout=HEALTH_CHECK_INTERVAL)
        logger.info("[health] monitor stopped")

    def start(self) -> None:
        """Start the probe thread; a no-op if it is already running."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="health-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()


_monitor = HealthMonitor()


def record_call(service: str, success: bool, latency_ms: int,
                error: Optional[str] = None) -> None:
    _monitor.record_call(service, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    return _monitor.snapshot()


def start_monitor() -> None:
    _monitor.start()


def stop_monitor() -> None:
    _monitor.stop()
