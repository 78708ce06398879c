"""
Request-scoped tracing for search requests.

Provides a thread-local SearchTrace that records:
  - Per-stage timing (text_match, geocode_*, radius_match, merge, filter, ...)
  - Per-provider-call timing (service, endpoint, elapsed_ms, status)
  - Per-source result counts (how many items each producer contributed)
  - End-of-request summary (total_elapsed, provider calls, outcome)

Usage:
    from search_trace import SearchTrace, get_trace, set_trace, clear_trace

    # In the request handler (app.py):
    trace = SearchTrace(trace_id=request_id, operation="search_locations")
    set_trace(trace)
    ...
    trace.log_summary()
    clear_trace()

    # In the geocoding client:
    trace = get_trace()
    if trace:
        trace.record_provider_call(...)

Worker threads do not inherit thread-locals, so code that submits work to a
pool must call set_trace(parent_trace) inside the task.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class ProviderCallRecord:
    """One outbound call to an external provider (Mapbox)."""
    service: str          # "mapbox"
    endpoint: str         # "geocode"
    elapsed_ms: int
    status_code: int      # 0 when no HTTP response was received
    ok: bool = True
    stage: str = ""


@dataclass
class StageRecord:
    """One search stage."""
    stage_name: str
    elapsed_ms: int = 0
    provider_calls: int = 0
    skipped: bool = False
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class SearchTrace:
    """Accumulates timing data for a single search request."""
    trace_id: str
    operation: str = ""
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    provider_calls: List[ProviderCallRecord] = field(default_factory=list)
    source_counts: Dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        skipped: bool = False,
        error_class: str = "",
        error_message: str = "",
    ) -> None:
        with self._lock:
            calls = sum(1 for c in self.provider_calls if c.stage == stage_name)
            rec = StageRecord(
                stage_name=stage_name,
                elapsed_ms=int((end_ts - start_ts) * 1000),
                provider_calls=calls,
                skipped=skipped,
                error_class=error_class,
                error_message=error_message,
            )
            self.stages.append(rec)

        status = "SKIP" if skipped else ("ERR" if error_class else "OK")
        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms calls=%d%s",
            self.trace_id, stage_name, status, rec.elapsed_ms, calls, err_info,
        )

    def record_provider_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        ok: bool = True,
        stage: Optional[str] = None,
    ) -> None:
        if stage is None:
            stage = current_stage()
        rec = ProviderCallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            ok=ok,
            stage=stage,
        )
        with self._lock:
            self.provider_calls.append(rec)
        logger.info(
            "  [provider] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d ok=%s",
            self.trace_id, stage or "-", service, endpoint,
            elapsed_ms, status_code, ok,
        )

    def record_count(self, source: str, count: int) -> None:
        with self._lock:
            self.source_counts[source] = count

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        """Summary suitable for logging and builder debug responses."""
        total_elapsed = int((time.time() - self.request_start) * 1000)
        with self._lock:
            stages = list(self.stages)
            calls = list(self.provider_calls)
            counts = dict(self.source_counts)

        errored = [s for s in stages if s.error_class]
        failed_calls = [c for c in calls if not c.ok]
        if errored:
            outcome = "error"
        elif failed_calls:
            outcome = "degraded"
        else:
            outcome = "success"

        return {
            "trace_id": self.trace_id,
            "operation": self.operation,
            "total_elapsed_ms": total_elapsed,
            "provider_calls": len(calls),
            "provider_failures": len(failed_calls),
            "stages": [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "provider_calls": s.provider_calls,
                    "skipped": s.skipped,
                    "error": (
                        f"{s.error_class}: {s.error_message}"
                        if s.error_class else None
                    ),
                }
                for s in stages
            ],
            "source_counts": counts,
            "final_outcome": outcome,
        }

    def log_summary(self) -> None:
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s op=%s total_ms=%d provider_calls=%d "
            "provider_failures=%d stages=%d counts=%s outcome=%s",
            s["trace_id"],
            s["operation"] or "-",
            s["total_elapsed_ms"],
            s["provider_calls"],
            s["provider_failures"],
            len(s["stages"]),
            s["source_counts"],
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[SearchTrace]:
    """Get the current request's trace, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[SearchTrace]) -> None:
    """Set the trace for the current thread."""
    _trace_local.ctx = ctx


def clear_trace() -> None:
    """Clear the current thread's trace."""
    _trace_local.ctx = None


def enter_stage(name: str) -> None:
    """Mark *name* as the stage running on this thread."""
    _trace_local.stage = name


def exit_stage() -> None:
    _trace_local.stage = ""


def current_stage() -> str:
    return getattr(_trace_local, "stage", "")
