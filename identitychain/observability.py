"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured logging (JSON or text) carrying request and owner context
- Request middleware that tags each request with an id and times it
- Process-local chain metrics (appends, rejections, verification failures)
- Store health check

Configuration:
- IDENTITYCHAIN_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- IDENTITYCHAIN_LOG_FORMAT: json, text (default: json in production)
- IDENTITYCHAIN_PRODUCTION: Enable production mode

Usage:
    from identitychain.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Block appended", owner_id=owner_id, index=3)

Private keys must never be passed as log fields.
"""

import json
import logging
import os
import sys
import threading
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
owner_id_var: ContextVar[str] = ContextVar("owner_id", default="")

# Attributes every LogRecord carries; anything else came in as a field
_RESERVED_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def _log_level() -> int:
    return _LEVELS.get(os.environ.get("IDENTITYCHAIN_LOG_LEVEL", "INFO").upper(), logging.INFO)


def _use_json_logging() -> bool:
    log_format = os.environ.get("IDENTITYCHAIN_LOG_FORMAT", "").lower()
    if log_format in ("json", "text"):
        return log_format == "json"
    return _env_flag("IDENTITYCHAIN_PRODUCTION")


def _context_fields() -> Dict[str, str]:
    fields = {}
    if request_id_var.get():
        fields["request_id"] = request_id_var.get()
    if owner_id_var.get():
        fields["owner_id"] = owner_id_var.get()
    return fields


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
    }


# ============================================================
# STRUCTURED LOGGING
# ============================================================

class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"timestamp": ..., "level": "INFO", "logger": "identitychain.core.service",
     "message": "Block appended", "request_id": "ab12cd34",
     "owner_id": "user:alice", "index": 3, ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }
        for key, value in _record_fields(record).items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class TextFormatter(logging.Formatter):
    """Human-readable single line with trailing key=value fields."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        request_id = request_id_var.get()
        prefix = f"[{request_id[:8]}] " if request_id else ""

        line = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"
        fields = _record_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that turns keyword arguments into record fields."""

    _PASSTHROUGH = ("exc_info", "stack_info", "stacklevel", "extra")

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.pop("extra", None) or {})
        for key in [k for k in kwargs if k not in self._PASSTHROUGH]:
            extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Get a structured logger for the given name (typically __name__)."""
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure the root logger from the environment.

    Call this once at application startup.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if _use_json_logging() else TextFormatter())

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(_log_level())

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with X-Request-ID (client-supplied or generated),
    records the owner from /chains/{owner_id}/... paths and logs the
    outcome with its duration.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request_id_var.set(request_id)

        segments = request.url.path.strip("/").split("/")
        if len(segments) >= 2 and segments[0] == "chains":
            owner_id_var.set(segments[1])

        logger = get_logger("identitychain.request")
        label = f"{request.method} {request.url.path}"
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"{label} -> 500", duration_ms=_elapsed_ms(start))
            get_metrics().record_request(success=False)
            raise
        else:
            level = logging.INFO if response.status_code < 400 else logging.WARNING
            logger.log(
                level,
                f"{label} -> {response.status_code}",
                status_code=response.status_code,
                duration_ms=_elapsed_ms(start),
            )
            get_metrics().record_request(success=response.status_code < 500)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.set("")
            owner_id_var.set("")


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


# ============================================================
# METRICS
# ============================================================

MAX_LATENCY_SAMPLES = 1000


@dataclass
class MetricsCollector:
    """
    Process-local chain metrics.

    Sync route handlers run on a thread pool, so every update goes
    through a method that holds the collector's lock.
    """

    chains_created: int = 0
    events_appended: int = 0
    append_rejections: int = 0
    verifications: int = 0
    verification_failures: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    append_latencies_ms: list = field(default_factory=list)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        """Add to a named counter."""
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def record_append(self, latency_ms: float) -> None:
        """Record a committed append and its latency."""
        with self._lock:
            self.events_appended += 1
            self.append_latencies_ms.append(latency_ms)
            del self.append_latencies_ms[:-MAX_LATENCY_SAMPLES]

    def record_verification(self, valid: bool) -> None:
        with self._lock:
            self.verifications += 1
            if not valid:
                self.verification_failures += 1

    def record_request(self, success: bool) -> None:
        with self._lock:
            self.requests_total += 1
            if not success:
                self.requests_failed += 1

    def get_summary(self) -> Dict[str, Any]:
        """Counters plus append latency percentiles."""
        with self._lock:
            samples = sorted(self.append_latencies_ms)
            summary = {
                "chains_created": self.chains_created,
                "events_appended": self.events_appended,
                "append_rejections": self.append_rejections,
                "verifications": self.verifications,
                "verification_failures": self.verification_failures,
                "requests_total": self.requests_total,
                "requests_failed": self.requests_failed,
            }

        for label, p in (("p50", 0.5), ("p95", 0.95), ("p99", 0.99)):
            summary[f"append_latency_{label}_ms"] = _percentile(samples, p)
        return summary


def _percentile(samples: list, p: float) -> Optional[float]:
    if not samples:
        return None
    return samples[min(int(len(samples) * p), len(samples) - 1)]


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


def reset_metrics() -> None:
    """Reset the global metrics collector (for testing only)."""
    global _metrics
    _metrics = MetricsCollector()


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(store=None) -> HealthStatus:
    """
    Liveness plus, when a store is given, whether it can be read.

    Args:
        store: ChainStore instance
    """
    start = time.perf_counter()
    checks = {"liveness": {"status": "healthy"}}

    if store is not None:
        try:
            checks["chain_store"] = {
                "status": "healthy",
                "backend": type(store).__name__,
                "chain_count": store.count(),
            }
        except Exception as e:
            checks["chain_store"] = {"status": "unhealthy", "error": str(e)}

    return HealthStatus(
        healthy=all(check["status"] == "healthy" for check in checks.values()),
        checks=checks,
        duration_ms=_elapsed_ms(start),
    )
