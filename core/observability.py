"""
Logging, correlation ids and in-process metrics.

Every log line carries the id of the HTTP request or sync job that produced
it. Background jobs open their own scope::

    with correlation_context(job_id), log_context(store_id=store_id):
        logger.info("Sync started")
"""
import asyncio
import functools
import logging
import time
import uuid
from collections import Counter, deque
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional

import orjson

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_log_fields: ContextVar[Dict[str, Any]] = ContextVar("log_fields", default={})

# Built-in LogRecord attributes; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "apscheduler", "watchfiles")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


class correlation_context:
    """Scope a correlation id (a fresh one when none is given)."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token = None

    def __enter__(self) -> str:
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *exc):
        _correlation_id.reset(self._token)


class log_context:
    """Attach fields such as ``store_id`` to every record logged in the block."""

    def __init__(self, **fields):
        self.fields = fields
        self._token = None

    def __enter__(self):
        merged = dict(_log_fields.get())
        merged.update(self.fields)
        self._token = _log_fields.set(merged)
        return self

    def __exit__(self, *exc):
        _log_fields.reset(self._token)


def _context_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = dict(_log_fields.get())
    for key, value in vars(record).items():
        if key not in _RECORD_ATTRS and not key.startswith("_"):
            fields[key] = value
    return fields


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _utc_now().strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        cid = get_correlation_id()
        if cid:
            entry["correlation_id"] = cid
        entry.update(_context_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode()


class HumanReadableFormatter(logging.Formatter):
    """``2026-01-10 14:30:00 - INFO     - core.scheduler [1a2b3c4d] - message | {fields}``"""

    def format(self, record: logging.LogRecord) -> str:
        cid = get_correlation_id()
        line = "{} - {:8} - {}{} - {}".format(
            _utc_now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
            record.name,
            f" [{cid}]" if cid else "",
            record.getMessage(),
        )
        fields = _context_fields(record)
        if fields:
            line = f"{line} | {fields}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "INFO", json_format: bool = False, include_libs: bool = False) -> None:
    """Install a single stderr handler on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not include_libs:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMING
# ═══════════════════════════════════════════════════════════════════════════════

def _log_duration(logger: logging.Logger, name: str, elapsed_ms: float, warn_threshold_ms: float) -> None:
    level = logging.WARNING if elapsed_ms > warn_threshold_ms else logging.DEBUG
    logger.log(level, f"{name} completed", extra={"duration_ms": round(elapsed_ms, 2)})


class Timer:
    """
    Measure a block; ``elapsed_ms`` is set on exit.

    With a logger, the duration is logged at DEBUG, or WARNING past
    ``warn_threshold_ms``.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None, warn_threshold_ms: float = 1000):
        self.name = name
        self.logger = logger
        self.warn_threshold_ms = warn_threshold_ms
        self.elapsed_ms: float = 0
        self._started: float = 0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc):
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        if self.logger:
            _log_duration(self.logger, self.name, self.elapsed_ms, self.warn_threshold_ms)


def timed(name: Optional[str] = None, warn_threshold_ms: float = 1000):
    """Decorate a coroutine function so each call lands in ``metrics`` timings."""

    def decorator(func: Callable) -> Callable:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"timed() expects an async function, got {func!r}")
        operation = name or func.__name__
        func_logger = get_logger(func.__module__)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed_ms = (time.perf_counter() - started) * 1000
                metrics.record_timing(operation, elapsed_ms)
                _log_duration(func_logger, operation, elapsed_ms, warn_threshold_ms)

        return wrapper

    return decorator


# ═══════════════════════════════════════════════════════════════════════════════
# METRICS
# ═══════════════════════════════════════════════════════════════════════════════

class MetricsCollector:
    """
    Process-local counters behind ``/api/metrics``.

    Keeps request and error counts, sync job outcomes keyed
    ``"<data_type>:<status>"`` and the last ``max_samples`` timings per
    operation. Nothing is persisted; a restart starts from zero.
    """

    def __init__(self, max_samples: int = 100):
        self._max_samples = max_samples
        self._requests: Counter = Counter()
        self._errors: Counter = Counter()
        self._syncs: Counter = Counter()
        self._timings: Dict[str, Deque[float]] = {}

    def record_request(self, endpoint: str) -> None:
        self._requests[endpoint] += 1

    def record_error(self, error_type: str) -> None:
        self._errors[error_type] += 1

    def record_timing(self, operation: str, duration_ms: float) -> None:
        samples = self._timings.get(operation)
        if samples is None:
            samples = self._timings[operation] = deque(maxlen=self._max_samples)
        samples.append(duration_ms)

    def record_sync(self, data_type: str, status: str, duration_ms: float) -> None:
        self._syncs[f"{data_type}:{status}"] += 1
        self.record_timing(f"sync_{data_type}", duration_ms)

    @staticmethod
    def _summarize(samples: Deque[float]) -> Dict[str, Any]:
        ordered = sorted(samples)
        n = len(ordered)
        return {
            "count": n,
            "avg_ms": round(sum(ordered) / n, 2),
            "min_ms": round(ordered[0], 2),
            "max_ms": round(ordered[-1], 2),
            "p50_ms": round(ordered[n // 2], 2),
            # too few samples for a meaningful tail
            "p95_ms": round(ordered[int(n * 0.95)], 2) if n >= 20 else None,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "requests": dict(self._requests),
            "errors": dict(self._errors),
            "syncs": dict(self._syncs),
            "timing": {op: self._summarize(s) for op, s in self._timings.items() if s},
        }

    def reset(self) -> None:
        for bucket in (self._requests, self._errors, self._syncs, self._timings):
            bucket.clear()


metrics = MetricsCollector()
