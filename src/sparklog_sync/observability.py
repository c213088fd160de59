"""Logging and metrics for the Sparklog sync engine.

Two kinds of metrics are kept. Timed operations (``save_draft``,
``merge_with_snapshot``, remote and snapshot calls) record duration and
outcome through ``traced``/``atraced``. Sync events (catch-up probe
results, retired and expired drafts, settled builds) are plain counters
bumped with ``record_event``. Both persist to one JSON file.
"""
import functools
import json
import logging
import re
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".sparklog" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".sparklog" / "metrics.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Sync event names
CATCHUP_HIT = "catchup_hit"
CATCHUP_MISS = "catchup_miss"
CATCHUP_UNAVAILABLE = "catchup_unavailable"
DRAFT_RETIRED = "draft_retired"
DRAFT_EXPIRED = "draft_expired"
BUILD_COMPLETED = "build_completed"
BUILD_FAILED = "build_failed"

F = TypeVar("F", bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Send the ``sparklog_sync`` logger tree to a rotating log file.

    Args:
        log_dir: Directory for ``sparklog-sync.log``. Defaults to ~/.sparklog/logs/
        level: Level for the package logger and its handlers
        max_bytes: Size at which the file rotates
        backup_count: Rotated files to keep
        console: Also log to stderr, unless a stream handler is attached already

    Returns:
        The log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("sparklog_sync")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = [
        RotatingFileHandler(
            log_path / "sparklog-sync.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    has_console = any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )
    if console and not has_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    package_logger.debug(f"Logging to {log_path}")
    return log_path


def _sanitize_error_message(
    message: Optional[str], max_length: int = 200
) -> Optional[str]:
    """Make an error message safe to persist in metrics.

    Replaces the home directory with ``~``, collapses whitespace and
    truncates to ``max_length`` characters (ending in ``...``).
    """
    if message is None:
        return None
    home = str(Path.home())
    if home and home != "/":
        message = message.replace(home, "~")
    message = re.sub(r"\s+", " ", message).strip()
    if len(message) > max_length:
        message = message[: max_length - 3] + "..."
    return message


@dataclass
class OperationStats:
    """Duration and outcome totals for one traced operation."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[str] = None

    def add(self, duration_ms: float, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if error is None:
            self.success_count += 1
        else:
            self.error_count += 1
            self.last_error = _sanitize_error_message(error)
            self.last_error_time = datetime.now(timezone.utc).isoformat()

    def summary(self) -> Dict[str, Any]:
        avg = self.total_duration_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "avg_duration_ms": round(avg, 2),
            "min_duration_ms": round(self.min_duration_ms or 0.0, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "last_error": self.last_error,
            "last_error_time": self.last_error_time,
        }


class MetricsCollector:
    """Operation timings and sync event counters, persisted as JSON.

    Writes to disk on ``save_metrics`` and every ``auto_save_interval``
    recorded operations (0 disables auto-save).
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 100,
        load_existing: bool = True,
    ):
        self._operations: Dict[str, OperationStats] = {}
        self._events: Counter = Counter()
        self._lock = Lock()
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0
        if load_existing:
            self._load()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            stats = self._operations.setdefault(operation, OperationStats())
            stats.add(duration_ms, None if success else (error or "unknown error"))
            self._unsaved += 1
            if self._auto_save_interval > 0 and self._unsaved >= self._auto_save_interval:
                self._write()

    def increment(self, event: str, by: int = 1) -> None:
        with self._lock:
            self._events[event] += by

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation summaries, keyed by operation name."""
        with self._lock:
            return {name: stats.summary() for name, stats in self._operations.items()}

    def get_events(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._events)

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._events.clear()
            self._unsaved = 0

    def save_metrics(self) -> bool:
        with self._lock:
            return self._write()

    def _load(self) -> None:
        if not self._metrics_file.exists():
            return
        try:
            data = json.loads(self._metrics_file.read_text(encoding="utf-8"))
            for name, fields in data.get("operations", {}).items():
                self._operations[name] = OperationStats(**fields)
            self._events.update(data.get("events", {}))
        except (OSError, json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable metrics file {self._metrics_file}: {e}")
            self._operations.clear()
            self._events.clear()

    def _write(self) -> bool:
        data = {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": {name: asdict(s) for name, s in self._operations.items()},
            "events": dict(self._events),
        }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._metrics_file.with_suffix(".tmp")
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        self._unsaved = 0
        return True


metrics = MetricsCollector()


def record_event(event: str, by: int = 1) -> None:
    """Bump a sync event counter on the global collector."""
    metrics.increment(event, by)


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log start and end at DEBUG.

    Yields a dict the block can fill with result details for the end line.

    Example:
        with timed_operation('merge_with_snapshot', drafts=3) as op:
            merged = merge()
            op['result_count'] = len(merged)
    """
    correlation_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {}
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    start = time.perf_counter()
    error_msg = None
    try:
        yield details
    except Exception as e:
        error_msg = str(e) or type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_operation(operation, duration_ms, error_msg is None, error_msg)
        outcome = "OK" if error_msg is None else f"ERROR: {error_msg}"
        detail_str = ", ".join(f"{k}={v}" for k, v in details.items())
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [{outcome}] {detail_str}"
        )


def _trace_context(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    for name in ("note_id", "path"):
        if name in kwargs:
            return {name: kwargs[name]}
    return {}


def _record_result(op: Dict[str, Any], result: Any) -> None:
    if hasattr(result, "__len__"):
        op["result_count"] = len(result)
    elif result is not None:
        op["has_result"] = True


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Trace a synchronous function with ``timed_operation``."""

    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with timed_operation(op_name, **_trace_context(kwargs)) as op:
                result = func(*args, **kwargs)
                _record_result(op, result)
                return result

        return wrapper  # type: ignore

    return decorator


def atraced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Trace a coroutine function with ``timed_operation``.

    Example:
        @atraced('merge_with_snapshot')
        async def merge_with_snapshot(self, snapshot_notes): ...
    """

    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with timed_operation(op_name, **_trace_context(kwargs)) as op:
                result = await func(*args, **kwargs)
                _record_result(op, result)
                return result

        return wrapper  # type: ignore

    return decorator
