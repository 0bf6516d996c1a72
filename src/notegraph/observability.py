"""Logging setup and per-operation timing for the graph engine.

Tool calls and reference lookups run inside ``timed_operation``; the
resulting counts feed the ``ng_status`` tool.
"""
import functools
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sized, Tuple, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notegraph" / "logs"
LOG_FILE_NAME = "notegraph.log"
LOG_FILE_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

TRACED_KEYS = ("note_id", "edge_id", "owner_id")

F = TypeVar("F", bound=Callable[..., Any])


def _attach(target: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    target.addHandler(handler)


def _has_console_handler(target: logging.Logger) -> bool:
    return any(
        type(handler) is logging.StreamHandler for handler in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    console: bool = True,
) -> Path:
    """Send the ``notegraph`` logger hierarchy to a rotating file.

    The file is ``notegraph.log`` under ``log_dir`` (``~/.notegraph/logs``
    when not given), rolled over at 10 MB with five backups kept. A
    console handler is added at most once.

    Returns:
        The directory holding the log file.
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    engine_logger = logging.getLogger("notegraph")
    engine_logger.setLevel(level)
    _attach(
        engine_logger,
        RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        ),
        level,
    )
    if console and not _has_console_handler(engine_logger):
        _attach(engine_logger, logging.StreamHandler(), level)

    engine_logger.info(f"Writing logs to {log_file}")
    return log_path


@dataclass
class OperationStats:
    """Call counts and timings for one named operation."""

    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class OperationLog:
    """Running totals of engine operations, shared across threads.

    Store calls run on worker threads, so every update takes the lock.
    """

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()
        self._since = datetime.now(timezone.utc)

    def record(self, operation: str, duration_ms: float, error: Optional[str] = None) -> None:
        """Count one call of ``operation``; a non-None ``error`` marks it failed."""
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            if error is not None:
                stats.failures += 1
                stats.last_error = error
                stats.last_error_at = datetime.now(timezone.utc)

    def totals(self) -> Tuple[int, int]:
        """(calls, failures) over every operation."""
        with self._lock:
            return (
                sum(s.calls for s in self._stats.values()),
                sum(s.failures for s in self._stats.values()),
            )

    def busiest(self, limit: int = 5) -> List[Tuple[str, OperationStats]]:
        """Operations with the most calls, as copies safe to read unlocked."""
        with self._lock:
            ranked = sorted(self._stats.items(), key=lambda item: (-item[1].calls, item[0]))
            return [(name, OperationStats(**vars(stats))) for name, stats in ranked[:limit]]

    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._since).total_seconds()

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._since = datetime.now(timezone.utc)


metrics = OperationLog()


@contextmanager
def timed_operation(operation: str, **context):
    """Time the enclosed block and record it under ``operation``.

    Yields a dict the block may fill with result details; they are
    appended to the closing debug line. Exceptions are recorded as
    failures and re-raised.

        with timed_operation("resolve_reference", query=query) as op:
            op["result_count"] = len(candidates.existing)
    """
    trace_id = uuid.uuid4().hex[:8]
    details: Dict[str, object] = {}
    error: Optional[str] = None
    logger.debug(
        f"[{trace_id}] {operation} started "
        + " ".join(f"{key}={value}" for key, value in context.items())
    )
    started = time.perf_counter()
    try:
        yield details
    except Exception as e:
        error = str(e) or type(e).__name__
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record(operation, elapsed_ms, error)
        outcome = "ok" if error is None else f"failed: {error}"
        logger.debug(
            f"[{trace_id}] {operation} {outcome} in {elapsed_ms:.2f}ms "
            + " ".join(f"{key}={value}" for key, value in details.items())
        )


def traced(operation: Optional[str] = None) -> Callable[[F], F]:
    """Run every call of the decorated coroutine inside ``timed_operation``.

    Identifying keyword arguments (``note_id``, ``edge_id``, ``owner_id``)
    go into the start line, and the size of a sized result into the end line.
    """

    def decorator(func: F) -> F:
        name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            context = {key: kwargs[key] for key in TRACED_KEYS if key in kwargs}
            with timed_operation(name, **context) as op:
                result = await func(*args, **kwargs)
                if isinstance(result, Sized):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
