"""
Store Operation Monitoring

Times store operations, keeps per-operation statistics and logs slow ones.

Usage:
    from occurrence_db.monitoring import query_timer, get_store_metrics

    with query_timer("fetch_table"):
        frame = store.fetch_table("occurrence")
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class MonitoringSettings:
    """Thresholds for store operation logging."""
    slow_query_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0
    enable_logging: bool = True


_settings = MonitoringSettings()


def configure_monitoring(
    slow_query_threshold_ms: float = 1000.0,
    warning_threshold_ms: float = 500.0,
    enable_logging: bool = True
) -> None:
    """
    Configure monitoring thresholds.

    Args:
        slow_query_threshold_ms: Log a warning for operations slower than this (ms)
        warning_threshold_ms: Log at INFO for operations slower than this (ms)
        enable_logging: Enable timing log lines
    """
    global _settings
    _settings = MonitoringSettings(
        slow_query_threshold_ms=slow_query_threshold_ms,
        warning_threshold_ms=warning_threshold_ms,
        enable_logging=enable_logging
    )


@dataclass
class OperationStats:
    """Statistics for one kind of store operation."""
    operation: str
    count: int = 0
    total_time_ms: float = 0.0
    max_time_ms: float = 0.0
    errors: int = 0
    slow_operations: int = 0
    last_executed: Optional[datetime] = None

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        self.count += 1
        self.total_time_ms += duration_ms
        self.max_time_ms = max(self.max_time_ms, duration_ms)
        self.last_executed = datetime.now()
        if error:
            self.errors += 1
        if slow:
            self.slow_operations += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'total_time_ms': round(self.total_time_ms, 2),
            'avg_time_ms': round(self.avg_time_ms, 2),
            'max_time_ms': round(self.max_time_ms, 2),
            'errors': self.errors,
            'slow_operations': self.slow_operations,
            'last_executed': self.last_executed.isoformat() if self.last_executed else None
        }


class OperationStatsCollector:
    """Collects OperationStats keyed by operation name."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}

    def record(self, operation: str, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        if operation not in self._stats:
            self._stats[operation] = OperationStats(operation=operation)
        self._stats[operation].record(duration_ms, error, slow)

    def get_stats(self, operation: Optional[str] = None) -> Dict[str, Any]:
        if operation:
            stat = self._stats.get(operation)
            return stat.to_dict() if stat else {}
        return {op: stats.to_dict() for op, stats in self._stats.items()}

    def get_slow_operations(self) -> List[Dict[str, Any]]:
        return [stats.to_dict() for stats in self._stats.values() if stats.slow_operations > 0]

    def reset(self) -> None:
        self._stats.clear()


_collector = OperationStatsCollector()


def get_store_metrics(operation: Optional[str] = None) -> Dict[str, Any]:
    """Statistics for one operation, or for all of them keyed by name."""
    return _collector.get_stats(operation)


def get_slow_operation_report() -> List[Dict[str, Any]]:
    """Operations that had at least one slow execution."""
    return _collector.get_slow_operations()


def reset_metrics() -> None:
    """Reset all collected metrics."""
    _collector.reset()


@contextmanager
def query_timer(operation: str):
    """
    Time a store operation and record it.

    Exceptions are counted as errors and re-raised unchanged.
    """
    start_time = time.perf_counter()
    error_occurred = False

    try:
        yield
    except Exception:
        error_occurred = True
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        is_slow = duration_ms > _settings.slow_query_threshold_ms
        is_warning = duration_ms > _settings.warning_threshold_ms

        _collector.record(operation, duration_ms, error=error_occurred, slow=is_slow)

        if _settings.enable_logging:
            if is_slow:
                logger.warning(
                    f"SLOW OPERATION: {operation} took {duration_ms:.2f}ms "
                    f"(threshold: {_settings.slow_query_threshold_ms}ms)"
                )
            elif is_warning and not error_occurred:
                logger.info(f"Operation {operation} took {duration_ms:.2f}ms")


def timed_query(operation: str):
    """
    Decorator form of query_timer.

    Usage:
        @timed_query("fetch_table")
        def fetch_table(self, name):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with query_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator
