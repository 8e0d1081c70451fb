"""
Performance monitoring and metrics collection.
"""
import time
import inspect
import logging
import threading
from collections import defaultdict
from functools import wraps
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_SAMPLES_PER_METRIC = 1000

_metrics_lock = threading.Lock()
_metrics: Dict[str, List[Dict[str, Any]]] = defaultdict(list)


class PerformanceMonitor:
    """In-process timing store for tracked operations."""

    @staticmethod
    def record_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None):
        """Record one duration sample (seconds) for `name`."""
        with _metrics_lock:
            samples = _metrics[name]
            samples.append({
                'value': value,
                'timestamp': time.time(),
                'metadata': metadata or {}
            })
            if len(samples) > MAX_SAMPLES_PER_METRIC:
                del samples[:-MAX_SAMPLES_PER_METRIC]

    @staticmethod
    def _stats(samples: List[Dict[str, Any]]) -> Optional[Dict[str, float]]:
        if not samples:
            return None
        values = sorted(s['value'] for s in samples)
        errors = sum(1 for s in samples if s['metadata'].get('status') == 'error')
        return {
            'count': len(values),
            'errors': errors,
            'min': values[0],
            'max': values[-1],
            'mean': sum(values) / len(values),
            'p50': values[len(values) // 2],
            'p95': values[min(int(len(values) * 0.95), len(values) - 1)],
        }

    @staticmethod
    def get_stats(metric_name: str) -> Optional[Dict[str, float]]:
        with _metrics_lock:
            return PerformanceMonitor._stats(list(_metrics.get(metric_name, [])))

    @staticmethod
    def get_all_metrics() -> Dict[str, Dict[str, float]]:
        with _metrics_lock:
            snapshot = {name: list(samples) for name, samples in _metrics.items()}
        return {name: PerformanceMonitor._stats(samples) for name, samples in snapshot.items()}

    @staticmethod
    def clear_metrics():
        """Clear all metrics (useful for testing)."""
        with _metrics_lock:
            _metrics.clear()


def _finish(metric_name: str, start_time: float, error: Optional[BaseException] = None):
    duration = time.time() - start_time
    if error is None:
        PerformanceMonitor.record_metric(metric_name, duration, {'status': 'success'})
        logger.debug(
            f"{metric_name} completed in {duration:.3f}s",
            extra={'metric': metric_name, 'duration': duration}
        )
    else:
        PerformanceMonitor.record_metric(metric_name, duration, {'status': 'error', 'error': str(error)})
        logger.warning(
            f"{metric_name} failed after {duration:.3f}s: {error}",
            extra={'metric': metric_name, 'duration': duration}
        )


def track_performance(metric_name: str):
    """
    Decorator that records how long a sync or async function takes.

    Usage:
        @track_performance("build_profile")
        def build_profile(...):
            ...
    """
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _finish(metric_name, start_time, e)
                    raise
                _finish(metric_name, start_time)
                return result
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _finish(metric_name, start_time, e)
                raise
            _finish(metric_name, start_time)
            return result
        return sync_wrapper

    return decorator
