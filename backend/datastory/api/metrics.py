"""
Metrics endpoint for performance monitoring.
"""
from fastapi import APIRouter
from datastory.core.performance import PerformanceMonitor

router = APIRouter()


@router.get("/metrics")
async def get_metrics():
    """Timing statistics for every tracked operation and for requests."""
    return {'performance': PerformanceMonitor.get_all_metrics()}
