"""
Custom middleware for request tracing, timeouts and performance monitoring.
"""
import uuid
import asyncio
import logging
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from fastapi import status
from fastapi.responses import JSONResponse
from datastory.core.errors import ErrorCodes, get_error_response
from datastory.core.performance import PerformanceMonitor

logger = logging.getLogger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Tag every request, log record and response with a correlation ID."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        old_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            record.correlation_id = correlation_id
            return record

        logging.setLogRecordFactory(record_factory)

        start_time = time.time()
        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={"method": request.method, "path": request.url.path}
        )

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id

            duration = time.time() - start_time
            PerformanceMonitor.record_metric(
                "request_duration",
                duration,
                {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code
                }
            )
            response.headers["X-Response-Time"] = f"{duration:.3f}"

            logger.info(
                f"Request completed: {request.method} {request.url.path} - {response.status_code} ({duration:.3f}s)",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration": duration
                }
            )
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {request.url.path} - {str(e)} ({duration:.3f}s)",
                extra={"method": request.method, "path": request.url.path, "duration": duration},
                exc_info=True
            )
            error_info = get_error_response(ErrorCodes.UNKNOWN_ERROR)
            error_info["correlation_id"] = correlation_id
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=error_info,
                headers={"X-Correlation-ID": correlation_id}
            )

        finally:
            logging.setLogRecordFactory(old_factory)


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 when a request runs longer than `timeout_seconds`."""

    def __init__(self, app, timeout_seconds: float):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            correlation_id = getattr(request.state, "correlation_id", "unknown")
            logger.error(f"Request timeout after {self.timeout_seconds} seconds: {request.url.path}")
            error_info = get_error_response(ErrorCodes.TIMEOUT)
            error_info["correlation_id"] = correlation_id
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content=error_info,
                headers={"X-Correlation-ID": correlation_id}
            )
