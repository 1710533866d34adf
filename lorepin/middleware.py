"""FastAPI middleware utilities for request tracing and logging"""
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import set_correlation_id, get_logger

logger = get_logger(__name__)

REQUEST_COUNT = Counter(
    'lorepin_cms_requests_total', 'Total requests', ['method', 'endpoint', 'status']
)
REQUEST_DURATION = Histogram(
    'lorepin_cms_request_duration_seconds', 'Request duration', ['method', 'endpoint']
)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests for tracing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID")
        if not correlation_id:
            correlation_id = str(uuid.uuid4())

        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        response.headers["X-Correlation-ID"] = correlation_id

        # Route template keeps the label cardinality bounded
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        REQUEST_COUNT.labels(request.method, endpoint, str(response.status_code)).inc()
        REQUEST_DURATION.labels(request.method, endpoint).observe(process_time)

        logger.info(
            f"{request.method} {request.url.path} completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "process_time": round(process_time, 4),
                "correlation_id": correlation_id
            }
        )

        return response


def add_middleware(app: FastAPI) -> None:
    """Add standard middleware to FastAPI app"""
    app.add_middleware(CorrelationMiddleware)
    logger.info("Standard middleware added to FastAPI app")
