# app/middleware/monitoring.py
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_client import Counter, Histogram, Gauge
import time
from typing import Callable

REQUEST_COUNT = Counter(
    'correlator_http_requests_total',
    'Total HTTP requests handled by the correlation API',
    ['method', 'endpoint', 'status']
)

REQUEST_DURATION = Histogram(
    'correlator_http_request_duration_seconds',
    'HTTP request duration',
    ['method', 'endpoint']
)

ACTIVE_REQUESTS = Gauge(
    'correlator_http_requests_active',
    'Active HTTP requests'
)


def _endpoint_label(request: Request) -> str:
    """Route template when matched (keeps UUID paths out of label values)"""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class MonitoringMiddleware(BaseHTTPMiddleware):
    """
    Prometheus request metrics per method, route and status
    """

    async def dispatch(self, request: Request, call_next: Callable):
        method = request.method
        ACTIVE_REQUESTS.inc()
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            endpoint = _endpoint_label(request)
            REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status_code).inc()
            REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(time.time() - start_time)
            ACTIVE_REQUESTS.dec()
