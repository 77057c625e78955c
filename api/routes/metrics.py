"""
Prometheus Metrics Endpoint for the e-KYC session API.

Exposes request metrics and verification outcome counters in Prometheus
format at /metrics.
"""
import re
import time
import logging
from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)

router = APIRouter()

UUID_SEGMENT = re.compile(r"/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")

REQUEST_COUNT = Counter(
    "ekyc_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "ekyc_request_latency_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Domain counters
SESSIONS_STARTED = Counter(
    "ekyc_sessions_started_total",
    "Sessions started"
)
SESSION_COMPLETIONS = Counter(
    "ekyc_session_completions_total",
    "Completion evaluations by resulting status",
    ["status"]
)
SECURE_VERIFICATIONS = Counter(
    "ekyc_secure_verifications_total",
    "Secure verification outcomes per component",
    ["component", "result"]
)
SECURE_VERIFICATION_LATENCY = Histogram(
    "ekyc_secure_verification_seconds",
    "Time spent in face match, liveness and consistency for one submission",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)


def normalize_endpoint(path: str) -> str:
    """Collapse session / configuration ids so label cardinality stays bounded."""
    return UUID_SEGMENT.sub("/{id}", path)


def record_secure_verification(record) -> None:
    """Count the sub-results of one SecureVerificationRecord."""
    SECURE_VERIFICATIONS.labels("face_match", str(record.face_match.is_match).lower()).inc()
    SECURE_VERIFICATIONS.labels("liveness", str(record.liveness.overall_result).lower()).inc()
    SECURE_VERIFICATIONS.labels(
        "face_consistency", str(record.face_consistency.is_consistent).lower()
    ).inc()
    SECURE_VERIFICATIONS.labels("overall", str(record.overall_result).lower()).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next):
        # Skip metrics collection for /metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        latency = time.time() - start_time

        endpoint = normalize_endpoint(request.url.path)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code
        ).inc()

        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(latency)

        return response


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
