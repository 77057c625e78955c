"""
Request ID Middleware for the e-KYC session API.

Takes the caller's X-Request-ID (or generates a UUID) and:
1. Attaches it to request.state for use in handlers
2. Exposes it to the logging filter so every log line carries it
3. Echoes it back in the X-Request-ID response header
"""
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from utils.logging_config import transaction_id_var


logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to generate and propagate request IDs."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        token = transaction_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            transaction_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Helper to get request ID from request state."""
    return getattr(request.state, "request_id", "unknown")
