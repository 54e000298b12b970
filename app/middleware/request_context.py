"""
RequestContext Middleware - request tracking for every HTTP request.

Adds to request.state:
- request_id: UUID for tracing this request (also bound into the
  structlog context so every log line of the request carries it)
- ip_address: Client IP address
- user_agent: Client user agent string

ip_address and user_agent are recorded with draft review audit events.
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach request id, client IP and user agent; echo X-Request-ID on the response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = self._extract_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            logger.debug(
                "Request started",
                method=request.method,
                path=request.url.path,
                ip_address=request.state.ip_address,
            )
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        Client IP, honouring X-Forwarded-For only when TRUST_X_FORWARDED_FOR
        is enabled and the direct peer is a trusted proxy.
        """
        direct_ip = request.client.host if request.client else None
        if not settings.TRUST_X_FORWARDED_FOR or direct_ip not in settings.TRUSTED_PROXY_IPS:
            return direct_ip

        forwarded_for = request.headers.get("x-forwarded-for")
        if not forwarded_for:
            return direct_ip

        # "client, proxy1, proxy2"
        return forwarded_for.split(",")[0].strip()
