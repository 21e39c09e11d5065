"""
Request-scoped state shared by logging, rate limiting and org resolution.
"""

import logging
import re
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from entry.core.config import settings
from entry.core.rate_limit import client_ip

logger = logging.getLogger(__name__)

# Caller-supplied ids end up in logs, so anything odd is replaced.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def incoming_request_id(headers) -> str:
    candidate = (headers.get("X-Request-ID") or "").strip()
    if candidate and _REQUEST_ID_RE.match(candidate):
        return candidate
    return str(uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Stores request_id, the org header value and the client IP on
    request.state. Dependencies later add org_id once the org is resolved.
    """

    async def dispatch(self, request, call_next):
        request_id = incoming_request_id(request.headers)
        org_hint = (request.headers.get(settings.ORG_HEADER_NAME) or "").strip() or None

        request.state.request_id = request_id
        request.state.org_hint = org_hint
        request.state.org_id = None
        request.state.client_ip = client_ip(request)

        logger.debug(
            "request.start",
            extra={"request_id": request_id, "path": request.url.path, "org_hint": org_hint},
        )
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
