"""Access logging: one JSON line per request, tagged with a request id."""

import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("shipdocs.access")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        # Keep an upstream proxy's id so log lines can be joined across hops
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        start_time = time.perf_counter()

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception:
            log_data.update(status=500, duration_ms=round((time.perf_counter() - start_time) * 1000, 1))
            logger.exception(json.dumps(log_data))
            raise

        log_data.update(
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 1),
        )
        if response.status_code >= 500:
            logger.error(json.dumps(log_data))
        else:
            logger.info(json.dumps(log_data))

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
