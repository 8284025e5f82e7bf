import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from residuals.core.logging import bind_request_id, reset_request_id

logger = logging.getLogger("residuals.access")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Accepts an incoming request id (or makes one), exposes it on
    request.state and to every log line written while serving the request,
    and echoes it in the response headers.
    """

    def __init__(self, app, header_name: str = "X-Request-Id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = rid
        token = bind_request_id(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)

        response.headers[self.header_name] = rid
        logger.info(
            "request served",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response
