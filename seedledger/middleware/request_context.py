"""
Request Context Middleware.

Binds a request_id (taken from X-Request-ID or generated) into the structlog
context, so settlement and ranking logs of one call can be correlated, and
echoes it back with the response time.

Anything that escapes the routers and the SeedLedgerError handler becomes a
500 in the same ErrorResponse envelope, without internal details.
"""

import time
import traceback
import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from seedledger.config import settings
from seedledger.exceptions import SeedLedgerError

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: request id, timing and the last-resort 500."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "unhandled_exception",
                error=str(exc),
                traceback=traceback.format_exc(),
            )
            error = SeedLedgerError(
                "An internal error occurred. Please try again later.",
                details={"type": type(exc).__name__} if settings.debug else None,
            )
            response = JSONResponse(
                status_code=error.status_code,
                content=error.to_response(request_id).model_dump(),
            )
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"

        logger.info(
            "request_completed",
            status=response.status_code,
            elapsed_ms=elapsed_ms,
        )
        return response
