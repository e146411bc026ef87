# caredispatch/transport/middleware.py
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match
from starlette.types import ASGIApp

from caredispatch.config import settings
from caredispatch.infra.logging_config import LogContext, get_logger
from caredispatch.infra.metrics import inc_counter, observe_histogram
from caredispatch.transport.security import VOLUNTEER_ID_HEADER, SecurityHeaders, sanitize_error_message

logger = get_logger(__name__)


def _route_template(request: Request) -> str:
    """``/complaints/{complaint_id}`` rather than the concrete path, so ids stay out of logs and labels."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return route.path
    return "unmatched"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (incoming X-Request-ID or a fresh uuid4)."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line and one counter per request, labelled by route template.

    The calling volunteer (gateway header, unverified at this point) is
    attached to the log record; query strings and bodies never are.
    """

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        log_ctx = LogContext(
            logger,
            request_id=getattr(request.state, "request_id", None),
            volunteer_id=request.headers.get(VOLUNTEER_ID_HEADER),
        )
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            log_ctx.error(
                f"{request.method} {_route_template(request)} raised {exc.__class__.__name__}",
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        route = _route_template(request)
        log_ctx.info(
            f"{request.method} {route} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra={"status_code": response.status_code, "duration_ms": duration_ms},
        )
        inc_counter("http_requests_total", method=request.method, route=route, status=str(response.status_code))
        observe_histogram("http_request_duration_ms", duration_ms, route=route)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        return SecurityHeaders.add_security_headers(await call_next(request))


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last line of defence: anything that escaped the routes becomes a JSON 500."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                f"Unhandled {exc.__class__.__name__} on {request.method} {_route_template(request)}",
                extra={"request_id": request_id},
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": sanitize_error_message(exc, settings.is_production),
                    "request_id": request_id,
                },
            )
