"""Request-id middleware and domain exception translation for the HTTP layer."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse

from clawhuddle.core.logging import (
    TRACE_LEVEL,
    get_logger,
    reset_request_id,
    reset_request_route_context,
    set_request_id,
    set_request_route_context,
)
from clawhuddle.services.gateways.exceptions import GatewayError

if TYPE_CHECKING:
    from fastapi import FastAPI
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-Id"
_REQUEST_ID_HEADER_BYTES = REQUEST_ID_HEADER.lower().encode("latin-1")

logger = get_logger(__name__)


class RequestIdMiddleware:
    """Attach a request id to every HTTP request, response and log record."""

    def __init__(self, app: ASGIApp) -> None:
        self._app = app

    @staticmethod
    def _incoming_request_id(scope: Scope) -> str | None:
        for key, value in scope.get("headers") or []:
            if key.lower() == _REQUEST_ID_HEADER_BYTES:
                candidate = value.decode("latin-1").strip()
                return candidate or None
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self._app(scope, receive, send)
            return

        request_id = self._incoming_request_id(scope) or uuid4().hex
        scope.setdefault("state", {})["request_id"] = request_id
        method = scope.get("method")
        path = scope.get("path")
        id_token = set_request_id(request_id)
        route_tokens = set_request_route_context(method, path)
        started = time.monotonic()
        status_code = 500

        logger.log(TRACE_LEVEL, "http.request.start", extra={"method": method, "path": path})

        async def _send(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = list(message.get("headers") or [])
                if not any(key.lower() == _REQUEST_ID_HEADER_BYTES for key, _ in headers):
                    headers.append((_REQUEST_ID_HEADER_BYTES, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self._app(scope, receive, _send)
        finally:
            extra: dict[str, Any] = {
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": int((time.monotonic() - started) * 1000),
            }
            if status_code >= 500:
                logger.error("http.request.complete", extra=extra)
            elif status_code >= 400:
                logger.warning("http.request.complete", extra=extra)
            else:
                logger.debug("http.request.complete", extra=extra)
            reset_request_route_context(route_tokens)
            reset_request_id(id_token)


async def _gateway_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, GatewayError):
        raise exc
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers={REQUEST_ID_HEADER: request_id} if request_id else None,
    )


def install_error_handling(app: FastAPI) -> None:
    """Register the request-id middleware and the gateway error translation."""
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(GatewayError, _gateway_error_handler)
