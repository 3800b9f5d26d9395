"""ASGI middleware rejecting oversized webhook deliveries."""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


class _BodyTooLarge(Exception):
    pass


class BodySizeLimitMiddleware:
    """Answers 413 when a body exceeds ``max_bytes``.

    A declared Content-Length is checked up front; chunked bodies are counted
    as they are received.
    """

    def __init__(self, app: ASGIApp, max_bytes: int) -> None:
        self.app = app
        self._max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self._max_bytes:
            await self._reject(request, scope, receive, send)
            return

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self._max_bytes:
                    raise _BodyTooLarge
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except _BodyTooLarge:
            if response_started:
                raise
            await self._reject(request, scope, receive, send)

    async def _reject(self, request: Request, scope: Scope, receive: Receive, send: Send) -> None:
        logger.info(
            "Rejected %s %s: body exceeds %d bytes",
            request.method, request.url.path, self._max_bytes,
        )
        response = JSONResponse(
            {"ok": False, "status": 413, "message": "Request body too large"},
            status_code=413,
        )
        await response(scope, receive, send)
