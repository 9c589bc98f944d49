"""Middleware: CORS headers on every response."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.datastructures import MutableHeaders

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS, GET",
    "Access-Control-Allow-Headers": "Content-Type, X-Filename, X-Max-Dimension",
}


class CORSHeadersMiddleware:
    """Stamp the CORS headers onto every HTTP response, error responses included.

    Unlike Starlette's ``CORSMiddleware`` this never answers pre-flight
    requests itself, so ``OPTIONS`` reaches the route and gets its 204.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.update(CORS_HEADERS)
            await send(message)

        await self.app(scope, receive, send_with_cors)
