"""ASGI middleware: session identity check and request logging."""

from __future__ import annotations

import logging
import time
from typing import Any

from starlette.datastructures import Headers
from starlette.requests import HTTPConnection
from starlette.responses import Response
from starlette.websockets import WebSocket

from . import session
from .requestctx import set_auth_id
from .session import SessionError

logger = logging.getLogger(__name__)

CONTEXT_KEY = "garbanzo.ctx"


class AuthIDMiddleware:
    """Requires a signed-in identity; stores its auth id in the request context."""

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return
        try:
            auth_id = session.get_auth_id(HTTPConnection(scope))
        except SessionError:
            if scope["type"] == "websocket":
                await WebSocket(scope, receive, send).close(code=1008)
            else:
                response = Response(status_code=307, headers={"Location": "/login"})
                await response(scope, receive, send)
            return
        scope[CONTEXT_KEY] = set_auth_id(scope.get(CONTEXT_KEY, {}), auth_id)
        await self.app(scope, receive, send)


class RequestLoggerMiddleware:
    """Logs method, path, host, client, status, size and duration of each request."""

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        started = time.perf_counter()
        status = 0
        size = 0

        async def tracking_send(message: dict) -> None:
            nonlocal status, size
            if message["type"] == "http.response.start":
                status = message["status"]
            elif message["type"] == "http.response.body":
                size += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, tracking_send)
        finally:
            query = scope.get("query_string", b"").decode("latin-1")
            path = scope.get("path", "") + (f"?{query}" if query else "")
            client = scope.get("client")
            info = {
                "method": scope.get("method", ""),
                "path": path,
                "host": Headers(scope=scope).get("host", ""),
                "request_ip": f"{client[0]}:{client[1]}" if client else "",
                "status": status,
                "bytes": size,
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            }
            logger.info("Request Info", extra={"request_info": info})