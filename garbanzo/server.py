"""Application routing, server start-up and the command entry point."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.datastructures import MutableHeaders
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount, Route, WebSocketRoute, request_response, websocket_session
from starlette.staticfiles import StaticFiles

from . import handlers
from .auth import setup_auth
from .config import Config, load_config
from .database import connect
from .handlers import HandlerEnv
from .middleware import AuthIDMiddleware, RequestLoggerMiddleware
from .pagecache import PageCache
from .queries import Queries
from .session import setup_session_store

logger = logging.getLogger(__name__)


class _NoCache:
    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        async def send_with_header(message: dict) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).append("Cache-Control", "no-cache")
            await send(message)

        await self.app(scope, receive, send_with_header)


def _guarded(endpoint: Any) -> AuthIDMiddleware:
    return AuthIDMiddleware(request_response(endpoint))


def create_app(handler: HandlerEnv, public_dir: str = "public") -> Starlette:
    """Build the web application around ``handler``."""
    routes = [
        Mount(
            "/public",
            app=_NoCache(StaticFiles(directory=public_dir, check_dir=False)),
        ),
        Route("/login", handler.login_view, methods=["GET"]),
        Route("/auth", handlers.auth, methods=["GET"]),
        Route("/auth/callback", handlers.callback, methods=["GET"]),
        Route("/logout", handlers.logout, methods=["GET"]),
        Route("/", _guarded(handler.index_view), methods=["GET", "HEAD"]),
        Route("/user/new", _guarded(handler.new_user_view), methods=["GET", "HEAD"]),
        Route("/user/new", _guarded(handler.new_user), methods=["POST"]),
        Route("/pod/join", _guarded(handler.join_pod), methods=["POST"]),
        Route("/pod/{podID}", _guarded(handler.pod_view), methods=["GET", "HEAD"]),
        WebSocketRoute(
            "/ws/{podID}/{beanID}",
            AuthIDMiddleware(websocket_session(handler.websocket)),
        ),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origin_regex=r"https?://.*",
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Accept", "Authorization", "Content-Type", "X-CSRF-Token"],
            expose_headers=["Link"],
            allow_credentials=True,
            max_age=300,
        ),
        Middleware(RequestLoggerMiddleware),
    ]
    return Starlette(routes=routes, middleware=middleware)


class Server:
    """The database, handlers and application for one configuration."""

    def __init__(self, config: Config) -> None:
        self.db = connect(config.database.database_url)
        self.port = config.server.port
        self.handler = HandlerEnv(config, Queries(self.db), PageCache())
        self.app = create_app(self.handler, "public")

    def run(self) -> None:
        """Serve on all interfaces at the configured port until stopped."""
        logger.info("Starting server on port %s", self.port)
        try:
            uvicorn.run(self.app, host="0.0.0.0", port=int(self.port))
        except Exception as exc:
            logger.error("Error starting server error=%s", exc)

    def close(self) -> None:
        """Release the database connections."""
        self.db.close()


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        info = getattr(record, "request_info", None)
        if isinstance(info, dict):
            entry.update(info)
        return json.dumps(entry)


def main(argv: list[str] | None = None) -> None:
    """Start the chat server from environment configuration."""
    argparse.ArgumentParser(prog="garbanzo", description="Run the chat server.").parse_args(
        argv
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JSONFormatter())
    logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)
    config = load_config()
    setup_session_store(config)
    setup_auth(config)
    server = Server(config)
    try:
        server.run()
    finally:
        server.close()