"""HTTP and websocket handlers for the chat application."""

from __future__ import annotations

import enum
import fnmatch
import json
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.websockets import WebSocket

from . import ksuid, session
from .auth import begin_auth, complete_user_auth
from .config import Config
from .middleware import CONTEXT_KEY
from .pagecache import PageCache
from .requestctx import get_auth_id
from .session import SessionError
from .switchboard import Switchboard

logger = logging.getLogger(__name__)

MAX_CONTENT_BYTES = 2048
_INT_PATTERN = re.compile(r"[+-]?\d+")
_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = (1 << 64) - 1


class MessageAction(str, enum.Enum):
    """What a rendered message fragment does to the client's message list."""

    NEW = "new"
    EDIT = "edit"
    DELETE = "delete"


@dataclass
class MessageData:
    """A message as handed to the templates."""

    author_avatar_url: str = ""
    author_id: int = 0
    author_username: str = ""
    author_user_color: str = ""
    content: str = ""
    created_at: datetime | str | None = None
    id: str = ""
    action: MessageAction = MessageAction.NEW
    editable: bool = False

    @classmethod
    def _from_json(cls, data: dict[str, Any]) -> MessageData:
        created = data.get("created_at")
        if isinstance(created, str):
            try:
                created = datetime.fromisoformat(created)
            except ValueError:
                pass
        action = data.get("action") or MessageAction.NEW.value
        return cls(
            author_avatar_url=data.get("author_avatar_url") or "",
            author_id=int(data.get("author_id") or 0),
            author_username=data.get("author_username") or "",
            author_user_color=data.get("author_user_color") or "",
            content=data.get("content") or "",
            created_at=created,
            id=str(data.get("id") or ""),
            action=MessageAction(action),
            editable=bool(data.get("editable", False)),
        )


@dataclass
class BeanWithMessages:
    """A bean with its pod and its messages, ready for rendering."""

    id: int
    name: str
    pod_id: int
    pod_name: str
    messages: list[MessageData] = field(default_factory=list)


def create_user_color(username: str) -> str:
    """Return a six-digit hex colour derived deterministically from ``username``."""
    digest = _FNV_OFFSET
    for byte in username.encode("utf-8"):
        digest = ((digest ^ byte) * _FNV_PRIME) & _MASK64
    number = random.Random(digest).randrange(16777215)
    return f"{number:06x}"


def redirect(path: str) -> Response:
    """Return a temporary redirect to ``path``."""
    return Response(status_code=307, headers={"Location": path})


def _parse_int64(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text or ""):
        raise ValueError(f"invalid syntax: {text!r}")
    value = int(text)
    if not -(1 << 63) <= value < 1 << 63:
        raise ValueError(f"value out of range: {text!r}")
    return value


def _request_ctx(request: Any) -> dict[str, Any]:
    return request.scope.get(CONTEXT_KEY, {})


def _remember_user(request: Request, response: Response, user_id: int) -> None:
    try:
        session.set_user_id(request, response, user_id)
    except SessionError as exc:
        logger.warning("failed to store user id in session error=%s", exc)


class HandlerEnv:
    """Handlers sharing the queries, templates and websocket switchboard."""

    def __init__(
        self, config: Config, queries: Any, page_cache: PageCache | None = None
    ) -> None:
        self.query = queries
        self.pc = page_cache if page_cache is not None else PageCache()
        self.switchboard = Switchboard()
        host = config.server.host
        self.origins = [
            "http://localhost:8080",
            f"https://{host}",
            f"https://www.{host}",
        ]

    async def index_view(self, request: Request) -> Response:
        """GET /: the user's pods, or the join page when there are none."""
        auth_id = get_auth_id(_request_ctx(request))
        if auth_id is None:
            return redirect("/login")
        try:
            user = await run_in_threadpool(self.query.get_user_by_auth_id, auth_id)
        except Exception:
            return redirect("/user/new")
        try:
            pods = await run_in_threadpool(self.query.list_pods_for_user, user.id)
        except Exception as exc:
            logger.error("failed to get pods for user error=%s", exc)
            return Response(status_code=500)
        if pods:
            response = self.pc.render("pods.html", pods)
        else:
            response = self.pc.render("join_pod.html", None)
        _remember_user(request, response, user.id)
        return response

    async def login_view(self, request: Request) -> Response:
        """GET /login."""
        return self.pc.render("login.html", None)

    async def new_user_view(self, request: Request) -> Response:
        """GET /user/new."""
        return self.pc.render("new_user.html", None)

    async def new_user(self, request: Request) -> Response:
        """POST /user/new: create the local user for the signed-in identity."""
        if request.method == "GET":
            return redirect("/")
        form = await request.form()
        username = form.get("username") or ""
        if not username:
            return Response(status_code=400)
        try:
            auth_id = session.get_auth_id(request)
        except SessionError as exc:
            logger.error("failed to get authID error=%s", exc)
            return Response(status_code=500)
        try:
            email = session.get_email(request)
        except SessionError as exc:
            logger.error("failed to get email error=%s", exc)
            return Response(status_code=500)
        try:
            user = await run_in_threadpool(
                self.query.create_user,
                username,
                email,
                auth_id,
                None,
                create_user_color(username),
            )
        except Exception as exc:
            logger.error("failed to create user error=%s", exc)
            return Response(status_code=500)
        response = Response(headers={"HX-Location": "/"})
        _remember_user(request, response, user.id)
        return response

    async def join_pod(self, request: Request) -> Response:
        """POST /pod/join: join the pod holding the submitted invite code."""
        form = await request.form()
        invite_code = form.get("invite") or ""
        try:
            user_id = session.get_user_id(request)
        except SessionError:
            return redirect("/login")
        try:
            pod = await run_in_threadpool(self.query.get_pod_by_invite_code, invite_code)
        except Exception as exc:
            logger.error("failed to get pod by invite code error=%s", exc)
            return Response(status_code=500)
        try:
            await run_in_threadpool(self.query.add_pod_member, user_id, pod.id)
        except Exception as exc:
            return PlainTextResponse(str(exc), status_code=500)
        return Response(headers={"HX-Location": "/"})

    async def pod_view(self, request: Request) -> Response:
        """GET /pod/{podID}: the first bean of the pod with its messages."""
        try:
            pod_id = _parse_int64(request.path_params.get("podID", ""))
        except ValueError as exc:
            return PlainTextResponse(str(exc), status_code=400)
        try:
            user_id = session.get_user_id(request)
        except SessionError:
            return redirect("/login")
        try:
            member = await run_in_threadpool(self.query.check_user_in_pod, user_id, pod_id)
        except Exception:
            member = False
        if not member:
            return redirect("/")
        try:
            rows = await run_in_threadpool(self.query.list_beans_for_pod_full, pod_id)
            beans = [
                BeanWithMessages(
                    id=row.id,
                    name=row.name,
                    pod_id=row.pod_id,
                    pod_name=row.pod_name,
                    messages=[MessageData._from_json(m) for m in row.messages],
                )
                for row in rows
            ]
        except Exception as exc:
            logger.error("failed to load beans error=%s", exc)
            return PlainTextResponse(str(exc), status_code=500)
        if not beans:
            return PlainTextResponse("pod has no beans", status_code=500)
        bean = beans[0]
        for message in bean.messages:
            message.editable = message.author_id == user_id
        return self.pc.render("bean.html", bean)

    def _origin_allowed(self, websocket: WebSocket) -> bool:
        origin = websocket.headers.get("origin")
        if not origin:
            return True
        parts = urlsplit(origin)
        if parts.netloc.lower() == websocket.headers.get("host", "").lower():
            return True
        target = f"{parts.scheme}://{parts.netloc}".lower()
        return any(fnmatch.fnmatchcase(target, p.lower()) for p in self.origins)

    async def websocket(self, websocket: WebSocket) -> None:
        """WS /ws/{podID}/{beanID}: store posted messages and fan them out."""
        try:
            pod_id = _parse_int64(websocket.path_params.get("podID", ""))
            bean_id = _parse_int64(websocket.path_params.get("beanID", ""))
        except ValueError:
            await websocket.close(code=1008)
            return
        try:
            user_id = session.get_user_id(websocket)
        except SessionError:
            await websocket.close(code=1008)
            return
        try:
            member = await run_in_threadpool(self.query.check_user_in_pod, user_id, pod_id)
        except Exception:
            member = False
        if not member or not self._origin_allowed(websocket):
            await websocket.close(code=1008)
            return

        await websocket.accept()
        unique_id = ksuid.new()
        self.switchboard.register_user(pod_id, bean_id, user_id, unique_id, websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await self._handle_incoming(pod_id, bean_id, user_id, raw)
        finally:
            self.switchboard.unregister_user(pod_id, bean_id, unique_id)

    async def _handle_incoming(
        self, pod_id: int, bean_id: int, user_id: int, raw: str | bytes
    ) -> None:
        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.error("failed to unmarshal message error=%s", exc)
            return
        if not isinstance(data, dict):
            return
        content = data.get("content")
        if not isinstance(content, str):
            return
        if not 0 < len(content.encode("utf-8")) <= MAX_CONTENT_BYTES:
            return
        try:
            row = await run_in_threadpool(
                self.query.create_message, ksuid.new(), bean_id, user_id, content
            )
        except Exception as exc:
            logger.error("failed to create message error=%s", exc)
            return

        def fragment(editable: bool) -> str:
            return self.pc.fragment_string(
                "message.html",
                MessageData(
                    id=row.id,
                    content=row.content,
                    author_username=row.author_username,
                    author_user_color=row.author_user_color,
                    author_id=row.author_id,
                    created_at=row.created_at,
                    action=MessageAction.NEW,
                    editable=editable,
                ),
            )

        await self.switchboard.send_message_to_others(
            pod_id, bean_id, user_id, fragment(False)
        )
        await self.switchboard.send_message(pod_id, bean_id, user_id, fragment(True))


async def logout(request: Request) -> Response:
    """GET /logout: expire the session and go to the login page."""
    response = redirect("/login")
    try:
        session.logout(request, response)
    except SessionError as exc:
        logger.warning("failed to log out error=%s", exc)
    return response


async def auth(request: Request) -> Response:
    """GET /auth: start sign-in with the provider."""
    return begin_auth(request)


async def callback(request: Request) -> Response:
    """GET /auth/callback: finish sign-in and remember the identity."""
    try:
        user = await complete_user_auth(request)
    except Exception as exc:
        logger.error("failed to complete user auth error=%s", exc)
        return Response(status_code=500)
    try:
        sess = session.get_session(request)
    except SessionError as exc:
        logger.error("failed to get session error=%s", exc)
        return Response(status_code=500)
    sess.values["authID"] = user.user_id
    sess.values["email"] = user.email
    response = redirect("/")
    try:
        session.get_session_store().save(response, sess)
    except SessionError as exc:
        logger.error("failed to save session error=%s", exc)
        return Response(status_code=500)
    return response