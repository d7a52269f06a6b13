"""Routes chat messages to the websocket connections open on each bean."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class _UserSocket:
    conn: Any
    user_id: int


class Switchboard:
    """Registry of open connections, keyed by pod, bean and connection id.

    A connection is any object with an awaitable ``send_text(str)`` method.
    """

    def __init__(self) -> None:
        self._pods: dict[int, dict[int, dict[str, _UserSocket]]] = {}
        self._lock = threading.Lock()

    def register_user(
        self, pod_id: int, bean_id: int, user_id: int, unique_id: str, conn: Any
    ) -> None:
        """Add ``conn`` for ``user_id`` to the bean under ``unique_id``."""
        with self._lock:
            bean = self._pods.setdefault(pod_id, {}).setdefault(bean_id, {})
            bean[unique_id] = _UserSocket(conn=conn, user_id=user_id)
        logger.info(
            "registered user podID=%s beanID=%s uniqueID=%s", pod_id, bean_id, unique_id
        )

    def unregister_user(self, pod_id: int, bean_id: int, unique_id: str) -> None:
        """Remove the connection registered under ``unique_id``."""
        with self._lock:
            pod = self._pods.get(pod_id)
            if pod is None:
                logger.warning("unregistering user from non-existent pod podID=%s", pod_id)
                return
            bean = pod.get(bean_id)
            if bean is None:
                logger.warning("unregistering user from non-existent bean beanID=%s", bean_id)
                return
            bean.pop(unique_id, None)
        logger.info(
            "unregistered user podID=%s beanID=%s uniqueID=%s", pod_id, bean_id, unique_id
        )

    def _sockets(self, pod_id: int, bean_id: int, action: str) -> list[_UserSocket] | None:
        with self._lock:
            pod = self._pods.get(pod_id)
            if pod is None:
                logger.warning("%s message to non-existent pod podID=%s", action, pod_id)
                return None
            bean = pod.get(bean_id)
            if bean is None:
                logger.warning("%s message to non-existent bean beanID=%s", action, bean_id)
                return None
            return list(bean.values())

    async def _deliver(
        self,
        pod_id: int,
        bean_id: int,
        action: str,
        message: str,
        wanted: Callable[[_UserSocket], bool],
    ) -> None:
        sockets = self._sockets(pod_id, bean_id, action)
        if sockets is None:
            return
        for socket in sockets:
            if not wanted(socket):
                continue
            try:
                await socket.conn.send_text(message)
            except Exception as exc:  # one bad connection must not stop the rest
                logger.error("failed to write message error=%s", exc)

    async def broadcast_message(
        self, pod_id: int, bean_id: int, user_id: int, message: str
    ) -> None:
        """Send ``message`` to every connection in the bean."""
        logger.info(
            "broadcasting message podID=%s beanID=%s userID=%s", pod_id, bean_id, user_id
        )
        await self._deliver(pod_id, bean_id, "broadcasting", message, lambda s: True)

    async def send_message(
        self, pod_id: int, bean_id: int, user_id: int, message: str
    ) -> None:
        """Send ``message`` to every connection of ``user_id`` in the bean."""
        await self._deliver(
            pod_id, bean_id, "sending", message, lambda s: s.user_id == user_id
        )

    async def send_message_to_others(
        self, pod_id: int, bean_id: int, user_id: int, message: str
    ) -> None:
        """Send ``message`` to every connection in the bean not owned by ``user_id``."""
        await self._deliver(
            pod_id, bean_id, "sending", message, lambda s: s.user_id != user_id
        )