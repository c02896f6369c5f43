from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Final

logger = logging.getLogger(__name__)

MESSAGE_APPENDED: Final[str] = "message-appended"
STATUS_CHANGED: Final[str] = "status-changed"
TYPING_CHANGED: Final[str] = "typing-changed"
MESSAGE_EDITED: Final[str] = "message-edited"
MESSAGE_DELETED: Final[str] = "message-deleted"
MESSAGE_RESTORED: Final[str] = "message-restored"
PREVIEW_CHANGED: Final[str] = "preview-changed"

Listener = Callable[..., None]


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, name: str, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(name, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(name, [])
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    def emit(self, name: str, **payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(name, []))
        for callback in listeners:
            try:
                callback(**payload)
            except Exception:
                logger.exception("event listener failed for %s", name)
