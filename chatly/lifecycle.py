from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from uuid import uuid4

from . import events as ev
from .cipher import Cipher, DecryptOk
from .contacts import ME
from .events import EventBus
from .pagination import Viewport, is_near_bottom
from .scheduler import ActivityScheduler, DuplicateGuard
from .store import (
    STATUS_DELIVERED,
    STATUS_SEEN,
    STATUS_SENT,
    ChatStore,
    Message,
    UndoToken,
    now_ms,
)
from .store.types import status_rank
from .timers import KeyedTimers, TimerFactory

logger = logging.getLogger(__name__)

ROUTE_THREAD = "thread"
ROUTE_SIDEBAR = "sidebar"


class LifecycleEngine:
    """Message state machine: sent -> delivered -> seen, plus edit and tombstones."""

    def __init__(
        self,
        store: ChatStore,
        cipher: Cipher,
        scheduler: ActivityScheduler | None = None,
        *,
        events: EventBus | None = None,
        timer_factory: TimerFactory | None = None,
        clock: Callable[[], int] = now_ms,
        duplicate_window_ms: int = 600,
        delivered_delay_ms: int = 300,
        undo_window_ms: int = 6000,
        near_bottom_px: int = 24,
    ) -> None:
        self.store = store
        self.cipher = cipher
        self.scheduler = scheduler
        self.events = events or (scheduler.events if scheduler is not None else EventBus())
        self.clock = clock
        self.delivered_delay_ms = delivered_delay_ms
        self.undo_window_ms = undo_window_ms
        self.near_bottom_px = near_bottom_px
        self.send_guard = DuplicateGuard(duplicate_window_ms, clock)
        self.deliveries = KeyedTimers(
            timer_factory=timer_factory, run_lock=store.lock, name="delivered"
        )
        self.undo_windows = KeyedTimers(
            timer_factory=timer_factory, run_lock=store.lock, name="undo"
        )
        self._undo_lock = threading.Lock()
        self._open_undo: dict[str, UndoToken] = {}

    def send(self, conversation_id: str, text: str) -> Message | None:
        text = (text or "").strip()
        if not text:
            return None
        with self.store.lock:
            snapshot = self.store.load()
            conversation = snapshot.conversation(conversation_id)
            if conversation is None:
                logger.warning("send to unknown conversation %s", conversation_id)
                return None
            if self.send_guard.is_duplicate(conversation_id, text):
                logger.debug("duplicate send dropped for %s", conversation_id)
                return None
            message = Message(
                id=str(uuid4()),
                conv_id=conversation_id,
                sender=ME,
                recipient=conversation.peer_id,
                cipher=self.cipher.encrypt(conversation_id, text),
                created_at=self.clock(),
                status=STATUS_SENT,
            )
            snapshot.messages.append(message)
            self.store.save(snapshot)
            # Only a stored send opens the duplicate window.
            self.send_guard.record(conversation_id, text)
        self.events.emit(ev.MESSAGE_APPENDED, message=message)
        self.deliveries.start(
            message.id, self.delivered_delay_ms, lambda: self.mark_delivered(message.id)
        )
        if self.scheduler is not None:
            self.scheduler.schedule_reply(conversation_id, text, conversation.peer_id)
        return message

    def _advance(self, message_id: str, status: str) -> bool:
        with self.store.lock:
            snapshot = self.store.load()
            message = snapshot.find(message_id)
            if message is None:
                return False
            if status_rank(status) <= status_rank(message.status):
                return False
            previous = message.status
            message.status = status
            if status == STATUS_SEEN:
                message.seen_at = self.clock()
            self.store.save(snapshot)
        self.events.emit(
            ev.STATUS_CHANGED, message_id=message_id, previous=previous, status=status
        )
        return True

    def mark_delivered(self, message_id: str) -> bool:
        return self._advance(message_id, STATUS_DELIVERED)

    def mark_seen(self, message_id: str) -> bool:
        return self._advance(message_id, STATUS_SEEN)

    def bulk_mark_seen(self, conversation_id: str) -> list[str]:
        changed: list[tuple[str, str]] = []
        with self.store.lock:
            snapshot = self.store.load()
            seen_at = self.clock()
            for message in snapshot.messages_for(conversation_id):
                if message.is_mine() or message.status == STATUS_SEEN:
                    continue
                changed.append((message.id, message.status))
                message.status = STATUS_SEEN
                message.seen_at = seen_at
            if changed:
                self.store.save(snapshot)
            self.store.set_read_marker(conversation_id, self.clock())
        for message_id, previous in changed:
            self.events.emit(
                ev.STATUS_CHANGED, message_id=message_id, previous=previous, status=STATUS_SEEN
            )
        return [message_id for message_id, _ in changed]

    def mark_seen_if_near_bottom(self, conversation_id: str, viewport: Viewport) -> list[str]:
        if not is_near_bottom(
            viewport.scroll_height,
            viewport.scroll_top,
            viewport.client_height,
            self.near_bottom_px,
        ):
            return []
        return self.bulk_mark_seen(conversation_id)

    def edit(self, message_id: str, new_text: str) -> bool:
        new_text = (new_text or "").strip()
        if not new_text:
            return False
        with self.store.lock:
            snapshot = self.store.load()
            message = snapshot.find(message_id)
            if message is None or not message.is_mine() or message.is_deleted:
                return False
            original = self.cipher.decrypt(message.conv_id, message.cipher)
            if isinstance(original, DecryptOk) and original.text == new_text:
                return False
            message.cipher = self.cipher.encrypt(message.conv_id, new_text)
            message.edited_at = self.clock()
            self.store.save(snapshot)
        self.events.emit(ev.MESSAGE_EDITED, message_id=message_id)
        return True

    def delete(self, message_id: str) -> UndoToken | None:
        with self.store.lock:
            snapshot = self.store.load()
            message = snapshot.find(message_id)
            if message is None or message.is_deleted:
                return None
            before = message.copy()
            message.deleted = True
            self.store.save(snapshot)
            token = UndoToken(
                message_id=message_id,
                snapshot=before,
                expires_at=self.clock() + self.undo_window_ms,
            )
            with self._undo_lock:
                self._open_undo[message_id] = token
        self.undo_windows.start(
            message_id, self.undo_window_ms, lambda: self._close_undo(token)
        )
        self.events.emit(ev.MESSAGE_DELETED, message_id=message_id)
        return token

    def _close_undo(self, token: UndoToken) -> bool:
        with self._undo_lock:
            if self._open_undo.get(token.message_id) is not token:
                return False
            del self._open_undo[token.message_id]
            return True

    def undo_open(self, token: UndoToken) -> bool:
        with self._undo_lock:
            if self._open_undo.get(token.message_id) is not token:
                return False
        return self.clock() < token.expires_at

    def dismiss_undo(self, token: UndoToken) -> bool:
        self.undo_windows.cancel(token.message_id)
        return self._close_undo(token)

    def undo_delete(self, token: UndoToken) -> bool:
        with self.store.lock:
            if not self.undo_open(token):
                return False
            self.dismiss_undo(token)
            snapshot = self.store.load()
            for index, message in enumerate(snapshot.messages):
                if message.id != token.message_id:
                    continue
                if not message.is_deleted:
                    return False
                restored = token.snapshot.copy()
                # A transition may have landed while tombstoned; keep it.
                if status_rank(message.status) > status_rank(restored.status):
                    restored.status = message.status
                    restored.seen_at = message.seen_at
                snapshot.messages[index] = restored
                self.store.save(snapshot)
                break
            else:
                return False
        self.events.emit(ev.MESSAGE_RESTORED, message_id=token.message_id)
        return True

    def handle_incoming(self, conversation_id: str, *, active_conversation_id: str | None) -> str:
        if active_conversation_id is not None and active_conversation_id == conversation_id:
            self.bulk_mark_seen(conversation_id)
            return ROUTE_THREAD
        self.events.emit(ev.PREVIEW_CHANGED, conversation_id=conversation_id)
        return ROUTE_SIDEBAR

    def shutdown(self) -> None:
        self.deliveries.cancel_all()
        self.undo_windows.cancel_all()
        with self._undo_lock:
            self._open_undo.clear()
