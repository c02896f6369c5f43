from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable
from typing import Final
from uuid import uuid4

from . import events as ev
from .cipher import Cipher
from .contacts import ME
from .events import EventBus
from .store import STATUS_DELIVERED, ChatStore, Message, now_ms
from .timers import KeyedTimers, TimerFactory

logger = logging.getLogger(__name__)

# Checked in order; the first rule with a matching keyword wins.
REPLY_RULES: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("hello", "hi"), "Hello! How can I help you today?"),
    (("how are you",), "I'm good, Thanks! Working on some UI polish."),
    (("theme",), "Try toggling light/dark, your preference is saved."),
    (("edit",), "You can edit your last message via the edit action."),
    (("delete",), "Deleted by you, with an undo window!"),
    (("paginate", "scroll"), "Scroll up to load older messages. Smooth and fast."),
)
DEFAULT_REPLY: Final[str] = "Got it! I'll keep that in mind."


def reply_for(text: str) -> str:
    lowered = (text or "").lower().strip()
    for keywords, reply in REPLY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return reply
    return DEFAULT_REPLY


class DuplicateGuard:
    """Drops a repeat of the last accepted text for a key inside a short window."""

    def __init__(self, window_ms: int = 600, clock: Callable[[], int] = now_ms) -> None:
        self.window_ms = window_ms
        self._clock = clock
        self._lock = threading.RLock()
        self._last: dict[str, tuple[str, int]] = {}

    def is_duplicate(self, key: str, text: str) -> bool:
        with self._lock:
            last = self._last.get(key)
            return last is not None and last[0] == text and self._clock() - last[1] < self.window_ms

    def record(self, key: str, text: str) -> None:
        with self._lock:
            self._last[key] = (text, self._clock())

    def accept(self, key: str, text: str) -> bool:
        """Check and record in one step."""
        with self._lock:
            if self.is_duplicate(key, text):
                return False
            self.record(key, text)
            return True


class ActivityScheduler:
    def __init__(
        self,
        store: ChatStore,
        cipher: Cipher,
        *,
        events: EventBus | None = None,
        timer_factory: TimerFactory | None = None,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
        duplicate_window_ms: int = 600,
        typing_debounce_ms: int = 800,
        reply_delay_min_ms: int = 900,
        reply_delay_max_ms: int = 1600,
        on_reply: Callable[[str, Message], None] | None = None,
    ) -> None:
        self.store = store
        self.cipher = cipher
        self.events = events or EventBus()
        self.clock = clock
        self.rng = rng or random.Random()
        self.typing_debounce_ms = typing_debounce_ms
        self.reply_delay_min_ms = reply_delay_min_ms
        self.reply_delay_max_ms = max(reply_delay_min_ms, reply_delay_max_ms)
        self.on_reply = on_reply
        self.reply_guard = DuplicateGuard(duplicate_window_ms, clock)
        self.replies = KeyedTimers(
            timer_factory=timer_factory, run_lock=store.lock, name="reply"
        )
        self.typing = KeyedTimers(
            timer_factory=timer_factory, run_lock=store.lock, name="typing"
        )
        self._typing_lock = threading.Lock()
        self._peer_typing: dict[str, bool] = {}

    def peer_typing(self, conversation_id: str) -> bool:
        with self._typing_lock:
            return self._peer_typing.get(conversation_id, False)

    def _set_typing(self, conversation_id: str, visible: bool) -> None:
        with self._typing_lock:
            changed = self._peer_typing.get(conversation_id, False) != visible
            self._peer_typing[conversation_id] = visible
        if changed:
            self.events.emit(ev.TYPING_CHANGED, conversation_id=conversation_id, visible=visible)

    def note_input(self, conversation_id: str, text: str) -> None:
        self.store.set_draft(conversation_id, text)
        self._set_typing(conversation_id, True)
        self.typing.start(
            conversation_id,
            self.typing_debounce_ms,
            lambda: self._set_typing(conversation_id, False),
        )

    def cancel_reply(self, conversation_id: str) -> bool:
        cancelled = self.replies.cancel(conversation_id)
        if cancelled:
            self._set_typing(conversation_id, False)
        return cancelled

    def schedule_reply(
        self, conversation_id: str, user_text: str, peer_id: str | None = None
    ) -> bool:
        if not self.reply_guard.accept(conversation_id, user_text):
            logger.debug("duplicate reply request dropped for %s", conversation_id)
            return False
        if peer_id is None:
            conversation = self.store.load().conversation(conversation_id)
            if conversation is None:
                logger.warning("no conversation %s; reply not scheduled", conversation_id)
                return False
            peer_id = conversation.peer_id
        self._set_typing(conversation_id, True)
        delay_ms = self.rng.uniform(self.reply_delay_min_ms, self.reply_delay_max_ms)
        self.replies.start(
            conversation_id,
            delay_ms,
            lambda: self._deliver_reply(conversation_id, peer_id, user_text),
        )
        return True

    def _deliver_reply(self, conversation_id: str, peer_id: str, user_text: str) -> None:
        self._set_typing(conversation_id, False)
        snapshot = self.store.load()
        message = Message(
            id=str(uuid4()),
            conv_id=conversation_id,
            sender=peer_id,
            recipient=ME,
            cipher=self.cipher.encrypt(conversation_id, reply_for(user_text)),
            created_at=self.clock(),
            status=STATUS_DELIVERED,
        )
        snapshot.messages.append(message)
        self.store.save(snapshot)
        logger.debug("reply %s delivered to %s", message.id, conversation_id)
        self.events.emit(ev.MESSAGE_APPENDED, message=message)
        if self.on_reply is not None:
            self.on_reply(conversation_id, message)

    def shutdown(self) -> None:
        self.replies.cancel_all()
        self.typing.cancel_all()
        with self._typing_lock:
            visible = [conv for conv, shown in self._peer_typing.items() if shown]
        for conversation_id in visible:
            self._set_typing(conversation_id, False)
