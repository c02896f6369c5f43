from __future__ import annotations

import datetime as dt
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from . import pagination
from .cipher import Cipher
from .config import ChatlyConfig
from .contacts import Contact, conversation_id_for
from .events import EventBus
from .lifecycle import LifecycleEngine
from .pagination import PageSlice, Preview, ScrollAnchor, UnreadSummary, Viewport
from .scheduler import ActivityScheduler
from .store import ChatStore, Message, UndoToken, now_ms
from .timers import TimerFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedMessage:
    id: str
    text: str
    mine: bool
    time: str
    status: str
    edited: bool


@dataclass(frozen=True)
class RenderedGroup:
    label: str
    messages: list[RenderedMessage]


class ChatSession:
    """The surface a UI drives: one open conversation at a time."""

    def __init__(
        self,
        store: ChatStore,
        config: ChatlyConfig | None = None,
        *,
        events: EventBus | None = None,
        timer_factory: TimerFactory | None = None,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
    ) -> None:
        cfg = config or ChatlyConfig()
        self.store = store
        self.config = cfg
        self.events = events or EventBus()
        self.clock = clock
        self.cipher = Cipher.from_config(cfg)
        self.scheduler = ActivityScheduler(
            store,
            self.cipher,
            events=self.events,
            timer_factory=timer_factory,
            clock=clock,
            rng=rng,
            duplicate_window_ms=cfg.duplicate_window_ms,
            typing_debounce_ms=cfg.typing_debounce_ms,
            reply_delay_min_ms=cfg.reply_delay_min_ms,
            reply_delay_max_ms=cfg.reply_delay_max_ms,
            on_reply=self._on_reply,
        )
        self.lifecycle = LifecycleEngine(
            store,
            self.cipher,
            self.scheduler,
            events=self.events,
            timer_factory=timer_factory,
            clock=clock,
            duplicate_window_ms=cfg.duplicate_window_ms,
            delivered_delay_ms=cfg.delivered_delay_ms,
            undo_window_ms=cfg.undo_window_ms,
            near_bottom_px=cfg.near_bottom_px,
        )
        self.active_conversation_id: str | None = None
        self.page_index = 0
        self.last_undo: UndoToken | None = None

    def open_conversation(self, peer_id: str) -> str:
        self.active_conversation_id = conversation_id_for(peer_id)
        self.page_index = 0
        return self.store.get_draft(self.active_conversation_id)

    def close_conversation(self) -> None:
        self.active_conversation_id = None
        self.page_index = 0

    def _on_reply(self, conversation_id: str, message: Message) -> None:
        self.lifecycle.handle_incoming(
            conversation_id, active_conversation_id=self.active_conversation_id
        )

    def send(self, text: str) -> Message | None:
        if self.active_conversation_id is None:
            logger.debug("send ignored: no open conversation")
            return None
        message = self.lifecycle.send(self.active_conversation_id, text)
        if message is not None:
            self.store.clear_draft(self.active_conversation_id)
        return message

    def edit(self, message_id: str, text: str) -> bool:
        return self.lifecycle.edit(message_id, text)

    def delete(self, message_id: str) -> UndoToken | None:
        token = self.lifecycle.delete(message_id)
        if token is not None:
            self.last_undo = token
        return token

    def undo_delete(self, token: UndoToken | None = None) -> bool:
        token = token or self.last_undo
        if token is None:
            return False
        restored = self.lifecycle.undo_delete(token)
        if token is self.last_undo:
            self.last_undo = None
        return restored

    def dismiss_undo(self) -> bool:
        if self.last_undo is None:
            return False
        token, self.last_undo = self.last_undo, None
        return self.lifecycle.dismiss_undo(token)

    def on_input(self, text: str) -> None:
        if self.active_conversation_id is None:
            return
        self.scheduler.note_input(self.active_conversation_id, text)

    def visible_slice(self) -> PageSlice:
        if self.active_conversation_id is None:
            return PageSlice(slice=[], total=0)
        return pagination.visible_slice(
            self.store.load().messages,
            self.active_conversation_id,
            self.page_index,
            self.config.page_size,
        )

    def unread(self) -> list[Message]:
        if self.active_conversation_id is None:
            return []
        marker = self.store.get_read_marker(self.active_conversation_id)
        return pagination.unread(self.visible_slice().slice, marker)

    def unread_summary(self) -> UnreadSummary:
        if self.active_conversation_id is None:
            return UnreadSummary(count=0, first_unread_id=None)
        marker = self.store.get_read_marker(self.active_conversation_id)
        return pagination.unread_summary(self.visible_slice().slice, marker)

    def mark_activity_visible(self, viewport: Viewport | None = None) -> list[str]:
        """Called when the thread becomes visible; no viewport means "at bottom"."""
        if self.active_conversation_id is None:
            return []
        if viewport is None:
            return self.lifecycle.bulk_mark_seen(self.active_conversation_id)
        return self.lifecycle.mark_seen_if_near_bottom(self.active_conversation_id, viewport)

    def on_scroll(
        self, viewport: Viewport, measure: Callable[[], float] | None = None
    ) -> float | None:
        """Grow the window when scrolled to the top; returns the compensated scrollTop.

        ``measure`` reports the rendered scroll height after the window grows.
        """
        if self.active_conversation_id is None:
            return None
        new_top: float | None = None
        if viewport.scroll_top == 0:
            total = self.visible_slice().total
            if pagination.can_load_older(total, self.page_index, self.config.page_size):
                anchor = ScrollAnchor(viewport.scroll_height, viewport.scroll_top)
                self.page_index += 1
                if measure is not None:
                    new_top = anchor.compensate(measure())
        self.mark_activity_visible(viewport)
        return new_top

    def decrypt(self, message: Message) -> str:
        return self.cipher.decrypt_text(message.conv_id, message.cipher)

    def render(self, now: dt.datetime | None = None) -> list[RenderedGroup]:
        groups = pagination.group_by_day(self.visible_slice().slice, now)
        return [
            RenderedGroup(
                label=group.label,
                messages=[
                    RenderedMessage(
                        id=m.id,
                        text=self.decrypt(m),
                        mine=m.is_mine(),
                        time=pagination.format_time(m.created_at),
                        status=pagination.status_chip(m),
                        edited=m.edited_at is not None,
                    )
                    for m in group.messages
                ],
            )
            for group in groups
        ]

    def sidebar(self) -> list[tuple[Contact, Preview | None]]:
        messages = self.store.load().messages
        return [
            (
                contact,
                pagination.last_message_preview(
                    messages, conversation_id_for(contact.id), self.decrypt
                ),
            )
            for contact in self.store.contacts
        ]

    def wait_idle(self, timeout_s: float = 5.0) -> bool:
        """Block until delivery and reply timers have drained (undo windows excluded)."""
        deadline = time.monotonic() + timeout_s
        groups = (
            self.lifecycle.deliveries,
            self.scheduler.replies,
            self.scheduler.typing,
        )
        while True:
            for timers in groups:
                if not timers.wait(max(0.0, deadline - time.monotonic())):
                    return False
            if all(timers.idle() for timers in groups):
                return True
            if time.monotonic() >= deadline:
                return False

    def close(self) -> None:
        self.scheduler.shutdown()
        self.lifecycle.shutdown()
