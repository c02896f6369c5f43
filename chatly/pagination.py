from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from .contacts import ME
from .store.types import STATUS_DELIVERED, STATUS_SEEN, Message

PAGE_SIZE = 20
NEAR_BOTTOM_PX = 24


@dataclass(frozen=True)
class PageSlice:
    slice: list[Message]
    total: int


@dataclass(frozen=True)
class UnreadSummary:
    count: int
    first_unread_id: str | None

    @property
    def label(self) -> str:
        return f"{self.count} new"


@dataclass(frozen=True)
class ScrollAnchor:
    """Viewport geometry captured before re-rendering a longer window."""

    scroll_height: float
    scroll_top: float

    def compensate(self, new_scroll_height: float) -> float:
        return self.scroll_top + (new_scroll_height - self.scroll_height)


@dataclass(frozen=True)
class Viewport:
    scroll_height: float
    scroll_top: float
    client_height: float


@dataclass
class DayGroup:
    label: str
    day: dt.date
    messages: list[Message] = field(default_factory=list)


@dataclass(frozen=True)
class Preview:
    conversation_id: str
    text: str
    created_at: int


def visible_messages(messages: Iterable[Message], conversation_id: str) -> list[Message]:
    return [m for m in messages if m.conv_id == conversation_id and not m.is_deleted]


def visible_slice(
    messages: Iterable[Message],
    conversation_id: str,
    page_index: int = 0,
    page_size: int = PAGE_SIZE,
) -> PageSlice:
    visible = sorted(visible_messages(messages, conversation_id), key=lambda m: m.created_at)
    total = len(visible)
    window = page_size * (max(0, page_index) + 1)
    start = max(0, total - window)
    return PageSlice(slice=visible[start:], total=total)


def can_load_older(total: int, page_index: int, page_size: int = PAGE_SIZE) -> bool:
    return page_size * (page_index + 1) < total


def is_near_bottom(
    scroll_height: float,
    scroll_top: float,
    client_height: float,
    threshold: float = NEAR_BOTTOM_PX,
) -> bool:
    return scroll_height - scroll_top - client_height < threshold


def unread(page: Sequence[Message], read_marker: int, me: str = ME) -> list[Message]:
    return [
        m
        for m in page
        if m.created_at > read_marker and m.sender != me and not m.is_deleted
    ]


def unread_summary(page: Sequence[Message], read_marker: int, me: str = ME) -> UnreadSummary:
    pending = unread(page, read_marker, me)
    return UnreadSummary(
        count=len(pending),
        first_unread_id=pending[0].id if pending else None,
    )


def _local_datetime(created_at_ms: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(created_at_ms / 1000).astimezone()


def day_label(created_at_ms: int, now: dt.datetime | None = None) -> str:
    current = (now or dt.datetime.now().astimezone()).date()
    day = _local_datetime(created_at_ms).date()
    if day == current:
        return "Today"
    if day == current - dt.timedelta(days=1):
        return "Yesterday"
    return f"{day:%a}, {day:%b} {day.day}"


def group_by_day(messages: Iterable[Message], now: dt.datetime | None = None) -> list[DayGroup]:
    groups: list[DayGroup] = []
    for message in messages:
        day = _local_datetime(message.created_at).date()
        if not groups or groups[-1].day != day:
            groups.append(DayGroup(label=day_label(message.created_at, now), day=day))
        groups[-1].messages.append(message)
    return groups


def format_time(timestamp_ms: int) -> str:
    return f"{_local_datetime(timestamp_ms):%H:%M}"


def status_chip(message: Message, me: str = ME) -> str:
    if message.sender != me:
        if message.status == STATUS_SEEN:
            return f"Seen {format_time(message.seen_at or message.created_at)}"
        if message.status == STATUS_DELIVERED:
            return "Delivered"
        return "Sent"
    if message.status == STATUS_SEEN:
        return f"✓✓ Seen {format_time(message.seen_at or message.created_at)}"
    if message.status == STATUS_DELIVERED:
        return "✓✓ Delivered"
    return "✓ Sent"


def last_message_preview(
    messages: Iterable[Message],
    conversation_id: str,
    decrypt: Callable[[Message], str],
    me: str = ME,
) -> Preview | None:
    visible = visible_messages(messages, conversation_id)
    if not visible:
        return None
    last = sorted(visible, key=lambda m: m.created_at)[-1]
    prefix = "You: " if last.sender == me else ""
    return Preview(conversation_id=conversation_id, text=prefix + decrypt(last), created_at=last.created_at)
