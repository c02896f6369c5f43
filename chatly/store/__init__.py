from __future__ import annotations

from ._store import ChatStore, now_ms
from .compaction import compact, fingerprint
from .types import (
    STATUS_DELIVERED,
    STATUS_SEEN,
    STATUS_SENT,
    Conversation,
    Message,
    Snapshot,
    UndoToken,
)

__all__ = [
    "STATUS_DELIVERED",
    "STATUS_SEEN",
    "STATUS_SENT",
    "ChatStore",
    "Conversation",
    "Message",
    "Snapshot",
    "UndoToken",
    "compact",
    "fingerprint",
    "now_ms",
]
