from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any

from .. import db
from ..cipher import UnreadablePayload
from ..contacts import CONTACTS, Contact, conversation_id_for
from . import compaction
from .types import Conversation, Message, Snapshot

logger = logging.getLogger(__name__)

STORAGE_KEY = "chatly:v1:data"
DRAFT_KEY = "chatly:draft"
LAST_READ_KEY = "chatly:lastRead"


def now_ms() -> int:
    return int(time.time() * 1000)


class ChatStore:
    """Whole-snapshot persistence for conversations and messages.

    Every write goes through :meth:`save`, which compacts the message list
    first, so the stored document is always deduplicated and sorted by
    ``createdAt``. Drafts and read markers live in their own rows and are
    never compacted.
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        contacts: tuple[Contact, ...] = CONTACTS,
        fingerprint_bucket_ms: int = compaction.FINGERPRINT_BUCKET_MS,
        check_same_thread: bool = False,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)
        self.contacts = contacts
        self.fingerprint_bucket_ms = fingerprint_bucket_ms
        # Timer callbacks run on worker threads; holding this lock for a whole
        # load -> mutate -> save cycle keeps them one-at-a-time.
        self.lock = threading.RLock()

    def _initial_snapshot(self) -> Snapshot:
        conversations = [
            Conversation(id=conversation_id_for(c.id), peer_id=c.id) for c in self.contacts
        ]
        return Snapshot(conversations=conversations, messages=[])

    def _parse_conversations(self, raw: Any) -> list[Conversation]:
        if not isinstance(raw, list):
            logger.warning("snapshot conversations malformed; rebuilding from contacts")
            return self._initial_snapshot().conversations
        conversations: list[Conversation] = []
        for item in raw:
            try:
                conversations.append(Conversation.from_dict(item))
            except ValueError as exc:
                logger.warning("dropping malformed conversation: %s", exc)
        return conversations

    def _parse_messages(self, raw: Any) -> list[Message]:
        if not isinstance(raw, list):
            logger.warning("snapshot messages malformed; normalizing to empty list")
            return []
        messages: list[Message] = []
        for item in raw:
            try:
                message = Message.from_dict(item)
            except ValueError as exc:
                logger.warning("dropping malformed message: %s", exc)
                continue
            if isinstance(message.cipher, UnreadablePayload):
                logger.debug(
                    "message %s has an unreadable cipher (%s); keeping it as stored",
                    message.id,
                    message.cipher.reason,
                )
            messages.append(message)
        return messages

    def load(self) -> Snapshot:
        with self.lock:
            raw = db.get_value(self.conn, STORAGE_KEY)
            if raw is None:
                snapshot = self._initial_snapshot()
                self._write(snapshot)
                return snapshot
            data = db.from_json(raw)
            if not isinstance(data, dict):
                logger.warning("snapshot unreadable; reinitializing")
                snapshot = self._initial_snapshot()
                self._write(snapshot)
                return snapshot
            extra = {
                k: v for k, v in data.items() if k not in {"conversations", "messages"}
            }
            parsed = self._parse_messages(data.get("messages"))
            snapshot = Snapshot(
                conversations=self._parse_conversations(data.get("conversations")),
                messages=compaction.compact(parsed, bucket_ms=self.fingerprint_bucket_ms),
                extra=extra,
            )
            cleaned = db.to_json(snapshot.to_dict())
            if cleaned != raw:
                if len(snapshot.messages) != len(parsed):
                    logger.info(
                        "compacted %d duplicate messages on load",
                        len(parsed) - len(snapshot.messages),
                    )
                db.set_value(self.conn, STORAGE_KEY, cleaned)
            return snapshot

    def save(self, snapshot: Snapshot) -> Snapshot:
        with self.lock:
            before = len(snapshot.messages)
            snapshot.messages = compaction.compact(
                snapshot.messages, bucket_ms=self.fingerprint_bucket_ms
            )
            dropped = before - len(snapshot.messages)
            if dropped:
                logger.debug("compaction dropped %d messages on save", dropped)
            self._write(snapshot)
            return snapshot

    def _write(self, snapshot: Snapshot) -> None:
        db.set_value(self.conn, STORAGE_KEY, db.to_json(snapshot.to_dict()))

    def compact(self) -> dict[str, int]:
        with self.lock:
            raw = db.from_json(db.get_value(self.conn, STORAGE_KEY))
            raw_messages = raw.get("messages") if isinstance(raw, dict) else None
            raw_count = len(raw_messages) if isinstance(raw_messages, list) else 0
            snapshot = self.save(self.load())
            return {
                "before": raw_count,
                "after": len(snapshot.messages),
                "removed": max(0, raw_count - len(snapshot.messages)),
            }

    @staticmethod
    def _draft_key(conversation_id: str) -> str:
        return f"{DRAFT_KEY}:{conversation_id}"

    @staticmethod
    def _read_marker_key(conversation_id: str) -> str:
        return f"{LAST_READ_KEY}:{conversation_id}"

    def get_draft(self, conversation_id: str) -> str:
        return db.get_value(self.conn, self._draft_key(conversation_id)) or ""

    def set_draft(self, conversation_id: str, text: str) -> None:
        with self.lock:
            db.set_value(self.conn, self._draft_key(conversation_id), text)

    def clear_draft(self, conversation_id: str) -> None:
        with self.lock:
            db.delete_value(self.conn, self._draft_key(conversation_id))

    def get_read_marker(self, conversation_id: str) -> int:
        raw = db.get_value(self.conn, self._read_marker_key(conversation_id))
        if not raw:
            return 0
        try:
            return int(raw)
        except ValueError:
            return 0

    def set_read_marker(self, conversation_id: str, timestamp_ms: int) -> None:
        with self.lock:
            db.set_value(self.conn, self._read_marker_key(conversation_id), str(int(timestamp_ms)))

    def stats(self) -> dict[str, Any]:
        snapshot = self.load()
        statuses = Counter(m.status for m in snapshot.messages if not m.is_deleted)
        try:
            size_bytes = self.db_path.stat().st_size
        except OSError:
            size_bytes = 0
        return {
            "database": {
                "path": str(self.db_path),
                "size_bytes": size_bytes,
                "drafts": db.count_keys(self.conn, f"{DRAFT_KEY}:"),
                "read_markers": db.count_keys(self.conn, f"{LAST_READ_KEY}:"),
            },
            "conversations": len(snapshot.conversations),
            "messages": len(snapshot.messages),
            "tombstones": sum(1 for m in snapshot.messages if m.is_deleted),
            "statuses": dict(statuses),
        }

    def close(self) -> None:
        self.conn.close()
