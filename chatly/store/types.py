from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Final

from ..cipher import CipherPayload, UnreadablePayload, load_payload

STATUS_SENT: Final[str] = "sent"
STATUS_DELIVERED: Final[str] = "delivered"
STATUS_SEEN: Final[str] = "seen"

STATUS_ORDER: Final[dict[str, int]] = {
    STATUS_SENT: 0,
    STATUS_DELIVERED: 1,
    STATUS_SEEN: 2,
}


def status_rank(status: str) -> int:
    return STATUS_ORDER.get(status, 0)


@dataclass(frozen=True)
class Conversation:
    id: str
    peer_id: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "peerId": self.peer_id}

    @classmethod
    def from_dict(cls, value: Any) -> Conversation:
        if not isinstance(value, dict):
            raise ValueError("conversation must be an object")
        conv_id = value.get("id")
        peer_id = value.get("peerId")
        if not isinstance(conv_id, str) or not conv_id:
            raise ValueError("conversation.id is required")
        if not isinstance(peer_id, str) or not peer_id:
            raise ValueError("conversation.peerId is required")
        return cls(id=conv_id, peer_id=peer_id)


@dataclass
class Message:
    id: str
    conv_id: str
    sender: str
    recipient: str
    cipher: CipherPayload | UnreadablePayload
    created_at: int
    status: str = STATUS_SENT
    edited_at: int | None = None
    deleted: bool | None = None
    seen_at: int | None = None

    @property
    def is_deleted(self) -> bool:
        return bool(self.deleted)

    def is_mine(self, me: str = "me") -> bool:
        return self.sender == me

    def copy(self) -> Message:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "convId": self.conv_id,
            "from": self.sender,
            "to": self.recipient,
        }
        cipher = self.cipher.to_dict()
        # A missing cipher stays missing.
        if cipher is not None:
            data["cipher"] = cipher
        data["createdAt"] = self.created_at
        data["status"] = self.status
        if self.edited_at is not None:
            data["editedAt"] = self.edited_at
        if self.deleted is not None:
            data["deleted"] = self.deleted
        if self.seen_at is not None:
            data["seenAt"] = self.seen_at
        return data

    @classmethod
    def from_dict(cls, value: Any) -> Message:
        if not isinstance(value, dict):
            raise ValueError("message must be an object")
        message_id = value.get("id")
        if not isinstance(message_id, str) or not message_id:
            raise ValueError("message.id is required")
        status = value.get("status")
        if status not in STATUS_ORDER:
            status = STATUS_SENT
        deleted = value.get("deleted")
        return cls(
            id=message_id,
            conv_id=str(value.get("convId") or ""),
            sender=str(value.get("from") or ""),
            recipient=str(value.get("to") or ""),
            cipher=load_payload(value.get("cipher")),
            created_at=_int_or_zero(value.get("createdAt")),
            status=status,
            edited_at=_int_or_none(value.get("editedAt")),
            deleted=bool(deleted) if deleted is not None else None,
            seen_at=_int_or_none(value.get("seenAt")),
        )


def _int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _int_or_zero(value: Any) -> int:
    parsed = _int_or_none(value)
    return parsed if parsed is not None else 0


@dataclass
class Snapshot:
    conversations: list[Conversation] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    # Top-level keys this version does not model; written back untouched.
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = copy.deepcopy(self.extra)
        data["conversations"] = [c.to_dict() for c in self.conversations]
        data["messages"] = [m.to_dict() for m in self.messages]
        return data

    def find(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def conversation(self, conversation_id: str) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def messages_for(self, conversation_id: str, *, include_deleted: bool = False) -> list[Message]:
        return [
            m
            for m in self.messages
            if m.conv_id == conversation_id and (include_deleted or not m.is_deleted)
        ]


@dataclass(frozen=True)
class UndoToken:
    message_id: str
    snapshot: Message
    expires_at: int
