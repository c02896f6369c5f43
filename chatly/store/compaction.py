from __future__ import annotations

from collections.abc import Iterable

from .types import Message

FINGERPRINT_BUCKET_MS = 200
FINGERPRINT_DATA_PREFIX = 24

Fingerprint = tuple[str, str, str, int, bytes, bytes]


def fingerprint(message: Message, *, bucket_ms: int = FINGERPRINT_BUCKET_MS) -> Fingerprint:
    return (
        message.conv_id,
        message.sender,
        message.recipient,
        message.created_at // bucket_ms,
        bytes(message.cipher.iv),
        bytes(message.cipher.data[:FINGERPRINT_DATA_PREFIX]),
    )


def merge_by_id(messages: Iterable[Message]) -> list[Message]:
    """Last write wins per id; the survivor keeps the id's first position."""
    by_id: dict[str, Message] = {}
    for message in messages:
        if message is None or not message.id:
            continue
        by_id[message.id] = message
    return list(by_id.values())


def merge_by_fingerprint(
    messages: Iterable[Message], *, bucket_ms: int = FINGERPRINT_BUCKET_MS
) -> list[Message]:
    """Collapse near-duplicates; the greatest createdAt wins, ties go to the later entry."""
    by_fp: dict[Fingerprint, Message] = {}
    for message in messages:
        fp = fingerprint(message, bucket_ms=bucket_ms)
        prev = by_fp.get(fp)
        if prev is None or message.created_at >= prev.created_at:
            by_fp[fp] = message
    return list(by_fp.values())


def compact(
    messages: Iterable[Message], *, bucket_ms: int = FINGERPRINT_BUCKET_MS
) -> list[Message]:
    survivors = merge_by_fingerprint(merge_by_id(messages), bucket_ms=bucket_ms)
    return sorted(survivors, key=lambda m: m.created_at)
