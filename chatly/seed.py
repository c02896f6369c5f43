from __future__ import annotations

import logging
from collections.abc import Callable
from uuid import uuid4

from .cipher import Cipher
from .contacts import ME, conversation_id_for
from .store import STATUS_DELIVERED, STATUS_SEEN, ChatStore, Message, now_ms

logger = logging.getLogger(__name__)


def seed_demo_if_empty(
    store: ChatStore, cipher: Cipher, *, clock: Callable[[], int] = now_ms
) -> int:
    """Give the first contact a two-message thread when the store is empty."""
    with store.lock:
        snapshot = store.load()
        if snapshot.messages or not store.contacts:
            return 0
        peer = store.contacts[0]
        conv_id = conversation_id_for(peer.id)
        now = clock()
        snapshot.messages.extend(
            [
                Message(
                    id=str(uuid4()),
                    conv_id=conv_id,
                    sender=peer.id,
                    recipient=ME,
                    cipher=cipher.encrypt(conv_id, "Hello!"),
                    created_at=now - 2 * 60 * 1000,
                    status=STATUS_DELIVERED,
                ),
                Message(
                    id=str(uuid4()),
                    conv_id=conv_id,
                    sender=ME,
                    recipient=peer.id,
                    cipher=cipher.encrypt(conv_id, "Hi! How are you?"),
                    created_at=now - 60 * 1000,
                    status=STATUS_SEEN,
                    seen_at=now - 50 * 1000,
                ),
            ]
        )
        store.save(snapshot)
    logger.info("seeded demo conversation with %s", peer.name)
    return 2
