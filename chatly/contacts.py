from __future__ import annotations

from dataclasses import dataclass
from typing import Final

ME: Final[str] = "me"


@dataclass(frozen=True)
class Contact:
    id: str
    name: str
    initials: str


CONTACTS: Final[tuple[Contact, ...]] = (
    Contact(id="u-1", name="Ayesha", initials="A"),
    Contact(id="u-2", name="Bilal", initials="B"),
    Contact(id="u-3", name="Danish", initials="D"),
    Contact(id="u-4", name="Fatima", initials="F"),
)


def conversation_id_for(peer_id: str) -> str:
    return f"conv-{peer_id}"


def find_contact(peer_id: str, contacts: tuple[Contact, ...] = CONTACTS) -> Contact | None:
    for contact in contacts:
        if contact.id == peer_id:
            return contact
    return None


def resolve_contact(value: str, contacts: tuple[Contact, ...] = CONTACTS) -> Contact:
    """Look a contact up by id or (case-insensitive) name."""
    normalized = (value or "").strip()
    found = find_contact(normalized, contacts)
    if found is not None:
        return found
    for contact in contacts:
        if contact.name.lower() == normalized.lower():
            return contact
    raise ValueError(
        f"Unknown contact '{normalized}'. Known contacts: "
        f"{', '.join(f'{c.id} ({c.name})' for c in contacts)}"
    )
