from __future__ import annotations

import datetime as dt

from chatly import events as ev
from chatly.cipher import UNDECRYPTABLE, CipherPayload, load_payload
from chatly.pagination import Viewport
from chatly.seed import seed_demo_if_empty
from chatly.session import ChatSession
from chatly.store import Message

CONV = "conv-u-1"


def _texts(session: ChatSession) -> list[tuple[str, str]]:
    return [(m.sender, session.decrypt(m)) for m in session.visible_slice().slice]


def test_hi_gets_reply_marked_seen_in_open_thread(session: ChatSession, fake_timers) -> None:
    session.open_conversation("u-1")

    sent = session.send("hi")
    assert sent is not None
    fake_timers.advance(300)
    assert session.store.load().find(sent.id).status == "delivered"

    fake_timers.advance(1300)

    assert _texts(session) == [("me", "hi"), ("u-1", "Hello! How can I help you today?")]
    reply = session.visible_slice().slice[-1]
    assert reply.status == "seen"
    assert reply.seen_at is not None
    assert session.unread() == []
    assert session.unread_summary().count == 0


def test_double_send_stores_one_message(session: ChatSession, fake_timers) -> None:
    session.open_conversation("u-1")

    assert session.send("Hello") is not None
    assert session.send("Hello") is None
    fake_timers.advance(2000)

    mine = [m for m in session.store.load().messages if m.sender == "me"]
    peer = [m for m in session.store.load().messages if m.sender != "me"]
    assert len(mine) == 1
    assert len(peer) == 1


def test_reply_to_background_conversation_goes_to_sidebar(session: ChatSession, fake_timers) -> None:
    previews: list[str] = []
    session.events.subscribe(ev.PREVIEW_CHANGED, lambda **p: previews.append(p["conversation_id"]))
    session.open_conversation("u-1")
    session.send("theme?")
    session.open_conversation("u-2")

    fake_timers.advance(2000)

    reply = [m for m in session.store.load().messages if m.sender == "u-1"][0]
    assert reply.status == "delivered"
    assert previews == [CONV]

    session.open_conversation("u-1")
    assert [m.id for m in session.unread()] == [reply.id]
    summary = session.unread_summary()
    assert summary.label == "1 new"
    assert summary.first_unread_id == reply.id
    assert session.mark_activity_visible() == [reply.id]
    assert session.unread() == []


def test_send_requires_open_conversation(session: ChatSession) -> None:
    assert session.send("hello") is None
    assert session.unread_summary().count == 0
    assert session.unread_summary().first_unread_id is None


def test_draft_survives_reopen(session: ChatSession, fake_timers) -> None:
    session.open_conversation("u-3")
    session.on_input("half a thought")
    assert session.scheduler.peer_typing("conv-u-3") is True

    fake_timers.advance(800)
    assert session.scheduler.peer_typing("conv-u-3") is False

    session.close_conversation()
    assert session.open_conversation("u-3") == "half a thought"
    assert session.active_conversation_id == "conv-u-3"

    session.send("half a thought, finished")
    assert session.store.get_draft("conv-u-3") == ""


def test_scroll_to_top_loads_older_page(session: ChatSession, clock) -> None:
    snapshot = session.store.load()
    for i in range(25):
        snapshot.messages.append(
            Message(
                id=f"old-{i}",
                conv_id=CONV,
                sender="u-1",
                recipient="me",
                cipher=CipherPayload(iv=bytes([i]) * 12, data=b"x"),
                created_at=clock.now - 100_000 + i * 1000,
                status="delivered",
            )
        )
    session.store.save(snapshot)
    session.open_conversation("u-1")
    assert len(session.visible_slice().slice) == 20

    top = Viewport(scroll_height=1000, scroll_top=0, client_height=400)
    new_top = session.on_scroll(top, measure=lambda: 1250)

    assert new_top == 250
    assert session.page_index == 1
    assert len(session.visible_slice().slice) == 25
    assert session.store.get_read_marker(CONV) == 0

    assert session.on_scroll(top, measure=lambda: 1250) is None
    assert session.page_index == 1

    bottom = Viewport(scroll_height=1250, scroll_top=850, client_height=400)
    assert session.on_scroll(bottom) is None
    assert len(session.mark_activity_visible(bottom)) == 0
    assert session.unread() == []


def test_render_edit_and_undo(session: ChatSession, clock) -> None:
    session.open_conversation("u-1")
    message = session.send("first draft")
    now = dt.datetime.fromtimestamp(clock.now / 1000).astimezone()

    [group] = session.render(now)
    assert group.label == "Today"
    [rendered] = group.messages
    assert rendered.text == "first draft"
    assert rendered.mine is True
    assert rendered.status == "✓ Sent"
    assert rendered.edited is False

    assert session.edit(message.id, "final") is True
    [rendered] = session.render(now)[0].messages
    assert rendered.text == "final"
    assert rendered.edited is True

    token = session.delete(message.id)
    assert token is not None
    assert session.render(now) == []
    assert session.undo_delete() is True
    assert [m.text for m in session.render(now)[0].messages] == ["final"]
    assert session.undo_delete() is False


def test_dismissed_undo_cannot_restore(session: ChatSession) -> None:
    session.open_conversation("u-1")
    message = session.send("bye")
    token = session.delete(message.id)

    assert session.dismiss_undo() is True
    assert session.undo_delete(token) is False
    assert session.visible_slice().total == 0


def test_sidebar_previews(session: ChatSession, clock) -> None:
    assert seed_demo_if_empty(session.store, session.cipher, clock=clock) == 2
    assert seed_demo_if_empty(session.store, session.cipher, clock=clock) == 0

    entries = session.sidebar()

    assert [contact.id for contact, _ in entries] == ["u-1", "u-2", "u-3", "u-4"]
    preview = entries[0][1]
    assert preview is not None
    assert preview.text == "You: Hi! How are you?"
    assert all(p is None for _, p in entries[1:])


def test_close_cancels_pending_work(session: ChatSession, fake_timers) -> None:
    session.open_conversation("u-1")
    message = session.send("hello")

    session.close()
    fake_timers.advance(5000)

    messages = session.store.load().messages
    assert [m.id for m in messages] == [message.id]
    assert messages[0].status == "sent"


def test_unreadable_message_renders_placeholder(session: ChatSession, clock) -> None:
    snapshot = session.store.load()
    snapshot.messages.append(
        Message(
            id="broken",
            conv_id=CONV,
            sender="u-1",
            recipient="me",
            cipher=load_payload({"iv": [300] * 12, "data": [1]}),
            created_at=clock.now,
            status="delivered",
        )
    )
    session.store.save(snapshot)
    session.open_conversation("u-1")
    now = dt.datetime.fromtimestamp(clock.now / 1000).astimezone()

    [rendered] = session.render(now)[0].messages

    assert rendered.text == UNDECRYPTABLE
    assert session.edit("broken", "anything") is False
