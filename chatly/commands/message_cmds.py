from __future__ import annotations

import typer
from rich import print
from rich.markup import escape

from ..session import ChatSession


def contacts_cmd(*, store_from_path, config_or_exit, db_path: str | None) -> None:
    """List contacts with their last visible message."""

    store = store_from_path(db_path)
    session = ChatSession(store, config_or_exit())
    try:
        for contact, preview in session.sidebar():
            if preview is None:
                print(f"[bold]{contact.name}[/bold] ({contact.id}) [dim]No messages yet[/dim]")
                continue
            print(f"[bold]{contact.name}[/bold] ({contact.id}) {escape(preview.text)}")
    finally:
        session.close()
        store.close()


def _print_thread(session: ChatSession) -> None:
    for group in session.render():
        print(f"[bold cyan]{group.label}[/bold cyan]")
        for row in group.messages:
            who = "You" if row.mine else "Them"
            edited = " [dim](edited)[/dim]" if row.edited else ""
            print(
                f"  [dim]{row.time}[/dim] [bold]{who}[/bold]: {escape(row.text)}{edited} "
                f"[dim]{escape(row.status)} {row.id}[/dim]"
            )


def show_cmd(
    *,
    store_from_path,
    config_or_exit,
    contact_or_exit,
    db_path: str | None,
    peer: str,
    page: int,
    mark_seen: bool,
) -> None:
    """Print the visible window of a conversation."""

    contact = contact_or_exit(peer)
    store = store_from_path(db_path)
    session = ChatSession(store, config_or_exit())
    try:
        session.open_conversation(contact.id)
        session.page_index = max(0, page)
        page_slice = session.visible_slice()
        print(
            f"[bold]{contact.name}[/bold] "
            f"[dim]{len(page_slice.slice)} of {page_slice.total} messages[/dim]"
        )
        summary = session.unread_summary()
        if summary.count:
            print(f"[yellow]{summary.label}[/yellow]")
        _print_thread(session)
        if mark_seen:
            changed = session.mark_activity_visible()
            if changed:
                print(f"[green]Marked {len(changed)} messages seen[/green]")
        draft = store.get_draft(session.active_conversation_id or "")
        if draft:
            print(f"[dim]Draft: {escape(draft)}[/dim]")
    finally:
        session.close()
        store.close()


def send_cmd(
    *,
    store_from_path,
    config_or_exit,
    contact_or_exit,
    db_path: str | None,
    peer: str,
    text: str,
    wait: bool,
    timeout: float,
) -> None:
    """Send a message; with wait, stay up for the delivery receipt and reply."""

    contact = contact_or_exit(peer)
    store = store_from_path(db_path)
    session = ChatSession(store, config_or_exit())
    try:
        session.open_conversation(contact.id)
        message = session.send(text)
        if message is None:
            print("[yellow]Nothing sent (empty text)[/yellow]")
            raise typer.Exit(code=1)
        print(f"Sent {message.id}")
        if wait:
            if not session.wait_idle(timeout):
                print("[yellow]Timed out waiting for reply[/yellow]")
                if session.scheduler.cancel_reply(message.conv_id):
                    print("[yellow]Pending reply cancelled[/yellow]")
            _print_thread(session)
    finally:
        session.close()
        store.close()


def edit_cmd(
    *, store_from_path, config_or_exit, db_path: str | None, message_id: str, text: str
) -> None:
    """Edit one of your own messages."""

    store = store_from_path(db_path)
    session = ChatSession(store, config_or_exit())
    try:
        if not session.edit(message_id, text):
            print(f"[yellow]Message {message_id} not edited[/yellow]")
            raise typer.Exit(code=1)
        print(f"Edited {message_id}")
    finally:
        session.close()
        store.close()


def delete_cmd(*, store_from_path, config_or_exit, db_path: str | None, message_id: str) -> None:
    """Tombstone a message."""

    store = store_from_path(db_path)
    session = ChatSession(store, config_or_exit())
    try:
        if session.delete(message_id) is None:
            print(f"[red]Message {message_id} not found[/red]")
            raise typer.Exit(code=1)
        print(f"Deleted {message_id}")
    finally:
        session.close()
        store.close()
