from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.common import config_or_exit, contact_or_exit, store_from_path
from .commands.maintenance_cmds import compact_cmd, config_cmd, init_cmd, stats_cmd
from .commands.message_cmds import contacts_cmd, delete_cmd, edit_cmd, send_cmd, show_cmd
from .store import ChatStore

app = typer.Typer(help="chatly: local encrypted conversation store")


def _store(db_path: str | None) -> ChatStore:
    return store_from_path(db_path)


@app.command()
def init(
    db_path: str = typer.Option(None, "--db", help="Path to SQLite database"),
    seed: bool | None = typer.Option(None, "--seed/--no-seed", help="Seed a demo conversation"),
) -> None:
    """Create the store (no-op if it already exists)."""
    init_cmd(store_from_path=_store, config_or_exit=config_or_exit, db_path=db_path, seed=seed)


@app.command()
def contacts(db_path: str = typer.Option(None, "--db", help="Path to SQLite database")) -> None:
    """List contacts with their last message."""
    contacts_cmd(store_from_path=_store, config_or_exit=config_or_exit, db_path=db_path)


@app.command()
def show(
    peer: str = typer.Argument(..., help="Contact id or name"),
    page: int = typer.Option(0, help="Page index; each page adds older messages"),
    mark_seen: bool = typer.Option(False, help="Mark incoming messages seen"),
    db_path: str = typer.Option(None, "--db", help="Path to SQLite database"),
) -> None:
    """Show a conversation."""
    show_cmd(
        store_from_path=_store,
        config_or_exit=config_or_exit,
        contact_or_exit=contact_or_exit,
        db_path=db_path,
        peer=peer,
        page=page,
        mark_seen=mark_seen,
    )


@app.command()
def send(
    peer: str = typer.Argument(..., help="Contact id or name"),
    text: str = typer.Argument(..., help="Message text"),
    wait: bool = typer.Option(True, help="Wait for the delivery receipt and reply"),
    timeout: float = typer.Option(5.0, help="Seconds to wait for the reply"),
    db_path: str = typer.Option(None, "--db", help="Path to SQLite database"),
) -> None:
    """Send a message."""
    send_cmd(
        store_from_path=_store,
        config_or_exit=config_or_exit,
        contact_or_exit=contact_or_exit,
        db_path=db_path,
        peer=peer,
        text=text,
        wait=wait,
        timeout=timeout,
    )


@app.command()
def edit(
    message_id: str,
    text: str,
    db_path: str = typer.Option(None, "--db", help="Path to SQLite database"),
) -> None:
    """Edit one of your messages."""
    edit_cmd(
        store_from_path=_store,
        config_or_exit=config_or_exit,
        db_path=db_path,
        message_id=message_id,
        text=text,
    )


@app.command()
def delete(
    message_id: str,
    db_path: str = typer.Option(None, "--db", help="Path to SQLite database"),
) -> None:
    """Delete a message (kept as a tombstone)."""
    delete_cmd(
        store_from_path=_store,
        config_or_exit=config_or_exit,
        db_path=db_path,
        message_id=message_id,
    )


@app.command()
def compact(db_path: str = typer.Option(None, "--db", help="Path to SQLite database")) -> None:
    """Deduplicate the stored messages."""
    compact_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def stats(db_path: str = typer.Option(None, "--db", help="Path to SQLite database")) -> None:
    """Show store statistics."""
    stats_cmd(store_from_path=_store, db_path=db_path)


@app.command("config")
def config() -> None:
    """Print the effective configuration."""
    config_cmd(config_or_exit=config_or_exit)


@app.command("version")
def version() -> None:
    """Print version."""
    print(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
