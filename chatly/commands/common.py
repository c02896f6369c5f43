from __future__ import annotations

from typing import Any

import typer
from rich import print

from ..config import ChatlyConfig, load_config, read_config_file
from ..contacts import Contact, resolve_contact
from ..store import ChatStore


def store_from_path(db_path: str | None) -> ChatStore:
    cfg = load_config()
    return ChatStore(db_path or cfg.db_path, fingerprint_bucket_ms=cfg.fingerprint_bucket_ms)


def config_or_exit() -> ChatlyConfig:
    read_config_or_exit()
    return load_config()


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def contact_or_exit(value: str) -> Contact:
    try:
        return resolve_contact(value)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
