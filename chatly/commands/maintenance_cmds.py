from __future__ import annotations

import json

from rich import print

from ..cipher import Cipher
from ..config import get_config_path, get_env_overrides
from ..seed import seed_demo_if_empty


def init_cmd(*, store_from_path, config_or_exit, db_path: str | None, seed: bool | None) -> None:
    """Create the store (no-op if it already exists) and optionally seed a demo thread."""

    cfg = config_or_exit()
    store = store_from_path(db_path)
    try:
        snapshot = store.load()
        print(
            f"Initialized store at {store.db_path} "
            f"({len(snapshot.conversations)} conversations)"
        )
        should_seed = cfg.seed_demo if seed is None else seed
        if should_seed:
            added = seed_demo_if_empty(store, Cipher.from_config(cfg))
            if added:
                print(f"Seeded {added} demo messages")
    finally:
        store.close()


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MB"
    return f"{size / 1024 / 1024 / 1024:.1f} GB"


def stats_cmd(*, store_from_path, db_path: str | None) -> None:
    store = store_from_path(db_path)
    try:
        stats_data = store.stats()
    finally:
        store.close()

    db_stats = stats_data["database"]
    print("[bold]Database[/bold]")
    print(f"- Path: {db_stats['path']}")
    print(f"- Size: {_format_bytes(int(db_stats['size_bytes']))}")
    print(f"- Drafts: {db_stats['drafts']}")
    print(f"- Read markers: {db_stats['read_markers']}")

    print("\n[bold]Messages[/bold]")
    print(f"- Conversations: {stats_data['conversations']}")
    print(f"- Messages: {stats_data['messages']} ({stats_data['tombstones']} deleted)")
    for status, count in sorted(stats_data["statuses"].items()):
        print(f"- {status}: {count}")


def compact_cmd(*, store_from_path, db_path: str | None) -> None:
    """Deduplicate and re-sort the stored messages."""

    store = store_from_path(db_path)
    try:
        result = store.compact()
    finally:
        store.close()
    print(
        f"Compacted {result['before']} -> {result['after']} messages "
        f"({result['removed']} removed)"
    )


def config_cmd(*, config_or_exit) -> None:
    """Print the effective configuration."""

    cfg = config_or_exit()
    data = cfg.to_dict()
    data.pop("app_secret", None)
    print(f"[bold]Config file[/bold]: {get_config_path()}")
    overrides = get_env_overrides()
    if overrides:
        print(f"[bold]Env overrides[/bold]: {', '.join(sorted(overrides))}")
    print(json.dumps(data, indent=2))
