from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from chatly import __version__
from chatly.cli import app
from chatly.store import ChatStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def _fast_timings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setenv("CHATLY_KDF_ITERATIONS", "1000")
    monkeypatch.setenv("CHATLY_DELIVERED_DELAY_MS", "10")
    monkeypatch.setenv("CHATLY_REPLY_DELAY_MIN_MS", "20")
    monkeypatch.setenv("CHATLY_REPLY_DELAY_MAX_MS", "40")
    monkeypatch.setenv("CHATLY_TYPING_DEBOUNCE_MS", "10")


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "cli.sqlite")


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("init", "contacts", "show", "send", "edit", "delete", "compact", "stats"):
        assert command in result.stdout


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_init_seeds_demo_once(db_path: str) -> None:
    first = runner.invoke(app, ["init", "--db", db_path])
    second = runner.invoke(app, ["init", "--db", db_path])

    assert first.exit_code == 0
    assert "4 conversations" in first.stdout
    assert "Seeded 2 demo messages" in first.stdout
    assert "Seeded" not in second.stdout


def test_init_no_seed(db_path: str) -> None:
    result = runner.invoke(app, ["init", "--db", db_path, "--no-seed"])
    assert result.exit_code == 0
    assert "Seeded" not in result.stdout

    contacts = runner.invoke(app, ["contacts", "--db", db_path])
    assert contacts.exit_code == 0
    assert contacts.stdout.count("No messages yet") == 4


def test_contacts_and_show_after_seed(db_path: str) -> None:
    runner.invoke(app, ["init", "--db", db_path])

    contacts = runner.invoke(app, ["contacts", "--db", db_path])
    assert contacts.exit_code == 0
    assert "Ayesha" in contacts.stdout
    assert "You: Hi! How are you?" in contacts.stdout

    show = runner.invoke(app, ["show", "ayesha", "--db", db_path, "--mark-seen"])
    assert show.exit_code == 0
    assert "2 of 2 messages" in show.stdout
    assert "1 new" in show.stdout
    assert "Hello!" in show.stdout
    assert "Marked 1 messages seen" in show.stdout

    again = runner.invoke(app, ["show", "u-1", "--db", db_path])
    assert "new" not in again.stdout


def test_unknown_peer_exits_nonzero(db_path: str) -> None:
    result = runner.invoke(app, ["show", "nobody", "--db", db_path])
    assert result.exit_code == 1
    assert "Unknown contact" in result.stdout


def test_send_waits_for_reply(db_path: str) -> None:
    result = runner.invoke(app, ["send", "u-2", "hello", "--db", db_path, "--timeout", "5"])

    assert result.exit_code == 0
    assert "Sent " in result.stdout
    assert "Hello! How can I help you today?" in result.stdout

    store = ChatStore(db_path)
    try:
        messages = [m for m in store.load().messages if m.conv_id == "conv-u-2"]
    finally:
        store.close()
    assert [m.sender for m in messages] == ["me", "u-2"]
    assert messages[0].status == "delivered"
    assert messages[1].status == "seen"


def test_send_timeout_cancels_pending_reply(db_path: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATLY_REPLY_DELAY_MIN_MS", "2000")
    monkeypatch.setenv("CHATLY_REPLY_DELAY_MAX_MS", "3000")

    result = runner.invoke(app, ["send", "u-1", "hello", "--db", db_path, "--timeout", "0.05"])

    assert result.exit_code == 0
    assert "Timed out waiting for reply" in result.stdout
    assert "Pending reply cancelled" in result.stdout
    store = ChatStore(db_path)
    try:
        senders = [m.sender for m in store.load().messages if m.conv_id == "conv-u-1"]
    finally:
        store.close()
    assert senders == ["me"]


def test_send_no_wait_then_edit_and_delete(db_path: str) -> None:
    sent = runner.invoke(app, ["send", "u-3", "draft", "--no-wait", "--db", db_path])
    assert sent.exit_code == 0
    message_id = sent.stdout.split("Sent ", 1)[1].split()[0]

    edited = runner.invoke(app, ["edit", message_id, "final", "--db", db_path])
    assert edited.exit_code == 0
    assert runner.invoke(app, ["edit", message_id, "final", "--db", db_path]).exit_code == 1

    deleted = runner.invoke(app, ["delete", message_id, "--db", db_path])
    assert deleted.exit_code == 0
    assert runner.invoke(app, ["delete", message_id, "--db", db_path]).exit_code == 1

    show = runner.invoke(app, ["show", "u-3", "--db", db_path])
    assert "0 of 0 messages" in show.stdout


def test_send_empty_text_fails(db_path: str) -> None:
    result = runner.invoke(app, ["send", "u-1", "   ", "--no-wait", "--db", db_path])
    assert result.exit_code == 1
    assert "Nothing sent" in result.stdout


def test_compact_and_stats(db_path: str) -> None:
    runner.invoke(app, ["init", "--db", db_path])

    compacted = runner.invoke(app, ["compact", "--db", db_path])
    assert compacted.exit_code == 0
    assert "Compacted 2 -> 2 messages (0 removed)" in compacted.stdout

    stats = runner.invoke(app, ["stats", "--db", db_path])
    assert stats.exit_code == 0
    assert "Conversations: 4" in stats.stdout
    assert "Messages: 2 (0 deleted)" in stats.stdout


def test_config_hides_secret(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"page_size": 7}))
    monkeypatch.setenv("CHATLY_CONFIG", str(config_path))

    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0
    assert '"page_size": 7' in result.stdout
    assert "app_secret" not in result.stdout
    assert "CHATLY_KDF_ITERATIONS" not in result.stdout
    assert "kdf_iterations" in result.stdout


def test_invalid_config_file_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{broken")
    monkeypatch.setenv("CHATLY_CONFIG", str(config_path))

    result = runner.invoke(app, ["config"])

    assert result.exit_code == 1
    assert "Invalid config file" in result.stdout
