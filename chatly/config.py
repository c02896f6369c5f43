from __future__ import annotations

import json
import os
import warnings
from collections.abc import Iterable
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/chatly/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "CHATLY_DB",
    "app_secret": "CHATLY_APP_SECRET",
    "kdf_iterations": "CHATLY_KDF_ITERATIONS",
    "page_size": "CHATLY_PAGE_SIZE",
    "duplicate_window_ms": "CHATLY_DUPLICATE_WINDOW_MS",
    "delivered_delay_ms": "CHATLY_DELIVERED_DELAY_MS",
    "typing_debounce_ms": "CHATLY_TYPING_DEBOUNCE_MS",
    "reply_delay_min_ms": "CHATLY_REPLY_DELAY_MIN_MS",
    "reply_delay_max_ms": "CHATLY_REPLY_DELAY_MAX_MS",
    "undo_window_ms": "CHATLY_UNDO_WINDOW_MS",
    "near_bottom_px": "CHATLY_NEAR_BOTTOM_PX",
    "fingerprint_bucket_ms": "CHATLY_FINGERPRINT_BUCKET_MS",
    "seed_demo": "CHATLY_SEED_DEMO",
}

# Smallest accepted value per int field; lower values fall back to the default.
INT_MINIMUMS = {
    "kdf_iterations": 1,
    "page_size": 1,
    "fingerprint_bucket_ms": 1,
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("CHATLY_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class ChatlyConfig:
    db_path: str = "~/.chatly/chatly.sqlite"

    # Key derivation input. Obfuscation at rest only; not a security boundary.
    app_secret: str = "chatly-demo-secret-v1"
    kdf_iterations: int = 100_000

    page_size: int = 20
    duplicate_window_ms: int = 600
    delivered_delay_ms: int = 300
    typing_debounce_ms: int = 800
    reply_delay_min_ms: int = 900
    reply_delay_max_ms: int = 1600
    undo_window_ms: int = 6000
    near_bottom_px: int = 24
    fingerprint_bucket_ms: int = 200
    seed_demo: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def _invalid(key: str, value: object) -> None:
    warnings.warn(f"Invalid value for {key}: {value!r}", RuntimeWarning, stacklevel=4)


def _to_int(key: str, value: object, current: int) -> int:
    if isinstance(value, bool):
        _invalid(key, value)
        return current
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        _invalid(key, value)
        return current
    if parsed < INT_MINIMUMS.get(key, 0):
        _invalid(key, value)
        return current
    return parsed


def _to_bool(key: str, value: object, current: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    _invalid(key, value)
    return current


def _coerce(key: str, value: object, current: Any) -> Any:
    # Field defaults fix each key's type.
    if isinstance(current, bool):
        return _to_bool(key, value, current)
    if isinstance(current, int):
        return _to_int(key, value, current)
    if isinstance(value, str):
        return value
    _invalid(key, value)
    return current


def _apply(cfg: ChatlyConfig, items: Iterable[tuple[str, object]]) -> None:
    known = {f.name for f in fields(cfg)}
    for key, value in items:
        if key not in known or value is None:
            continue
        setattr(cfg, key, _coerce(key, value, getattr(cfg, key)))


def load_config(path: Path | None = None) -> ChatlyConfig:
    """Defaults, then the config file, then ``CHATLY_*`` env vars."""
    cfg = ChatlyConfig()
    try:
        data = read_config_file(path)
    except ValueError as exc:
        warnings.warn(
            f"Invalid config file {get_config_path(path)}: {exc}", RuntimeWarning, stacklevel=2
        )
        data = {}
    _apply(cfg, data.items())
    _apply(cfg, get_env_overrides().items())
    if cfg.reply_delay_max_ms < cfg.reply_delay_min_ms:
        warnings.warn(
            "reply_delay_max_ms is below reply_delay_min_ms; using the minimum for both",
            RuntimeWarning,
            stacklevel=2,
        )
        cfg.reply_delay_max_ms = cfg.reply_delay_min_ms
    return cfg
