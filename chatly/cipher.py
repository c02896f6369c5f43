from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

DEFAULT_SECRET = "chatly-demo-secret-v1"
DEFAULT_ITERATIONS = 100_000
NONCE_SIZE = 12
KEY_SIZE = 32
UNDECRYPTABLE = "[Unable to decrypt]"


@dataclass(frozen=True)
class CipherPayload:
    iv: bytes
    data: bytes

    def to_dict(self) -> dict[str, list[int]]:
        return {"iv": list(self.iv), "data": list(self.data)}

    @classmethod
    def from_dict(cls, value: Any) -> CipherPayload:
        """Parse the persisted ``{iv: [int], data: [int]}`` form.

        Raises ``ValueError`` when either field is missing or is not a list of
        byte values. Nonce length is not checked here; a short nonce still
        round-trips through the store and fails later at decrypt time.
        """
        if not isinstance(value, dict):
            raise ValueError("cipher must be an object")
        return cls(iv=_to_bytes(value.get("iv"), "iv"), data=_to_bytes(value.get("data"), "data"))


@dataclass(frozen=True)
class UnreadablePayload:
    """A stored cipher value that does not parse; kept verbatim so it round-trips."""

    raw: Any
    reason: str

    @property
    def iv(self) -> bytes:
        # Stands in for the nonce when fingerprinting; equal raw values collide.
        return hashlib.sha256(json.dumps(self.raw, sort_keys=True, default=str).encode()).digest()

    @property
    def data(self) -> bytes:
        return b""

    def to_dict(self) -> Any:
        return self.raw


def load_payload(value: Any) -> CipherPayload | UnreadablePayload:
    try:
        return CipherPayload.from_dict(value)
    except ValueError as exc:
        return UnreadablePayload(raw=value, reason=str(exc))


def _to_bytes(value: Any, field: str) -> bytes:
    if isinstance(value, bytes):
        return value
    if not isinstance(value, list):
        raise ValueError(f"cipher.{field} must be a list of bytes")
    try:
        return bytes(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"cipher.{field} must be a list of bytes") from exc


@dataclass(frozen=True)
class DecryptOk:
    text: str


@dataclass(frozen=True)
class DecryptFailed:
    reason: str


DecryptResult = DecryptOk | DecryptFailed


@lru_cache(maxsize=64)
def derive_key(
    conversation_id: str,
    *,
    secret: str = DEFAULT_SECRET,
    iterations: int = DEFAULT_ITERATIONS,
) -> bytes:
    """PBKDF2-SHA256 → 32-byte AES-256-GCM key for one conversation."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=conversation_id.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(f"{secret}|{conversation_id}".encode())


def encrypt(
    conversation_id: str,
    plaintext: str,
    *,
    secret: str = DEFAULT_SECRET,
    iterations: int = DEFAULT_ITERATIONS,
) -> CipherPayload:
    key = derive_key(conversation_id, secret=secret, iterations=iterations)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return CipherPayload(iv=nonce, data=ciphertext)


def decrypt(
    conversation_id: str,
    payload: CipherPayload | Any,
    *,
    secret: str = DEFAULT_SECRET,
    iterations: int = DEFAULT_ITERATIONS,
) -> DecryptResult:
    if isinstance(payload, UnreadablePayload):
        return DecryptFailed(payload.reason)
    if not isinstance(payload, CipherPayload):
        try:
            payload = CipherPayload.from_dict(payload)
        except ValueError as exc:
            return DecryptFailed(str(exc))
    if len(payload.iv) != NONCE_SIZE:
        return DecryptFailed(f"nonce must be {NONCE_SIZE} bytes, got {len(payload.iv)}")
    try:
        key = derive_key(conversation_id, secret=secret, iterations=iterations)
        raw = AESGCM(key).decrypt(payload.iv, payload.data, None)
        return DecryptOk(raw.decode("utf-8"))
    except InvalidTag:
        return DecryptFailed("authentication failed")
    except (TypeError, ValueError) as exc:
        return DecryptFailed(str(exc) or exc.__class__.__name__)


def decrypt_text(
    conversation_id: str,
    payload: CipherPayload | Any,
    sentinel: str = UNDECRYPTABLE,
    *,
    secret: str = DEFAULT_SECRET,
    iterations: int = DEFAULT_ITERATIONS,
) -> str:
    result = decrypt(conversation_id, payload, secret=secret, iterations=iterations)
    if isinstance(result, DecryptOk):
        return result.text
    logger.debug("decrypt failed for %s: %s", conversation_id, result.reason)
    return sentinel


class Cipher:
    """Binds the key-derivation parameters so callers only pass a conversation id."""

    def __init__(self, secret: str = DEFAULT_SECRET, iterations: int = DEFAULT_ITERATIONS):
        self.secret = secret
        self.iterations = iterations

    @classmethod
    def from_config(cls, cfg: Any) -> Cipher:
        return cls(secret=cfg.app_secret, iterations=cfg.kdf_iterations)

    def encrypt(self, conversation_id: str, plaintext: str) -> CipherPayload:
        return encrypt(
            conversation_id, plaintext, secret=self.secret, iterations=self.iterations
        )

    def decrypt(self, conversation_id: str, payload: CipherPayload | Any) -> DecryptResult:
        return decrypt(conversation_id, payload, secret=self.secret, iterations=self.iterations)

    def decrypt_text(
        self,
        conversation_id: str,
        payload: CipherPayload | Any,
        sentinel: str = UNDECRYPTABLE,
    ) -> str:
        return decrypt_text(
            conversation_id,
            payload,
            sentinel,
            secret=self.secret,
            iterations=self.iterations,
        )
