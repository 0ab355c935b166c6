from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from recordroulette.core.config import get_settings


class EncryptionKeyError(RuntimeError):
    pass


def _load_key() -> bytes:
    settings = get_settings()
    raw = settings.ENCRYPTION_KEY_BASE64
    try:
        key = base64.b64decode(raw, validate=True)
    except Exception as e:  # noqa: BLE001
        raise EncryptionKeyError("ENCRYPTION_KEY_BASE64 must be valid base64") from e

    if len(key) != 32:
        raise EncryptionKeyError("ENCRYPTION_KEY_BASE64 must decode to 32 bytes (AES-256)")

    return key


def token_aad(*, provider: str, provider_id: str) -> bytes:
    # Binds a ciphertext to its owner so a row's tokens can't be swapped into another row.
    return f"users:{provider}:{provider_id}".encode()


def encrypt_text(*, plaintext: str, aad: bytes) -> bytes:
    key = _load_key()
    nonce = os.urandom(12)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), aad)
    return nonce + ciphertext


def decrypt_text(*, blob: bytes, aad: bytes) -> str:
    if len(blob) < 13:
        raise ValueError("Encrypted blob is too short")

    key = _load_key()
    nonce = blob[:12]
    ciphertext = blob[12:]
    return AESGCM(key).decrypt(nonce, ciphertext, aad).decode("utf-8")
