from __future__ import annotations

import base64
import hashlib
import os
import secrets
from typing import Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM


class KeyFileError(RuntimeError):
    pass


def key_id_from_key_bytes(key: bytes) -> str:
    return hashlib.sha256(key).hexdigest()[:16]


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    return base64.urlsafe_b64decode(s.encode("ascii"))


def generate_key_bytes() -> bytes:
    # AES-256 key
    return secrets.token_bytes(32)


def best_effort_restrict_permissions(path: str) -> None:
    """
    Best-effort permissions tightening.
    On Windows this is limited; on POSIX it sets 0o600.
    """
    try:
        if os.name != "nt":
            os.chmod(path, 0o600)
    except OSError:
        return


def write_key_file(path: str, key_bytes: bytes) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key_bytes)
    best_effort_restrict_permissions(path)


def read_key_file(path: str) -> bytes:
    if not os.path.exists(path):
        raise KeyFileError(f"Key file not found at {path!r}")
    with open(path, "rb") as f:
        b = f.read()
    if len(b) != 32:
        raise KeyFileError("Key file must hold exactly 32 bytes (AES-256).")
    return b


def load_or_create_key(path: str) -> bytes:
    if os.path.exists(path):
        return read_key_file(path)
    key = generate_key_bytes()
    write_key_file(path, key)
    return key


def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: bytes = b"") -> Dict[str, str]:
    aes = AESGCM(key)
    nonce = secrets.token_bytes(12)
    ct = aes.encrypt(nonce, plaintext, aad or None)
    return {"v": 1, "nonce": _b64e(nonce), "ciphertext": _b64e(ct)}


def aesgcm_decrypt(key: bytes, blob: Dict[str, str], aad: bytes = b"") -> bytes:
    if blob.get("v") != 1:
        raise ValueError("Unsupported encrypted blob version.")
    aes = AESGCM(key)
    nonce = _b64d(blob["nonce"])
    ct = _b64d(blob["ciphertext"])
    return aes.decrypt(nonce, ct, aad or None)
