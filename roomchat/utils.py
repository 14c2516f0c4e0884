"""Small helpers shared by the chat server and client."""

from __future__ import annotations

import hmac
import random
import time

_WHITESPACE = " \t\n\v\f\r"
_HASH_BYTES = 32

_rng = random.SystemRandom()


def generate_uuid() -> str:
    """Return a random version-4 style identifier of 36 characters."""
    return "%08x-%04x-%04x-%04x-%04x%08x" % (
        _rng.getrandbits(32),
        _rng.getrandbits(16),
        (_rng.getrandbits(12) | 0x4000),
        (_rng.getrandbits(14) | 0x8000),
        _rng.getrandbits(16),
        _rng.getrandbits(32),
    )


def hash_password(password: str) -> str:
    """Return the 64 hex digit hash stored for ``password``.

    Raises ValueError for an empty password.
    """
    data = password.encode("utf-8")
    if not data:
        raise ValueError("password must not be empty")
    digest = bytes(
        ((data[i % len(data)] ^ ((i * 13) & 0xFF)) + 7) & 0xFF
        for i in range(_HASH_BYTES)
    )
    return digest.hex()


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if ``password`` hashes to ``password_hash``."""
    try:
        computed = hash_password(password)
    except ValueError:
        return False
    return hmac.compare_digest(computed.encode("ascii"), password_hash.encode("utf-8"))


def truncate(text: str, size: int) -> str:
    """Cut ``text`` so that it fits a NUL-terminated field of ``size`` bytes.

    The text ends at its first NUL character, and at most ``size - 1`` bytes
    of its UTF-8 form are kept without splitting a character.
    """
    if size <= 0:
        return ""
    text = text.split("\0", 1)[0]
    data = text.encode("utf-8")
    if len(data) < size:
        return text
    return data[: size - 1].decode("utf-8", errors="ignore")


def trim(text: str) -> str:
    """Strip leading and trailing whitespace."""
    return text.strip(_WHITESPACE)


def log_message(message: str) -> None:
    """Print ``message`` to standard output with a local timestamp."""
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
    print(f"[{timestamp}] {message}", flush=True)