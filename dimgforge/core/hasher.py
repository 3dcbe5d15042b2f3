"""Hashing helpers for signatures and checksums.

Signatures are order-sensitive: arguments are joined with ``:`` and then
hashed, so ``sha256_hash("a", "b") != sha256_hash("b", "a")``.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_hash(*args: str) -> str:
    """SHA-256 of the ``:``-joined arguments."""
    return sha256_hex(":".join(args).encode("utf-8"))


def content_hash(obj: Any) -> str:
    """SHA-256 of the canonical JSON form of a JSON-serializable object."""
    return sha256_hex(canonical_json_bytes(obj))


def compute_signature(dependencies: str, previous_signature: str) -> str:
    """Chain a stage's dependency material to its predecessor's signature."""
    return sha256_hash(dependencies, previous_signature)
