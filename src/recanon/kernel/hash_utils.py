"""Hash utilities with explicit normalization rules for stable comparison.

This module defines the hash namespace used everywhere in recanon.

Key rules:
- Content hashes are SHA-256 over exact bytes, rendered as
  ``sha256:`` + 64 lowercase hex characters
- Text is hashed over its UTF-8 bytes
- Hashes may arrive bare or prefixed, in any case; they are normalized
  before storage or comparison and compared exactly afterwards
- The non-cryptographic preview hash carries a different prefix and is
  never accepted where a content hash is required
"""

import hashlib
import re
from typing import Optional, Sequence, Union

SHA256_PREFIX = "sha256:"
PREVIEW_PREFIX = "preview:"

_BARE_HEX_RE = re.compile(r"[0-9a-f]{64}")
HASH_PATTERN = re.compile(r"(sha256:)?[a-fA-F0-9]{64}")

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF


class CanonicalizationError(ValueError):
    """Raised when a value cannot be canonicalized or a hash is malformed."""
    pass


def hash_bytes(content: bytes) -> str:
    """Compute the prefixed SHA-256 hash of raw bytes."""
    digest = hashlib.sha256(content).hexdigest()
    return f"{SHA256_PREFIX}{digest}"


def hash_text(content: Union[str, bytes]) -> str:
    """Compute the prefixed SHA-256 hash of a canonical string (UTF-8)."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hash_bytes(content)


def strip_prefix(value: str) -> str:
    """Strip a leading ``sha256:`` prefix (any case) for systems storing bare hex."""
    trimmed = value.strip()
    if trimmed[: len(SHA256_PREFIX)].lower() == SHA256_PREFIX:
        return trimmed[len(SHA256_PREFIX):]
    return trimmed


def normalize_hash(value: str) -> str:
    """Normalize a bare or prefixed hash to ``sha256:<lowercase hex>``.

    Raises:
        CanonicalizationError: If the value is not a 64-hex-digit SHA-256 hash
            (preview hashes included).
    """
    if not isinstance(value, str):
        raise CanonicalizationError(f"Hash must be a string, got {type(value).__name__}")
    bare = strip_prefix(value).lower()
    if not _BARE_HEX_RE.fullmatch(bare):
        raise CanonicalizationError(f"Not a SHA-256 content hash: {value!r}")
    return f"{SHA256_PREFIX}{bare}"


def try_normalize_hash(value: Optional[str]) -> Optional[str]:
    """Like normalize_hash, but returns None for missing or malformed input."""
    if value is None:
        return None
    try:
        return normalize_hash(value)
    except CanonicalizationError:
        return None


def is_sha256_hash(value: Optional[str]) -> bool:
    return try_normalize_hash(value) is not None


def is_preview_hash(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.strip().startswith(PREVIEW_PREFIX)


def hashes_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Exact equality of two content hashes after normalization.

    Missing, malformed and preview hashes never compare equal to anything.
    """
    na = try_normalize_hash(a)
    nb = try_normalize_hash(b)
    if na is None or nb is None:
        return False
    return na == nb


def preview_hash(content: str) -> str:
    """Non-cryptographic 64-bit FNV-1a fingerprint for offline display only."""
    h = _FNV64_OFFSET
    for byte in content.encode("utf-8"):
        h ^= byte
        h = (h * _FNV64_PRIME) & _MASK64
    return f"{PREVIEW_PREFIX}{h:016x}"


def payload_fingerprint(code: str, seed: int, vars: Sequence, loop: bool) -> str:
    """Debug fingerprint of a render request: sha256(code|seed|v0,...,v9|loop)."""
    from recanon.kernel.canonical import format_number

    joined_vars = ",".join(format_number(v) for v in vars)
    payload = f"{code}|{seed}|{joined_vars}|{'true' if loop else 'false'}"
    return hash_text(payload)
