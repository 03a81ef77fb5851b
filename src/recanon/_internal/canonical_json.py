"""Canonical JSON for hashing and size limits.

Sorted keys, compact separators, UTF-8 text and no NaN or Infinity, so the
same logical value always yields the same bytes.
"""

import json
from typing import Any


def canonical_dumps(obj: Any) -> str:
    """Serialize ``obj`` to canonical JSON text.

    Raises:
        ValueError: ``obj`` contains NaN or an infinity.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def canonical_size(obj: Any) -> int:
    """Size in bytes of the UTF-8 encoded canonical form."""
    return len(canonical_dumps(obj).encode("utf-8"))
