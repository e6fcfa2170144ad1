"""Content identity hashing.

The identity hash gates writes: an unchanged hash means the stored row is
skipped entirely. SHA-256 over a JSON array keeps field boundaries unambiguous
("ab" + "c" never collides with "a" + "bc").
"""

from __future__ import annotations

import hashlib
import json

from lantern.db.models import Slot


def identity_hash(
    namespace: str,
    slot: Slot | str,
    source_id: str,
    chunk_no: int,
    content: str,
) -> str:
    """Return the hex SHA-256 digest of the chunk's identity tuple."""
    payload = json.dumps(
        [namespace, Slot.parse(slot).value, source_id, int(chunk_no), content],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
