"""Slot promotion, purge, and namespace statistics.

Promotion copies a namespace from one slot to the other reusing the stored
embeddings. The destination hash is recomputed for the destination slot and
gates each write the same way ingestion does, so promoting twice is a no-op.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, replace

from lantern.db.models import NamespaceStats, Slot, UpsertOutcome
from lantern.db.repository import Repository
from lantern.errors import ValidationError
from lantern.ingest.hashing import identity_hash
from lantern.rag.filters import validate_namespace

logger = logging.getLogger(__name__)


@dataclass
class PromotionResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated or self.removed)


def promote(
    repo: Repository,
    namespace: str,
    from_slot: Slot | str = Slot.STAGING,
    to_slot: Slot | str = Slot.PROD,
    replace_missing: bool = False,
    dry_run: bool = False,
) -> PromotionResult:
    """Copy every chunk of *namespace* from *from_slot* into *to_slot*.

    Args:
        repo:            Open Repository instance.
        namespace:       Exact namespace to promote (descendants are not included).
        from_slot:       Source slot.
        to_slot:         Destination slot.
        replace_missing: Also delete destination chunks whose key no longer
                         exists in the source slot.
        dry_run:         Report what would change without writing.

    Raises:
        ValidationError: If the slots are equal or the namespace is malformed.
    """
    ns = validate_namespace(namespace)
    src = Slot.parse(from_slot)
    dst = Slot.parse(to_slot)
    if src is dst:
        raise ValidationError(f"Cannot promote {ns!r} from {src.value} onto itself.")

    result = PromotionResult(dry_run=dry_run)
    source_chunks = repo.list_chunks(ns, src)

    with nullcontext() if dry_run else repo.transaction():
        dest_keys = repo.list_keys(ns, dst)
        planned = [
            (chunk, identity_hash(ns, dst, chunk.source_id, chunk.chunk_no, chunk.content))
            for chunk in source_chunks
        ]
        present = repo.existing_hashes(ns, dst, [h for _, h in planned])

        for chunk, dest_hash in planned:
            if dest_hash in present:
                result.unchanged += 1
                continue
            if dry_run:
                key = replace(chunk, slot=dst).key
                if key in dest_keys:
                    result.updated += 1
                else:
                    result.inserted += 1
                continue
            copy = replace(
                chunk,
                slot=dst,
                content_hash=dest_hash,
                id=None,
                created_at=None,
                updated_at=None,
            )
            outcome = repo.upsert_chunk(copy)
            if outcome is UpsertOutcome.INSERTED:
                result.inserted += 1
            elif outcome is UpsertOutcome.UPDATED:
                result.updated += 1
            else:
                result.unchanged += 1

        if replace_missing:
            source_keys = {replace(c, slot=dst).key for c in source_chunks}
            stale = dest_keys - source_keys
            result.removed = len(stale) if dry_run else repo.delete_keys(stale)

    logger.info(
        "Promoted %s %s->%s%s: inserted=%d updated=%d unchanged=%d removed=%d",
        ns, src.value, dst.value, " (dry run)" if dry_run else "",
        result.inserted, result.updated, result.unchanged, result.removed,
    )
    return result


def purge(
    repo: Repository,
    namespace: str,
    slot: Slot | str | None = None,
    source_id: str | None = None,
) -> int:
    """Delete chunks of *namespace*, optionally narrowed to a slot and source.

    Returns:
        Number of chunks removed.
    """
    ns = validate_namespace(namespace)
    removed = repo.delete_chunks(
        ns, slot=Slot.parse(slot) if slot is not None else None, source_id=source_id
    )
    logger.info(
        "Purged %d chunks from %s (slot=%s, source=%s)",
        removed, ns, Slot.parse(slot).value if slot is not None else "*", source_id or "*",
    )
    return removed


def namespace_stats(repo: Repository, namespace: str | None = None) -> list[NamespaceStats]:
    """Chunk and source counts per (namespace, slot)."""
    if namespace is not None:
        namespace = validate_namespace(namespace)
    return repo.namespace_stats(namespace)
