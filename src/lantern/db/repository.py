"""Repository for all lantern chunk storage operations.

Single interface for: idempotent chunk upserts keyed by
(namespace, slot, source_id, chunk_no), FTS5 sync, hybrid candidate fetches
(dense cosine via sqlite-vec + BM25 via FTS5), and administrative deletes.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager

from lantern.db.models import (
    Chunk,
    ChunkKey,
    NamespaceMode,
    NamespaceStats,
    RetrievedCandidate,
    Slot,
    UpsertOutcome,
)
from lantern.db.vectors import decode_vector, encode_vector
from lantern.errors import StaleSnapshotError, StoreError

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = (
    "c.id, c.namespace, c.slot, c.source_id, c.chunk_no, c.content, c.content_hash, "
    "c.embedding, c.url, c.title, c.published_at, c.metadata, c.created_at, c.updated_at"
)

_UPSERT_SQL = """
INSERT INTO chunks
    (namespace, slot, source_id, chunk_no, content, content_hash, embedding,
     url, title, published_at, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (namespace, slot, source_id, chunk_no) DO UPDATE SET
    content      = excluded.content,
    content_hash = excluded.content_hash,
    embedding    = excluded.embedding,
    url          = excluded.url,
    title        = excluded.title,
    published_at = excluded.published_at,
    metadata     = excluded.metadata,
    updated_at   = datetime('now')
WHERE chunks.content_hash <> excluded.content_hash
RETURNING id
"""

_CANDIDATES_SQL = """
WITH lex AS (
    {lex_select}
),
base AS (
    SELECT {columns},
           1.0 - vec_distance_cosine(c.embedding, :query_vector) AS dense,
           COALESCE(lex.lexical, 0.0) AS lexical,
           julianday('now') - julianday(COALESCE(c.published_at, c.created_at)) AS age_days
    FROM chunks c
    LEFT JOIN lex ON lex.chunk_id = c.id
    WHERE {namespace_clause}
      AND c.slot = :slot
      AND c.embedding IS NOT NULL
)
SELECT * FROM base
WHERE (:ttl_days IS NULL OR age_days <= :ttl_days)
ORDER BY dense + min(max(lexical, 0.0), 1.0) DESC, id ASC
LIMIT :fetch_k
"""

# bm25() is negative (lower = better); negate so larger means more relevant.
_LEX_MATCH = (
    "SELECT rowid AS chunk_id, -bm25(chunks_fts) AS lexical "
    "FROM chunks_fts WHERE chunks_fts MATCH :fts_query"
)
_LEX_EMPTY = "SELECT NULL AS chunk_id, 0.0 AS lexical WHERE 0"

_NS_STRICT = "c.namespace = :namespace"
_NS_PREFIX = (
    "(c.namespace = :namespace "
    "OR substr(c.namespace, 1, length(:namespace) + 1) = :namespace || '/')"
)


class Repository:
    """Data access layer for lantern chunks.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use. Write methods join an enclosing
    ``transaction()`` when one is open, otherwise they run in their own.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see lantern.db.migrations.initialize).
        """
        self._conn = conn

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed writes atomically.

        Uses ``BEGIN IMMEDIATE`` so the write lock is taken before the first
        read; hash comparisons made inside the block cannot be invalidated by
        another writer. Nested calls join the outer transaction.
        """
        if self._conn.in_transaction:
            yield
            return
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    def upsert_chunk(self, chunk: Chunk) -> UpsertOutcome:
        """Insert, update or skip *chunk* by its four-part key.

        The stored ``content_hash`` gates the write: an equal hash is a no-op
        that leaves every column (timestamps included) untouched. A changed
        hash rewrites the row in place, keeping its ``id``.

        Raises:
            StaleSnapshotError: If a write is required but ``chunk.embedding``
                is None, i.e. the caller planned this chunk as unchanged and the
                stored row has since changed.
        """
        with self.transaction():
            row = self._conn.execute(
                """
                SELECT id, content_hash FROM chunks
                WHERE namespace = ? AND slot = ? AND source_id = ? AND chunk_no = ?
                """,
                (chunk.namespace, Slot.parse(chunk.slot).value, chunk.source_id, chunk.chunk_no),
            ).fetchone()

            if row is not None and row["content_hash"] == chunk.content_hash:
                chunk.id = row["id"]
                return UpsertOutcome.UNCHANGED

            if chunk.embedding is None:
                raise StaleSnapshotError(
                    f"Chunk {chunk.source_id}#{chunk.chunk_no} in "
                    f"{chunk.namespace}/{Slot.parse(chunk.slot).value} changed since it was planned."
                )

            written = self._conn.execute(
                _UPSERT_SQL,
                (
                    chunk.namespace,
                    Slot.parse(chunk.slot).value,
                    chunk.source_id,
                    chunk.chunk_no,
                    chunk.content,
                    chunk.content_hash,
                    encode_vector(chunk.embedding),
                    chunk.url,
                    chunk.title,
                    chunk.published_at,
                    json.dumps(chunk.metadata),
                ),
            ).fetchone()
            chunk.id = written["id"]

            if row is None:
                self._conn.execute(
                    "INSERT INTO chunks_fts(rowid, content) VALUES (?, ?)",
                    (chunk.id, chunk.content),
                )
                return UpsertOutcome.INSERTED

            self._conn.execute(
                "UPDATE chunks_fts SET content = ? WHERE rowid = ?",
                (chunk.content, chunk.id),
            )
            return UpsertOutcome.UPDATED

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_chunk(self, chunk_id: int) -> Chunk | None:
        """Return a chunk by its store id, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunk_by_key(self, key: ChunkKey) -> Chunk | None:
        """Return the live chunk for *key*, or None if not found."""
        row = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks c
            WHERE c.namespace = ? AND c.slot = ? AND c.source_id = ? AND c.chunk_no = ?
            """,
            (key.namespace, Slot.parse(key.slot).value, key.source_id, key.chunk_no),
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_hashes(self, namespace: str, slot: Slot | str, source_id: str) -> dict[int, str]:
        """Return ``{chunk_no: content_hash}`` for one source document."""
        rows = self._conn.execute(
            """
            SELECT chunk_no, content_hash FROM chunks
            WHERE namespace = ? AND slot = ? AND source_id = ?
            """,
            (namespace, Slot.parse(slot).value, source_id),
        ).fetchall()
        return {r["chunk_no"]: r["content_hash"] for r in rows}

    def existing_hashes(
        self, namespace: str, slot: Slot | str, hashes: Iterable[str]
    ) -> set[str]:
        """Return the subset of *hashes* already stored in (namespace, slot)."""
        wanted = list(dict.fromkeys(hashes))
        found: set[str] = set()
        # Stay under SQLite's bound-parameter limit.
        for start in range(0, len(wanted), 500):
            batch = wanted[start : start + 500]
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"""
                SELECT content_hash FROM chunks
                WHERE namespace = ? AND slot = ? AND content_hash IN ({placeholders})
                """,
                (namespace, Slot.parse(slot).value, *batch),
            ).fetchall()
            found.update(r["content_hash"] for r in rows)
        return found

    def list_chunks(
        self,
        namespace: str,
        slot: Slot | str,
        source_id: str | None = None,
    ) -> list[Chunk]:
        """Return chunks of (namespace, slot), ordered by source and position."""
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.namespace = ? AND c.slot = ?"
        params: list[object] = [namespace, Slot.parse(slot).value]
        if source_id is not None:
            sql += " AND c.source_id = ?"
            params.append(source_id)
        sql += " ORDER BY c.source_id, c.chunk_no"
        return [_row_to_chunk(r) for r in self._conn.execute(sql, params).fetchall()]

    def list_keys(self, namespace: str, slot: Slot | str) -> set[ChunkKey]:
        """Return the keys of every chunk stored in (namespace, slot)."""
        s = Slot.parse(slot)
        rows = self._conn.execute(
            "SELECT source_id, chunk_no FROM chunks WHERE namespace = ? AND slot = ?",
            (namespace, s.value),
        ).fetchall()
        return {ChunkKey(namespace, s, r["source_id"], r["chunk_no"]) for r in rows}

    def count_chunks(
        self,
        namespace: str | None = None,
        slot: Slot | str | None = None,
        source_id: str | None = None,
    ) -> int:
        """Return the number of stored chunks, optionally filtered."""
        sql = "SELECT COUNT(*) FROM chunks WHERE 1 = 1"
        params: list[object] = []
        if namespace is not None:
            sql += " AND namespace = ?"
            params.append(namespace)
        if slot is not None:
            sql += " AND slot = ?"
            params.append(Slot.parse(slot).value)
        if source_id is not None:
            sql += " AND source_id = ?"
            params.append(source_id)
        return self._conn.execute(sql, params).fetchone()[0]

    def namespace_stats(self, namespace: str | None = None) -> list[NamespaceStats]:
        """Per (namespace, slot) chunk and source counts.

        With *namespace*, only that namespace and its descendants are listed.
        """
        sql = """
            SELECT namespace, slot, COUNT(*) AS chunks,
                   COUNT(DISTINCT source_id) AS sources,
                   MAX(updated_at) AS last_updated
            FROM chunks c
        """
        params: dict[str, object] = {}
        if namespace is not None:
            sql += f" WHERE {_NS_PREFIX}"
            params["namespace"] = namespace
        sql += " GROUP BY namespace, slot ORDER BY namespace, slot"
        return [
            NamespaceStats(
                namespace=r["namespace"],
                slot=Slot(r["slot"]),
                chunks=r["chunks"],
                sources=r["sources"],
                last_updated=r["last_updated"],
            )
            for r in self._conn.execute(sql, params).fetchall()
        ]

    # ------------------------------------------------------------------
    # Hybrid candidate fetch
    # ------------------------------------------------------------------

    def query_candidates(
        self,
        namespace: str,
        slot: Slot | str,
        namespace_mode: NamespaceMode | str,
        query_text: str,
        query_vector: Sequence[float],
        fetch_k: int,
        ttl_days: float | None = None,
    ) -> list[RetrievedCandidate]:
        """Fetch up to *fetch_k* candidates with dense and lexical scores.

        Namespace/slot matching and the TTL cutoff are applied in SQL. Rows are
        ordered by ``dense + clamp(lexical, 0, 1)`` descending, ties by id.

        Raises:
            StoreError: If the underlying query fails.
        """
        mode = NamespaceMode.parse(namespace_mode)
        fts_query = fts_match_expression(query_text)
        sql = _CANDIDATES_SQL.format(
            lex_select=_LEX_MATCH if fts_query else _LEX_EMPTY,
            columns=_CHUNK_COLUMNS,
            namespace_clause=_NS_PREFIX if mode is NamespaceMode.PREFIX else _NS_STRICT,
        )
        params: dict[str, object] = {
            "namespace": namespace,
            "slot": Slot.parse(slot).value,
            "query_vector": encode_vector(query_vector),
            "ttl_days": ttl_days,
            "fetch_k": int(fetch_k),
        }
        if fts_query:
            params["fts_query"] = fts_query

        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Candidate query failed: {exc}") from exc

        logger.debug(
            "query_candidates ns=%s slot=%s mode=%s fetch_k=%d -> %d rows",
            namespace, params["slot"], mode.value, fetch_k, len(rows),
        )
        return [
            RetrievedCandidate(
                chunk=_row_to_chunk(r),
                dense=float(r["dense"] or 0.0),
                lexical=float(r["lexical"] or 0.0),
                age_days=max(float(r["age_days"] or 0.0), 0.0),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    def delete_chunks(
        self,
        namespace: str,
        slot: Slot | str | None = None,
        source_id: str | None = None,
    ) -> int:
        """Delete chunks + FTS entries matching the filters. Returns rows removed."""
        where = "namespace = ?"
        params: list[object] = [namespace]
        if slot is not None:
            where += " AND slot = ?"
            params.append(Slot.parse(slot).value)
        if source_id is not None:
            where += " AND source_id = ?"
            params.append(source_id)

        with self.transaction():
            ids = [
                r[0]
                for r in self._conn.execute(f"SELECT id FROM chunks WHERE {where}", params).fetchall()
            ]
            self._delete_ids(ids)
        return len(ids)

    def delete_keys(self, keys: Iterable[ChunkKey]) -> int:
        """Delete the chunks identified by *keys*. Returns rows removed."""
        removed = 0
        with self.transaction():
            for key in keys:
                row = self._conn.execute(
                    """
                    SELECT id FROM chunks
                    WHERE namespace = ? AND slot = ? AND source_id = ? AND chunk_no = ?
                    """,
                    (key.namespace, Slot.parse(key.slot).value, key.source_id, key.chunk_no),
                ).fetchone()
                if row is not None:
                    self._delete_ids([row["id"]])
                    removed += 1
        return removed

    def _delete_ids(self, ids: list[int]) -> None:
        for start in range(0, len(ids), 500):
            batch = ids[start : start + 500]
            placeholders = ",".join("?" * len(batch))
            self._conn.execute(f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", batch)
            self._conn.execute(f"DELETE FROM chunks WHERE id IN ({placeholders})", batch)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def fts_match_expression(query: str) -> str | None:
    """Build an FTS5 MATCH expression from free text, or None if it has no terms.

    FTS5 rejects bare punctuation as syntax errors, so every word token is
    quoted and the tokens are OR-ed together.
    """
    tokens = list(dict.fromkeys(t.lower() for t in _TOKEN_RE.findall(query or "")))
    if not tokens:
        return None
    return " OR ".join(f'"{t}"' for t in tokens)


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        namespace=row["namespace"],
        slot=Slot(row["slot"]),
        source_id=row["source_id"],
        chunk_no=row["chunk_no"],
        content=row["content"],
        content_hash=row["content_hash"],
        embedding=decode_vector(row["embedding"]),
        url=row["url"],
        title=row["title"],
        published_at=row["published_at"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
