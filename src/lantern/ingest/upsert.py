"""Ingestion engine: validate, sanitize, hash, embed, and upsert documents.

Every document is written in one transaction keyed by
(namespace, slot, source_id, chunk_no). The stored content hash gates each
write, so re-ingesting unchanged content costs one read per document and no
embedding calls.

Pipeline per call:
    1. validate every document (no embedding or store call on failure)
    2. sanitize chunks, drop near-empty ones
    3. identity-hash each chunk
    4. embed only chunks whose stored hash differs
    5. upsert inside ``BEGIN IMMEDIATE``; re-plan on a stale snapshot
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone

from lantern.db.models import Chunk, Metadata, Slot, UpsertOutcome, validate_metadata
from lantern.db.repository import Repository
from lantern.errors import (
    EmbeddingError,
    IngestError,
    StaleSnapshotError,
    StoreError,
    ValidationError,
)
from lantern.ingest.chunking import chunk_text
from lantern.ingest.embedder import EmbeddingBatcher
from lantern.ingest.hashing import identity_hash
from lantern.ingest.sanitize import DEFAULT_MAX_CHARS, DEFAULT_MIN_CHARS, is_near_empty, sanitize
from lantern.rag.filters import validate_namespace

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class IngestConfig:
    max_content_chars: int = DEFAULT_MAX_CHARS
    min_content_chars: int = DEFAULT_MIN_CHARS
    max_attempts: int = 2


@dataclass
class IngestChunk:
    content: str
    chunk_no: int
    metadata: Metadata = field(default_factory=dict)


@dataclass
class IngestDocument:
    """One source document and its positional chunks."""

    namespace: str
    slot: Slot | str
    source_id: str
    chunks: list[IngestChunk]
    url: str | None = None
    title: str | None = None
    published_at: str | datetime | date | None = None
    metadata: Metadata = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> IngestDocument:
        """Build a document from a JSON-like mapping.

        ``chunks`` may hold strings (numbered by position) or mappings with
        ``content`` and optional ``chunk_no`` / ``metadata``.
        """
        chunks: list[IngestChunk] = []
        for position, raw in enumerate(data.get("chunks") or []):
            if isinstance(raw, str):
                chunks.append(IngestChunk(content=raw, chunk_no=position))
            elif isinstance(raw, Mapping):
                chunks.append(
                    IngestChunk(
                        content=raw.get("content", ""),
                        chunk_no=raw.get("chunk_no", position),
                        metadata=raw.get("metadata") or {},
                    )
                )
            else:
                raise ValidationError(f"chunk {position} must be a string or a mapping")
        return cls(
            namespace=data.get("namespace", ""),
            slot=data.get("slot", ""),
            source_id=data.get("source_id", ""),
            chunks=chunks,
            url=data.get("url"),
            title=data.get("title"),
            published_at=data.get("published_at"),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ChunkFailure:
    namespace: str
    source_id: str
    chunk_no: int
    error: str


@dataclass
class IngestResult:
    """Counts of committed writes plus per-chunk failures.

    Attributes:
        documents: Number of documents whose transaction committed.
    """

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    failures: list[ChunkFailure] = field(default_factory=list)
    documents: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.unchanged

    @property
    def ok(self) -> bool:
        return not self.failures

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.INSERTED:
            self.inserted += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def merge(self, other: IngestResult) -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.failures.extend(other.failures)
        self.documents += other.documents

    def as_dict(self) -> dict[str, object]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "documents": self.documents,
            "failures": [asdict(f) for f in self.failures],
        }


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


def normalize_timestamp(value: str | datetime | date | None) -> str | None:
    """Return *value* as a UTC ``YYYY-MM-DD HH:MM:SS`` string (SQLite's format).

    Accepts datetimes, dates and ISO-8601 strings (a trailing ``Z`` is read
    as UTC). Naive datetimes are taken to be UTC.

    Raises:
        ValidationError: If a string cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"published_at {value!r} is not an ISO-8601 timestamp") from None
    else:
        raise ValidationError(f"published_at must be a string or datetime, got {type(value).__name__}")

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime(_TIMESTAMP_FORMAT)


def validate_documents(documents: Iterable[IngestDocument]) -> list[IngestDocument]:
    """Check every document and return normalised copies.

    Nothing is embedded or written if any document is invalid.

    Raises:
        ValidationError: Naming the index of the first offending document.
    """
    validated: list[IngestDocument] = []
    for index, doc in enumerate(documents):
        if not isinstance(doc, IngestDocument):
            raise ValidationError(
                f"expected IngestDocument, got {type(doc).__name__}", document_index=index
            )
        try:
            validated.append(_validate_document(doc))
        except ValidationError as exc:
            raise ValidationError(str(exc), document_index=index) from None
    return validated


def _validate_document(doc: IngestDocument) -> IngestDocument:
    namespace = validate_namespace(doc.namespace)
    if doc.slot is None or doc.slot == "":
        raise ValidationError("slot is required")
    slot = Slot.parse(doc.slot)
    source_id = (doc.source_id or "").strip() if isinstance(doc.source_id, str) else ""
    if not source_id:
        raise ValidationError("source_id is required")
    if not doc.chunks:
        raise ValidationError(f"source {source_id!r} has no chunks")

    doc_metadata = validate_metadata(doc.metadata)
    seen: set[int] = set()
    chunks: list[IngestChunk] = []
    for chunk in doc.chunks:
        no = chunk.chunk_no
        if isinstance(no, bool) or not isinstance(no, int) or no < 0:
            raise ValidationError(f"chunk_no must be a non-negative integer, got {no!r}")
        if no in seen:
            raise ValidationError(f"duplicate chunk_no {no} in source {source_id!r}")
        seen.add(no)
        if not isinstance(chunk.content, str):
            raise ValidationError(f"chunk {no} content must be a string")
        chunks.append(
            IngestChunk(
                content=chunk.content,
                chunk_no=no,
                metadata={**doc_metadata, **validate_metadata(chunk.metadata)},
            )
        )

    return IngestDocument(
        namespace=namespace,
        slot=slot,
        source_id=source_id,
        chunks=chunks,
        url=doc.url or None,
        title=doc.title or None,
        published_at=normalize_timestamp(doc.published_at),
        metadata=doc_metadata,
    )


def document_from_text(
    namespace: str,
    slot: Slot | str,
    source_id: str,
    text: str,
    chars: int | None = None,
    overlap: int | None = None,
    url: str | None = None,
    title: str | None = None,
    published_at: str | datetime | None = None,
    metadata: Metadata | None = None,
) -> IngestDocument:
    """Split raw *text* with the fixed-window chunker into an IngestDocument."""
    return IngestDocument(
        namespace=namespace,
        slot=slot,
        source_id=source_id,
        chunks=[
            IngestChunk(content=piece, chunk_no=i)
            for i, piece in enumerate(chunk_text(text, chars, overlap))
        ],
        url=url,
        title=title,
        published_at=published_at,
        metadata=dict(metadata or {}),
    )


# ------------------------------------------------------------------
# Ingestor
# ------------------------------------------------------------------


class Ingestor:
    """Upsert documents into the store.

    Args:
        repo:     Open Repository instance. All writes happen on the calling
                  thread; the embedder parallelises provider calls only.
        embedder: Batcher used for new and changed chunks.
        config:   Sanitisation limits and retry policy.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingBatcher,
        config: IngestConfig | None = None,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._config = config or IngestConfig()

    def ingest(
        self,
        documents: Sequence[IngestDocument],
        fail_fast: bool = False,
    ) -> IngestResult:
        """Ingest *documents* and return committed counts.

        New and changed chunks of every document are embedded together, so the
        batcher's item and token bounds apply across documents. If that shared
        call fails, each document is embedded on its own while it is written,
        which pins the failure on the documents that cause it.

        A document whose embedding or write fails is rolled back as a unit and
        every one of its chunks is reported in ``failures``; other documents
        still commit.

        Raises:
            ValidationError: Before any work, if any document is invalid.
            IngestError: With ``fail_fast``, on the first failed document.
        """
        docs = validate_documents(documents)
        result = IngestResult()

        plans = [(doc, self._prepare(doc)) for doc in docs]
        try:
            self._embed_pending(plans)
        except (EmbeddingError, StoreError, sqlite3.Error) as exc:
            logger.warning(
                "Batched embedding of %d documents failed (%s); embedding per document",
                len(plans), exc,
            )

        for doc, chunks in plans:
            try:
                result.merge(self._write_document(doc, chunks))
            except (EmbeddingError, StoreError, StaleSnapshotError, sqlite3.Error) as exc:
                logger.warning(
                    "Ingest failed for %s/%s:%s: %s",
                    doc.namespace, Slot.parse(doc.slot).value, doc.source_id, exc,
                )
                result.failures.extend(
                    ChunkFailure(
                        namespace=doc.namespace,
                        source_id=doc.source_id,
                        chunk_no=c.chunk_no,
                        error=str(exc),
                    )
                    for c in doc.chunks
                )
                if fail_fast:
                    raise IngestError(
                        f"Ingest of source {doc.source_id!r} failed: {exc}", result
                    ) from exc

        logger.info(
            "Ingested %d documents: inserted=%d updated=%d unchanged=%d failed_chunks=%d",
            result.documents, result.inserted, result.updated, result.unchanged,
            len(result.failures),
        )
        return result

    # ------------------------------------------------------------------
    # Per-document pipeline
    # ------------------------------------------------------------------

    def _prepare(self, doc: IngestDocument) -> list[Chunk]:
        """Sanitise and hash *doc*'s chunks, dropping near-empty ones."""
        slot = Slot.parse(doc.slot)
        prepared: list[Chunk] = []
        for item in doc.chunks:
            content = sanitize(item.content, self._config.max_content_chars)
            if is_near_empty(content, self._config.min_content_chars):
                logger.debug("Dropping near-empty chunk %s#%d", doc.source_id, item.chunk_no)
                continue
            prepared.append(
                Chunk(
                    namespace=doc.namespace,
                    slot=slot,
                    source_id=doc.source_id,
                    chunk_no=item.chunk_no,
                    content=content,
                    content_hash=identity_hash(
                        doc.namespace, slot, doc.source_id, item.chunk_no, content
                    ),
                    url=doc.url,
                    title=doc.title,
                    published_at=doc.published_at,
                    metadata=item.metadata,
                )
            )
        return prepared

    def _write_document(self, doc: IngestDocument, chunks: list[Chunk]) -> IngestResult:
        if not chunks:
            return IngestResult(documents=1)

        attempts = max(1, self._config.max_attempts)
        attempt = 1
        while True:
            # No-op when the shared pass already embedded everything; after a
            # stale snapshot it embeds only chunks the re-plan marks changed.
            self._embed_pending([(doc, chunks)])
            counts = IngestResult(documents=1)
            try:
                with self._repo.transaction():
                    for chunk in chunks:
                        counts.record(self._repo.upsert_chunk(chunk))
            except StaleSnapshotError:
                if attempt >= attempts:
                    raise
                logger.info(
                    "Stale snapshot for %s (attempt %d/%d); re-planning",
                    doc.source_id, attempt, attempts,
                )
                attempt += 1
            else:
                return counts

    def _embed_pending(self, plans: Sequence[tuple[IngestDocument, list[Chunk]]]) -> None:
        """Embed, in one batcher call, every chunk whose stored hash differs and that lacks a vector."""
        pending: list[Chunk] = []
        for doc, chunks in plans:
            if not chunks:
                continue
            stored = self._repo.get_hashes(doc.namespace, doc.slot, doc.source_id)
            pending.extend(
                c for c in chunks
                if c.embedding is None and stored.get(c.chunk_no) != c.content_hash
            )
        if not pending:
            return
        vectors = self._embedder.embed_many([c.content for c in pending])
        for chunk, vector in zip(pending, vectors):
            chunk.embedding = vector
