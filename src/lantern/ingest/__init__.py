"""lantern ingest pipeline: chunking, hashing, embedding, upsert, lifecycle."""

from lantern.ingest.chunking import chunk_text, normalize_chunk_options
from lantern.ingest.embedder import EmbeddingBatcher, EmbeddingConfig
from lantern.ingest.hashing import identity_hash
from lantern.ingest.lifecycle import PromotionResult, namespace_stats, promote, purge
from lantern.ingest.upsert import (
    ChunkFailure,
    IngestChunk,
    IngestConfig,
    IngestDocument,
    Ingestor,
    IngestResult,
    document_from_text,
)

__all__ = [
    "ChunkFailure",
    "EmbeddingBatcher",
    "EmbeddingConfig",
    "IngestChunk",
    "IngestConfig",
    "IngestDocument",
    "IngestResult",
    "Ingestor",
    "PromotionResult",
    "chunk_text",
    "document_from_text",
    "identity_hash",
    "namespace_stats",
    "normalize_chunk_options",
    "promote",
    "purge",
]
