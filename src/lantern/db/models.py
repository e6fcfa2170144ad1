"""Domain models for the lantern storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from lantern.errors import ValidationError

MetadataValue = Union[str, int, float, bool, None]
Metadata = dict[str, MetadataValue]

_SCALAR_TYPES = (str, int, float, bool, type(None))


class Slot(str, Enum):
    """Two isolated generations of the same namespace."""

    STAGING = "staging"
    PROD = "prod"

    @classmethod
    def parse(cls, value: str | Slot) -> Slot:
        if isinstance(value, Slot):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid slot {value!r}: expected 'staging' or 'prod'."
            ) from None


class NamespaceMode(str, Enum):
    """How a query namespace is matched against stored namespaces."""

    STRICT = "strict"
    PREFIX = "prefix"  # the namespace itself plus every "ns/..." descendant

    @classmethod
    def parse(cls, value: str | NamespaceMode) -> NamespaceMode:
        if isinstance(value, NamespaceMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid namespace mode {value!r}: expected 'strict' or 'prefix'."
            ) from None


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def validate_metadata(metadata: dict | None) -> Metadata:
    """Return *metadata* as a plain dict, rejecting non-scalar values.

    Raises:
        ValidationError: If a key is not a string or a value is not one of
            str / int / float / bool / None.
    """
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ValidationError(f"metadata must be a mapping, got {type(metadata).__name__}")
    clean: Metadata = {}
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationError(f"metadata key {key!r} must be a string")
        if not isinstance(value, _SCALAR_TYPES):
            raise ValidationError(
                f"metadata[{key!r}] must be a string, number, bool or null, "
                f"got {type(value).__name__}"
            )
        clean[key] = value
    return clean


@dataclass(frozen=True)
class ChunkKey:
    """The unique upsert key of a chunk."""

    namespace: str
    slot: Slot
    source_id: str
    chunk_no: int


@dataclass
class Chunk:
    namespace: str
    slot: Slot
    source_id: str
    chunk_no: int
    content: str
    content_hash: str
    embedding: list[float] | None = None
    url: str | None = None
    title: str | None = None
    published_at: str | None = None
    metadata: Metadata = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None  # set by the store; None for unsaved chunks

    @property
    def key(self) -> ChunkKey:
        return ChunkKey(self.namespace, self.slot, self.source_id, self.chunk_no)


@dataclass
class RetrievedCandidate:
    """A chunk fetched for one query, with its per-channel scores.

    Attributes:
        chunk: The stored chunk, including its embedding.
        dense: Cosine similarity between the chunk and the query vector.
        lexical: Raw lexical rank from the store (unbounded; clamped at fusion).
        age_days: Days since ``published_at`` (or ``created_at`` when unset).
        fused_score: Weighted fusion score, set by the hybrid scorer.
    """

    chunk: Chunk
    dense: float
    lexical: float
    age_days: float
    fused_score: float = 0.0

    @property
    def embedding(self) -> list[float]:
        return self.chunk.embedding or []


@dataclass
class NamespaceStats:
    namespace: str
    slot: Slot
    chunks: int
    sources: int
    last_updated: str | None = None
