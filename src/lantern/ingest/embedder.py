"""Embedding batcher: bounded, order-preserving calls to the embedding provider.

Texts are truncated to the per-item token cap, packed into batches bounded by
item count and estimated token total, and dispatched on a fixed-size thread
pool. Every returned batch is checked against the configured dimensionality
before any vector reaches the store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from lantern.errors import EmbeddingDimensionError, EmbeddingError
from lantern.ingest.chunking import estimate_tokens
from lantern.ingest.sanitize import truncate_for_embedding
from lantern.rag.llm_client import EmbedFn, make_embed_fn

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    max_batch_items: int = 96
    max_batch_tokens: int = 100_000
    max_item_tokens: int = 8_000
    workers: int = 8
    num_retries: int = 3


@dataclass(frozen=True)
class Batch:
    """A contiguous slice ``texts[start:start + len(texts)]`` of the input."""

    start: int
    texts: list[str]


def plan_batches(
    texts: Sequence[str],
    max_items: int,
    max_tokens: int,
) -> list[Batch]:
    """Pack *texts* into contiguous batches.

    A batch closes when adding the next text would exceed *max_items* or
    *max_tokens* (estimated). A single text larger than *max_tokens* still
    gets a batch of its own.
    """
    max_items = max(1, max_items)
    batches: list[Batch] = []
    current: list[str] = []
    current_tokens = 0
    start = 0

    for i, text in enumerate(texts):
        tokens = estimate_tokens(text)
        if current and (
            len(current) >= max_items
            or (max_tokens > 0 and current_tokens + tokens > max_tokens)
        ):
            batches.append(Batch(start=start, texts=current))
            current, current_tokens, start = [], 0, i
        current.append(text)
        current_tokens += tokens

    if current:
        batches.append(Batch(start=start, texts=current))
    return batches


class EmbeddingBatcher:
    """Turn a list of texts into one vector per text, in input order.

    Args:
        config:   Embedding configuration (model, dimensions, batch bounds).
        embed_fn: ``embed(texts) -> vectors`` callable. Defaults to LiteLLM
                  with ``config.model``, requesting ``config.dimensions``.
    """

    def __init__(self, config: EmbeddingConfig | None = None, embed_fn: EmbedFn | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._embed_fn = embed_fn or make_embed_fn(
            self._config.model,
            num_retries=self._config.num_retries,
            dimensions=self._config.dimensions,
        )

    @property
    def config(self) -> EmbeddingConfig:
        return self._config

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning ``len(texts)`` vectors in input order.

        Raises:
            EmbeddingDimensionError: If a returned vector has the wrong length.
            EmbeddingError: If the provider call fails or returns the wrong
                number of vectors.
        """
        if not texts:
            return []

        prepared = [
            truncate_for_embedding(t, self._config.max_item_tokens)[0] for t in texts
        ]
        batches = plan_batches(
            prepared, self._config.max_batch_items, self._config.max_batch_tokens
        )
        logger.debug("Embedding %d texts in %d batches", len(prepared), len(batches))

        workers = max(1, min(self._config.workers, len(batches)))
        if workers == 1:
            results = [self._embed_batch(b) for b in batches]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(self._embed_batch, batches))

        vectors: list[list[float]] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)
        return vectors

    def embed_one(self, text: str) -> list[float]:
        """Embed a single text (used for queries)."""
        return self.embed_many([text])[0]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _embed_batch(self, batch: Batch) -> list[list[float]]:
        end = batch.start + len(batch.texts)
        try:
            raw = self._embed_fn(batch.texts)
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding provider failed for inputs [{batch.start}, {end}): {exc}"
            ) from exc

        vectors = [list(v) for v in raw]
        if len(vectors) != len(batch.texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for "
                f"{len(batch.texts)} inputs [{batch.start}, {end})."
            )
        expected = self._config.dimensions
        for offset, vector in enumerate(vectors):
            if len(vector) != expected:
                raise EmbeddingDimensionError(
                    index=batch.start + offset, expected=expected, actual=len(vector)
                )
        return vectors
