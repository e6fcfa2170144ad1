"""Hybrid retriever: dense (sqlite-vec) + lexical (FTS5 bm25) + recency, then MMR.

Query path:
    embed(query) -> store candidate fetch (namespace/slot/TTL filtered,
    bounded by candidate_k) -> domain filter + similarity floor ->
    weighted fusion + min_score threshold -> MMR select top_k ->
    re-sort by fused score

An empty list means nothing cleared the thresholds. Embedding and store
failures raise instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass

from lantern.db.models import NamespaceMode, RetrievedCandidate, Slot
from lantern.db.repository import Repository
from lantern.errors import EmbeddingDimensionError, EmbeddingError, ValidationError
from lantern.rag.filters import DomainFilter, matches_domain, validate_namespace
from lantern.rag.mmr import DEFAULT_LAMBDA, select_diverse
from lantern.rag.recency import RecencyTable, apply_ttl
from lantern.rag.scorer import score_candidates

logger = logging.getLogger(__name__)

QueryEmbedFn = Callable[[str], Sequence[float]]

TOP_K_MAX = 50
CANDIDATE_K_MAX = 1000


@dataclass
class RetrieverConfig:
    """Configuration for the hybrid retriever.

    Attributes:
        dimensions: Expected length of the query embedding.
        top_k: Results returned after MMR (clamped to [1, 50]).
        candidate_k: Rows fetched from the store (clamped to [top_k, 1000]).
        min_score: Fused-score threshold; candidates below it are dropped.
        min_similarity: Floor on raw dense similarity (clamped to [0, 1]).
        mmr_lambda: Relevance/diversity trade-off for MMR.
        namespace_mode: 'strict' (exact) or 'prefix' (namespace and descendants).
        snippet_chars: Length of the snippet in each result.
    """

    dimensions: int = 1536
    top_k: int = 5
    candidate_k: int = 200
    min_score: float = 0.35
    min_similarity: float = 0.0
    mmr_lambda: float = DEFAULT_LAMBDA
    namespace_mode: str = "strict"
    snippet_chars: int = 240


@dataclass(frozen=True)
class RetrievalParams:
    top_k: int
    candidate_k: int
    min_similarity: float
    min_score: float
    namespace_mode: NamespaceMode


@dataclass
class RetrievedItem:
    """One ranked result.

    Attributes:
        score: Fused score (the presentation order).
        similarity: Dense cosine similarity to the query.
        lexical: Raw lexical rank from the store.
    """

    id: int
    namespace: str
    slot: str
    source_id: str
    chunk_no: int
    url: str | None
    title: str | None
    snippet: str
    score: float
    similarity: float
    lexical: float
    age_days: float
    published_at: str | None

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def normalize_params(
    config: RetrieverConfig,
    top_k: int | None = None,
    candidate_k: int | None = None,
    min_similarity: float | None = None,
    namespace_mode: NamespaceMode | str | None = None,
    min_score: float | None = None,
) -> RetrievalParams:
    """Apply config defaults and clamp per-call overrides."""
    k = int(top_k if top_k is not None else config.top_k)
    k = max(1, min(k, TOP_K_MAX))
    ck = int(candidate_k if candidate_k is not None else config.candidate_k)
    ck = max(k, min(ck, CANDIDATE_K_MAX))
    sim = float(min_similarity if min_similarity is not None else config.min_similarity)
    sim = max(0.0, min(sim, 1.0))
    return RetrievalParams(
        top_k=k,
        candidate_k=ck,
        min_similarity=sim,
        min_score=float(min_score if min_score is not None else config.min_score),
        namespace_mode=NamespaceMode.parse(namespace_mode or config.namespace_mode),
    )


def retrieve(
    query: str,
    repo: Repository,
    config: RetrieverConfig,
    recency: RecencyTable,
    embed_query: QueryEmbedFn,
    namespace: str,
    slot: Slot | str,
    top_k: int | None = None,
    candidate_k: int | None = None,
    min_similarity: float | None = None,
    namespace_mode: NamespaceMode | str | None = None,
    domain_filter: DomainFilter | None = None,
    min_score: float | None = None,
) -> list[RetrievedItem]:
    """Run hybrid retrieval and return ranked items, best first.

    Raises:
        ValidationError: If the query, namespace or slot is invalid.
        EmbeddingError: If the query cannot be embedded or has the wrong size.
        StoreError: If the candidate fetch fails.
    """
    if not query or not query.strip():
        raise ValidationError("query must not be empty")
    ns = validate_namespace(namespace)
    s = Slot.parse(slot)
    params = normalize_params(
        config, top_k, candidate_k, min_similarity, namespace_mode, min_score
    )
    cfg = recency.for_namespace(ns)

    query_vector = _embed(embed_query, query, config.dimensions)

    candidates = repo.query_candidates(
        namespace=ns,
        slot=s,
        namespace_mode=params.namespace_mode,
        query_text=query,
        query_vector=query_vector,
        fetch_k=params.candidate_k,
        ttl_days=cfg.ttl_days,
    )
    fetched = len(candidates)

    candidates = apply_ttl(candidates, cfg.ttl_days)
    candidates = [
        c for c in candidates
        if c.dense >= params.min_similarity and matches_domain(c.chunk.url, domain_filter)
    ]
    scored = score_candidates(candidates, cfg, params.min_score)
    selected = select_diverse(query_vector, scored, params.top_k, config.mmr_lambda)

    logger.debug(
        "retrieve ns=%s slot=%s fetched=%d filtered=%d scored=%d selected=%d",
        ns, s.value, fetched, len(candidates), len(scored), len(selected),
    )
    return [_to_item(c, config.snippet_chars) for c in selected]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _embed(embed_query: QueryEmbedFn, query: str, dimensions: int) -> list[float]:
    try:
        vector = [float(x) for x in embed_query(query)]
    except EmbeddingError:
        raise
    except Exception as exc:
        raise EmbeddingError(f"Query embedding failed: {exc}") from exc
    if len(vector) != dimensions:
        raise EmbeddingDimensionError(index=0, expected=dimensions, actual=len(vector))
    return vector


def _to_item(cand: RetrievedCandidate, snippet_chars: int) -> RetrievedItem:
    chunk = cand.chunk
    return RetrievedItem(
        id=chunk.id,
        namespace=chunk.namespace,
        slot=Slot.parse(chunk.slot).value,
        source_id=chunk.source_id,
        chunk_no=chunk.chunk_no,
        url=chunk.url,
        title=chunk.title,
        snippet=chunk.content[:snippet_chars],
        score=cand.fused_score,
        similarity=cand.dense,
        lexical=cand.lexical,
        age_days=cand.age_days,
        published_at=chunk.published_at,
    )
