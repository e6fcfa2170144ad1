"""RagEngine: the ingestion + retrieval facade over one database connection.

Holds everything a request needs (repository, embedder, recency table,
retrieval defaults) so callers pass one explicit object instead of reading
module-level state.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence

from lantern.config import LanternConfig
from lantern.db.models import NamespaceMode, NamespaceStats, Slot
from lantern.db.repository import Repository
from lantern.ingest.embedder import EmbeddingBatcher
from lantern.ingest.lifecycle import PromotionResult, namespace_stats, promote, purge
from lantern.ingest.upsert import IngestDocument, Ingestor, IngestResult
from lantern.rag.filters import DomainFilter
from lantern.rag.llm_client import EmbedFn
from lantern.rag.recency import RecencyTable
from lantern.rag.retriever import RetrievedItem, retrieve


class RagEngine:
    """Ingest documents and answer hybrid retrieval queries.

    Args:
        repo:     Open Repository instance.
        config:   Merged configuration.
        embed_fn: ``embed(texts) -> vectors``; defaults to LiteLLM with
                  ``config.embedding.model``.
        recency:  Per-namespace recency table; defaults to ``config.recency``.
    """

    def __init__(
        self,
        repo: Repository,
        config: LanternConfig | None = None,
        embed_fn: EmbedFn | None = None,
        recency: RecencyTable | None = None,
    ) -> None:
        self.repo = repo
        self.config = config or LanternConfig()
        self.embedder = EmbeddingBatcher(self.config.embedding, embed_fn)
        self.recency = recency or self.config.recency
        self._ingestor = Ingestor(repo, self.embedder, self.config.ingest)

    @classmethod
    def from_config(
        cls,
        conn: sqlite3.Connection,
        config: LanternConfig,
        embed_fn: EmbedFn | None = None,
    ) -> RagEngine:
        return cls(Repository(conn), config, embed_fn=embed_fn)

    def ingest(self, documents: Sequence[IngestDocument], fail_fast: bool = False) -> IngestResult:
        """Upsert *documents*; see ``Ingestor.ingest``."""
        return self._ingestor.ingest(documents, fail_fast=fail_fast)

    def retrieve(
        self,
        namespace: str,
        slot: Slot | str,
        query: str,
        top_k: int | None = None,
        candidate_k: int | None = None,
        min_similarity: float | None = None,
        namespace_mode: NamespaceMode | str | None = None,
        domain_filter: DomainFilter | None = None,
        min_score: float | None = None,
    ) -> list[RetrievedItem]:
        """Ranked, diversified chunks for *query*; see ``lantern.rag.retriever.retrieve``."""
        return retrieve(
            query,
            self.repo,
            self.config.retrieval,
            self.recency,
            self.embedder.embed_one,
            namespace=namespace,
            slot=slot,
            top_k=top_k,
            candidate_k=candidate_k,
            min_similarity=min_similarity,
            namespace_mode=namespace_mode,
            domain_filter=domain_filter,
            min_score=min_score,
        )

    def promote(
        self,
        namespace: str,
        from_slot: Slot | str = Slot.STAGING,
        to_slot: Slot | str = Slot.PROD,
        replace_missing: bool = False,
        dry_run: bool = False,
    ) -> PromotionResult:
        return promote(
            self.repo, namespace, from_slot, to_slot,
            replace_missing=replace_missing, dry_run=dry_run,
        )

    def purge(
        self,
        namespace: str,
        slot: Slot | str | None = None,
        source_id: str | None = None,
    ) -> int:
        return purge(self.repo, namespace, slot=slot, source_id=source_id)

    def stats(self, namespace: str | None = None) -> list[NamespaceStats]:
        return namespace_stats(self.repo, namespace)
