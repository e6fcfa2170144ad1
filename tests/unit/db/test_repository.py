"""Tests for Repository: upserts, reads, candidate fetch and deletes."""

from __future__ import annotations

import pytest

from lantern.db.models import Chunk, ChunkKey, Slot, UpsertOutcome
from lantern.db.repository import Repository, fts_match_expression
from lantern.errors import StaleSnapshotError, StoreError
from lantern.ingest.hashing import identity_hash


def _chunk(
    content: str = "solar panels convert light",
    *,
    namespace: str = "docs",
    slot: Slot = Slot.STAGING,
    source_id: str = "a.md",
    chunk_no: int = 0,
    embedding: list[float] | None = None,
    **kwargs,
) -> Chunk:
    return Chunk(
        namespace=namespace,
        slot=slot,
        source_id=source_id,
        chunk_no=chunk_no,
        content=content,
        content_hash=identity_hash(namespace, slot, source_id, chunk_no, content),
        embedding=embedding if embedding is not None else [1.0, 0.0, 0.0, 0.0],
        **kwargs,
    )


# ------------------------------------------------------------------
# Upserts
# ------------------------------------------------------------------


def test_upsert_inserts_new_chunk(repo):
    chunk = _chunk()
    assert repo.upsert_chunk(chunk) is UpsertOutcome.INSERTED
    assert chunk.id is not None
    stored = repo.get_chunk(chunk.id)
    assert stored.content == "solar panels convert light"
    assert stored.embedding == [1.0, 0.0, 0.0, 0.0]
    assert stored.slot is Slot.STAGING


def test_upsert_same_hash_is_unchanged(repo):
    repo.upsert_chunk(_chunk())
    before = repo.get_chunk_by_key(ChunkKey("docs", Slot.STAGING, "a.md", 0))
    outcome = repo.upsert_chunk(_chunk())
    after = repo.get_chunk_by_key(ChunkKey("docs", Slot.STAGING, "a.md", 0))
    assert outcome is UpsertOutcome.UNCHANGED
    assert after.updated_at == before.updated_at
    assert after.id == before.id
    assert repo.count_chunks() == 1


def test_upsert_unchanged_needs_no_embedding(repo):
    repo.upsert_chunk(_chunk())
    planned = _chunk()
    planned.embedding = None
    assert repo.upsert_chunk(planned) is UpsertOutcome.UNCHANGED


def test_upsert_changed_content_updates_in_place(repo):
    first = _chunk("old text")
    repo.upsert_chunk(first)
    second = _chunk("new text", embedding=[0.0, 1.0, 0.0, 0.0])
    assert repo.upsert_chunk(second) is UpsertOutcome.UPDATED
    assert second.id == first.id
    stored = repo.get_chunk(first.id)
    assert stored.content == "new text"
    assert stored.embedding == [0.0, 1.0, 0.0, 0.0]


def test_upsert_changed_without_embedding_raises_stale(repo):
    repo.upsert_chunk(_chunk("old text"))
    planned = _chunk("new text")
    planned.embedding = None
    with pytest.raises(StaleSnapshotError):
        repo.upsert_chunk(planned)


def test_update_resyncs_fts(repo):
    repo.upsert_chunk(_chunk("alpha bravo"))
    repo.upsert_chunk(_chunk("charlie delta"))
    rows = repo.connection.execute(
        "SELECT rowid FROM chunks_fts WHERE chunks_fts MATCH 'alpha'"
    ).fetchall()
    assert rows == []
    rows = repo.connection.execute(
        "SELECT rowid FROM chunks_fts WHERE chunks_fts MATCH 'charlie'"
    ).fetchall()
    assert len(rows) == 1


def test_metadata_round_trips(repo):
    chunk = _chunk(metadata={"lang": "en", "page": 3, "draft": False})
    repo.upsert_chunk(chunk)
    assert repo.get_chunk(chunk.id).metadata == {"lang": "en", "page": 3, "draft": False}


def test_transaction_rolls_back_on_error(repo):
    with pytest.raises(RuntimeError):
        with repo.transaction():
            repo.upsert_chunk(_chunk())
            raise RuntimeError("boom")
    assert repo.count_chunks() == 0


# ------------------------------------------------------------------
# Reads
# ------------------------------------------------------------------


def test_get_chunk_missing_returns_none(repo):
    assert repo.get_chunk(999) is None
    assert repo.get_chunk_by_key(ChunkKey("docs", Slot.PROD, "x", 0)) is None


def test_get_hashes_per_source(repo):
    a0 = _chunk("first", chunk_no=0)
    a1 = _chunk("second", chunk_no=1)
    repo.upsert_chunk(a0)
    repo.upsert_chunk(a1)
    repo.upsert_chunk(_chunk("other", source_id="b.md"))
    assert repo.get_hashes("docs", "staging", "a.md") == {
        0: a0.content_hash,
        1: a1.content_hash,
    }


def test_existing_hashes_subset(repo):
    chunk = _chunk()
    repo.upsert_chunk(chunk)
    assert repo.existing_hashes("docs", Slot.STAGING, [chunk.content_hash, "nope"]) == {
        chunk.content_hash
    }
    assert repo.existing_hashes("docs", Slot.PROD, [chunk.content_hash]) == set()


def test_list_chunks_ordered(repo):
    repo.upsert_chunk(_chunk("b1", source_id="b.md", chunk_no=1))
    repo.upsert_chunk(_chunk("b0", source_id="b.md", chunk_no=0))
    repo.upsert_chunk(_chunk("a0", source_id="a.md", chunk_no=0))
    chunks = repo.list_chunks("docs", "staging")
    assert [(c.source_id, c.chunk_no) for c in chunks] == [("a.md", 0), ("b.md", 0), ("b.md", 1)]
    assert len(repo.list_chunks("docs", "staging", source_id="b.md")) == 2


def test_list_keys(repo):
    repo.upsert_chunk(_chunk(chunk_no=0))
    repo.upsert_chunk(_chunk("x", chunk_no=1))
    assert repo.list_keys("docs", "staging") == {
        ChunkKey("docs", Slot.STAGING, "a.md", 0),
        ChunkKey("docs", Slot.STAGING, "a.md", 1),
    }


def test_count_chunks_filters(repo):
    repo.upsert_chunk(_chunk())
    repo.upsert_chunk(_chunk(slot=Slot.PROD))
    repo.upsert_chunk(_chunk(source_id="b.md"))
    repo.upsert_chunk(_chunk(namespace="other"))
    assert repo.count_chunks() == 4
    assert repo.count_chunks("docs") == 3
    assert repo.count_chunks("docs", "prod") == 1
    assert repo.count_chunks("docs", "staging", source_id="b.md") == 1


def test_namespace_stats_prefix(repo):
    repo.upsert_chunk(_chunk(namespace="docs"))
    repo.upsert_chunk(_chunk(namespace="docs/api", source_id="b.md"))
    repo.upsert_chunk(_chunk(namespace="docs/api", source_id="c.md"))
    repo.upsert_chunk(_chunk(namespace="docsite"))
    stats = repo.namespace_stats("docs")
    assert [(s.namespace, s.slot, s.chunks, s.sources) for s in stats] == [
        ("docs", Slot.STAGING, 1, 1),
        ("docs/api", Slot.STAGING, 2, 2),
    ]
    assert len(repo.namespace_stats()) == 3


# ------------------------------------------------------------------
# Candidate fetch
# ------------------------------------------------------------------


def test_query_candidates_dense_similarity(repo):
    repo.upsert_chunk(_chunk("north", chunk_no=0, embedding=[1.0, 0.0, 0.0, 0.0]))
    repo.upsert_chunk(_chunk("east", chunk_no=1, embedding=[0.0, 1.0, 0.0, 0.0]))
    cands = repo.query_candidates(
        "docs", "staging", "strict", "", [0.0, 1.0, 0.0, 0.0], fetch_k=10
    )
    assert [c.chunk.content for c in cands] == ["east", "north"]
    assert cands[0].dense == pytest.approx(1.0, abs=1e-6)
    assert cands[1].dense == pytest.approx(0.0, abs=1e-6)
    assert cands[0].lexical == 0.0


def test_query_candidates_lexical_channel(repo):
    repo.upsert_chunk(_chunk("solar inverter sizing", chunk_no=0))
    repo.upsert_chunk(_chunk("wind turbines", chunk_no=1))
    cands = repo.query_candidates(
        "docs", "staging", "strict", "inverter", [1.0, 0.0, 0.0, 0.0], fetch_k=10
    )
    by_content = {c.chunk.content: c for c in cands}
    assert by_content["solar inverter sizing"].lexical > 0.0
    assert by_content["wind turbines"].lexical == 0.0


def test_query_candidates_respects_fetch_k(repo):
    for i in range(5):
        repo.upsert_chunk(_chunk(f"text {i}", chunk_no=i))
    cands = repo.query_candidates("docs", "staging", "strict", "", [1, 0, 0, 0], fetch_k=2)
    assert len(cands) == 2


def test_query_candidates_slot_isolation(repo):
    repo.upsert_chunk(_chunk("staged"))
    cands = repo.query_candidates("docs", "prod", "strict", "", [1, 0, 0, 0], fetch_k=10)
    assert cands == []


def test_query_candidates_namespace_modes(repo):
    repo.upsert_chunk(_chunk("root", namespace="docs"))
    repo.upsert_chunk(_chunk("child", namespace="docs/api"))
    repo.upsert_chunk(_chunk("sibling", namespace="docsite"))
    strict = repo.query_candidates("docs", "staging", "strict", "", [1, 0, 0, 0], fetch_k=10)
    prefix = repo.query_candidates("docs", "staging", "prefix", "", [1, 0, 0, 0], fetch_k=10)
    assert {c.chunk.content for c in strict} == {"root"}
    assert {c.chunk.content for c in prefix} == {"root", "child"}


def test_query_candidates_ttl_cutoff(repo):
    repo.upsert_chunk(_chunk("fresh", chunk_no=0, published_at="2999-01-01 00:00:00"))
    repo.upsert_chunk(_chunk("ancient", chunk_no=1, published_at="2000-01-01 00:00:00"))
    cands = repo.query_candidates(
        "docs", "staging", "strict", "", [1, 0, 0, 0], fetch_k=10, ttl_days=30
    )
    assert [c.chunk.content for c in cands] == ["fresh"]
    # Future dates clamp to age zero.
    assert cands[0].age_days == 0.0


def test_query_candidates_punctuation_only_query(repo):
    repo.upsert_chunk(_chunk())
    cands = repo.query_candidates("docs", "staging", "strict", "?!*", [1, 0, 0, 0], fetch_k=5)
    assert len(cands) == 1


def test_query_candidates_dimension_mismatch_is_store_error(repo):
    repo.upsert_chunk(_chunk())
    with pytest.raises(StoreError):
        repo.query_candidates("docs", "staging", "strict", "", [1.0, 0.0], fetch_k=5)


# ------------------------------------------------------------------
# Deletes
# ------------------------------------------------------------------


def test_delete_chunks_by_slot_and_source(repo):
    repo.upsert_chunk(_chunk())
    repo.upsert_chunk(_chunk(source_id="b.md"))
    repo.upsert_chunk(_chunk(slot=Slot.PROD))
    assert repo.delete_chunks("docs", "staging", source_id="b.md") == 1
    assert repo.delete_chunks("docs", "staging") == 1
    assert repo.count_chunks() == 1
    assert repo.delete_chunks("docs") == 1
    assert repo.connection.execute("SELECT COUNT(*) FROM chunks_fts").fetchone()[0] == 0


def test_delete_keys(repo):
    repo.upsert_chunk(_chunk(chunk_no=0))
    repo.upsert_chunk(_chunk("y", chunk_no=1))
    removed = repo.delete_keys(
        [ChunkKey("docs", Slot.STAGING, "a.md", 1), ChunkKey("docs", Slot.STAGING, "zz", 0)]
    )
    assert removed == 1
    assert repo.count_chunks() == 1


# ------------------------------------------------------------------
# FTS expression
# ------------------------------------------------------------------


def test_fts_match_expression_quotes_and_dedupes():
    assert fts_match_expression('Solar "panels" solar?') == '"solar" OR "panels"'


def test_fts_match_expression_empty():
    assert fts_match_expression("") is None
    assert fts_match_expression("?? --") is None


def test_repository_requires_initialized_schema(tmp_path):
    from lantern.db.connection import Database

    conn = Database(tmp_path / "bare.db").connect()
    repo = Repository(conn)
    with pytest.raises(StoreError):
        repo.query_candidates("docs", "prod", "strict", "x", [1.0], fetch_k=1)
    conn.close()
