"""Tests for the embedding batcher."""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from lantern.errors import EmbeddingDimensionError, EmbeddingError
from lantern.ingest.embedder import EmbeddingBatcher, EmbeddingConfig, plan_batches


def _batcher(embed_fn, **cfg) -> EmbeddingBatcher:
    cfg.setdefault("dimensions", 4)
    return EmbeddingBatcher(EmbeddingConfig(**cfg), embed_fn=embed_fn)


# ------------------------------------------------------------------
# plan_batches
# ------------------------------------------------------------------


def test_plan_batches_by_item_count():
    batches = plan_batches(["a"] * 5, max_items=2, max_tokens=1000)
    assert [b.start for b in batches] == [0, 2, 4]
    assert [len(b.texts) for b in batches] == [2, 2, 1]


def test_plan_batches_by_token_budget():
    texts = ["x" * 40, "x" * 40, "x" * 40]  # 10 tokens each
    batches = plan_batches(texts, max_items=10, max_tokens=25)
    assert [len(b.texts) for b in batches] == [2, 1]


def test_plan_batches_oversized_item_alone():
    batches = plan_batches(["x" * 400, "y"], max_items=10, max_tokens=10)
    assert [b.texts for b in batches] == [["x" * 400], ["y"]]


def test_plan_batches_empty():
    assert plan_batches([], max_items=3, max_tokens=10) == []


# ------------------------------------------------------------------
# embed_many
# ------------------------------------------------------------------


def test_embed_many_preserves_order_across_batches(make_embed):
    fake = make_embed({f"t{i}": [float(i), 1.0, 0.0, 0.0] for i in range(7)})
    batcher = _batcher(fake, max_batch_items=2, workers=4)
    vectors = batcher.embed_many([f"t{i}" for i in range(7)])
    assert [v[0] for v in vectors] == [float(i) for i in range(7)]
    assert len(fake.calls) == 4
    assert all(len(call) <= 2 for call in fake.calls)


def test_embed_many_runs_batches_concurrently():
    seen: set[str] = set()
    lock = threading.Lock()

    def embed(texts):
        with lock:
            seen.add(threading.current_thread().name)
        return [[1.0, 0.0, 0.0, 0.0] for _ in texts]

    batcher = _batcher(embed, max_batch_items=1, workers=4)
    assert len(batcher.embed_many(["a", "b", "c", "d"])) == 4
    assert threading.main_thread().name not in seen


def test_embed_many_empty_input_makes_no_call(fake_embed):
    fake = fake_embed
    assert _batcher(fake).embed_many([]) == []
    assert fake.calls == []


def test_embed_many_truncates_long_items(fake_embed):
    fake = fake_embed
    _batcher(fake, max_item_tokens=2).embed_many(["z" * 100])
    assert fake.calls == [["z" * 8]]


def test_embed_one(make_embed):
    fake = make_embed({"q": [0.0, 0.0, 1.0, 0.0]})
    assert _batcher(fake).embed_one("q") == [0.0, 0.0, 1.0, 0.0]


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


def test_wrong_dimension_reports_global_index():
    def embed(texts):
        return [[1.0, 0.0] if t == "bad" else [1.0, 0.0, 0.0, 0.0] for t in texts]

    batcher = _batcher(embed, max_batch_items=2, workers=1)
    with pytest.raises(EmbeddingDimensionError) as exc_info:
        batcher.embed_many(["a", "b", "c", "bad"])
    assert exc_info.value.index == 3
    assert exc_info.value.expected == 4
    assert exc_info.value.actual == 2


def test_count_mismatch_raises():
    batcher = _batcher(lambda texts: [[1.0, 0.0, 0.0, 0.0]])
    with pytest.raises(EmbeddingError, match="returned 1 vectors for 2 inputs"):
        batcher.embed_many(["a", "b"])


def test_provider_failure_wrapped():
    def embed(texts):
        raise ConnectionError("provider down")

    with pytest.raises(EmbeddingError, match="provider down"):
        _batcher(embed).embed_many(["a"])


def test_default_embed_fn_uses_litellm():
    with patch("lantern.rag.llm_client.litellm.embedding") as mock_embed:
        mock_embed.return_value.data = [{"index": 0, "embedding": [0.1, 0.2, 0.3, 0.4]}]
        batcher = EmbeddingBatcher(EmbeddingConfig(model="openai/test-embed", dimensions=4))
        assert batcher.embed_one("hello") == [0.1, 0.2, 0.3, 0.4]
    assert mock_embed.call_args.kwargs["model"] == "openai/test-embed"


def test_default_embed_fn_requests_configured_dimensions():
    with patch("lantern.rag.llm_client.litellm.embedding") as mock_embed:
        mock_embed.return_value.data = [{"index": 0, "embedding": [0.5] * 256}]
        batcher = EmbeddingBatcher(EmbeddingConfig(model="openai/text-embedding-3-small", dimensions=256))
        assert len(batcher.embed_one("hello")) == 256
    assert mock_embed.call_args.kwargs["dimensions"] == 256
