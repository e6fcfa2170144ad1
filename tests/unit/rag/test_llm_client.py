"""Tests for the LiteLLM embedding client wrapper."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from lantern.rag.llm_client import embed_texts, make_embed_fn, provider_of, validate_api_key


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/text-embedding-3-small")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/text-embedding-3-small")  # should not raise


def test_validate_api_key_cohere(monkeypatch):
    monkeypatch.delenv("COHERE_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="COHERE_API_KEY"):
        validate_api_key("cohere/embed-english-v3.0")


def test_validate_api_key_ollama_no_key_required():
    # Ollama is local, no env var needed
    validate_api_key("ollama/nomic-embed-text")


def test_validate_api_key_unprefixed_model_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError):
        validate_api_key("text-embedding-3-small")


def test_provider_of():
    assert provider_of("Voyage/voyage-3") == "voyage"
    assert provider_of("text-embedding-3-small") == "openai"


# ------------------------------------------------------------------
# embed_texts()
# ------------------------------------------------------------------


def test_embed_texts_returns_vectors_in_index_order():
    mock_response = MagicMock()
    mock_response.data = [
        {"index": 1, "embedding": [0.4, 0.5]},
        {"index": 0, "embedding": [0.1, 0.2]},
    ]
    with patch("lantern.rag.llm_client.litellm.embedding", return_value=mock_response):
        result = embed_texts("openai/text-embedding-3-small", ["a", "b"])
    assert result == [[0.1, 0.2], [0.4, 0.5]]


def test_embed_texts_passes_batch_and_retries():
    mock_response = MagicMock()
    mock_response.data = [{"embedding": [0.0]}]
    with patch("lantern.rag.llm_client.litellm.embedding", return_value=mock_response) as mock_e:
        embed_texts("openai/text-embedding-3-small", ("only text",), num_retries=5)
    kwargs = mock_e.call_args.kwargs
    assert kwargs["input"] == ["only text"]
    assert kwargs["num_retries"] == 5
    assert "dimensions" not in kwargs


def test_embed_texts_forwards_dimensions():
    mock_response = MagicMock()
    mock_response.data = [{"embedding": [0.0, 1.0]}]
    with patch("lantern.rag.llm_client.litellm.embedding", return_value=mock_response) as mock_e:
        embed_texts("openai/text-embedding-3-small", ["x"], dimensions=2)
    assert mock_e.call_args.kwargs["dimensions"] == 2
    assert mock_e.call_args.kwargs["drop_params"] is True


def test_embed_texts_propagates_provider_error():
    with patch(
        "lantern.rag.llm_client.litellm.embedding", side_effect=RuntimeError("rate limited")
    ):
        with pytest.raises(RuntimeError, match="rate limited"):
            embed_texts("openai/text-embedding-3-small", ["x"])


def test_make_embed_fn_binds_model():
    mock_response = MagicMock()
    mock_response.data = [{"embedding": [1.0]}]
    with patch("lantern.rag.llm_client.litellm.embedding", return_value=mock_response) as mock_e:
        fn = make_embed_fn("ollama/nomic-embed-text", num_retries=1)
        assert fn(["q"]) == [[1.0]]
    assert mock_e.call_args.kwargs["model"] == "ollama/nomic-embed-text"
