"""Fixtures shared by CLI tests."""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def project(tmp_path, monkeypatch):
    """Run every CLI test inside a fresh project dir with a 4-dim embedding config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("lantern.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    monkeypatch.delenv("LANTERN_EMBEDDING_MODEL", raising=False)
    monkeypatch.delenv("LANTERN_EMBEDDING_DIMENSIONS", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    (tmp_path / "lantern.yaml").write_text(
        "embedding:\n  model: openai/text-embedding-3-small\n  dimensions: 4\n"
        "retrieval:\n  min_score: 0.0\n",
        encoding="utf-8",
    )
    return tmp_path
