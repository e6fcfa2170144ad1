"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import os
from collections.abc import Sequence

# Use litellm's bundled model cost map: its background network fetch races the
# package import and can raise an import deadlock at collection time offline.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from lantern.db.connection import Database
from lantern.db.migrations import initialize
from lantern.db.repository import Repository

DIMS = 4


def hashed_vector(text: str, dims: int = DIMS) -> list[float]:
    """Deterministic non-zero vector for *text*."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [digest[i] / 255.0 + 0.01 for i in range(dims)]


class FakeEmbed:
    """``embed(texts) -> vectors`` test double.

    Texts found in *table* get that vector; everything else gets a
    deterministic hash-derived vector. Every call is recorded.
    """

    def __init__(self, table: dict[str, list[float]] | None = None, dims: int = DIMS) -> None:
        self.table = dict(table or {})
        self.dims = dims
        self.calls: list[list[str]] = []

    def __call__(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [list(self.table.get(t) or hashed_vector(t, self.dims)) for t in texts]

    @property
    def embedded(self) -> list[str]:
        return [t for call in self.calls for t in call]


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".lantern.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def fake_embed():
    return FakeEmbed()


@pytest.fixture
def make_embed():
    """Factory for FakeEmbed instances with a custom vector table."""
    return FakeEmbed


@pytest.fixture
def fake_litellm():
    """Patch litellm.embedding to return DIMS-sized hash vectors per input."""

    def _embedding(model, input, **kwargs):
        return SimpleNamespace(
            data=[{"index": i, "embedding": hashed_vector(t)} for i, t in enumerate(input)]
        )

    with patch("lantern.rag.llm_client.litellm.embedding", side_effect=_embedding) as mock:
        yield mock
