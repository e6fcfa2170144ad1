"""Tests for lantern ingest command."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from lantern.cli.main import app
from lantern.db.connection import Database
from lantern.db.repository import Repository

runner = CliRunner()


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / ".lantern.db"


def _count(db_path: Path, **filters) -> int:
    with Database(db_path) as conn:
        return Repository(conn).count_chunks(**filters)


def _ingest(*args: str):
    return runner.invoke(app, ["ingest", *args])


# ------------------------------------------------------------------
# Argument checks
# ------------------------------------------------------------------


def test_ingest_exits_without_source(db_path):
    result = _ingest("--namespace", "docs", "--db", str(db_path))
    assert result.exit_code == 1
    assert "No --source" in result.output


def test_ingest_requires_namespace_with_source(tmp_path, db_path):
    (tmp_path / "a.txt").write_text("hello there world", encoding="utf-8")
    result = _ingest("--source", str(tmp_path / "a.txt"), "--db", str(db_path))
    assert result.exit_code == 1
    assert "--namespace" in result.output


def test_ingest_missing_api_key(tmp_path, db_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    (tmp_path / "a.txt").write_text("hello there world", encoding="utf-8")
    result = _ingest("-n", "docs", "-s", str(tmp_path / "a.txt"), "--db", str(db_path))
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output
    assert not db_path.exists()


# ------------------------------------------------------------------
# Files
# ------------------------------------------------------------------


def test_ingest_creates_db_and_stores_chunks(tmp_path, db_path, fake_litellm):
    (tmp_path / "a.txt").write_text("x" * 25, encoding="utf-8")
    result = _ingest(
        "-n", "docs", "-s", str(tmp_path / "a.txt"),
        "--chars", "10", "--overlap", "2", "--db", str(db_path),
    )
    assert result.exit_code == 0, result.output
    # The trailing one-char window is near-empty and dropped.
    assert _count(db_path, namespace="docs", slot="staging") == 3
    assert "inserted: 3" in result.output


def test_ingest_unchanged_source_writes_nothing(tmp_path, db_path, fake_litellm):
    (tmp_path / "a.md").write_text("# Title\n\nSome markdown body text.", encoding="utf-8")
    args = ("-n", "docs", "-s", str(tmp_path / "a.md"), "--db", str(db_path))
    _ingest(*args)
    calls = fake_litellm.call_count
    result = _ingest(*args)
    assert result.exit_code == 0
    assert "unchanged: 1" in result.output
    assert fake_litellm.call_count == calls


def test_ingest_into_prod_slot(tmp_path, db_path, fake_litellm):
    (tmp_path / "a.txt").write_text("production ready text", encoding="utf-8")
    result = _ingest("-n", "docs", "-s", str(tmp_path / "a.txt"), "--slot", "prod", "--db", str(db_path))
    assert result.exit_code == 0, result.output
    assert _count(db_path, slot="prod") == 1


def test_ingest_invalid_namespace(tmp_path, db_path, fake_litellm):
    (tmp_path / "a.txt").write_text("some text here", encoding="utf-8")
    result = _ingest("-n", "bad namespace", "-s", str(tmp_path / "a.txt"), "--db", str(db_path))
    assert result.exit_code == 1
    assert "document[0]" in result.output
    fake_litellm.assert_not_called()


def test_ingest_embedding_failure_exits_one(tmp_path, db_path, fake_litellm):
    fake_litellm.side_effect = RuntimeError("provider down")
    (tmp_path / "a.txt").write_text("some text here", encoding="utf-8")
    result = _ingest("-n", "docs", "-s", str(tmp_path / "a.txt"), "--db", str(db_path))
    assert result.exit_code == 1
    assert "chunks failed" in result.output
    assert _count(db_path) == 0


def test_ingest_empty_source_skipped(tmp_path, db_path, fake_litellm):
    (tmp_path / "empty.txt").write_text("   \n", encoding="utf-8")
    result = _ingest("-n", "docs", "-s", str(tmp_path / "empty.txt"), "--db", str(db_path))
    assert result.exit_code == 0
    assert "No sources found" in result.output


# ------------------------------------------------------------------
# Directories
# ------------------------------------------------------------------


def _tree(root: Path) -> Path:
    src = root / "src"
    (src / "nested").mkdir(parents=True)
    (src / "one.txt").write_text("first file text", encoding="utf-8")
    (src / "two.md").write_text("second file text", encoding="utf-8")
    (src / "skip.bin").write_text("binary-ish", encoding="utf-8")
    (src / "nested" / "three.txt").write_text("third file text", encoding="utf-8")
    return src


def test_ingest_directory_not_recursive_by_default(tmp_path, db_path, fake_litellm):
    src = _tree(tmp_path)
    _ingest("-n", "docs", "-s", str(src), "--db", str(db_path))
    assert _count(db_path) == 2


def test_ingest_recursive_flag_finds_nested_files(tmp_path, db_path, fake_litellm):
    src = _tree(tmp_path)
    _ingest("-n", "docs", "-s", str(src), "--recursive", "--db", str(db_path))
    assert _count(db_path) == 3


def test_ingest_exclude_pattern(tmp_path, db_path, fake_litellm):
    src = _tree(tmp_path)
    _ingest("-n", "docs", "-s", str(src), "--exclude", "*.md", "--db", str(db_path))
    assert _count(db_path) == 1


def test_ingest_dry_run_no_db_writes(tmp_path, db_path, fake_litellm):
    src = _tree(tmp_path)
    result = _ingest("-n", "docs", "-s", str(src), "--dry-run", "--db", str(db_path))
    assert result.exit_code == 0
    assert "Ingest plan" in result.output
    assert not db_path.exists()
    fake_litellm.assert_not_called()


def test_ingest_url_with_directory_rejected(tmp_path, db_path):
    src = _tree(tmp_path)
    result = _ingest("-n", "docs", "-s", str(src), "--url", "https://x", "--db", str(db_path))
    assert result.exit_code == 1


# ------------------------------------------------------------------
# --documents
# ------------------------------------------------------------------


def test_ingest_documents_json(tmp_path, db_path, fake_litellm):
    docs = [
        {
            "namespace": "kb/faq",
            "slot": "staging",
            "source_id": "faq-1",
            "url": "https://example.com/faq",
            "chunks": ["How do I reset?", {"content": "Press the button.", "chunk_no": 4}],
        }
    ]
    path = tmp_path / "docs.json"
    path.write_text(json.dumps(docs), encoding="utf-8")
    result = _ingest("--documents", str(path), "--db", str(db_path))
    assert result.exit_code == 0, result.output
    with Database(db_path) as conn:
        chunks = Repository(conn).list_chunks("kb/faq", "staging")
    assert [c.chunk_no for c in chunks] == [0, 4]
    assert chunks[0].url == "https://example.com/faq"


def test_ingest_documents_bad_json(tmp_path, db_path):
    path = tmp_path / "docs.json"
    path.write_text("{not json", encoding="utf-8")
    result = _ingest("--documents", str(path), "--db", str(db_path))
    assert result.exit_code == 1
    assert "Cannot read" in result.output
