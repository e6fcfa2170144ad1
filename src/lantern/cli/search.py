"""lantern search — hybrid retrieval from the command line.

Prints a ranked table (or JSON with --json) of the chunks retrieve() returns
for a query: dense + lexical + recency fusion, then MMR diversification.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from lantern.cli.errors import (
    err_config,
    err_dimension_mismatch,
    err_embedding_failed,
    err_invalid_input,
    err_no_api_key,
    err_no_db,
    err_store,
)
from lantern.config import ConfigError, load_config, with_overrides
from lantern.db.connection import Database
from lantern.db.migrations import initialize
from lantern.engine import RagEngine
from lantern.errors import EmbeddingDimensionError, EmbeddingError, StoreError, ValidationError
from lantern.rag.filters import DomainFilter
from lantern.rag.llm_client import provider_of, validate_api_key
from lantern.rag.retriever import RetrievedItem

console = Console()

_DEFAULT_DB = Path(".lantern.db")


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    namespace: Annotated[
        str,
        typer.Option("--namespace", "-n", help="Namespace to search."),
    ],
    slot: Annotated[
        str,
        typer.Option("--slot", help="Slot to search: staging or prod."),
    ] = "prod",
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Number of results (1-50)."),
    ] = None,
    candidate_k: Annotated[
        int | None,
        typer.Option("--candidate-k", help="Candidates fetched before scoring (top-k to 1000)."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", help="Minimum fused score."),
    ] = None,
    min_similarity: Annotated[
        float | None,
        typer.Option("--min-similarity", help="Minimum dense similarity (0-1)."),
    ] = None,
    prefix: Annotated[
        bool,
        typer.Option("--prefix", help="Also search descendant namespaces (ns/...)."),
    ] = False,
    allow: Annotated[
        list[str] | None,
        typer.Option("--allow", help="Only sources whose URL contains this (repeatable)."),
    ] = None,
    deny: Annotated[
        list[str] | None,
        typer.Option("--deny", help="Drop sources whose URL contains this (repeatable)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print results as JSON."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .lantern.db."),
    ] = _DEFAULT_DB,
) -> None:
    """Search a namespace with hybrid dense + lexical + recency ranking."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    try:
        cfg = load_config()
        if prefix:
            cfg = with_overrides(cfg, "retrieval", namespace_mode="prefix")
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from None

    model = cfg.embedding.model
    try:
        validate_api_key(model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(model)))
        raise typer.Exit(1) from None

    domain_filter = DomainFilter.from_lists(allow, deny)

    conn = _open_db(db)
    try:
        engine = RagEngine.from_config(conn, cfg)
        items = engine.retrieve(
            namespace,
            slot,
            query,
            top_k=top_k,
            candidate_k=candidate_k,
            min_similarity=min_similarity,
            domain_filter=domain_filter,
            min_score=min_score,
        )
    except ValidationError as exc:
        console.print(err_invalid_input(str(exc)))
        raise typer.Exit(1) from None
    except EmbeddingDimensionError as exc:
        console.print(err_dimension_mismatch(exc, model))
        raise typer.Exit(1) from None
    except EmbeddingError as exc:
        console.print(err_embedding_failed(str(exc), model))
        raise typer.Exit(1) from None
    except StoreError as exc:
        console.print(err_store(str(exc)))
        raise typer.Exit(1) from None
    finally:
        conn.close()

    if as_json:
        typer.echo(json.dumps([item.as_dict() for item in items], indent=2))
        return

    if not items:
        console.print("[yellow]No results above the score threshold.[/]")
        return
    _show_table(items)


def _show_table(items: list[RetrievedItem]) -> None:
    table = Table(show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Sim", justify="right", style="dim")
    table.add_column("Source")
    table.add_column("Snippet")
    for rank, item in enumerate(items, start=1):
        label = item.title or item.source_id
        if item.chunk_no:
            label = f"{label} #{item.chunk_no}"
        table.add_row(
            str(rank),
            f"{item.score:.3f}",
            f"{item.similarity:.3f}",
            label,
            item.snippet.replace("\n", " "),
        )
    console.print(table)


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
