"""lantern ingest — chunk, embed and upsert text sources into .lantern.db.

Sources:
  .txt .md .markdown .rst .text .csv .log  → one document per file, split with
                                             the fixed-window chunker
  directory                                → expanded to individual files
                                             (--recursive for subdirs)
  --documents FILE.json                    → pre-chunked documents (a JSON list
                                             of {namespace, slot, source_id,
                                             chunks, ...} objects)

Re-running ingest on unchanged files writes nothing: the content hash of every
chunk is compared with the stored one first.
"""

from __future__ import annotations

import fnmatch
import json
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from lantern.cli.errors import err_config, err_invalid_input, err_no_api_key
from lantern.config import ConfigError, LanternConfig, load_config, with_overrides
from lantern.db.connection import Database
from lantern.db.migrations import initialize
from lantern.engine import RagEngine
from lantern.errors import IngestError, ValidationError
from lantern.ingest.chunking import estimate_tokens
from lantern.ingest.upsert import IngestDocument, IngestResult, document_from_text
from lantern.rag.llm_client import provider_of, validate_api_key

console = Console()

_DEFAULT_DB = ".lantern.db"
_TEXT_EXTS = {".txt", ".md", ".markdown", ".rst", ".text", ".csv", ".log"}
_MAX_FAILURES_SHOWN = 10


def ingest_cmd(
    namespace: Annotated[
        str,
        typer.Option("--namespace", "-n", help="Target namespace, e.g. team/topic."),
    ] = "",
    source: Annotated[
        list[Path] | None,
        typer.Option("--source", "-s", help="Text file or directory (repeatable)."),
    ] = None,
    documents: Annotated[
        Path | None,
        typer.Option("--documents", help="JSON file with a list of pre-chunked documents."),
    ] = None,
    slot: Annotated[
        str,
        typer.Option("--slot", help="Slot to write: staging or prod."),
    ] = "staging",
    chars: Annotated[
        int | None,
        typer.Option("--chars", help="Chunk window size in characters (default 1200)."),
    ] = None,
    overlap: Annotated[
        int | None,
        typer.Option("--overlap", help="Characters shared by consecutive chunks (default 15%)."),
    ] = None,
    url: Annotated[
        str | None,
        typer.Option("--url", help="Source URL stored with every chunk (single source only)."),
    ] = None,
    title: Annotated[
        str | None,
        typer.Option("--title", help="Title stored with every chunk (single source only)."),
    ] = None,
    published_at: Annotated[
        str | None,
        typer.Option("--published-at", help="Logical content date (ISO-8601)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .lantern.db (created if missing)."),
    ] = Path(_DEFAULT_DB),
    recursive: Annotated[
        bool,
        typer.Option("--recursive", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
    fail_fast: Annotated[
        bool,
        typer.Option("--fail-fast", help="Stop at the first document that fails."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be ingested without writing."),
    ] = False,
) -> None:
    """Ingest text sources into the lantern store."""
    sources = source or []
    if not sources and documents is None:
        console.print("[red]Error:[/] No --source or --documents specified.")
        raise typer.Exit(1)
    if sources and not namespace:
        console.print(err_invalid_input("--namespace is required with --source."))
        raise typer.Exit(1)

    try:
        cfg = with_overrides(load_config(), "chunking", chars=chars, overlap=overlap)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from None

    files = _expand_sources(sources, recursive=recursive, exclude=exclude or [])
    if (url or title) and len(files) > 1:
        console.print(err_invalid_input("--url and --title apply to a single source file."))
        raise typer.Exit(1)

    docs = [
        document_from_text(
            namespace,
            slot,
            source_id=str(f),
            text=f.read_text(encoding="utf-8", errors="replace"),
            chars=cfg.chunking.chars,
            overlap=cfg.chunking.overlap,
            url=url,
            title=title or f.name,
            published_at=published_at,
            metadata={"path": str(f)},
        )
        for f in files
    ]
    skipped = [d.source_id for d in docs if not d.chunks]
    for sid in skipped:
        console.print(f"  [yellow]✗ No chunks produced (empty source):[/] {sid}")
    docs = [d for d in docs if d.chunks]

    if documents is not None:
        try:
            docs.extend(_load_documents(documents))
        except (OSError, ValueError) as exc:
            console.print(err_invalid_input(f"Cannot read {documents}: {exc}"))
            raise typer.Exit(1) from None

    if not docs:
        console.print("[yellow]No sources found to ingest.[/]")
        raise typer.Exit(0)

    if dry_run:
        _show_plan(docs)
        console.print("[dim]Dry run — nothing written to DB[/]")
        return

    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(cfg.embedding.model)))
        raise typer.Exit(1) from None

    conn = _open_db(db)
    try:
        result = _run(conn, cfg, docs, fail_fast)
    finally:
        conn.close()

    _show_result(result)
    if result.failures:
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Pipeline
# ------------------------------------------------------------------


def _run(
    conn: sqlite3.Connection,
    cfg: LanternConfig,
    docs: list[IngestDocument],
    fail_fast: bool,
) -> IngestResult:
    engine = RagEngine.from_config(conn, cfg)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    ) as prog:
        prog.add_task(f"Embedding and storing {len(docs)} documents…", total=None)
        try:
            return engine.ingest(docs, fail_fast=fail_fast)
        except ValidationError as exc:
            console.print(err_invalid_input(str(exc)))
            raise typer.Exit(1) from None
        except IngestError as exc:
            console.print(f"[red]Error:[/] {exc}")
            _show_result(exc.result)
            raise typer.Exit(1) from None


def _load_documents(path: Path) -> list[IngestDocument]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError("expected a JSON list of documents")
    return [IngestDocument.from_dict(item) for item in data]


# ------------------------------------------------------------------
# Directory expansion
# ------------------------------------------------------------------


def _expand_sources(sources: list[Path], recursive: bool, exclude: list[str]) -> list[Path]:
    """Expand directories to individual text files; keep files as-is."""
    result: list[Path] = []
    for src in sources:
        if src.is_dir():
            files = _scan_dir(src, recursive=recursive, exclude=exclude, depth=0)
            if not files:
                console.print(f"[yellow]No supported files found in directory:[/] {src}")
            result.extend(files)
        elif src.is_file():
            result.append(src)
        else:
            console.print(f"  [red]✗ Not found:[/] {src} — skipping")
    return result


def _scan_dir(
    directory: Path,
    recursive: bool,
    exclude: list[str],
    depth: int,
    max_depth: int = 10,
) -> list[Path]:
    """Return supported files in *directory* (optionally recursive)."""
    if depth > max_depth:
        return []
    files: list[Path] = []
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        return []
    for entry in entries:
        if any(fnmatch.fnmatch(entry.name, pat) for pat in exclude):
            continue
        if entry.is_file() and entry.suffix.lower() in _TEXT_EXTS:
            files.append(entry)
        elif entry.is_dir() and recursive and depth < max_depth:
            files.extend(
                _scan_dir(entry, recursive=recursive, exclude=exclude, depth=depth + 1)
            )
    return files


# ------------------------------------------------------------------
# Output
# ------------------------------------------------------------------


def _show_plan(docs: list[IngestDocument]) -> None:
    table = Table(title="Ingest plan")
    table.add_column("Source")
    table.add_column("Namespace")
    table.add_column("Slot")
    table.add_column("Chunks", justify="right")
    table.add_column("~Tokens", justify="right")
    for d in docs:
        tokens = sum(estimate_tokens(c.content) for c in d.chunks)
        table.add_row(d.source_id, d.namespace, str(getattr(d.slot, "value", d.slot)), str(len(d.chunks)), f"{tokens:,}")
    console.print(table)


def _show_result(result: IngestResult) -> None:
    console.print(
        f"[green]✓[/] {result.documents} documents  |  "
        f"inserted: [bold]{result.inserted}[/]  "
        f"updated: [bold]{result.updated}[/]  "
        f"unchanged: [bold]{result.unchanged}[/]"
    )
    if result.failures:
        console.print(f"[red]✗ {len(result.failures)} chunks failed:[/]")
        for f in result.failures[:_MAX_FAILURES_SHOWN]:
            console.print(f"  {f.source_id}#{f.chunk_no}: {f.error}")
        if len(result.failures) > _MAX_FAILURES_SHOWN:
            console.print(f"  [dim]… and {len(result.failures) - _MAX_FAILURES_SHOWN} more[/]")


# ------------------------------------------------------------------
# DB helpers
# ------------------------------------------------------------------


def _open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the project database and run migrations."""
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
