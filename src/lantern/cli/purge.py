"""lantern purge — administrative delete of stored chunks.

Removes chunks (and their FTS5 index entries) for a namespace, optionally
narrowed to one slot and/or one source.

Usage:
  lantern purge --namespace docs --slot staging
  lantern purge --namespace docs --source manual.md --yes
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lantern.cli.errors import err_invalid_input, err_no_db, warn_prod_purged
from lantern.db.connection import Database
from lantern.db.migrations import initialize
from lantern.db.models import Slot
from lantern.db.repository import Repository
from lantern.errors import ValidationError
from lantern.ingest.lifecycle import purge
from lantern.rag.filters import validate_namespace

console = Console()

_DEFAULT_DB = Path(".lantern.db")


def purge_cmd(
    namespace: Annotated[
        str,
        typer.Option("--namespace", "-n", help="Namespace to purge."),
    ],
    slot: Annotated[
        str | None,
        typer.Option("--slot", help="Only this slot (staging or prod). Default: both."),
    ] = None,
    source: Annotated[
        str | None,
        typer.Option("--source", "-s", help="Only chunks of this source_id."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .lantern.db."),
    ] = _DEFAULT_DB,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete stored chunks of a namespace (optionally one slot / source)."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    try:
        ns = validate_namespace(namespace)
        parsed_slot = Slot.parse(slot) if slot else None
    except ValidationError as exc:
        console.print(err_invalid_input(str(exc)))
        raise typer.Exit(1) from None

    conn = _open_db(db)
    repo = Repository(conn)

    try:
        count = repo.count_chunks(ns, parsed_slot, source_id=source)
        if count == 0:
            console.print(f"[yellow]Nothing to purge:[/] no chunks match in '{ns}'.")
            raise typer.Exit(0)

        scope = parsed_slot.value if parsed_slot else "staging + prod"
        console.print(f"\nPurge [bold]{ns}[/] ({scope}{f', source {source}' if source else ''})")
        console.print(f"  Chunks: {count}")

        if not yes:
            if not typer.confirm("Confirm purge?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = purge(repo, ns, slot=parsed_slot, source_id=source)
        console.print(f"\n[green]✓[/] Purged {removed} chunks")
        if parsed_slot in (None, Slot.PROD):
            console.print(f"\n{warn_prod_purged(ns)}")
    finally:
        conn.close()


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
