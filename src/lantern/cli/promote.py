"""lantern promote — copy a namespace from one slot to the other.

Stored embeddings are reused; nothing is re-embedded. Chunks already present
in the destination with identical content are left untouched.

Usage:
  lantern promote --namespace docs                 (staging → prod)
  lantern promote --namespace docs --replace       (also drop prod-only chunks)
  lantern promote --namespace docs --dry-run
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lantern.cli.errors import err_invalid_input, err_no_db, err_same_slot
from lantern.db.connection import Database
from lantern.db.migrations import initialize
from lantern.db.models import Slot
from lantern.db.repository import Repository
from lantern.errors import ValidationError
from lantern.ingest.lifecycle import promote

console = Console()

_DEFAULT_DB = Path(".lantern.db")


def promote_cmd(
    namespace: Annotated[
        str,
        typer.Option("--namespace", "-n", help="Namespace to promote."),
    ],
    from_slot: Annotated[
        str,
        typer.Option("--from", help="Source slot."),
    ] = "staging",
    to_slot: Annotated[
        str,
        typer.Option("--to", help="Destination slot."),
    ] = "prod",
    replace_missing: Annotated[
        bool,
        typer.Option("--replace", help="Delete destination chunks missing from the source."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would change without writing."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .lantern.db."),
    ] = _DEFAULT_DB,
) -> None:
    """Promote a namespace between slots (default staging → prod)."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    try:
        src = Slot.parse(from_slot)
        dst = Slot.parse(to_slot)
    except ValidationError as exc:
        console.print(err_invalid_input(str(exc)))
        raise typer.Exit(1) from None
    if src is dst:
        console.print(err_same_slot(src.value))
        raise typer.Exit(1)

    conn = _open_db(db)
    repo = Repository(conn)
    try:
        plan = promote(repo, namespace, src, dst, replace_missing=replace_missing, dry_run=True)
        console.print(
            f"\nPromote [bold]{namespace}[/] {src.value} → {dst.value}\n"
            f"  insert: {plan.inserted}  |  update: {plan.updated}  |  "
            f"unchanged: {plan.unchanged}  |  remove: {plan.removed}"
        )
        if dry_run:
            console.print("[dim]Dry run — nothing written to DB[/]")
            return
        if not plan.changed:
            console.print(f"[green]✓[/] {dst.value} is already up to date.")
            return
        if plan.removed and not yes:
            if not typer.confirm(f"Delete {plan.removed} chunks from {dst.value}?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        result = promote(repo, namespace, src, dst, replace_missing=replace_missing)
        console.print(
            f"[green]✓[/] Promoted: {result.inserted} inserted, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.removed} removed"
        )
    except ValidationError as exc:
        console.print(err_invalid_input(str(exc)))
        raise typer.Exit(1) from None
    finally:
        conn.close()


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
