"""lantern status command.

Shows a project overview: database, effective configuration, and chunk /
source counts per (namespace, slot).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lantern.cli.errors import err_config, err_invalid_input
from lantern.config import ConfigError, LanternConfig, load_config
from lantern.db.connection import Database
from lantern.db.migrations import initialize
from lantern.db.models import NamespaceStats
from lantern.db.repository import Repository
from lantern.errors import ValidationError
from lantern.ingest.lifecycle import namespace_stats

console = Console()

_DEFAULT_DB = Path(".lantern.db")


def status_cmd(
    namespace: Annotated[
        str | None,
        typer.Option("--namespace", "-n", help="Only this namespace and its descendants."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .lantern.db."),
    ] = _DEFAULT_DB,
) -> None:
    """Show project status: configuration and stored namespaces."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from None

    # ---- Panel 1: Project + Database ----
    _show_project_panel(db, cfg)

    # ---- Panel 2: Namespaces ----
    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  lantern init",
                title="[bold]Namespaces[/]",
                expand=False,
            )
        )
        return

    conn = _open_db(db)
    try:
        stats = namespace_stats(Repository(conn), namespace)
    except ValidationError as exc:
        console.print(err_invalid_input(str(exc)))
        raise typer.Exit(1) from None
    finally:
        conn.close()
    _show_namespace_panel(stats)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_project_panel(db: Path, cfg: LanternConfig) -> None:
    db_info = f"{db}"
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db} ({size_mb:.1f} MB)"

    r = cfg.retrieval
    d = cfg.recency.default
    ttl = f"{d.ttl_days:g} d" if d.ttl_days is not None else "none"
    lines = [
        f"Database:   {db_info}",
        f"Embedding:  {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Retrieval:  top_k={r.top_k} candidate_k={r.candidate_k} "
        f"min_score={r.min_score:g} mode={r.namespace_mode}",
        f"Recency:    half-life {d.half_life_days:g} d, TTL {ttl}, "
        f"α={d.alpha:g} β={d.beta:g} γ={d.gamma:g}",
    ]
    if cfg.recency.namespaces:
        lines.append(f"Overrides:  {', '.join(sorted(cfg.recency.namespaces))}")

    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))


def _show_namespace_panel(stats: list[NamespaceStats]) -> None:
    if not stats:
        console.print(
            Panel(
                "[dim]No chunks stored yet.[/]\n"
                "  Run:  lantern ingest --namespace <ns> --source <path>",
                title="[bold]Namespaces[/]",
                expand=False,
            )
        )
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Namespace", style="bold")
    table.add_column("Slot")
    table.add_column("Sources", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Last update", style="dim")

    for s in stats:
        slot_label = "[green]prod[/]" if s.slot.value == "prod" else "[yellow]staging[/]"
        table.add_row(
            s.namespace,
            slot_label,
            f"{s.sources:,}",
            f"{s.chunks:,}",
            (s.last_updated or "")[:16],  # trim to "YYYY-MM-DD HH:MM"
        )

    total = sum(s.chunks for s in stats)
    console.print(
        Panel(
            table,
            title=f"[bold]Namespaces[/] [dim]({total:,} chunks)[/]",
            expand=False,
        )
    )


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
