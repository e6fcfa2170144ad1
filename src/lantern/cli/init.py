"""lantern init — create the project database and config scaffold.

Creates:
  .lantern.db             : empty store with the current schema
  lantern.yaml            : per-project config (commented template)
  ~/.lantern/config.yaml  : global defaults (created once, mode 0o600)

Re-running init on an existing project only applies pending migrations;
stored chunks are preserved.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lantern.config import ensure_global_config
from lantern.db.connection import Database
from lantern.db.migrations import CURRENT_VERSION, initialize

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")

_PROJECT_TEMPLATE = """\
# lantern project configuration. Values here override ~/.lantern/config.yaml.
# API keys never belong in this file; use environment variables.

# embedding:
#   model: openai/text-embedding-3-small
#   dimensions: 1536
#   max_batch_items: 96
#   max_batch_tokens: 100000
#   max_item_tokens: 8000
#   workers: 8

# chunking:
#   chars: 1200
#   overlap: 180

# ingest:
#   max_content_chars: 8000
#   min_content_chars: 3
#   max_attempts: 2

# retrieval:
#   top_k: 5
#   candidate_k: 200
#   min_score: 0.35
#   min_similarity: 0.0
#   mmr_lambda: 0.7
#   namespace_mode: strict     # strict | prefix

# recency:
#   default:
#     half_life_days: 180
#     ttl_days: 365
#     alpha: 0.75
#     beta: 0.15
#     gamma: 0.10
#   namespaces:
#     news:
#       half_life_days: 7
#       ttl_days: 30
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    global_config: Annotated[
        bool,
        typer.Option("--global-config/--no-global-config", help="Create ~/.lantern/config.yaml if missing."),
    ] = True,
) -> None:
    """Initialize a lantern project: database, lantern.yaml, global config."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / ".lantern.db"
    existed = db_path.exists()

    with Database(db_path) as conn:
        initialize(conn)
    if existed:
        console.print(f"  [green]✓[/] .lantern.db (existing, schema v{CURRENT_VERSION})")
    else:
        console.print(f"  [green]✓[/] .lantern.db (schema v{CURRENT_VERSION})")

    cfg_path = project_dir / "lantern.yaml"
    if cfg_path.exists():
        console.print("  [dim]↷ lantern.yaml already exists — left unchanged[/]")
    else:
        cfg_path.write_text(_PROJECT_TEMPLATE, encoding="utf-8")
        console.print("  [green]✓[/] lantern.yaml")

    _update_gitignore(project_dir)

    if global_config:
        global_path = ensure_global_config()
        console.print(f"  [green]✓[/] {global_path} (global config)")

    console.print("\n[bold green]✓ Project initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. lantern ingest --namespace <ns> --source <file-or-dir>")
    console.print("  2. lantern search --namespace <ns> \"your question\"")
    console.print("  3. lantern promote --namespace <ns>      (staging → prod)")


def _update_gitignore(project_dir: Path) -> None:
    """Add lantern entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [".lantern.db", ".lantern.db-wal", ".lantern.db-shm"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8")
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# lantern\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with lantern entries)")
