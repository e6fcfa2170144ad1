"""lantern storage layer: SQLite + FTS5 + sqlite-vec."""

from lantern.db.connection import Database
from lantern.db.migrations import CURRENT_VERSION, MIGRATIONS, initialize, run_migrations
from lantern.db.repository import Repository
from lantern.db.vectors import decode_vector, encode_vector, unit_rows

__all__ = [
    "CURRENT_VERSION",
    "Database",
    "MIGRATIONS",
    "Repository",
    "decode_vector",
    "encode_vector",
    "initialize",
    "run_migrations",
    "unit_rows",
]
