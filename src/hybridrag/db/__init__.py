"""hybridrag database layer."""

from hybridrag.db.connection import Database
from hybridrag.db.migrations import MIGRATIONS, run_migrations
from hybridrag.db.schema import initialize
from hybridrag.db.store import DocumentStore
from hybridrag.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "DocumentStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
