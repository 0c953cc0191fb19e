"""Helpers shared by the hybridrag commands: config, database path, store."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from hybridrag.cli.errors import err_config, err_dimension_mismatch, err_no_db
from hybridrag.config import ConfigError, HybridRagConfig, load_config
from hybridrag.db.connection import Database
from hybridrag.db.store import DocumentStore

console = Console()


def load_cli_config() -> HybridRagConfig:
    """Load the layered config, or print an actionable error and exit 1."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def resolve_db(db: Path | None, cfg: HybridRagConfig) -> Path:
    """--db wins over ingest.db / HYBRIDRAG_DB."""
    return db if db is not None else Path(cfg.ingest.db)


def open_store(db_path: Path, cfg: HybridRagConfig, *, must_exist: bool = True) -> DocumentStore:
    """Open (or, with must_exist=False, create) the store for the configured model."""
    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    try:
        return DocumentStore(Database(db_path), cfg.embedding.model, cfg.embedding.dimensions)
    except ValueError as exc:
        console.print(err_dimension_mismatch(str(exc), cfg.embedding.model))
        raise typer.Exit(1) from exc
