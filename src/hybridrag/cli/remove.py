"""hybridrag remove — document lifecycle management.

Removes a document and everything it owns in one transaction:
  - chunks (+ FTS5 index entries)
  - embeddings (all vec tables)
  - structured rows (datasets)
  - watermark and document record

Usage:
  hybridrag remove notes/meeting.md
  hybridrag remove sales.csv --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from hybridrag.cli.common import load_cli_config, open_store, resolve_db
from hybridrag.cli.errors import err_document_not_found

console = Console()


def remove_cmd(
    document_id: Annotated[str, typer.Argument(help="Document id to remove.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a document and all its data from the store."""
    cfg = load_cli_config()
    store = open_store(resolve_db(db, cfg), cfg)

    document = store.get_document(document_id)
    if document is None:
        console.print(err_document_not_found(document_id))
        raise typer.Exit(1)

    with store.reader() as repo:
        chunk_count = repo.count_chunks_by_document(document_id)
        row_count = repo.count_rows(document_id)

    console.print(f"\nRemove document: [bold]{escape(document_id)}[/]")
    console.print(f"  Chunks: {chunk_count}  |  Rows: {row_count}")

    if not yes:
        if not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    store.delete(document_id)
    console.print(f"\n[green]✓[/] Removed: {escape(document_id)}")
    console.print(f"  {chunk_count} chunks, {row_count} rows deleted")
