"""hybridrag documents / show / schemas — browse what is stored."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hybridrag.cli.common import load_cli_config, open_store, resolve_db
from hybridrag.cli.errors import err_document_not_found
from hybridrag.errors import DocumentNotFoundError
from hybridrag.rag.embeddings import LiteLLMEmbeddingProvider
from hybridrag.service import RetrievalService

console = Console()


def _service(db: Path | None) -> RetrievalService:
    cfg = load_cli_config()
    store = open_store(resolve_db(db, cfg), cfg)
    return RetrievalService(
        store, LiteLLMEmbeddingProvider.from_config(cfg.embedding),
        max_rows=cfg.tables.max_rows,
        max_groups=cfg.tables.max_groups,
    )


def documents_cmd(
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Print as JSON.")] = False,
) -> None:
    """List stored documents (datasets show their column schema)."""
    documents = _service(db).list_documents()

    if json_out:
        typer.echo(json.dumps(documents, indent=2, ensure_ascii=False))
        return
    if not documents:
        console.print("[dim]No documents ingested yet.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Schema", style="dim")
    for doc in documents:
        schema = doc.get("schema")
        cols = ", ".join(f"{c['name']}:{c['type']}" for c in schema) if schema else ""
        table.add_row(escape(doc["id"]), escape(doc["title"]), escape(cols))
    console.print(table)


def show_cmd(
    document_id: Annotated[str, typer.Argument(help="Document id (see: hybridrag documents).")],
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Print the full text of a document."""
    service = _service(db)
    try:
        content = service.get_file_contents(document_id)
    except DocumentNotFoundError as exc:
        console.print(err_document_not_found(document_id))
        raise typer.Exit(1) from exc
    typer.echo(content)


def schemas_cmd(
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Print as JSON.")] = False,
) -> None:
    """List datasets and their inferred column types."""
    schemas = _service(db).list_schemas()

    if json_out:
        typer.echo(json.dumps(schemas, indent=2, ensure_ascii=False))
        return
    if not schemas:
        console.print("[dim]No datasets ingested yet.[/]")
        return

    for dataset_id, columns in schemas.items():
        table = Table(title=escape(dataset_id), show_header=True, header_style="bold")
        table.add_column("Column")
        table.add_column("Type", style="dim")
        for col in columns:
            table.add_row(escape(col["name"]), col["type"])
        console.print(table)
