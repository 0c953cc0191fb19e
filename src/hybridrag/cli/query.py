"""hybridrag query — hybrid (full-text + semantic) search over ingested chunks."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hybridrag.cli.common import load_cli_config, open_store, resolve_db
from hybridrag.cli.errors import err_invalid_query, err_no_api_key, err_provider
from hybridrag.errors import ProviderError, QueryValidationError
from hybridrag.rag.embeddings import LiteLLMEmbeddingProvider, validate_api_key
from hybridrag.rag.retriever import RetrieverConfig
from hybridrag.service import RetrievalService

console = Console()

_SNIPPET_CHARS = 120


def query_cmd(
    text: Annotated[str, typer.Argument(help="Query text.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Number of results."),
    ] = None,
    full_text_weight: Annotated[
        float | None,
        typer.Option("--full-text-weight", help="Weight of the BM25 ranking (0 disables it)."),
    ] = None,
    semantic_weight: Annotated[
        float | None,
        typer.Option("--semantic-weight", help="Weight of the vector ranking (0 disables it)."),
    ] = None,
    rrf_k: Annotated[
        int | None,
        typer.Option("--rrf-k", help="RRF constant; larger flattens rank differences."),
    ] = None,
    json_out: Annotated[
        bool,
        typer.Option("--json", help="Print results as JSON."),
    ] = False,
) -> None:
    """Search the store and print the fused ranking."""
    cfg = load_cli_config()
    store = open_store(resolve_db(db, cfg), cfg)

    effective_semantic = cfg.retrieval.semantic_weight if semantic_weight is None else semantic_weight
    if effective_semantic > 0:
        try:
            validate_api_key(cfg.embedding.model)
        except EnvironmentError as exc:
            provider = cfg.embedding.model.split("/")[0] if "/" in cfg.embedding.model else "openai"
            console.print(err_no_api_key(provider))
            raise typer.Exit(1) from exc

    service = RetrievalService(
        store,
        LiteLLMEmbeddingProvider.from_config(cfg.embedding),
        RetrieverConfig.from_config(cfg.retrieval),
        max_rows=cfg.tables.max_rows,
        max_groups=cfg.tables.max_groups,
    )
    request: dict[str, object] = {"query_text": text}
    for key, value in (
        ("top_k", top_k),
        ("full_text_weight", full_text_weight),
        ("semantic_weight", semantic_weight),
        ("rrf_k", rrf_k),
    ):
        if value is not None:
            request[key] = value

    try:
        results = service.search(request)
    except QueryValidationError as exc:
        console.print(err_invalid_query(str(exc)))
        raise typer.Exit(1) from exc
    except ProviderError as exc:
        console.print(err_provider(str(exc)))
        raise typer.Exit(1) from exc

    if json_out:
        typer.echo(json.dumps(results, indent=2, ensure_ascii=False))
        return

    if not results:
        console.print("[dim]No matching chunks.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Document")
    table.add_column("Chunk", justify="right")
    table.add_column("Content")
    for rank, hit in enumerate(results, start=1):
        meta = hit["metadata"]
        table.add_row(
            str(rank),
            f"{hit['score']:.4f}",
            escape(meta["document_id"]),
            str(meta["chunk_index"]),
            escape(_snippet(hit["content"])),
        )
    console.print(table)


def _snippet(content: str) -> str:
    flat = " ".join(content.split())
    return flat if len(flat) <= _SNIPPET_CHARS else flat[: _SNIPPET_CHARS - 1] + "…"
