"""hybridrag status command.

Shows a store overview: configuration in effect, database stats, vec tables
and the most recent ingestion.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from hybridrag.cli.common import load_cli_config, open_store, resolve_db
from hybridrag.config import HybridRagConfig
from hybridrag.db.store import DocumentStore

console = Console()


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database."),
    ] = None,
) -> None:
    """Show configuration and knowledge base statistics."""
    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)

    _show_config_panel(db_path, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  hybridrag ingest --source <path>",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    _show_knowledge_panel(open_store(db_path, cfg))


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_config_panel(db: Path, cfg: HybridRagConfig) -> None:
    db_info = escape(str(db))
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db_info} ({size_mb:.1f} MB)"

    r = cfg.retrieval
    lines = [
        f"Database:   {db_info}",
        f"Embedding:  [bold]{escape(cfg.embedding.model)}[/] ({cfg.embedding.dimensions} dims)",
        f"Chunking:   {cfg.chunking.chunk_size} chars, {cfg.chunking.overlap} overlap",
        f"Retrieval:  top_k={r.top_k} rrf_k={r.rrf_k} "
        f"full_text={r.full_text_weight:g} semantic={r.semantic_weight:g}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Configuration[/]", expand=False))


def _show_knowledge_panel(store: DocumentStore) -> None:
    stats = store.stats()
    watermarks = store.list_watermarks()
    last_ingest = max((w.ingested_at for w in watermarks.values() if w.ingested_at), default=None)

    lines = [
        f"Documents: [bold]{stats.documents}[/]  |  "
        f"Datasets: [bold]{stats.datasets}[/]  |  "
        f"Chunks: [bold]{stats.chunks:,}[/]  |  "
        f"Rows: [bold]{stats.rows:,}[/]"
    ]
    lines.append(f"Vec tables: [bold]{len(stats.vec_tables)}[/]")
    for name in stats.vec_tables:
        marker = " [green](active)[/]" if name == store.vec_table else ""
        lines.append(f"  [dim]{name}[/]{marker}")
    if stats.unembedded_chunks:
        lines.append(
            f"[yellow]{stats.unembedded_chunks:,} chunk(s) have no embedding for the active model[/]"
            " and are missing from semantic ranking.\n"
            "  Run:  hybridrag ingest --source <path> --force  to re-embed them."
        )
    if last_ingest:
        lines.append(f"Last ingest: [dim]{last_ingest[:16]}[/]")
    else:
        lines.append("[dim]No documents ingested yet.[/]")

    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))
