"""hybridrag ingest — ingest files and directories into the store.

Source handling:
  .txt .md .markdown .rst .text .log  → text, chunked + embedded
  .csv / .json (array of objects)     → dataset: schema + typed rows,
                                        rendered text chunked + embedded
  directory                           → every supported file below it

Unchanged sources (same fingerprint as the stored watermark) are skipped.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from hybridrag.cli.common import load_cli_config, open_store, resolve_db
from hybridrag.cli.errors import (
    err_duplicate_sources,
    err_ingestion_halted,
    err_no_api_key,
    err_no_sources,
)
from hybridrag.config import ensure_global_config
from hybridrag.errors import DuplicateSourceError
from hybridrag.ingest.chunker import TextChunker
from hybridrag.ingest.coordinator import (
    IngestionAborted,
    IngestionCoordinator,
    IngestResult,
    IngestStatus,
)
from hybridrag.ingest.watcher import DirectoryWatcher
from hybridrag.rag.embeddings import LiteLLMEmbeddingProvider, validate_api_key

console = Console()

_STATUS_MARK = {
    IngestStatus.INGESTED: "[green]✓[/]",
    IngestStatus.UNCHANGED: "[dim]↷[/]",
    IngestStatus.SUPERSEDED: "[yellow]↷[/]",
    IngestStatus.FAILED: "[red]✗[/]",
    IngestStatus.CANCELLED: "[yellow]✗[/]",
}


def ingest_cmd(
    source: Annotated[
        list[Path] | None,
        typer.Option("--source", "-s", help="File or directory to ingest (repeatable)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (created if missing)."),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", "-w", min=1, help="Documents ingested in parallel."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Re-ingest even if a source is unchanged."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be ingested without writing."),
    ] = False,
    prune: Annotated[
        bool,
        typer.Option("--prune", help="Remove stored documents no longer found in the sources."),
    ] = False,
    recursive: Annotated[
        bool,
        typer.Option("--recursive/--no-recursive", help="Recurse into subdirectories."),
    ] = True,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
) -> None:
    """Ingest text files and tabular datasets into the hybrid store."""
    if not source:
        console.print(err_no_sources())
        raise typer.Exit(1)

    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)

    if not dry_run:
        try:
            validate_api_key(cfg.embedding.model)
        except EnvironmentError as exc:
            provider = cfg.embedding.model.split("/")[0] if "/" in cfg.embedding.model else "openai"
            console.print(err_no_api_key(provider))
            raise typer.Exit(1) from exc
        ensure_global_config()

    store = open_store(db_path, cfg, must_exist=False)
    watcher = DirectoryWatcher(source, recursive=recursive, exclude=exclude or [])
    coordinator = IngestionCoordinator(
        store,
        LiteLLMEmbeddingProvider.from_config(cfg.embedding),
        watcher,
        chunker=TextChunker(cfg.chunking.chunk_size, cfg.chunking.overlap),
        sample_size=cfg.tables.sample_size,
        workers=workers or cfg.ingest.workers,
    )

    if dry_run:
        try:
            _show_dry_run(coordinator, force=force)
        except DuplicateSourceError as exc:
            console.print(err_duplicate_sources(exc.document_ids))
            raise typer.Exit(1) from exc
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Ingesting…", total=None)

        def _on_result(result: IngestResult) -> None:
            prog.advance(task)
            _print_result(result)

        try:
            report = coordinator.run(force=force, prune=prune, on_result=_on_result)
        except IngestionAborted as exc:
            console.print(err_ingestion_halted(str(exc), len(exc.report.results)))
            raise typer.Exit(1) from exc
        except DuplicateSourceError as exc:
            console.print(err_duplicate_sources(exc.document_ids))
            raise typer.Exit(1) from exc

    for document_id in report.removed:
        console.print(f"  [yellow]-[/] Removed {escape(document_id)} (source gone)")

    counts = {status: len(report.by_status(status)) for status in IngestStatus}
    console.print(
        f"\n[bold]Done.[/] {counts[IngestStatus.INGESTED]} ingested, "
        f"{counts[IngestStatus.UNCHANGED] + len(report.skipped)} unchanged, "
        f"{counts[IngestStatus.FAILED]} failed"
        + (f", {len(report.removed)} removed" if report.removed else "")
    )
    if report.failed:
        raise typer.Exit(1)


def _print_result(result: IngestResult) -> None:
    mark = _STATUS_MARK[result.status]
    line = f"  {mark} {escape(result.document_id)}"
    if result.status is IngestStatus.INGESTED:
        detail = f"{result.chunks} chunks"
        if result.rows:
            detail += f", {result.rows} rows"
        line += f" [dim]({detail})[/]"
    elif result.status is IngestStatus.FAILED:
        line += f"  [red]{escape(result.error or 'failed')}[/]"
    else:
        line += f" [dim]({result.status.value})[/]"
    console.print(line)


def _show_dry_run(coordinator: IngestionCoordinator, force: bool) -> None:
    descriptors = coordinator.poll() if force else coordinator.detect()
    if not descriptors:
        console.print("[dim]Nothing to ingest — all sources unchanged.[/]")
        return
    console.print(f"[bold]Would ingest {len(descriptors)} source(s):[/]")
    for descriptor in descriptors:
        console.print(f"  • {escape(descriptor.id)} [dim]({descriptor.kind})[/]")
    console.print("[dim]Dry run — nothing ingested.[/]")
