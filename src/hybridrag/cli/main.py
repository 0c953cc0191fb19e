"""hybridrag CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from hybridrag.cli.documents import documents_cmd, schemas_cmd, show_cmd
from hybridrag.cli.ingest import ingest_cmd
from hybridrag.cli.query import query_cmd
from hybridrag.cli.remove import remove_cmd
from hybridrag.cli.status import status_cmd
from hybridrag.cli.table import table_cmd
from hybridrag.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("hybridrag")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"hybridrag {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="hybridrag",
    help=(
        "hybridrag — hybrid (full-text + semantic) retrieval over text and tables.\n\n"
        "  hybridrag ingest  Load files and datasets into the store.\n"
        "  hybridrag query   Fused BM25 + vector search.\n"
        "  hybridrag table   Read-only filter/aggregate over a dataset."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output to stderr."),
    ] = False,
) -> None:
    """hybridrag — hybrid retrieval CLI."""
    configure_logging(verbose=verbose)


app.command("ingest")(ingest_cmd)
app.command("query")(query_cmd)
app.command("documents")(documents_cmd)
app.command("show")(show_cmd)
app.command("schemas")(schemas_cmd)
app.command("table")(table_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed hybridrag version."""
    typer.echo(f"hybridrag {_installed_version()}")


if __name__ == "__main__":
    app()
