"""hybridrag rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from hybridrag.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "azure": "AZURE_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "voyage": "VOYAGE_API_KEY",
        "together_ai": "TOGETHERAI_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{escape(provider)}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".hybridrag.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{escape(db_path)}'.\n"
        "  Run:  hybridrag ingest --source <path>"
    )


def err_config(message: str) -> str:
    """hybridrag.yaml / global config could not be loaded."""
    return (
        f"[red]Error:[/] {escape(message)}\n"
        "  Fix hybridrag.yaml (or ~/.hybridrag/config.yaml) and retry."
    )


def err_dimension_mismatch(message: str, model: str) -> str:
    """The configured dimension does not match the stored vec table for *model*."""
    return (
        f"[red]Error:[/] Embedding dimension mismatch for '{escape(model)}'.\n"
        f"  {escape(message)}\n"
        "  Set embedding.dimensions to the value the database was built with,\n"
        "  or switch embedding.model and re-ingest with --force."
    )


def err_document_not_found(document_id: str) -> str:
    """Document id not in the store."""
    return (
        f"[yellow]Document not found:[/] '{escape(document_id)}' is not in the store.\n"
        "  Run:  hybridrag documents  to see all ingested documents."
    )


def err_invalid_query(message: str) -> str:
    """Search or table query rejected before execution."""
    return (
        f"[red]Error:[/] Invalid query: {escape(message)}\n"
        "  Run:  hybridrag schemas  to see datasets and their columns."
    )


def err_invalid_where(clause: str) -> str:
    """--where clause not in column:op:value form."""
    return (
        f"[red]Error:[/] Cannot parse --where '{escape(clause)}'.\n"
        "  Use:  --where column:op:value  (e.g. revenue:gt:100, region:is_null)"
    )


def err_ingestion_halted(message: str, completed: int) -> str:
    """A permanent provider failure aborted the ingestion run."""
    return (
        f"[red]Error:[/] Ingestion halted: {escape(message)}\n"
        f"  {completed} document(s) finished before the halt; the rest were not started.\n"
        "  Check the embedding model name and API key, then re-run  hybridrag ingest."
    )


def err_provider(message: str) -> str:
    """Embedding call failed while answering a query."""
    return (
        f"[red]Error:[/] Embedding provider failed: {escape(message)}\n"
        "  Retry later, or use  --semantic-weight 0  for a full-text-only search."
    )


def err_no_sources() -> str:
    """ingest called without --source."""
    return (
        "[red]Error:[/] No --source specified.\n"
        "  Use:  hybridrag ingest --source DIR_OR_FILE"
    )


def err_duplicate_sources(document_ids: list[str]) -> str:
    """Two --source paths produce the same document id."""
    shown = ", ".join(escape(d) for d in document_ids[:5])
    more = f" (+{len(document_ids) - 5} more)" if len(document_ids) > 5 else ""
    return (
        f"[red]Error:[/] Several sources map to the same document id: {shown}{more}\n"
        "  Give each --source directory a distinct name, or ingest them into separate databases."
    )
