"""hybridrag table — read-only structured query over one dataset.

Examples:
  hybridrag table sales.csv --where revenue:gt:100 --order-by revenue --desc --limit 5
  hybridrag table sales.csv --aggregate sum:revenue --group-by region
  hybridrag table sales.csv --where region:in:north,south --aggregate count
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hybridrag.cli.common import load_cli_config, open_store, resolve_db
from hybridrag.cli.errors import err_invalid_query, err_invalid_where
from hybridrag.errors import QueryValidationError
from hybridrag.rag.embeddings import LiteLLMEmbeddingProvider
from hybridrag.service import RetrievalService

console = Console()

_NO_VALUE_OPS = frozenset(["is_null", "not_null"])


def table_cmd(
    dataset_id: Annotated[str, typer.Argument(help="Dataset id (see: hybridrag schemas).")],
    where: Annotated[
        list[str] | None,
        typer.Option("--where", "-w", help="Filter column:op:value (repeatable)."),
    ] = None,
    select: Annotated[
        list[str] | None,
        typer.Option("--select", help="Column to return (repeatable)."),
    ] = None,
    aggregate: Annotated[
        list[str] | None,
        typer.Option("--aggregate", "-a", help="fn[:column], e.g. sum:revenue or count."),
    ] = None,
    group_by: Annotated[
        list[str] | None,
        typer.Option("--group-by", help="Group column (repeatable)."),
    ] = None,
    order_by: Annotated[
        str | None,
        typer.Option("--order-by", help="Column (or aggregate label) to order by."),
    ] = None,
    desc: Annotated[bool, typer.Option("--desc", help="Order descending.")] = False,
    limit: Annotated[int | None, typer.Option("--limit", "-n", min=1, help="Max rows.")] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Print rows as JSON.")] = False,
) -> None:
    """Filter, aggregate and order rows of a tabular dataset."""
    predicate: dict[str, Any] = {}
    if where:
        predicate["where"] = [_parse_where(clause) for clause in where]
    if select:
        predicate["select"] = list(select)
    if aggregate:
        predicate["aggregate"] = [_parse_aggregate(spec) for spec in aggregate]
    if group_by:
        predicate["group_by"] = list(group_by)
    if order_by:
        predicate["order_by"] = [{"column": order_by, "descending": desc}]
    if limit is not None:
        predicate["limit"] = limit

    cfg = load_cli_config()
    store = open_store(resolve_db(db, cfg), cfg)
    service = RetrievalService(
        store, LiteLLMEmbeddingProvider.from_config(cfg.embedding),
        max_rows=cfg.tables.max_rows,
        max_groups=cfg.tables.max_groups,
    )

    try:
        result = service.tables.query(dataset_id, predicate)
    except QueryValidationError as exc:
        console.print(err_invalid_query(str(exc)))
        raise typer.Exit(1) from exc

    if json_out:
        typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
        return

    table = Table(show_header=True, header_style="bold")
    for name in result.columns:
        table.add_column(escape(name))
    for row in result.rows:
        table.add_row(*(escape(_cell(row.get(name))) for name in result.columns))
    console.print(table)
    suffix = f" (truncated at {cfg.tables.max_rows})" if result.truncated else ""
    console.print(f"[dim]{len(result.rows)} row(s){suffix}[/]")


def _parse_where(clause: str) -> dict[str, Any]:
    """``column:op[:value]`` → filter dict. ``in`` values are comma-separated."""
    parts = clause.split(":", 2)
    if len(parts) < 2 or not parts[0]:
        console.print(err_invalid_where(clause))
        raise typer.Exit(1)
    column, op = parts[0], parts[1].lower()
    if op in _NO_VALUE_OPS:
        return {"column": column, "op": op}
    if len(parts) != 3:
        console.print(err_invalid_where(clause))
        raise typer.Exit(1)
    value: Any = parts[2]
    if op == "in":
        value = [v.strip() for v in parts[2].split(",")]
    return {"column": column, "op": op, "value": value}


def _parse_aggregate(spec: str) -> dict[str, Any]:
    fn, _, column = spec.partition(":")
    entry: dict[str, Any] = {"fn": fn.lower()}
    if column:
        entry["column"] = column
    return entry


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)
