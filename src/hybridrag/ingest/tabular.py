"""Schema inference and typed row parsing for tabular sources.

Column types are inferred once, from a sample of each column's non-empty
values, and stored with the dataset. Every row is then parsed against that
schema; a value that does not fit its column fails the whole document.

Inference order per column: boolean → number → date → text. A column is given
a type only if *every* sampled value parses as that type.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from hybridrag.db.models import ColumnSpec, ColumnType
from hybridrag.errors import ExtractionError, MalformedRowError

_TRUE = frozenset(["true", "yes", "y", "t"])
_FALSE = frozenset(["false", "no", "n", "f"])

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_GROUPED_NUMBER_RE = re.compile(r"^[+-]?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")

_DATE_FORMATS = ("%Y/%m/%d", "%d.%m.%Y", "%m/%d/%Y", "%d %b %Y", "%d %B %Y", "%b %d, %Y")

_MAX_CELL_CHARS = 200


@dataclass
class Dataset:
    """A parsed tabular source: schema, typed rows, and a text rendering."""

    schema: list[ColumnSpec]
    rows: list[dict[str, Any]]

    def to_text(self) -> str:
        """Render rows as ``column: value`` lines for chunking and full-text search."""
        lines: list[str] = []
        for row in self.rows:
            cells = [
                f"{col.name}: {_format_cell(row[col.name])}"
                for col in self.schema
                if row.get(col.name) is not None
            ]
            if cells:
                lines.append(" | ".join(cells))
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_dataset(raw_rows: Sequence[Mapping[Any, Any]], sample_size: int = 100) -> Dataset:
    """Infer a schema from *raw_rows* and parse every row against it.

    Raises:
        ExtractionError: If a row is not a mapping or has an unnamed column.
        MalformedRowError: If a value does not parse as its column's type.
    """
    columns = _column_names(raw_rows)
    schema = infer_schema(raw_rows, columns, sample_size=sample_size)
    return Dataset(schema=schema, rows=parse_rows(raw_rows, schema))


def infer_schema(
    raw_rows: Sequence[Mapping[Any, Any]],
    columns: Sequence[str] | None = None,
    sample_size: int = 100,
) -> list[ColumnSpec]:
    """Return the ordered column descriptors for *raw_rows*."""
    if columns is None:
        columns = _column_names(raw_rows)
    schema: list[ColumnSpec] = []
    for name in columns:
        sample = _sample(raw_rows, name, sample_size)
        schema.append(ColumnSpec(name=name, type=_infer_type(sample)))
    return schema


def parse_rows(
    raw_rows: Iterable[Mapping[Any, Any]], schema: Sequence[ColumnSpec]
) -> list[dict[str, Any]]:
    """Parse each row's values against *schema*. Row numbers in errors are 1-based."""
    types = {c.name: c.type for c in schema}
    parsed: list[dict[str, Any]] = []
    for number, raw in enumerate(raw_rows, start=1):
        row: dict[str, Any] = {}
        for key, value in raw.items():
            name = str(key)
            if name not in types:
                raise ExtractionError(f"Row {number}: column '{name}' is not in the schema")
            try:
                row[name] = parse_value(value, types[name])
            except ValueError:
                raise MalformedRowError(number, name, value, types[name].value) from None
        parsed.append(row)
    return parsed


def parse_value(value: Any, column_type: ColumnType) -> Any:
    """Convert *value* to the canonical Python value for *column_type*.

    Empty values become None for every type. Dates are returned as ISO-8601
    strings so they compare correctly as text.

    Raises:
        ValueError: If *value* is not a valid *column_type*.
    """
    if _is_empty(value):
        return None
    if column_type is ColumnType.BOOLEAN:
        return _parse_bool(value)
    if column_type is ColumnType.NUMBER:
        return _parse_number(value)
    if column_type is ColumnType.DATE:
        return _parse_date(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


# ---------------------------------------------------------------------------
# Inference helpers
# ---------------------------------------------------------------------------


def _column_names(raw_rows: Sequence[Mapping[Any, Any]]) -> list[str]:
    """Column names in order of first appearance across all rows."""
    seen: dict[str, None] = {}
    for number, raw in enumerate(raw_rows, start=1):
        if not isinstance(raw, Mapping):
            raise ExtractionError(f"Row {number} is not a key/value record")
        for key in raw:
            if key is None or str(key).strip() == "":
                raise ExtractionError(f"Row {number} has a value without a column name")
            seen.setdefault(str(key), None)
    return list(seen)


def _sample(raw_rows: Sequence[Mapping[Any, Any]], name: str, size: int) -> list[Any]:
    values: list[Any] = []
    for raw in raw_rows:
        value = raw.get(name)
        if not _is_empty(value):
            values.append(value)
            if len(values) >= size:
                break
    return values


def _infer_type(sample: list[Any]) -> ColumnType:
    if not sample:
        return ColumnType.TEXT
    for column_type, parser in (
        (ColumnType.BOOLEAN, _parse_bool),
        (ColumnType.NUMBER, _parse_number),
        (ColumnType.DATE, _parse_date),
    ):
        if all(_parses(parser, v) for v in sample):
            return column_type
    return ColumnType.TEXT


def _parses(parser: Any, value: Any) -> bool:
    try:
        parser(value)
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Value parsers (raise ValueError on mismatch)
# ---------------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise ValueError("booleans are not numbers")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value != value:  # NaN
            raise ValueError("NaN is not a number")
        return value
    if not isinstance(value, str):
        raise ValueError(f"not a number: {value!r}")
    text = value.strip()
    if _GROUPED_NUMBER_RE.match(text):
        text = text.replace(",", "")
    elif not _NUMBER_RE.match(text):
        raise ValueError(f"not a number: {value!r}")
    if re.fullmatch(r"[+-]?\d+", text):
        return int(text)
    return float(text)


def _parse_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        raise ValueError(f"not a date: {value!r}")
    text = value.strip()
    if len(text) >= 8 and text[:4].isdigit():
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            pass
        else:
            if len(text) == 10:
                return parsed.date().isoformat()
            return parsed.isoformat()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValueError(f"not a date: {value!r}")


def _format_cell(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    return text if len(text) <= _MAX_CELL_CHARS else text[: _MAX_CELL_CHARS - 1] + "…"
