"""Structured query executor: read-only filter / aggregate / order over dataset rows.

A query is a ``TablePredicate`` (or its dict form)::

    {
        "select": ["date", "revenue"],
        "where": [{"column": "revenue", "op": "gt", "value": 100}],
        "aggregate": [{"fn": "sum", "column": "revenue"}],
        "group_by": ["date"],
        "order_by": [{"column": "sum(revenue)", "descending": true}],
        "limit": 10,
    }

Every referenced column is checked against the dataset's stored schema and
every filter value is coerced to its column's type before a single row is
read. Rows are streamed from one read snapshot; ordered results are selected
with a bounded heap, so memory grows with the result size, not the dataset.

Null (missing) values never satisfy a comparison; only ``is_null`` matches
them. When ordering, nulls sort last in both directions.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hybridrag.db.models import ColumnSpec, ColumnType, Document
from hybridrag.db.store import DocumentStore
from hybridrag.errors import QueryValidationError
from hybridrag.ingest.tabular import parse_value

logger = logging.getLogger(__name__)

MUTATING_KEYS = frozenset(["insert", "update", "delete", "set", "drop", "replace", "truncate"])
PREDICATE_KEYS = frozenset(["select", "where", "aggregate", "group_by", "order_by", "limit"])


class FilterOp(str, Enum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LE = "le"
    GT = "gt"
    GE = "ge"
    CONTAINS = "contains"
    IN = "in"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


class AggregateFn(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


_ORDERED_OPS = frozenset([FilterOp.LT, FilterOp.LE, FilterOp.GT, FilterOp.GE])
_NULL_OPS = frozenset([FilterOp.IS_NULL, FilterOp.NOT_NULL])
_ORDERABLE_TYPES = frozenset([ColumnType.NUMBER, ColumnType.DATE, ColumnType.TEXT])


@dataclass(frozen=True)
class Filter:
    column: str
    op: FilterOp
    value: Any = None


@dataclass(frozen=True)
class Aggregate:
    fn: AggregateFn
    column: str | None = None  # None only for count(*)

    @property
    def label(self) -> str:
        return f"{self.fn.value}({self.column or '*'})"


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False


@dataclass
class TablePredicate:
    select: list[str] | None = None
    where: list[Filter] = field(default_factory=list)
    aggregate: list[Aggregate] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    order_by: list[OrderBy] = field(default_factory=list)
    limit: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TablePredicate:
        """Parse the dict form of a predicate.

        Raises:
            QueryValidationError: On mutating keys, unknown keys, or malformed
                entries.
        """
        if not isinstance(data, Mapping):
            raise QueryValidationError("Table predicate must be a mapping")
        keys = {str(k).lower() for k in data}
        mutating = sorted(keys & MUTATING_KEYS)
        if mutating:
            raise QueryValidationError(
                f"Table queries are read-only; '{mutating[0]}' is not allowed"
            )
        unknown = sorted(keys - PREDICATE_KEYS)
        if unknown:
            raise QueryValidationError(
                f"Unknown predicate key '{unknown[0]}'. "
                f"Allowed: {', '.join(sorted(PREDICATE_KEYS))}"
            )

        select = data.get("select")
        if select is not None:
            select = _str_list(select, "select")
        return cls(
            select=select,
            where=[_parse_filter(item) for item in _as_list(data.get("where"))],
            aggregate=[_parse_aggregate(item) for item in _as_list(data.get("aggregate"))],
            group_by=_str_list(data.get("group_by") or [], "group_by"),
            order_by=[_parse_order(item) for item in _as_list(data.get("order_by"))],
            limit=data.get("limit"),
        )


@dataclass
class TableResult:
    """Rows returned by a table query.

    ``truncated`` is True when more rows matched than ``max_rows`` allowed.
    """

    columns: list[str]
    rows: list[dict[str, Any]]
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"columns": list(self.columns), "rows": list(self.rows), "truncated": self.truncated}


class StructuredQueryExecutor:
    """Run read-only predicates against a dataset's StructuredRows.

    Args:
        store: Store holding the datasets.
        max_rows: Upper bound on returned rows, regardless of ``limit``.
        max_groups: Upper bound on distinct groups an aggregate query may
            build; a query that would exceed it is rejected.
    """

    def __init__(
        self, store: DocumentStore, max_rows: int = 1000, max_groups: int = 10_000
    ) -> None:
        if max_rows < 1:
            raise ValueError("max_rows must be >= 1")
        if max_groups < 1:
            raise ValueError("max_groups must be >= 1")
        self._store = store
        self.max_rows = max_rows
        self.max_groups = max_groups

    def list_schemas(self) -> dict[str, list[ColumnSpec]]:
        """Return ``{dataset_id: schema}`` for every structured document."""
        return {
            doc.id: list(doc.schema)
            for doc in self._store.list_documents()
            if doc.schema is not None
        }

    def query(self, dataset_id: str, predicate: TablePredicate | Mapping[str, Any]) -> TableResult:
        """Execute *predicate* against *dataset_id*.

        Raises:
            QueryValidationError: Unknown dataset, unstructured document,
                unknown column, incompatible operator, uncoercible value, or
                more than ``max_groups`` distinct groups.
        """
        if not isinstance(predicate, TablePredicate):
            predicate = TablePredicate.from_dict(predicate)

        with self._store.reader() as repo:
            document = repo.get_document(dataset_id)
            if document is None:
                raise QueryValidationError(f"Unknown dataset '{dataset_id}'")
            if document.schema is None:
                raise QueryValidationError(f"Document '{dataset_id}' is not a structured dataset")
            plan = _Plan.build(document, predicate, self.max_rows)
            rows = (
                (r.id, r.row_data)
                for r in repo.iter_rows(dataset_id)
                if plan.matches(r.row_data)
            )
            if predicate.aggregate:
                result = plan.run_aggregate(rows, self.max_groups)
            else:
                result = plan.run_select(rows)

        logger.debug(
            "Table query on %s returned %d rows (truncated=%s)",
            dataset_id, len(result.rows), result.truncated,
        )
        return result


# ---------------------------------------------------------------------------
# Planning and execution
# ---------------------------------------------------------------------------


class _Plan:
    """A predicate validated against one dataset schema."""

    def __init__(
        self,
        predicate: TablePredicate,
        filters: list[Filter],
        columns: list[str],
        cap: int,
        cap_is_max_rows: bool,
    ) -> None:
        self.predicate = predicate
        self.filters = filters
        self.columns = columns
        self.cap = cap
        self.cap_is_max_rows = cap_is_max_rows

    @classmethod
    def build(cls, document: Document, predicate: TablePredicate, max_rows: int) -> _Plan:
        types = {c.name: c.type for c in document.schema or []}

        def column_type(name: str, clause: str) -> ColumnType:
            if name not in types:
                raise QueryValidationError(
                    f"Unknown column '{name}' in {clause} for dataset '{document.id}'. "
                    f"Columns: {', '.join(types) or '(none)'}"
                )
            return types[name]

        filters = [_coerce_filter(f, column_type(f.column, "where")) for f in predicate.where]

        for name in predicate.group_by:
            column_type(name, "group_by")
        if predicate.group_by and not predicate.aggregate:
            raise QueryValidationError("group_by requires at least one aggregate")

        labels: list[str] = []
        for agg in predicate.aggregate:
            if agg.column is None:
                if agg.fn is not AggregateFn.COUNT:
                    raise QueryValidationError(f"{agg.fn.value} requires a column")
            else:
                ctype = column_type(agg.column, "aggregate")
                if agg.fn in (AggregateFn.SUM, AggregateFn.AVG) and ctype is not ColumnType.NUMBER:
                    raise QueryValidationError(
                        f"{agg.fn.value} needs a number column; '{agg.column}' is {ctype.value}"
                    )
                if agg.fn in (AggregateFn.MIN, AggregateFn.MAX) and ctype not in _ORDERABLE_TYPES:
                    raise QueryValidationError(
                        f"{agg.fn.value} is not defined for {ctype.value} column '{agg.column}'"
                    )
            labels.append(agg.label)

        if predicate.aggregate:
            available = list(predicate.group_by) + labels
            if predicate.select is not None:
                for name in predicate.select:
                    if name not in available:
                        raise QueryValidationError(
                            f"'{name}' is neither grouped nor aggregated; "
                            f"select from: {', '.join(available)}"
                        )
                columns = list(predicate.select)
            else:
                columns = available
            for order in predicate.order_by:
                if order.column not in available:
                    raise QueryValidationError(
                        f"Cannot order by '{order.column}'; order from: {', '.join(available)}"
                    )
        else:
            if predicate.select is not None:
                for name in predicate.select:
                    column_type(name, "select")
                columns = list(predicate.select)
            else:
                columns = list(types)
            for order in predicate.order_by:
                column_type(order.column, "order_by")

        limit = predicate.limit
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise QueryValidationError(f"limit must be a positive integer, got {limit!r}")
        if limit is None or limit > max_rows:
            return cls(predicate, filters, columns, max_rows, cap_is_max_rows=True)
        return cls(predicate, filters, columns, limit, cap_is_max_rows=False)

    # -- filtering --------------------------------------------------------

    def matches(self, row: Mapping[str, Any]) -> bool:
        return all(_test(f, row.get(f.column)) for f in self.filters)

    # -- plain selection --------------------------------------------------

    def run_select(self, rows: Iterator[tuple[int, dict[str, Any]]]) -> TableResult:
        counter = _Counter(rows)
        if self.predicate.order_by:
            order = self.predicate.order_by
            picked = heapq.nsmallest(
                self.cap,
                counter,
                key=lambda item: _SortKey([item[1].get(o.column) for o in order], order, item[0]),
            )
            # Drain the rest so the count reflects every match.
            for _ in counter:
                pass
        else:
            picked = []
            for item in counter:
                if len(picked) == self.cap:
                    break  # one match past the cap is enough to know
                picked.append(item)

        out = [{c: row.get(c) for c in self.columns} for _, row in picked]
        return TableResult(
            columns=self.columns,
            rows=out,
            truncated=self.cap_is_max_rows and counter.count > self.cap,
        )

    # -- aggregation ------------------------------------------------------

    def run_aggregate(
        self, rows: Iterator[tuple[int, dict[str, Any]]], max_groups: int
    ) -> TableResult:
        predicate = self.predicate
        groups: dict[tuple[Any, ...], list[_Accumulator]] = {}
        for _, row in rows:
            key = tuple(row.get(c) for c in predicate.group_by)
            accs = groups.get(key)
            if accs is None:
                if len(groups) == max_groups:
                    raise QueryValidationError(
                        f"Grouping by {', '.join(predicate.group_by)} yields more than {max_groups} groups; "
                        "add filters or group by fewer columns"
                    )
                accs = groups[key] = [_Accumulator(a) for a in predicate.aggregate]
            for acc in accs:
                acc.add(row)
        if not predicate.group_by and not groups:
            groups[()] = [_Accumulator(a) for a in predicate.aggregate]

        results: list[tuple[int, dict[str, Any]]] = []
        for seq, (key, accs) in enumerate(groups.items()):
            out = dict(zip(predicate.group_by, key))
            for acc in accs:
                out[acc.agg.label] = acc.result()
            results.append((seq, out))

        if predicate.order_by:
            order = predicate.order_by
            results = sorted(
                results,
                key=lambda item: _SortKey([item[1].get(o.column) for o in order], order, item[0]),
            )
        picked = results[: self.cap]
        return TableResult(
            columns=self.columns,
            rows=[{c: row.get(c) for c in self.columns} for _, row in picked],
            truncated=self.cap_is_max_rows and len(results) > self.cap,
        )


class _Counter:
    """Iterator wrapper counting the items that pass through it."""

    def __init__(self, items: Iterator[tuple[int, dict[str, Any]]]) -> None:
        self._items = iter(items)
        self.count = 0

    def __iter__(self) -> _Counter:
        return self

    def __next__(self) -> tuple[int, dict[str, Any]]:
        item = next(self._items)
        self.count += 1
        return item


class _SortKey:
    """Multi-column sort key with per-column direction; nulls last; then row order."""

    __slots__ = ("values", "order", "seq")

    def __init__(self, values: list[Any], order: list[OrderBy], seq: int) -> None:
        self.values = values
        self.order = order
        self.seq = seq

    def __lt__(self, other: _SortKey) -> bool:
        for a, b, o in zip(self.values, other.values, self.order):
            if a == b:
                continue
            if a is None:
                return False
            if b is None:
                return True
            return a > b if o.descending else a < b
        return self.seq < other.seq


class _Accumulator:
    def __init__(self, agg: Aggregate) -> None:
        self.agg = agg
        self.count = 0
        self.total: int | float = 0
        self.low: Any = None
        self.high: Any = None

    def add(self, row: Mapping[str, Any]) -> None:
        if self.agg.column is None:
            self.count += 1
            return
        value = row.get(self.agg.column)
        if value is None:
            return
        self.count += 1
        if self.agg.fn in (AggregateFn.SUM, AggregateFn.AVG):
            self.total += value
        if self.low is None or value < self.low:
            self.low = value
        if self.high is None or value > self.high:
            self.high = value

    def result(self) -> Any:
        fn = self.agg.fn
        if fn is AggregateFn.COUNT:
            return self.count
        if self.count == 0:
            return None
        if fn is AggregateFn.SUM:
            return self.total
        if fn is AggregateFn.AVG:
            return self.total / self.count
        if fn is AggregateFn.MIN:
            return self.low
        return self.high


# ---------------------------------------------------------------------------
# Filter evaluation
# ---------------------------------------------------------------------------


def _test(f: Filter, value: Any) -> bool:
    op = f.op
    if op is FilterOp.IS_NULL:
        return value is None
    if op is FilterOp.NOT_NULL:
        return value is not None
    if value is None:
        return False
    if op is FilterOp.EQ:
        return value == f.value
    if op is FilterOp.NE:
        return value != f.value
    if op is FilterOp.LT:
        return value < f.value
    if op is FilterOp.LE:
        return value <= f.value
    if op is FilterOp.GT:
        return value > f.value
    if op is FilterOp.GE:
        return value >= f.value
    if op is FilterOp.CONTAINS:
        return f.value in str(value).lower()
    return value in f.value  # IN


def _coerce_filter(f: Filter, ctype: ColumnType) -> Filter:
    """Return *f* with its value converted to the column's type."""
    if f.op in _NULL_OPS:
        if f.value is not None:
            raise QueryValidationError(f"'{f.op.value}' takes no value")
        return f
    if f.op in _ORDERED_OPS and ctype not in _ORDERABLE_TYPES:
        raise QueryValidationError(
            f"'{f.op.value}' is not defined for {ctype.value} column '{f.column}'"
        )
    if f.op is FilterOp.CONTAINS:
        if ctype is not ColumnType.TEXT:
            raise QueryValidationError(
                f"'contains' needs a text column; '{f.column}' is {ctype.value}"
            )
        if not isinstance(f.value, str) or not f.value:
            raise QueryValidationError("'contains' needs a non-empty string value")
        return Filter(f.column, f.op, f.value.lower())
    if f.op is FilterOp.IN:
        if not isinstance(f.value, (list, tuple, set, frozenset)) or not f.value:
            raise QueryValidationError("'in' needs a non-empty list of values")
        return Filter(f.column, f.op, frozenset(_coerce_value(v, ctype, f.column) for v in f.value))
    return Filter(f.column, f.op, _coerce_value(f.value, ctype, f.column))


def _coerce_value(value: Any, ctype: ColumnType, column: str) -> Any:
    try:
        coerced = parse_value(value, ctype)
    except ValueError:
        raise QueryValidationError(
            f"Value {value!r} is not a valid {ctype.value} for column '{column}'"
        ) from None
    if coerced is None:
        raise QueryValidationError(
            f"Empty value for column '{column}'; use is_null / not_null to match missing values"
        )
    return coerced


# ---------------------------------------------------------------------------
# Dict-form parsing
# ---------------------------------------------------------------------------


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _str_list(value: Any, clause: str) -> list[str]:
    items = _as_list(value)
    if not all(isinstance(i, str) for i in items):
        raise QueryValidationError(f"'{clause}' must be a list of column names")
    return items


def _parse_filter(item: Any) -> Filter:
    if not isinstance(item, Mapping):
        raise QueryValidationError(f"Filter must be a mapping, got {item!r}")
    extra = set(item) - {"column", "op", "value"}
    if extra:
        raise QueryValidationError(f"Unknown filter key '{sorted(extra)[0]}'")
    if not isinstance(item.get("column"), str):
        raise QueryValidationError("Filter needs a 'column'")
    try:
        op = FilterOp(str(item.get("op", "eq")).lower())
    except ValueError:
        raise QueryValidationError(
            f"Unknown operator {item.get('op')!r}. Allowed: {', '.join(o.value for o in FilterOp)}"
        ) from None
    return Filter(column=item["column"], op=op, value=item.get("value"))


def _parse_aggregate(item: Any) -> Aggregate:
    if not isinstance(item, Mapping):
        raise QueryValidationError(f"Aggregate must be a mapping, got {item!r}")
    extra = set(item) - {"fn", "column"}
    if extra:
        raise QueryValidationError(f"Unknown aggregate key '{sorted(extra)[0]}'")
    try:
        fn = AggregateFn(str(item.get("fn")).lower())
    except ValueError:
        raise QueryValidationError(
            f"Unknown aggregate {item.get('fn')!r}. Allowed: {', '.join(a.value for a in AggregateFn)}"
        ) from None
    column = item.get("column")
    if column is not None and not isinstance(column, str):
        raise QueryValidationError("Aggregate 'column' must be a column name")
    return Aggregate(fn=fn, column=column)


def _parse_order(item: Any) -> OrderBy:
    if isinstance(item, str):
        return OrderBy(column=item)
    if not isinstance(item, Mapping) or not isinstance(item.get("column"), str):
        raise QueryValidationError(f"order_by entry must name a column, got {item!r}")
    extra = set(item) - {"column", "descending"}
    if extra:
        raise QueryValidationError(f"Unknown order_by key '{sorted(extra)[0]}'")
    return OrderBy(column=item["column"], descending=bool(item.get("descending", False)))
