"""Dunning Notifier -- Query Builder.

Builds the declarative search that selects invoices to remind.  The
query is a description only: nothing is read until a ``RecordStore``
runs it, and ``today`` is bound at that moment so a query built once
can be executed on any date.

Default filter (one deployment per day count)::

    subsidiary     anyof    [<subsidiary>]
    mainline       is       True
    status         anyof    ["CustInvc:A"]          # Invoice : Open
    days_past_due  equalto  <threshold_days>         # floor(today - duedate)

Columns: ``trandate`` (ascending), ``duedate``, ``tranid``, ``entity``.

A saved filter definition can replace the default (``load_query_file``).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml

from .config import PROJECT_ROOT, QuerySettings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Computed field: whole days between the due date and the run date.
DAYS_PAST_DUE = "days_past_due"

DEFAULT_COLUMNS = ("trandate", "duedate", "tranid", "entity")

_TRUE_VALUES = {"t", "true", "yes", "1"}
_BOOL_WORDS = {"t", "f", "true", "false"}


class Operator(str, Enum):
    """Filter operators understood by the record store."""

    ANY_OF = "anyof"
    NONE_OF = "noneof"
    IS = "is"
    EQUAL_TO = "equalto"
    GREATER_THAN = "greaterthan"
    LESS_THAN = "lessthan"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ---------------------------------------------------------------------------
# Field evaluation
# ---------------------------------------------------------------------------

def _as_date(val: Any) -> date | datetime | None:
    if val is None or val == "":
        return None
    if isinstance(val, (date, datetime)):
        return val
    s = str(val).strip()
    try:
        return datetime.fromisoformat(s) if "T" in s else date.fromisoformat(s)
    except ValueError:
        return None


def days_past_due(due_date: Any, today: date) -> int | None:
    """Whole days since ``due_date``, floored.  None when there is no due date."""
    due = _as_date(due_date)
    if due is None:
        return None
    if isinstance(due, datetime):
        start = datetime.combine(today, datetime.min.time())
        return math.floor((start - due).total_seconds() / 86400)
    return (today - due).days


def resolve_field(record: Mapping[str, Any], name: str, today: date) -> Any:
    """Value of ``name`` on a store record, including computed fields."""
    if name == DAYS_PAST_DUE:
        return days_past_due(record.get("duedate"), today)
    return record.get(name)


def _as_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in _TRUE_VALUES


def _as_list(val: Any) -> list:
    if isinstance(val, (list, tuple, set)):
        return list(val)
    return [val]


# ---------------------------------------------------------------------------
# Query description
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchFilter:
    """One ``[field, operator, value]`` clause."""

    field: str
    operator: Operator
    value: Any

    def matches(self, record: Mapping[str, Any], today: date) -> bool:
        actual = resolve_field(record, self.field, today)
        op = self.operator

        if op in (Operator.ANY_OF, Operator.NONE_OF):
            wanted = {str(v) for v in _as_list(self.value)}
            hit = actual is not None and str(actual) in wanted
            return hit if op is Operator.ANY_OF else not hit

        if op is Operator.IS:
            if isinstance(self.value, bool) or str(self.value).lower() in _BOOL_WORDS:
                return actual is not None and _as_bool(actual) == _as_bool(self.value)
            return actual is not None and str(actual) == str(self.value)

        # Numeric comparisons: a missing operand on either side never matches.
        if actual is None or self.value is None:
            return False
        try:
            left, right = float(actual), float(self.value)
        except (TypeError, ValueError):
            return False
        if op is Operator.EQUAL_TO:
            return left == right
        if op is Operator.GREATER_THAN:
            return left > right
        return left < right

    def as_list(self) -> list:
        return [self.field, self.operator.value, self.value]


@dataclass(frozen=True)
class SearchColumn:
    name: str
    sort: SortOrder | None = None


@dataclass(frozen=True)
class InvoiceQuery:
    """An unexecuted search: record type, AND-ed filters, result columns."""

    record_type: str
    filters: tuple[SearchFilter, ...]
    columns: tuple[SearchColumn, ...]

    def matches(self, record: Mapping[str, Any], today: date) -> bool:
        """True when every filter accepts ``record``."""
        return all(f.matches(record, today) for f in self.filters)

    @property
    def sort_column(self) -> SearchColumn | None:
        for col in self.columns:
            if col.sort is not None:
                return col
        return None

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def describe(self) -> str:
        """Render the filter expression the way it reads in a saved search."""
        clauses = [str(f.as_list()) for f in self.filters]
        return " AND ".join(clauses)


def _default_columns() -> tuple[SearchColumn, ...]:
    first, *rest = DEFAULT_COLUMNS
    return (SearchColumn(first, SortOrder.ASC),) + tuple(SearchColumn(c) for c in rest)


def build_invoice_query(
    threshold_days: int | None,
    settings: QuerySettings | None = None,
) -> InvoiceQuery:
    """Build the default dunning query for one day count.

    ``threshold_days`` is not checked.  ``None`` yields a query that
    matches nothing.
    """
    settings = settings or QuerySettings()
    filters = (
        SearchFilter("subsidiary", Operator.ANY_OF, [settings.subsidiary]),
        SearchFilter("mainline", Operator.IS, True),
        SearchFilter("status", Operator.ANY_OF, [settings.status]),
        SearchFilter(DAYS_PAST_DUE, Operator.EQUAL_TO, threshold_days),
    )
    query = InvoiceQuery(
        record_type=settings.record_type,
        filters=filters,
        columns=_default_columns(),
    )
    logger.debug("Built invoice query: %s", query.describe())
    return query


# ---------------------------------------------------------------------------
# Saved filter definitions
# ---------------------------------------------------------------------------

def _parse_column(raw: Any) -> SearchColumn:
    if isinstance(raw, str):
        return SearchColumn(raw)
    sort = raw.get("sort")
    return SearchColumn(raw["name"], SortOrder(str(sort).lower()) if sort else None)


def load_query_file(path: str | Path) -> InvoiceQuery:
    """Load a saved filter definition from YAML.

    Format::

        record_type: transaction
        filters:
          - [subsidiary, anyof, ["37"]]
          - [mainline, is, true]
          - [days_past_due, greaterthan, 60]
        columns:
          - {name: trandate, sort: asc}
          - tranid
          - entity

    Results must still carry ``tranid`` and ``entity``; ``columns``
    defaults to the standard set.  Relative paths resolve against the
    project root.

    Raises:
        FileNotFoundError: the file does not exist.
        ValueError: a clause is not ``[field, operator, value]`` or names
            an unknown operator.
    """
    path = Path(path)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    if not path.exists():
        raise FileNotFoundError(f"Saved search file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    filters = []
    for clause in data.get("filters", []):
        if not isinstance(clause, (list, tuple)) or len(clause) != 3:
            raise ValueError(f"Filter clause must be [field, operator, value]: {clause!r}")
        field_name, op, value = clause
        filters.append(SearchFilter(str(field_name), Operator(str(op).lower()), value))

    raw_columns = data.get("columns")
    columns = tuple(_parse_column(c) for c in raw_columns) if raw_columns else _default_columns()

    query = InvoiceQuery(
        record_type=str(data.get("record_type", "transaction")),
        filters=tuple(filters),
        columns=columns,
    )
    logger.info("Loaded saved search from %s: %s", path, query.describe())
    return query
