"""Dunning Notifier - Record Store.

Executes an ``InvoiceQuery`` against transaction records and hands back
matching rows as JSON-serialized search results, one per line item the
query accepts::

    {"recordType": "invoice", "id": "100",
     "values": {"trandate": "2026-08-20", "duedate": "2026-09-19",
                "tranid": "INV-1001",
                "entity": {"value": "55", "text": "Acme Tacos"}}}

Execution is lazy: nothing is read until the caller starts iterating.

Supported sources
~~~~~~~~~~~~~~~~~
* ``WorkbookRecordStore`` -- an ``.xlsx`` export with a ``Transactions``
  sheet plus ``Customers`` / ``Employees`` sheets for address lookup.
* ``InMemoryRecordStore`` -- plain dicts, for tests and scripting.

Workbook layout:

+-----------------+--------------------------------------------------------+
| Sheet           | Columns (matched by header text, any order)            |
+=================+========================================================+
| ``Transactions``| Internal ID, Type, Subsidiary, Main Line, Status,      |
|                 | Date, Due Date, Document Number, Customer ID, Customer |
| ``Customers``   | Internal ID, Name, Email                               |
| ``Employees``   | Internal ID, Name, Email                               |
+-----------------+--------------------------------------------------------+
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import IO, Any, Iterable, Iterator, Mapping, Union

import openpyxl
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from .query import InvoiceQuery, resolve_field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TRANSACTIONS_SHEET = "Transactions"
_CUSTOMERS_SHEET = "Customers"
_EMPLOYEES_SHEET = "Employees"

_TRANSACTION_HEADERS: dict[str, list[str]] = {
    "id":          ["Internal ID", "ID"],
    "type":        ["Type", "Transaction Type"],
    "subsidiary":  ["Subsidiary", "Subsidiary ID"],
    "mainline":    ["Main Line", "Mainline"],
    "status":      ["Status"],
    "trandate":    ["Date", "Transaction Date"],
    "duedate":     ["Due Date", "Due Date/Receive By"],
    "tranid":      ["Document Number", "Doc Number"],
    "entity":      ["Customer ID", "Entity ID"],
    "entity_name": ["Customer", "Name"],
}

_ENTITY_HEADERS: dict[str, list[str]] = {
    "id":    ["Internal ID", "ID"],
    "name":  ["Name"],
    "email": ["Email", "E-mail"],
}

# Transaction type code -> search result recordType.
_RECORD_TYPES: dict[str, str] = {
    "CustInvc": "invoice",
    "CustCred": "creditmemo",
    "CustPymt": "customerpayment",
    "CashSale": "cashsale",
}

# Invoice status text -> status code.  Codes already in "Type:X" form
# are taken as-is.
_INVOICE_STATUS_CODES: dict[str, str] = {
    "open": "CustInvc:A",
    "paid in full": "CustInvc:B",
    "pending approval": "CustInvc:D",
    "rejected": "CustInvc:E",
    "voided": "CustInvc:V",
}

# Cell values that should be treated as null / unknown.
_NULL_SIGNALS: set[str | None] = {"", "#N/A", "N/A", "#REF!", None}


# ---------------------------------------------------------------------------
# Address book
# ---------------------------------------------------------------------------

@dataclass
class AddressBook:
    """Registered email addresses for customers and employees, by id."""

    customers: dict[str, str] = field(default_factory=dict)
    employees: dict[str, str] = field(default_factory=dict)

    def customer_email(self, customer_id: Any) -> str | None:
        return self.customers.get(_id_key(customer_id)) or None

    def employee_email(self, employee_id: Any) -> str | None:
        return self.employees.get(_id_key(employee_id)) or None


def _id_key(val: Any) -> str:
    """Normalize an internal id so 55, 55.0 and "55" are the same key."""
    if val is None:
        return ""
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    return str(val).strip()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

def _sort_key(val: Any) -> tuple:
    if val is None:
        return (1, "")
    if isinstance(val, (date, datetime)):
        return (0, val.isoformat())
    return (0, str(val))


def _json_value(val: Any) -> Any:
    if isinstance(val, (date, datetime)):
        return val.isoformat()
    return val


class RecordStore:
    """Base class: subclasses provide ``records()`` and ``address_book()``."""

    def records(self) -> Iterable[Mapping[str, Any]]:
        raise NotImplementedError

    def address_book(self) -> AddressBook:
        return AddressBook()

    def run(self, query: InvoiceQuery, today: date | None = None) -> Iterator[str]:
        """Lazily execute ``query`` and yield JSON search results.

        Results are ordered by the query's sort column; rows that tie
        keep their store order.
        """
        today = today or date.today()
        matched: Iterable[Mapping[str, Any]] = (
            rec for rec in self.records()
            if self._type_matches(query, rec) and query.matches(rec, today)
        )

        sort_col = query.sort_column
        if sort_col is not None:
            matched = sorted(
                matched,
                key=lambda rec: _sort_key(rec.get(sort_col.name)),
                reverse=sort_col.sort.value == "desc",
            )

        count = 0
        for rec in matched:
            count += 1
            yield json.dumps(self._to_result(rec, query, today))
        logger.debug("Query returned %d result(s)", count)

    @staticmethod
    def _type_matches(query: InvoiceQuery, rec: Mapping[str, Any]) -> bool:
        if query.record_type == "transaction":
            return True
        return _RECORD_TYPES.get(rec.get("type"), rec.get("type")) == query.record_type

    @staticmethod
    def _to_result(rec: Mapping[str, Any], query: InvoiceQuery, today: date) -> dict:
        values: dict[str, Any] = {}
        for name in query.column_names:
            if name == "entity":
                values["entity"] = {
                    "value": _json_value(rec.get("entity")),
                    "text": rec.get("entity_name", ""),
                }
            else:
                values[name] = _json_value(resolve_field(rec, name, today))
        return {
            "recordType": _RECORD_TYPES.get(rec.get("type"), rec.get("type")),
            "id": _json_value(rec.get("id")),
            "values": values,
        }


class InMemoryRecordStore(RecordStore):
    """Record store over a list of plain transaction dicts."""

    def __init__(
        self,
        transactions: Iterable[Mapping[str, Any]] = (),
        address_book: AddressBook | None = None,
    ):
        self._transactions = list(transactions)
        self._address_book = address_book or AddressBook()

    def records(self) -> Iterable[Mapping[str, Any]]:
        return iter(self._transactions)

    def address_book(self) -> AddressBook:
        return self._address_book


class WorkbookRecordStore(RecordStore):
    """Record store backed by an ``.xlsx`` export.

    The workbook is opened on each call and closed before returning, so
    a store can be built once and run repeatedly.
    """

    def __init__(self, source: Union[str, Path, IO[bytes]]):
        self.source = source
        if isinstance(source, (str, Path)) and not Path(source).exists():
            raise FileNotFoundError(f"XLSX file not found: {source}")

    def records(self) -> Iterator[dict[str, Any]]:
        wb = _open_workbook(self.source)
        try:
            if _TRANSACTIONS_SHEET not in wb.sheetnames:
                raise ValueError(
                    f"Sheet '{_TRANSACTIONS_SHEET}' not found.  "
                    f"Available: {wb.sheetnames}"
                )
            yield from _parse_transactions(wb[_TRANSACTIONS_SHEET])
        finally:
            wb.close()

    def address_book(self) -> AddressBook:
        book = AddressBook()
        wb = _open_workbook(self.source)
        try:
            if _CUSTOMERS_SHEET in wb.sheetnames:
                book.customers = _parse_entities(wb[_CUSTOMERS_SHEET])
            else:
                logger.warning(
                    "Sheet '%s' not found -- customer addresses unavailable",
                    _CUSTOMERS_SHEET,
                )
            if _EMPLOYEES_SHEET in wb.sheetnames:
                book.employees = _parse_entities(wb[_EMPLOYEES_SHEET])
        finally:
            wb.close()
        logger.info(
            "Address book: %d customers, %d employees",
            len(book.customers), len(book.employees),
        )
        return book


# ---------------------------------------------------------------------------
# Workbook parsing
# ---------------------------------------------------------------------------

def _open_workbook(source: Union[str, Path, IO[bytes]]) -> Workbook:
    """Open an openpyxl Workbook from a file path or bytes buffer."""
    if isinstance(source, (str, Path)):
        logger.debug("Opening XLSX file: %s", source)
        return openpyxl.load_workbook(Path(source), data_only=True)
    source.seek(0)
    return openpyxl.load_workbook(source, data_only=True)


def _parse_transactions(ws: Worksheet) -> Iterator[dict[str, Any]]:
    header_map = _build_header_map(ws, _TRANSACTION_HEADERS)
    for row_idx, row in enumerate(ws.iter_rows(min_row=2), start=2):
        rec_id = _clean_str(_cell_value(row, header_map, "id"))
        if not rec_id:
            continue
        yield {
            "id": _id_key(_cell_value(row, header_map, "id")),
            "type": _clean_str(_cell_value(row, header_map, "type")) or "CustInvc",
            "subsidiary": _id_key(_cell_value(row, header_map, "subsidiary")),
            "mainline": _parse_bool(_cell_value(row, header_map, "mainline")),
            "status": _parse_status(_clean_str(_cell_value(row, header_map, "status"))),
            "trandate": _parse_date(_cell_value(row, header_map, "trandate"), f"row {row_idx}"),
            "duedate": _parse_date(_cell_value(row, header_map, "duedate"), f"row {row_idx}"),
            "tranid": _clean_str(_cell_value(row, header_map, "tranid")),
            "entity": _id_key(_cell_value(row, header_map, "entity")),
            "entity_name": _clean_str(_cell_value(row, header_map, "entity_name")),
        }


def _parse_entities(ws: Worksheet) -> dict[str, str]:
    header_map = _build_header_map(ws, _ENTITY_HEADERS)
    emails: dict[str, str] = {}
    for row in ws.iter_rows(min_row=2):
        ent_id = _id_key(_cell_value(row, header_map, "id"))
        email = _clean_str(_cell_value(row, header_map, "email"))
        if ent_id and email:
            emails[ent_id] = email
    return emails


def _build_header_map(
    ws: Worksheet,
    header_spec: dict[str, list[str]],
) -> dict[str, int]:
    """Map logical field names to 0-based column indices.

    Reads row 1 of the worksheet and matches each header cell against
    the known aliases in *header_spec*.
    """
    header_map: dict[str, int] = {}

    row1_values: list[str | None] = []
    for cell in ws[1]:
        val = cell.value
        row1_values.append(str(val).strip().lower() if val is not None else None)

    for logical_name, aliases in header_spec.items():
        lowered = [a.lower() for a in aliases]
        for idx, header_text in enumerate(row1_values):
            if header_text is not None and header_text in lowered:
                header_map[logical_name] = idx
                break

    logger.debug("Header map for '%s' (%d/%d): %s",
                 ws.title, len(header_map), len(header_spec), list(header_map))
    return header_map


def _cell_value(row, header_map: dict[str, int], field_name: str):
    """Read a cell by logical field name; None when the column is absent."""
    idx = header_map.get(field_name)
    if idx is None or idx >= len(row):
        return None
    return row[idx].value


def _clean_str(val) -> str:
    """Convert a cell value to a stripped string.  None becomes ``""``."""
    if val is None:
        return ""
    s = str(val).strip()
    return "" if s in _NULL_SIGNALS else s


def _parse_bool(val) -> bool:
    """Parse ``True``/``"T"``/``"Yes"``/``1`` style cells."""
    if val is None:
        return False
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("true", "t", "yes", "y", "1")


def _parse_status(raw: str) -> str:
    if not raw or ":" in raw:
        return raw
    code = _INVOICE_STATUS_CODES.get(raw.lower())
    if code is None:
        logger.warning("Unknown invoice status value: '%s' -- kept as-is", raw)
        return raw
    return code


def _parse_date(val, context: str) -> date | None:
    """Parse a date cell value.

    openpyxl returns ``datetime`` objects for date-typed cells.  Excel
    serial numbers and a few string formats are also accepted.
    """
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val

    if isinstance(val, (int, float)):
        serial = int(val)
        if 20000 < serial < 80000:
            return (datetime(1899, 12, 30) + timedelta(days=serial)).date()

    s = str(val).strip()
    if not s or s in _NULL_SIGNALS:
        return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y", "%Y-%m-%dT%H:%M:%S", "%b %d, %Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    logger.warning("%s: could not parse date '%s'", context, val)
    return None
