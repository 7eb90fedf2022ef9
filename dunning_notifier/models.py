"""Data models for the Dunning Notifier.

All models are plain dataclasses with type hints.  The job passes these
between its stages:

    Configuration      loaded once per run, never mutated
    InvoiceCandidate   one per open invoice matched by the query
    ReminderMessage    built per candidate, lives for one send attempt
    DispatchOutcome    result of one send attempt
    RunResult          container returned by a full run
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ErrorKind(Enum):
    """Classification of a failed send attempt."""

    PLATFORM = "system error"
    UNEXPECTED = "unexpected error"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Configuration:
    """Script parameters for one deployment of the job.

    Values are whatever the parameter store handed back.  Missing or
    malformed values are left as ``None`` / ``""`` rather than rejected;
    they show up later as a failed send.
    """

    threshold_days: int | None = None
    author_id: int | None = None
    reply_to: str = ""
    cc_list: str = ""

    # Optional overrides (saved search / email template)
    search_file: str = ""
    template_file: str = ""

    @property
    def cc_emails(self) -> list[str]:
        """CC list as sent: the single configured address, wrapped."""
        return [self.cc_list] if self.cc_list else []


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------

def _parse_iso_date(val: Any) -> date | None:
    if not val:
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    try:
        return date.fromisoformat(str(val)[:10])
    except ValueError:
        return None


@dataclass
class InvoiceCandidate:
    """An open invoice header that matched the dunning query."""

    invoice_id: Any
    customer_id: Any
    document_number: str
    transaction_date: date | None = None
    due_date: date | None = None

    @classmethod
    def from_search_result(cls, raw: str | Mapping[str, Any]) -> InvoiceCandidate:
        """Build a candidate from one serialized search result.

        Accepts the JSON string produced by ``RecordStore.run`` or the
        already-decoded mapping.  Nothing is validated here: a result
        without ``values.entity.value`` raises ``KeyError``.
        """
        result = json.loads(raw) if isinstance(raw, str) else raw
        values = result["values"]
        return cls(
            invoice_id=result["id"],
            customer_id=values["entity"]["value"],
            document_number=values["tranid"],
            transaction_date=_parse_iso_date(values.get("trandate")),
            due_date=_parse_iso_date(values.get("duedate")),
        )


@dataclass
class ReminderMessage:
    """One outbound reminder, as handed to the mail gateway.

    ``recipients`` holds customer ids, not addresses.  The gateway
    resolves them to the customer's registered email at send time.
    """

    recipients: list[Any] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    reply_to: str = ""
    subject: str = ""
    body: str = ""
    related_invoice_id: Any = None
    author_id: Any = None

    @property
    def related_records(self) -> dict[str, Any]:
        """Records the sent message is attached to."""
        return {
            "entity_id": self.recipients[0] if self.recipients else None,
            "transaction_id": self.related_invoice_id,
        }

    def to_dict(self) -> dict:
        """Serialize to a plain dict for logging / export."""
        return {
            "author": self.author_id,
            "recipients": list(self.recipients),
            "cc": list(self.cc),
            "reply_to": self.reply_to,
            "subject": self.subject,
            "body": self.body,
            "related_records": self.related_records,
        }


@dataclass
class DispatchOutcome:
    """Result of a single send attempt."""

    invoice_id: Any
    sent: bool
    error_kind: ErrorKind | None = None
    error_message: str = ""


@dataclass
class RunResult:
    """Container for one job run."""

    threshold_days: int | None = None
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    already_notified: list[Any] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Run time in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0
