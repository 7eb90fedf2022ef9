"""Dunning Notifier -- Job Stages.

The job runs in four stages, each usable on its own:

    1. get_input_data   build the query and hand back a lazy result stream
    2. map_invoice      one search result -> (invoice_id, InvoiceCandidate)
    3. reduce           one invoice -> one reminder send attempt
    4. summarize        completion log line

``DunningNotifier.run`` strings them together in a plain loop.  Results
sharing an invoice id are collapsed so each invoice gets one attempt
per run; a failure on one invoice never stops the others.

Logging follows the leveled ``title: details`` style of the audit and
error trail: audit entries go out at INFO, send failures at ERROR.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Iterator, Mapping, Optional

from .config import QuerySettings
from .ledger import NotificationLedger
from .mailer import Mailer, PlatformError
from .models import (
    Configuration,
    DispatchOutcome,
    ErrorKind,
    InvoiceCandidate,
    ReminderMessage,
    RunResult,
)
from .query import InvoiceQuery, build_invoice_query, load_query_file
from .record_store import RecordStore
from .template_engine import TemplateEngine

logger = logging.getLogger(__name__)

AUDIT = logging.INFO

START_MESSAGE = "Initializing dunning email process..."
COMPLETE_MESSAGE = "Dunning email process complete"


def log_entry(level: int, title: str, details: Any = None) -> None:
    """Write one ``title: details`` entry to the job log."""
    if details is None or details == "":
        logger.log(level, "%s", title)
    else:
        logger.log(level, "%s: %s", title, details)


def _as_id(value: Any) -> Any:
    """Internal ids arrive as strings in search results; use ints where they are."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


# ---------------------------------------------------------------------------
# Stage functions
# ---------------------------------------------------------------------------

def map_invoice(raw: str | Mapping[str, Any]) -> tuple[Any, InvoiceCandidate]:
    """Extract the candidate from one search result, keyed by invoice id.

    Malformed results raise (``KeyError``, ``TypeError`` or
    ``json.JSONDecodeError``).
    """
    candidate = InvoiceCandidate.from_search_result(raw)
    return candidate.invoice_id, candidate


def send_reminder(mailer: Mailer, message: ReminderMessage) -> DispatchOutcome:
    """Attempt delivery once.  Never raises.

    Gateway errors are logged as ``system error`` with the code and
    details; anything else as ``unexpected error``.  No retry.
    """
    invoice_id = message.related_invoice_id
    try:
        mailer.send(message)
        return DispatchOutcome(invoice_id=invoice_id, sent=True)
    except PlatformError as exc:
        msg = f"{exc.code}\n{exc.details}"
        log_entry(logging.ERROR, ErrorKind.PLATFORM.value, msg)
        return DispatchOutcome(invoice_id, False, ErrorKind.PLATFORM, msg)
    except Exception as exc:
        msg = str(exc)
        log_entry(logging.ERROR, ErrorKind.UNEXPECTED.value, msg)
        return DispatchOutcome(invoice_id, False, ErrorKind.UNEXPECTED, msg)


def summarize(result: Optional[RunResult] = None) -> None:
    """Mark the end of the run in the log."""
    if result is not None:
        result.completed_at = datetime.now()
    log_entry(AUDIT, COMPLETE_MESSAGE)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class DunningNotifier:
    """The dunning job for one deployment (one day count).

    Holds only read-only collaborators; every ``reduce`` call is
    independent of the others.
    """

    def __init__(
        self,
        params: Configuration,
        store: RecordStore,
        mailer: Mailer,
        *,
        engine: Optional[TemplateEngine] = None,
        query_settings: Optional[QuerySettings] = None,
        ledger: Optional[NotificationLedger] = None,
    ):
        self.params = params
        self.store = store
        self.mailer = mailer
        self.engine = engine or TemplateEngine(template_file=params.template_file or None)
        self.ledger = ledger
        self.query = self._build_query(query_settings)

    def _build_query(self, settings: Optional[QuerySettings]) -> InvoiceQuery:
        if self.params.search_file:
            return load_query_file(self.params.search_file)
        return build_invoice_query(self.params.threshold_days, settings)

    # --- stages ---

    def get_input_data(self, today: Optional[date] = None) -> Iterator[str]:
        log_entry(AUDIT, START_MESSAGE)
        return self.store.run(self.query, today)

    map = staticmethod(map_invoice)

    def reduce(self, key: Any, values: list[InvoiceCandidate]) -> DispatchOutcome:
        """Send the reminder for one invoice.

        Only the first value is used: the query returns one header line
        per invoice.
        """
        candidate = replace(
            values[0],
            invoice_id=_as_id(key),
            customer_id=_as_id(values[0].customer_id),
        )
        message = self.engine.build_message(candidate, self.params)
        logger.debug("reduce(): message %s", message.to_dict())
        outcome = send_reminder(self.mailer, message)

        if outcome.sent:
            log_entry(AUDIT, "reduce(): emailSent", outcome.sent)
            if self.ledger is not None:
                self.ledger.record(candidate, self.params.threshold_days)
        return outcome

    def summarize(self, result: Optional[RunResult] = None) -> None:
        summarize(result)

    # --- driver ---

    def run(self, today: Optional[date] = None) -> RunResult:
        """Run all stages once and return the per-invoice outcomes."""
        result = RunResult(
            threshold_days=self.params.threshold_days,
            started_at=datetime.now(),
        )

        groups: dict[Any, list[InvoiceCandidate]] = {}
        for raw in self.get_input_data(today):
            try:
                key, candidate = self.map(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("map(): skipping malformed search result %r: %s", raw, exc)
                continue
            groups.setdefault(key, []).append(candidate)

        for key, values in groups.items():
            if self.ledger is not None and self.ledger.was_notified(key, self.params.threshold_days):
                logger.info(
                    "Invoice %s already reminded at %s days -- skipping",
                    key, self.params.threshold_days,
                )
                result.already_notified.append(_as_id(key))
                continue
            try:
                outcome = self.reduce(key, values)
            except Exception as exc:
                logger.exception("reduce(): invoice %s failed", key)
                outcome = DispatchOutcome(_as_id(key), False, ErrorKind.UNEXPECTED, str(exc))
            result.outcomes.append(outcome)

        self.summarize(result)
        return result
