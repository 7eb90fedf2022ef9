"""Dunning Notifier - past-due invoice reminder job.

Finds open invoices exactly N days past due and sends each customer one
reminder email, with CC and Reply-To addresses taken from the script
parameters.
"""

from .models import (
    Configuration,
    DispatchOutcome,
    ErrorKind,
    InvoiceCandidate,
    ReminderMessage,
    RunResult,
)

from .config import get_config, load_parameters
from .job import DunningNotifier, map_invoice, send_reminder, summarize
from .mailer import Mailer, OutboxMailer, PlatformError, SmtpMailer
from .query import InvoiceQuery, build_invoice_query

__all__ = [
    "Configuration",
    "DispatchOutcome",
    "DunningNotifier",
    "ErrorKind",
    "InvoiceCandidate",
    "InvoiceQuery",
    "Mailer",
    "OutboxMailer",
    "PlatformError",
    "ReminderMessage",
    "RunResult",
    "SmtpMailer",
    "build_invoice_query",
    "get_config",
    "load_parameters",
    "map_invoice",
    "send_reminder",
    "summarize",
]
