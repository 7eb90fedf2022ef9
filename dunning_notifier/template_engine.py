"""
Dunning Notifier -- Template Engine

Renders the reminder subject and HTML body and assembles the
``ReminderMessage`` handed to the mail gateway.

The default body is built in; a deployment can point the
``custscript_dunning_email_template`` parameter at an HTML file to
replace it.  Templates are Jinja2 with these variables:

    document_number   invoice document number, e.g. "INV-1001"
    days_past_due     the deployment's day count
    company           company name from config
    department        signing department from config
    invoice_id        internal id of the invoice
    customer_id       internal id of the customer
    due_date          due date (date or None)

Usage:
    from dunning_notifier.template_engine import TemplateEngine

    engine = TemplateEngine(company=cfg.company)
    message = engine.build_message(candidate, params)
    print(message.subject)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from jinja2 import BaseLoader, Environment, FileSystemLoader, select_autoescape

from .config import PROJECT_ROOT, CompanyInfo
from .models import Configuration, InvoiceCandidate, ReminderMessage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BODY_TEMPLATE = (
    "<html><p>This is a reminder that invoice #{{ document_number }} is "
    "{{ days_past_due }} days past due.</p>"
    "<p>{{ department }}<br />{{ company }}</p></html>"
)


class TemplateEngine:
    """Renders reminder emails from the built-in or a file template."""

    def __init__(
        self,
        company: Optional[CompanyInfo] = None,
        template_file: str | Path | None = None,
    ):
        self.company = company or CompanyInfo()
        self.template_file = Path(template_file) if template_file else None

        if self.template_file is not None:
            path = self.template_file
            if not path.is_absolute():
                path = PROJECT_ROOT / path
            if not path.exists():
                raise FileNotFoundError(f"Email template not found: {path}")
            env = Environment(
                loader=FileSystemLoader(str(path.parent)),
                autoescape=select_autoescape(["html", "htm"]),
            )
            self._body_template = env.get_template(path.name)
            logger.info("Using email template %s", path)
        else:
            env = Environment(loader=BaseLoader(), autoescape=True)
            self._body_template = env.from_string(DEFAULT_BODY_TEMPLATE)

    def render_subject(self) -> str:
        return self.company.subject_template.format(company=self.company.name)

    def render_body(
        self,
        candidate: InvoiceCandidate,
        days_past_due: int | None,
    ) -> str:
        return self._body_template.render(
            document_number=candidate.document_number,
            days_past_due=days_past_due,
            company=self.company.name,
            department=self.company.department,
            invoice_id=candidate.invoice_id,
            customer_id=candidate.customer_id,
            due_date=candidate.due_date,
        )

    def build_message(
        self,
        candidate: InvoiceCandidate,
        params: Configuration,
    ) -> ReminderMessage:
        """Assemble the reminder for one invoice.

        Recipients are ``[customer_id]``; the gateway looks up the
        address.  CC is the configured address as-is.
        """
        return ReminderMessage(
            recipients=[candidate.customer_id],
            cc=params.cc_emails,
            reply_to=params.reply_to,
            subject=self.render_subject(),
            body=self.render_body(candidate, params.threshold_days),
            related_invoice_id=candidate.invoice_id,
            author_id=params.author_id,
        )
