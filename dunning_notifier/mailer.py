"""
Dunning Notifier -- Mail Gateway

Turns a ``ReminderMessage`` into a delivered email.  Recipients on the
message are customer ids; the gateway resolves them to the customer's
registered address from the ``AddressBook`` at send time, and the
author id to the sender's address.

Errors raised by ``Mailer.send``:

    PlatformError      a classified gateway failure, with ``code`` and
                       ``details`` (no recipient, SMTP refused, ...)
    anything else      unexpected (network down, bad data, ...)

Gateways:
    SmtpMailer     delivers through an SMTP relay (smtplib)
    OutboxMailer   writes .eml files for review instead of sending
"""

from __future__ import annotations

import html
import logging
import re
import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import format_datetime, make_msgid
from pathlib import Path
from typing import Any

from .config import SMTPSettings
from .models import ReminderMessage
from .record_store import AddressBook

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

NO_RECIPIENTS = "NO_RECIPIENTS"
INVALID_AUTHOR = "INVALID_AUTHOR"
INVALID_REPLY_TO = "INVALID_REPLY_TO"
SMTP_AUTH_FAILED = "SMTP_AUTH_FAILED"
RECIPIENTS_REFUSED = "RECIPIENTS_REFUSED"
SMTP_ERROR = "SMTP_ERROR"


class PlatformError(Exception):
    """A classified delivery failure raised by the gateway."""

    def __init__(self, code: str, details: str = ""):
        super().__init__(f"{code}: {details}" if details else code)
        self.code = code
        self.details = details


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

@dataclass
class Envelope:
    """A message with every address resolved, ready for transport."""

    from_address: str
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    reply_to: str = ""
    subject: str = ""
    body_html: str = ""
    invoice_id: Any = None

    @property
    def all_recipients(self) -> list[str]:
        return list(self.to) + list(self.cc)

    def to_mime(self) -> MIMEMultipart:
        """Build the MIME message: plain-text fallback plus HTML."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self.subject
        msg["From"] = self.from_address
        msg["To"] = ", ".join(self.to)
        if self.cc:
            msg["Cc"] = ", ".join(self.cc)
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg["Date"] = format_datetime(datetime.now(timezone.utc))
        msg["Message-ID"] = make_msgid()
        if self.invoice_id is not None:
            msg["X-Related-Transaction"] = str(self.invoice_id)

        msg.attach(MIMEText(_html_to_plaintext(self.body_html), "plain", "utf-8"))
        msg.attach(MIMEText(self.body_html, "html", "utf-8"))
        return msg


def _html_to_plaintext(body: str) -> str:
    """Rough plain-text rendering of an HTML body."""
    text = re.sub(r"<br\s*/?>", "\n", body, flags=re.IGNORECASE)
    text = re.sub(r"</p\s*>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return html.unescape(text).strip()


def _looks_like_address(value: str) -> bool:
    return bool(value) and "@" in value and " " not in value.strip()


def dedupe_cc(to: list[str], cc: list[str]) -> list[str]:
    """Drop CC addresses already in ``to`` (case-insensitive) or repeated."""
    seen = {addr.lower().strip() for addr in to}
    deduped: list[str] = []
    for addr in cc:
        key = addr.lower().strip()
        if key and key not in seen:
            seen.add(key)
            deduped.append(addr)
    return deduped


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------

class Mailer:
    """Base gateway: resolves addresses, subclasses deliver."""

    def __init__(self, address_book: AddressBook, default_from: str = ""):
        self.address_book = address_book
        self.default_from = default_from

    def send(self, message: ReminderMessage) -> None:
        """Resolve and deliver ``message``.  Raises on failure."""
        envelope = self.prepare(message)
        self.deliver(envelope)
        logger.debug(
            "Delivered invoice %s reminder to %s (cc %s)",
            envelope.invoice_id, envelope.to, envelope.cc,
        )

    def prepare(self, message: ReminderMessage) -> Envelope:
        """Resolve ids to addresses.

        Raises:
            PlatformError: no sender address, a malformed reply-to, or
                none of the recipient ids has an address on file.
        """
        from_address = ""
        if message.author_id is not None:
            from_address = self.address_book.employee_email(message.author_id) or ""
        from_address = from_address or self.default_from
        if not from_address:
            raise PlatformError(
                INVALID_AUTHOR,
                f"No email address for author {message.author_id!r}",
            )

        if message.reply_to and not _looks_like_address(message.reply_to):
            raise PlatformError(INVALID_REPLY_TO, f"Invalid reply-to {message.reply_to!r}")

        to: list[str] = []
        for recipient in message.recipients:
            if isinstance(recipient, str) and "@" in recipient:
                to.append(recipient)
                continue
            addr = self.address_book.customer_email(recipient)
            if addr:
                to.append(addr)
            else:
                logger.debug("No email on file for customer %r", recipient)
        if not to:
            raise PlatformError(
                NO_RECIPIENTS,
                f"No valid email address for recipients {message.recipients!r}",
            )

        cc = [addr for addr in message.cc if addr]
        return Envelope(
            from_address=from_address,
            to=to,
            cc=dedupe_cc(to, cc),
            reply_to=message.reply_to,
            subject=message.subject,
            body_html=message.body,
            invoice_id=message.related_invoice_id,
        )

    def deliver(self, envelope: Envelope) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    """Deliver through an SMTP relay."""

    def __init__(self, address_book: AddressBook, settings: SMTPSettings):
        super().__init__(address_book, default_from=settings.from_address or settings.username)
        self.settings = settings

    def deliver(self, envelope: Envelope) -> None:
        msg = envelope.to_mime()
        s = self.settings
        try:
            with smtplib.SMTP(s.host, s.port, timeout=s.timeout) as server:
                if s.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if s.username:
                    server.login(s.username, s.password)
                server.sendmail(envelope.from_address, envelope.all_recipients, msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            raise PlatformError(SMTP_AUTH_FAILED, f"SMTP login failed for {s.username}: {exc}") from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise PlatformError(RECIPIENTS_REFUSED, f"Recipients refused: {exc.recipients}") from exc
        except smtplib.SMTPException as exc:
            raise PlatformError(SMTP_ERROR, str(exc)) from exc


class OutboxMailer(Mailer):
    """Write each message to ``<outbox_dir>/invoice_<id>_<timestamp>.eml``."""

    def __init__(self, address_book: AddressBook, outbox_dir: str | Path, default_from: str = ""):
        super().__init__(address_book, default_from=default_from)
        self.outbox_dir = Path(outbox_dir)
        self.written: list[Path] = []

    def deliver(self, envelope: Envelope) -> None:
        self.outbox_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = self.outbox_dir / f"invoice_{envelope.invoice_id}_{stamp}.eml"
        path.write_text(envelope.to_mime().as_string(), encoding="utf-8")
        self.written.append(path)
        logger.info("Wrote %s", path)
