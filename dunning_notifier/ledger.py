"""
Dunning Notifier -- Notification Ledger

SQLite record of reminders already sent, keyed by
``(invoice_id, threshold_days)``.  When enabled, the job skips
candidates found here and records each successful send, so a second run
on the same day does not repeat reminders.  Failed sends are not
recorded and will be retried by the next run that matches the invoice.

Database schema:
    notifications   one row per (invoice, day count) reminder sent

Usage:
    from dunning_notifier.ledger import NotificationLedger

    ledger = NotificationLedger("output/dunning_ledger.db")
    if not ledger.was_notified(100, 30):
        ...
        ledger.record(candidate, 30)
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import InvoiceCandidate


_PRAGMA_SETTINGS = [
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
]

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS notifications (
    invoice_id       TEXT NOT NULL,
    threshold_days   INTEGER NOT NULL,
    customer_id      TEXT NOT NULL DEFAULT '',
    document_number  TEXT NOT NULL DEFAULT '',
    notified_at      TEXT NOT NULL,
    PRIMARY KEY (invoice_id, threshold_days)
);

CREATE INDEX IF NOT EXISTS idx_notifications_customer ON notifications(customer_id);
CREATE INDEX IF NOT EXISTS idx_notifications_date ON notifications(notified_at);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationLedger:
    """Persistent "already notified" markers.

    Each method opens and closes its own connection.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMA_SETTINGS:
            conn.execute(pragma)
        return conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    def was_notified(self, invoice_id: Any, threshold_days: int | None) -> bool:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT 1 FROM notifications WHERE invoice_id = ? AND threshold_days = ?",
                (str(invoice_id), threshold_days),
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    def record(self, candidate: InvoiceCandidate, threshold_days: int | None) -> None:
        """Mark ``candidate`` as reminded for this day count.  Re-recording is a no-op."""
        conn = self._get_conn()
        try:
            conn.execute(
                """INSERT OR IGNORE INTO notifications
                   (invoice_id, threshold_days, customer_id, document_number, notified_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    str(candidate.invoice_id),
                    threshold_days,
                    str(candidate.customer_id),
                    candidate.document_number or "",
                    _now_iso(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get_history(
        self,
        invoice_id: Any = None,
        customer_id: Any = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Most recent reminders first, optionally filtered."""
        conditions = []
        params: list[Any] = []
        if invoice_id is not None:
            conditions.append("invoice_id = ?")
            params.append(str(invoice_id))
        if customer_id is not None:
            conditions.append("customer_id = ?")
            params.append(str(customer_id))

        where = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""SELECT * FROM notifications
                    WHERE {where}
                    ORDER BY notified_at DESC
                    LIMIT ?""",
                params,
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()
