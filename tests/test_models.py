"""Tests for dunning_notifier.models."""

import json
from datetime import date, datetime, timedelta

import pytest

from dunning_notifier.models import (
    Configuration,
    ErrorKind,
    InvoiceCandidate,
    ReminderMessage,
    RunResult,
)


# ============================================================================
# Configuration
# ============================================================================

class TestConfiguration:
    def test_cc_emails_wraps_single_address(self):
        assert Configuration(cc_list="collections@taco.example").cc_emails == [
            "collections@taco.example"
        ]

    def test_cc_emails_empty(self):
        assert Configuration().cc_emails == []

    def test_frozen(self):
        params = Configuration(threshold_days=30)
        with pytest.raises(AttributeError):
            params.threshold_days = 45


# ============================================================================
# InvoiceCandidate
# ============================================================================

class TestInvoiceCandidate:
    RESULT = {
        "recordType": "invoice",
        "id": "100",
        "values": {
            "trandate": "2026-08-20",
            "duedate": "2026-09-19",
            "tranid": "INV-1001",
            "entity": {"value": "55", "text": "Acme Tacos"},
        },
    }

    def test_from_json(self):
        c = InvoiceCandidate.from_search_result(json.dumps(self.RESULT))
        assert c.invoice_id == "100"
        assert c.customer_id == "55"
        assert c.document_number == "INV-1001"
        assert c.transaction_date == date(2026, 8, 20)
        assert c.due_date == date(2026, 9, 19)

    @pytest.mark.parametrize("raw_date,expected", [
        ("", None),
        (None, None),
        ("not a date", None),
        ("2026-09-19T00:00:00", date(2026, 9, 19)),
    ])
    def test_lenient_dates(self, raw_date, expected):
        result = json.loads(json.dumps(self.RESULT))
        result["values"]["duedate"] = raw_date
        assert InvoiceCandidate.from_search_result(result).due_date == expected

    def test_missing_tranid_raises(self):
        result = {"id": "100", "values": {"entity": {"value": "55"}}}
        with pytest.raises(KeyError):
            InvoiceCandidate.from_search_result(result)


# ============================================================================
# ReminderMessage / RunResult
# ============================================================================

class TestReminderMessage:
    def test_to_dict(self):
        msg = ReminderMessage(
            recipients=[55],
            cc=["collections@taco.example"],
            reply_to="ar@taco.example",
            subject="Taco, Inc. Invoice Due Reminder",
            body="<p>x</p>",
            related_invoice_id=100,
            author_id=7,
        )
        d = msg.to_dict()
        assert d["author"] == 7
        assert d["recipients"] == [55]
        assert d["related_records"] == {"entity_id": 55, "transaction_id": 100}

    def test_related_records_without_recipient(self):
        assert ReminderMessage().related_records["entity_id"] is None


class TestRunResult:
    def test_duration(self):
        start = datetime(2026, 10, 19, 6, 0, 0)
        result = RunResult(started_at=start, completed_at=start + timedelta(seconds=4))
        assert result.duration_seconds == 4.0

    def test_duration_not_finished(self):
        assert RunResult(started_at=datetime.now()).duration_seconds == 0.0


def test_error_kind_titles():
    assert ErrorKind.PLATFORM.value == "system error"
    assert ErrorKind.UNEXPECTED.value == "unexpected error"
