"""Test doubles and record builders shared by the test modules."""

from datetime import date, timedelta

from dunning_notifier.mailer import Envelope, Mailer


TODAY = date(2026, 10, 19)


def make_transaction(
    invoice_id,
    customer_id,
    tranid,
    *,
    days_past_due=30,
    trandate=None,
    subsidiary="37",
    mainline=True,
    status="CustInvc:A",
    type_="CustInvc",
    entity_name="",
):
    """Build an in-memory transaction row ``days_past_due`` days overdue on TODAY."""
    due = TODAY - timedelta(days=days_past_due)
    return {
        "id": str(invoice_id),
        "type": type_,
        "subsidiary": subsidiary,
        "mainline": mainline,
        "status": status,
        "trandate": trandate or (due - timedelta(days=30)),
        "duedate": due,
        "tranid": tranid,
        "entity": str(customer_id),
        "entity_name": entity_name,
    }


class RecordingMailer(Mailer):
    """Gateway that keeps delivered envelopes instead of sending them."""

    def __init__(self, address_book, default_from="ar@taco.example", fail_with=None):
        super().__init__(address_book, default_from=default_from)
        self.delivered: list[Envelope] = []
        self.sent_messages = []
        self.fail_with = fail_with

    def send(self, message):
        self.sent_messages.append(message)
        super().send(message)

    def deliver(self, envelope):
        if self.fail_with is not None:
            raise self.fail_with
        self.delivered.append(envelope)
