"""Shared fixtures for the Dunning Notifier tests."""

import pytest

from dunning_notifier.record_store import AddressBook, InMemoryRecordStore

from fakes import RecordingMailer


@pytest.fixture
def address_book() -> AddressBook:
    return AddressBook(
        customers={"55": "billing@acme.example", "56": "ap@globex.example"},
        employees={"7": "ar@taco.example"},
    )


@pytest.fixture
def mailer(address_book) -> RecordingMailer:
    return RecordingMailer(address_book)


@pytest.fixture
def store_factory(address_book):
    def _factory(*transactions):
        return InMemoryRecordStore(transactions, address_book)
    return _factory
