import pytest
from django.contrib.auth import get_user_model

from procurement.services.bwn import confirm_payment, create_note, record_qc_outcome, transition
from procurement.services.traders import register_trader
from procurement.services.truck_entries import register_entry
from procurement.services.weighbridge import record_reading
from procurement.states import BWNStatus, QCOutcome


@pytest.fixture
def officer(db):
    return get_user_model().objects.create_user(username="gate", password="pass")


@pytest.fixture
def operator(db):
    return get_user_model().objects.create_user(username="scale", password="pass")


@pytest.fixture
def trader(db):
    return register_trader("Ahmed Coffee Traders", "+256700123456", district="Kampala")


@pytest.fixture
def make_entry(officer):
    def _make(trader, truck_number="uax 123b", **kwargs):
        return register_entry(truck_number, "John Okello", trader.pk, officer, **kwargs)

    return _make


@pytest.fixture
def make_reading(make_entry, operator):
    def _make(trader, gross=25000, tare=8000, **entry_kwargs):
        entry = make_entry(trader, **entry_kwargs)
        return record_reading(entry.pk, gross, tare, operator)

    return _make


@pytest.fixture
def make_note(make_reading, operator):
    def _make(trader, moisture=135, price=8000, coffee_type="ARABICA", **reading_kwargs):
        reading = make_reading(trader, **reading_kwargs)
        return create_note(reading.pk, coffee_type, moisture, price, actor=operator)

    return _make


@pytest.fixture
def to_awaiting_qc():
    def _advance(note):
        for status in (BWNStatus.MOISTURE_TESTED, BWNStatus.PRICE_CALCULATED, BWNStatus.AWAITING_QC):
            note = transition(note.pk, status)
        return note

    return _advance


@pytest.fixture
def complete_note(to_awaiting_qc, operator):
    """Walk a WEIGHED note all the way to COMPLETED."""

    def _complete(note, outcome=QCOutcome.APPROVED, defect_count=0, borderline_accepted=False):
        note = to_awaiting_qc(note)
        record_qc_outcome(
            note.pk,
            outcome,
            borderline_accepted=borderline_accepted,
            inspector=operator,
            defect_count=defect_count,
        )
        transition(note.pk, BWNStatus.PAYMENT_APPROVED, actor=operator)
        confirm_payment(note.pk, actor=operator)
        return transition(note.pk, BWNStatus.COMPLETED, actor=operator)

    return _complete
