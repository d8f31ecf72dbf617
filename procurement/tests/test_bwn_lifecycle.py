import re

import pytest
from django.db import IntegrityError
from django.utils import timezone

from procurement.exceptions import (
    ConcurrencyConflict,
    IllegalTransition,
    NoteLocked,
    ReadingAlreadyConverted,
    ReadingNotFound,
    TraderNotEligible,
    ValidationError,
)
from procurement.models import BuyingWeightNote, NoteSequence, QualityInspection, WeighbridgeReading
from procurement.services import bwn
from procurement.services.traders import deactivate, set_status
from procurement.states import TRANSITIONS, BWNStatus, PaymentStatus, QCOutcome, can_transition


@pytest.mark.django_db
def test_create_note_derives_amounts(trader, make_reading, operator):
    reading = make_reading(trader)
    note = bwn.create_note(
        reading.pk, "ARABICA", 135, 8000, actor=operator, outturn="78%", buying_centre="Kampala"
    )

    assert note.status == BWNStatus.WEIGHED
    assert note.payment_status == PaymentStatus.PENDING
    assert note.net_weight_kg == 17000
    assert note.moisture_deduction_kg == 340
    assert note.final_net_weight_kg == 16660
    assert note.total_amount_ugx == 133_280_000
    assert note.truck_number == "UAX 123B"
    assert note.trader == trader
    assert note.created_by == operator
    assert note.version == 1
    reading.refresh_from_db()
    assert reading.converted is True


@pytest.mark.django_db
def test_bwn_numbers_are_sequential_per_month(trader, make_note):
    first = make_note(trader, truck_number="UAX 1")
    second = make_note(trader, truck_number="UAX 2")
    period = timezone.localtime().strftime("%Y-%m")

    assert first.bwn_number == f"BWN-{period}-0001"
    assert second.bwn_number == f"BWN-{period}-0002"
    assert re.fullmatch(r"BWN-\d{4}-\d{2}-\d{4}", first.bwn_number)
    assert NoteSequence.objects.get(period=period).last_value == 2


@pytest.mark.django_db
def test_reading_converts_only_once(trader, make_reading, operator):
    reading = make_reading(trader)
    note = bwn.create_note(reading.pk, "ARABICA", 120, 8000, actor=operator)
    with pytest.raises(ReadingAlreadyConverted) as exc:
        bwn.create_note(reading.pk, "ROBUSTA", 120, 7000, actor=operator)
    assert note.bwn_number in exc.value.message
    assert BuyingWeightNote.objects.count() == 1


@pytest.mark.django_db
def test_unknown_reading(operator):
    with pytest.raises(ReadingNotFound):
        bwn.create_note(123456, "ARABICA", 120, 8000, actor=operator)


@pytest.mark.django_db
@pytest.mark.parametrize(
    "coffee_type,moisture,price",
    [("LIBERICA", 120, 8000), ("ARABICA", -1, 8000), ("ARABICA", 1001, 8000), ("ARABICA", 120, 0), ("ARABICA", 12.5, 8000)],
)
def test_create_note_validates_inputs(trader, make_reading, operator, coffee_type, moisture, price):
    reading = make_reading(trader)
    with pytest.raises(ValidationError):
        bwn.create_note(reading.pk, coffee_type, moisture, price, actor=operator)
    reading.refresh_from_db()
    assert reading.converted is False


@pytest.mark.django_db
def test_suspended_trader_cannot_sell(trader, make_reading, operator):
    reading = make_reading(trader)
    set_status(trader.pk, "SUSPENDED")

    with pytest.raises(TraderNotEligible) as exc:
        bwn.create_note(reading.pk, "ARABICA", 135, 8000, actor=operator)

    assert exc.value.http_status == 422
    assert not BuyingWeightNote.objects.exists()
    assert not NoteSequence.objects.exists()
    reading.refresh_from_db()
    assert reading.converted is False


@pytest.mark.django_db
def test_inactive_trader_cannot_sell(trader, make_reading, operator):
    reading = make_reading(trader)
    deactivate(trader.pk)
    with pytest.raises(TraderNotEligible):
        bwn.create_note(reading.pk, "ARABICA", 135, 8000, actor=operator)


def test_transition_table_is_linear_with_rejection_exit():
    chain = list(BWNStatus)[:7]
    for current, nxt in zip(chain, chain[1:]):
        assert can_transition(current, nxt)
        assert can_transition(current, BWNStatus.REJECTED)
    assert TRANSITIONS[BWNStatus.COMPLETED] == frozenset()
    assert TRANSITIONS[BWNStatus.REJECTED] == frozenset()
    assert not can_transition(BWNStatus.WEIGHED, BWNStatus.AWAITING_QC)
    assert not can_transition(BWNStatus.AWAITING_QC, BWNStatus.WEIGHED)


@pytest.mark.django_db
def test_illegal_jump_is_refused(trader, make_note):
    note = make_note(trader)
    with pytest.raises(IllegalTransition) as exc:
        bwn.transition(note.pk, BWNStatus.AWAITING_QC)

    assert exc.value.from_status == "WEIGHED"
    assert exc.value.to_status == "AWAITING_QC"
    assert exc.value.as_dict()["error"] == "ILLEGAL_TRANSITION"
    note.refresh_from_db()
    assert note.status == BWNStatus.WEIGHED
    assert note.version == 1


@pytest.mark.django_db
def test_transition_bumps_version(trader, make_note):
    note = make_note(trader)
    note = bwn.transition(note.pk, BWNStatus.MOISTURE_TESTED, expected_status=BWNStatus.WEIGHED)
    assert note.status == BWNStatus.MOISTURE_TESTED
    assert note.version == 2


@pytest.mark.django_db
def test_stale_expected_status_conflicts(trader, make_note):
    note = make_note(trader)
    bwn.transition(note.pk, BWNStatus.MOISTURE_TESTED, expected_status="WEIGHED")

    with pytest.raises(ConcurrencyConflict) as exc:
        bwn.transition(note.pk, BWNStatus.MOISTURE_TESTED, expected_status="WEIGHED")

    assert exc.value.code == "CONCURRENCY_CONFLICT"
    assert isinstance(exc.value, IllegalTransition)
    note.refresh_from_db()
    assert note.status == BWNStatus.MOISTURE_TESTED
    assert note.version == 2


@pytest.mark.django_db
def test_losing_writer_applies_nothing(trader, make_note, monkeypatch):
    note = make_note(trader)
    stale = bwn.get_note(note.pk)
    bwn.transition(note.pk, BWNStatus.MOISTURE_TESTED)

    # Second request read the note before the first one committed.
    monkeypatch.setattr(bwn, "get_note", lambda note_id: stale)
    with pytest.raises(ConcurrencyConflict):
        bwn.transition(note.pk, BWNStatus.REJECTED, reason="late reject")

    note.refresh_from_db()
    assert note.status == BWNStatus.MOISTURE_TESTED
    assert note.rejection_reason == ""
    assert note.rejected_at is None


@pytest.mark.django_db
def test_reject_requires_reason(trader, make_note):
    note = make_note(trader)
    with pytest.raises(ValidationError):
        bwn.reject(note.pk, "   ")
    note = bwn.reject(note.pk, "Foreign matter above limit")
    assert note.status == BWNStatus.REJECTED
    assert note.rejection_reason == "Foreign matter above limit"
    assert note.rejected_at is not None
    assert note.is_terminal


@pytest.mark.django_db
def test_terminal_notes_accept_no_transitions(trader, make_note):
    note = bwn.reject(make_note(trader).pk, "Mould")
    for target in BWNStatus:
        with pytest.raises((IllegalTransition, ValidationError)):
            bwn.transition(note.pk, target, reason="again")


@pytest.mark.django_db
def test_edit_inputs_rederives_while_weighed(trader, make_note):
    note = make_note(trader)
    note = bwn.update_inputs(note.pk, moisture_content=115, expected_version=1)

    assert note.moisture_deduction_kg == 0
    assert note.final_net_weight_kg == 17000
    assert note.total_amount_ugx == 136_000_000
    assert note.version == 2

    note = bwn.update_inputs(note.pk, price_per_kg=7500)
    assert note.total_amount_ugx == 17000 * 7500


@pytest.mark.django_db
def test_edit_inputs_with_stale_version_conflicts(trader, make_note):
    note = make_note(trader)
    bwn.update_inputs(note.pk, price_per_kg=7000)
    with pytest.raises(ConcurrencyConflict):
        bwn.update_inputs(note.pk, price_per_kg=9000, expected_version=1)
    note.refresh_from_db()
    assert note.price_per_kg_ugx == 7000


@pytest.mark.django_db
def test_inputs_locked_after_weighed(trader, make_note):
    note = make_note(trader)
    bwn.transition(note.pk, BWNStatus.MOISTURE_TESTED)
    with pytest.raises(NoteLocked):
        bwn.update_inputs(note.pk, moisture_content=120)
    with pytest.raises(NoteLocked):
        bwn.update_details(note.pk, coffee_type="ROBUSTA")

    note = bwn.update_details(note.pk, outturn="80%", buying_centre="Mbale")
    assert note.outturn == "80%"
    assert note.moisture_content == 135


@pytest.mark.django_db
def test_qc_outcome_only_while_awaiting_qc(trader, make_note, to_awaiting_qc):
    note = make_note(trader)
    with pytest.raises(IllegalTransition):
        bwn.record_qc_outcome(note.pk, QCOutcome.APPROVED)

    note = to_awaiting_qc(note)
    note = bwn.record_qc_outcome(
        note.pk, QCOutcome.APPROVED, defect_count=12, inspection_number="QC-001", color_grade="Bluish"
    )
    assert note.qc_outcome == QCOutcome.APPROVED
    inspection = QualityInspection.objects.get(note=note)
    assert inspection.defect_count == 12
    assert inspection.color_grade == "Bluish"


@pytest.mark.django_db
def test_qc_outcome_validation(trader, make_note, to_awaiting_qc):
    note = to_awaiting_qc(make_note(trader))
    with pytest.raises(ValidationError):
        bwn.record_qc_outcome(note.pk, "MAYBE")
    with pytest.raises(ValidationError):
        bwn.record_qc_outcome(note.pk, QCOutcome.APPROVED, defect_count=87)
    with pytest.raises(ValidationError):
        bwn.record_qc_outcome(note.pk, QCOutcome.APPROVED, smell="earthy")


@pytest.mark.django_db
def test_payment_approval_needs_qc(trader, make_note, to_awaiting_qc):
    note = to_awaiting_qc(make_note(trader))
    with pytest.raises(IllegalTransition):
        bwn.transition(note.pk, BWNStatus.PAYMENT_APPROVED)

    bwn.record_qc_outcome(note.pk, QCOutcome.REJECTED)
    with pytest.raises(IllegalTransition):
        bwn.transition(note.pk, BWNStatus.PAYMENT_APPROVED)
    assert bwn.reject(note.pk, "QC rejected").status == BWNStatus.REJECTED


@pytest.mark.django_db
def test_borderline_needs_acceptance(trader, make_note, to_awaiting_qc, operator):
    note = to_awaiting_qc(make_note(trader))
    bwn.record_qc_outcome(note.pk, QCOutcome.BORDERLINE)
    with pytest.raises(IllegalTransition):
        bwn.transition(note.pk, BWNStatus.PAYMENT_APPROVED)

    bwn.record_qc_outcome(note.pk, QCOutcome.BORDERLINE, borderline_accepted=True)
    note = bwn.transition(note.pk, BWNStatus.PAYMENT_APPROVED, actor=operator)
    assert note.payment_status == PaymentStatus.APPROVED
    assert note.approved_by == operator
    assert note.approved_at is not None


@pytest.mark.django_db
def test_completion_requires_payment(trader, make_note, to_awaiting_qc, operator):
    note = to_awaiting_qc(make_note(trader))
    bwn.record_qc_outcome(note.pk, QCOutcome.APPROVED)
    bwn.transition(note.pk, BWNStatus.PAYMENT_APPROVED, actor=operator)

    with pytest.raises(IllegalTransition):
        bwn.transition(note.pk, BWNStatus.COMPLETED)

    note = bwn.confirm_payment(note.pk, actor=operator)
    assert note.payment_status == PaymentStatus.PAID
    paid_version = note.version
    # confirming twice is harmless
    assert bwn.confirm_payment(note.pk).version == paid_version

    note = bwn.transition(note.pk, BWNStatus.COMPLETED)
    assert note.status == BWNStatus.COMPLETED
    assert note.completed_at is not None


@pytest.mark.django_db
def test_confirm_payment_before_approval(trader, make_note):
    note = make_note(trader)
    with pytest.raises(IllegalTransition):
        bwn.confirm_payment(note.pk)


@pytest.mark.django_db
def test_list_and_stats(trader, make_note, complete_note):
    arabica = make_note(trader, truck_number="UAX 1")
    robusta = make_note(trader, coffee_type="ROBUSTA", price=7000, truck_number="UBB 2")
    complete_note(arabica)

    assert bwn.list_notes(coffee_type="ROBUSTA").get() == robusta
    assert bwn.list_notes(status="COMPLETED").get().pk == arabica.pk
    assert bwn.list_notes(search="ubb").count() == 1
    assert bwn.list_notes(status="all").count() == 2

    stats = bwn.note_stats()
    assert stats["total_bwns"] == 2
    assert stats["completed_bwns"] == 1
    assert stats["pending_bwns"] == 1
    assert stats["arabica_count"] == 1
    assert stats["robusta_count"] == 1
    assert stats["total_amount_ugx"] == 133_280_000 + 16660 * 7000
    assert WeighbridgeReading.objects.filter(converted=True).count() == 2


@pytest.mark.django_db
def test_edit_with_one_bad_field_writes_nothing(trader, make_note):
    note = make_note(trader)
    with pytest.raises(ValidationError):
        bwn.edit_note(note.pk, moisture_content=200, coffee_type="BOGUS")

    note.refresh_from_db()
    assert note.moisture_content == 135
    assert note.coffee_type == "ARABICA"
    assert note.total_amount_ugx == 133_280_000
    assert note.version == 1


@pytest.mark.django_db
def test_edit_inputs_and_details_in_one_write(trader, make_note):
    note = make_note(trader)
    note = bwn.edit_note(note.pk, moisture_content=115, coffee_type="ROBUSTA", outturn="79%", expected_version=1)

    assert note.coffee_type == "ROBUSTA"
    assert note.total_amount_ugx == 136_000_000
    assert note.outturn == "79%"
    assert note.version == 2


@pytest.mark.django_db
def test_edit_details_with_stale_version_conflicts(trader, make_note):
    note = make_note(trader)
    with pytest.raises(ConcurrencyConflict):
        bwn.update_details(note.pk, coffee_type="ROBUSTA", expected_version=99)
    note.refresh_from_db()
    assert note.coffee_type == "ARABICA"
    assert note.version == 1


@pytest.mark.django_db
def test_create_note_retries_numbering_collision(trader, make_reading, operator, monkeypatch):
    reading = make_reading(trader)
    issue = bwn.next_bwn_number
    calls = []

    def collide_once(when=None):
        calls.append(when)
        if len(calls) == 1:
            raise IntegrityError("duplicate key value violates unique constraint")
        return issue(when)

    monkeypatch.setattr(bwn, "next_bwn_number", collide_once)
    note = bwn.create_note(reading.pk, "ARABICA", 135, 8000, actor=operator)

    assert len(calls) == 2
    assert note.bwn_number.endswith("-0001")
    reading.refresh_from_db()
    assert reading.converted is True


@pytest.mark.django_db
def test_numbering_collision_is_not_reported_as_converted(trader, make_reading, operator, monkeypatch):
    reading = make_reading(trader)

    def always_collide(when=None):
        raise IntegrityError("duplicate key value violates unique constraint")

    monkeypatch.setattr(bwn, "next_bwn_number", always_collide)
    with pytest.raises(ConcurrencyConflict):
        bwn.create_note(reading.pk, "ARABICA", 135, 8000, actor=operator)

    assert not BuyingWeightNote.objects.exists()
    reading.refresh_from_db()
    assert reading.converted is False
