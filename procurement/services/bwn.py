"""Buying Weight Note lifecycle.

A note is created from an unconverted weighbridge reading and then walks the
status table in ``procurement.states``. Every write is a compare-and-set on
``(id, status, version)``: of two requests that read the same state only one
can win, the other gets ``ConcurrencyConflict`` and nothing is applied.
"""
from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.db.models import F, Q, Sum
from django.utils import timezone

from procurement.exceptions import (
    ConcurrencyConflict,
    IllegalTransition,
    NoteLocked,
    NoteNotFound,
    ReadingAlreadyConverted,
    ReadingNotFound,
    TraderNotFound,
    ValidationError,
)
from procurement.models import (
    MAX_DEFECT_COUNT,
    MAX_MOISTURE_TENTHS,
    BuyingWeightNote,
    NoteSequence,
    QualityInspection,
    Trader,
    WeighbridgeReading,
)
from procurement.services.performance import schedule_recompute
from procurement.services.traders import ensure_eligible
from procurement.services.weights import derive
from procurement.states import (
    OPEN_STATES,
    TERMINAL_STATES,
    BWNStatus,
    PaymentStatus,
    QCOutcome,
    can_transition,
)

logger = logging.getLogger(__name__)

COFFEE_TYPES = {code for code, _ in BuyingWeightNote.COFFEE_TYPE_CHOICES}
NUMBERING_ATTEMPTS = 3
QC_MEASUREMENTS = {
    "inspection_number",
    "sample_weight_g",
    "screen_size_pass_pct",
    "moisture_pct",
    "foreign_matter_pct",
    "color_grade",
    "price_adjustment_pct",
    "notes",
}


#
# ----------------------------------------------------------------------
# Input validation
# ----------------------------------------------------------------------
#
def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_coffee_type(coffee_type):
    if coffee_type not in COFFEE_TYPES:
        raise ValidationError(
            "Valid coffee type is required (ARABICA or ROBUSTA)", coffee_type=coffee_type
        )


def _check_moisture(moisture):
    if not _is_int(moisture) or not 0 <= moisture <= MAX_MOISTURE_TENTHS:
        raise ValidationError(
            f"Moisture content must be an integer between 0 and {MAX_MOISTURE_TENTHS} tenths of a percent",
            moisture_content=moisture,
        )


def _check_price(price):
    if not _is_int(price) or price <= 0:
        raise ValidationError("Price per kg must be a positive whole UGX amount", price_per_kg=price)


def _parse_status(value, field="to") -> BWNStatus:
    try:
        return BWNStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown note status {value!r}", **{field: value})


def _user_or_none(actor):
    if actor is not None and getattr(actor, "is_authenticated", False):
        return actor
    return None


#
# ----------------------------------------------------------------------
# Numbering
# ----------------------------------------------------------------------
#
def next_bwn_number(when=None) -> str:
    """Issue the next ``BWN-YYYY-MM-NNNN`` number. Must run inside a transaction."""
    period = timezone.localtime(when or timezone.now()).strftime("%Y-%m")
    seq, _ = NoteSequence.objects.select_for_update().get_or_create(period=period)
    seq.last_value += 1
    seq.save(update_fields=["last_value"])
    return f"BWN-{period}-{seq.last_value:04d}"


#
# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------
#
def get_note(note_id) -> BuyingWeightNote:
    try:
        return BuyingWeightNote.objects.select_related(
            "trader", "weighbridge_reading__entry"
        ).get(pk=note_id)
    except (BuyingWeightNote.DoesNotExist, ValueError, TypeError):
        raise NoteNotFound(note_id=str(note_id))


def list_notes(search=None, status=None, coffee_type=None, payment_status=None):
    qs = BuyingWeightNote.objects.select_related("trader", "weighbridge_reading__entry", "created_by")
    if search:
        qs = qs.filter(
            Q(bwn_number__icontains=search)
            | Q(truck_number__icontains=search)
            | Q(trader__name__icontains=search)
        )
    if status and status != "all":
        qs = qs.filter(status=status)
    if coffee_type and coffee_type != "all":
        qs = qs.filter(coffee_type=coffee_type)
    if payment_status and payment_status != "all":
        qs = qs.filter(payment_status=payment_status)
    return qs.order_by("-created_at", "-pk")


def note_stats() -> dict:
    qs = BuyingWeightNote.objects.all()
    total_amount = qs.aggregate(s=Sum("total_amount_ugx"))["s"] or 0
    return {
        "total_bwns": qs.count(),
        "pending_bwns": qs.filter(status__in=OPEN_STATES).count(),
        "completed_bwns": qs.filter(status=BWNStatus.COMPLETED).count(),
        "total_amount_ugx": total_amount,
        "arabica_count": qs.filter(coffee_type=BuyingWeightNote.ARABICA).count(),
        "robusta_count": qs.filter(coffee_type=BuyingWeightNote.ROBUSTA).count(),
    }


#
# ----------------------------------------------------------------------
# Creation & pre-lock edits
# ----------------------------------------------------------------------
#
def create_note(
    reading_id,
    coffee_type,
    moisture_content,
    price_per_kg,
    *,
    actor=None,
    outturn=None,
    quality_analysis_no=None,
    buying_centre=None,
) -> BuyingWeightNote:
    """Turn a weighbridge reading into a priced note in WEIGHED state."""
    _check_coffee_type(coffee_type)
    _check_moisture(moisture_content)
    _check_price(price_per_kg)

    for attempt in range(NUMBERING_ATTEMPTS):
        try:
            with transaction.atomic():
                try:
                    reading = (
                        WeighbridgeReading.objects.select_for_update()
                        .select_related("entry")
                        .get(pk=reading_id)
                    )
                except (WeighbridgeReading.DoesNotExist, ValueError, TypeError):
                    raise ReadingNotFound(reading_id=str(reading_id))

                existing = BuyingWeightNote.objects.filter(weighbridge_reading=reading).first()
                if reading.converted or existing:
                    raise ReadingAlreadyConverted(
                        f"BWN already exists for this reading: {existing.bwn_number}"
                        if existing
                        else None,
                        reading_id=reading.pk,
                    )

                try:
                    trader = Trader.objects.get(pk=reading.entry.trader_id)
                except Trader.DoesNotExist:
                    raise TraderNotFound(trader_id=str(reading.entry.trader_id))
                ensure_eligible(trader)

                amounts = derive(reading.net_weight_kg, moisture_content, price_per_kg)
                note = BuyingWeightNote.objects.create(
                    bwn_number=next_bwn_number(),
                    weighbridge_reading=reading,
                    trader=trader,
                    truck_number=reading.entry.truck_number,
                    delivery_date=reading.timestamp,
                    coffee_type=coffee_type,
                    gross_weight_kg=reading.gross_weight_kg,
                    tare_weight_kg=reading.tare_weight_kg,
                    net_weight_kg=reading.net_weight_kg,
                    moisture_content=moisture_content,
                    moisture_deduction_kg=amounts.moisture_deduction_kg,
                    final_net_weight_kg=amounts.final_net_weight_kg,
                    price_per_kg_ugx=price_per_kg,
                    total_amount_ugx=amounts.total_amount_ugx,
                    outturn=outturn or "",
                    quality_analysis_no=quality_analysis_no or "",
                    buying_centre=buying_centre or "",
                    status=BWNStatus.WEIGHED,
                    payment_status=PaymentStatus.PENDING,
                    created_by=_user_or_none(actor),
                )
                WeighbridgeReading.objects.filter(pk=reading.pk).update(converted=True)
            break
        except IntegrityError:
            existing = BuyingWeightNote.objects.filter(weighbridge_reading_id=reading_id).first()
            if existing is not None:
                # Another request converted the same reading first.
                raise ReadingAlreadyConverted(
                    f"BWN already exists for this reading: {existing.bwn_number}",
                    reading_id=str(reading_id),
                )
            # Lost the insert of this month's NoteSequence row; it exists now.
            logger.warning(
                "BWN number allocation collided for reading %s (attempt %s)", reading_id, attempt + 1
            )
    else:
        raise ConcurrencyConflict(
            BWNStatus.PENDING_WEIGHING,
            BWNStatus.WEIGHED,
            "Could not allocate a BWN number; retry the request",
            reading_id=str(reading_id),
        )

    logger.info(
        "Created %s for trader %s: net=%s deduction=%s final=%s total=%s UGX",
        note.bwn_number,
        trader.trader_code,
        note.net_weight_kg,
        note.moisture_deduction_kg,
        note.final_net_weight_kg,
        note.total_amount_ugx,
    )
    return note


def _compare_and_set(note: BuyingWeightNote, **changes) -> int:
    changes.setdefault("updated_at", timezone.now())
    return BuyingWeightNote.objects.filter(
        pk=note.pk, status=note.status, version=note.version
    ).update(version=F("version") + 1, **changes)


def _conflict(note: BuyingWeightNote, target, what: str):
    current = (
        BuyingWeightNote.objects.filter(pk=note.pk).values_list("status", flat=True).first()
    )
    logger.warning(
        "Concurrent update lost on %s (%s): expected status %s v%s, now %s",
        note.bwn_number,
        what,
        note.status,
        note.version,
        current,
    )
    return ConcurrencyConflict(
        note.status,
        target,
        f"{note.bwn_number} was changed by another request; reload and retry",
        current=current,
    )


def edit_note(
    note_id,
    *,
    moisture_content=None,
    price_per_kg=None,
    coffee_type=None,
    outturn=None,
    quality_analysis_no=None,
    buying_centre=None,
    expected_version=None,
) -> BuyingWeightNote:
    """Apply one edit request to a note with a single compare-and-set.

    Moisture, price and coffee type are only editable while the note is
    WEIGHED; descriptive fields stay editable until a terminal state. Every
    field is checked before anything is written, so a refused request leaves
    the note as it was.
    """
    note = get_note(note_id)
    if note.status in TERMINAL_STATES:
        raise NoteLocked(
            f"{note.bwn_number} is {note.status} and can no longer be edited",
            status=note.status,
            note_id=note.pk,
        )
    rederive = moisture_content is not None or price_per_kg is not None
    locked_fields = rederive or coffee_type is not None
    if locked_fields and note.status != BWNStatus.WEIGHED:
        raise NoteLocked(status=note.status, note_id=note.pk)
    if expected_version is not None and expected_version != note.version:
        raise _conflict(note, note.status, "edit")

    changes = {}
    if coffee_type is not None:
        _check_coffee_type(coffee_type)
        changes["coffee_type"] = coffee_type
    if rederive:
        moisture = note.moisture_content if moisture_content is None else moisture_content
        price = note.price_per_kg_ugx if price_per_kg is None else price_per_kg
        _check_moisture(moisture)
        _check_price(price)
        amounts = derive(note.net_weight_kg, moisture, price)
        changes.update(
            moisture_content=moisture,
            price_per_kg_ugx=price,
            moisture_deduction_kg=amounts.moisture_deduction_kg,
            final_net_weight_kg=amounts.final_net_weight_kg,
            total_amount_ugx=amounts.total_amount_ugx,
        )
    for field, value in (
        ("outturn", outturn),
        ("quality_analysis_no", quality_analysis_no),
        ("buying_centre", buying_centre),
    ):
        if value is not None:
            changes[field] = value
    if not changes:
        return note

    with transaction.atomic():
        updated = _compare_and_set(note, **changes)
    if not updated:
        current = BuyingWeightNote.objects.filter(pk=note.pk).values_list("status", flat=True).first()
        if locked_fields and current != BWNStatus.WEIGHED:
            raise NoteLocked(status=current, note_id=note.pk)
        raise _conflict(note, note.status, "edit")

    if rederive:
        logger.info(
            "Re-derived %s: moisture=%s price=%s final=%s total=%s",
            note.bwn_number,
            changes["moisture_content"],
            changes["price_per_kg_ugx"],
            changes["final_net_weight_kg"],
            changes["total_amount_ugx"],
        )
    note.refresh_from_db()
    return note


def update_inputs(note_id, *, moisture_content=None, price_per_kg=None, expected_version=None) -> BuyingWeightNote:
    """Edit moisture and/or price and re-run the full derivation."""
    if moisture_content is None and price_per_kg is None:
        raise ValidationError("Nothing to update: give moisture content and/or price per kg")
    return edit_note(
        note_id,
        moisture_content=moisture_content,
        price_per_kg=price_per_kg,
        expected_version=expected_version,
    )


def update_details(
    note_id,
    *,
    coffee_type=None,
    outturn=None,
    quality_analysis_no=None,
    buying_centre=None,
    expected_version=None,
) -> BuyingWeightNote:
    """Edit descriptive fields. Coffee type follows the same lock as price."""
    return edit_note(
        note_id,
        coffee_type=coffee_type,
        outturn=outturn,
        quality_analysis_no=quality_analysis_no,
        buying_centre=buying_centre,
        expected_version=expected_version,
    )


#
# ----------------------------------------------------------------------
# Status transitions
# ----------------------------------------------------------------------
#
def _transition_changes(note: BuyingWeightNote, source, target, reason, actor) -> dict:
    """Check the guard for ``source -> target`` and return the side fields to write."""
    now = timezone.now()
    if target == BWNStatus.REJECTED:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to reject a note", to=target)
        return {"rejection_reason": reason, "rejected_at": now}

    if target == BWNStatus.PAYMENT_APPROVED:
        if not note.qc_outcome:
            raise IllegalTransition(source, target, "QC outcome has not been recorded yet")
        if note.qc_outcome == QCOutcome.REJECTED:
            raise IllegalTransition(
                source, target, "QC rejected this delivery; the note can only be rejected"
            )
        if note.qc_outcome == QCOutcome.BORDERLINE and not note.qc_borderline_accepted:
            raise IllegalTransition(
                source, target, "Borderline QC outcome was not accepted for payment"
            )
        return {
            "payment_status": PaymentStatus.APPROVED,
            "approved_by": _user_or_none(actor),
            "approved_at": now,
        }

    if target == BWNStatus.COMPLETED:
        if note.payment_status != PaymentStatus.PAID:
            raise IllegalTransition(source, target, "Payment has not been confirmed as PAID")
        return {"completed_at": now}

    return {}


def transition(note_id, to_status, *, reason=None, actor=None, expected_status=None) -> BuyingWeightNote:
    """Move a note to ``to_status`` if the transition table and guards allow it.

    Entering COMPLETED or REJECTED queues a performance recompute for the
    trader; it runs after this transaction commits.
    """
    target = _parse_status(to_status)
    expected = _parse_status(expected_status, "expected_status") if expected_status else None
    note = get_note(note_id)
    source = BWNStatus(note.status)

    if expected is not None and expected != source:
        raise ConcurrencyConflict(
            expected,
            target,
            f"{note.bwn_number} is {source}, not {expected}; reload and retry",
            current=source,
        )
    if not can_transition(source, target):
        raise IllegalTransition(source, target)

    changes = _transition_changes(note, source, target, reason, actor)
    with transaction.atomic():
        updated = _compare_and_set(note, status=target, **changes)
        if not updated:
            raise _conflict(note, target, "transition")
        if target in TERMINAL_STATES:
            schedule_recompute(note.trader_id)

    logger.info("%s: %s -> %s", note.bwn_number, source, target)
    note.refresh_from_db()
    return note


def reject(note_id, reason, *, actor=None) -> BuyingWeightNote:
    return transition(note_id, BWNStatus.REJECTED, reason=reason, actor=actor)


#
# ----------------------------------------------------------------------
# Collaborator inputs (QC lab, payments)
# ----------------------------------------------------------------------
#
def record_qc_outcome(
    note_id,
    outcome,
    *,
    borderline_accepted=False,
    inspector=None,
    defect_count=0,
    **measurements,
) -> BuyingWeightNote:
    """Store the QC lab's verdict for a note that is AWAITING_QC.

    ``borderline_accepted`` is the lab's call on whether a BORDERLINE lot may
    still be paid; it is ignored for other outcomes.
    """
    try:
        outcome = QCOutcome(outcome)
    except ValueError:
        raise ValidationError(f"Unknown QC outcome {outcome!r}", outcome=outcome)
    if not _is_int(defect_count) or not 0 <= defect_count <= MAX_DEFECT_COUNT:
        raise ValidationError(
            f"Defect count must be between 0 and {MAX_DEFECT_COUNT}", defect_count=defect_count
        )
    unknown = set(measurements) - QC_MEASUREMENTS
    if unknown:
        raise ValidationError(f"Unknown QC fields: {', '.join(sorted(unknown))}")

    note = get_note(note_id)
    if note.status != BWNStatus.AWAITING_QC:
        raise IllegalTransition(
            note.status,
            BWNStatus.AWAITING_QC,
            f"QC outcomes can only be recorded while the note is AWAITING_QC (it is {note.status})",
        )

    accepted = outcome == QCOutcome.BORDERLINE and bool(borderline_accepted)
    with transaction.atomic():
        updated = _compare_and_set(
            note, qc_outcome=outcome, qc_borderline_accepted=accepted
        )
        if not updated:
            raise _conflict(note, note.status, "record QC outcome")
        defaults = {
            "outcome": outcome,
            "defect_count": defect_count,
            "inspector": _user_or_none(inspector),
            "inspected_at": timezone.now(),
        }
        defaults.update(measurements)
        QualityInspection.objects.update_or_create(note=note, defaults=defaults)

    logger.info("%s QC outcome %s (borderline accepted=%s)", note.bwn_number, outcome, accepted)
    note.refresh_from_db()
    return note


def confirm_payment(note_id, *, actor=None) -> BuyingWeightNote:
    """Mark an approved note as PAID. Repeating the call is a no-op."""
    note = get_note(note_id)
    if note.payment_status == PaymentStatus.PAID:
        return note
    if note.status != BWNStatus.PAYMENT_APPROVED or note.payment_status != PaymentStatus.APPROVED:
        raise IllegalTransition(
            note.status,
            BWNStatus.PAYMENT_APPROVED,
            f"Payment can only be confirmed once the note is PAYMENT_APPROVED (it is {note.status})",
        )
    with transaction.atomic():
        updated = _compare_and_set(
            note, payment_status=PaymentStatus.PAID, paid_at=timezone.now()
        )
    if not updated:
        raise _conflict(note, note.status, "confirm payment")
    logger.info("%s payment confirmed", note.bwn_number)
    note.refresh_from_db()
    return note
