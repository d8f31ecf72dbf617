from django.db import models


class BWNStatus(models.TextChoices):
    PENDING_WEIGHING = "PENDING_WEIGHING", "Pending weighing"
    WEIGHED = "WEIGHED", "Weighed"
    MOISTURE_TESTED = "MOISTURE_TESTED", "Moisture tested"
    PRICE_CALCULATED = "PRICE_CALCULATED", "Price calculated"
    AWAITING_QC = "AWAITING_QC", "Awaiting QC"
    PAYMENT_APPROVED = "PAYMENT_APPROVED", "Payment approved"
    COMPLETED = "COMPLETED", "Completed"
    REJECTED = "REJECTED", "Rejected"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    APPROVED = "APPROVED", "Approved"
    PAID = "PAID", "Paid"


class QCOutcome(models.TextChoices):
    APPROVED = "APPROVED", "Approved"
    BORDERLINE = "BORDERLINE", "Borderline"
    REJECTED = "REJECTED", "Rejected"


# Single source of truth for which status may follow which.
TRANSITIONS = {
    BWNStatus.PENDING_WEIGHING: frozenset({BWNStatus.WEIGHED, BWNStatus.REJECTED}),
    BWNStatus.WEIGHED: frozenset({BWNStatus.MOISTURE_TESTED, BWNStatus.REJECTED}),
    BWNStatus.MOISTURE_TESTED: frozenset({BWNStatus.PRICE_CALCULATED, BWNStatus.REJECTED}),
    BWNStatus.PRICE_CALCULATED: frozenset({BWNStatus.AWAITING_QC, BWNStatus.REJECTED}),
    BWNStatus.AWAITING_QC: frozenset({BWNStatus.PAYMENT_APPROVED, BWNStatus.REJECTED}),
    BWNStatus.PAYMENT_APPROVED: frozenset({BWNStatus.COMPLETED, BWNStatus.REJECTED}),
    BWNStatus.COMPLETED: frozenset(),
    BWNStatus.REJECTED: frozenset(),
}

TERMINAL_STATES = frozenset({BWNStatus.COMPLETED, BWNStatus.REJECTED})

# Statuses counted as "pending" on the dashboard stats.
OPEN_STATES = (
    BWNStatus.PENDING_WEIGHING,
    BWNStatus.WEIGHED,
    BWNStatus.MOISTURE_TESTED,
    BWNStatus.PRICE_CALCULATED,
)


def allowed_next(status) -> frozenset:
    return TRANSITIONS.get(BWNStatus(status), frozenset())


def can_transition(current, target) -> bool:
    return BWNStatus(target) in allowed_next(current)


def is_terminal(status) -> bool:
    return BWNStatus(status) in TERMINAL_STATES
