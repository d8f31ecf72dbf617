"""Trader performance rollup.

The rollup is recomputed from the trader's full note history every time a
note reaches COMPLETED or REJECTED. The stored row is replaced as a whole,
never patched with deltas, so a missed trigger is repaired by the next one.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from procurement.models import BuyingWeightNote, QualityInspection, Trader, TraderPerformance
from procurement.services.traders import get_trader
from procurement.states import BWNStatus, QCOutcome, TERMINAL_STATES

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")
NEUTRAL_CONSISTENCY = Decimal("50.00")
FULL_ON_TIME = Decimal("100.00")


def _q(x) -> Decimal:
    return Decimal(x).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _pct(part: int, whole: int) -> Decimal:
    return _q(Decimal(part) * 100 / Decimal(whole))


def _mean(values) -> Decimal:
    values = list(values)
    if not values:
        return _q(0)
    return _q(Decimal(sum(values)) / Decimal(len(values)))


@dataclass(frozen=True)
class PerformanceSnapshot:
    total_deliveries: int
    total_volume_kg: int
    accepted_deliveries: int
    rejected_deliveries: int
    borderline_deliveries: int
    quality_consistency_score: Decimal
    average_defect_count: Decimal
    average_moisture_content: Decimal
    on_time_delivery_rate: Decimal
    last_delivery_date: datetime | None

    @property
    def quality_acceptance_rate(self) -> Decimal:
        terminal = self.accepted_deliveries + self.borderline_deliveries + self.rejected_deliveries
        if not terminal:
            return _q(0)
        return _pct(self.accepted_deliveries, terminal)

    def as_dict(self) -> dict:
        return asdict(self)


def _arrived_on_time(entry, grace: timedelta) -> bool:
    arrived = timezone.localtime(entry.arrival_time).date()
    return arrived <= entry.expected_arrival + grace


def compute_snapshot(trader: Trader) -> PerformanceSnapshot:
    """Derive the rollup from the database without writing anything."""
    delivered = list(
        BuyingWeightNote.objects.filter(trader=trader)
        .exclude(status=BWNStatus.PENDING_WEIGHING)
        .select_related("quality_inspection", "weighbridge_reading__entry")
        .order_by("pk")
    )
    terminal = [n for n in delivered if n.status in TERMINAL_STATES]
    completed = [n for n in terminal if n.status == BWNStatus.COMPLETED]

    borderline = [n for n in completed if n.qc_outcome == QCOutcome.BORDERLINE]
    rejected = [n for n in terminal if n.status == BWNStatus.REJECTED]

    inspections = []
    for note in terminal:
        try:
            inspections.append(note.quality_inspection)
        except QualityInspection.DoesNotExist:
            continue

    if inspections:
        approved = sum(1 for i in inspections if i.outcome == QCOutcome.APPROVED)
        consistency = _pct(approved, len(inspections))
    else:
        consistency = NEUTRAL_CONSISTENCY

    grace = timedelta(days=getattr(settings, "ON_TIME_GRACE_DAYS", 0))
    scheduled = [
        n.weighbridge_reading.entry
        for n in terminal
        if n.weighbridge_reading.entry.expected_arrival is not None
    ]
    if scheduled:
        on_time = _pct(sum(1 for e in scheduled if _arrived_on_time(e, grace)), len(scheduled))
    else:
        on_time = FULL_ON_TIME

    return PerformanceSnapshot(
        total_deliveries=len(delivered),
        total_volume_kg=sum(n.final_net_weight_kg for n in completed),
        accepted_deliveries=len(completed) - len(borderline),
        rejected_deliveries=len(rejected),
        borderline_deliveries=len(borderline),
        quality_consistency_score=consistency,
        average_defect_count=_mean(i.defect_count for i in inspections),
        average_moisture_content=_mean(n.moisture_content for n in terminal),
        on_time_delivery_rate=on_time,
        last_delivery_date=max((n.delivery_date for n in delivered), default=None),
    )


def _write_changed(obj, values: dict) -> list[str]:
    changed = [f for f, v in values.items() if getattr(obj, f) != v]
    for f in changed:
        setattr(obj, f, values[f])
    return changed


@transaction.atomic
def recompute(trader_id) -> PerformanceSnapshot:
    """Rebuild one trader's performance row and summary fields.

    Recomputes for the same trader serialize on the trader row lock; the
    result only depends on committed notes, so running it twice in a row
    leaves the stored rows untouched the second time.
    """
    trader = get_trader(trader_id)
    trader = Trader.objects.select_for_update().get(pk=trader.pk)
    snap = compute_snapshot(trader)

    perf, _ = TraderPerformance.objects.select_for_update().get_or_create(trader=trader)
    perf_values = snap.as_dict()
    changed = _write_changed(perf, perf_values)
    if changed:
        perf.save(update_fields=changed + ["updated_at"])

    trader_changed = _write_changed(
        trader,
        {
            "total_deliveries": snap.total_deliveries,
            "total_volume_kg": snap.total_volume_kg,
            "quality_acceptance_rate": snap.quality_acceptance_rate,
        },
    )
    if trader_changed:
        trader.save(update_fields=trader_changed + ["updated_at"])

    logger.info(
        "Recomputed performance for %s: deliveries=%s accepted=%s rejected=%s borderline=%s%s",
        trader.trader_code,
        snap.total_deliveries,
        snap.accepted_deliveries,
        snap.rejected_deliveries,
        snap.borderline_deliveries,
        "" if changed or trader_changed else " (unchanged)",
    )
    return snap


def recompute_all(queryset=None) -> int:
    count = 0
    for trader_id in (queryset if queryset is not None else Trader.objects.all()).values_list("pk", flat=True):
        recompute(trader_id)
        count += 1
    return count


def schedule_recompute(trader_id) -> None:
    """Queue a recompute to run once the current transaction commits."""

    def _run():
        if getattr(settings, "PERFORMANCE_RECOMPUTE_ASYNC", False):
            from procurement.tasks import recompute_trader_performance

            recompute_trader_performance.delay(trader_id)
        else:
            recompute(trader_id)

    transaction.on_commit(_run)


def current_performance(trader_id) -> TraderPerformance:
    trader = get_trader(trader_id)
    perf, _ = TraderPerformance.objects.get_or_create(trader=trader)
    return perf
