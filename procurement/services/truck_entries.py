from __future__ import annotations

import logging

from django.db.models import Q

from procurement.exceptions import EntryNotFound, ValidationError
from procurement.models import TruckEntry
from procurement.services.traders import get_trader

logger = logging.getLogger(__name__)


def register_entry(
    truck_number: str,
    driver_name: str,
    trader_id,
    security_officer,
    *,
    driver_phone: str | None = None,
    expected_arrival=None,
    notes: str | None = None,
) -> TruckEntry:
    """Register a truck at the gate."""
    truck_number = (truck_number or "").strip().upper()
    driver_name = (driver_name or "").strip()
    if not truck_number or not driver_name:
        raise ValidationError("Truck number and driver name are required")
    if security_officer is None:
        raise ValidationError("Security officer is required")
    trader = get_trader(trader_id)

    entry = TruckEntry.objects.create(
        truck_number=truck_number,
        driver_name=driver_name,
        driver_phone=driver_phone or "",
        trader=trader,
        security_officer=security_officer,
        expected_arrival=expected_arrival,
        notes=notes or "",
    )
    logger.info("Truck %s registered for trader %s", entry.truck_number, trader.trader_code)
    return entry


def get_entry(entry_id) -> TruckEntry:
    try:
        return TruckEntry.objects.select_related("trader").get(pk=entry_id)
    except (TruckEntry.DoesNotExist, ValueError, TypeError):
        raise EntryNotFound(entry_id=str(entry_id))


def pending_entries(limit: int = 100):
    """Entries still waiting for the weighbridge, newest first."""
    return (
        TruckEntry.objects.filter(consumed=False)
        .select_related("trader", "security_officer")
        .order_by("-arrival_time")[:limit]
    )


def search_entries(search: str | None = None):
    qs = TruckEntry.objects.select_related("trader", "security_officer")
    if search:
        qs = qs.filter(
            Q(truck_number__icontains=search)
            | Q(driver_name__icontains=search)
            | Q(driver_phone__icontains=search)
        )
    return qs.order_by("-arrival_time")


def mark_consumed(entry: TruckEntry) -> None:
    """Flag the entry as weighed. Called inside the reading transaction."""
    TruckEntry.objects.filter(pk=entry.pk).update(consumed=True)
    entry.consumed = True
