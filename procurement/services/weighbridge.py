from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from procurement.exceptions import (
    EntryAlreadyWeighed,
    EntryNotFound,
    ReadingNotFound,
    ValidationError,
)
from procurement.models import TruckEntry, WeighbridgeReading
from procurement.services import truck_entries
from procurement.services.weights import net_weight

logger = logging.getLogger(__name__)


def record_reading(entry_id, gross_weight_kg: int, tare_weight_kg: int, operator, notes: str | None = None) -> WeighbridgeReading:
    """Weigh a registered truck and consume its gate entry.

    - ``InvalidWeight`` when gross <= tare (checked before any lookup)
    - ``EntryNotFound`` / ``EntryAlreadyWeighed`` for the entry
    - the entry is marked consumed in the same transaction
    """
    if operator is None:
        raise ValidationError("Operator is required")
    net = net_weight(gross_weight_kg, tare_weight_kg)

    try:
        with transaction.atomic():
            try:
                entry = TruckEntry.objects.select_for_update().get(pk=entry_id)
            except (TruckEntry.DoesNotExist, ValueError, TypeError):
                raise EntryNotFound(entry_id=str(entry_id))
            if entry.consumed or WeighbridgeReading.objects.filter(entry=entry).exists():
                raise EntryAlreadyWeighed(entry_id=entry.pk)

            reading = WeighbridgeReading.objects.create(
                entry=entry,
                gross_weight_kg=gross_weight_kg,
                tare_weight_kg=tare_weight_kg,
                net_weight_kg=net,
                operator=operator,
                timestamp=timezone.now(),
                notes=notes or "",
            )
            truck_entries.mark_consumed(entry)
    except IntegrityError:
        # Lost the race on the one-reading-per-entry constraint.
        raise EntryAlreadyWeighed(entry_id=str(entry_id))

    logger.info(
        "Weighbridge reading %s for truck %s: gross=%s tare=%s net=%s",
        reading.pk,
        entry.truck_number,
        gross_weight_kg,
        tare_weight_kg,
        net,
    )
    return reading


def get_reading(reading_id) -> WeighbridgeReading:
    try:
        return WeighbridgeReading.objects.select_related("entry__trader", "operator").get(pk=reading_id)
    except (WeighbridgeReading.DoesNotExist, ValueError, TypeError):
        raise ReadingNotFound(reading_id=str(reading_id))


def unconverted_readings():
    """Readings that no buying weight note has been created from yet."""
    return (
        WeighbridgeReading.objects.filter(converted=False)
        .select_related("entry__trader", "operator")
        .order_by("-timestamp")
    )


def list_readings(search: str | None = None, unconverted: bool = False):
    qs = unconverted_readings() if unconverted else (
        WeighbridgeReading.objects.select_related("entry__trader", "operator").order_by("-timestamp")
    )
    if search:
        qs = qs.filter(
            Q(entry__truck_number__icontains=search)
            | Q(entry__driver_name__icontains=search)
            | Q(operator__username__icontains=search)
        )
    return qs
