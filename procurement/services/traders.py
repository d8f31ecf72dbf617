from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.db.models.functions import Length
from django.utils import timezone

from procurement.exceptions import TraderNotEligible, TraderNotFound, ValidationError
from procurement.models import Trader, TraderPaymentTerms

logger = logging.getLogger(__name__)

STATUSES = {code for code, _ in Trader.STATUS_CHOICES}


def next_trader_code(year: int | None = None) -> str:
    """Return the next ``TRD-YYYY-NNN`` code for the given year."""
    year = year or timezone.localdate().year
    prefix = f"TRD-{year}-"
    # Longest code first: "-1000" must rank above "-999".
    last = (
        Trader.objects.filter(trader_code__startswith=prefix)
        .annotate(code_length=Length("trader_code"))
        .order_by("-code_length", "-trader_code")
        .values_list("trader_code", flat=True)
        .first()
    )
    last_num = int(last.rsplit("-", 1)[1]) if last else 0
    return f"{prefix}{last_num + 1:03d}"


def get_trader(trader_id) -> Trader:
    try:
        return Trader.objects.get(pk=trader_id)
    except (Trader.DoesNotExist, ValueError, TypeError):
        raise TraderNotFound(trader_id=str(trader_id))


def list_traders(search: str | None = None, status: str | None = None, include_inactive: bool = False):
    qs = Trader.objects.select_related("performance", "payment_terms")
    if not include_inactive:
        qs = qs.filter(is_active=True)
    if status and status != "all":
        qs = qs.filter(status=status)
    if search:
        qs = qs.filter(
            Q(name__icontains=search)
            | Q(trader_code__icontains=search)
            | Q(phone_number__icontains=search)
            | Q(district__icontains=search)
        )
    return qs.order_by("name", "pk")


def register_trader(name: str, phone_number: str, **details) -> Trader:
    """Create a trader; performance and payment terms rows follow via signals."""
    if not (name or "").strip():
        raise ValidationError("Trader name is required")
    if not (phone_number or "").strip():
        raise ValidationError("Trader phone number is required")
    status = details.get("status") or Trader.ACTIVE
    if status not in STATUSES:
        raise ValidationError(f"Unknown trader status {status}", status=status)
    details["status"] = status

    # Codes are unique; a concurrent registration just takes the next one.
    for _ in range(3):
        try:
            with transaction.atomic():
                trader = Trader.objects.create(
                    trader_code=next_trader_code(),
                    name=name.strip(),
                    phone_number=phone_number.strip(),
                    **details,
                )
        except IntegrityError:
            continue
        logger.info("Registered trader %s (%s)", trader.trader_code, trader.name)
        return trader
    raise ValidationError("Could not allocate a trader code, try again")


def set_status(trader_id, status: str) -> Trader:
    if status not in STATUSES:
        raise ValidationError(f"Unknown trader status {status}", status=status)
    trader = get_trader(trader_id)
    if trader.status != status:
        previous = trader.status
        trader.status = status
        trader.save(update_fields=["status", "updated_at"])
        logger.info("Trader %s status %s -> %s", trader.trader_code, previous, status)
    return trader


EDITABLE_FIELDS = {
    "name",
    "contact_person",
    "phone_number",
    "alternate_phone",
    "email",
    "physical_address",
    "district",
    "registration_number",
    "tin_number",
    "trust_score",
    "reliability_score",
    "preferred_payment_days",
    "notes",
}


PAYMENT_TERM_FIELDS = {
    "payment_days",
    "preferred_method",
    "bank_name",
    "account_number",
    "account_name",
    "mobile_money_number",
    "mobile_money_name",
    "requires_advance",
}


def update_trader(trader_id, payment_terms: dict | None = None, **changes) -> Trader:
    """Edit profile fields. Status and rollup fields are not editable here."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    unknown_terms = set(payment_terms or {}) - PAYMENT_TERM_FIELDS
    if unknown_terms:
        raise ValidationError(
            f"Unknown payment terms fields: {', '.join(sorted(unknown_terms))}"
        )
    for field in ("name", "phone_number"):
        if field in changes and not (changes[field] or "").strip():
            raise ValidationError(f"Trader {field.replace('_', ' ')} cannot be blank")
    trader = get_trader(trader_id)
    with transaction.atomic():
        for field, value in changes.items():
            setattr(trader, field, value)
        if changes:
            trader.save(update_fields=list(changes) + ["updated_at"])
        if payment_terms:
            terms, _ = TraderPaymentTerms.objects.get_or_create(trader=trader)
            for field, value in payment_terms.items():
                setattr(terms, field, value)
            terms.save()
    return trader


def deactivate(trader_id) -> Trader:
    """Soft delete: the trader disappears from listings but keeps its history."""
    trader = get_trader(trader_id)
    if trader.is_active:
        trader.is_active = False
        trader.save(update_fields=["is_active", "updated_at"])
        logger.info("Trader %s deactivated", trader.trader_code)
    return trader


def ensure_eligible(trader: Trader) -> Trader:
    if not trader.is_eligible:
        status = trader.status if trader.is_active else "INACTIVE"
        raise TraderNotEligible(
            f"Trader {trader.trader_code} is {status}; only ACTIVE traders can sell",
            trader_id=trader.pk,
            status=status,
        )
    return trader
