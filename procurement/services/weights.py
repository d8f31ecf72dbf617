"""Weight and price arithmetic for buying weight notes.

All quantities are integers: kilograms, tenths of a percent for moisture and
whole Uganda shillings for money. Nothing here touches the database.

Policy: moisture at or below the baseline gives no deduction and no bonus.
Drier coffee is paid on its measured net weight only.
"""
from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings

from procurement.exceptions import InvalidWeight

DEFAULT_MOISTURE_BASELINE = 115  # 11.5%


@dataclass(frozen=True)
class Derivation:
    net_weight_kg: int
    moisture_deduction_kg: int
    final_net_weight_kg: int
    total_amount_ugx: int


def _baseline(baseline_tenths):
    if baseline_tenths is not None:
        return baseline_tenths
    return getattr(settings, "MOISTURE_BASELINE_TENTHS", DEFAULT_MOISTURE_BASELINE)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def net_weight(gross: int, tare: int) -> int:
    if not (_is_int(gross) and _is_int(tare)):
        raise InvalidWeight("Weights must be whole kilograms", gross=gross, tare=tare)
    if gross <= 0 or tare <= 0:
        raise InvalidWeight("Weights must be positive numbers", gross=gross, tare=tare)
    if gross <= tare:
        raise InvalidWeight(gross=gross, tare=tare)
    return gross - tare


def _round_half_up_div(numerator: int, denominator: int) -> int:
    # denominator > 0; numerator may be negative
    q, r = divmod(numerator, denominator)
    if 2 * r >= denominator:
        q += 1
    return q


def moisture_deduction(net_weight_kg: int, moisture_tenths: int, baseline_tenths: int | None = None) -> int:
    excess = moisture_tenths - _baseline(baseline_tenths)
    if excess <= 0:
        return 0
    return max(0, _round_half_up_div(net_weight_kg * excess, 1000))


def final_net_weight(net_weight_kg: int, deduction_kg: int) -> int:
    return max(0, net_weight_kg - deduction_kg)


def total_amount(final_net_weight_kg: int, price_per_kg: int) -> int:
    return final_net_weight_kg * price_per_kg


def derive(net_weight_kg: int, moisture_tenths: int, price_per_kg: int, baseline_tenths: int | None = None) -> Derivation:
    """Run the full chain used when a note is created or its inputs edited."""
    deduction = moisture_deduction(net_weight_kg, moisture_tenths, baseline_tenths)
    final = final_net_weight(net_weight_kg, deduction)
    return Derivation(
        net_weight_kg=net_weight_kg,
        moisture_deduction_kg=deduction,
        final_net_weight_kg=final,
        total_amount_ugx=total_amount(final, price_per_kg),
    )
