# Overview: Pure pricing calculations for bills; no database access.

"""
Pricing invariants (authoritative)

- Money is integer cents end to end; the only rounding step is the percentage
  tax, rounded half-up to the nearest cent.
- Line amount = qty * rate_cents * billing_days (billing_days is 1 for sales).
- subtotal = SUM(line amounts); total = subtotal + transport + tax - advance.
- No floor at zero on the total: an advance larger than the bill is the
  caller's policy decision (see billing_service).
- Recomputing from stored items and tax config reproduces the stored totals
  exactly, because every input is stored in the same integer units.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping

from shopledger.time_utils import elapsed_whole_hours


BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    tax_amount_cents: int
    transport_fees_cents: int
    advance_cents: int
    total_cents: int

    @property
    def pre_advance_total_cents(self) -> int:
        return self.subtotal_cents + self.transport_fees_cents + self.tax_amount_cents


def round_half_up_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def rental_days(from_dt: datetime | None, to_dt: datetime | None) -> int:
    """
    Whole 24-hour periods between two datetimes, rounded up.

    Elapsed time is first truncated to whole hours, then ceil(hours / 24),
    clamped to >= 0. Open-ended ranges (to_dt None) yield 0.

    >>> rental_days(datetime(2024, 1, 1, 9), datetime(2024, 1, 3, 9))
    2
    >>> rental_days(datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 20))
    1
    """
    if from_dt is None or to_dt is None:
        return 0
    hours = elapsed_whole_hours(from_dt, to_dt)
    if hours <= 0:
        return 0
    return math.ceil(hours / 24)


def billing_days(from_dt: datetime | None, to_dt: datetime | None) -> int:
    """Multiplier applied to rental line amounts; never less than one day."""
    days = rental_days(from_dt, to_dt)
    return days if days > 0 else 1


def line_amount_cents(qty: int, rate_cents: int, days: int = 1) -> int:
    return qty * rate_cents * days


def compute_tax_cents(subtotal_cents: int, tax_mode: str, tax_value: int) -> int:
    """
    percentage: tax_value is basis points (1800 = 18%), rounded half-up.
    manual: tax_value is the tax amount in cents, returned unchanged.
    """
    if tax_mode == "manual":
        return tax_value
    if tax_mode == "percentage":
        return round_half_up_cents(Decimal(subtotal_cents) * Decimal(tax_value) / BPS_DENOMINATOR)
    raise ValueError(f"unknown tax mode: {tax_mode}")


def compute_totals(
    items: Iterable[Mapping],
    tax_mode: str,
    tax_value: int,
    advance_cents: int,
    transport_fees_cents: int = 0,
    rental_days: int = 1,
) -> Totals:
    """
    Compute bill totals from line items.

    Each item needs "qty" and "rate_cents"; stored "amount_cents" values are
    ignored and recomputed so that a tampered or stale amount cannot leak
    into the total.
    """
    days = rental_days if rental_days and rental_days > 0 else 1
    subtotal = sum(line_amount_cents(int(item["qty"]), int(item["rate_cents"]), days) for item in items)
    tax = compute_tax_cents(subtotal, tax_mode, tax_value)
    total = subtotal + transport_fees_cents + tax - advance_cents
    return Totals(
        subtotal_cents=subtotal,
        tax_amount_cents=tax,
        transport_fees_cents=transport_fees_cents,
        advance_cents=advance_cents,
        total_cents=total,
    )


def recompute_bill_totals(bill) -> Totals:
    """Recompute totals from a persisted bill's own items and tax config."""
    tax_value = bill.tax_amount_cents if bill.tax_mode == "manual" else bill.tax_rate_bps
    return compute_totals(
        bill.items or [],
        bill.tax_mode,
        tax_value,
        bill.advance_cents,
        transport_fees_cents=bill.transport_fees_cents,
        rental_days=bill.billing_days,
    )
