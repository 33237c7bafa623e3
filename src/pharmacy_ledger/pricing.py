"""Pricing rules for pharmacy bills.

Pure functions only: nothing here touches the workbook or emits
notifications. Inputs are expected to have passed the validation helpers in
:mod:`pharmacy_ledger.core_logic`; the calculator does not re-check signs or
types of prices and quantities.

Order of application:

1. per-line discount (``PERCENT`` of the sell price or a ``FLAT`` amount),
   floored so a unit never sells below zero;
2. GST at :data:`~pharmacy_ledger.constants.TAX_RATE` on the subtotal when
   requested;
3. a whole-bill percentage discount on subtotal plus tax.

The whole-bill discount is charged entirely against profit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Union

from .constants import TAX_RATE, DiscountType
from .data_manager import CartLine


ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BillTotals:
    """Financial breakdown of a cart."""

    sub_total: Decimal
    gst_amount: Decimal
    gross_total: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    grand_total: Decimal
    profit: Decimal


def line_discount(line: CartLine) -> Decimal:
    """Return the per-unit discount a line's discount mode grants."""

    if line.item_discount_type is DiscountType.PERCENT:
        return line.sell_price * line.item_discount_value / HUNDRED
    return line.item_discount_value


def effective_unit_price(line: CartLine) -> Decimal:
    """Apply the line's discount to its sell price, never going below zero."""

    return max(ZERO, line.sell_price - line_discount(line))


def line_total(line: CartLine) -> Decimal:
    return effective_unit_price(line) * line.quantity


def normalize_discount_percent(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Coerce a whole-bill discount into the closed range ``[0, 100]``.

    Negative, NaN and non-numeric inputs count as no discount; anything above
    100 is capped at a full discount.
    """

    if value is None:
        return ZERO
    try:
        percent = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    if percent.is_nan() or percent < ZERO:
        return ZERO
    if percent > HUNDRED:
        return HUNDRED
    return percent


def compute_totals(
    cart: Iterable[CartLine],
    tax_enabled: bool,
    bill_discount_percent: Union[Decimal, int, float, str, None] = ZERO,
) -> BillTotals:
    """Compute subtotal, tax, bill discount, grand total and profit for a cart.

    Args:
        cart (Iterable[CartLine]): Validated cart lines. An empty cart yields
            all-zero totals.
        tax_enabled (bool): Whether GST applies to this bill.
        bill_discount_percent: Whole-bill discount; normalized through
            :func:`normalize_discount_percent`.

    Returns:
        BillTotals: ``grand_total == gross_total - discount_amount`` and
            ``profit == margin - discount_amount`` where margin is the sum of
            ``(effective price - buy price) * quantity`` over all lines.
    """

    sub_total = ZERO
    margin = ZERO
    for line in cart:
        unit_price = effective_unit_price(line)
        sub_total += unit_price * line.quantity
        margin += (unit_price - line.buy_price) * line.quantity

    gst_amount = sub_total * TAX_RATE if tax_enabled else ZERO
    gross_total = sub_total + gst_amount
    discount_percentage = normalize_discount_percent(bill_discount_percent)
    discount_amount = gross_total * discount_percentage / HUNDRED
    grand_total = gross_total - discount_amount

    return BillTotals(
        sub_total=sub_total,
        gst_amount=gst_amount,
        gross_total=gross_total,
        discount_percentage=discount_percentage,
        discount_amount=discount_amount,
        grand_total=grand_total,
        profit=margin - discount_amount,
    )
