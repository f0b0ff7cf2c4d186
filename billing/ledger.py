"""
Money arithmetic and status derivation for bills.

Everything here is a pure function over ``Decimal`` values so the rules
can be replayed from a bill's items and payment history alone.  Amounts
are rounded half-up to two places per line and once more for the total.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Union

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

# largest values the DecimalField(max_digits=12 / 10, decimal_places=2) columns hold
MAX_AMOUNT = Decimal('9999999999.99')
MAX_QUANTITY = Decimal('99999999.99')

STATUS_PENDING = 'pending'
STATUS_PARTIAL = 'partial'
STATUS_PAID = 'paid'
STATUS_CANCELLED = 'cancelled'

Number = Union[Decimal, int, str, float]


def to_money(value: Number) -> Decimal:
    """Coerce ``value`` to a two-place ``Decimal``.

    Floats go through ``str`` first so ``0.1`` becomes ``Decimal('0.10')``
    rather than its binary expansion.  Raises ``ValueError`` for values
    that are not numbers.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f'not a monetary amount: {value!r}')
    if not amount.is_finite():
        raise ValueError(f'not a monetary amount: {value!r}')
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_quantity(value: Number) -> Decimal:
    # quantities are stored on the same two-place scale as money
    return to_money(value)


def line_total(quantity: Number, unit_price: Number) -> Decimal:
    """``quantity * unit_price`` rounded to cents."""
    return to_money(to_quantity(quantity) * to_money(unit_price))


def compute_total(lines: Iterable[tuple[Number, Number]]) -> Decimal:
    """Sum of the rounded line totals for ``(quantity, unit_price)`` pairs."""
    total = ZERO
    for quantity, unit_price in lines:
        total += line_total(quantity, unit_price)
    return to_money(total)


def compute_paid(amounts: Iterable[Number]) -> Decimal:
    total = ZERO
    for amount in amounts:
        total += to_money(amount)
    return to_money(total)


def derive_status(total: Decimal, paid: Decimal, *, cancelled: bool = False) -> str:
    """Classify a bill from its total and the sum of its payments.

    Cancellation wins over everything else.  Nothing paid is pending
    (which covers a bill with no items at all), paying the total or more
    is paid, anything in between is partial.
    """
    if cancelled:
        return STATUS_CANCELLED
    if paid <= ZERO:
        return STATUS_PENDING
    if paid >= total:
        return STATUS_PAID
    return STATUS_PARTIAL


def remaining_balance(total: Decimal, paid: Decimal) -> Decimal:
    return max(to_money(total) - to_money(paid), ZERO)


def exceeds_amount_limit(value: Decimal) -> bool:
    return abs(value) > MAX_AMOUNT


def check_payment(amount: Decimal, total: Decimal, paid: Decimal) -> str | None:
    """Return the reason ``amount`` cannot be recorded, or ``None``.

    ``'non_positive'`` for zero or negative amounts, ``'exceeds_balance'``
    when it is larger than what is still owed.
    """
    if amount <= ZERO:
        return 'non_positive'
    if amount > remaining_balance(total, paid):
        return 'exceeds_balance'
    return None
