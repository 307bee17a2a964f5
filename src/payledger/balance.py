"""Pure balance and status derivations for orders.

Nothing here touches a store; every function is a total function of an
order's ``total`` and ``payments``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from .constants import PaymentStatus
from .data_manager import OrderRow, PaymentRow


ZERO = Decimal("0")


def total_paid(order: OrderRow) -> Decimal:
    """Sum of every recorded payment amount."""
    return sum((payment.amount for payment in order.payments), ZERO)


def balance(order: OrderRow) -> Decimal:
    """Outstanding amount, ``total - total_paid``."""
    _require_nonnegative_total(order.total)
    return order.total - total_paid(order)


def payment_status(order: OrderRow) -> PaymentStatus:
    """Classify ``order`` as unpaid, partially paid or paid."""
    return status_for(order.total, total_paid(order))


def status_for(total: Decimal, paid: Decimal) -> PaymentStatus:
    """Derive the status from raw amounts.

    ``Paid`` once ``paid`` reaches ``total``, ``Unpaid`` while nothing has
    been paid, ``Partially Paid`` in between. A zero total with nothing paid
    counts as paid.

    Raises:
        ValueError: If ``total`` is negative.
    """
    _require_nonnegative_total(total)
    if paid >= total:
        return PaymentStatus.PAID
    if paid > ZERO:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.UNPAID


def latest_payment(order: OrderRow) -> Optional[PaymentRow]:
    """The most recent payment, or ``None`` when nothing is recorded."""
    return order.payments[-1] if order.payments else None


def _require_nonnegative_total(total: Decimal) -> None:
    if total < ZERO:
        raise ValueError(f"Order total must not be negative: {total}")
