"""Payment-ledger reconciliation engine.

Keeps each order's payment state mirrored by at most one entry across the
Cash-in-Hand, Cash-in-Bank and Cash-in-Cheque ledgers of its order kind.

The engine only has per-store CRUD to work with; there is no transaction
spanning the order store and the ledgers. Every update therefore follows the
same search-then-reconcile protocol:

1. locate the existing entry for the order id (Hand, Bank, Cheque);
2. compute the target ledger from the order's latest payment;
3. create, update, delete or migrate to close the gap;
4. upsert the payable/receivable summary, best effort.

Because step 1 always re-reads the ledgers, re-running an operation after a
partial failure converges on the same end state instead of duplicating rows.
Two concurrent operations on the same order can still race; callers must
serialise them.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from . import log
from .balance import ZERO, balance, latest_payment, payment_status, total_paid
from .constants import (
    LEDGER_FOR_PAYMENT_TYPE,
    LEDGER_SEARCH_ORDER,
    LedgerKind,
    OrderKind,
    PaymentType,
)
from .data_manager import LedgerEntryRow, OrderRow, SummaryRow
from .exceptions import (
    LedgerIntegrityError,
    StoreError,
    TransientStoreError,
    ValidationError,
)


MUTABLE_ORDER_FIELDS = (
    "counterpart_id",
    "product_id",
    "warehouse_id",
    "quantity",
    "total",
    "date",
    "due_date",
    "payments",
)


class ReconcileAction(str, Enum):
    """What the engine did to the ledgers for one operation."""

    NOOP = "noop"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MIGRATE = "migrate"


@dataclass(frozen=True)
class OrderLabels:
    """Display names copied into ledger entries and summaries."""

    counterpart_name: str
    product_name: str


@dataclass(frozen=True)
class StoreBundle:
    """The order store, its three ledgers and its summary store.

    ``summaries`` may be ``None`` when no payable/receivable side record is
    kept for this order kind.
    """

    order_kind: OrderKind
    orders: Any
    ledgers: Mapping[LedgerKind, Any]
    summaries: Optional[Any] = None

    def __post_init__(self) -> None:
        missing = [kind.value for kind in LEDGER_SEARCH_ORDER if kind not in self.ledgers]
        if missing:
            raise ValueError(f"StoreBundle is missing ledgers: {', '.join(missing)}")


@dataclass(frozen=True)
class LedgerMatch:
    """An existing ledger entry and the ledger it was found in."""

    ledger_kind: LedgerKind
    entry: LedgerEntryRow


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of a create, update or delete.

    ``entry`` is the ledger entry that now mirrors the order (``None`` when
    the order has no payment or was deleted). ``summary_error`` holds the
    failure of the best-effort summary write, if any.
    """

    order: OrderRow
    action: ReconcileAction
    ledger_kind: Optional[LedgerKind] = None
    entry: Optional[LedgerEntryRow] = None
    summary_error: Optional[Exception] = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_order(order: OrderRow) -> None:
    """Reject orders that break the amount and payment rules.

    Runs before any store is touched, so a rejected order leaves no trace.

    Raises:
        ValidationError: On a non-positive quantity or total, a negative
            payment, payments exceeding the total, more than one active
            payment, or a positive payment with an unknown type or a bank
            payment without an account number.
    """
    if order.quantity <= 0:
        log.error("Quantity validation failed for order '%s': %s", order.order_id, order.quantity)
        raise ValidationError("Quantity must be greater than zero", details={"quantity": order.quantity})
    if order.total <= ZERO:
        log.error("Total validation failed for order '%s': %s", order.order_id, order.total)
        raise ValidationError("Total amount must be greater than zero", details={"total": str(order.total)})
    if len(order.payments) > 1:
        raise ValidationError(
            "An order carries a single current payment",
            details={"payments": len(order.payments)},
        )

    for payment in order.payments:
        if payment.amount < ZERO:
            raise ValidationError("Payment amount cannot be negative", details={"amount": str(payment.amount)})
        if payment.amount == ZERO:
            continue
        try:
            payment_type = PaymentType(payment.payment_type)
        except ValueError as exc:
            raise ValidationError(f"Unsupported payment type: {payment.payment_type}") from exc
        if payment_type is PaymentType.BANK and not (payment.account_number or "").strip():
            raise ValidationError("Account number is required for bank payments")

    paid = total_paid(order)
    if paid > order.total:
        log.error("Payment of %s exceeds total %s for order '%s'", paid, order.total, order.order_id)
        raise ValidationError(
            "Payment amount cannot exceed total amount",
            details={"paid": str(paid), "total": str(order.total)},
        )


# ---------------------------------------------------------------------------
# Search and planning
# ---------------------------------------------------------------------------


def _call(
    step: str,
    func: Callable[..., Any],
    *args: Any,
    order: Optional[OrderRow] = None,
    resume_command: str = "reconcile",
) -> Any:
    """Invoke a store method, classifying store failures as retryable.

    ``order`` is the persisted order the step works on; its keys travel with
    the error so the caller knows which command finishes the job.
    """
    try:
        return func(*args)
    except StoreError as exc:
        log.error("%s failed: %s", step, exc)
        raise TransientStoreError(
            step,
            exc,
            record_id=order.record_id if order is not None else None,
            order_kind=order.order_kind if order is not None else None,
            resume_command=resume_command,
        ) from exc


def locate_ledger_entry(stores: StoreBundle, order_id: str) -> Optional[LedgerMatch]:
    """Find the ledger entry tied to ``order_id``.

    Ledgers are read Hand, Bank, Cheque and the first match is returned. All
    three are always read so that a duplicate left behind by an earlier race
    is reported instead of being silently shadowed.

    Raises:
        LedgerIntegrityError: If more than one entry references ``order_id``.
        TransientStoreError: If a ledger cannot be listed.
    """
    matches = []
    for kind in LEDGER_SEARCH_ORDER:
        store = stores.ledgers[kind]
        entries = _call(f"search {kind.value} ledger", store.list)
        for entry in entries:
            if entry.order_id == order_id:
                matches.append(LedgerMatch(ledger_kind=kind, entry=entry))
        log.debug("Searched %s for '%s': %d entries scanned", kind.value, order_id, len(entries))

    if len(matches) > 1:
        locations = [(match.ledger_kind.value, match.entry.entry_id) for match in matches]
        log.error("Ledger integrity violated for order '%s': %s", order_id, locations)
        raise LedgerIntegrityError(order_id, locations)
    return matches[0] if matches else None


def target_ledger(order: OrderRow) -> Optional[LedgerKind]:
    """Ledger that should hold the order's entry, or ``None`` when unpaid."""
    payment = latest_payment(order)
    if payment is None or total_paid(order) <= ZERO:
        return None
    return LEDGER_FOR_PAYMENT_TYPE[PaymentType(payment.payment_type)]


def plan_reconciliation(existing: Optional[LedgerMatch], target: Optional[LedgerKind]) -> ReconcileAction:
    """Choose the ledger operation that moves ``existing`` to ``target``."""
    if existing is None:
        return ReconcileAction.NOOP if target is None else ReconcileAction.CREATE
    if target is None:
        return ReconcileAction.DELETE
    if existing.ledger_kind is target:
        return ReconcileAction.UPDATE
    return ReconcileAction.MIGRATE


def build_ledger_entry(order: OrderRow, labels: OrderLabels) -> LedgerEntryRow:
    """Snapshot ``order`` into an unsaved ledger entry (blank ``entry_id``)."""
    payment = latest_payment(order)
    return LedgerEntryRow(
        entry_id="",
        order_id=order.order_id,
        counterpart_name=labels.counterpart_name,
        product_name=labels.product_name,
        quantity=order.quantity,
        total_amount=order.total,
        amount_paid=total_paid(order),
        balance=balance(order),
        status=payment_status(order).value,
        payment_type=payment.payment_type if payment else "",
        account_number=payment.account_number if payment else None,
        note=payment.note if payment else None,
        date=payment.date if payment and payment.date else order.date,
        due_date=order.due_date,
    )


def _entry_patch(current: LedgerEntryRow, snapshot: LedgerEntryRow) -> dict[str, Any]:
    """Fields of ``snapshot`` that differ from ``current`` (``entry_id`` excluded)."""
    return {
        field.name: getattr(snapshot, field.name)
        for field in fields(LedgerEntryRow)
        if field.name != "entry_id" and getattr(snapshot, field.name) != getattr(current, field.name)
    }


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def reconcile_ledger(stores: StoreBundle, order: OrderRow, labels: OrderLabels) -> ReconciliationResult:
    """Run the search-then-reconcile protocol for an already persisted order.

    Safe to call repeatedly: once the ledgers mirror ``order`` a further call
    performs no writes.
    """
    existing = locate_ledger_entry(stores, order.order_id)
    target = target_ledger(order)
    action = plan_reconciliation(existing, target)
    snapshot = build_ledger_entry(order, labels)
    entry: Optional[LedgerEntryRow] = None

    if action is ReconcileAction.CREATE:
        entry = _call(f"create {target.value} entry", stores.ledgers[target].create, snapshot, order=order)
    elif action is ReconcileAction.UPDATE:
        patch = _entry_patch(existing.entry, snapshot)
        if not patch:
            action = ReconcileAction.NOOP
            entry = existing.entry
            log.debug("Ledger entry '%s' for '%s' already current", existing.entry.entry_id, order.order_id)
        else:
            entry = _call(
                f"update {target.value} entry",
                stores.ledgers[target].update,
                existing.entry.entry_id,
                patch,
                order=order,
            )
    elif action is ReconcileAction.DELETE:
        _call(
            f"delete {existing.ledger_kind.value} entry",
            stores.ledgers[existing.ledger_kind].delete,
            existing.entry.entry_id,
            order=order,
        )
    elif action is ReconcileAction.MIGRATE:
        # Not atomic: a failed create leaves no entry, which the next run recreates.
        _call(
            f"delete {existing.ledger_kind.value} entry",
            stores.ledgers[existing.ledger_kind].delete,
            existing.entry.entry_id,
            order=order,
        )
        entry = _call(f"create {target.value} entry", stores.ledgers[target].create, snapshot, order=order)

    log.info(
        "Reconciled order '%s': %s (%s -> %s)",
        order.order_id,
        action.value,
        existing.ledger_kind.value if existing else "none",
        target.value if target else "none",
    )
    summary_error = upsert_summary(stores, order, labels)
    return ReconciliationResult(
        order=order,
        action=action,
        ledger_kind=target,
        entry=entry,
        summary_error=summary_error,
    )


def on_order_created(stores: StoreBundle, order: OrderRow, labels: OrderLabels) -> ReconciliationResult:
    """Persist a new order and record its initial payment, if any.

    A brand-new order id cannot have a ledger entry yet, so no search is made.

    Raises:
        ValidationError: If ``order`` fails :func:`validate_order`.
        TransientStoreError: If a store call fails. When the order itself was
            stored, ``record_id`` is set and :func:`reconcile_ledger` finishes
            the job.
    """
    validate_order(order)
    stored = _call("create order", stores.orders.create, order)
    target = target_ledger(stored)
    entry = None
    action = ReconcileAction.NOOP
    if target is not None:
        entry = _call(
            f"create {target.value} entry",
            stores.ledgers[target].create,
            build_ledger_entry(stored, labels),
            order=stored,
        )
        action = ReconcileAction.CREATE

    log.info(
        "Created %s order '%s' (total=%s, paid=%s, ledger=%s)",
        stores.order_kind.value,
        stored.order_id,
        stored.total,
        total_paid(stored),
        target.value if target else "none",
    )
    summary_error = upsert_summary(stores, stored, labels)
    return ReconciliationResult(
        order=stored,
        action=action,
        ledger_kind=target,
        entry=entry,
        summary_error=summary_error,
    )


def on_order_updated(
    stores: StoreBundle,
    old_order: OrderRow,
    new_order: OrderRow,
    labels: OrderLabels,
) -> ReconciliationResult:
    """Persist ``new_order`` over ``old_order`` and bring the ledgers in line.

    ``old_order`` only supplies the store key; whether the payment type
    changed is decided from where the existing entry is actually found.

    Raises:
        ValidationError: If ``new_order`` is invalid or tries to change an
            immutable identifier.
        LedgerIntegrityError: If the order already has several entries.
        TransientStoreError: If a store call fails; re-running the same
            update is safe.
    """
    validate_order(new_order)
    if new_order.record_id != old_order.record_id or new_order.order_id != old_order.order_id:
        raise ValidationError(
            "Order identifiers cannot change",
            details={"record_id": old_order.record_id, "order_id": old_order.order_id},
        )

    patch = {name: getattr(new_order, name) for name in MUTABLE_ORDER_FIELDS}
    stored = _call("update order", stores.orders.update, old_order.record_id, patch, order=old_order)
    return reconcile_ledger(stores, stored, labels)


def on_order_deleted(stores: StoreBundle, order: OrderRow) -> ReconciliationResult:
    """Delete ``order`` and the ledger entry that mirrors it.

    The entry goes first and the order last, so a failure at any step leaves
    the order in place and re-running the delete finishes the job. A missing
    entry is fine: the order may never have been paid, or an earlier attempt
    already removed it.
    """
    existing = locate_ledger_entry(stores, order.order_id)

    if existing is not None:
        expected = target_ledger(order)
        if expected is not None and expected is not existing.ledger_kind:
            log.warning(
                "Order '%s' entry found in %s although its last payment points to %s",
                order.order_id,
                existing.ledger_kind.value,
                expected.value,
            )
        _call(
            f"delete {existing.ledger_kind.value} entry",
            stores.ledgers[existing.ledger_kind].delete,
            existing.entry.entry_id,
            order=order,
            resume_command="delete-order",
        )

    _call("delete order", stores.orders.delete, order.record_id, order=order, resume_command="delete-order")

    if existing is None:
        log.info("Deleted order '%s'; no ledger entry to remove", order.order_id)
        return ReconciliationResult(order=order, action=ReconcileAction.NOOP)
    log.info("Deleted order '%s' and its %s entry", order.order_id, existing.ledger_kind.value)
    return ReconciliationResult(order=order, action=ReconcileAction.DELETE, ledger_kind=existing.ledger_kind)


# ---------------------------------------------------------------------------
# Payable / receivable summary
# ---------------------------------------------------------------------------


def build_summary(order: OrderRow, labels: OrderLabels) -> SummaryRow:
    noun = "Purchase order" if OrderKind(order.order_kind) is OrderKind.PURCHASE else "Sales order"
    return SummaryRow(
        counterpart_id=order.counterpart_id,
        order_id=order.order_id,
        counterpart_name=labels.counterpart_name,
        description=f"{noun} {order.order_id}",
        total_amount=order.total,
        amount_paid=total_paid(order),
        balance=balance(order),
        status=payment_status(order).value,
    )


def upsert_summary(stores: StoreBundle, order: OrderRow, labels: OrderLabels) -> Optional[Exception]:
    """Create or refresh the summary line for ``order``; never raises on store failure.

    Order ids are unique within a summary sheet, so a line still filed under
    an earlier counterpart is re-keyed in place rather than duplicated.

    Returns:
        Exception | None: The store failure, so the caller can report it.
    """
    if stores.summaries is None:
        return None

    summary = build_summary(order, labels)
    try:
        existing = stores.summaries.find(order.counterpart_id, order.order_id)
        if existing is None:
            existing = next(
                (line for line in stores.summaries.list() if line.order_id == order.order_id),
                None,
            )
        if existing is None:
            stores.summaries.create(summary)
        else:
            patch = {
                "counterpart_id": summary.counterpart_id,
                "counterpart_name": summary.counterpart_name,
                "description": summary.description,
                "total_amount": summary.total_amount,
                "amount_paid": summary.amount_paid,
                "balance": summary.balance,
                "status": summary.status,
            }
            stores.summaries.update((existing.counterpart_id, existing.order_id), patch)
    except (StoreError, OSError) as exc:
        log.warning("Summary upsert for order '%s' failed: %s", order.order_id, exc)
        return exc
    return None
