"""Business logic layer for payledger.

This module turns user intent (command objects) into calls on the
reconciliation engine. It owns the runtime context, resolves master data for
the denormalised ledger snapshot, and exposes the balance/status calculator
to callers. All workbook I/O goes through the data access layer and the
store adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log, reconciliation
# Calculator and error types are re-exported for callers of the service layer.
from .balance import balance, latest_payment, payment_status, status_for, total_paid  # noqa: F401
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    LEDGER_SEARCH_ORDER,
    LedgerKind,
    OrderKind,
    PaymentType,
)
from .exceptions import (  # noqa: F401
    BusinessRuleViolation,
    LedgerIntegrityError,
    MissingReferenceError,
    RecordNotFoundError,
    TransientStoreError,
    ValidationError,
)
from .reconciliation import OrderLabels, ReconciliationResult, StoreBundle
from .stores import LedgerStore, OrderStore, SummaryStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class PaymentCommand:
    """The single current payment submitted with an order."""

    amount: Decimal
    payment_type: PaymentType
    account_number: Optional[str] = None
    note: Optional[str] = None
    paid_on: Optional[date] = None


@dataclass(frozen=True)
class CreateOrderCommand:
    """User intent for creating a purchase or sales order."""

    order_kind: OrderKind
    counterpart_id: str
    product_id: str
    quantity: int
    total: Decimal
    warehouse_id: Optional[str] = None
    payment: Optional[PaymentCommand] = None
    order_date: Optional[date] = None
    due_date: Optional[date] = None


@dataclass(frozen=True)
class UpdateOrderCommand:
    """User intent for editing an existing order.

    Mirrors the order form: every editable value is resubmitted. ``payment``
    set to ``None`` clears the payment; ``None`` dates and warehouse keep the
    stored values.
    """

    order_kind: OrderKind
    record_id: str
    counterpart_id: str
    product_id: str
    quantity: int
    total: Decimal
    warehouse_id: Optional[str] = None
    payment: Optional[PaymentCommand] = None
    order_date: Optional[date] = None
    due_date: Optional[date] = None


def _resolve_date(candidate: Optional[date]) -> str:
    """Return ``candidate`` as an ISO date, defaulting to today in UTC."""

    resolved = candidate if candidate is not None else datetime.now(UTC).date()
    return resolved.isoformat()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_master_cache(context: RuntimeContext, name: str, loader, key_attr: str) -> Dict[str, Any]:
    """Populate a master-data bucket holding ``all`` rows and a ``by_id`` index.

    Only master data is cached. Orders and ledger entries are always re-read
    so reconciliation never acts on a stale view.
    """

    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = list(loader())
        bucket["all"] = rows
        bucket["by_id"] = {getattr(row, key_attr): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


def _products(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_master_cache(
        context, "products", lambda: data_manager.iter_products(context.workbook), "product_id"
    )


def _counterparts(context: RuntimeContext, order_kind: OrderKind) -> Dict[str, Any]:
    kind = OrderKind(order_kind)
    return _ensure_master_cache(
        context,
        f"counterparts:{kind.value}",
        lambda: data_manager.iter_counterparts(context.workbook, kind),
        "party_id",
    )


def _warehouses(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_master_cache(
        context, "warehouses", lambda: data_manager.iter_warehouses(context.workbook), "warehouse_id"
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Resolves ``config.ini`` (searching upwards from the working directory
    when ``config_path`` is omitted), parses settings, and opens the workbook
    holding orders, ledgers and summaries.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file.

    Returns:
        RuntimeContext: Fully populated context ready for order operations.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
    """Return cached product rows, active ones only unless asked otherwise."""
    rows = _products(context)["all"]
    return [row for row in rows if include_inactive or row.is_active]


def list_counterparts(
    context: RuntimeContext,
    order_kind: OrderKind,
    *,
    include_inactive: bool = False,
) -> List[data_manager.CounterpartRow]:
    """Return suppliers (purchases) or customers (sales)."""
    rows = _counterparts(context, order_kind)["all"]
    return [row for row in rows if include_inactive or row.is_active]


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    try:
        return _products(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_counterpart(context: RuntimeContext, order_kind: OrderKind, party_id: str) -> data_manager.CounterpartRow:
    """Resolve the supplier or customer an order of ``order_kind`` points at.

    Raises:
        MissingReferenceError: If ``party_id`` is unknown for that kind.
    """
    try:
        return _counterparts(context, order_kind)["by_id"][party_id]
    except KeyError as exc:
        noun = "supplier" if OrderKind(order_kind) is OrderKind.PURCHASE else "customer"
        log.warning("%s lookup failed for id '%s'", noun.capitalize(), party_id)
        raise MissingReferenceError(f"Unknown {noun} id: {party_id}") from exc


def get_warehouse(context: RuntimeContext, warehouse_id: str) -> data_manager.WarehouseRow:
    """Resolve a warehouse record by its identifier."""
    try:
        return _warehouses(context)["by_id"][warehouse_id]
    except KeyError as exc:
        log.warning("Warehouse lookup failed for id '%s'", warehouse_id)
        raise MissingReferenceError(f"Unknown warehouse id: {warehouse_id}") from exc


def add_product(
    context: RuntimeContext,
    *,
    product_id: str,
    product_name: str,
    unit_price: Decimal,
    is_active: bool = True,
) -> data_manager.ProductRow:
    """Register a product; identifiers must be unique."""
    if product_id in _products(context)["by_id"]:
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")
    require_nonnegative_money(unit_price)
    record = data_manager.ProductRow(product_id, product_name, unit_price, is_active)
    data_manager.append_product(context.workbook, record)
    _invalidate_cache(context, "products")
    log.info("Added product '%s' (%s)", product_id, product_name)
    return record


def add_counterpart(
    context: RuntimeContext,
    order_kind: OrderKind,
    *,
    party_id: str,
    party_name: str,
    is_active: bool = True,
) -> data_manager.CounterpartRow:
    """Register a supplier (purchases) or customer (sales)."""
    kind = OrderKind(order_kind)
    if party_id in _counterparts(context, kind)["by_id"]:
        raise BusinessRuleViolation(f"Counterpart '{party_id}' already exists")
    record = data_manager.CounterpartRow(party_id, party_name, is_active)
    data_manager.append_counterpart(context.workbook, kind, record)
    _invalidate_cache(context, f"counterparts:{kind.value}")
    log.info("Added %s counterpart '%s' (%s)", kind.value, party_id, party_name)
    return record


def add_warehouse(
    context: RuntimeContext,
    *,
    warehouse_id: str,
    warehouse_name: str,
    is_active: bool = True,
) -> data_manager.WarehouseRow:
    """Register a warehouse."""
    if warehouse_id in _warehouses(context)["by_id"]:
        raise BusinessRuleViolation(f"Warehouse '{warehouse_id}' already exists")
    record = data_manager.WarehouseRow(warehouse_id, warehouse_name, is_active)
    data_manager.append_warehouse(context.workbook, record)
    _invalidate_cache(context, "warehouses")
    log.info("Added warehouse '%s' (%s)", warehouse_id, warehouse_name)
    return record


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValidationError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be zero or positive")


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def build_stores(context: RuntimeContext, order_kind: OrderKind) -> StoreBundle:
    """Wire the workbook-backed stores for ``order_kind`` into a bundle."""
    kind = OrderKind(order_kind)
    return StoreBundle(
        order_kind=kind,
        orders=OrderStore(context.workbook, kind),
        ledgers={ledger: LedgerStore(context.workbook, kind, ledger) for ledger in LEDGER_SEARCH_ORDER},
        summaries=SummaryStore(context.workbook, kind),
    )


def build_payments(payment: Optional[PaymentCommand], *, default_date: str) -> tuple[data_manager.PaymentRow, ...]:
    """Translate the submitted payment into the order's payment slot.

    A zero amount records no payment at all, matching an order created
    without one.
    """
    if payment is None or payment.amount == Decimal("0"):
        return ()
    try:
        payment_type = PaymentType(payment.payment_type)
    except ValueError as exc:
        raise ValidationError(f"Unsupported payment type: {payment.payment_type}") from exc
    account_number = (payment.account_number or "").strip() or None
    return (
        data_manager.PaymentRow(
            amount=payment.amount,
            payment_type=payment_type.value,
            account_number=account_number,
            note=payment.note,
            date=payment.paid_on.isoformat() if payment.paid_on else default_date,
        ),
    )


def resolve_labels(context: RuntimeContext, order: data_manager.OrderRow) -> OrderLabels:
    """Look up the display names a ledger entry snapshots.

    Raises:
        MissingReferenceError: If the counterpart or product is unknown.
    """
    counterpart = get_counterpart(context, OrderKind(order.order_kind), order.counterpart_id)
    product = get_product(context, order.product_id)
    return OrderLabels(counterpart_name=counterpart.party_name, product_name=product.product_name)


def _require_active_references(context: RuntimeContext, order: data_manager.OrderRow) -> OrderLabels:
    counterpart = get_counterpart(context, OrderKind(order.order_kind), order.counterpart_id)
    if not counterpart.is_active:
        raise BusinessRuleViolation(f"Counterpart '{order.counterpart_id}' is inactive")
    product = get_product(context, order.product_id)
    if not product.is_active:
        raise BusinessRuleViolation(f"Product '{order.product_id}' is inactive")
    warehouse = get_warehouse(context, order.warehouse_id)
    if not warehouse.is_active:
        raise BusinessRuleViolation(f"Warehouse '{order.warehouse_id}' is inactive")
    return OrderLabels(counterpart_name=counterpart.party_name, product_name=product.product_name)


def get_order(context: RuntimeContext, order_kind: OrderKind, record_id: str) -> data_manager.OrderRow:
    """Fetch an order by its store key.

    Raises:
        MissingReferenceError: If no order of ``order_kind`` has ``record_id``.
    """
    try:
        return OrderStore(context.workbook, order_kind).get(record_id)
    except RecordNotFoundError as exc:
        log.warning("Order lookup failed for record '%s'", record_id)
        raise MissingReferenceError(f"Unknown order record: {record_id}") from exc


def find_order(context: RuntimeContext, order_kind: OrderKind, order_id: str) -> data_manager.OrderRow:
    """Fetch an order by its business order id (``PO-...`` / ``SO-...``)."""
    for order in OrderStore(context.workbook, order_kind).list():
        if order.order_id == order_id:
            return order
    raise MissingReferenceError(f"Unknown order id: {order_id}")


def list_orders(context: RuntimeContext, order_kind: OrderKind) -> List[data_manager.OrderRow]:
    """Return every stored order of ``order_kind`` in sheet order."""
    return OrderStore(context.workbook, order_kind).list()


def create_order(context: RuntimeContext, command: CreateOrderCommand) -> ReconciliationResult:
    """Validate and persist a new order together with its ledger entry.

    The counterpart, product and warehouse must exist and be active. The
    engine validates amounts before writing anything, stores the order, and
    records a positive payment in the ledger matching its payment type.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        command (CreateOrderCommand): Structured intent from the caller.

    Returns:
        ReconciliationResult: The stored order (with its new ids) and the
            ledger entry created for it, if any.

    Raises:
        MissingReferenceError: If a referenced record is unknown.
        BusinessRuleViolation: If a referenced record is inactive.
        ValidationError: If quantities or amounts are invalid.
        TransientStoreError: If a store call fails part-way.
    """
    kind = OrderKind(command.order_kind)
    order_date = _resolve_date(command.order_date)
    order = data_manager.OrderRow(
        record_id="",
        order_id="",
        order_kind=kind.value,
        counterpart_id=command.counterpart_id,
        product_id=command.product_id,
        warehouse_id=command.warehouse_id or context.settings.default_warehouse_id,
        quantity=command.quantity,
        total=command.total,
        date=order_date,
        due_date=command.due_date.isoformat() if command.due_date else order_date,
        payments=build_payments(command.payment, default_date=order_date),
    )
    reconciliation.validate_order(order)
    labels = _require_active_references(context, order)
    return reconciliation.on_order_created(build_stores(context, kind), order, labels)


def update_order(context: RuntimeContext, command: UpdateOrderCommand) -> ReconciliationResult:
    """Apply an edit to an existing order and reconcile its ledger entry.

    Handles every transition: a first payment creates an entry, a changed
    amount updates it in place, a changed payment type migrates it to another
    ledger, and a zero payment removes it.

    Raises:
        MissingReferenceError: If the order or a referenced record is unknown.
        ValidationError: If the edited order is invalid; nothing is written.
        LedgerIntegrityError: If the order already has several ledger entries.
        TransientStoreError: If a store call fails; rerun the same update or
            call :func:`reconcile_order`.
    """
    kind = OrderKind(command.order_kind)
    current = get_order(context, kind, command.record_id)
    order_date = command.order_date.isoformat() if command.order_date else current.date
    edited = replace(
        current,
        counterpart_id=command.counterpart_id,
        product_id=command.product_id,
        warehouse_id=command.warehouse_id or current.warehouse_id,
        quantity=command.quantity,
        total=command.total,
        date=order_date,
        due_date=command.due_date.isoformat() if command.due_date else current.due_date,
        payments=build_payments(command.payment, default_date=order_date),
    )
    reconciliation.validate_order(edited)
    labels = _require_active_references(context, edited)
    return reconciliation.on_order_updated(build_stores(context, kind), current, edited, labels)


def delete_order(context: RuntimeContext, order_kind: OrderKind, record_id: str) -> ReconciliationResult:
    """Delete an order and cascade to its ledger entry, if one exists."""
    kind = OrderKind(order_kind)
    order = get_order(context, kind, record_id)
    return reconciliation.on_order_deleted(build_stores(context, kind), order)


def reconcile_order(context: RuntimeContext, order_kind: OrderKind, record_id: str) -> ReconciliationResult:
    """Re-run reconciliation for a stored order without changing it.

    Repairs the state left by an interrupted create, update or migration.
    """
    kind = OrderKind(order_kind)
    order = get_order(context, kind, record_id)
    labels = resolve_labels(context, order)
    return reconciliation.reconcile_ledger(build_stores(context, kind), order, labels)


def describe_order(context: RuntimeContext, order_kind: OrderKind, record_id: str) -> Dict[str, Any]:
    """Summarise an order's payment position for display."""
    order = get_order(context, order_kind, record_id)
    payment = latest_payment(order)
    return {
        "record_id": order.record_id,
        "order_id": order.order_id,
        "total": order.total,
        "total_paid": total_paid(order),
        "balance": balance(order),
        "status": payment_status(order),
        "payment_type": payment.payment_type if payment else None,
    }


def list_ledger_entries(
    context: RuntimeContext,
    order_kind: OrderKind,
    ledger_kind: Optional[LedgerKind] = None,
) -> List[tuple[LedgerKind, data_manager.LedgerEntryRow]]:
    """Return ``(ledger, entry)`` pairs for one ledger or all three."""
    kinds = [LedgerKind(ledger_kind)] if ledger_kind is not None else list(LEDGER_SEARCH_ORDER)
    pairs: List[tuple[LedgerKind, data_manager.LedgerEntryRow]] = []
    for kind in kinds:
        for entry in LedgerStore(context.workbook, order_kind, kind).list():
            pairs.append((kind, entry))
    return pairs
