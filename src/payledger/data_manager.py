"""Data access layer for payledger.

This module provides low-level helpers that read from and write to the
master workbook. Business rules and reconciliation belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, rewriting,
   or deleting individual rows.
"""


from __future__ import annotations

import configparser
from collections import defaultdict
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    COUNTERPART_SHEETS,
    LEDGER_SHEETS,
    ORDER_SHEETS,
    SUMMARY_SHEETS,
    LedgerKind,
    OrderKind,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
WAREHOUSES_SHEET = SheetName.WAREHOUSES.value
PAYMENTS_SHEET = SheetName.ORDER_PAYMENTS.value
COUNTERS_SHEET = SheetName.COUNTERS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    default_warehouse_id: str


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    unit_price: Decimal
    is_active: bool


@dataclass(frozen=True)
class CounterpartRow:
    """Supplier or customer row; both sheets share the same layout."""

    party_id: str
    party_name: str
    is_active: bool


@dataclass(frozen=True)
class WarehouseRow:
    """In-memory view of a row from the ``Warehouses`` sheet."""

    warehouse_id: str
    warehouse_name: str
    is_active: bool


@dataclass(frozen=True)
class PaymentRow:
    """A single payment recorded against an order."""

    amount: Decimal
    payment_type: str
    account_number: Optional[str] = None
    note: Optional[str] = None
    date: str = ""


@dataclass(frozen=True)
class OrderRow:
    """Canonical purchase or sales order.

    ``record_id`` is the opaque store key; ``order_id`` is the business
    identifier ledger entries join on. Both are blank until the order store
    assigns them.
    """

    record_id: str
    order_id: str
    order_kind: str
    counterpart_id: str
    product_id: str
    warehouse_id: str
    quantity: int
    total: Decimal
    date: str
    due_date: str
    payments: tuple[PaymentRow, ...] = ()


@dataclass(frozen=True)
class LedgerEntryRow:
    """Denormalised payment snapshot held by one of the cash ledgers."""

    entry_id: str
    order_id: str
    counterpart_name: str
    product_name: str
    quantity: int
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: str
    payment_type: str
    account_number: Optional[str]
    note: Optional[str]
    date: str
    due_date: str


@dataclass(frozen=True)
class SummaryRow:
    """Accounts payable / receivable line keyed by counterpart and order."""

    counterpart_id: str
    order_id: str
    counterpart_name: str
    description: str
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
        default_warehouse = parser.get("Defaults", "DefaultWarehouse")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_warehouse_id=default_warehouse,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Generic sheet helpers
# ---------------------------------------------------------------------------


def iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    """Yield the raw values of every non-empty data row in ``sheet_name``."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Map header titles of ``sheet_name`` to 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    matches = locate_rows(workbook, sheet_name, key_column, key_value)
    return matches[0] if matches else None


def locate_rows(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> List[int]:
    """Return every 1-based row index whose ``key_column`` equals ``key_value``."""

    columns = header_map(workbook, sheet_name)
    if key_column not in columns:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = columns[key_column]
    sheet = workbook[sheet_name]
    matches = []
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            matches.append(row_idx)
    return matches


def append_row(workbook: Workbook, sheet_name: str, values: Sequence[object]) -> None:
    """Append ``values`` as a new row at the bottom of ``sheet_name``."""

    workbook[sheet_name].append(list(values))


def write_row(workbook: Workbook, sheet_name: str, row_index: int, values: Sequence[object]) -> None:
    """Overwrite the cells of an existing row with ``values`` in column order."""

    sheet = workbook[sheet_name]
    for column, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column, value=value)


def delete_rows(workbook: Workbook, sheet_name: str, row_indices: Iterable[int]) -> None:
    """Remove rows from ``sheet_name``; indices are processed bottom-up."""

    sheet = workbook[sheet_name]
    for row_index in sorted(set(row_indices), reverse=True):
        sheet.delete_rows(row_index)


def next_counter_value(workbook: Workbook, counter_name: str) -> int:
    """Increment and return the named sequence stored on the ``Counters`` sheet."""

    row_index = locate_row(workbook, COUNTERS_SHEET, "CounterName", counter_name)
    if row_index is None:
        append_row(workbook, COUNTERS_SHEET, [counter_name, 1])
        return 1

    sheet = workbook[COUNTERS_SHEET]
    current = sheet.cell(row=row_index, column=2).value or 0
    value = int(current) + 1
    sheet.cell(row=row_index, column=2, value=value)
    log.debug("Counter '%s' advanced to %d", counter_name, value)
    return value


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in iter_raw_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_counterparts(workbook: Workbook, order_kind: OrderKind) -> Iterable[CounterpartRow]:
    """Iterate over suppliers (purchases) or customers (sales)."""

    for raw in iter_raw_rows(workbook, COUNTERPART_SHEETS[order_kind].value):
        yield deserialize_counterpart(raw)


def iter_warehouses(workbook: Workbook) -> Iterable[WarehouseRow]:
    """Iterate over the ``Warehouses`` worksheet."""

    for raw in iter_raw_rows(workbook, WAREHOUSES_SHEET):
        yield WarehouseRow(warehouse_id=str(raw[0]), warehouse_name=str(raw[1]), is_active=bool(raw[2]))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    append_row(workbook, PRODUCTS_SHEET, [record.product_id, record.product_name, record.unit_price, record.is_active])


def append_counterpart(workbook: Workbook, order_kind: OrderKind, record: CounterpartRow) -> None:
    """Append a supplier or customer depending on ``order_kind``."""

    append_row(workbook, COUNTERPART_SHEETS[order_kind].value, [record.party_id, record.party_name, record.is_active])


def append_warehouse(workbook: Workbook, record: WarehouseRow) -> None:
    """Append a warehouse record to the ``Warehouses`` worksheet."""

    append_row(workbook, WAREHOUSES_SHEET, [record.warehouse_id, record.warehouse_name, record.is_active])


# ---------------------------------------------------------------------------
# Orders and payments
# ---------------------------------------------------------------------------


def order_sheet(order_kind: OrderKind) -> str:
    return ORDER_SHEETS[OrderKind(order_kind)].value


def ledger_sheet(order_kind: OrderKind, ledger_kind: LedgerKind) -> str:
    return LEDGER_SHEETS[(OrderKind(order_kind), LedgerKind(ledger_kind))].value


def summary_sheet(order_kind: OrderKind) -> str:
    return SUMMARY_SHEETS[OrderKind(order_kind)].value


def load_payments(workbook: Workbook) -> Dict[str, tuple[PaymentRow, ...]]:
    """Group the ``OrderPayments`` sheet by order record id, in sequence order."""

    grouped: Dict[str, list[tuple[int, PaymentRow]]] = defaultdict(list)
    for raw in iter_raw_rows(workbook, PAYMENTS_SHEET):
        record_id, sequence, payment = deserialize_payment(raw)
        grouped[record_id].append((sequence, payment))
    return {
        record_id: tuple(payment for _, payment in sorted(items, key=lambda item: item[0]))
        for record_id, items in grouped.items()
    }


def iter_orders(workbook: Workbook, order_kind: OrderKind) -> Iterable[OrderRow]:
    """Stream orders of ``order_kind`` with their payments attached."""

    payments = load_payments(workbook)
    for raw in iter_raw_rows(workbook, order_sheet(order_kind)):
        order = deserialize_order(raw)
        yield replace(order, payments=payments.get(order.record_id, ()))


def replace_payments(workbook: Workbook, record_id: str, payments: Sequence[PaymentRow]) -> None:
    """Drop all payment rows for ``record_id`` and write ``payments`` afresh."""

    delete_rows(workbook, PAYMENTS_SHEET, locate_rows(workbook, PAYMENTS_SHEET, "RecordID", record_id))
    for sequence, payment in enumerate(payments, start=1):
        append_row(workbook, PAYMENTS_SHEET, serialize_payment(record_id, sequence, payment))


def iter_ledger_entries(workbook: Workbook, order_kind: OrderKind, ledger_kind: LedgerKind) -> Iterable[LedgerEntryRow]:
    """Stream the entries of one cash ledger."""

    for raw in iter_raw_rows(workbook, ledger_sheet(order_kind, ledger_kind)):
        yield deserialize_ledger_entry(raw)


def iter_summaries(workbook: Workbook, order_kind: OrderKind) -> Iterable[SummaryRow]:
    """Stream accounts payable (purchases) or receivable (sales) rows."""

    for raw in iter_raw_rows(workbook, summary_sheet(order_kind)):
        yield deserialize_summary(raw)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None and raw != "" else None


def serialize_order(record: OrderRow) -> list[object]:
    """Convert an order into the order sheet column ordering (payments excluded)."""

    return [
        record.record_id,
        record.order_id,
        record.order_kind,
        record.counterpart_id,
        record.product_id,
        record.warehouse_id,
        record.quantity,
        record.total,
        record.date,
        record.due_date,
    ]


def serialize_payment(record_id: str, sequence: int, payment: PaymentRow) -> list[object]:
    return [
        record_id,
        sequence,
        payment.amount,
        payment.payment_type,
        payment.account_number,
        payment.note,
        payment.date,
    ]


def serialize_ledger_entry(record: LedgerEntryRow) -> list[object]:
    """Convert a ledger entry into the ledger sheet column ordering."""

    return [
        record.entry_id,
        record.order_id,
        record.counterpart_name,
        record.product_name,
        record.quantity,
        record.total_amount,
        record.amount_paid,
        record.balance,
        record.status,
        record.payment_type,
        record.account_number,
        record.note,
        record.date,
        record.due_date,
    ]


def serialize_summary(record: SummaryRow) -> list[object]:
    return [
        record.counterpart_id,
        record.order_id,
        record.counterpart_name,
        record.description,
        record.total_amount,
        record.amount_paid,
        record.balance,
        record.status,
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record."""

    product_id, product_name, price_raw, is_active = raw_row[:4]
    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name),
        unit_price=_decimal(price_raw),
        is_active=bool(is_active),
    )


def deserialize_counterpart(raw_row: Sequence[object]) -> CounterpartRow:
    party_id, party_name, is_active = raw_row[:3]
    return CounterpartRow(party_id=str(party_id), party_name=str(party_name), is_active=bool(is_active))


def deserialize_payment(raw_row: Sequence[object]) -> tuple[str, int, PaymentRow]:
    """Convert an ``OrderPayments`` row into ``(record_id, sequence, payment)``."""

    record_id, sequence, amount_raw, payment_type, account_number, note, date = raw_row[:7]
    payment = PaymentRow(
        amount=_decimal(amount_raw),
        payment_type=str(payment_type),
        account_number=_optional_str(account_number),
        note=_optional_str(note),
        date=str(date) if date is not None else "",
    )
    return str(record_id), int(sequence or 0), payment


def deserialize_order(raw_row: Sequence[object]) -> OrderRow:
    """Convert a raw order sheet row into an :class:`OrderRow` without payments.

    Excel may hand identifiers back as numbers, so id columns are coerced to
    ``str``; numeric columns become ``int`` and :class:`~decimal.Decimal`.
    """

    (
        record_id,
        order_id,
        order_kind,
        counterpart_id,
        product_id,
        warehouse_id,
        quantity_raw,
        total_raw,
        date,
        due_date,
    ) = raw_row[:10]

    return OrderRow(
        record_id=str(record_id),
        order_id=str(order_id) if order_id is not None else "",
        order_kind=str(order_kind),
        counterpart_id=str(counterpart_id),
        product_id=str(product_id),
        warehouse_id=str(warehouse_id),
        quantity=int(quantity_raw or 0),
        total=_decimal(total_raw),
        date=str(date) if date is not None else "",
        due_date=str(due_date) if due_date is not None else "",
    )


def deserialize_ledger_entry(raw_row: Sequence[object]) -> LedgerEntryRow:
    """Convert a raw ledger sheet row into a :class:`LedgerEntryRow`."""

    (
        entry_id,
        order_id,
        counterpart_name,
        product_name,
        quantity_raw,
        total_raw,
        paid_raw,
        balance_raw,
        status,
        payment_type,
        account_number,
        note,
        date,
        due_date,
    ) = raw_row[:14]

    return LedgerEntryRow(
        entry_id=str(entry_id),
        order_id=str(order_id),
        counterpart_name=str(counterpart_name) if counterpart_name is not None else "",
        product_name=str(product_name) if product_name is not None else "",
        quantity=int(quantity_raw or 0),
        total_amount=_decimal(total_raw),
        amount_paid=_decimal(paid_raw),
        balance=_decimal(balance_raw),
        status=str(status) if status is not None else "",
        payment_type=str(payment_type) if payment_type is not None else "",
        account_number=_optional_str(account_number),
        note=_optional_str(note),
        date=str(date) if date is not None else "",
        due_date=str(due_date) if due_date is not None else "",
    )


def deserialize_summary(raw_row: Sequence[object]) -> SummaryRow:
    (
        counterpart_id,
        order_id,
        counterpart_name,
        description,
        total_raw,
        paid_raw,
        balance_raw,
        status,
    ) = raw_row[:8]

    return SummaryRow(
        counterpart_id=str(counterpart_id),
        order_id=str(order_id),
        counterpart_name=str(counterpart_name) if counterpart_name is not None else "",
        description=str(description) if description is not None else "",
        total_amount=_decimal(total_raw),
        amount_paid=_decimal(paid_raw),
        balance=_decimal(balance_raw),
        status=str(status) if status is not None else "",
    )
