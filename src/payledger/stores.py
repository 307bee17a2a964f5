"""Workbook-backed implementations of the order, ledger and summary stores.

Each store wraps a single worksheet (plus ``OrderPayments`` for orders) and
exposes plain CRUD. Stores know nothing about each other: keeping the ledgers
consistent with the orders is the reconciliation engine's job.

Patches are mappings of dataclass field names to replacement values.
"""

from __future__ import annotations

import uuid
from dataclasses import fields, replace
from datetime import UTC, datetime
from typing import Any, List, Mapping, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import ORDER_ID_PREFIX, LedgerKind, OrderKind
from .data_manager import LedgerEntryRow, OrderRow, SummaryRow
from .exceptions import RecordNotFoundError, StoreError


def _new_id() -> str:
    return uuid.uuid4().hex


def _apply_patch(record: Any, patch: Mapping[str, Any], *, immutable: tuple[str, ...] = ()) -> Any:
    """Return ``record`` with ``patch`` applied, rejecting unknown or frozen fields."""

    known = {field.name for field in fields(record)}
    for name, value in patch.items():
        if name not in known:
            raise KeyError(f"Unknown {type(record).__name__} field: {name}")
        if name in immutable and value != getattr(record, name):
            raise ValueError(f"{type(record).__name__}.{name} is immutable")
    return replace(record, **patch)


class OrderStore:
    """Persist purchase or sales orders on their order sheet."""

    def __init__(self, workbook: Workbook, order_kind: OrderKind):
        self.workbook = workbook
        self.order_kind = OrderKind(order_kind)
        self.sheet_name = data_manager.order_sheet(self.order_kind)

    def __repr__(self) -> str:
        return f"OrderStore({self.sheet_name})"

    def list(self) -> List[OrderRow]:
        return list(data_manager.iter_orders(self.workbook, self.order_kind))

    def get(self, record_id: str) -> OrderRow:
        for order in data_manager.iter_orders(self.workbook, self.order_kind):
            if order.record_id == record_id:
                return order
        raise RecordNotFoundError(self.sheet_name, record_id)

    def create(self, order: OrderRow) -> OrderRow:
        """Insert ``order``, assigning its record id and business order id."""

        stored = replace(
            order,
            record_id=_new_id(),
            order_id=order.order_id or self._next_order_id(),
            order_kind=self.order_kind.value,
        )
        data_manager.append_row(self.workbook, self.sheet_name, data_manager.serialize_order(stored))
        data_manager.replace_payments(self.workbook, stored.record_id, stored.payments)
        log.debug("Stored order '%s' as record '%s'", stored.order_id, stored.record_id)
        return stored

    def update(self, record_id: str, patch: Mapping[str, Any]) -> OrderRow:
        current = self.get(record_id)
        updated = _apply_patch(current, patch, immutable=("record_id", "order_id", "order_kind"))
        row_index = self._row_index(record_id)
        data_manager.write_row(self.workbook, self.sheet_name, row_index, data_manager.serialize_order(updated))
        if "payments" in patch:
            data_manager.replace_payments(self.workbook, record_id, updated.payments)
        return updated

    def delete(self, record_id: str) -> None:
        row_index = self._row_index(record_id)
        data_manager.delete_rows(self.workbook, self.sheet_name, [row_index])
        data_manager.replace_payments(self.workbook, record_id, ())

    def _row_index(self, record_id: str) -> int:
        row_index = data_manager.locate_row(self.workbook, self.sheet_name, "RecordID", record_id)
        if row_index is None:
            raise RecordNotFoundError(self.sheet_name, record_id)
        return row_index

    def _next_order_id(self) -> str:
        prefix = ORDER_ID_PREFIX[self.order_kind]
        sequence = data_manager.next_counter_value(self.workbook, prefix)
        today = datetime.now(UTC).strftime("%Y%m%d")
        return f"{prefix}-{today}-{sequence:04d}"


class LedgerStore:
    """One of the three cash ledgers for a given order kind."""

    def __init__(self, workbook: Workbook, order_kind: OrderKind, ledger_kind: LedgerKind):
        self.workbook = workbook
        self.order_kind = OrderKind(order_kind)
        self.ledger_kind = LedgerKind(ledger_kind)
        self.sheet_name = data_manager.ledger_sheet(self.order_kind, self.ledger_kind)

    def __repr__(self) -> str:
        return f"LedgerStore({self.sheet_name})"

    def list(self) -> List[LedgerEntryRow]:
        return list(data_manager.iter_ledger_entries(self.workbook, self.order_kind, self.ledger_kind))

    def create(self, entry: LedgerEntryRow) -> LedgerEntryRow:
        stored = replace(entry, entry_id=_new_id())
        data_manager.append_row(self.workbook, self.sheet_name, data_manager.serialize_ledger_entry(stored))
        return stored

    def update(self, entry_id: str, patch: Mapping[str, Any]) -> LedgerEntryRow:
        row_index = self._row_index(entry_id)
        current = data_manager.deserialize_ledger_entry(
            [cell.value for cell in self.workbook[self.sheet_name][row_index]]
        )
        updated = _apply_patch(current, patch, immutable=("entry_id",))
        data_manager.write_row(self.workbook, self.sheet_name, row_index, data_manager.serialize_ledger_entry(updated))
        return updated

    def delete(self, entry_id: str) -> None:
        data_manager.delete_rows(self.workbook, self.sheet_name, [self._row_index(entry_id)])

    def _row_index(self, entry_id: str) -> int:
        row_index = data_manager.locate_row(self.workbook, self.sheet_name, "EntryID", entry_id)
        if row_index is None:
            raise RecordNotFoundError(self.sheet_name, entry_id)
        return row_index


class SummaryStore:
    """Accounts payable (purchases) or receivable (sales) lines."""

    def __init__(self, workbook: Workbook, order_kind: OrderKind):
        self.workbook = workbook
        self.order_kind = OrderKind(order_kind)
        self.sheet_name = data_manager.summary_sheet(self.order_kind)

    def __repr__(self) -> str:
        return f"SummaryStore({self.sheet_name})"

    def list(self) -> List[SummaryRow]:
        return list(data_manager.iter_summaries(self.workbook, self.order_kind))

    def find(self, counterpart_id: str, order_id: str) -> Optional[SummaryRow]:
        for summary in data_manager.iter_summaries(self.workbook, self.order_kind):
            if summary.counterpart_id == counterpart_id and summary.order_id == order_id:
                return summary
        return None

    def create(self, summary: SummaryRow) -> SummaryRow:
        if self.find(summary.counterpart_id, summary.order_id) is not None:
            raise StoreError(
                f"{self.sheet_name} already holds invoice {summary.order_id}",
                details={"counterpart_id": summary.counterpart_id, "order_id": summary.order_id},
            )
        data_manager.append_row(self.workbook, self.sheet_name, data_manager.serialize_summary(summary))
        return summary

    def update(self, key: tuple[str, str], patch: Mapping[str, Any]) -> SummaryRow:
        """Patch the line at ``key``; a new ``counterpart_id`` re-keys it in place."""
        counterpart_id, order_id = key
        for row_index in data_manager.locate_rows(self.workbook, self.sheet_name, "InvoiceNumber", order_id):
            current = data_manager.deserialize_summary(
                [cell.value for cell in self.workbook[self.sheet_name][row_index]]
            )
            if current.counterpart_id != counterpart_id:
                continue
            updated = _apply_patch(current, patch, immutable=("order_id",))
            if updated.counterpart_id != counterpart_id and self.find(updated.counterpart_id, order_id) is not None:
                raise StoreError(
                    f"{self.sheet_name} already holds invoice {order_id}",
                    details={"counterpart_id": updated.counterpart_id, "order_id": order_id},
                )
            data_manager.write_row(self.workbook, self.sheet_name, row_index, data_manager.serialize_summary(updated))
            return updated
        raise RecordNotFoundError(self.sheet_name, key)
