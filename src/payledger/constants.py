"""Enumerations shared across payledger modules.

Centralises domain constants so that the data access layer (DAL), the
reconciliation engine, and the CLI rely on a single source of truth for
payment types, ledger kinds, and worksheet names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class PaymentType(str, Enum):
    """Enumerate the payment mechanisms an order payment may use."""

    CASH = "Cash"
    BANK = "Bank"
    CHEQUE = "Cheque"


class PaymentStatus(str, Enum):
    """Derived settlement state of an order, ordered by amount paid."""

    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    PaymentStatus.UNPAID: 0,
    PaymentStatus.PARTIALLY_PAID: 1,
    PaymentStatus.PAID: 2,
}


class OrderKind(str, Enum):
    """Distinguish purchase orders (payables) from sales orders (receivables)."""

    PURCHASE = "purchase"
    SALES = "sales"


class LedgerKind(str, Enum):
    """Enumerate the three payment-type-partitioned ledgers."""

    CASH_IN_HAND = "CashInHand"
    CASH_IN_BANK = "CashInBank"
    CASH_IN_CHEQUE = "CashInCheque"


# Fixed lookup order used when searching for an order's ledger entry.
LEDGER_SEARCH_ORDER: tuple[LedgerKind, ...] = (
    LedgerKind.CASH_IN_HAND,
    LedgerKind.CASH_IN_BANK,
    LedgerKind.CASH_IN_CHEQUE,
)

LEDGER_FOR_PAYMENT_TYPE = {
    PaymentType.CASH: LedgerKind.CASH_IN_HAND,
    PaymentType.BANK: LedgerKind.CASH_IN_BANK,
    PaymentType.CHEQUE: LedgerKind.CASH_IN_CHEQUE,
}

ORDER_ID_PREFIX = {
    OrderKind.PURCHASE: "PO",
    OrderKind.SALES: "SO",
}


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    SUPPLIERS = "Suppliers"
    CUSTOMERS = "Customers"
    WAREHOUSES = "Warehouses"
    PURCHASE_ORDERS = "PurchaseOrders"
    SALES_ORDERS = "SalesOrders"
    ORDER_PAYMENTS = "OrderPayments"
    COUNTERS = "Counters"
    CASH_IN_HAND_PURCHASES = "CashInHandPurchases"
    CASH_IN_BANK_PURCHASES = "CashInBankPurchases"
    CASH_IN_CHEQUE_PURCHASES = "CashInChequePurchases"
    CASH_IN_HAND_SALES = "CashInHandSales"
    CASH_IN_BANK_SALES = "CashInBankSales"
    CASH_IN_CHEQUE_SALES = "CashInChequeSales"
    ACCOUNTS_PAYABLE = "AccountsPayable"
    ACCOUNTS_RECEIVABLE = "AccountsReceivable"


ORDER_SHEETS = {
    OrderKind.PURCHASE: SheetName.PURCHASE_ORDERS,
    OrderKind.SALES: SheetName.SALES_ORDERS,
}

LEDGER_SHEETS = {
    (OrderKind.PURCHASE, LedgerKind.CASH_IN_HAND): SheetName.CASH_IN_HAND_PURCHASES,
    (OrderKind.PURCHASE, LedgerKind.CASH_IN_BANK): SheetName.CASH_IN_BANK_PURCHASES,
    (OrderKind.PURCHASE, LedgerKind.CASH_IN_CHEQUE): SheetName.CASH_IN_CHEQUE_PURCHASES,
    (OrderKind.SALES, LedgerKind.CASH_IN_HAND): SheetName.CASH_IN_HAND_SALES,
    (OrderKind.SALES, LedgerKind.CASH_IN_BANK): SheetName.CASH_IN_BANK_SALES,
    (OrderKind.SALES, LedgerKind.CASH_IN_CHEQUE): SheetName.CASH_IN_CHEQUE_SALES,
}

SUMMARY_SHEETS = {
    OrderKind.PURCHASE: SheetName.ACCOUNTS_PAYABLE,
    OrderKind.SALES: SheetName.ACCOUNTS_RECEIVABLE,
}

COUNTERPART_SHEETS = {
    OrderKind.PURCHASE: SheetName.SUPPLIERS,
    OrderKind.SALES: SheetName.CUSTOMERS,
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "PaymentType",
    "PaymentStatus",
    "OrderKind",
    "LedgerKind",
    "LEDGER_SEARCH_ORDER",
    "LEDGER_FOR_PAYMENT_TYPE",
    "ORDER_ID_PREFIX",
    "SheetName",
    "ORDER_SHEETS",
    "LEDGER_SHEETS",
    "SUMMARY_SHEETS",
    "COUNTERPART_SHEETS",
]
