"""Tests for the business logic layer."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from payledger import constants, core_logic, data_manager
from payledger.constants import LedgerKind, OrderKind, PaymentStatus, PaymentType
from payledger.reconciliation import ReconcileAction

from conftest import (
    CUSTOMER_ID,
    DEFAULT_WAREHOUSE_ID,
    PRODUCT_ID,
    SUPPLIER_ID,
    make_create_command,
    make_payment,
    make_update_command,
)


@pytest.fixture
def set_fixed_datetime(monkeypatch):
    """Patch core_logic.datetime.now to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "payledger_data.xlsx",
        business_name="Traders",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_warehouse_id=DEFAULT_WAREHOUSE_ID,
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(mock_context):
    bad_settings = replace(mock_context.settings, schema_version="0.9")
    bad_context = core_logic.RuntimeContext(settings=bad_settings, workbook=mock_context.workbook)

    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_persist_then_refresh_sees_saved_orders(seeded_context):
    result = core_logic.create_order(seeded_context, make_create_command(payment=make_payment("10")))
    core_logic.persist_context(seeded_context)

    refreshed = core_logic.refresh_context(seeded_context)

    assert refreshed.workbook is not seeded_context.workbook
    assert [order.order_id for order in core_logic.list_orders(refreshed, OrderKind.PURCHASE)] == [
        result.order.order_id
    ]


def test_refresh_discards_unsaved_changes(seeded_context):
    core_logic.persist_context(seeded_context)
    core_logic.create_order(seeded_context, make_create_command())

    refreshed = core_logic.refresh_context(seeded_context)

    assert core_logic.list_orders(refreshed, OrderKind.PURCHASE) == []


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------


def test_list_products_excludes_inactive_by_default(monkeypatch, mock_context):
    products = [
        data_manager.ProductRow("P1", "Active", Decimal("1.00"), True),
        data_manager.ProductRow("P2", "Inactive", Decimal("2.00"), False),
    ]
    iter_mock = Mock(return_value=products)
    monkeypatch.setattr(data_manager, "iter_products", iter_mock)

    assert [row.product_id for row in core_logic.list_products(mock_context)] == ["P1"]
    assert len(core_logic.list_products(mock_context, include_inactive=True)) == 2
    iter_mock.assert_called_once_with(mock_context.workbook)


def test_add_product_invalidates_cache(runtime_context):
    assert core_logic.list_products(runtime_context) == []

    core_logic.add_product(runtime_context, product_id="P9", product_name="Oil", unit_price=Decimal("3"))

    assert core_logic.get_product(runtime_context, "P9").product_name == "Oil"


def test_add_product_rejects_duplicates_and_negative_price(seeded_context):
    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.add_product(seeded_context, product_id=PRODUCT_ID, product_name="Dup", unit_price=Decimal("1"))
    with pytest.raises(core_logic.ValidationError):
        core_logic.add_product(seeded_context, product_id="P-NEG", product_name="Neg", unit_price=Decimal("-1"))


def test_counterparts_resolve_by_order_kind(seeded_context):
    assert core_logic.get_counterpart(seeded_context, OrderKind.PURCHASE, SUPPLIER_ID).party_name == "Acme Supply"
    assert core_logic.get_counterpart(seeded_context, OrderKind.SALES, CUSTOMER_ID).party_name == "Jane Buyer"
    with pytest.raises(core_logic.MissingReferenceError, match="supplier"):
        core_logic.get_counterpart(seeded_context, OrderKind.PURCHASE, CUSTOMER_ID)


def test_add_warehouse_and_lookup(runtime_context):
    core_logic.add_warehouse(runtime_context, warehouse_id="WH-2", warehouse_name="Annex", is_active=False)

    assert core_logic.get_warehouse(runtime_context, "WH-2").is_active is False
    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.add_warehouse(runtime_context, warehouse_id="WH-2", warehouse_name="Again")


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def test_create_order_with_bank_payment(seeded_context):
    command = make_create_command(payment=make_payment("250", PaymentType.BANK, account_number=" 998877 "))

    result = core_logic.create_order(seeded_context, command)

    assert result.action is ReconcileAction.CREATE
    assert result.ledger_kind is LedgerKind.CASH_IN_BANK
    assert result.entry.account_number == "998877"
    assert result.order.warehouse_id == DEFAULT_WAREHOUSE_ID
    assert result.order.date == "2024-03-01"
    assert result.order.due_date == "2024-03-31"


def test_zero_payment_records_nothing(seeded_context):
    result = core_logic.create_order(seeded_context, make_create_command(payment=make_payment("0")))

    assert result.order.payments == ()
    assert core_logic.list_ledger_entries(seeded_context, OrderKind.PURCHASE) == []


def test_create_order_defaults_dates_to_today(seeded_context, set_fixed_datetime):
    set_fixed_datetime(datetime(2025, 1, 15, 9, 30, tzinfo=UTC))
    command = replace(make_create_command(), order_date=None, due_date=None)

    order = core_logic.create_order(seeded_context, command).order

    assert order.date == "2025-01-15"
    assert order.due_date == "2025-01-15"


def test_create_order_rejects_inactive_counterpart(seeded_context):
    core_logic.add_counterpart(seeded_context, OrderKind.PURCHASE, party_id="SUP-OLD", party_name="Old", is_active=False)
    command = replace(make_create_command(), counterpart_id="SUP-OLD")

    with pytest.raises(core_logic.BusinessRuleViolation, match="inactive"):
        core_logic.create_order(seeded_context, command)

    assert core_logic.list_orders(seeded_context, OrderKind.PURCHASE) == []


def test_create_order_rejects_unknown_product(seeded_context):
    command = replace(make_create_command(), product_id="P-404")

    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.create_order(seeded_context, command)


def test_create_order_rejects_unknown_payment_type(seeded_context):
    payment = core_logic.PaymentCommand(amount=Decimal("5"), payment_type="Barter")

    with pytest.raises(core_logic.ValidationError):
        core_logic.create_order(seeded_context, make_create_command(payment=payment))


def test_overpayment_is_validation_error(seeded_context):
    with pytest.raises(core_logic.ValidationError):
        core_logic.create_order(seeded_context, make_create_command(total="100", payment=make_payment("120")))

    assert core_logic.list_orders(seeded_context, OrderKind.PURCHASE) == []


def test_update_order_follows_payment_type(seeded_context):
    order = core_logic.create_order(seeded_context, make_create_command(payment=make_payment("400"))).order

    result = core_logic.update_order(
        seeded_context, make_update_command(order, payment=make_payment("400", PaymentType.CHEQUE))
    )

    assert result.action is ReconcileAction.MIGRATE
    pairs = core_logic.list_ledger_entries(seeded_context, OrderKind.PURCHASE)
    assert [kind for kind, _ in pairs] == [LedgerKind.CASH_IN_CHEQUE]
    assert result.order.date == order.date
    assert result.order.due_date == order.due_date


def test_update_without_payment_clears_it(seeded_context):
    order = core_logic.create_order(seeded_context, make_create_command(payment=make_payment("400"))).order

    result = core_logic.update_order(seeded_context, make_update_command(order))

    assert result.action is ReconcileAction.DELETE
    details = core_logic.describe_order(seeded_context, OrderKind.PURCHASE, order.record_id)
    assert details["status"] is PaymentStatus.UNPAID
    assert details["balance"] == Decimal("1000")
    assert details["payment_type"] is None


def test_update_unknown_order_is_missing_reference(seeded_context):
    order = core_logic.create_order(seeded_context, make_create_command()).order

    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.update_order(seeded_context, replace(make_update_command(order), record_id="nope"))


def test_delete_order_cascades(seeded_context):
    order = core_logic.create_order(seeded_context, make_create_command(payment=make_payment("10"))).order

    core_logic.delete_order(seeded_context, OrderKind.PURCHASE, order.record_id)

    assert core_logic.list_orders(seeded_context, OrderKind.PURCHASE) == []
    assert core_logic.list_ledger_entries(seeded_context, OrderKind.PURCHASE) == []
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.delete_order(seeded_context, OrderKind.PURCHASE, order.record_id)


def test_reconcile_order_recreates_missing_entry(seeded_context):
    result = core_logic.create_order(seeded_context, make_create_command(payment=make_payment("10")))
    stores = core_logic.build_stores(seeded_context, OrderKind.PURCHASE)
    stores.ledgers[LedgerKind.CASH_IN_HAND].delete(result.entry.entry_id)

    healed = core_logic.reconcile_order(seeded_context, OrderKind.PURCHASE, result.order.record_id)

    assert healed.action is ReconcileAction.CREATE
    again = core_logic.reconcile_order(seeded_context, OrderKind.PURCHASE, result.order.record_id)
    assert again.action is ReconcileAction.NOOP


def test_describe_and_find_order(seeded_context):
    order = core_logic.create_order(
        seeded_context, make_create_command(order_kind=OrderKind.SALES, payment=make_payment("1000"))
    ).order

    details = core_logic.describe_order(seeded_context, OrderKind.SALES, order.record_id)

    assert details["order_id"] == order.order_id
    assert details["total_paid"] == Decimal("1000")
    assert details["status"] is PaymentStatus.PAID
    assert details["payment_type"] == "Cash"
    assert core_logic.find_order(seeded_context, OrderKind.SALES, order.order_id) == order
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.find_order(seeded_context, OrderKind.PURCHASE, order.order_id)


def test_list_ledger_entries_can_filter(seeded_context):
    core_logic.create_order(seeded_context, make_create_command(payment=make_payment("10")))
    core_logic.create_order(
        seeded_context, make_create_command(payment=make_payment("20", PaymentType.BANK, account_number="1"))
    )

    bank_only = core_logic.list_ledger_entries(seeded_context, OrderKind.PURCHASE, LedgerKind.CASH_IN_BANK)

    assert [entry.amount_paid for _, entry in bank_only] == [Decimal("20")]
    assert len(core_logic.list_ledger_entries(seeded_context, OrderKind.PURCHASE)) == 2


def test_build_payments_uses_order_date_when_unset():
    payment = core_logic.PaymentCommand(amount=Decimal("5"), payment_type=PaymentType.CHEQUE, note="CHQ-1")

    [row] = core_logic.build_payments(payment, default_date="2024-05-05")

    assert row.date == "2024-05-05"
    assert row.payment_type == "Cheque"
    assert row.account_number is None
    assert core_logic.build_payments(None, default_date=date.today().isoformat()) == ()
