"""Shared pytest fixtures and utilities for payledger tests."""

from __future__ import annotations

import argparse
import os
import sys
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# Keep test runs from writing into the home directory.
os.environ.setdefault("PAYLEDGER_LOG_DIR", str(PROJECT_ROOT / ".logs"))

from payledger import cli, constants, core_logic, data_manager  # noqa: E402
from payledger.constants import OrderKind, PaymentType  # noqa: E402
from payledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_WAREHOUSE_ID = "WH-TEST"
SUPPLIER_ID = "SUP-1"
CUSTOMER_ID = "CUS-1"
PRODUCT_ID = "P-1"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultWarehouse = {default_warehouse_id}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_warehouse_id: str
    schema_version: str
    business_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        default_warehouse_id: str = DEFAULT_WAREHOUSE_ID,
        filename: str = "payledger_data.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, default_warehouse_id=default_warehouse_id, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Traders",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_warehouse_id: str = DEFAULT_WAREHOUSE_ID,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name, default_warehouse_id=default_warehouse_id)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                business_name=business_name,
                schema_version=schema_version,
                default_warehouse_id=default_warehouse_id,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_warehouse_id=default_warehouse_id,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def seeded_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Runtime context with one supplier, one customer and one product."""

    core_logic.add_counterpart(runtime_context, OrderKind.PURCHASE, party_id=SUPPLIER_ID, party_name="Acme Supply")
    core_logic.add_counterpart(runtime_context, OrderKind.SALES, party_id=CUSTOMER_ID, party_name="Jane Buyer")
    core_logic.add_product(
        runtime_context,
        product_id=PRODUCT_ID,
        product_name="Rice 5kg",
        unit_price=Decimal("10.00"),
    )
    return runtime_context


# ---------------------------------------------------------------------------
# Command builders
# ---------------------------------------------------------------------------


def make_payment(
    amount: str,
    payment_type: PaymentType = PaymentType.CASH,
    *,
    account_number: str | None = None,
    note: str | None = None,
) -> core_logic.PaymentCommand:
    """Build a payment command dated 2024-03-01."""

    return core_logic.PaymentCommand(
        amount=Decimal(amount),
        payment_type=payment_type,
        account_number=account_number,
        note=note,
        paid_on=date(2024, 3, 1),
    )


def make_create_command(
    *,
    order_kind: OrderKind = OrderKind.PURCHASE,
    total: str = "1000",
    quantity: int = 10,
    payment: core_logic.PaymentCommand | None = None,
) -> core_logic.CreateOrderCommand:
    return core_logic.CreateOrderCommand(
        order_kind=order_kind,
        counterpart_id=SUPPLIER_ID if order_kind is OrderKind.PURCHASE else CUSTOMER_ID,
        product_id=PRODUCT_ID,
        quantity=quantity,
        total=Decimal(total),
        payment=payment,
        order_date=date(2024, 3, 1),
        due_date=date(2024, 3, 31),
    )


def make_update_command(
    order: data_manager.OrderRow,
    *,
    total: str | None = None,
    quantity: int | None = None,
    payment: core_logic.PaymentCommand | None = None,
) -> core_logic.UpdateOrderCommand:
    return core_logic.UpdateOrderCommand(
        order_kind=OrderKind(order.order_kind),
        record_id=order.record_id,
        counterpart_id=order.counterpart_id,
        product_id=order.product_id,
        quantity=order.quantity if quantity is None else quantity,
        total=order.total if total is None else Decimal(total),
        payment=payment,
    )


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="payledger-cli", description="payledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "payledger_data.xlsx",
        business_name="Test Traders",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_warehouse_id=DEFAULT_WAREHOUSE_ID,
    )


@pytest.fixture
def mock_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Runtime context around a mock workbook for unit tests."""

    return core_logic.RuntimeContext(settings=settings, workbook=Mock(name="workbook"))
