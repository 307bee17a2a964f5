"""Utility for initializing the payledger workbook.

The module doubles as a script (``python -m payledger.setup_excel``) and as a
library used by tests. It lays out every order, ledger and summary sheet the
stores expect, with bold headers and the configured default warehouse.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, MutableMapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from .constants import LEDGER_SHEETS, SheetName


LEDGER_COLUMNS: Sequence[str] = [
    "EntryID",
    "OrderID",
    "CounterpartName",
    "ProductName",
    "Quantity",
    "TotalAmount",
    "AmountPaid",
    "Balance",
    "Status",
    "PaymentType",
    "AccountNumber",
    "Note",
    "Date",
    "DueDate",
]

ORDER_COLUMNS: Sequence[str] = [
    "RecordID",
    "OrderID",
    "OrderKind",
    "CounterpartID",
    "ProductID",
    "WarehouseID",
    "Quantity",
    "Total",
    "Date",
    "DueDate",
]

SUMMARY_COLUMNS: Sequence[str] = [
    "CounterpartID",
    "InvoiceNumber",
    "CounterpartName",
    "Description",
    "TotalAmount",
    "AmountPaid",
    "Balance",
    "Status",
]

PARTY_COLUMNS: Sequence[str] = ["PartyID", "PartyName", "IsActive"]

# Column order must match the serializers in ``data_manager``.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: ["ProductID", "ProductName", "UnitPrice", "IsActive"],
    SheetName.SUPPLIERS.value: PARTY_COLUMNS,
    SheetName.CUSTOMERS.value: PARTY_COLUMNS,
    SheetName.WAREHOUSES.value: ["WarehouseID", "WarehouseName", "IsActive"],
    SheetName.PURCHASE_ORDERS.value: ORDER_COLUMNS,
    SheetName.SALES_ORDERS.value: ORDER_COLUMNS,
    SheetName.ORDER_PAYMENTS.value: [
        "RecordID",
        "Sequence",
        "Amount",
        "PaymentType",
        "AccountNumber",
        "Note",
        "Date",
    ],
    SheetName.COUNTERS.value: ["CounterName", "Value"],
    **{sheet.value: LEDGER_COLUMNS for sheet in LEDGER_SHEETS.values()},
    SheetName.ACCOUNTS_PAYABLE.value: SUMMARY_COLUMNS,
    SheetName.ACCOUNTS_RECEIVABLE.value: SUMMARY_COLUMNS,
}

DEFAULT_WAREHOUSE: MutableMapping[str, object] = {
    "WarehouseID": "WH-MAIN",
    "WarehouseName": "Main Warehouse",
    "IsActive": True,
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values needed to bootstrap the workbook."""

    data_file: Path
    default_warehouse_id: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
        default_warehouse_id = parser.get("Defaults", "DefaultWarehouse")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, default_warehouse_id=default_warehouse_id)


def create_master_workbook(
    destination: Path,
    *,
    default_warehouse_id: str,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    default_warehouse_template: Mapping[str, object] = DEFAULT_WAREHOUSE,
    overwrite: bool = False,
) -> Path:
    """Create the payledger workbook at ``destination``.

    Raises ``FileExistsError`` when the target exists and ``overwrite`` is
    ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    warehouse = dict(default_warehouse_template)
    warehouse["WarehouseID"] = default_warehouse_id
    workbook[SheetName.WAREHOUSES.value].append(
        [warehouse["WarehouseID"], warehouse["WarehouseName"], warehouse["IsActive"]]
    )

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        default_warehouse_id=settings.default_warehouse_id,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the payledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- payledger setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
