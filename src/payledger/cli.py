"""Command-line entry points for payledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Keeping the CLI thin lets tests, scripts, or another front-end reuse
the same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import LedgerKind, OrderKind, PaymentType
from .exceptions import LedgerIntegrityError, TransientStoreError, ValidationError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="payledger-cli",
        description="Manage purchase and sales orders and their cash ledgers.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as order creation and deletion."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "add-supplier": register_add_counterpart_command(subparsers, OrderKind.PURCHASE),
        "add-customer": register_add_counterpart_command(subparsers, OrderKind.SALES),
        "add-warehouse": register_add_warehouse_command(subparsers),
        "create-order": register_create_order_command(subparsers),
        "update-order": register_update_order_command(subparsers),
        "delete-order": register_order_lookup_command(
            subparsers, "delete-order", "Delete an order and its ledger entry.", run_delete_order
        ),
        "reconcile": register_order_lookup_command(
            subparsers, "reconcile", "Re-run ledger reconciliation for a stored order.", run_reconcile
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands."""
    specs = {
        "show-order": register_order_lookup_command(
            subparsers, "show-order", "Display an order's payment position.", run_show_order
        ),
        "orders": register_orders_command(subparsers),
        "ledger": register_ledger_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_kind_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--kind",
        choices=[member.value for member in OrderKind],
        required=True,
        help="Order kind: purchase (supplier) or sales (customer).",
    )


def _add_order_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--counterpart-id", required=True, help="Supplier id for purchases, customer id for sales.")
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--quantity", required=True, type=int)
    parser.add_argument("--total", required=True)
    parser.add_argument("--warehouse-id", default=None)
    parser.add_argument("--amount-paid", default="0")
    parser.add_argument(
        "--payment-type",
        choices=[member.value for member in PaymentType],
        default=None,
    )
    parser.add_argument("--account-number", default=None, help="Required for Bank payments.")
    parser.add_argument("--note", default=None)
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Order date (YYYY-MM-DD).")
    parser.add_argument("--due-date", type=date.fromisoformat, default=None, help="Due date (YYYY-MM-DD).")


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--unit-price", required=True)
        parser.add_argument("--inactive", action="store_true", help="Mark the product as inactive on creation.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_counterpart_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    order_kind: OrderKind,
) -> CommandSpec:
    """Register ``add-supplier`` or ``add-customer``."""
    noun = "supplier" if order_kind is OrderKind.PURCHASE else "customer"
    name = f"add-{noun}"
    help_text = f"Register a new {noun}."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--party-id", required=True)
        parser.add_argument("--party-name", required=True)
        parser.add_argument("--inactive", action="store_true", help=f"Mark the {noun} as inactive on creation.")
        parser.set_defaults(command=name, kind=order_kind.value)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_counterpart)


def register_add_warehouse_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-warehouse``."""
    name = "add-warehouse"
    help_text = "Register a new warehouse."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--warehouse-id", required=True)
        parser.add_argument("--warehouse-name", required=True)
        parser.add_argument("--inactive", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_warehouse)


def register_create_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-order``."""
    name = "create-order"
    help_text = "Create a purchase or sales order with an optional payment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        _add_order_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_order)


def register_update_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-order``."""
    name = "update-order"
    help_text = "Edit an order; the ledger entry follows its payment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--record-id", required=True)
        _add_order_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_order)


def register_order_lookup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register a command addressing one order by kind and record id."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--record-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_orders_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``orders``."""
    name = "orders"
    help_text = "List orders of one kind."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_orders)


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    name = "ledger"
    help_text = "List cash ledger entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument(
            "--ledger",
            choices=[member.value for member in LedgerKind],
            default=None,
            help="Restrict output to one ledger (default: all three).",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_ledger_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _parse_money(raw: str, label: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"{label} must be a number: {raw}") from exc


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_id": args.product_id,
        "product_name": args.product_name,
        "unit_price": _parse_money(args.unit_price, "Unit price"),
        "is_active": not getattr(args, "inactive", False),
    }


def translate_payment(args: argparse.Namespace) -> Optional[core_logic.PaymentCommand]:
    """Translate the payment flags; a zero amount means no payment."""
    amount = _parse_money(args.amount_paid, "Amount paid")
    if amount == Decimal("0"):
        return None
    if args.payment_type is None:
        raise ValidationError("--payment-type is required when --amount-paid is positive")
    return core_logic.PaymentCommand(
        amount=amount,
        payment_type=PaymentType(args.payment_type),
        account_number=args.account_number,
        note=args.note,
        paid_on=args.date,
    )


def translate_create_order(args: argparse.Namespace) -> core_logic.CreateOrderCommand:
    """Translate CLI args into a create-order command object."""
    return core_logic.CreateOrderCommand(
        order_kind=OrderKind(args.kind),
        counterpart_id=args.counterpart_id,
        product_id=args.product_id,
        quantity=args.quantity,
        total=_parse_money(args.total, "Total"),
        warehouse_id=args.warehouse_id,
        payment=translate_payment(args),
        order_date=args.date,
        due_date=args.due_date,
    )


def translate_update_order(args: argparse.Namespace) -> core_logic.UpdateOrderCommand:
    """Translate CLI args into an update-order command object."""
    return core_logic.UpdateOrderCommand(
        order_kind=OrderKind(args.kind),
        record_id=args.record_id,
        counterpart_id=args.counterpart_id,
        product_id=args.product_id,
        quantity=args.quantity,
        total=_parse_money(args.total, "Total"),
        warehouse_id=args.warehouse_id,
        payment=translate_payment(args),
        order_date=args.date,
        due_date=args.due_date,
    )


def _report_result(result: core_logic.ReconciliationResult) -> None:
    ledger = result.ledger_kind.value if result.ledger_kind else "none"
    print(f"{result.order.order_id}\trecord={result.order.record_id}\taction={result.action.value}\tledger={ledger}")
    if result.summary_error is not None:
        print(f"warning: summary not updated: {result.summary_error}")


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    core_logic.add_product(context, **payload)
    return 0


def run_add_counterpart(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-supplier / add-customer workflow in the BLL."""
    core_logic.add_counterpart(
        context,
        OrderKind(args.kind),
        party_id=args.party_id,
        party_name=args.party_name,
        is_active=not getattr(args, "inactive", False),
    )
    return 0


def run_add_warehouse(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.add_warehouse(
        context,
        warehouse_id=args.warehouse_id,
        warehouse_name=args.warehouse_name,
        is_active=not getattr(args, "inactive", False),
    )
    return 0


def run_create_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the create-order workflow via the BLL."""
    command = translate_create_order(args)
    _report_result(core_logic.create_order(context, command))
    return 0


def run_update_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-order workflow via the BLL."""
    command = translate_update_order(args)
    _report_result(core_logic.update_order(context, command))
    return 0


def run_delete_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _report_result(core_logic.delete_order(context, OrderKind(args.kind), args.record_id))
    return 0


def run_reconcile(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _report_result(core_logic.reconcile_order(context, OrderKind(args.kind), args.record_id))
    return 0


def run_show_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the payment position of one order."""
    details = core_logic.describe_order(context, OrderKind(args.kind), args.record_id)
    for key, value in details.items():
        rendered = value.value if hasattr(value, "value") else value
        print(f"{key}: {rendered if rendered is not None else '-'}")
    return 0


def run_list_orders(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for order in core_logic.list_orders(context, OrderKind(args.kind)):
        status = core_logic.payment_status(order).value
        print(f"{order.order_id}\t{order.record_id}\t{order.counterpart_id}\t{order.total}\t{status}")
    return 0


def run_ledger_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    ledger_kind = LedgerKind(args.ledger) if args.ledger else None
    for kind, entry in core_logic.list_ledger_entries(context, OrderKind(args.kind), ledger_kind):
        print(f"{kind.value}\t{entry.order_id}\t{entry.amount_paid}\t{entry.balance}\t{entry.status}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, LedgerIntegrityError):
        log.error("%s", error)
        return 4
    if isinstance(error, TransientStoreError):
        if error.resume_hint:
            log.error("%s (run '%s' to finish)", error, error.resume_hint)
        else:
            log.error("%s", error)
        return 5
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
