"""Command-line entry points for the khata ledger.

This module only wires argparse and translates arguments into calls on the
ledger managers. Every write command commits through its manager's unit of
work, so nothing is persisted here.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, credit_ledger, integrations, inventory, log, payables, reports, sales
from .constants import PaymentMethod

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="khata-cli",
        description="Billing, stock and khata tools for the shop ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the cwd by default).",
    )
    parser.add_argument(
        "--namespace",
        default=None,
        help="Use the workbook reserved for this session namespace.",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    arguments: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
) -> CommandSpec:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales, dues and bills."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "receive-stock": register_receive_stock_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "add-due": register_add_due_command(subparsers),
        "settle-due": register_settle_due_command(subparsers),
        "add-vendor": register_add_vendor_command(subparsers),
        "record-bill": register_record_bill_command(subparsers),
        "add-expense": register_add_expense_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and reminders."""
    specs = {
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "khata": register_khata_command(subparsers),
        "payables": register_payables_command(subparsers),
        "profit": register_profit_command(subparsers),
        "log": register_log_command(subparsers),
        "remind": register_remind_command(subparsers),
        "pay-link": register_pay_link_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--selling-price", required=True)
        parser.add_argument("--cost-price", default="0")
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--category", default="General")
        parser.add_argument("--gst", dest="gst_percent", default=None)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--product-id", default=None)

    return _simple_spec("add-product", "Add a product to the catalogue.", run_add_product, arguments)


def register_receive_stock_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``receive-stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)

    return _simple_spec("receive-stock", "Add received units to a product.", run_receive_stock, arguments)


def register_add_customer_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", required=True)

    return _simple_spec("add-customer", "Open a khata for a new customer.", run_add_customer, arguments)


def register_add_due_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--description", default="Credit")

    return _simple_spec("add-due", "Record udhaar given to a customer.", run_add_due, arguments)


def register_settle_due_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--due-id", required=True)

    return _simple_spec("settle-due", "Mark a customer due as paid.", run_settle_due, arguments)


def register_add_vendor_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="General")
        parser.add_argument("--opening-balance", default="0")
        parser.add_argument("--next-payment-date", default=None)
        parser.add_argument("--phone", default=None)

    return _simple_spec("add-vendor", "Register a supplier.", run_add_vendor, arguments)


def register_record_bill_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--vendor-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--description", default="")
        parser.add_argument("--bill-date", default=None)
        parser.add_argument("--receipt-ref", default=None)

    return _simple_spec("record-bill", "Record a purchase bill from a vendor.", run_record_bill, arguments)


def register_add_expense_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--amount", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--description", default="")
        parser.add_argument("--date", dest="expense_date", default=None)
        vendor = parser.add_mutually_exclusive_group()
        vendor.add_argument("--vendor-id", default=None)
        vendor.add_argument("--new-vendor", dest="new_vendor_name", default=None)

    return _simple_spec("add-expense", "Record a shop expense.", run_add_expense, arguments)


def register_sale_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``sale``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            metavar="CODE[:QTY[:DISCOUNT]]",
            help="Product id or barcode, repeatable.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        customer = parser.add_mutually_exclusive_group()
        customer.add_argument("--customer-id", default=None)
        customer.add_argument("--new-customer-name", default=None)
        parser.add_argument("--new-customer-phone", default=None)
        parser.add_argument("--cash-given", default=None)

    return _simple_spec("sale", "Bill a cart and record the sale.", run_sale, arguments)


def register_stock_command(subparsers: SubParsers) -> CommandSpec:
    return _simple_spec("stock", "Display current stock levels.", run_stock_report)


def register_low_stock_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--threshold", type=int, default=None)

    return _simple_spec("low-stock", "List products below the low-stock threshold.", run_low_stock_report, arguments)


def register_khata_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", default=None, help="Show one customer's dues.")

    return _simple_spec("khata", "Display customer balances or one customer's dues.", run_khata_report, arguments)


def register_payables_command(subparsers: SubParsers) -> CommandSpec:
    return _simple_spec("payables", "Display vendor balances.", run_payables_report)


def register_profit_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--start", type=datetime.fromisoformat, default=None, help="First day included (YYYY-MM-DD).")
        parser.add_argument("--end", type=datetime.fromisoformat, default=None, help="First day excluded (YYYY-MM-DD).")

    return _simple_spec("profit", "Display revenue, expenses and profit.", run_profit_report, arguments)


def register_log_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--limit", type=int, default=None)

    return _simple_spec("log", "Display recent transactions.", run_log_report, arguments)


def register_remind_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)

    return _simple_spec("remind", "Print a WhatsApp payment reminder link.", run_remind, arguments)


def register_pay_link_command(subparsers: SubParsers) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--amount", required=True)

    return _simple_spec("pay-link", "Print the UPI payment payload for an amount.", run_pay_link, arguments)


def load_runtime_context(
    config_path: Optional[Path] = None, namespace: Optional[str] = None
) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path, namespace=namespace)
    core_logic.ensure_schema_version(context)
    return context


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


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_cart_entry(entry: str) -> tuple[str, int, str]:
    """Split ``CODE[:QTY[:DISCOUNT]]`` into its parts.

    Raises:
        ValidationError: If the quantity is not a whole number.
    """
    parts = entry.split(":")
    if not parts[0].strip() or len(parts) > 3:
        raise core_logic.ValidationError(f"Invalid cart item: {entry!r}")
    code = parts[0].strip()
    try:
        quantity = int(parts[1]) if len(parts) > 1 and parts[1].strip() else 1
    except ValueError as exc:
        raise core_logic.ValidationError(f"Invalid quantity in cart item: {entry!r}") from exc
    discount = parts[2].strip() if len(parts) > 2 and parts[2].strip() else "0"
    return code, quantity, discount


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_name": args.product_name,
        "selling_price": args.selling_price,
        "cost_price": args.cost_price,
        "stock": args.stock,
        "category": args.category,
        "gst_percent": args.gst_percent,
        "barcode": args.barcode,
        "product_id": args.product_id,
    }


def translate_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> sales.SaleCommand:
    """Translate CLI args into a sale command object."""
    items = [
        sales.build_cart_item(context, code, quantity, discount)
        for code, quantity, discount in map(parse_cart_entry, args.items)
    ]
    if args.customer_id:
        customer = sales.CustomerRef.existing(args.customer_id)
    elif args.new_customer_name:
        customer = sales.CustomerRef.new(args.new_customer_name, args.new_customer_phone or "")
    else:
        customer = sales.CustomerRef.guest()
    return sales.SaleCommand(
        items=items,
        customer=customer,
        payment_method=PaymentMethod(args.payment_method),
        cash_given=args.cash_given,
    )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = inventory.add_product(context, **translate_add_product(args))
    print(f"Added product {product.product_id}: {product.product_name}")
    return 0


def run_receive_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    adjustment = inventory.receive_stock(context, args.product_id, args.quantity)
    print(f"{adjustment.product.product_name}: stock now {adjustment.product.stock}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = credit_ledger.add_customer(context, customer_name=args.name, phone=args.phone)
    print(f"Added customer {customer.customer_id}: {customer.customer_name}")
    return 0


def run_add_due(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    due = credit_ledger.issue_due(context, args.customer_id, args.amount, args.description)
    customer = credit_ledger.get_customer(context, args.customer_id)
    print(f"Recorded due {due.due_id} of {due.amount}; balance now {customer.balance}")
    return 0


def run_settle_due(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = credit_ledger.settle_due(context, args.customer_id, args.due_id)
    print(f"{customer.customer_name}: balance now {customer.balance}")
    return 0


def run_add_vendor(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    vendor = payables.create_vendor(
        context,
        vendor_name=args.name,
        category=args.category,
        opening_balance=args.opening_balance,
        next_payment_date=args.next_payment_date,
        phone=args.phone,
    )
    print(f"Added vendor {vendor.vendor_id}: {vendor.vendor_name}")
    return 0


def run_record_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    bill = payables.record_bill(
        context,
        args.vendor_id,
        args.amount,
        args.description,
        bill_date=args.bill_date,
        receipt_ref=args.receipt_ref,
    )
    vendor = payables.get_vendor(context, args.vendor_id)
    print(f"Recorded bill {bill.bill_id}; {vendor.vendor_name} balance now {vendor.balance}")
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = payables.record_expense(
        context,
        amount=args.amount,
        category=args.category,
        description=args.description,
        expense_date=args.expense_date,
        vendor_id=args.vendor_id,
        new_vendor_name=args.new_vendor_name,
    )
    print(f"Recorded expense {expense.expense_id} of {expense.amount}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the checkout and print the receipt."""
    receipt = sales.complete_sale(context, translate_sale(context, args))
    transaction = receipt.transaction
    print(f"Bill #{transaction.bill_id} ({transaction.transaction_id})")
    for line in transaction.items:
        print(f"  {line.name} x{line.quantity} @ {line.unit_price} = {line.line_total}")
    print(f"Total: {transaction.amount} via {transaction.payment_method} for {transaction.customer_name}")
    if receipt.change_due:
        print(f"Change due: {receipt.change_due}")
    return 0


def _print_rows(rows: List[Sequence[Any]]) -> None:
    for row in rows:
        print("\t".join("" if value is None else str(value) for value in row))


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_rows(
        [(p.product_id, p.product_name, p.selling_price, p.stock) for p in inventory.list_products(context)]
    )
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    products = inventory.list_low_stock_products(context, threshold=args.threshold)
    _print_rows([(p.product_id, p.product_name, p.stock) for p in products])
    return 0


def run_khata_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if args.customer_id:
        dues = credit_ledger.list_dues(context, args.customer_id)
        _print_rows(
            [(d.due_id, d.due_date, d.amount, "paid" if d.is_paid else "unpaid", d.description) for d in dues]
        )
        return 0
    customers = credit_ledger.list_customers(context)
    _print_rows([(c.customer_id, c.customer_name, c.phone, c.balance) for c in customers])
    print(f"Total receivables: {reports.total_receivables(customers)}")
    return 0


def run_payables_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    vendors = payables.list_vendors(context)
    _print_rows([(v.vendor_id, v.vendor_name, v.balance, v.next_payment_date) for v in vendors])
    print(f"Total payables: {reports.total_payables(vendors)}")
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = reports.calculate_profit_summary(context, start=args.start, end=args.end)
    print(f"Revenue: {summary.revenue}")
    print(f"Expenses: {summary.expenses}{' (estimated)' if summary.expenses_estimated else ''}")
    print(f"Profit: {summary.profit}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    transactions = sales.list_transactions(context, limit=args.limit)
    _print_rows(
        [
            (t.timestamp_iso, t.bill_id, t.customer_name, t.amount, t.payment_method, t.items_count)
            for t in transactions
        ]
    )
    return 0


def run_remind(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    integrations.send_payment_reminder(
        context,
        args.customer_id,
        lambda phone, message: print(integrations.build_whatsapp_link(phone, message)),
    )
    return 0


def run_pay_link(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(integrations.build_payment_link(context, args.amount))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.BusinessRuleViolation):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    if isinstance(error, core_logic.StoreError):
        return 4
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(args.config, args.namespace)
        return dispatch_command(context, args, command_table)
    except Exception as error:
        return handle_cli_error(error)
