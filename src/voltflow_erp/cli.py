"""Command-line entry points for the VoltFlow ERP toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into business-layer calls, and printing results.
Each sub-command declares the :class:`~voltflow_erp.constants.Action` it
performs; the caller's role is checked against it once, before dispatch.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log, reporting, transfer
from .cart import Cart
from .constants import CHANNEL_COMMISSIONS, EXPENSE_CATEGORIES, Action, CartKind, ContactType, UserRole
from .models import Contact, Pricing, Product
from .permissions import require_permission, visible_contact_types
from .pricing import landed_unit_cost, net_unit_cost, simulate_margin, suggested_selling_price
from .totals import decompose_tax

Registrar = Callable[[argparse._SubParsersAction], argparse.ArgumentParser]
Executor = Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    action: Action
    register: Registrar
    execute: Executor
    mutates: bool = False


def decimal_arg(text: str) -> Decimal:
    """``argparse`` type converter for decimal numbers."""

    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from exc


def item_arg(text: str) -> Tuple[str, Decimal, Decimal]:
    """Parse ``PRODUCT_ID:QUANTITY[:DISCOUNT]``."""

    parts = text.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise argparse.ArgumentTypeError(f"expected PRODUCT_ID:QUANTITY[:DISCOUNT], got {text!r}")
    quantity = decimal_arg(parts[1])
    discount = decimal_arg(parts[2]) if len(parts) == 3 else Decimal("0")
    return parts[0], quantity, discount


def labor_arg(text: str) -> Tuple[str, Decimal]:
    """Parse ``DESCRIPTION:AMOUNT``; the description may contain colons."""

    description, sep, amount = text.rpartition(":")
    if not sep or not description:
        raise argparse.ArgumentTypeError(f"expected DESCRIPTION:AMOUNT, got {text!r}")
    return description, decimal_arg(amount)


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="voltflow-cli",
        description="Command-line tools for the VoltFlow ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument(
        "--role",
        choices=[member.value for member in UserRole],
        default=UserRole.ADMIN.value,
        help="Role the command runs as (default: ADMIN).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [*write_command_specs(), *read_command_specs()]
    table = build_command_table(specs)
    for spec in table.values():
        spec.register(subparsers)
    return table


def _simple_registrar(name: str, help_text: str, *arguments: Tuple[Tuple[str, ...], Dict[str, object]]) -> Registrar:
    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        for flags, options in arguments:
            parser.add_argument(*flags, **options)
        parser.set_defaults(command=name)
        return parser

    return registrar


def _arg(*flags: str, **options: object) -> Tuple[Tuple[str, ...], Dict[str, object]]:
    return flags, options


def _spec(name: str, help_text: str, action: Action, execute: Executor, *arguments, mutates: bool = False) -> CommandSpec:
    return CommandSpec(
        name=name,
        help_text=help_text,
        action=action,
        register=_simple_registrar(name, help_text, *arguments),
        execute=execute,
        mutates=mutates,
    )


def write_command_specs() -> Sequence[CommandSpec]:
    """Declare mutating CLI commands such as sales and purchases."""
    cart_arguments = (
        _arg("--contact-id", default=None),
        _arg("--item", dest="items", action="append", type=item_arg, default=[], metavar="PID:QTY[:DISC]"),
        _arg("--labor", dest="labor", action="append", type=labor_arg, default=[], metavar="DESC:AMOUNT"),
        _arg("--user", default="cli"),
    )
    return [
        _spec(
            "add-product",
            "Create or update a product in the Products sheet.",
            Action.EDIT_PRODUCTS,
            run_add_product,
            _arg("--product-id", default=""),
            _arg("--sku", required=True),
            _arg("--name", required=True),
            _arg("--category", default="Other"),
            _arg("--unit", default="Piece"),
            _arg("--stock", type=decimal_arg, default=Decimal("0")),
            _arg("--critical", type=decimal_arg, default=Decimal("0")),
            _arg("--purchase-price", type=decimal_arg, required=True),
            _arg("--exchange-rate", type=decimal_arg, default=Decimal("1")),
            _arg("--vat-rate", type=decimal_arg, default=None, help="Fraction, e.g. 0.20."),
            _arg("--other-expenses", type=decimal_arg, default=Decimal("0")),
            _arg("--selling-price", type=decimal_arg, default=None, help="Defaults to landed cost + 50%%."),
            mutates=True,
        ),
        _spec(
            "import-products",
            "Bulk import products from a CSV or XLSX file.",
            Action.EDIT_PRODUCTS,
            run_import_products,
            _arg("--file", type=Path, required=True),
            mutates=True,
        ),
        _spec(
            "delete-product",
            "Delete a product, archiving it when transactions reference it.",
            Action.EDIT_PRODUCTS,
            run_delete_product,
            _arg("--product-id", required=True),
            mutates=True,
        ),
        _spec(
            "add-contact",
            "Create or update a customer or supplier.",
            Action.MANAGE_CONTACTS,
            run_add_contact,
            _arg("--contact-id", default=""),
            _arg("--name", required=True),
            _arg("--type", dest="contact_type", choices=[member.value for member in ContactType], required=True),
            _arg("--phone", default=""),
            _arg("--address", default=""),
            mutates=True,
        ),
        _spec(
            "delete-contact",
            "Delete a customer or supplier.",
            Action.MANAGE_CONTACTS,
            run_delete_contact,
            _arg("--contact-id", required=True),
            mutates=True,
        ),
        _spec(
            "purchase",
            "Record a purchase from a supplier (or a supplier return).",
            Action.RECORD_PURCHASE,
            run_purchase,
            *cart_arguments,
            _arg("--return", dest="is_return", action="store_true"),
            mutates=True,
        ),
        _spec(
            "sale",
            "Record a sale to a customer.",
            Action.RECORD_SALE,
            run_sale,
            *cart_arguments,
            mutates=True,
        ),
        _spec(
            "add-expense",
            "Record an operating expense.",
            Action.MANAGE_EXPENSES,
            run_add_expense,
            _arg("--category", choices=list(EXPENSE_CATEGORIES), required=True),
            _arg("--amount", type=decimal_arg, required=True),
            _arg("--description", default=""),
            _arg("--user", default="cli"),
            mutates=True,
        ),
        _spec(
            "delete-expense",
            "Delete an expense entry.",
            Action.MANAGE_EXPENSES,
            run_delete_expense,
            _arg("--expense-id", required=True),
            mutates=True,
        ),
        _spec(
            "set-catalog",
            "Replace the product category and/or unit lists.",
            Action.MANAGE_SETTINGS,
            run_set_catalog,
            _arg("--category", dest="categories", action="append", default=None),
            _arg("--unit", dest="units", action="append", default=None),
            mutates=True,
        ),
    ]


def read_command_specs() -> Sequence[CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    filter_arguments = (
        _arg("--search", default=None),
        _arg("--category", default=reporting.ALL_CATEGORIES),
    )
    export_argument = _arg("--export", type=Path, default=None, help="Write the rows to this CSV file.")
    return [
        _spec("stock", "Display current stock levels.", Action.VIEW_INVENTORY, run_stock_report, *filter_arguments),
        _spec("critical", "Display products at or below their reorder threshold.", Action.VIEW_INVENTORY, run_critical_report),
        _spec(
            "report",
            "Display sales, purchases, expenses, and net profit.",
            Action.VIEW_FINANCIALS,
            run_financial_report,
            _arg("--start", default=None, help="Inclusive start day (YYYY-MM-DD)."),
            _arg("--end", default=None, help="Inclusive end day (YYYY-MM-DD)."),
        ),
        _spec(
            "valuation",
            "Display the tax-exclusive inventory valuation.",
            Action.VIEW_COSTS,
            run_valuation_report,
            *filter_arguments,
            export_argument,
        ),
        _spec("log", "Display the transaction log.", Action.VIEW_TRANSACTIONS, run_log_report, export_argument),
        _spec("contacts", "List the contacts visible to the role.", Action.MANAGE_CONTACTS, run_contacts_report),
        _spec("expenses", "Display recorded expenses.", Action.MANAGE_EXPENSES, run_expenses_report, export_argument),
        _spec(
            "margin",
            "Simulate the per-unit margin of a product on a sales channel.",
            Action.VIEW_COSTS,
            run_margin_report,
            _arg("--product-id", required=True),
            _arg("--channel", choices=list(CHANNEL_COMMISSIONS), default="Store"),
            _arg("--selling-price", type=decimal_arg, default=None),
        ),
    ]


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def authorize(args: argparse.Namespace, command_table: Mapping[str, CommandSpec]) -> CommandSpec:
    """Look up the command and check the caller's role against its action."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    require_permission(UserRole(args.role), spec.action)
    return spec


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    spec = authorize(args, command_table)
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


def _money(context: core_logic.RuntimeContext, value: Decimal) -> str:
    return transfer.format_currency(value, context.settings.currency_symbol)


def _export(rows: Sequence[Mapping[str, str]], destination: Optional[Path]) -> None:
    if destination is not None:
        count = transfer.write_csv(rows, destination)
        print(f"Exported {count} rows to {destination}")


def translate_add_product(args: argparse.Namespace) -> Product:
    """Translate CLI args into a product record."""
    pricing = Pricing(
        purchase_price=args.purchase_price,
        exchange_rate=args.exchange_rate,
        other_expenses=args.other_expenses,
        **({"vat_rate": args.vat_rate} if args.vat_rate is not None else {}),
    )
    selling_price = args.selling_price if args.selling_price is not None else suggested_selling_price(pricing)
    return Product(
        product_id=args.product_id,
        sku=args.sku,
        name=args.name,
        category=args.category,
        unit=args.unit,
        stock=args.stock,
        critical_threshold=args.critical,
        pricing=pricing,
        selling_price=selling_price,
    )


def translate_add_contact(args: argparse.Namespace) -> Contact:
    """Translate CLI args into a contact record."""
    return Contact(
        contact_id=args.contact_id,
        name=args.name,
        contact_type=ContactType(args.contact_type),
        phone=args.phone,
        address=args.address,
    )


def translate_cart(context: core_logic.RuntimeContext, args: argparse.Namespace, kind: CartKind) -> Cart:
    """Fill a cart from ``--item`` and ``--labor`` arguments."""
    cart = Cart(kind)
    for product_id, quantity, discount in args.items:
        core_logic.add_to_cart(context, cart, product_id, quantity, discount)
    for description, amount in args.labor:
        cart.add_labor_line(description, amount)
    return cart


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.upsert_product(context, translate_add_product(args))
    print(f"Saved product {product.product_id} ({product.sku})")
    return 0


def run_import_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    drafts = transfer.read_product_file(args.file)
    stored = core_logic.import_products(context, drafts)
    print(f"Imported {len(stored)} products")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    archived = core_logic.delete_product(context, args.product_id)
    print(f"{'Archived' if archived else 'Deleted'} product {args.product_id}")
    return 0


def run_add_contact(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    contact = core_logic.upsert_contact(context, translate_add_contact(args))
    print(f"Saved contact {contact.contact_id} ({contact.name})")
    return 0


def run_delete_contact(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_contact(context, args.contact_id)
    print(f"Deleted contact {args.contact_id}")
    return 0


def _print_receipt(context: core_logic.RuntimeContext, transaction) -> None:
    tax = decompose_tax(transaction.total_amount, context.settings.standard_vat_rate)
    print(f"Transaction {transaction.transaction_id} ({transaction.transaction_type.value})")
    print(f"  Subtotal:  {_money(context, transaction.subtotal)}")
    print(f"  Discount:  {_money(context, transaction.total_discount)}")
    print(f"  Net:       {_money(context, tax.tax_exclusive)}")
    print(f"  VAT:       {_money(context, tax.tax_amount)}")
    print(f"  Total:     {_money(context, transaction.total_amount)}")


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    cart = translate_cart(context, args, CartKind.PURCHASE)
    transaction = core_logic.checkout(context, cart, args.contact_id, user=args.user, is_return=args.is_return)
    _print_receipt(context, transaction)
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL.

    Without ``--contact-id`` the configured walk-in customer is used.
    """
    cart = translate_cart(context, args, CartKind.SALE)
    contact_id = args.contact_id or context.settings.default_customer_id
    transaction = core_logic.checkout(context, cart, contact_id, user=args.user)
    _print_receipt(context, transaction)
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = core_logic.record_expense(
        context,
        category=args.category,
        amount=args.amount,
        description=args.description,
        user=args.user,
    )
    print(f"Recorded expense {expense.expense_id} ({_money(context, expense.amount)})")
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_expense(context, args.expense_id)
    print(f"Deleted expense {args.expense_id}")
    return 0


def run_set_catalog(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    settings = core_logic.update_catalog_settings(context, categories=args.categories, units=args.units)
    print(f"Categories: {', '.join(settings.categories)}")
    print(f"Units: {', '.join(settings.units)}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    products = reporting.filter_products(core_logic.list_products(context), args.search, args.category)
    for product in products:
        print(f"{product.product_id}\t{product.sku}\t{product.name}\t{product.stock} {product.unit}")
    return 0


def run_critical_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = reporting.dashboard_snapshot(core_logic.list_products(context), core_logic.list_transactions(context))
    for product in snapshot.critical_products:
        print(f"{product.sku}\t{product.name}\t{product.stock} <= {product.critical_threshold}")
    return 0


def run_financial_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit reporting workflow."""
    expenses = core_logic.list_expenses(context)
    summary = reporting.financial_summary(core_logic.list_transactions(context), expenses, args.start, args.end)
    print(f"Sales:            {_money(context, summary.total_sales)}")
    print(f"Purchases:        {_money(context, summary.total_inventory_purchases)}")
    print(f"Expenses:         {_money(context, summary.total_expenses)}")
    print(f"Net profit:       {_money(context, summary.net_profit)}")
    print(f"Expense/revenue:  {summary.expense_to_revenue_percent:.2f}%")
    selected = [e for e in expenses if reporting.in_date_range(e.timestamp_iso, args.start, args.end)]
    for category, amount in sorted(reporting.expenses_by_category(selected).items()):
        print(f"  {category}: {_money(context, amount)}")
    return 0


def run_valuation_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    report = reporting.inventory_valuation(core_logic.list_products(context), args.search, args.category)
    rows = transfer.valuation_rows(report, context.settings.currency_symbol)
    for row in rows:
        print("\t".join(row.values()))
    print(f"Total inventory value (excl. VAT): {_money(context, report.total_inventory_value)}")
    _export(rows, args.export)
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction log reporting workflow."""
    rows = transfer.transaction_rows(core_logic.list_transactions(context), context.settings.currency_symbol)
    for row in rows:
        print("\t".join(row.values()))
    _export(rows, args.export)
    return 0


def run_contacts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    visible = visible_contact_types(UserRole(args.role))
    for contact in core_logic.list_contacts(context):
        if contact.contact_type in visible:
            print(f"{contact.contact_id}\t{contact.contact_type.value}\t{contact.name}\t{contact.phone}")
    return 0


def run_expenses_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rows = transfer.expense_rows(core_logic.list_expenses(context), context.settings.currency_symbol)
    for row in rows:
        print("\t".join(row.values()))
    _export(rows, args.export)
    return 0


def run_margin_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.get_product(context, args.product_id)
    price = args.selling_price if args.selling_price is not None else product.selling_price
    result = simulate_margin(product.pricing, price, args.channel)
    print(f"Landed unit cost: {_money(context, landed_unit_cost(product.pricing))}")
    print(f"Net unit cost:    {_money(context, net_unit_cost(product.pricing))}")
    print(f"Commission:       {_money(context, result.commission)} ({result.channel})")
    print(f"Net profit:       {_money(context, result.net_profit)}")
    print(f"Margin:           {result.margin_percent:.2f}%")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
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
        spec = authorize(args, command_table)
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
