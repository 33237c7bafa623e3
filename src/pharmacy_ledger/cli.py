"""Command-line entry points for the pharmacy ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front-end that wants to expose
the package capabilities.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reports
from .constants import DiscountType
from .data_manager import CartLine, Product


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


@dataclass(frozen=True)
class ItemSpec:
    """One ``--item`` argument: product, quantity and optional discount.

    ``discount_type`` stays ``None`` when the argument carried no discount.
    """

    product_id: str
    quantity: int
    discount_type: Optional[DiscountType] = None
    discount_value: Decimal = Decimal("0")


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BUSINESS_RULE = 2
EXIT_MISSING_FILE = 3
EXIT_NOT_COMMITTED = 4


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pharmacy-cli",
        description="Command-line tools for the Pharmacy ledger workbook.",
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
    """Declare mutating CLI commands such as sales and stock adjustments."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "add-category": register_add_category_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "sale": register_sale_command(subparsers),
        "edit-sale": register_edit_sale_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "sales": register_sales_command(subparsers),
        "categories": register_categories_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_command(name: str, help_text: str, execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default="", help="Leave empty to generate one.")
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="Others")
        parser.add_argument("--batch", default="")
        parser.add_argument("--expiry-date", default="", help="YYYY-MM-DD")
        parser.add_argument("--buy-price", required=True)
        parser.add_argument("--sell-price", required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--location", default="")
        parser.add_argument("--vendor", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalogue."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_add_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-category``."""
    name = "add-category"
    help_text = "Add a product category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_category)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""
    name = "adjust-stock"
    help_text = "Apply a signed stock correction to a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--delta", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust_stock)


def _add_item_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        type=parse_item_spec,
        required=required,
        help="PRODUCT_ID:QTY[:PERCENT|FLAT:VALUE]; repeat for each line.",
    )


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Check out a cart and record the sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_item_arguments(parser, required=True)
        parser.add_argument("--tax", action="store_true", help="Apply GST to the bill.")
        parser.add_argument("--discount", default="0", help="Whole-bill discount percentage.")
        parser.add_argument("--customer-name", default=None)
        parser.add_argument("--customer-email", default=None)
        parser.add_argument("--customer-mobile", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_edit_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-sale``."""
    name = "edit-sale"
    help_text = "Edit the lines or bill discount of a recorded sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        _add_item_arguments(parser, required=False)
        parser.add_argument("--discount", default=None, help="New whole-bill discount percentage.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_sale)


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a recorded sale and restore its stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    return _simple_command("stock", "Display current stock levels.", run_stock_report)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    return _simple_command("sales", "Display recorded sales, newest first.", run_sales_report)


def register_categories_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``categories``."""
    return _simple_command("categories", "Display product categories.", run_categories_report)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display revenue, profit, expiry and low-stock figures."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=date.fromisoformat, default=None, help="YYYY-MM-DD (default today)")
        parser.add_argument("--end", type=date.fromisoformat, default=None, help="YYYY-MM-DD (default today)")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations.

    Without ``config_path`` the data layer searches upward from the working
    directory for ``config.ini``.
    """
    context = core_logic.load_runtime_context(config_path)
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


def parse_item_spec(raw: str) -> ItemSpec:
    """Parse ``PRODUCT_ID:QTY[:PERCENT|FLAT:VALUE]`` into an :class:`ItemSpec`."""
    parts = raw.split(":")
    if len(parts) not in (2, 4):
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QTY[:TYPE:VALUE], got '{raw}'")
    try:
        quantity = int(parts[1])
        if len(parts) == 2:
            return ItemSpec(product_id=parts[0], quantity=quantity)
        return ItemSpec(
            product_id=parts[0],
            quantity=quantity,
            discount_type=DiscountType(parts[2].upper()),
            discount_value=core_logic.to_decimal(parts[3], label="Discount"),
        )
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid item '{raw}': {exc}") from exc


def translate_add_product(args: argparse.Namespace) -> Product:
    """Translate CLI args into a product record."""
    return Product(
        product_id=args.product_id,
        name=args.name,
        category=args.category,
        batch=args.batch,
        expiry_date=args.expiry_date,
        buy_price=core_logic.to_decimal(args.buy_price, label="Buy price"),
        sell_price=core_logic.to_decimal(args.sell_price, label="Sell price"),
        stock=args.stock,
        location=args.location,
        vendor=args.vendor,
    )


def translate_cart(context: core_logic.RuntimeContext, items: Sequence[ItemSpec]) -> tuple[CartLine, ...]:
    """Build a cart from item specs, applying the add-time stock check."""
    cart: tuple[CartLine, ...] = ()
    for item in items:
        product = core_logic.get_product(context, item.product_id)
        cart = core_logic.add_to_cart(cart, product, item.quantity)
        cart = tuple(
            replace(line, item_discount_type=item.discount_type, item_discount_value=item.discount_value)
            if line.product_id == item.product_id and item.discount_type is not None
            else line
            for line in cart
        )
    return cart


def translate_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        cart=translate_cart(context, args.items),
        customer=core_logic.CustomerInfo(
            name=args.customer_name,
            email=args.customer_email,
            mobile=args.customer_mobile,
        ),
        tax_enabled=args.tax,
        bill_discount_percent=args.discount,
    )


def translate_edit_sale(context: core_logic.RuntimeContext, args: argparse.Namespace):
    """Translate CLI args into the edited version of a stored sale.

    Lines for products already on the bill keep their frozen snapshot;
    new products are snapshotted from the current catalogue. An item
    without a discount suffix keeps the discount its line already had.
    Returns ``None`` when the sale does not exist.
    """
    prior = core_logic.get_sale(context, args.sale_id)
    if prior is None:
        return None

    items = prior.items
    if args.items:
        prior_lines = {line.product_id: line for line in prior.items}
        lines: List[CartLine] = []
        for item in args.items:
            previous = prior_lines.get(item.product_id)
            if previous is not None:
                line = replace(previous, quantity=item.quantity)
            else:
                line = CartLine(core_logic.get_product(context, item.product_id), item.quantity)
            if item.discount_type is not None:
                line = replace(line, item_discount_type=item.discount_type, item_discount_value=item.discount_value)
            lines.append(line)
        items = tuple(lines)

    discount = prior.discount_percentage
    if args.discount is not None:
        discount = core_logic.to_decimal(args.discount, label="Discount")
    return replace(prior, items=items, discount_percentage=discount)


def _report_result(result: core_logic.TransactionResult) -> int:
    if result:
        return EXIT_OK
    print(f"{result.status.value}: {result.reason or result.record_id or ''}".rstrip(), file=sys.stderr)
    return EXIT_NOT_COMMITTED


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    result = core_logic.add_product(context, translate_add_product(args))
    if result:
        print(result.record_id)
    return _report_result(result)


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow in the BLL."""
    return _report_result(core_logic.delete_product(context, args.product_id))


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-category workflow in the BLL."""
    return _report_result(core_logic.add_category(context, args.name))


def run_adjust_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a standalone stock correction via the BLL."""
    return _report_result(core_logic.adjust_stock(context, args.product_id, args.delta))


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    result = core_logic.process_sale(context, translate_sale(context, args))
    if result:
        sale = result.sale
        print(f"{sale.sale_id}\t{sale.total_amount:.2f}")
    return _report_result(result)


def run_edit_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale edit workflow via the BLL."""
    edited = translate_edit_sale(context, args)
    if edited is None:
        return _report_result(
            core_logic.TransactionResult(core_logic.TransactionStatus.NOT_FOUND, record_id=args.sale_id)
        )
    return _report_result(core_logic.update_sale(context, edited))


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale deletion workflow via the BLL."""
    return _report_result(core_logic.delete_sale(context, args.sale_id))


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every product with its stock count."""
    for product in core_logic.list_products(context):
        print(f"{product.product_id}\t{product.name}\t{product.stock}")
    return EXIT_OK


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print recorded sales, newest first."""
    for sale in core_logic.list_sales(context):
        print(f"{sale.sale_id}\t{len(sale.items)}\t{sale.total_amount:.2f}\t{sale.total_profit:.2f}")
    return EXIT_OK


def run_categories_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print category labels."""
    for label in core_logic.list_categories(context):
        print(label)
    return EXIT_OK


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard summary for the requested window."""
    today = datetime.now(UTC).date()
    summary = reports.dashboard_summary(
        core_logic.list_sales(context),
        core_logic.list_products(context),
        start=args.start or today,
        end=args.end or today,
        today=today,
    )
    print(f"Revenue\t{summary.revenue:.2f}")
    print(f"Profit\t{summary.profit:.2f}")
    print(f"Sales\t{summary.sale_count}")
    print(f"Today collection\t{summary.today_collection:.2f}")
    print(f"Today profit\t{summary.today_profit:.2f}")
    print(f"Expired stock value\t{summary.expired_stock_value:.2f}")
    print(f"Low stock\t{', '.join(p.name for p in summary.low_stock_products) or '-'}")
    return EXIT_OK


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return EXIT_BUSINESS_RULE
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return EXIT_MISSING_FILE
    log.error("%s", error)
    return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
