"""Business logic layer for the pharmacy ledger.

This module owns the sale lifecycle (create, edit, delete) and the simple
catalogue operations around it. It consumes the Data Access Layer (DAL) for
all I/O and the pricing rules for every figure on a bill. Each mutating
operation is submitted to the store as exactly one atomic batch, so a sale and
the stock it moved are always persisted together or not at all.

Operations never raise for storage failures. They resolve to a
:class:`TransactionResult`; commit problems are additionally surfaced through
the notification feed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from . import data_manager, log, pricing, set_log_level
from .constants import EXPECTED_SCHEMA_VERSION, INITIAL_CATEGORIES, Collection, DiscountType
from .data_manager import (
    BatchOperation,
    CartLine,
    DeleteRecord,
    InsertRecord,
    Product,
    Sale,
    UpdateFields,
)
from .inventory import InventoryLedger
from .notifications import NotificationEmitter


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when user input is rejected before any write is attempted."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product or sale is unknown."""


class TransactionStatus(str, Enum):
    """Outcome of a mutating ledger operation."""

    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"
    NOT_FOUND = "NOT_FOUND"
    FAILED = "FAILED"


@dataclass(frozen=True)
class TransactionResult:
    """Result returned by every mutating operation; truthy only when committed."""

    status: TransactionStatus
    sale: Optional[Sale] = None
    record_id: Optional[str] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.status is TransactionStatus.COMMITTED


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the collaborators used by the BLL."""

    settings: data_manager.ConfigSettings
    store: data_manager.WorkbookStore
    ledger: InventoryLedger
    notifier: NotificationEmitter


@dataclass(frozen=True)
class CustomerInfo:
    """Optional customer details printed on a bill."""

    name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for checking out a cart."""

    cart: Sequence[CartLine]
    customer: CustomerInfo = field(default_factory=CustomerInfo)
    tax_enabled: bool = False
    bill_discount_percent: Union[Decimal, int, float, str, None] = Decimal("0")
    timestamp: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    store: data_manager.WorkbookStore,
) -> RuntimeContext:
    """Wire the notifier and inventory ledger around an opened store."""

    notifier = NotificationEmitter(ttl_seconds=settings.notification_ttl_seconds)
    ledger = InventoryLedger(store, notifier)
    return RuntimeContext(settings=settings, store=store, ledger=ledger, notifier=notifier)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the ledger workbook.

    Resolves ``config.ini``, parses settings, applies the configured log
    level, opens the workbook through a
    :class:`~pharmacy_ledger.data_manager.WorkbookStore` and subscribes a
    fresh :class:`InventoryLedger` to it.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or sheets are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    set_log_level(settings.log_level)
    store = data_manager.WorkbookStore.open(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_runtime_context(settings, store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[Product]:
    """Return the live product projection in workbook order."""
    return context.ledger.list_products()


def list_sales(context: RuntimeContext) -> List[Sale]:
    """Return every sale, most recent first."""
    sales = context.store.read_all(Collection.SALES)
    return sorted(sales, key=lambda sale: (sale.timestamp, sale.sale_id), reverse=True)


def list_categories(context: RuntimeContext) -> List[str]:
    return context.store.read_all(Collection.CATEGORIES)


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Resolve a product by identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is not in the ledger.
    """
    product = context.ledger.get_by_id(product_id)
    if product is None:
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def get_sale(context: RuntimeContext, sale_id: str) -> Optional[Sale]:
    """Read a sale straight from the store, or ``None`` when it does not exist.

    Edit and delete call this instead of trusting a sale object the caller
    may have cached.
    """
    sale = context.store.read_by_id(Collection.SALES, sale_id)
    if sale is None:
        log.warning("Sale lookup failed for id '%s'", sale_id)
    return sale


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a whole number of at least one unit.

    Raises:
        ValidationError: If ``quantity`` is not an ``int`` or is below one.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")


def require_nonnegative_money(amount: Decimal, *, label: str = "Amount") -> None:
    """Validate that a monetary value is a finite, nonnegative decimal.

    Raises:
        ValidationError: If ``amount`` is not a ``Decimal``, is NaN, or is
            less than zero.
    """
    if not isinstance(amount, Decimal) or not amount.is_finite() or amount < Decimal("0"):
        log.error("Monetary value validation failed for %s: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")


def require_worksheet_text(value: Optional[str], *, label: str = "Text") -> None:
    """Reject text the workbook cannot store, such as ASCII control characters.

    Raises:
        ValidationError: If ``value`` contains a character openpyxl refuses
            to write into a cell.
    """
    if value and ILLEGAL_CHARACTERS_RE.search(value):
        log.error("Text validation failed for %s: %r", label, value)
        raise ValidationError(f"{label} contains characters that cannot be saved")


def to_decimal(value: Union[Decimal, int, float, str], *, label: str = "Amount") -> Decimal:
    """Parse user-entered money into a ``Decimal``.

    Raises:
        ValidationError: If ``value`` is not numeric.
    """
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{label} must be numeric: {value!r}") from exc


def validate_product(product: Product) -> None:
    """Check a product record before it is added or replaced.

    Raises:
        ValidationError: If the name is blank, a price is negative, stock is not
            a nonnegative whole number, or a text field holds
            characters the workbook cannot store.
    """
    if not product.name.strip():
        raise ValidationError("Product name is required")
    for label, value in (
        ("Product name", product.name),
        ("Category", product.category),
        ("Batch", product.batch),
        ("Expiry date", product.expiry_date),
        ("Location", product.location),
        ("Vendor", product.vendor),
        ("Image", product.image),
    ):
        require_worksheet_text(value, label=label)
    require_nonnegative_money(product.buy_price, label="Buy price")
    require_nonnegative_money(product.sell_price, label="Sell price")
    if isinstance(product.stock, bool) or not isinstance(product.stock, int) or product.stock < 0:
        raise ValidationError("Stock must be a whole number of zero or more")


def validate_cart(cart: Sequence[CartLine]) -> None:
    """Check every line of a cart before pricing it.

    Raises:
        ValidationError: If any line has a bad quantity, a negative price,
            an unknown discount mode, a negative discount value or a
            product name the workbook cannot store.
    """
    for line in cart:
        require_positive_quantity(line.quantity)
        require_worksheet_text(line.name, label="Product name")
        require_nonnegative_money(line.sell_price, label="Sell price")
        require_nonnegative_money(line.buy_price, label="Buy price")
        if not isinstance(line.item_discount_type, DiscountType):
            raise ValidationError(f"Unsupported discount type: {line.item_discount_type}")
        require_nonnegative_money(line.item_discount_value, label="Discount")


def validate_customer(customer: CustomerInfo) -> None:
    """Check optional customer details before they are written to a bill."""
    require_worksheet_text(customer.name, label="Customer name")
    require_worksheet_text(customer.email, label="Customer email")
    require_worksheet_text(customer.mobile, label="Customer mobile")


# ---------------------------------------------------------------------------
# Cart building
# ---------------------------------------------------------------------------


def build_cart_line(
    product: Product,
    quantity: int = 1,
    *,
    discount_type: DiscountType = DiscountType.PERCENT,
    discount_value: Union[Decimal, int, float, str] = Decimal("0"),
) -> CartLine:
    """Snapshot ``product`` into a cart line after the add-time stock check.

    Raises:
        ValidationError: If the product is out of stock, ``quantity`` is not
            a positive whole number, exceeds the available stock, or the
            discount is negative.
    """
    if product.stock <= 0:
        raise ValidationError(f"{product.name} is out of stock")
    require_positive_quantity(quantity)
    if quantity > product.stock:
        raise ValidationError(
            f"Cannot exceed available stock for {product.name} ({product.stock})"
        )
    value = to_decimal(discount_value, label="Discount")
    require_nonnegative_money(value, label="Discount")
    return CartLine(
        product=product,
        quantity=quantity,
        item_discount_type=DiscountType(discount_type),
        item_discount_value=value,
    )


def add_to_cart(cart: Sequence[CartLine], product: Product, quantity: int = 1) -> tuple[CartLine, ...]:
    """Return a new cart with ``quantity`` more units of ``product``.

    A product already in the cart has its line quantity raised in place,
    keeping its discount; otherwise a fresh line is appended.

    Raises:
        ValidationError: If the combined quantity exceeds available stock.
    """
    updated: List[CartLine] = []
    merged = False
    for line in cart:
        if line.product_id == product.product_id:
            combined = line.quantity + quantity
            build_cart_line(product, combined)
            updated.append(replace(line, quantity=combined))
            merged = True
        else:
            updated.append(line)
    if not merged:
        updated.append(build_cart_line(product, quantity))
    return tuple(updated)


# ---------------------------------------------------------------------------
# Stock deltas
# ---------------------------------------------------------------------------


def aggregate_stock_deltas(
    rollback_items: Iterable[CartLine],
    new_items: Iterable[CartLine],
) -> Dict[str, int]:
    """Net the stock movement of replacing ``rollback_items`` with ``new_items``.

    Every rolled-back line gives its quantity back and every new line takes
    its quantity, summed per product. Products that net to zero are omitted,
    so re-saving an unchanged sale moves no stock.
    """
    net: Dict[str, int] = {}
    for line in rollback_items:
        net[line.product_id] = net.get(line.product_id, 0) + line.quantity
    for line in new_items:
        net[line.product_id] = net.get(line.product_id, 0) - line.quantity
    return {product_id: delta for product_id, delta in net.items() if delta != 0}


def _stock_operations(context: RuntimeContext, deltas: Dict[str, int]) -> List[BatchOperation]:
    operations: List[BatchOperation] = []
    for product_id, delta in deltas.items():
        if context.ledger.get_by_id(product_id) is None:
            # Deleted products keep their snapshot in the sale only.
            log.warning("Skipping stock delta %+d for missing product '%s'", delta, product_id)
            continue
        context.ledger.apply_delta(product_id, delta, batch=operations)
    return operations


def _commit(context: RuntimeContext, operations: Sequence[BatchOperation]) -> Optional[str]:
    """Submit ``operations`` and return the failure reason, if any."""
    try:
        context.store.atomic_batch(operations)
    except data_manager.CommitError as exc:
        return str(exc) or exc.__class__.__name__
    return None


# ---------------------------------------------------------------------------
# Sale lifecycle
# ---------------------------------------------------------------------------


def build_sale(
    command: SaleCommand,
    *,
    sale_id: str,
    timestamp: datetime,
    totals: pricing.BillTotals,
) -> Sale:
    """Materialize a :class:`SaleCommand` and its computed totals into a record."""
    return Sale(
        sale_id=sale_id,
        items=tuple(command.cart),
        sub_total=totals.sub_total,
        gst_amount=totals.gst_amount,
        discount_percentage=totals.discount_percentage,
        discount_amount=totals.discount_amount,
        total_amount=totals.grand_total,
        total_profit=totals.profit,
        timestamp=_epoch_ms(timestamp),
        customer_name=command.customer.name or None,
        customer_email=command.customer.email or None,
        customer_mobile=command.customer.mobile or None,
    )


def process_sale(context: RuntimeContext, command: SaleCommand) -> TransactionResult:
    """Check out a cart: persist the sale and decrement stock in one batch.

    The workflow rejects empty or invalid carts without writing anything,
    prices the cart, builds the sale record, and commits the record together
    with a ``-quantity`` increment for every product in the cart.

    Args:
        context (RuntimeContext): Runtime context providing the store, ledger
            and notifier.
        command (SaleCommand): Cart, customer details, tax flag and bill
            discount.

    Returns:
        TransactionResult: ``COMMITTED`` with the stored sale; ``REJECTED``
            for an empty or invalid cart (no notification); ``FAILED`` when
            the commit failed (nothing applied, alert emitted).
    """
    cart = tuple(command.cart)
    if not cart:
        log.info("Ignoring checkout of an empty cart")
        return TransactionResult(TransactionStatus.REJECTED, reason="Cart is empty")
    try:
        validate_cart(cart)
        validate_customer(command.customer)
    except ValidationError as exc:
        return TransactionResult(TransactionStatus.REJECTED, reason=str(exc))

    totals = pricing.compute_totals(cart, command.tax_enabled, command.bill_discount_percent)
    timestamp = _resolve_timestamp(command.timestamp)
    sale = build_sale(
        replace(command, cart=cart),
        sale_id=context.store.unique_record_id(Collection.SALES, prefix="S", when=timestamp),
        timestamp=timestamp,
        totals=totals,
    )

    deltas = aggregate_stock_deltas((), cart)
    operations: List[BatchOperation] = [InsertRecord(Collection.SALES, sale)]
    operations.extend(_stock_operations(context, deltas))

    failure = _commit(context, operations)
    if failure is not None:
        context.notifier.alert(f"Sale could not be saved: {failure}")
        return TransactionResult(TransactionStatus.FAILED, reason=failure)

    log.info(
        "Recorded sale '%s' with %d line(s) (total=%s, profit=%s)",
        sale.sale_id,
        len(cart),
        sale.total_amount,
        sale.total_profit,
    )
    context.ledger.report_low_stock(deltas)
    context.notifier.info(f"Bill generated. Total: ₹{sale.total_amount:.2f}")
    return TransactionResult(TransactionStatus.COMMITTED, sale=sale, record_id=sale.sale_id)


def update_sale(context: RuntimeContext, edited_sale: Sale) -> TransactionResult:
    """Replace a stored sale's lines and bill discount, reconciling stock.

    The stored version is re-read first. Its lines are rolled back
    (``+quantity``) and the edited lines applied (``-quantity``), netted per
    product, so a product present in both versions moves only by the
    difference. Totals are recomputed with the tax flag of the stored sale
    (tax was applied when its GST amount is positive); the creation
    timestamp is kept.

    Args:
        context (RuntimeContext): Runtime context.
        edited_sale (Sale): Desired state; only ``items``,
            ``discount_percentage`` and customer fields are taken from it.

    Returns:
        TransactionResult: ``NOT_FOUND`` when the sale no longer exists,
            ``REJECTED`` for invalid or empty lines, ``FAILED`` on commit
            failure, else ``COMMITTED`` with the recomputed sale.
    """
    prior = get_sale(context, edited_sale.sale_id)
    if prior is None:
        return TransactionResult(TransactionStatus.NOT_FOUND, record_id=edited_sale.sale_id)

    new_items = tuple(edited_sale.items)
    if not new_items:
        return TransactionResult(
            TransactionStatus.REJECTED,
            record_id=prior.sale_id,
            reason="A sale needs at least one line; delete it instead",
        )
    try:
        validate_cart(new_items)
        validate_customer(
            CustomerInfo(edited_sale.customer_name, edited_sale.customer_email, edited_sale.customer_mobile)
        )
    except ValidationError as exc:
        return TransactionResult(TransactionStatus.REJECTED, record_id=prior.sale_id, reason=str(exc))

    tax_enabled = prior.gst_amount > 0
    totals = pricing.compute_totals(new_items, tax_enabled, edited_sale.discount_percentage)
    updated = replace(
        edited_sale,
        items=new_items,
        sub_total=totals.sub_total,
        gst_amount=totals.gst_amount,
        discount_percentage=totals.discount_percentage,
        discount_amount=totals.discount_amount,
        total_amount=totals.grand_total,
        total_profit=totals.profit,
        timestamp=prior.timestamp,
    )

    deltas = aggregate_stock_deltas(prior.items, new_items)
    field_values = {
        "items": updated.items,
        "sub_total": updated.sub_total,
        "gst_amount": updated.gst_amount,
        "discount_percentage": updated.discount_percentage,
        "discount_amount": updated.discount_amount,
        "total_amount": updated.total_amount,
        "total_profit": updated.total_profit,
        "customer_name": updated.customer_name,
        "customer_email": updated.customer_email,
        "customer_mobile": updated.customer_mobile,
    }
    operations: List[BatchOperation] = [UpdateFields(Collection.SALES, prior.sale_id, field_values)]
    operations.extend(_stock_operations(context, deltas))

    failure = _commit(context, operations)
    if failure is not None:
        context.notifier.alert(f"Sale #{prior.sale_id} could not be updated: {failure}")
        return TransactionResult(TransactionStatus.FAILED, record_id=prior.sale_id, reason=failure)

    log.info("Updated sale '%s' (net stock deltas=%s)", prior.sale_id, deltas)
    context.ledger.report_low_stock(deltas)
    context.notifier.info(f"Sale #{prior.sale_id} updated successfully.")
    return TransactionResult(TransactionStatus.COMMITTED, sale=updated, record_id=prior.sale_id)


def delete_sale(context: RuntimeContext, sale_id: str) -> TransactionResult:
    """Delete a sale and give every one of its units back to stock.

    Returns:
        TransactionResult: ``NOT_FOUND`` (silent no-op) when the sale does not
            exist, ``FAILED`` on commit failure, else ``COMMITTED`` carrying
            the removed sale.
    """
    prior = get_sale(context, sale_id)
    if prior is None:
        return TransactionResult(TransactionStatus.NOT_FOUND, record_id=sale_id)

    deltas = aggregate_stock_deltas(prior.items, ())
    operations: List[BatchOperation] = [DeleteRecord(Collection.SALES, sale_id)]
    operations.extend(_stock_operations(context, deltas))

    failure = _commit(context, operations)
    if failure is not None:
        context.notifier.alert(f"Sale #{sale_id} could not be deleted: {failure}")
        return TransactionResult(TransactionStatus.FAILED, record_id=sale_id, reason=failure)

    log.info("Deleted sale '%s' and restocked %d product(s)", sale_id, len(deltas))
    context.notifier.alert(f"Sale #{sale_id} deleted. Stock restored.")
    return TransactionResult(TransactionStatus.COMMITTED, sale=prior, record_id=sale_id)


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


def add_product(context: RuntimeContext, product: Product) -> TransactionResult:
    """Insert a new product; an empty ``product_id`` receives a generated one."""
    try:
        validate_product(product)
    except ValidationError as exc:
        return TransactionResult(TransactionStatus.REJECTED, reason=str(exc))
    try:
        product_id = context.store.insert_record(Collection.PRODUCTS, product)
    except data_manager.CommitError as exc:
        context.notifier.alert(f"Product could not be saved: {exc}")
        return TransactionResult(TransactionStatus.FAILED, reason=str(exc))

    log.info("Added product '%s' (%s)", product_id, product.name)
    context.notifier.info(f"Product added: {product.name}")
    return TransactionResult(TransactionStatus.COMMITTED, record_id=product_id)


def update_product(context: RuntimeContext, product: Product) -> TransactionResult:
    """Replace a product's descriptive fields.

    Stock is never overwritten: when ``product.stock`` differs from the
    ledger's count the difference is committed as an increment in the same
    batch.
    """
    current = context.ledger.get_by_id(product.product_id)
    if current is None:
        return TransactionResult(TransactionStatus.NOT_FOUND, record_id=product.product_id)
    try:
        validate_product(product)
    except ValidationError as exc:
        return TransactionResult(TransactionStatus.REJECTED, record_id=product.product_id, reason=str(exc))

    field_values = {
        name: getattr(product, name)
        for name in data_manager.PRODUCT_FIELD_COLUMNS
        if name not in ("product_id", "stock")
    }
    operations: List[BatchOperation] = [UpdateFields(Collection.PRODUCTS, product.product_id, field_values)]
    stock_change = product.stock - current.stock
    if stock_change:
        context.ledger.apply_delta(product.product_id, stock_change, batch=operations)

    failure = _commit(context, operations)
    if failure is not None:
        context.notifier.alert(f"Product {product.name} could not be updated: {failure}")
        return TransactionResult(TransactionStatus.FAILED, record_id=product.product_id, reason=failure)

    log.info("Updated product '%s' (stock delta=%+d)", product.product_id, stock_change)
    context.ledger.report_low_stock({product.product_id: stock_change})
    context.notifier.info(f"Product updated: {product.name}")
    return TransactionResult(TransactionStatus.COMMITTED, record_id=product.product_id)


def delete_product(context: RuntimeContext, product_id: str) -> TransactionResult:
    """Remove a product from the catalogue; past sales keep their snapshots."""
    if context.ledger.get_by_id(product_id) is None:
        return TransactionResult(TransactionStatus.NOT_FOUND, record_id=product_id)

    failure = _commit(context, [DeleteRecord(Collection.PRODUCTS, product_id)])
    if failure is not None:
        context.notifier.alert(f"Product could not be deleted: {failure}")
        return TransactionResult(TransactionStatus.FAILED, record_id=product_id, reason=failure)

    log.info("Deleted product '%s'", product_id)
    context.notifier.warning("Product deleted from inventory")
    return TransactionResult(TransactionStatus.COMMITTED, record_id=product_id)


def adjust_stock(context: RuntimeContext, product_id: str, delta: int) -> TransactionResult:
    """Commit a standalone stock correction outside any sale."""
    product = context.ledger.get_by_id(product_id)
    if product is None:
        return TransactionResult(TransactionStatus.NOT_FOUND, record_id=product_id)
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        return TransactionResult(
            TransactionStatus.REJECTED,
            record_id=product_id,
            reason="Stock adjustment must be a non-zero whole number",
        )
    try:
        context.ledger.apply_delta(product_id, delta)
    except data_manager.CommitError as exc:
        context.notifier.alert(f"Stock for {product.name} could not be adjusted: {exc}")
        return TransactionResult(TransactionStatus.FAILED, record_id=product_id, reason=str(exc))

    context.notifier.info(f"Stock for {product.name} adjusted by {delta:+d}")
    return TransactionResult(TransactionStatus.COMMITTED, record_id=product_id)


def add_category(context: RuntimeContext, category: str) -> TransactionResult:
    """Append a category label unless it already exists."""
    label = category.strip()
    if not label:
        return TransactionResult(TransactionStatus.REJECTED, reason="Category name is required")
    try:
        require_worksheet_text(label, label="Category name")
    except ValidationError as exc:
        return TransactionResult(TransactionStatus.REJECTED, reason=str(exc))
    if label in list_categories(context):
        log.debug("Category '%s' already exists", label)
        return TransactionResult(TransactionStatus.REJECTED, record_id=label, reason="Category already exists")
    try:
        context.store.insert_record(Collection.CATEGORIES, label)
    except data_manager.CommitError as exc:
        context.notifier.alert(f"Category could not be saved: {exc}")
        return TransactionResult(TransactionStatus.FAILED, record_id=label, reason=str(exc))

    context.notifier.info(f"Category '{label}' created")
    return TransactionResult(TransactionStatus.COMMITTED, record_id=label)


def reset_system(context: RuntimeContext) -> TransactionResult:
    """Clear all products and sales and restore the default categories atomically."""
    operations: List[BatchOperation] = []
    operations.extend(DeleteRecord(Collection.SALES, sale.sale_id) for sale in list_sales(context))
    operations.extend(DeleteRecord(Collection.PRODUCTS, product.product_id) for product in list_products(context))
    operations.extend(DeleteRecord(Collection.CATEGORIES, label) for label in list_categories(context))
    operations.extend(InsertRecord(Collection.CATEGORIES, label) for label in INITIAL_CATEGORIES)

    failure = _commit(context, operations)
    if failure is not None:
        context.notifier.alert(f"System reset failed: {failure}")
        return TransactionResult(TransactionStatus.FAILED, reason=failure)

    log.info("Reset ledger workbook '%s'", context.store.data_file)
    context.notifier.alert("System Reset Complete. All Data Cleared.")
    return TransactionResult(TransactionStatus.COMMITTED)
