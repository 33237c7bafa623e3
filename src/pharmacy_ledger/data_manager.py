"""Data access layer for the pharmacy ledger.

This module provides the persistence collaborator consumed by the business
logic: an Excel workbook (``pharmacy_ledger.xlsx``) read and written through
``openpyxl``. Business rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record codecs: converting products, sales, and cart lines to and from
   worksheet rows.
4. :class:`WorkbookStore`: collection reads, push-based subscriptions, and
   all-or-nothing batches of insert/delete/update/increment operations.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import DEFAULT_LOG_LEVEL, log, resolve_log_level
from .constants import DEFAULT_NOTIFICATION_TTL_SECONDS, Collection, DiscountType, SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CATEGORIES_SHEET = SheetName.CATEGORIES.value
SALES_SHEET = SheetName.SALES.value
SALE_ITEMS_SHEET = SheetName.SALE_ITEMS.value

# Attribute name -> worksheet column, in column order.
PRODUCT_FIELD_COLUMNS: Mapping[str, str] = {
    "product_id": "ProductID",
    "name": "Name",
    "category": "Category",
    "batch": "Batch",
    "expiry_date": "ExpiryDate",
    "buy_price": "BuyPrice",
    "sell_price": "SellPrice",
    "stock": "Stock",
    "location": "Location",
    "vendor": "Vendor",
    "image": "Image",
}

SALE_FIELD_COLUMNS: Mapping[str, str] = {
    "sale_id": "SaleID",
    "timestamp": "Timestamp",
    "customer_name": "CustomerName",
    "customer_email": "CustomerEmail",
    "customer_mobile": "CustomerMobile",
    "sub_total": "SubTotal",
    "gst_amount": "GSTAmount",
    "discount_percentage": "DiscountPercentage",
    "discount_amount": "DiscountAmount",
    "total_amount": "TotalAmount",
    "total_profit": "TotalProfit",
}

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: list(PRODUCT_FIELD_COLUMNS.values()),
    CATEGORIES_SHEET: ["Category"],
    SALES_SHEET: list(SALE_FIELD_COLUMNS.values()),
    SALE_ITEMS_SHEET: [
        "SaleID",
        "LineNo",
        *PRODUCT_FIELD_COLUMNS.values(),
        "Quantity",
        "ItemDiscountType",
        "ItemDiscountValue",
    ],
}

KEY_COLUMNS: Mapping[Collection, tuple[str, str]] = {
    Collection.PRODUCTS: (PRODUCTS_SHEET, "ProductID"),
    Collection.SALES: (SALES_SHEET, "SaleID"),
    Collection.CATEGORIES: (CATEGORIES_SHEET, "Category"),
}

# Columns that may only change through IncrementField.
DELTA_ONLY_FIELDS = frozenset({"stock"})


class CommitError(Exception):
    """Raised when an atomic batch could not be applied and persisted."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    pharmacy_name: str
    schema_version: str
    notification_ttl_seconds: int = DEFAULT_NOTIFICATION_TTL_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL


@dataclass(frozen=True)
class Product:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    category: str
    batch: str
    expiry_date: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    location: str
    vendor: Optional[str] = None
    image: Optional[str] = None


@dataclass(frozen=True)
class CartLine:
    """A product snapshot frozen into a cart, plus sale-specific fields."""

    product: Product
    quantity: int
    item_discount_type: DiscountType = DiscountType.PERCENT
    item_discount_value: Decimal = Decimal("0")

    @property
    def product_id(self) -> str:
        return self.product.product_id

    @property
    def name(self) -> str:
        return self.product.name

    @property
    def sell_price(self) -> Decimal:
        return self.product.sell_price

    @property
    def buy_price(self) -> Decimal:
        return self.product.buy_price


@dataclass(frozen=True)
class Sale:
    """A completed bill together with its ordered cart lines."""

    sale_id: str
    items: tuple[CartLine, ...]
    sub_total: Decimal
    gst_amount: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    total_profit: Decimal
    timestamp: int
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_mobile: Optional[str] = None


@dataclass(frozen=True)
class InsertRecord:
    """Append ``record`` to ``collection``."""

    collection: Collection
    record: Any


@dataclass(frozen=True)
class DeleteRecord:
    """Remove the record keyed by ``record_id`` from ``collection``."""

    collection: Collection
    record_id: str


@dataclass(frozen=True)
class UpdateFields:
    """Overwrite selected attributes of an existing record."""

    collection: Collection
    record_id: str
    field_values: Mapping[str, Any]


@dataclass(frozen=True)
class IncrementField:
    """Add a signed ``delta`` to a numeric attribute of an existing record."""

    collection: Collection
    record_id: str
    field_name: str
    delta: Union[int, Decimal]


BatchOperation = Union[InsertRecord, DeleteRecord, UpdateFields, IncrementField]
Listener = Callable[[List[Any]], None]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Required entries are validated later by
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback. The
    ``[Notifications]`` section is optional; ``TTLSeconds`` falls back to
    :data:`DEFAULT_NOTIFICATION_TTL_SECONDS`. The optional
    ``[Logging] Level`` entry names the package log level (``INFO`` when
    absent).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If ``TTLSeconds`` is not an integer or ``Level`` is not
            a logging level name.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        pharmacy_name = parser.get("System", "PharmacyName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    ttl_seconds = parser.getint(
        "Notifications",
        "TTLSeconds",
        fallback=DEFAULT_NOTIFICATION_TTL_SECONDS,
    )
    log_level = parser.get("Logging", "Level", fallback=DEFAULT_LOG_LEVEL).strip().upper()
    resolve_log_level(log_level)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        pharmacy_name=pharmacy_name,
        schema_version=schema_version,
        notification_ttl_seconds=ttl_seconds,
        log_level=log_level,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        KeyError: If one of the sheets in :data:`SHEET_COLUMNS` is missing.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    ensure_workbook_layout(wb)
    return wb


def ensure_workbook_layout(workbook: Workbook) -> None:
    """Verify that every sheet the store relies on is present."""

    missing = [name for name in SHEET_COLUMNS if name not in workbook.sheetnames]
    if missing:
        raise KeyError(f"Workbook is missing sheets: {', '.join(missing)}")


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def generate_record_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Args:
        prefix (str): Designator prepended to the identifier, e.g. ``"S"`` for
            sales and ``"P"`` for products.
        when (datetime | None): Timestamp used for deterministically producing
            the identifier. When ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def record_key(collection: Collection, record: Any) -> str:
    """Return the primary key of ``record`` within ``collection``."""

    if collection is Collection.PRODUCTS:
        return record.product_id
    if collection is Collection.SALES:
        return record.sale_id
    return str(record)


def record_exists(workbook: Workbook, collection: Collection, record_id: str) -> bool:
    """Return ``True`` when ``record_id`` is already a key in ``collection``."""

    sheet_name, key_column = KEY_COLUMNS[collection]
    return locate_row(workbook, sheet_name, key_column, record_id) is not None


# ---------------------------------------------------------------------------
# Sheet reads
# ---------------------------------------------------------------------------


def _iter_populated_rows(sheet: Worksheet) -> Iterable[tuple]:
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[Product]:
    """Iterate over product records stored on the ``Products`` worksheet.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        Product: One structured record for each non-empty row.
    """

    for raw in _iter_populated_rows(workbook[PRODUCTS_SHEET]):
        yield deserialize_product(raw)


def iter_categories(workbook: Workbook) -> Iterable[str]:
    """Yield category labels in the order they were created."""

    for raw in _iter_populated_rows(workbook[CATEGORIES_SHEET]):
        yield _to_text(raw[0])


def iter_sales(workbook: Workbook) -> Iterable[Sale]:
    """Stream sales joined with their cart lines.

    Cart lines live on the ``SaleItems`` worksheet keyed by ``SaleID`` and
    ``LineNo``; they are grouped per sale and restored in line order so the
    display order captured at checkout survives a round trip.

    Args:
        workbook (Workbook): Workbook containing the sales sheets.

    Yields:
        Sale: Fully assembled sale in worksheet order.
    """

    lines_by_sale: Dict[str, List[tuple[int, CartLine]]] = {}
    for raw in _iter_populated_rows(workbook[SALE_ITEMS_SHEET]):
        sale_id = _to_text(raw[0])
        lines_by_sale.setdefault(sale_id, []).append((_to_int(raw[1]), deserialize_cart_line(raw)))

    for raw in _iter_populated_rows(workbook[SALES_SHEET]):
        sale_id = _to_text(raw[0])
        ordered = sorted(lines_by_sale.get(sale_id, []), key=lambda pair: pair[0])
        yield deserialize_sale(raw, items=tuple(line for _, line in ordered))


# ---------------------------------------------------------------------------
# Row lookup and mutation
# ---------------------------------------------------------------------------


def _header_map(sheet: Worksheet) -> Dict[str, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def _require_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> int:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Record not found in {sheet_name}: {key_value}")
    return row_index


def _write_fields(
    sheet: Worksheet,
    row_index: int,
    field_columns: Mapping[str, str],
    field_values: Mapping[str, Any],
) -> None:
    header_map = _header_map(sheet)
    for field_name, value in field_values.items():
        if field_name not in field_columns:
            raise KeyError(f"Unknown field for {sheet.title}: {field_name}")
        sheet.cell(row=row_index, column=header_map[field_columns[field_name]], value=_cell_value(value))


def _delete_sale_items(workbook: Workbook, sale_id: str) -> None:
    sheet = workbook[SALE_ITEMS_SHEET]
    # Bottom-up so earlier indexes stay valid while rows shift.
    for row_idx in range(sheet.max_row, 1, -1):
        if sheet.cell(row=row_idx, column=1).value is not None and str(sheet.cell(row=row_idx, column=1).value) == sale_id:
            sheet.delete_rows(row_idx)


def _append_sale_items(workbook: Workbook, sale_id: str, items: Sequence[CartLine]) -> None:
    sheet = workbook[SALE_ITEMS_SHEET]
    for line_no, line in enumerate(items, start=1):
        sheet.append(serialize_cart_line(line, sale_id=sale_id, line_no=line_no))


def insert_record(workbook: Workbook, collection: Collection, record: Any) -> None:
    """Append ``record`` to the worksheet(s) backing ``collection``.

    Raises:
        ValueError: If a record with the same key already exists.
    """

    key = record_key(collection, record)
    if collection is Collection.PRODUCTS:
        if locate_row(workbook, PRODUCTS_SHEET, "ProductID", key) is not None:
            raise ValueError(f"Duplicate product id: {key}")
        workbook[PRODUCTS_SHEET].append(serialize_product(record))
    elif collection is Collection.SALES:
        if locate_row(workbook, SALES_SHEET, "SaleID", key) is not None:
            raise ValueError(f"Duplicate sale id: {key}")
        workbook[SALES_SHEET].append(serialize_sale(record))
        _append_sale_items(workbook, key, record.items)
    else:
        if locate_row(workbook, CATEGORIES_SHEET, "Category", key) is not None:
            raise ValueError(f"Duplicate category: {key}")
        workbook[CATEGORIES_SHEET].append([key])


def delete_record(workbook: Workbook, collection: Collection, record_id: str) -> None:
    """Remove a record (and, for sales, its cart lines).

    Raises:
        KeyError: If the record does not exist.
    """

    if collection is Collection.PRODUCTS:
        workbook[PRODUCTS_SHEET].delete_rows(_require_row(workbook, PRODUCTS_SHEET, "ProductID", record_id))
    elif collection is Collection.SALES:
        workbook[SALES_SHEET].delete_rows(_require_row(workbook, SALES_SHEET, "SaleID", record_id))
        _delete_sale_items(workbook, record_id)
    else:
        workbook[CATEGORIES_SHEET].delete_rows(_require_row(workbook, CATEGORIES_SHEET, "Category", record_id))


def update_fields(workbook: Workbook, collection: Collection, record_id: str, field_values: Mapping[str, Any]) -> None:
    """Update selected attributes for an existing product or sale.

    Product ``stock`` is rejected here; it only moves through
    :func:`increment_field`. For sales, an ``items`` entry replaces the
    stored cart lines wholesale.

    Raises:
        KeyError: If the record or any referenced field cannot be found.
        ValueError: If a delta-only field is overwritten or the collection
            does not support field updates.
    """

    if collection is Collection.PRODUCTS:
        overwritten = DELTA_ONLY_FIELDS.intersection(field_values)
        if overwritten:
            raise ValueError(f"Fields must change through increments: {', '.join(sorted(overwritten))}")
        row_index = _require_row(workbook, PRODUCTS_SHEET, "ProductID", record_id)
        _write_fields(workbook[PRODUCTS_SHEET], row_index, PRODUCT_FIELD_COLUMNS, field_values)
    elif collection is Collection.SALES:
        row_index = _require_row(workbook, SALES_SHEET, "SaleID", record_id)
        scalar_values = {name: value for name, value in field_values.items() if name != "items"}
        _write_fields(workbook[SALES_SHEET], row_index, SALE_FIELD_COLUMNS, scalar_values)
        if "items" in field_values:
            _delete_sale_items(workbook, record_id)
            _append_sale_items(workbook, record_id, field_values["items"])
    else:
        raise ValueError(f"Collection '{collection.value}' does not support field updates")


def increment_field(workbook: Workbook, collection: Collection, record_id: str, field_name: str, delta: Union[int, Decimal]) -> None:
    """Add ``delta`` to a numeric product or sale attribute in place.

    Raises:
        KeyError: If the record or field cannot be found.
        ValueError: If the collection holds no numeric fields.
    """

    if collection is Collection.PRODUCTS:
        sheet_name, key_column, field_columns = PRODUCTS_SHEET, "ProductID", PRODUCT_FIELD_COLUMNS
    elif collection is Collection.SALES:
        sheet_name, key_column, field_columns = SALES_SHEET, "SaleID", SALE_FIELD_COLUMNS
    else:
        raise ValueError(f"Collection '{collection.value}' has no numeric fields")

    if field_name not in field_columns:
        raise KeyError(f"Unknown field for {sheet_name}: {field_name}")

    row_index = _require_row(workbook, sheet_name, key_column, record_id)
    sheet = workbook[sheet_name]
    cell = sheet.cell(row=row_index, column=_header_map(sheet)[field_columns[field_name]])
    if isinstance(delta, int):
        cell.value = _to_int(cell.value) + delta
    else:
        cell.value = _to_decimal(cell.value) + delta


def apply_operation(workbook: Workbook, operation: BatchOperation) -> None:
    """Dispatch one batch operation onto the in-memory workbook."""

    if isinstance(operation, InsertRecord):
        insert_record(workbook, operation.collection, operation.record)
    elif isinstance(operation, DeleteRecord):
        delete_record(workbook, operation.collection, operation.record_id)
    elif isinstance(operation, UpdateFields):
        update_fields(workbook, operation.collection, operation.record_id, operation.field_values)
    elif isinstance(operation, IncrementField):
        increment_field(workbook, operation.collection, operation.record_id, operation.field_name, operation.delta)
    else:
        raise TypeError(f"Unsupported batch operation: {operation!r}")


# ---------------------------------------------------------------------------
# Row codecs
# ---------------------------------------------------------------------------


def _cell_value(value: Any) -> Any:
    if isinstance(value, DiscountType):
        return value.value
    return value


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object) -> int:
    return int(raw) if raw is not None else 0


def _to_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _to_optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None and raw != "" else None


def _to_date_text(raw: object) -> str:
    # Hand-edited workbooks may store real Excel dates.
    if isinstance(raw, (datetime, date)):
        return raw.strftime("%Y-%m-%d")
    return _to_text(raw)


def serialize_product(record: Product) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering.

    Returns:
        list[object]: Values arranged as in :data:`PRODUCT_FIELD_COLUMNS`.
    """

    return [
        record.product_id,
        record.name,
        record.category,
        record.batch,
        record.expiry_date,
        record.buy_price,
        record.sell_price,
        record.stock,
        record.location,
        record.vendor,
        record.image,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw worksheet row into a strongly typed product record.

    Prices become :class:`~decimal.Decimal`, stock an ``int``, and id/name
    fields are coerced to ``str`` to avoid surprises caused by Excel
    automatically interpreting numbers.
    """

    (
        product_id,
        name,
        category,
        batch,
        expiry_date,
        buy_price_raw,
        sell_price_raw,
        stock_raw,
        location,
        vendor,
        image,
    ) = tuple(raw_row[:11]) + (None,) * (11 - len(raw_row[:11]))

    return Product(
        product_id=_to_text(product_id),
        name=_to_text(name),
        category=_to_text(category),
        batch=_to_text(batch),
        expiry_date=_to_date_text(expiry_date),
        buy_price=_to_decimal(buy_price_raw, "0.00"),
        sell_price=_to_decimal(sell_price_raw, "0.00"),
        stock=_to_int(stock_raw),
        location=_to_text(location),
        vendor=_to_optional_text(vendor),
        image=_to_optional_text(image),
    )


def serialize_cart_line(line: CartLine, *, sale_id: str, line_no: int) -> list[object]:
    """Flatten a cart line into a ``SaleItems`` row."""

    return [
        sale_id,
        line_no,
        *serialize_product(line.product),
        line.quantity,
        line.item_discount_type.value,
        line.item_discount_value,
    ]


def deserialize_cart_line(raw_row: Sequence[object]) -> CartLine:
    """Rebuild a cart line from a ``SaleItems`` row (sale id and line number are skipped)."""

    product = deserialize_product(raw_row[2:13])
    quantity_raw, discount_type_raw, discount_value_raw = raw_row[13:16]
    discount_type = DiscountType(str(discount_type_raw)) if discount_type_raw else DiscountType.PERCENT
    return CartLine(
        product=product,
        quantity=_to_int(quantity_raw),
        item_discount_type=discount_type,
        item_discount_value=_to_decimal(discount_value_raw),
    )


def serialize_sale(record: Sale) -> list[object]:
    """Convert a sale into the ``Sales`` column order; cart lines are stored separately."""

    return [
        record.sale_id,
        record.timestamp,
        record.customer_name,
        record.customer_email,
        record.customer_mobile,
        record.sub_total,
        record.gst_amount,
        record.discount_percentage,
        record.discount_amount,
        record.total_amount,
        record.total_profit,
    ]


def deserialize_sale(raw_row: Sequence[object], *, items: tuple[CartLine, ...] = ()) -> Sale:
    """Convert a raw ``Sales`` row plus its cart lines into a :class:`Sale`."""

    (
        sale_id,
        timestamp_raw,
        customer_name,
        customer_email,
        customer_mobile,
        sub_total_raw,
        gst_amount_raw,
        discount_percentage_raw,
        discount_amount_raw,
        total_amount_raw,
        total_profit_raw,
    ) = raw_row[:11]

    return Sale(
        sale_id=_to_text(sale_id),
        items=items,
        sub_total=_to_decimal(sub_total_raw),
        gst_amount=_to_decimal(gst_amount_raw),
        discount_percentage=_to_decimal(discount_percentage_raw),
        discount_amount=_to_decimal(discount_amount_raw),
        total_amount=_to_decimal(total_amount_raw),
        total_profit=_to_decimal(total_profit_raw),
        timestamp=_to_int(timestamp_raw),
        customer_name=_to_optional_text(customer_name),
        customer_email=_to_optional_text(customer_email),
        customer_mobile=_to_optional_text(customer_mobile),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class WorkbookStore:
    """Document-store facade over the ledger workbook.

    Reads deserialize whole collections. Writes go through
    :meth:`atomic_batch`, which applies every operation to the in-memory
    workbook and saves it; if any step fails the workbook is reloaded from
    disk so neither memory nor file keeps a partial batch. After a successful
    commit every subscriber of a touched collection receives a fresh snapshot.
    """

    def __init__(self, workbook: Workbook, data_file: Path) -> None:
        self.workbook = workbook
        self.data_file = Path(data_file).expanduser().resolve()
        self._listeners: Dict[Collection, List[Listener]] = {collection: [] for collection in Collection}

    @classmethod
    def open(cls, data_file: Path) -> "WorkbookStore":
        return cls(open_workbook(data_file), data_file)

    def read_all(self, collection: Collection) -> List[Any]:
        if collection is Collection.PRODUCTS:
            return list(iter_products(self.workbook))
        if collection is Collection.SALES:
            return list(iter_sales(self.workbook))
        return list(iter_categories(self.workbook))

    def read_by_id(self, collection: Collection, record_id: str) -> Optional[Any]:
        for record in self.read_all(collection):
            if record_key(collection, record) == record_id:
                return record
        return None

    def subscribe(self, collection: Collection, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and deliver the current snapshot immediately.

        Returns:
            Callable[[], None]: Function that detaches the listener.
        """

        self._listeners[collection].append(listener)
        listener(self.read_all(collection))

        def unsubscribe() -> None:
            if listener in self._listeners[collection]:
                self._listeners[collection].remove(listener)

        return unsubscribe

    def unique_record_id(self, collection: Collection, *, prefix: str, when: Optional[datetime] = None) -> str:
        """Generate an id for ``collection`` that no stored record uses yet.

        Starts from :func:`generate_record_id` at ``when`` and steps forward
        one microsecond per collision, so ids stay sortable by time.
        """

        when = when or datetime.now(UTC)
        record_id = generate_record_id(prefix=prefix, when=when)
        while record_exists(self.workbook, collection, record_id):
            when += timedelta(microseconds=1)
            record_id = generate_record_id(prefix=prefix, when=when)
        return record_id

    def insert_record(self, collection: Collection, record: Any) -> str:
        """Append a single record outside any larger transaction.

        Products submitted without an id receive a generated one.

        Returns:
            str: Key of the stored record.
        """

        if collection is Collection.PRODUCTS and not record.product_id:
            record = replace(record, product_id=self.unique_record_id(Collection.PRODUCTS, prefix="P"))
        self.atomic_batch([InsertRecord(collection, record)])
        return record_key(collection, record)

    def atomic_batch(self, operations: Sequence[BatchOperation]) -> None:
        """Apply and persist ``operations`` as one all-or-nothing unit.

        Args:
            operations (Sequence[BatchOperation]): Writes to commit together.
                An empty sequence is a no-op.

        Raises:
            CommitError: If any operation is rejected or the workbook cannot
                be saved. The in-memory workbook is restored from disk first.
        """

        operations = list(operations)
        if not operations:
            return

        try:
            for operation in operations:
                apply_operation(self.workbook, operation)
            save_workbook(self.workbook, self.data_file)
        except (KeyError, ValueError, TypeError, ArithmeticError, OSError, IllegalCharacterError) as exc:
            log.error("Atomic batch of %d operation(s) failed: %s", len(operations), exc)
            self._discard_pending_changes()
            raise CommitError(str(exc)) from exc

        log.info("Committed atomic batch of %d operation(s) to '%s'", len(operations), self.data_file)
        self._publish({operation.collection for operation in operations})

    def _discard_pending_changes(self) -> None:
        try:
            self.workbook = refresh_workbook(self.data_file)
        except (KeyError, OSError) as exc:
            log.critical("Unable to reload workbook '%s' after failed commit: %s", self.data_file, exc)
            raise CommitError(f"Workbook state unknown after failed commit: {exc}") from exc
        log.debug("Reloaded workbook '%s' after failed commit", self.data_file)

    def _publish(self, collections: Iterable[Collection]) -> None:
        for collection in collections:
            listeners = list(self._listeners[collection])
            if not listeners:
                continue
            snapshot = self.read_all(collection)
            log.debug("Publishing %d %s record(s) to %d subscriber(s)", len(snapshot), collection.value, len(listeners))
            for listener in listeners:
                listener(list(snapshot))
