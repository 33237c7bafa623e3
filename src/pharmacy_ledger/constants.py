"""Enumerations and fixed business constants shared across the ledger.

Centralises the identifiers that the storage layer, the pricing rules and the
transaction manager all agree on, so the workbook schema, the tax rate and the
low-stock threshold have a single source of truth.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Single fixed GST rate applied when a bill requests tax.
TAX_RATE = Decimal("0.18")

# Stock strictly below this count triggers a restock warning.
LOW_STOCK_THRESHOLD = 10

# Seconds a notification stays visible before it expires.
DEFAULT_NOTIFICATION_TTL_SECONDS = 7

INITIAL_CATEGORIES: tuple[str, ...] = (
    "Syrup",
    "Tablet/Medicine",
    "Lotion",
    "Cosmetics",
    "Sanitary Pad",
    "Others",
)


class DiscountType(str, Enum):
    """Enumerate how a per-item discount value is interpreted."""

    PERCENT = "PERCENT"
    FLAT = "FLAT"


class NotificationLevel(str, Enum):
    """Enumerate the severities of user-facing notices."""

    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"


class Collection(str, Enum):
    """Enumerate the logical record collections exposed by the store."""

    PRODUCTS = "products"
    SALES = "sales"
    CATEGORIES = "categories"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CATEGORIES = "Categories"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "TAX_RATE",
    "LOW_STOCK_THRESHOLD",
    "DEFAULT_NOTIFICATION_TTL_SECONDS",
    "INITIAL_CATEGORIES",
    "DiscountType",
    "NotificationLevel",
    "Collection",
    "SheetName",
]
