"""Read-only summaries derived from products and sales.

These helpers never touch the store; callers pass in the lists returned by
:func:`pharmacy_ledger.core_logic.list_products` and
:func:`pharmacy_ledger.core_logic.list_sales`. Sale timestamps are bucketed
into calendar days in UTC.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from . import log, pricing
from .constants import LOW_STOCK_THRESHOLD
from .data_manager import CartLine, Product, Sale


@dataclass(frozen=True)
class DashboardSummary:
    """Headline figures for a reporting window plus today's collection."""

    revenue: Decimal
    profit: Decimal
    sale_count: int
    today_collection: Decimal
    today_profit: Decimal
    expired_stock_value: Decimal
    expired_products: tuple[Product, ...]
    low_stock_products: tuple[Product, ...]


def sale_date(sale: Sale) -> date:
    return datetime.fromtimestamp(sale.timestamp / 1000, UTC).date()


def sales_between(sales: Iterable[Sale], start: date, end: date) -> List[Sale]:
    """Return sales whose day falls within ``[start, end]`` inclusive."""
    return [sale for sale in sales if start <= sale_date(sale) <= end]


def expired_products(products: Iterable[Product], today: date) -> List[Product]:
    """Products whose expiry date lies strictly before ``today``.

    Products with a blank or malformed expiry date are skipped.
    """
    expired: List[Product] = []
    for product in products:
        try:
            expiry = date.fromisoformat(product.expiry_date)
        except ValueError:
            log.debug("Skipping product '%s' with unreadable expiry '%s'", product.product_id, product.expiry_date)
            continue
        if expiry < today:
            expired.append(product)
    return expired


def low_stock_products(products: Iterable[Product], threshold: int = LOW_STOCK_THRESHOLD) -> List[Product]:
    return [product for product in products if product.stock < threshold]


def stock_value_at_cost(products: Iterable[Product]) -> Decimal:
    return sum((product.buy_price * product.stock for product in products), Decimal("0"))


def dashboard_summary(
    sales: Sequence[Sale],
    products: Sequence[Product],
    *,
    start: date,
    end: date,
    today: date,
) -> DashboardSummary:
    """Aggregate revenue and profit for a window and flag stock needing attention.

    Args:
        sales (Sequence[Sale]): Every recorded sale.
        products (Sequence[Product]): Current catalogue.
        start (date): First day of the reporting window.
        end (date): Last day of the reporting window (inclusive).
        today (date): Day used for the collection figures and expiry checks.

    Returns:
        DashboardSummary: Window totals, today's totals, expired stock and
            its value at cost, and products under the low-stock threshold.
    """
    window = sales_between(sales, start, end)
    todays = sales_between(sales, today, today)
    expired = expired_products(products, today)
    return DashboardSummary(
        revenue=sum((sale.total_amount for sale in window), Decimal("0")),
        profit=sum((sale.total_profit for sale in window), Decimal("0")),
        sale_count=len(window),
        today_collection=sum((sale.total_amount for sale in todays), Decimal("0")),
        today_profit=sum((sale.total_profit for sale in todays), Decimal("0")),
        expired_stock_value=stock_value_at_cost(expired),
        expired_products=tuple(expired),
        low_stock_products=tuple(low_stock_products(products)),
    )


def daily_revenue(sales: Sequence[Sale], start: date, end: date) -> List[tuple[date, Decimal]]:
    """Revenue per day from ``start`` to ``end``, including days without sales."""
    totals: Dict[date, Decimal] = {}
    for sale in sales_between(sales, start, end):
        day = sale_date(sale)
        totals[day] = totals.get(day, Decimal("0")) + sale.total_amount

    series: List[tuple[date, Decimal]] = []
    day = start
    while day <= end:
        series.append((day, totals.get(day, Decimal("0"))))
        day += timedelta(days=1)
    return series


def revenue_by_category(sales: Iterable[Sale]) -> Dict[str, Decimal]:
    """Sum discounted line totals per product category."""
    totals: Dict[str, Decimal] = {}
    for sale in sales:
        for line in sale.items:
            category = line.product.category or "Uncategorized"
            totals[category] = totals.get(category, Decimal("0")) + pricing.line_total(line)
    return totals


def suggest_products(
    cart: Sequence[CartLine],
    sales: Iterable[Sale],
    products: Iterable[Product],
    *,
    limit: int = 2,
) -> List[Product]:
    """Suggest in-stock products frequently bought with the cart's contents.

    Every past sale sharing at least one product with the cart votes for each
    of its other products. The ``limit`` most-voted products that are in
    stock and not already in the cart are returned, most votes first.
    """
    if not cart:
        return []

    cart_ids = {line.product_id for line in cart}
    votes: Counter[str] = Counter()
    for sale in sales:
        sale_ids = {line.product_id for line in sale.items}
        if sale_ids & cart_ids:
            votes.update(sale_ids - cart_ids)

    by_id = {product.product_id: product for product in products}
    suggestions: List[Product] = []
    for product_id, _ in votes.most_common():
        product = by_id.get(product_id)
        if product is None or product.stock <= 0:
            continue
        suggestions.append(product)
        if len(suggestions) == limit:
            break
    return suggestions
