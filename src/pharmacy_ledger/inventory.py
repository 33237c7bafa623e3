"""In-memory projection of the product catalogue.

:class:`InventoryLedger` mirrors the ``products`` collection of a
:class:`~pharmacy_ledger.data_manager.WorkbookStore`. The projection is
refreshed only from the store's subscription channel, i.e. after a batch has
been committed, so callers never observe stock that has not been persisted.

Stock always moves through relative increments (:meth:`stock_delta`), which
lets concurrent sales of the same product commute instead of racing on a
read-modify-write of an absolute count.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Mapping, Optional

from . import log
from .constants import LOW_STOCK_THRESHOLD, Collection
from .data_manager import BatchOperation, IncrementField, Product, WorkbookStore
from .notifications import NotificationEmitter


ProductListener = Callable[[List[Product]], None]


class InventoryLedger:
    """Live product projection with delta-based stock mutation."""

    def __init__(
        self,
        store: WorkbookStore,
        notifier: NotificationEmitter,
        *,
        low_stock_threshold: int = LOW_STOCK_THRESHOLD,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.low_stock_threshold = low_stock_threshold
        self._products: Dict[str, Product] = {}
        self._listeners: List[ProductListener] = []
        self._unsubscribe = store.subscribe(Collection.PRODUCTS, self._on_snapshot)

    def _on_snapshot(self, products: List[Product]) -> None:
        self._products = {product.product_id: product for product in products}
        log.debug("Inventory projection refreshed with %d product(s)", len(self._products))
        for listener in list(self._listeners):
            listener(self.list_products())

    def close(self) -> None:
        """Detach from the store; the projection stops updating."""

        self._unsubscribe()

    def get_by_id(self, product_id: str) -> Optional[Product]:
        product = self._products.get(product_id)
        if product is None:
            log.warning("Product lookup failed for id '%s'", product_id)
        return product

    def list_products(self) -> List[Product]:
        return list(self._products.values())

    def subscribe(self, listener: ProductListener) -> Callable[[], None]:
        """Push the current product list now and after every committed change."""

        self._listeners.append(listener)
        listener(self.list_products())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def stock_delta(self, product_id: str, delta: int) -> IncrementField:
        """Build the increment operation that moves ``product_id`` stock by ``delta``."""

        return IncrementField(Collection.PRODUCTS, product_id, "stock", delta)

    def apply_delta(
        self,
        product_id: str,
        delta: int,
        *,
        batch: Optional[List[BatchOperation]] = None,
    ) -> None:
        """Adjust a product's stock by a signed ``delta``.

        Args:
            product_id (str): Product whose stock changes.
            delta (int): Signed adjustment.
            batch (list[BatchOperation] | None): When supplied the increment
                is appended to this pending batch and nothing is committed;
                the caller owns the commit. When omitted the increment is
                committed on its own and low-stock is checked afterwards.

        Raises:
            CommitError: If a standalone commit fails.
        """

        operation = self.stock_delta(product_id, delta)
        if batch is not None:
            batch.append(operation)
            return

        self.store.atomic_batch([operation])
        log.info("Adjusted stock for product '%s' by %+d", product_id, delta)
        self.report_low_stock({product_id: delta})

    def report_low_stock(self, deltas: Mapping[str, int]) -> List[str]:
        """Warn once per depleted product that now sits below the threshold.

        Call after the owning batch has committed; the projection already
        reflects the new counts by then. Only products with a negative delta
        in ``deltas`` are considered.

        Returns:
            list[str]: Identifiers that triggered a warning.
        """

        flagged: List[str] = []
        for product_id, delta in deltas.items():
            if delta >= 0:
                continue
            product = self._products.get(product_id)
            if product is None or product.stock >= self.low_stock_threshold:
                continue
            if product.stock < 0:
                log.warning("Product '%s' is oversold (stock=%d)", product_id, product.stock)
            self.notifier.warning(f"Alert: {product.name} running low ({product.stock})")
            flagged.append(product_id)
        return flagged
