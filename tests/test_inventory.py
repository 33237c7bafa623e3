"""Tests for the inventory projection and delta-based stock movement."""

from __future__ import annotations

import pytest

from pharmacy_ledger import data_manager
from pharmacy_ledger.constants import Collection, NotificationLevel
from pharmacy_ledger.inventory import InventoryLedger
from pharmacy_ledger.notifications import NotificationEmitter


@pytest.fixture
def ledger(store, product_factory):
    store.insert_record(Collection.PRODUCTS, product_factory("P1", stock=12))
    store.insert_record(Collection.PRODUCTS, product_factory("P2", name="Cough Syrup", stock=40))
    return InventoryLedger(store, NotificationEmitter())


def test_projection_loads_committed_products(ledger):
    assert [product.product_id for product in ledger.list_products()] == ["P1", "P2"]
    assert ledger.get_by_id("P1").stock == 12
    assert ledger.get_by_id("missing") is None


def test_projection_follows_commits_from_other_writers(ledger, store, product_factory):
    store.insert_record(Collection.PRODUCTS, product_factory("P3"))

    assert ledger.get_by_id("P3") is not None


def test_apply_delta_into_batch_defers_the_write(ledger):
    batch = []

    ledger.apply_delta("P1", -5, batch=batch)

    assert batch == [data_manager.IncrementField(Collection.PRODUCTS, "P1", "stock", -5)]
    assert ledger.get_by_id("P1").stock == 12


def test_standalone_apply_delta_commits_and_warns_on_low_stock(ledger):
    ledger.apply_delta("P1", -5)

    assert ledger.get_by_id("P1").stock == 7
    notices = ledger.notifier.active()
    assert [n.message for n in notices] == ["Alert: Paracetamol 500mg running low (7)"]
    assert notices[0].level is NotificationLevel.WARNING


def test_restock_never_warns(ledger):
    ledger.apply_delta("P1", -5)
    ledger.notifier.remove(ledger.notifier.active()[0].notification_id)

    ledger.apply_delta("P1", 1)

    assert ledger.get_by_id("P1").stock == 8
    assert ledger.notifier.active() == []


def test_report_low_stock_flags_only_depleted_products(ledger):
    ledger.store.atomic_batch(
        [
            ledger.stock_delta("P1", -10),
            ledger.stock_delta("P2", -1),
        ]
    )

    flagged = ledger.report_low_stock({"P1": -10, "P2": -1, "P3": -4})

    assert flagged == ["P1"]


def test_oversold_stock_goes_negative_and_is_flagged(ledger, caplog):
    with caplog.at_level("WARNING", logger="pharmacy_ledger"):
        ledger.apply_delta("P1", -15)

    assert ledger.get_by_id("P1").stock == -3
    assert "oversold" in caplog.text


def test_failed_commit_leaves_projection_untouched(ledger, fail_saves):
    fail_saves()

    with pytest.raises(data_manager.CommitError):
        ledger.apply_delta("P1", -5)

    assert ledger.get_by_id("P1").stock == 12
    assert ledger.notifier.active() == []


def test_subscribers_and_close(ledger, store, product_factory):
    received = []
    ledger.subscribe(lambda products: received.append(len(products)))

    store.insert_record(Collection.PRODUCTS, product_factory("P3"))
    ledger.close()
    store.insert_record(Collection.PRODUCTS, product_factory("P4"))

    assert received == [2, 3]
    assert ledger.get_by_id("P4") is None
