"""Tests for the storage ledger."""

import pytest

from fishfarm.errors import NotFoundError
from fishfarm.services.storage import (
    get_location,
    inventory_by_storage,
    load_stock_records,
    reconcile_usage,
    transfer_destinations,
    usage,
    utilization_percent,
)


class TestUsage:
    def test_sums_only_active_stock(self, conn, add_location, add_stock) -> None:
        store = add_location()
        add_stock(location_id=store, weight_grams=5000.0)
        add_stock(location_id=store, weight_grams=2500.0)
        add_stock(location_id=store, weight_grams=9000.0, status="disposed")
        add_stock(location_id=store, pieces=0, weight_grams=0.0)
        assert usage(conn, store) == pytest.approx(7.5)

    def test_unknown_location(self, conn) -> None:
        with pytest.raises(NotFoundError):
            usage(conn, 404)
        with pytest.raises(NotFoundError):
            get_location(conn, 404)

    def test_utilization(self) -> None:
        assert utilization_percent(50.0, 200.0) == 25.0
        assert utilization_percent(50.0, 0.0) == 0.0

    def test_reconcile_writes_cache(self, conn, add_location, add_stock) -> None:
        store = add_location()
        add_stock(location_id=store, weight_grams=1234.0)
        assert reconcile_usage(conn) == {store: 1.234}
        assert get_location(conn, store).current_usage_kg == pytest.approx(1.234)

    def test_consumed_records_not_loaded(self, conn, add_location, add_stock) -> None:
        store = add_location()
        live = add_stock(location_id=store)
        add_stock(location_id=store, pieces=0, weight_grams=0.0)
        assert [r.id for r in load_stock_records(conn)] == [live]


class TestInventoryByStorage:
    def test_groups_by_location_and_size(self, conn, add_location, add_stock) -> None:
        a = add_location("Alpha", capacity_kg=100.0)
        add_location("Beta")
        add_stock(location_id=a, size_class=2, pieces=10, weight_grams=2500.0)
        add_stock(location_id=a, size_class=2, pieces=5, weight_grams=1500.0)
        add_stock(location_id=a, size_class=1, pieces=4, weight_grams=600.0)

        rows = inventory_by_storage(conn)
        assert [(r["storage_location_name"], r["size"]) for r in rows] == [
            ("Alpha", 1),
            ("Alpha", 2),
            ("Beta", None),
        ]
        size2 = rows[1]
        assert size2["total_quantity"] == 15
        assert size2["total_weight_kg"] == pytest.approx(4.0)
        assert size2["batch_count"] == 2
        assert len(size2["contributing_batches"]) == 2
        assert size2["current_usage_kg"] == pytest.approx(4.6)
        assert size2["utilization_percent"] == pytest.approx(4.6)
        assert rows[2]["total_quantity"] == 0


def test_transfer_destinations_exclude_source_and_inactive(conn, add_location) -> None:
    a = add_location("Alpha")
    b = add_location("Beta")
    add_location("Gamma", status="maintenance")
    dests = transfer_destinations(conn, exclude_id=a)
    assert [d["id"] for d in dests] == [b]
