from __future__ import annotations

import logging
import random
from datetime import date, timedelta

from fishfarm.db import ensure_schema, q, x
from fishfarm.services.dispatch import confirm_order, create_outlet_order
from fishfarm.services.sizing import DEFAULT_THRESHOLDS
from fishfarm.services.sorting import SortedLineInput, record_sorting_batch
from fishfarm.services.storage import reconcile_usage
from fishfarm.services.transfers import TransferLineInput, create_batch_transfer

logger = logging.getLogger(__name__)

DEFAULT_STORAGE = [
    # name, type, capacity_kg, temperature_c, humidity_pct
    ("Cold Room A", "cold_storage", 2000.0, 2.0, 85.0),
    ("Cold Room B", "cold_storage", 1500.0, 3.0, 80.0),
    ("Freezer 1", "freezer", 800.0, -18.0, None),
    ("Processing Area", "processing_area", 300.0, 12.0, 70.0),
]

DEFAULT_DISPOSAL_REASONS = [
    ("Age", "Stock held beyond the allowed storage age"),
    ("Storage Inactive", "Storage location is in maintenance or inactive"),
    ("Storage Over Capacity", "Storage location holds more than its capacity"),
    ("No Storage Location", "Stock has no storage location assigned"),
    ("Storage Not Found", "Stock references a storage location that no longer exists"),
    ("Quality", "Failed quality inspection"),
]

DEFAULT_FARMERS = [
    ("Kisumu Fish Farmers Co-op", "0712000001", "Kisumu"),
    ("Lake Basin Aquaculture", "0712000002", "Homa Bay"),
    ("Sagana Fish Farm", "0712000003", "Kirinyaga"),
]


def upsert_reference_data(conn) -> None:
    ensure_schema(conn)

    for name, kind, cap, temp, hum in DEFAULT_STORAGE:
        x(
            conn,
            """
            INSERT OR IGNORE INTO storage_locations(name, location_type, capacity_kg, status, temperature_c, humidity_pct)
            VALUES (?, ?, ?, 'active', ?, ?)
            """,
            (name, kind, cap, temp, hum),
        )

    for class_number, lo, hi, desc in DEFAULT_THRESHOLDS:
        x(
            conn,
            """
            INSERT OR IGNORE INTO size_class_thresholds(class_number, min_weight_grams, max_weight_grams, description)
            VALUES (?, ?, ?, ?)
            """,
            (class_number, lo, hi, desc),
        )

    for name, desc in DEFAULT_DISPOSAL_REASONS:
        x(conn, "INSERT OR IGNORE INTO disposal_reasons(name, description) VALUES (?, ?)", (name, desc))

    for name, phone, loc in DEFAULT_FARMERS:
        x(conn, "INSERT OR IGNORE INTO farmers(name, phone, location) VALUES (?, ?, ?)", (name, phone, loc))


def wipe_all(conn) -> None:
    # Keep schema, delete data (order matters for FKs).
    for t in [
        "dispatch_records",
        "outlet_orders",
        "disposal_items",
        "disposal_records",
        "transfers",
        "stock_records",
        "sorting_batches",
        "disposal_reasons",
        "size_class_thresholds",
        "storage_locations",
        "farmers",
    ]:
        conn.execute(f"DELETE FROM {t};")
    conn.commit()
    logger.info("All data wiped")


def load_demo_data(conn, *, seed: int = 7) -> None:
    rng = random.Random(seed)
    upsert_reference_data(conn)

    farmers = q(conn, "SELECT * FROM farmers ORDER BY id")
    locations = q(conn, "SELECT * FROM storage_locations WHERE location_type != 'processing_area' ORDER BY id")

    # Sorting runs spread over the last ~two months so some stock is past the age threshold
    for i, days_ago in enumerate([55, 42, 33, 20, 12, 5, 1]):
        loc = locations[i % len(locations)]
        farmer = farmers[i % len(farmers)]
        lines = []
        for sc in range(2, 7):
            pcs = rng.randint(20, 60)
            avg_g = DEFAULT_THRESHOLDS[sc][1] + rng.uniform(10, 90)
            lines.append(SortedLineInput(size_class=sc, pieces=pcs, weight_grams=round(pcs * avg_g, 1)))
        record_sorting_batch(
            conn,
            storage_location_id=int(loc["id"]),
            lines=lines,
            farmer_id=int(farmer["id"]),
            processing_date=(date.today() - timedelta(days=days_ago)).isoformat(),
            notes="Demo sorting run",
        )

    # A pending multi-size transfer
    create_batch_transfer(
        conn,
        from_storage_id=int(locations[0]["id"]),
        to_storage_id=int(locations[1]["id"]),
        lines=[
            TransferLineInput(size=3, quantity=10, weight_kg=3.5),
            TransferLineInput(size=4, quantity=8, weight_kg=4.6),
        ],
        notes="Rebalance cold rooms",
        requested_by="demo",
    )

    # Outlet orders: one confirmed and ready to pick, one still pending
    confirmed = create_outlet_order(
        conn,
        outlet_name="Westlands Outlet",
        size_quantities={3: 20, 4: 15},
        total_value=18500.0,
    )
    confirm_order(conn, confirmed)
    create_outlet_order(
        conn,
        outlet_name="Karen Outlet",
        size_quantities={5: 10},
        use_any_size=True,
        total_value=9000.0,
    )

    # Freezer goes into maintenance so its stock shows up as a disposal candidate
    x(conn, "UPDATE storage_locations SET status='maintenance' WHERE name='Freezer 1'")
    reconcile_usage(conn)
    logger.info("Demo data loaded (seed=%s)", seed)
