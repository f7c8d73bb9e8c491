"""
Storage ledger: capacity accounting derived from stock records.

storage_locations.current_usage_kg is only a cache. Usage is always the live
sum of non-disposed, non-consumed stock assigned to the location, and
reconcile_usage() writes that sum back into the cache.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Iterable, Optional

from fishfarm.db import q, x
from fishfarm.errors import NotFoundError
from fishfarm.models import StockRecord, StorageLocation
from fishfarm.utils import grams_to_kg

logger = logging.getLogger(__name__)

ACTIVE_STOCK_WHERE = "s.status='available' AND s.total_pieces > 0 AND s.total_weight_grams > 0"

STOCK_SELECT = """
    SELECT
      s.id, s.size_class, s.total_pieces, s.total_weight_grams,
      s.storage_location_id, s.sorting_batch_id, s.status, s.created_at,
      s.transfer_id, s.transfer_source_storage_id,
      b.batch_number, b.processing_date, b.created_at AS batch_created_at,
      f.name AS farmer_name
    FROM stock_records s
    LEFT JOIN sorting_batches b ON b.id = s.sorting_batch_id
    LEFT JOIN farmers f ON f.id = b.farmer_id
"""


def load_locations(conn) -> dict[int, StorageLocation]:
    rows = q(
        conn,
        """
        SELECT id, name, location_type, capacity_kg, current_usage_kg, status, temperature_c, humidity_pct
        FROM storage_locations
        ORDER BY name
        """,
    )
    return {int(r["id"]): StorageLocation.from_row(r) for r in rows}


def get_location(conn, location_id: int) -> StorageLocation:
    rows = q(conn, "SELECT * FROM storage_locations WHERE id=?", (int(location_id),))
    if not rows:
        raise NotFoundError(f"Storage location {location_id} does not exist.")
    return StorageLocation.from_row(rows[0])


def load_stock_records(conn, *, active_only: bool = True) -> list[StockRecord]:
    where = f"WHERE {ACTIVE_STOCK_WHERE}" if active_only else ""
    rows = q(conn, f"{STOCK_SELECT} {where} ORDER BY s.created_at DESC, s.id DESC")
    return [StockRecord.from_row(r) for r in rows]


def get_stock_record(conn, stock_record_id: int) -> StockRecord:
    rows = q(conn, f"{STOCK_SELECT} WHERE s.id=?", (int(stock_record_id),))
    if not rows:
        raise NotFoundError(f"Stock record {stock_record_id} does not exist.")
    return StockRecord.from_row(rows[0])


def compute_usage(records: Iterable[StockRecord]) -> dict[int, float]:
    """{location_id: kg} over active records only."""
    out: dict[int, float] = defaultdict(float)
    for r in records:
        if r.storage_location_id is None or not r.is_active:
            continue
        out[r.storage_location_id] += grams_to_kg(r.total_weight_grams)
    return dict(out)


def usage(conn, location_id: int) -> float:
    get_location(conn, location_id)
    row = q(
        conn,
        f"""
        SELECT COALESCE(SUM(s.total_weight_grams), 0) AS grams
        FROM stock_records s
        WHERE s.storage_location_id=? AND {ACTIVE_STOCK_WHERE}
        """,
        (int(location_id),),
    )[0]
    return grams_to_kg(row["grams"])


def utilization_percent(usage_kg: float, capacity_kg: float) -> float:
    if not capacity_kg or capacity_kg <= 0:
        return 0.0
    return round(float(usage_kg) / float(capacity_kg) * 100.0, 2)


def is_over_capacity(usage_kg: float, capacity_kg: float) -> bool:
    return float(usage_kg) > float(capacity_kg)


def reconcile_usage(conn, location_ids: Optional[Iterable[int]] = None) -> dict[int, float]:
    """Write live usage into the current_usage_kg cache. Returns the new values."""
    if location_ids is None:
        ids = [int(r["id"]) for r in q(conn, "SELECT id FROM storage_locations")]
    else:
        ids = sorted({int(i) for i in location_ids if i is not None})

    out: dict[int, float] = {}
    for loc_id in ids:
        rows = q(
            conn,
            f"""
            SELECT COALESCE(SUM(s.total_weight_grams), 0) AS grams
            FROM stock_records s
            WHERE s.storage_location_id=? AND {ACTIVE_STOCK_WHERE}
            """,
            (loc_id,),
        )
        kg = round(grams_to_kg(rows[0]["grams"]), 3)
        x(conn, "UPDATE storage_locations SET current_usage_kg=? WHERE id=?", (kg, loc_id))
        out[loc_id] = kg
    logger.debug("Reconciled storage usage for %s location(s)", len(out))
    return out


def inventory_by_storage(conn) -> list[dict[str, Any]]:
    """
    One row per (storage location, size class) with pieces, kg and the
    contributing batches. Locations without stock get a single row with
    size=None. Sorted by location name, then size (empty rows first).
    """
    locations = load_locations(conn)
    records = load_stock_records(conn)
    live = compute_usage(records)

    sizes: dict[int, dict[int, dict]] = {loc_id: {} for loc_id in locations}
    for r in records:
        if r.storage_location_id not in locations:
            logger.warning("Stock record %s references unknown storage %s", r.id, r.storage_location_id)
            continue
        agg = sizes[r.storage_location_id].setdefault(
            r.size_class,
            {"total_quantity": 0, "total_weight_kg": 0.0, "batch_count": 0, "contributing_batches": []},
        )
        agg["total_quantity"] += r.total_pieces
        agg["total_weight_kg"] += grams_to_kg(r.total_weight_grams)
        agg["batch_count"] += 1
        agg["contributing_batches"].append(
            {
                "stock_record_id": r.id,
                "batch_id": r.sorting_batch_id,
                "batch_number": r.batch_number or f"BATCH-{r.sorting_batch_id}",
                "quantity": r.total_pieces,
                "weight_kg": grams_to_kg(r.total_weight_grams),
                "farmer_name": r.farmer_name or "Unknown",
                "processing_date": r.processing_date.isoformat() if r.processing_date else None,
            }
        )

    out: list[dict[str, Any]] = []
    for loc_id, loc in locations.items():
        used = round(live.get(loc_id, 0.0), 3)
        base = {
            "storage_location_id": loc_id,
            "storage_location_name": loc.name,
            "storage_location_type": loc.location_type,
            "storage_status": loc.status.value,
            "capacity_kg": loc.capacity_kg,
            "current_usage_kg": used,
            "available_capacity_kg": max(0.0, loc.capacity_kg - used),
            "utilization_percent": utilization_percent(used, loc.capacity_kg),
        }
        if not sizes[loc_id]:
            out.append(
                {**base, "size": None, "total_quantity": 0, "total_weight_kg": 0.0, "batch_count": 0, "contributing_batches": []}
            )
            continue
        for size, agg in sizes[loc_id].items():
            out.append({**base, "size": size, **agg, "total_weight_kg": round(agg["total_weight_kg"], 3)})

    out.sort(key=lambda r: (r["storage_location_name"], -1 if r["size"] is None else r["size"]))
    return out


def transfer_destinations(conn, exclude_id: Optional[int] = None) -> list[dict[str, Any]]:
    """Active locations with live usage, optionally excluding the transfer source."""
    live = compute_usage(load_stock_records(conn))
    out = []
    for loc in load_locations(conn).values():
        if not loc.is_active or (exclude_id is not None and loc.id == int(exclude_id)):
            continue
        used = live.get(loc.id, 0.0)
        out.append(
            {
                "id": loc.id,
                "name": loc.name,
                "location_type": loc.location_type,
                "capacity_kg": loc.capacity_kg,
                "current_usage_kg": round(used, 3),
                "available_capacity_kg": max(0.0, loc.capacity_kg - used),
                "utilization_percent": utilization_percent(used, loc.capacity_kg),
            }
        )
    return out
