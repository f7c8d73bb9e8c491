from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from fishfarm.db import atomic, q, x
from fishfarm.errors import CapacityError, ValidationError
from fishfarm.models import check_size_class
from fishfarm.services.sizing import classify_many, load_thresholds
from fishfarm.services.storage import get_location, reconcile_usage, usage
from fishfarm.utils import grams_to_kg, iso_now, parse_iso_date

logger = logging.getLogger(__name__)


@dataclass
class SortedLineInput:
    size_class: int
    pieces: int
    weight_grams: float


def list_farmers(conn):
    return q(conn, "SELECT * FROM farmers ORDER BY name")


def list_sorting_batches(conn, limit: int = 100):
    return q(
        conn,
        """
        SELECT b.*, f.name AS farmer_name,
               COUNT(s.id) AS stock_records,
               COALESCE(SUM(s.total_pieces), 0) AS total_pieces,
               COALESCE(SUM(s.total_weight_grams), 0) / 1000.0 AS total_weight_kg
        FROM sorting_batches b
        LEFT JOIN farmers f ON f.id = b.farmer_id
        LEFT JOIN stock_records s ON s.sorting_batch_id = b.id
        GROUP BY b.id
        ORDER BY b.created_at DESC, b.id DESC
        LIMIT ?
        """,
        (int(limit),),
    )


def _generate_batch_number(conn, processing_date: date) -> str:
    """
    Consistent system code:
      SORT-{YYYYMMDD}-{NNN}
    """
    prefix = f"SORT-{processing_date.strftime('%Y%m%d')}-"
    r = q(conn, "SELECT COUNT(1) AS n FROM sorting_batches WHERE batch_number LIKE ?", (prefix + "%",))
    n = int(r[0]["n"]) if r else 0
    return f"{prefix}{n + 1:03d}"


def record_sorting_batch(
    conn,
    *,
    storage_location_id: int,
    lines: list[SortedLineInput],
    farmer_id: Optional[int] = None,
    processing_date: Optional[str] = None,
    notes: Optional[str] = None,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> int:
    """
    One completed sort becomes one sorting batch plus one stock record per
    size class, stored in a single location.
    """
    day = parse_iso_date(processing_date) if processing_date else date.today()
    if day is None:
        raise ValidationError("Processing date must be YYYY-MM-DD.")
    if day > date.today():
        raise ValidationError("Processing date cannot be in the future.")

    merged: dict[int, SortedLineInput] = {}
    for l in lines or []:
        sc = check_size_class(l.size_class, "sorting line")
        if int(l.pieces) <= 0 or float(l.weight_grams) <= 0:
            continue
        cur = merged.setdefault(sc, SortedLineInput(size_class=sc, pieces=0, weight_grams=0.0))
        cur.pieces += int(l.pieces)
        cur.weight_grams += float(l.weight_grams)
    if not merged:
        raise ValidationError("No valid lines found. Enter pieces and weight > 0 for at least one size.")

    incoming_kg = grams_to_kg(sum(l.weight_grams for l in merged.values()))

    def _record() -> int:
        loc = get_location(conn, storage_location_id)
        if not loc.is_active:
            raise ValidationError(f"Storage '{loc.name}' is {loc.status.value}.")
        if loc.capacity_kg > 0 and usage(conn, loc.id) + incoming_kg > loc.capacity_kg:
            raise CapacityError(f"'{loc.name}' cannot take {incoming_kg:.2f} kg more.")

        now = iso_now()
        batch_number = _generate_batch_number(conn, day)
        batch_id = x(
            conn,
            """
            INSERT INTO sorting_batches (batch_number, farmer_id, processing_date, status, notes, created_at)
            VALUES (?, ?, ?, 'completed', ?, ?)
            """,
            (batch_number, farmer_id, day.isoformat(), notes, now),
        )
        for line in sorted(merged.values(), key=lambda l: l.size_class):
            x(
                conn,
                """
                INSERT INTO stock_records (
                    sorting_batch_id, size_class, total_pieces, total_weight_grams,
                    storage_location_id, status, created_at
                ) VALUES (?, ?, ?, ?, ?, 'available', ?)
                """,
                (batch_id, line.size_class, line.pieces, round(line.weight_grams, 3), loc.id, now),
            )
        reconcile_usage(conn, [loc.id])
        return batch_id

    batch_id = atomic(conn, _record, attempts=attempts, delay=retry_delay)
    logger.info(
        "Sorting batch %s recorded: %s size class(es), %.3f kg into storage %s",
        batch_id,
        len(merged),
        incoming_kg,
        storage_location_id,
    )
    return batch_id


def sort_fish(
    conn,
    *,
    weights_grams: Iterable[float],
    storage_location_id: int,
    farmer_id: Optional[int] = None,
    processing_date: Optional[str] = None,
    notes: Optional[str] = None,
    attempts: int = 3,
    retry_delay: float = 0.5,
) -> int:
    """Classify individual fish weights and record the result as one sorting batch."""
    summary = classify_many(weights_grams, load_thresholds(conn))
    lines = [
        SortedLineInput(size_class=sc, pieces=v["pieces"], weight_grams=v["weight_grams"])
        for sc, v in summary.items()
    ]
    return record_sorting_batch(
        conn,
        storage_location_id=storage_location_id,
        lines=lines,
        farmer_id=farmer_id,
        processing_date=processing_date,
        notes=notes,
        attempts=attempts,
        retry_delay=retry_delay,
    )
