"""Pytest configuration and fixtures."""

from __future__ import annotations

import itertools
import sys
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path

import pytest

# Ensure project root is on path when running tests
_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from fishfarm.db import connect, ensure_schema, q, x
from fishfarm.services.demo_data import DEFAULT_DISPOSAL_REASONS
from fishfarm.services.sizing import DEFAULT_THRESHOLDS


@pytest.fixture
def conn(tmp_path):
    """Fresh database with thresholds, disposal reasons and one farmer; no storage or stock."""
    c = connect(tmp_path / "test.db", timeout=1.0)
    ensure_schema(c)
    for class_number, lo, hi, desc in DEFAULT_THRESHOLDS:
        x(
            c,
            "INSERT INTO size_class_thresholds(class_number, min_weight_grams, max_weight_grams, description) VALUES (?, ?, ?, ?)",
            (class_number, lo, hi, desc),
        )
    for name, desc in DEFAULT_DISPOSAL_REASONS:
        x(c, "INSERT INTO disposal_reasons(name, description) VALUES (?, ?)", (name, desc))
    x(c, "INSERT INTO farmers(name) VALUES ('Test Farmer')")
    yield c
    c.close()


@pytest.fixture
def add_location(conn):
    """Factory: insert a storage location and return its id."""

    def _add(name: str = "Cold Room A", capacity_kg: float = 1000.0, status: str = "active") -> int:
        return x(
            conn,
            "INSERT INTO storage_locations(name, capacity_kg, status) VALUES (?, ?, ?)",
            (name, capacity_kg, status),
        )

    return _add


@pytest.fixture
def add_stock(conn):
    """Factory: insert a sorting batch plus one stock record and return the record id."""
    seq = itertools.count(1)
    farmer_id = int(q(conn, "SELECT id FROM farmers LIMIT 1")[0]["id"])

    def _add(
        *,
        location_id,
        size_class: int = 3,
        pieces: int = 10,
        weight_grams: float = 5000.0,
        days_old: int = 40,
        status: str = "available",
    ) -> int:
        day = date.today() - timedelta(days=days_old)
        stamp = datetime.combine(day, time(8, 0), tzinfo=timezone.utc).isoformat()
        batch_id = x(
            conn,
            """
            INSERT INTO sorting_batches(batch_number, farmer_id, processing_date, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (f"TEST-{next(seq):03d}", farmer_id, day.isoformat(), stamp),
        )
        return x(
            conn,
            """
            INSERT INTO stock_records(sorting_batch_id, size_class, total_pieces, total_weight_grams,
                                      storage_location_id, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (batch_id, size_class, pieces, weight_grams, location_id, status, stamp),
        )

    return _add


@pytest.fixture
def reason_id(conn):
    """Factory: disposal reason id by name."""

    def _get(name: str = "Age") -> int:
        return int(q(conn, "SELECT id FROM disposal_reasons WHERE name=?", (name,))[0]["id"])

    return _get


@pytest.fixture
def stock_row(conn):
    """Factory: raw stock_records row by id."""

    def _get(record_id: int):
        return q(conn, "SELECT * FROM stock_records WHERE id=?", (record_id,))[0]

    return _get
