"""CSV export of computed views: header row, every field quoted, one row per record."""

from __future__ import annotations

import csv
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

import pandas as pd

from fishfarm.services.eligibility import CandidateItem
from fishfarm.services.transfers import TransferView
from fishfarm.utils import grams_to_kg


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ", ".join(str(_plain(v)) for v in value)
    return value


def _as_dict(row: Any) -> dict:
    if is_dataclass(row):
        return asdict(row)
    if hasattr(row, "keys"):
        return {k: row[k] for k in row.keys()}
    return dict(row)


def to_frame(rows: Iterable[Any], columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    records = [{k: _plain(v) for k, v in _as_dict(r).items()} for r in rows]
    df = pd.DataFrame.from_records(records, columns=list(columns) if columns else None)
    return df


def to_csv(rows: Iterable[Any], columns: Optional[Sequence[str]] = None) -> str:
    return to_frame(rows, columns).to_csv(index=False, quoting=csv.QUOTE_ALL)


CANDIDATE_COLUMNS = [
    "stock_record_id",
    "batch_number",
    "size_class",
    "total_pieces",
    "weight_kg",
    "storage_location_name",
    "storage_status",
    "days_in_storage",
    "disposal_reason",
    "farmer_name",
    "processing_date",
]


def candidates_csv(items: Iterable[CandidateItem]) -> str:
    rows = []
    for c in items:
        d = asdict(c)
        d["weight_kg"] = round(grams_to_kg(c.total_weight_grams), 3)
        rows.append(d)
    return to_csv(rows, CANDIDATE_COLUMNS)


INVENTORY_COLUMNS = [
    "storage_location_name",
    "storage_status",
    "size",
    "total_quantity",
    "total_weight_kg",
    "batch_count",
    "capacity_kg",
    "current_usage_kg",
    "utilization_percent",
]


def inventory_csv(rows: Iterable[dict]) -> str:
    return to_csv(rows, INVENTORY_COLUMNS)


def transfers_csv(views: Iterable[TransferView]) -> str:
    return to_csv(v.as_row() for v in views)


DISPOSAL_COLUMNS = [
    "disposal_number",
    "disposal_date",
    "disposal_reason",
    "disposal_method",
    "total_pieces",
    "total_weight_kg",
    "disposal_cost",
    "status",
    "disposed_by",
    "approved_by",
    "created_at",
]


def disposals_csv(rows: Iterable[Any]) -> str:
    return to_csv(rows, DISPOSAL_COLUMNS)
