from __future__ import annotations

from datetime import datetime, date, timezone
from typing import Optional, Union


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def safe_div(n: float, d: float) -> float:
    return float(n) / float(d) if d else 0.0


def parse_iso_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Accepts 'YYYY-MM-DD', a full ISO timestamp, a date or a datetime.
    Returns None for empty or unparseable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def grams_to_kg(grams: float) -> float:
    return float(grams or 0) / 1000.0


def iso_now_precise() -> str:
    # Microsecond resolution: shared by every line of one batch transfer.
    return datetime.now(timezone.utc).isoformat()
