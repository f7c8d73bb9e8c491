from __future__ import annotations

from typing import Iterable, Sequence

from fishfarm.db import q
from fishfarm.errors import ValidationError
from fishfarm.models import SizeClassThreshold
from fishfarm.utils import safe_div

# Seed values for size_class_thresholds; the classifier only ever reads the table.
DEFAULT_THRESHOLDS = [
    (0, 0, 99.99, "Extra Small - Under 100g"),
    (1, 100, 199.99, "Small - 100-200g"),
    (2, 200, 299.99, "Medium Small - 200-300g"),
    (3, 300, 499.99, "Medium - 300-500g"),
    (4, 500, 799.99, "Medium Large - 500-800g"),
    (5, 800, 1199.99, "Large - 800-1200g"),
    (6, 1200, 1599.99, "Extra Large - 1200-1600g"),
    (7, 1600, 1999.99, "Jumbo - 1600-2000g"),
    (8, 2000, 2999.99, "Super Jumbo - 2000-3000g"),
    (9, 3000, 4999.99, "Mega - 3000-5000g"),
    (10, 5000, 999999.99, "Giant - Over 5000g"),
]


def load_thresholds(conn) -> list[SizeClassThreshold]:
    rows = q(
        conn,
        """
        SELECT class_number, min_weight_grams, max_weight_grams, description
        FROM size_class_thresholds
        WHERE is_active=1
        ORDER BY class_number
        """,
    )
    return [SizeClassThreshold.from_row(r) for r in rows]


def classify(weight_grams: float, thresholds: Sequence[SizeClassThreshold]) -> int:
    """
    Map one fish weight to its size class.

    Bands are matched inclusively on [min, max]. A weight that falls in the gap
    between one band's max and the next band's min belongs to the lower band.
    """
    w = float(weight_grams)
    if w < 0:
        raise ValidationError("Weight must be >= 0.")
    if not thresholds:
        raise ValidationError("No size class thresholds configured.")

    bands = sorted(thresholds, key=lambda t: (t.min_weight_grams, t.class_number))
    chosen = None
    for band in bands:
        if band.min_weight_grams <= w <= band.max_weight_grams:
            return band.class_number
        if band.min_weight_grams <= w:
            chosen = band

    if chosen is None:
        raise ValidationError(f"Weight {w:g} g is below the smallest size class.")
    return chosen.class_number


def unit_weight(total_weight_grams: float, piece_count: int) -> float:
    """Per-piece weight of one record; zero pieces gives 0, not an error."""
    return safe_div(float(total_weight_grams), int(piece_count))


def classify_many(weights_grams: Iterable[float], thresholds: Sequence[SizeClassThreshold]) -> dict[int, dict]:
    """Aggregate individual fish weights into {size_class: {pieces, weight_grams}}."""
    out: dict[int, dict] = {}
    for w in weights_grams:
        sc = classify(w, thresholds)
        line = out.setdefault(sc, {"pieces": 0, "weight_grams": 0.0})
        line["pieces"] += 1
        line["weight_grams"] += float(w)
    return dict(sorted(out.items()))
