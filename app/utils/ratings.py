"""
Rating vectors: the fixed set of review dimensions and the arithmetic the
city aggregate is built from.

Two deliberately separate entry points:
- validate_review_input(): strict, used on incoming requests. Every key must be
  an integer in [1, 10]; all problems are reported at once.
- normalize_for_aggregation(): lenient, used for sums and deltas. Missing or
  non-finite keys become 0 so stored aggregates can always be folded.
"""

import math
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional

from app.core.errors import AggregateCorruptionError

RATING_KEYS = ("safety", "cost", "traffic", "cleanliness", "overall")
MIN_RATING = 1
MAX_RATING = 10
MAX_COMMENT_LEN = 800

# Float drift tolerance for the non-negative sums check
SUMS_EPSILON = 1e-6


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _finite_or(value: Any, fallback: float) -> float:
    if _is_number(value) and math.isfinite(value):
        return float(value)
    return fallback


# ---------------------------------------------------------------------------
# Aggregate arithmetic
# ---------------------------------------------------------------------------

def zero_ratings() -> Dict[str, float]:
    return {k: 0.0 for k in RATING_KEYS}


def normalize_for_aggregation(ratings: Any) -> Dict[str, float]:
    """Coerce anything to the fixed key set, 0 for missing/non-finite keys."""
    src = ratings if isinstance(ratings, Mapping) else {}
    return {k: _finite_or(src.get(k), 0.0) for k in RATING_KEYS}


def add_ratings(a: Any, b: Any) -> Dict[str, float]:
    aa = normalize_for_aggregation(a)
    bb = normalize_for_aggregation(b)
    return {k: aa[k] + bb[k] for k in RATING_KEYS}


def sub_ratings(a: Any, b: Any) -> Dict[str, float]:
    aa = normalize_for_aggregation(a)
    bb = normalize_for_aggregation(b)
    return {k: aa[k] - bb[k] for k in RATING_KEYS}


def compute_averages(count: Any, sums: Any) -> Dict[str, Optional[float]]:
    """Per-key mean. None (never 0) when there are no reviews."""
    c = _finite_or(count, 0.0)
    s = normalize_for_aggregation(sums)
    return {k: (s[k] / c if c > 0 else None) for k in RATING_KEYS}


def assert_sums_non_negative(city_id: str, sums: Mapping[str, float], epsilon: float = SUMS_EPSILON) -> None:
    """
    Catch aggregate corruption early. Sums are never clamped: clamping would
    hide double deletes and wrong deltas.
    """
    for k in RATING_KEYS:
        v = _finite_or(sums.get(k), 0.0)
        if v < -epsilon:
            raise AggregateCorruptionError(city_id, k, v)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def validate_ratings(ratings: Any) -> List[str]:
    if not isinstance(ratings, Mapping):
        return ["ratings is required (object)"]

    errors = []
    for key in RATING_KEYS:
        val = ratings.get(key)

        if not _is_number(val) or not math.isfinite(val):
            errors.append(f"ratings.{key} must be a finite number")
            continue
        if float(val) != int(val):
            errors.append(f"ratings.{key} must be an integer")
        if val < MIN_RATING or val > MAX_RATING:
            errors.append(f"ratings.{key} must be between {MIN_RATING} and {MAX_RATING}")
    return errors


def validate_review_input(body: Any) -> List[str]:
    """Return every problem with a review payload; empty list means valid."""
    if not isinstance(body, Mapping):
        return ["Body must be an object"]

    errors = validate_ratings(body.get("ratings"))

    comment = body.get("comment")
    if comment is not None:
        if not isinstance(comment, str):
            errors.append("comment must be a string or null")
        elif len(comment) > MAX_COMMENT_LEN:
            errors.append(f"comment must be <= {MAX_COMMENT_LEN} chars")

    return errors


def clean_ratings(ratings: Mapping[str, Any]) -> Dict[str, int]:
    """Stored shape for already-validated ratings: every key, integer values."""
    return {k: int(ratings[k]) for k in RATING_KEYS}


def clean_comment(comment: Optional[str]) -> Optional[str]:
    if comment is None:
        return None
    s = str(comment).strip()
    return s or None
