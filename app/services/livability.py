"""
Livability Scorer - blends subjective review averages with objective metrics.

FORMULA v0:
- review component = overall average (1-10) mapped to 0-100
- safety component = metrics.safetyScore (0-10) mapped to 0-100
- both present: round(0.55 * review + 0.45 * safety)
- one present: that component alone
- none present: score is None

Missing inputs stay missing. They are never treated as 0.

Any change to the weights or inputs must bump LIVABILITY_VERSION so stored
scores from different formula epochs can be told apart.
"""

import math
from numbers import Real
from typing import Any, Dict, Mapping, Optional

LIVABILITY_VERSION = "v0"
UNCOMPUTED_VERSION = "uncomputed"

REVIEW_WEIGHT = 0.55
SAFETY_WEIGHT = 0.45


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return None


def review_component(averages: Optional[Mapping[str, Any]]) -> Optional[int]:
    overall = _finite((averages or {}).get("overall"))
    if overall is None or overall < 1 or overall > 10:
        return None
    return _round_half_up(overall / 10 * 100)


def safety_component(metrics: Optional[Mapping[str, Any]]) -> Optional[int]:
    safety = _finite((metrics or {}).get("safetyScore"))
    if safety is None:
        return None
    return _round_half_up(max(0.0, min(10.0, safety)) * 10)


def compute_livability(averages: Optional[Mapping[str, Any]], metrics: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Score a city from its review averages and normalized metrics.

    Pure: call it with fresh inputs every time, the result is never patched
    incrementally.

    Returns:
        {"version": "v0", "score": int in [0, 100] or None}
    """
    reviews = review_component(averages)
    safety = safety_component(metrics)

    if reviews is None and safety is None:
        score = None
    elif reviews is not None and safety is not None:
        score = _round_half_up(REVIEW_WEIGHT * reviews + SAFETY_WEIGHT * safety)
    else:
        score = reviews if reviews is not None else safety

    if score is not None:
        score = max(0, min(100, score))

    return {"version": LIVABILITY_VERSION, "score": score}


def uncomputed_livability() -> Dict[str, Any]:
    return {"version": UNCOMPUTED_VERSION, "score": None}
