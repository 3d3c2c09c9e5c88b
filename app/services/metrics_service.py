"""
Metrics Store Gateway - objective city metrics synced by external pipelines.

FIELD OWNERSHIP:
Each metrics field has exactly one owning pipeline. A write attributed to an
owner only ever touches that owner's fields plus its own meta.<owner>
namespace. Fields the owner does not hold are dropped from the patch, never
nulled, so pipelines can run independently without locking each other out.

    metricsSync  -> population, medianRent
    safetySync   -> safetyScore (+ safetyScoreScale stamp), crimeIndexPer100k
"""

import logging
import math
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from firebase_admin import firestore

from app.config.collections import METRICS_COLLECTION
from app.config.firebase import get_db
from app.core.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

SAFETY_SCALE_10 = "0-10"
SAFETY_SCALE_100 = "0-100"
SAFETY_SCALES = (SAFETY_SCALE_10, SAFETY_SCALE_100)


class MetricsOwner(str, Enum):
    METRICS_SYNC = "metricsSync"
    SAFETY_SYNC = "safetySync"


class MetricsField(str, Enum):
    MEDIAN_RENT = "medianRent"
    POPULATION = "population"
    SAFETY_SCORE = "safetyScore"
    SAFETY_SCORE_SCALE = "safetyScoreScale"
    CRIME_INDEX_PER_100K = "crimeIndexPer100k"


# Closed (owner, field) table. Every field appears exactly once.
FIELD_OWNERSHIP: Tuple[Tuple[MetricsOwner, MetricsField], ...] = (
    (MetricsOwner.METRICS_SYNC, MetricsField.POPULATION),
    (MetricsOwner.METRICS_SYNC, MetricsField.MEDIAN_RENT),
    (MetricsOwner.SAFETY_SYNC, MetricsField.SAFETY_SCORE),
    (MetricsOwner.SAFETY_SYNC, MetricsField.SAFETY_SCORE_SCALE),
    (MetricsOwner.SAFETY_SYNC, MetricsField.CRIME_INDEX_PER_100K),
)

# Derived from another field's write, never accepted from a patch directly
STAMP_FIELDS = frozenset({MetricsField.SAFETY_SCORE_SCALE})


def _build_owned_fields() -> Dict[MetricsOwner, FrozenSet[MetricsField]]:
    seen: Dict[MetricsField, MetricsOwner] = {}
    for owner, field in FIELD_OWNERSHIP:
        if field in seen:
            raise ConfigurationError(f"Metrics field {field.value} owned by both {seen[field].value} and {owner.value}")
        seen[field] = owner
    unowned = set(MetricsField) - set(seen)
    if unowned:
        raise ConfigurationError(f"Metrics fields without an owner: {sorted(f.value for f in unowned)}")
    return {o: frozenset(f for own, f in FIELD_OWNERSHIP if own == o) for o in MetricsOwner}


OWNED_FIELDS = _build_owned_fields()


def parse_owner(owner: Any) -> MetricsOwner:
    try:
        return MetricsOwner(owner)
    except ValueError:
        allowed = ", ".join(o.value for o in MetricsOwner)
        raise ValidationError("Unknown metrics owner", [f"owner must be one of: {allowed}"])


# ---------------------------------------------------------------------------
# Value normalization
# ---------------------------------------------------------------------------

def to_num_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def _round1(n: float) -> float:
    return math.floor(n * 10 + 0.5) / 10


def _clamp_0_to_10(n: float) -> float:
    return max(0.0, min(10.0, n))


def normalize_safety_score(value: Any, scale: Optional[str] = None) -> Optional[float]:
    """
    Read-side safety normalization to the common 0-10 scale.

    Values stamped "0-10" are trusted. Unstamped legacy values keep the old
    magnitude rule: anything above 10 is assumed to be a 0-100 score.
    """
    n = to_num_or_none(value)
    if n is None:
        return None
    if scale != SAFETY_SCALE_10 and n > 10:
        n = n / 10
    return _clamp_0_to_10(_round1(n))


def coerce_safety_write(value: Any) -> Optional[float]:
    """
    Write-side safety normalization. The scale is explicit:
    - bare number: already 0-10
    - {"scale": "0-10" | "0-100", "value": n}
    """
    if value is None:
        return None

    if isinstance(value, Mapping):
        scale = value.get("scale")
        if scale not in SAFETY_SCALES:
            raise ValidationError("Invalid safetyScore", [f"safetyScore.scale must be one of: {', '.join(SAFETY_SCALES)}"])
        n = to_num_or_none(value.get("value"))
        if n is None:
            return None
        limit = 100.0 if scale == SAFETY_SCALE_100 else 10.0
        if n < 0 or n > limit:
            raise ValidationError("Invalid safetyScore", [f"safetyScore.value must be between 0 and {limit:g}"])
        return _round1(n / 10 if scale == SAFETY_SCALE_100 else n)

    n = to_num_or_none(value)
    if n is None:
        return None
    if n < 0 or n > 10:
        raise ValidationError(
            "Invalid safetyScore",
            ["safetyScore must be on the 0-10 scale; send {\"scale\": \"0-100\", \"value\": n} for percent scores"],
        )
    return _round1(n)


def project_owned_patch(patch: Mapping[str, Any], owner: MetricsOwner) -> Tuple[Dict[str, Any], list]:
    """
    Keep only the fields ``owner`` may write.

    A key present with None means "clear it"; an absent key means "leave it".

    Returns:
        (document fields to write, names of dropped keys)
    """
    allowed = OWNED_FIELDS[owner]
    out: Dict[str, Any] = {}
    dropped = []

    for key, value in patch.items():
        if key == "meta":
            continue
        try:
            field = MetricsField(key)
        except ValueError:
            dropped.append(key)
            continue
        if field not in allowed or field in STAMP_FIELDS:
            dropped.append(key)
            continue

        if field is MetricsField.SAFETY_SCORE:
            score = coerce_safety_write(value)
            out[MetricsField.SAFETY_SCORE.value] = score
            out[MetricsField.SAFETY_SCORE_SCALE.value] = SAFETY_SCALE_10 if score is not None else None
        else:
            out[field.value] = to_num_or_none(value)

    return out, sorted(dropped)


def normalize_metrics(city_id: str, data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Public MetricsDocument shape. Every missing field defaults to None, never 0."""
    d = data or {}
    median_rent = to_num_or_none(d.get("medianRent"))
    if median_rent is None:
        median_rent = to_num_or_none(d.get("medianGrossRent"))
    meta = d.get("meta")

    return {
        "cityId": city_id,
        "medianRent": median_rent,
        "population": to_num_or_none(d.get("population")),
        "safetyScore": normalize_safety_score(d.get("safetyScore"), d.get("safetyScoreScale")),
        "crimeIndexPer100k": to_num_or_none(d.get("crimeIndexPer100k")),
        "meta": dict(meta) if isinstance(meta, Mapping) else None,
    }


class MetricsService:
    """Read/write access to city_metrics with per-owner field isolation."""

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    def metrics_ref(self, city_id: str):
        return self.db.collection(METRICS_COLLECTION).document(city_id)

    def upsert_metrics(self, city_id: str, patch: Mapping[str, Any], owner: Any) -> Dict[str, Any]:
        """
        Apply an owner-scoped metrics patch.

        Step 1 merges the owned scalar fields (creating the document if needed).
        Step 2 writes meta under the dotted path meta.<owner> with update(),
        so it never replaces the whole meta map or another owner's namespace.

        Args:
            city_id: City slug
            patch: Field values plus optional "meta" (dict, or None to clear)
            owner: MetricsOwner or its string value

        Returns:
            Summary of written and dropped fields
        """
        owner = parse_owner(owner)
        if not isinstance(patch, Mapping):
            raise ValidationError("Invalid metrics patch", ["patch must be an object"])

        fields, dropped = project_owned_patch(patch, owner)
        if dropped:
            logger.info(f"[METRICS] {owner.value} patch for {city_id}: dropped unowned fields {dropped}")

        ref = self.metrics_ref(city_id)
        ref.set({"cityId": city_id, **fields, "updatedAt": firestore.SERVER_TIMESTAMP}, merge=True)

        meta_written = False
        if "meta" in patch:
            meta = patch["meta"]
            if meta is None or isinstance(meta, Mapping):
                ref.update({f"meta.{owner.value}": dict(meta) if meta is not None else None})
                meta_written = True
            else:
                logger.warning(f"[METRICS] {owner.value} meta for {city_id} ignored: not an object")

        logger.info(f"[METRICS] {owner.value} updated {city_id}: {sorted(fields)}")
        return {
            "cityId": city_id,
            "owner": owner.value,
            "written": sorted(fields),
            "dropped": dropped,
            "metaWritten": meta_written,
        }

    def get_metrics(self, city_id: str) -> Dict[str, Any]:
        snap = self.metrics_ref(city_id).get()
        return normalize_metrics(city_id, snap.to_dict() if snap.exists else None)


# Global service instance
_metrics_service = None


def get_metrics_service() -> MetricsService:
    """Get or create MetricsService singleton."""
    global _metrics_service
    if _metrics_service is None:
        _metrics_service = MetricsService()
    return _metrics_service
