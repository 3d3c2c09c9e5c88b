"""
City Stats Service - the per-city review aggregate (city_stats) and the
reconciliation pass that rebuilds it from the reviews collection.

STORED SHAPE (one document per city):
    {cityId, count, sums: {safety, cost, traffic, cleanliness, overall},
     livability: {version, score}, revision, updatedAt}

INVARIANT:
    count == number of reviews for the city
    sums[k] == sum of ratings[k] over those reviews

Averages are derived on read and never stored. Every write bumps ``revision``
so the record is explicitly versioned. A write only ever covers one city.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from firebase_admin import firestore

from app.config.collections import METRICS_COLLECTION, REVIEWS_COLLECTION, STATS_COLLECTION
from app.config.firebase import get_db
from app.services.livability import compute_livability, uncomputed_livability
from app.services.metrics_service import normalize_metrics
from app.utils.firestore_helpers import run_transaction, to_iso, where_filter
from app.utils.ratings import (
    add_ratings,
    assert_sums_non_negative,
    compute_averages,
    normalize_for_aggregation,
    zero_ratings,
)

logger = logging.getLogger(__name__)


def _count_of(data: Mapping[str, Any]) -> int:
    value = data.get("count")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


def _revision_of(data: Mapping[str, Any]) -> int:
    value = data.get("revision")
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def fold_delta(
    city_id: str,
    prev: Optional[Mapping[str, Any]],
    delta_count: int,
    delta_ratings: Mapping[str, float],
) -> Tuple[int, Dict[str, float]]:
    """
    Apply one review mutation's delta to the previous aggregate.

    Raises:
        AggregateCorruptionError: a sum would go negative
    """
    prev = prev or {}
    next_count = max(0, _count_of(prev) + delta_count)
    next_sums = add_ratings(normalize_for_aggregation(prev.get("sums")), delta_ratings)
    assert_sums_non_negative(city_id, next_sums)
    return next_count, next_sums


def normalize_stats(city_id: str, data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Public view of a city_stats document, with averages derived from count/sums."""
    d = data or {}
    count = _count_of(d)
    sums = normalize_for_aggregation(d.get("sums"))
    livability = d.get("livability")
    if not isinstance(livability, Mapping):
        livability = uncomputed_livability()

    return {
        "cityId": city_id,
        "count": count,
        "sums": sums,
        "averages": compute_averages(count, sums),
        "livability": {"version": livability.get("version"), "score": livability.get("score")},
        "revision": _revision_of(d),
        "updatedAtIso": to_iso(d.get("updatedAt")),
    }


class CityStatsService:
    """Aggregate store for city_stats plus the maintenance passes over it."""

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    def stats_ref(self, city_id: str):
        return self.db.collection(STATS_COLLECTION).document(city_id)

    def metrics_ref(self, city_id: str):
        return self.db.collection(METRICS_COLLECTION).document(city_id)

    def get_stats(self, city_id: str) -> Dict[str, Any]:
        snap = self.stats_ref(city_id).get()
        return normalize_stats(city_id, snap.to_dict() if snap.exists else None)

    def write_stats(
        self,
        transaction,
        city_id: str,
        prev: Optional[Mapping[str, Any]],
        count: int,
        sums: Mapping[str, float],
        metrics: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Merge-write the next aggregate inside ``transaction``.

        Livability is recomputed here from the new count/sums and the metrics
        read in the same transaction, so the cached score always matches the
        aggregate it is stored with.
        """
        livability = compute_livability(compute_averages(count, sums), metrics)
        patch = {
            "cityId": city_id,
            "count": int(count),
            "sums": dict(sums),
            "livability": livability,
            "revision": _revision_of(prev or {}) + 1,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        transaction.set(self.stats_ref(city_id), patch, merge=True)
        return patch

    def read_metrics(self, transaction, city_id: str) -> Dict[str, Any]:
        snap = self.metrics_ref(city_id).get(transaction=transaction)
        return normalize_metrics(city_id, snap.to_dict() if snap.exists else None)

    def recompute_livability(self, city_id: str) -> Dict[str, Any]:
        """
        Re-score a city from its stored aggregate and a fresh metrics read.
        Used after metrics ingestion; count and sums are left untouched.
        """
        stats_ref = self.stats_ref(city_id)

        def _tx(transaction):
            stats_snap = stats_ref.get(transaction=transaction)
            metrics = self.read_metrics(transaction, city_id)

            prev = stats_snap.to_dict() if stats_snap.exists else {}
            count = _count_of(prev)
            sums = normalize_for_aggregation(prev.get("sums"))
            livability = compute_livability(compute_averages(count, sums), metrics)

            transaction.set(
                stats_ref,
                {
                    "cityId": city_id,
                    "livability": livability,
                    "revision": _revision_of(prev) + 1,
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                },
                merge=True,
            )
            return livability

        livability = run_transaction(self.db, _tx, label=f"livability:{city_id}")
        logger.info(f"[STATS] livability recomputed for {city_id}: {livability}")
        return livability

    def recompute_from_reviews(self, city_id: str) -> Dict[str, Any]:
        """
        Reconciliation pass: rebuild count and sums from every review of the
        city, then re-score with fresh metrics.

        This is the ground truth incremental maintenance must agree with. The
        scan, metrics read and write share one transaction, so a concurrent
        review mutation either lands before the scan or retries after it.

        Raises:
            AggregateCorruptionError: stored ratings fold to a negative sum
        """
        stats_ref = self.stats_ref(city_id)
        query = where_filter(self.db.collection(REVIEWS_COLLECTION), "cityId", "==", city_id)

        def _tx(transaction):
            count = 0
            sums = zero_ratings()
            for doc in query.stream(transaction=transaction):
                sums = add_ratings(sums, normalize_for_aggregation((doc.to_dict() or {}).get("ratings")))
                count += 1

            assert_sums_non_negative(city_id, sums)

            stats_snap = stats_ref.get(transaction=transaction)
            metrics = self.read_metrics(transaction, city_id)
            prev = stats_snap.to_dict() if stats_snap.exists else None
            return self.write_stats(transaction, city_id, prev, count, sums, metrics)

        try:
            patch = run_transaction(self.db, _tx, label=f"reconcile:{city_id}")
        except Exception as e:
            logger.error(f"[STATS] reconciliation failed for {city_id}: {e}", exc_info=True)
            raise

        logger.info(f"[STATS] reconciled {city_id}: count={patch['count']} livability={patch['livability']}")
        return {
            "cityId": city_id,
            "count": patch["count"],
            "sums": patch["sums"],
            "livability": patch["livability"],
            "revision": patch["revision"],
        }


# Global service instance
_city_stats_service = None


def get_city_stats_service() -> CityStatsService:
    """Get or create CityStatsService singleton."""
    global _city_stats_service
    if _city_stats_service is None:
        _city_stats_service = CityStatsService()
    return _city_stats_service
