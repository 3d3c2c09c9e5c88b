"""
Review Service - the review transaction coordinator and the review read paths.

WRITE PROTOCOL (one city, one user):
1. Resolve the deterministic review id (one review per user per city)
2. In one transaction read: city (existence gate), existing review,
   city_stats, city_metrics
3. delta = new ratings (create) | new - old (update) | -old (delete)
4. Fold the delta into count/sums and refuse negative sums
5. Re-score livability from the new averages and the metrics just read
6. Write the review (or delete it) and city_stats in the same commit

The city_stats document is the serialization point: two writers on the same
city conflict on it and one of them retries. Writers on different cities
never touch the same documents.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from firebase_admin import firestore
from google.cloud.firestore_v1.field_path import FieldPath

from app.config.collections import CITIES_COLLECTION, REVIEWS_COLLECTION
from app.config.firebase import get_db
from app.core.errors import (
    AggregateCorruptionError,
    CityNotFoundError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from app.services.city_stats_service import CityStatsService, fold_delta
from app.utils.firestore_helpers import run_transaction, to_datetime, to_iso, where_filter
from app.utils.pagination import ReviewCursor, build_next_cursor, clamp_page_size
from app.utils.ratings import (
    clean_comment,
    clean_ratings,
    normalize_for_aggregation,
    sub_ratings,
    validate_review_input,
    zero_ratings,
)
from app.utils.security import make_review_id

logger = logging.getLogger(__name__)

MAX_USER_REVIEWS = 100


def _require_user(user_id: Optional[str]) -> str:
    uid = str(user_id or "").strip()
    if not uid:
        raise UnauthenticatedError("Missing or invalid auth")
    return uid


def to_public_review(review_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Review payload for public listings. Never includes userId."""
    return {
        "id": review_id,
        "cityId": data.get("cityId"),
        "ratings": data.get("ratings"),
        "comment": data.get("comment"),
        "createdAtIso": to_iso(data.get("createdAt")),
        "updatedAtIso": to_iso(data.get("updatedAt")),
    }


def to_my_review(review_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Review payload for its author."""
    review = to_public_review(review_id, data)
    review["userId"] = data.get("userId")
    return review


class ReviewService:
    """Transactional review mutations plus paged review reads."""

    def __init__(self, db=None, salt: Optional[str] = None):
        self.db = db if db is not None else get_db()
        self.salt = salt
        self.stats = CityStatsService(db=self.db)

    def review_id_for(self, user_id: str, city_id: str) -> str:
        return make_review_id(user_id, city_id, self.salt)

    def _reviews(self):
        return self.db.collection(REVIEWS_COLLECTION)

    def _require_city(self, transaction, city_id: str) -> None:
        snap = self.db.collection(CITIES_COLLECTION).document(city_id).get(transaction=transaction)
        if not snap.exists:
            raise CityNotFoundError(city_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert_review(self, city_id: str, user_id: Optional[str], payload: Any) -> Dict[str, Any]:
        """
        Create or update the caller's review for a city.

        Args:
            city_id: Normalized city slug
            user_id: Verified caller id
            payload: {"ratings": {...five keys...}, "comment": str | None}

        Returns:
            {"created": bool, "reviewId": str, "review": dict}

        Raises:
            ValidationError: every invalid field, before anything is read
            CityNotFoundError: unknown city
            AggregateCorruptionError: the stored aggregate is already broken
            TransientStoreConflict: retry budget exhausted
        """
        uid = _require_user(user_id)

        errors = validate_review_input(payload)
        if errors:
            raise ValidationError("Invalid review payload", errors)

        ratings = clean_ratings(payload["ratings"])
        comment = clean_comment(payload.get("comment"))

        review_id = self.review_id_for(uid, city_id)
        review_ref = self._reviews().document(review_id)

        def _tx(transaction):
            self._require_city(transaction, city_id)
            review_snap = review_ref.get(transaction=transaction)
            stats_snap = self.stats.stats_ref(city_id).get(transaction=transaction)
            metrics = self.stats.read_metrics(transaction, city_id)

            is_new = not review_snap.exists
            incoming = normalize_for_aggregation(ratings)
            if is_new:
                delta, delta_count = incoming, 1
            else:
                previous = normalize_for_aggregation((review_snap.to_dict() or {}).get("ratings"))
                delta, delta_count = sub_ratings(incoming, previous), 0

            prev_stats = stats_snap.to_dict() if stats_snap.exists else None
            next_count, next_sums = fold_delta(city_id, prev_stats, delta_count, delta)

            review_patch = {
                "userId": uid,
                "cityId": city_id,
                "ratings": ratings,
                "comment": comment,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            }
            if is_new:
                review_patch["createdAt"] = firestore.SERVER_TIMESTAMP
            transaction.set(review_ref, review_patch, merge=True)

            self.stats.write_stats(transaction, city_id, prev_stats, next_count, next_sums, metrics)
            return is_new

        try:
            created = run_transaction(self.db, _tx, label=f"upsert-review:{city_id}")
        except AggregateCorruptionError as e:
            logger.error(f"Failed to upsert review {review_id} for {city_id}: {str(e)}", exc_info=True)
            raise

        logger.info(f"Review {'created' if created else 'updated'}: {review_id} ({city_id})")
        saved = review_ref.get()
        return {
            "created": created,
            "reviewId": review_id,
            "review": to_my_review(saved.id, saved.to_dict() or {}),
        }

    def delete_review(self, city_id: str, user_id: Optional[str]) -> Dict[str, Any]:
        """
        Delete the caller's review for a city and subtract it from the aggregate.

        Raises:
            CityNotFoundError: unknown city
            NotFoundError: the caller has no review for this city
            AggregateCorruptionError: the stored aggregate is already broken
            TransientStoreConflict: retry budget exhausted
        """
        uid = _require_user(user_id)
        review_id = self.review_id_for(uid, city_id)
        review_ref = self._reviews().document(review_id)

        def _tx(transaction):
            self._require_city(transaction, city_id)
            review_snap = review_ref.get(transaction=transaction)
            if not review_snap.exists:
                raise NotFoundError("Review not found")

            stats_snap = self.stats.stats_ref(city_id).get(transaction=transaction)
            metrics = self.stats.read_metrics(transaction, city_id)

            old = normalize_for_aggregation((review_snap.to_dict() or {}).get("ratings"))
            delta = sub_ratings(zero_ratings(), old)

            prev_stats = stats_snap.to_dict() if stats_snap.exists else None
            next_count, next_sums = fold_delta(city_id, prev_stats, -1, delta)

            transaction.delete(review_ref)
            self.stats.write_stats(transaction, city_id, prev_stats, next_count, next_sums, metrics)

        try:
            run_transaction(self.db, _tx, label=f"delete-review:{city_id}")
        except AggregateCorruptionError as e:
            logger.error(f"Failed to delete review {review_id} for {city_id}: {str(e)}", exc_info=True)
            raise

        logger.info(f"Review deleted: {review_id} ({city_id})")
        return {"deleted": True, "reviewId": review_id}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_my_review(self, city_id: str, user_id: Optional[str]) -> Dict[str, Any]:
        uid = _require_user(user_id)
        review_id = self.review_id_for(uid, city_id)
        snap = self._reviews().document(review_id).get()
        if not snap.exists:
            return {"reviewId": review_id, "review": None}
        return {"reviewId": review_id, "review": to_my_review(snap.id, snap.to_dict() or {})}

    def get_review(self, city_id: str, review_id: str) -> Dict[str, Any]:
        snap = self._reviews().document(review_id).get()
        if not snap.exists:
            raise NotFoundError("Review not found")
        data = snap.to_dict() or {}
        if data.get("cityId") != city_id:
            raise NotFoundError("Review not found for this city")
        return to_public_review(snap.id, data)

    def _resolve_cursor(self, city_id: str, cursor: ReviewCursor) -> Optional[ReviewCursor]:
        """
        Look up the (createdAt, id) tuple behind a legacy id-only cursor.

        An id that names no review of this city is ignored and the stream
        starts from the top.
        """
        if not cursor.is_legacy:
            return cursor
        snap = self._reviews().document(cursor.id).get()
        data = snap.to_dict() if snap.exists else None
        created_at = to_datetime((data or {}).get("createdAt"))
        if not data or data.get("cityId") != city_id or created_at is None:
            logger.info(f"Ignoring after={cursor.id} for {city_id}: not a review of this city")
            return None
        return ReviewCursor(id=snap.id, created_at=created_at)

    def list_reviews(
        self,
        city_id: str,
        page_size: Optional[int] = None,
        cursor: Optional[ReviewCursor] = None,
    ) -> Dict[str, Any]:
        """
        One page of a city's reviews in (createdAt desc, id desc) order.

        ``nextCursor`` is None on the last page.
        """
        size = clamp_page_size(page_size)
        query = (
            where_filter(self._reviews(), "cityId", "==", city_id)
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .order_by(FieldPath.document_id(), direction=firestore.Query.DESCENDING)
        )

        if cursor is not None:
            resolved = self._resolve_cursor(city_id, cursor)
            if resolved is not None:
                query = query.start_after(resolved.start_after_values())

        docs = list(query.limit(size + 1).stream())
        has_more = len(docs) > size
        docs = docs[:size]

        return {
            "reviews": [to_public_review(d.id, d.to_dict() or {}) for d in docs],
            "pageSize": size,
            "nextCursor": build_next_cursor(docs[-1]) if has_more else None,
        }

    def list_user_reviews(self, user_id: Optional[str], limit: int = 50) -> Dict[str, Any]:
        uid = _require_user(user_id)
        safe_limit = max(1, min(int(limit or 50), MAX_USER_REVIEWS))

        query = (
            where_filter(self._reviews(), "userId", "==", uid)
            .order_by("updatedAt", direction=firestore.Query.DESCENDING)
            .limit(safe_limit)
        )
        return {"reviews": [to_my_review(d.id, d.to_dict() or {}) for d in query.stream()]}


# Global service instance
_review_service = None


def get_review_service() -> ReviewService:
    """Get or create ReviewService singleton."""
    global _review_service
    if _review_service is None:
        _review_service = ReviewService()
    return _review_service
