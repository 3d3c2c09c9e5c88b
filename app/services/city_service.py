"""
City Service - city cards for the directory and the city detail page.

Cities are read-mostly documents keyed by slug. Cards join each city with its
cached aggregate (city_stats) and objective metrics (city_metrics); nothing
here writes.
"""

import logging
from typing import Any, Dict, List, Optional

from app.config.collections import CITIES_COLLECTION, METRICS_COLLECTION, STATS_COLLECTION
from app.config.firebase import get_db
from app.core.errors import CityNotFoundError
from app.services.city_stats_service import normalize_stats
from app.services.metrics_service import normalize_metrics, to_num_or_none
from app.services.review_service import ReviewService
from app.utils.firestore_helpers import to_iso

logger = logging.getLogger(__name__)

MAX_CITIES = 100
DEFAULT_CITIES = 50
DETAILS_PAGE_SIZE = 10
COMMENT_PREVIEW_LEN = 160

# sort key -> (card field, descending)
SORTS = {
    "livability_desc": ("livabilityScore", True),
    "safety_desc": ("safetyScore", True),
    "rent_asc": ("medianRent", False),
    "rent_desc": ("medianRent", True),
    "reviews_desc": ("reviewCount", True),
}
DEFAULT_SORT = "name_asc"


def normalize_city_id(param: Any) -> str:
    return str(param if param is not None else "").strip().lower()


def _sort_nulls_last(cards: List[Dict[str, Any]], field: str, descending: bool) -> List[Dict[str, Any]]:
    def key(card):
        value = to_num_or_none(card.get(field))
        if value is None:
            return (1, 0.0)
        return (0, -value if descending else value)

    return sorted(cards, key=key)


def _comment_preview(comment: Any) -> Optional[str]:
    if not isinstance(comment, str) or not comment:
        return None
    if len(comment) > COMMENT_PREVIEW_LEN:
        return comment[:COMMENT_PREVIEW_LEN] + "…"
    return comment


class CityService:
    """Read paths over cities joined with stats and metrics."""

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    def get_city(self, city_id: str) -> Optional[Dict[str, Any]]:
        snap = self.db.collection(CITIES_COLLECTION).document(normalize_city_id(city_id)).get()
        if not snap.exists:
            return None
        return {"id": snap.id, "data": snap.to_dict() or {}}

    def _fetch_by_id(self, collection: str, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        # get_all does not promise request order, so key the results by id
        if not ids:
            return {}
        refs = [self.db.collection(collection).document(i) for i in ids]
        return {snap.id: (snap.to_dict() or {}) for snap in self.db.get_all(refs) if snap.exists}

    def list_cities(self, limit: Optional[int] = None, q: Optional[str] = None, sort: Optional[str] = None) -> Dict[str, Any]:
        """
        City cards ordered by name, optionally filtered and re-sorted.

        Args:
            limit: Max cities to load (capped at 100)
            q: Case-insensitive substring over name, state and slug
            sort: name_asc | livability_desc | safety_desc | rent_asc | rent_desc | reviews_desc

        Returns:
            {"cities": [...], "meta": {limit, q, sort}}
        """
        safe_limit = max(1, min(int(limit or DEFAULT_CITIES), MAX_CITIES))
        query_q = (q or "").strip().lower()
        sort_key = (sort or DEFAULT_SORT).strip().lower()

        docs = list(self.db.collection(CITIES_COLLECTION).order_by("name").limit(safe_limit).stream())
        ids = [d.id for d in docs]
        stats_by_id = self._fetch_by_id(STATS_COLLECTION, ids)
        metrics_by_id = self._fetch_by_id(METRICS_COLLECTION, ids)

        cards = []
        for doc in docs:
            data = doc.to_dict() or {}
            stats = normalize_stats(doc.id, stats_by_id.get(doc.id))
            metrics = normalize_metrics(doc.id, metrics_by_id.get(doc.id))
            cards.append({
                "id": doc.id,
                "slug": data.get("slug") or doc.id,
                "name": data.get("name"),
                "state": data.get("state"),
                "reviewCount": stats["count"],
                "livabilityScore": stats["livability"]["score"],
                "safetyScore": metrics["safetyScore"],
                "medianRent": metrics["medianRent"],
                "crimeIndexPer100k": metrics["crimeIndexPer100k"],
            })

        if query_q:
            cards = [
                c for c in cards
                if query_q in f"{c['name'] or ''} {c['state'] or ''} {c['slug'] or ''}".lower()
            ]

        if sort_key in SORTS:
            field, descending = SORTS[sort_key]
            cards = _sort_nulls_last(cards, field, descending)
        else:
            cards = sorted(cards, key=lambda c: str(c["name"] or "").lower())

        return {"cities": cards, "meta": {"limit": safe_limit, "q": query_q or None, "sort": sort_key}}

    def get_city_details(self, city_id: str) -> Dict[str, Any]:
        """
        Full city page: card, aggregate, metrics, cached livability and the
        first page of review previews.

        Raises:
            CityNotFoundError: unknown city
        """
        city_id = normalize_city_id(city_id)
        city_snap = self.db.collection(CITIES_COLLECTION).document(city_id).get()
        if not city_snap.exists:
            raise CityNotFoundError(city_id)

        stats_snap = self.db.collection(STATS_COLLECTION).document(city_id).get()
        stats = normalize_stats(city_id, stats_snap.to_dict() if stats_snap.exists else None)

        metrics_snap = self.db.collection(METRICS_COLLECTION).document(city_id).get()
        metrics = normalize_metrics(city_id, metrics_snap.to_dict() if metrics_snap.exists else None)

        page = ReviewService(db=self.db).list_reviews(city_id, page_size=DETAILS_PAGE_SIZE)
        reviews = [
            {
                "id": r["id"],
                "ratings": r["ratings"],
                "commentPreview": _comment_preview(r["comment"]),
                "createdAtIso": r["createdAtIso"],
            }
            for r in page["reviews"]
        ]

        data = city_snap.to_dict() or {}
        highlights = data.get("highlights")
        city = {
            "id": city_snap.id,
            "slug": data.get("slug") or city_snap.id,
            "name": data.get("name"),
            "state": data.get("state"),
            "lat": data.get("lat"),
            "lng": data.get("lng"),
            "tagline": data.get("tagline"),
            "description": data.get("description"),
            "highlights": highlights if isinstance(highlights, list) else [],
            "createdAtIso": to_iso(data.get("createdAt")),
            "updatedAtIso": to_iso(data.get("updatedAt")),
        }

        return {
            "city": city,
            "stats": {"count": stats["count"], "sums": stats["sums"], "averages": stats["averages"]},
            "metrics": metrics,
            "livability": stats["livability"],
            "reviews": reviews,
            "reviewsPage": {"pageSize": page["pageSize"], "nextCursor": page["nextCursor"]},
        }


# Global service instance
_city_service = None


def get_city_service() -> CityService:
    """Get or create CityService singleton."""
    global _city_service
    if _city_service is None:
        _city_service = CityService()
    return _city_service
