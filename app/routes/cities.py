"""
City routes - directory listing, city pages, and the per-city review stream.

Caller identity comes from the X-User-ID header, set by the auth layer in
front of this service. Domain errors propagate to the handlers in app.main,
which render the {"error": {...}} envelope.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Header, Query, Response, status

from app.core.errors import CityNotFoundError
from app.services.city_service import get_city_service, normalize_city_id
from app.services.review_service import get_review_service
from app.utils.firestore_helpers import to_iso
from app.utils.pagination import parse_cursor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cities", tags=["Cities"])


@router.get("")
def list_cities(
    limit: int = Query(50, ge=1, le=100, description="Maximum number of cities"),
    q: Optional[str] = Query(None, description="Search over name, state and slug"),
    sort: str = Query("name_asc", description="name_asc | livability_desc | safety_desc | rent_asc | rent_desc | reviews_desc"),
):
    return get_city_service().list_cities(limit=limit, q=q, sort=sort)


@router.get("/{slug}")
def get_city(slug: str):
    city_id = normalize_city_id(slug)
    city = get_city_service().get_city(city_id)
    if city is None:
        raise CityNotFoundError(city_id)

    data = city["data"]
    return {
        "city": {
            **{k: v for k, v in data.items() if k not in ("createdAt", "updatedAt")},
            "id": city["id"],
            "createdAtIso": to_iso(data.get("createdAt")),
            "updatedAtIso": to_iso(data.get("updatedAt")),
        }
    }


@router.get("/{slug}/details")
def get_city_details(slug: str):
    """
    City page payload: card, review aggregate with averages, objective
    metrics, cached livability and a first page of review previews.
    """
    return get_city_service().get_city_details(slug)


@router.post("/{slug}/reviews")
def upsert_review(
    slug: str,
    response: Response,
    payload: Any = Body(...),
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="Verified caller id"),
):
    """
    Create or replace the caller's review of a city.

    201 on create, 200 on update. Aggregates and livability are updated in
    the same transaction as the review.
    """
    result = get_review_service().upsert_review(normalize_city_id(slug), user_id, payload)
    response.status_code = status.HTTP_201_CREATED if result["created"] else status.HTTP_200_OK
    return result


@router.get("/{slug}/reviews")
def list_reviews(
    slug: str,
    page_size: Optional[int] = Query(None, alias="pageSize", ge=1, description="Reviews per page"),
    cursor: Optional[str] = Query(None, description="Opaque token from nextCursor.token"),
    cursor_id: Optional[str] = Query(None, alias="cursorId"),
    cursor_created_at_iso: Optional[str] = Query(None, alias="cursorCreatedAtIso"),
    after: Optional[str] = Query(None, description="Legacy: id of the last review seen"),
):
    """Newest reviews first. Follow nextCursor until it is null."""
    parsed = parse_cursor(cursor, cursor_id, cursor_created_at_iso, after)
    return get_review_service().list_reviews(normalize_city_id(slug), page_size=page_size, cursor=parsed)


@router.get("/{slug}/reviews/me")
def get_my_review(
    slug: str,
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    return get_review_service().get_my_review(normalize_city_id(slug), user_id)


@router.delete("/{slug}/reviews/me")
def delete_my_review(
    slug: str,
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    return get_review_service().delete_review(normalize_city_id(slug), user_id)


@router.get("/{slug}/reviews/{review_id}")
def get_review(slug: str, review_id: str):
    return {"review": get_review_service().get_review(normalize_city_id(slug), review_id)}
