"""
Caller-scoped routes.
"""

from typing import Optional

from fastapi import APIRouter, Header, Query

from app.services.review_service import get_review_service

router = APIRouter(prefix="/me", tags=["Me"])


@router.get("/reviews")
def list_my_reviews(
    limit: int = Query(50, ge=1, le=100, description="Maximum number of reviews"),
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="Verified caller id"),
):
    """The caller's reviews across all cities, most recently updated first."""
    return get_review_service().list_user_reviews(user_id, limit=limit)
