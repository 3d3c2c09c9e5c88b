"""
Cursor codec for the per-city review stream.

Reviews are ordered by (createdAt desc, id desc); createdAt alone is not
unique. A cursor names the last review a client has seen and the next page
starts strictly after it. Three client forms are accepted:

- ``cursor``: opaque base64url token produced by build_next_cursor()
- ``cursorId`` + ``cursorCreatedAtIso``: the same tuple spelled out
- ``after=<reviewId>``: legacy id-only cursor, resolved by the caller
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from app.core.errors import InvalidCursorError
from app.core.settings import settings
from app.utils.firestore_helpers import to_datetime, to_iso


@dataclass(frozen=True)
class ReviewCursor:
    id: str
    created_at: Optional[datetime] = None

    @property
    def is_legacy(self) -> bool:
        """Id-only cursors need a lookup to recover their createdAt."""
        return self.created_at is None

    def start_after_values(self) -> list:
        # Must be a list: the SDK rewrites the "__name__" slot in place.
        return [self.created_at, self.id]


def encode_cursor(review_id: str, created_at: Any) -> str:
    raw = json.dumps({"id": review_id, "createdAtIso": to_iso(created_at)}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def decode_cursor(token: str) -> ReviewCursor:
    padded = token + "=" * (-len(token) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode()).decode())
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidCursorError("Invalid cursor", ["cursor is not a valid token"])
    if not isinstance(data, dict):
        raise InvalidCursorError("Invalid cursor", ["cursor is not a valid token"])
    return _cursor_from_parts(data.get("id"), data.get("createdAtIso"))


def _review_id(raw: Any) -> str:
    """A cursor id must be usable as a single document id."""
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidCursorError("Invalid cursor", ["cursor id is required"])
    review_id = raw.strip()
    if "/" in review_id or review_id in (".", ".."):
        raise InvalidCursorError("Invalid cursor", [f"{review_id!r} is not a review id"])
    return review_id


def _cursor_from_parts(cursor_id: Any, created_at_iso: Any) -> ReviewCursor:
    review_id = _review_id(cursor_id)
    created_at = to_datetime(created_at_iso) if isinstance(created_at_iso, str) else None
    if created_at is None:
        raise InvalidCursorError("Invalid cursor", ["cursorCreatedAtIso must be an ISO-8601 timestamp"])
    return ReviewCursor(id=review_id, created_at=created_at)


def parse_cursor(
    token: Optional[str] = None,
    cursor_id: Optional[str] = None,
    cursor_created_at_iso: Optional[str] = None,
    after: Optional[str] = None,
) -> Optional[ReviewCursor]:
    """Turn query parameters into a cursor. None means start of the stream."""
    if token and token.strip():
        return decode_cursor(token.strip())

    if cursor_id and cursor_id.strip():
        return _cursor_from_parts(cursor_id, cursor_created_at_iso)

    if after and after.strip():
        return ReviewCursor(id=_review_id(after))

    return None


def build_next_cursor(snapshot) -> Dict[str, Optional[str]]:
    data = snapshot.to_dict() or {}
    created_at = data.get("createdAt")
    return {
        "id": snapshot.id,
        "createdAtIso": to_iso(created_at),
        "token": encode_cursor(snapshot.id, created_at),
    }


def clamp_page_size(raw: Optional[int]) -> int:
    if raw is None:
        return settings.REVIEWS_DEFAULT_PAGE_SIZE
    return max(1, min(int(raw), settings.REVIEWS_MAX_PAGE_SIZE))
