"""
Security utilities: salted, content-addressed review identities.
"""

import hashlib
import logging
from typing import Optional

from app.core.errors import ConfigurationError
from app.core.settings import settings

logger = logging.getLogger(__name__)

REVIEW_ID_LENGTH = 32


def require_review_salt(salt: Optional[str] = None) -> str:
    """
    Resolve the identity salt, failing loudly when it is not configured.

    Called once at startup so a missing salt stops the service instead of
    failing request by request.
    """
    value = salt if salt is not None else settings.REVIEW_ID_SALT
    if not value:
        raise ConfigurationError("Missing REVIEW_ID_SALT in env")
    return value


def make_review_id(user_id: str, city_id: str, salt: Optional[str] = None) -> str:
    """
    Deterministic, non-guessable review document id.

    Same user + city always yields the same id, which is what enforces one
    review per user per city. The server-side salt keeps outsiders from
    recomputing a user's review id.

    Args:
        user_id: Verified caller id
        city_id: Normalized city slug
        salt: Override for the configured REVIEW_ID_SALT

    Returns:
        First 32 hex chars of sha256("userId:cityId:salt")
    """
    secret = require_review_salt(salt)
    digest = hashlib.sha256(f"{user_id}:{city_id}:{secret}".encode()).hexdigest()
    return digest[:REVIEW_ID_LENGTH]
