"""
Security Utilities

JWT decoding for bearer tokens issued by the login service. Token issuance
and password hashing live outside this API.
"""

import logging
from typing import Any

import jwt

from idv.core.config import settings

logger = logging.getLogger(__name__)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Verify a JWT signature and expiry and return its claims.

    Returns:
        The claims dict, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected invalid token: {e}")
        return None
