"""
Authentication and Authorization Module

Provides principal-resolving dependencies for FastAPI endpoints.
Bearer tokens are issued by the login service; this module only validates
them and turns their claims into a role-bearing ``Principal``.

Roles:
- customer: may submit, resubmit and cancel their own applications
- auditor / admin: may list, view and decide any application
- anonymous: unauthenticated submitter (no owner recorded)
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from idv.core.security import decode_token

logger = logging.getLogger(__name__)

security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)
optional_security = HTTPBearer(auto_error=False)

# Audit actor recorded for anonymous and system-initiated actions
SYSTEM_ACTOR = "system"


class PrincipalRole(str, enum.Enum):
    """Roles a caller can act under."""

    CUSTOMER = "customer"
    AUDITOR = "auditor"
    ADMIN = "admin"
    ANONYMOUS = "anonymous"


REVIEWER_ROLES = frozenset({PrincipalRole.AUDITOR, PrincipalRole.ADMIN})


@dataclass(frozen=True)
class Principal:
    """
    The authenticated entity performing an operation.

    Attributes:
        id: User id from the token (None for anonymous callers)
        role: Role the caller acts under
    """

    id: UUID | None
    role: PrincipalRole

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES

    @property
    def audit_actor(self) -> str:
        """Identity written to the audit log for this principal."""
        return str(self.id) if self.id is not None else SYSTEM_ACTOR

    def __str__(self) -> str:
        return f"Principal(id={self.id}, role={self.role.value})"


ANONYMOUS = Principal(id=None, role=PrincipalRole.ANONYMOUS)


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"success": False, "error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def principal_from_claims(payload: dict[str, Any]) -> Principal:
    """
    Build a Principal from decoded JWT claims.

    Accepts the user id under ``sub`` or the legacy ``user_id`` claim.

    Raises:
        ValueError: If the id or role claim is missing or malformed
    """
    raw_id = payload.get("sub") or payload.get("user_id")
    if raw_id is None:
        raise ValueError("Missing 'sub' claim in token")

    role = PrincipalRole(payload.get("role", ""))
    if role == PrincipalRole.ANONYMOUS:
        raise ValueError("Tokens cannot carry the anonymous role")

    return Principal(id=UUID(str(raw_id)), role=role)


def _validate_token(token: str) -> Principal:
    payload = decode_token(token)

    if payload is None:
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    try:
        return principal_from_claims(payload)
    except ValueError as e:
        logger.warning(f"Invalid token claims: {e}")
        raise _unauthorized(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """FastAPI dependency: the authenticated principal (token required)."""
    principal = _validate_token(credentials.credentials)
    logger.debug(f"Authenticated {principal}")
    return principal


async def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
) -> Principal:
    """
    FastAPI dependency: the authenticated principal, or ANONYMOUS without a token.

    A token that is present but invalid is still rejected with 401.
    """
    if not credentials:
        return ANONYMOUS
    return _validate_token(credentials.credentials)


async def get_current_reviewer(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """FastAPI dependency: an authenticated auditor or admin."""
    if not principal.is_reviewer:
        logger.warning(f"Access denied: {principal} is not an auditor or admin")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "success": False,
                "error": "REVIEWER_ACCESS_REQUIRED",
                "message": "Auditor or admin access is required for this endpoint.",
            },
        )
    return principal


__all__ = [
    "ANONYMOUS",
    "SYSTEM_ACTOR",
    "Principal",
    "PrincipalRole",
    "get_current_principal",
    "get_current_reviewer",
    "get_optional_principal",
    "principal_from_claims",
]
