"""
Applications Service Layer

Business logic for identity verification applications.

Every mutating operation runs inside one unit of work with the same shape:

    lock -> re-read current status -> authorize -> validate transition
         -> mutate -> write audit entry -> commit

The status is always taken from the row read under the lock, never from an
earlier read, so two concurrent decisions on the same PENDING application
cannot both succeed. Any failure rolls back the mutation together with its
audit entry.

Storage errors (SQLAlchemyError) are logged and surfaced as
StorageFailureError. No operation retries internally.
"""

import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from idv.core.auth import Principal

from . import locking, repository
from .exceptions import (
    ApplicationNotFoundError,
    ApplicationServiceError,
    DuplicateIdentityError,
    ForbiddenError,
    IllegalTransitionError,
    InvalidIdentityFormatError,
    NoEffectiveChangeError,
    StorageFailureError,
    ValidationError,
)
from .models import Application, ApplicationStatus, AuditLogEntry
from .schemas import ApplicationCreate, ApplicationPatch
from .transitions import (
    ApplicationAction,
    allowed_actions,
    authorize_actor,
    authorize_ownership,
    require_remarks,
    resolve_transition,
)
from .validators import validate_identity_number, validate_phone_number

logger = logging.getLogger(__name__)

# Constants
ACTIVE_ID_NUMBER_INDEX = "uq_applications_active_id_number"
MAX_PAGE_SIZE = 100

SUBMIT_REMARKS = "Customer submitted online"
RESUBMIT_REMARKS = "Customer resubmitted after edit"
CANCEL_REMARKS = "Customer cancelled"

# Patch fields compared against the stored record
PATCHABLE_FIELDS = (
    "name",
    "gender",
    "id_type",
    "id_number",
    "phone_number",
    "address",
    "id_front_photo_url",
    "id_back_photo_url",
)

VERDICTS = frozenset({ApplicationAction.APPROVE, ApplicationAction.REJECT})


@dataclass
class ApplicationDetail:
    """An application with its audit trail, newest entry first."""

    application: Application
    history: list[AuditLogEntry]
    allowed_actions: list[ApplicationAction] = field(default_factory=list)


# ============================================
# Unit of Work
# ============================================


def _is_active_id_number_conflict(error: IntegrityError) -> bool:
    return ACTIVE_ID_NUMBER_INDEX in str(error.orig)


async def _rollback(db: AsyncSession, operation: str) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError as e:
        logger.error(f"Rollback failed during {operation}: {e}")


@asynccontextmanager
async def _unit_of_work(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """
    Run the body as one transaction.

    Commits when the body completes, rolls back on any exception. A
    duplicate-identity index violation becomes DuplicateIdentityError; any
    other SQLAlchemyError is logged and becomes StorageFailureError.
    """
    try:
        yield
        await db.commit()
    except ApplicationServiceError:
        await _rollback(db, operation)
        raise
    except IntegrityError as e:
        await _rollback(db, operation)
        if _is_active_id_number_conflict(e):
            logger.info(f"Duplicate identity number rejected by index during {operation}")
            raise DuplicateIdentityError() from e
        logger.exception(f"Integrity error during {operation}")
        raise StorageFailureError() from e
    except SQLAlchemyError as e:
        await _rollback(db, operation)
        logger.exception(f"Storage failure during {operation}")
        raise StorageFailureError() from e
    except Exception:
        await _rollback(db, operation)
        raise


@asynccontextmanager
async def _read_only(operation: str) -> AsyncIterator[None]:
    """Translate storage errors on read paths."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception(f"Storage failure during {operation}")
        raise StorageFailureError() from e


async def _load_locked(db: AsyncSession, application_id: UUID) -> Application:
    application = await locking.lock_application(db, application_id)
    if application is None:
        logger.warning(f"Application not found: {application_id}")
        raise ApplicationNotFoundError(application_id)
    return application


# ============================================
# Resubmission Diffing
# ============================================


def _normalize(field_name: str, value: Any) -> Any:
    if value is None or isinstance(value, Enum):
        return value
    if field_name in ("id_front_photo_url", "id_back_photo_url"):
        return str(value)
    if field_name == "id_number":
        return str(value).strip().upper()
    if isinstance(value, str):
        return value.strip()
    return value


def compute_changes(application: Application, patch: ApplicationPatch) -> dict[str, Any]:
    """
    Diff a patch against the stored record.

    Fields the caller left out (or sent as null) are ignored. Returns only
    the fields whose normalized value differs from what is stored.
    """
    provided = patch.model_dump(exclude_unset=True, exclude_none=True)

    changes: dict[str, Any] = {}
    for field_name in PATCHABLE_FIELDS:
        if field_name not in provided:
            continue
        new_value = _normalize(field_name, provided[field_name])
        if new_value != _normalize(field_name, getattr(application, field_name)):
            changes[field_name] = new_value

    return changes


# ============================================
# Mutating Operations
# ============================================


async def submit_application(
    db: AsyncSession,
    principal: Principal,
    data: ApplicationCreate,
) -> Application:
    """
    Submit a new application.

    Flow:
    1. Role gate (customer or anonymous)
    2. Validate identity number format against the document type
    3. Reject if a non-cancelled application already holds the number
    4. Insert with status PENDING and write the SUBMIT audit entry

    Args:
        db: Database session
        principal: Submitting principal (owner is None for anonymous)
        data: Validated application fields

    Returns:
        The created application

    Raises:
        ForbiddenError: If the principal's role may not submit
        InvalidIdentityFormatError: If the identity number is malformed
        DuplicateIdentityError: If the identity number is already active
        StorageFailureError: If the database fails
    """
    authorize_actor(ApplicationAction.SUBMIT, principal)
    transition = resolve_transition(None, ApplicationAction.SUBMIT)
    id_number = validate_identity_number(data.id_type, data.id_number)

    async with _unit_of_work(db, "submit"):
        existing = await repository.get_active_by_id_number(db, id_number)
        if existing:
            logger.info(f"Duplicate submission blocked: active application {existing.id}")
            raise DuplicateIdentityError()

        application = await repository.create(
            db,
            owner_id=principal.id,
            name=data.name.strip(),
            gender=data.gender,
            id_type=data.id_type,
            id_number=id_number,
            phone_number=data.phone_number,
            address=data.address.strip(),
            id_front_photo_url=str(data.id_front_photo_url),
            id_back_photo_url=str(data.id_back_photo_url),
            status=transition.to_status,
        )
        await repository.add_audit_entry(
            db,
            application.id,
            principal.audit_actor,
            transition.audit_action,
            SUBMIT_REMARKS,
        )

    logger.info(f"Application {application.id} submitted by {principal}")
    return application


async def resubmit_application(
    db: AsyncSession,
    application_id: UUID,
    principal: Principal,
    patch: ApplicationPatch,
) -> Application:
    """
    Resubmit a rejected application with edited fields.

    Only fields that actually differ are written. Changing the identity
    number or document type re-validates the number and re-checks it for
    duplicates (ignoring this application). Status resets to PENDING and
    reviewer comments are cleared.

    Raises:
        ForbiddenError: If the principal is not the owning customer
        ApplicationNotFoundError: If the application does not exist
        IllegalTransitionError: If the application is not REJECTED
        NoEffectiveChangeError: If the patch changes nothing
        InvalidIdentityFormatError: If a changed identity number is malformed
        DuplicateIdentityError: If a changed identity number is already active
        StorageFailureError: If the database fails
    """
    authorize_actor(ApplicationAction.RESUBMIT, principal)

    async with _unit_of_work(db, "resubmit"):
        application = await _load_locked(db, application_id)
        authorize_ownership(principal, application)
        transition = resolve_transition(application.status, ApplicationAction.RESUBMIT)

        changes = compute_changes(application, patch)
        if not changes:
            raise NoEffectiveChangeError()

        if "id_type" in changes or "id_number" in changes:
            id_type = changes.get("id_type", application.id_type)
            id_number = validate_identity_number(
                id_type, changes.get("id_number", application.id_number)
            )
            if id_number != application.id_number:
                changes["id_number"] = id_number
                existing = await repository.get_active_by_id_number(
                    db, id_number, exclude_id=application.id
                )
                if existing:
                    raise DuplicateIdentityError()

        changed_fields = sorted(changes)
        changes["status"] = transition.to_status
        changes["comments"] = None

        application = await repository.update(db, application, changes)
        await repository.add_audit_entry(
            db,
            application.id,
            principal.audit_actor,
            transition.audit_action,
            RESUBMIT_REMARKS,
        )

    logger.info(f"Application {application_id} resubmitted by {principal}: changed {changed_fields}")
    return application


async def cancel_application(
    db: AsyncSession,
    application_id: UUID,
    principal: Principal,
) -> Application:
    """
    Cancel a pending application. Cancellation is terminal and frees the
    identity number for a new submission.

    Raises:
        ForbiddenError: If the principal is not the owning customer
        ApplicationNotFoundError: If the application does not exist
        IllegalTransitionError: If the application is not PENDING
        StorageFailureError: If the database fails
    """
    authorize_actor(ApplicationAction.CANCEL, principal)

    async with _unit_of_work(db, "cancel"):
        application = await _load_locked(db, application_id)
        authorize_ownership(principal, application)
        transition = resolve_transition(application.status, ApplicationAction.CANCEL)

        application = await repository.update(db, application, {"status": transition.to_status})
        await repository.add_audit_entry(
            db,
            application.id,
            principal.audit_actor,
            transition.audit_action,
            CANCEL_REMARKS,
        )

    logger.info(f"Application {application_id} cancelled by {principal}")
    return application


async def decide_application(
    db: AsyncSession,
    application_id: UUID,
    principal: Principal,
    verdict: ApplicationAction,
    remarks: str | None = None,
) -> Application:
    """
    Approve or reject a pending application.

    Remarks are stored as the reviewer comments and on the audit entry.
    Rejection requires non-empty remarks; this is checked before the
    application is even loaded.

    Args:
        db: Database session
        application_id: UUID of the application
        principal: Reviewing auditor or admin
        verdict: ApplicationAction.APPROVE or ApplicationAction.REJECT
        remarks: Reviewer remarks

    Returns:
        The updated application

    Raises:
        ValidationError: If the verdict is unknown or rejection remarks are blank
        ForbiddenError: If the principal is not an auditor or admin
        ApplicationNotFoundError: If the application does not exist
        IllegalTransitionError: If the application is not PENDING
        StorageFailureError: If the database fails
    """
    if verdict not in VERDICTS:
        raise ValidationError(f"Unknown verdict: {verdict}")

    # Reviews only ever start from PENDING
    remarks = require_remarks(resolve_transition(ApplicationStatus.PENDING, verdict), remarks)
    authorize_actor(verdict, principal)

    async with _unit_of_work(db, verdict.value.lower()):
        application = await _load_locked(db, application_id)
        transition = resolve_transition(application.status, verdict)

        application = await repository.update(
            db,
            application,
            {"status": transition.to_status, "comments": remarks},
        )
        await repository.add_audit_entry(
            db,
            application.id,
            principal.audit_actor,
            transition.audit_action,
            remarks,
        )

    logger.info(f"Application {application_id} {transition.to_status.value} by {principal}")
    return application


# ============================================
# Read-only Operations
# ============================================


async def get_application_detail(
    db: AsyncSession,
    application_id: UUID,
    principal: Principal | None = None,
) -> ApplicationDetail:
    """
    Get an application with its audit history (newest first).

    Reviewers may view any application; other principals only their own.
    Pass ``principal=None`` for internal callers that skip the check.

    Raises:
        ApplicationNotFoundError: If the application does not exist
        ForbiddenError: If a customer asks for someone else's application
    """
    async with _read_only("get detail"):
        application = await repository.get_by_id(db, application_id)
        if not application:
            logger.warning(f"Application not found: {application_id}")
            raise ApplicationNotFoundError(application_id)

        if principal is not None and not principal.is_reviewer:
            authorize_ownership(principal, application)

        history = await repository.get_audit_history(db, application_id)

    actions = allowed_actions(application.status)
    if principal is not None and not principal.is_reviewer:
        actions = [a for a in actions if a in (ApplicationAction.RESUBMIT, ApplicationAction.CANCEL)]
    elif principal is not None:
        actions = [a for a in actions if a in VERDICTS]

    return ApplicationDetail(application=application, history=history, allowed_actions=actions)


async def list_my_applications(db: AsyncSession, principal: Principal) -> list[Application]:
    """Get the calling customer's applications, newest first."""
    if principal.id is None:
        raise ForbiddenError("Sign in to view your applications.")

    async with _read_only("list own applications"):
        return await repository.list_by_owner(db, principal.id)


async def lookup_application_status(
    db: AsyncSession,
    id_number: str,
    phone_number: str,
) -> Application:
    """
    Public status lookup by identity number and phone number.

    Returns the most recent matching application.

    Raises:
        ApplicationNotFoundError: If nothing matches the pair
    """
    id_number = id_number.strip().upper()
    phone_number = validate_phone_number(phone_number)

    async with _read_only("status lookup"):
        application = await repository.get_latest_by_credentials(db, id_number, phone_number)

    if not application:
        # Same error whether the number or the phone is wrong
        raise ApplicationNotFoundError()

    return application


async def list_applications(
    db: AsyncSession,
    *,
    name: str | None = None,
    id_number: str | None = None,
    status: ApplicationStatus | None = None,
    page: int = 1,
    page_size: int = 10,
) -> dict:
    """
    Get a paginated, filtered list of applications for the auditor view.

    Returns:
        Dict with applications, total, page, page_size and total_pages
    """
    page = max(1, page)
    page_size = min(max(1, page_size), MAX_PAGE_SIZE)
    if id_number:
        id_number = id_number.strip().upper()

    logger.info(
        f"Listing applications: name={name}, status={status}, page={page}, page_size={page_size}"
    )

    async with _read_only("list applications"):
        applications, total = await repository.get_applications_for_audit(
            db,
            name=name,
            id_number=id_number,
            status=status,
            skip=(page - 1) * page_size,
            limit=page_size,
        )

    return {
        "applications": applications,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if total else 0,
    }


__all__ = [
    "ApplicationDetail",
    "ApplicationNotFoundError",
    "ApplicationServiceError",
    "DuplicateIdentityError",
    "ForbiddenError",
    "IllegalTransitionError",
    "InvalidIdentityFormatError",
    "NoEffectiveChangeError",
    "StorageFailureError",
    "ValidationError",
    "cancel_application",
    "compute_changes",
    "decide_application",
    "get_application_detail",
    "list_applications",
    "list_my_applications",
    "lookup_application_status",
    "resubmit_application",
    "submit_application",
]
