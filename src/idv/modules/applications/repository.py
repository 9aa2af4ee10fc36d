"""
Applications Repository

Database operations for applications and the audit log.

Functions here only stage changes (``flush``); committing or rolling back is
the service layer's unit of work, so a mutation and its audit entry always
land in the same transaction.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ACTIVE_STATUSES, Application, ApplicationStatus, AuditAction, AuditLogEntry


async def create(db: AsyncSession, **fields: Any) -> Application:
    """Stage a new application and load its server-generated columns."""
    application = Application(**fields)

    db.add(application)
    await db.flush()
    await db.refresh(application)

    return application


async def get_by_id(db: AsyncSession, id: UUID) -> Application | None:
    """Get application by ID (no lock)."""
    return await db.get(Application, id)


async def get_active_by_id_number(
    db: AsyncSession,
    id_number: str,
    exclude_id: UUID | None = None,
) -> Application | None:
    """
    Get the non-cancelled application holding ``id_number``, if any.

    Args:
        db: Database session
        id_number: Normalized identity number
        exclude_id: Application to ignore (the one being resubmitted)
    """
    query = select(Application).where(
        Application.id_number == id_number,
        Application.status.in_(ACTIVE_STATUSES),
    )
    if exclude_id is not None:
        query = query.where(Application.id != exclude_id)

    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def update(db: AsyncSession, application: Application, changes: dict[str, Any]) -> Application:
    """Apply ``changes`` to a (locked) application and flush."""
    for key, value in changes.items():
        setattr(application, key, value)

    await db.flush()
    await db.refresh(application)

    return application


async def list_by_owner(db: AsyncSession, owner_id: UUID) -> list[Application]:
    """Get a customer's applications, newest first."""
    result = await db.execute(
        select(Application)
        .where(Application.owner_id == owner_id)
        .order_by(Application.created_at.desc())
    )
    return list(result.scalars().all())


async def get_latest_by_credentials(
    db: AsyncSession,
    id_number: str,
    phone_number: str,
) -> Application | None:
    """Get the most recent application matching an identity number and phone number."""
    result = await db.execute(
        select(Application)
        .where(
            Application.id_number == id_number,
            Application.phone_number == phone_number,
        )
        .order_by(Application.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_applications_for_audit(
    db: AsyncSession,
    *,
    name: str | None = None,
    id_number: str | None = None,
    status: ApplicationStatus | None = None,
    skip: int = 0,
    limit: int = 10,
) -> tuple[list[Application], int]:
    """
    Get applications with filters and pagination for the auditor list view.

    Args:
        db: Database session
        name: Substring match on applicant name (optional)
        id_number: Exact identity number (optional)
        status: Filter by application status (optional)
        skip: Number of records to skip for pagination
        limit: Maximum records to return

    Returns:
        Tuple of (list of applications, total count matching filters)
    """
    query = select(Application)

    if name:
        query = query.where(Application.name.ilike(f"%{name}%"))

    if id_number:
        query = query.where(Application.id_number == id_number)

    if status:
        query = query.where(Application.status == status)

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(Application.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    applications = list(result.scalars().all())

    return applications, total


# ============================================
# Audit Log Repository
# ============================================


async def add_audit_entry(
    db: AsyncSession,
    application_id: UUID,
    actor: str,
    action: AuditAction,
    remarks: str | None = None,
) -> AuditLogEntry:
    """
    Stage an audit entry. The only write path to the audit log.
    """
    entry = AuditLogEntry(
        application_id=application_id,
        actor=actor,
        action=action,
        remarks=remarks,
    )

    db.add(entry)
    await db.flush()

    return entry


async def get_audit_history(db: AsyncSession, application_id: UUID) -> list[AuditLogEntry]:
    """Get the audit trail of an application, newest first."""
    result = await db.execute(
        select(AuditLogEntry)
        .where(AuditLogEntry.application_id == application_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
    )
    return list(result.scalars().all())
