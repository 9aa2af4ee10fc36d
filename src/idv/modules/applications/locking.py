"""
Row Locking

Pessimistic per-application locks for mutating operations. The lock is taken
with ``SELECT ... FOR UPDATE`` inside the caller's transaction and released
by its commit or rollback.
"""

import logging
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from idv.core.config import settings

from .models import Application

logger = logging.getLogger(__name__)


def _dialect_name(db: AsyncSession) -> str | None:
    bind = getattr(db, "bind", None)
    dialect = getattr(bind, "dialect", None)
    return getattr(dialect, "name", None)


async def lock_application(db: AsyncSession, application_id: UUID) -> Application | None:
    """
    Lock an application row for the rest of the transaction and return it.

    ``populate_existing`` makes the returned object reflect the row as read
    under the lock, even if an older copy is already in the session.

    On PostgreSQL the wait is bounded by ``settings.lock_timeout_ms``; a
    timeout raises from the driver like any other storage error.

    Returns:
        The locked application, or None if it does not exist
    """
    if _dialect_name(db) == "postgresql":
        await db.execute(text(f"SET LOCAL lock_timeout = {int(settings.lock_timeout_ms)}"))

    result = await db.execute(
        select(Application)
        .where(Application.id == application_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    application = result.scalar_one_or_none()

    if application is not None:
        logger.debug(f"Locked application {application_id} (status={application.status})")

    return application
