"""
Unit tests for applications repository layer.

The repository only stages changes; these tests check it never commits and
that the queries it builds carry the expected filters.
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from idv.core.config import settings
from idv.modules.applications import locking, repository
from idv.modules.applications.models import (
    Application,
    ApplicationStatus,
    AuditAction,
    AuditLogEntry,
)


def _compiled(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def _executed_sql(mock_db, call_index: int = -1) -> str:
    return _compiled(mock_db.execute.call_args_list[call_index].args[0])


class TestWrites:
    """Writes flush but never commit."""

    @pytest.mark.asyncio
    async def test_create_flushes_and_refreshes(self, mock_db):
        application = await repository.create(
            mock_db,
            name="张三",
            id_number="11010519900101001X",
            status=ApplicationStatus.PENDING,
        )

        assert isinstance(application, Application)
        assert application.id_number == "11010519900101001X"
        mock_db.add.assert_called_once_with(application)
        mock_db.flush.assert_awaited_once()
        mock_db.refresh.assert_awaited_once_with(application)
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_applies_changes(self, mock_db, rejected_application):
        result = await repository.update(
            mock_db,
            rejected_application,
            {"status": ApplicationStatus.PENDING, "comments": None},
        )

        assert result.status == ApplicationStatus.PENDING
        assert result.comments is None
        mock_db.flush.assert_awaited_once()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_add_audit_entry(self, mock_db):
        application_id = uuid4()

        entry = await repository.add_audit_entry(
            mock_db, application_id, "system", AuditAction.SUBMIT, "Customer submitted online"
        )

        assert isinstance(entry, AuditLogEntry)
        assert entry.application_id == application_id
        assert entry.actor == "system"
        assert entry.action == AuditAction.SUBMIT
        mock_db.add.assert_called_once_with(entry)
        mock_db.commit.assert_not_awaited()


class TestQueries:
    """Filters carried by read queries."""

    @pytest.mark.asyncio
    async def test_active_lookup_ignores_cancelled(self, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = result

        assert await repository.get_active_by_id_number(mock_db, "11010519900101001X") is None

        sql = _executed_sql(mock_db)
        assert "applications.id_number =" in sql
        assert "applications.status IN" in sql
        assert "applications.id !=" not in sql

    @pytest.mark.asyncio
    async def test_active_lookup_excludes_given_application(self, mock_db):
        mock_db.execute.return_value = MagicMock()

        await repository.get_active_by_id_number(
            mock_db, "11010519900101001X", exclude_id=uuid4()
        )

        assert "applications.id !=" in _executed_sql(mock_db)

    @pytest.mark.asyncio
    async def test_audit_listing_filters_and_counts(self, mock_db, pending_application):
        count_result = MagicMock()
        count_result.scalar.return_value = 1
        rows_result = MagicMock()
        rows_result.scalars.return_value.all.return_value = [pending_application]
        mock_db.execute.side_effect = [count_result, rows_result]

        applications, total = await repository.get_applications_for_audit(
            mock_db, name="张", status=ApplicationStatus.PENDING, skip=10, limit=10
        )

        assert applications == [pending_application]
        assert total == 1
        count_sql = _executed_sql(mock_db, 0)
        assert "count(*)" in count_sql
        assert "ILIKE" in count_sql.upper()
        rows_sql = _executed_sql(mock_db, 1)
        assert "ORDER BY applications.created_at DESC" in rows_sql
        assert "LIMIT" in rows_sql
        assert "OFFSET" in rows_sql

    @pytest.mark.asyncio
    async def test_audit_history_newest_first(self, mock_db):
        rows_result = MagicMock()
        rows_result.scalars.return_value.all.return_value = []
        mock_db.execute.return_value = rows_result

        assert await repository.get_audit_history(mock_db, uuid4()) == []

        sql = _executed_sql(mock_db)
        assert "ORDER BY audit_log.created_at DESC, audit_log.id DESC" in sql


class TestLockApplication:
    """Row lock taken before every mutation."""

    @pytest.mark.asyncio
    async def test_select_for_update_with_fresh_snapshot(self, mock_db, pending_application):
        result = MagicMock()
        result.scalar_one_or_none.return_value = pending_application
        mock_db.execute.return_value = result

        locked = await locking.lock_application(mock_db, pending_application.id)

        assert locked is pending_application
        statement = mock_db.execute.call_args_list[-1].args[0]
        assert "FOR UPDATE" in _compiled(statement)
        assert "applications.id =" in _compiled(statement)
        assert statement.get_execution_options().get("populate_existing") is True

    @pytest.mark.asyncio
    async def test_lock_timeout_on_postgresql(self, mock_db):
        mock_db.bind = MagicMock()
        mock_db.bind.dialect.name = "postgresql"
        mock_db.execute.return_value = MagicMock()

        await locking.lock_application(mock_db, uuid4())

        assert mock_db.execute.await_count == 2
        first = str(mock_db.execute.call_args_list[0].args[0])
        assert first == f"SET LOCAL lock_timeout = {settings.lock_timeout_ms}"
        assert "FOR UPDATE" in _executed_sql(mock_db, 1)

    @pytest.mark.asyncio
    async def test_no_lock_timeout_on_other_dialects(self, mock_db):
        mock_db.bind = MagicMock()
        mock_db.bind.dialect.name = "sqlite"
        mock_db.execute.return_value = MagicMock()

        await locking.lock_application(mock_db, uuid4())

        assert mock_db.execute.await_count == 1
        assert "lock_timeout" not in str(mock_db.execute.call_args.args[0])

    @pytest.mark.asyncio
    async def test_missing_row(self, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = result

        assert await locking.lock_application(mock_db, uuid4()) is None
