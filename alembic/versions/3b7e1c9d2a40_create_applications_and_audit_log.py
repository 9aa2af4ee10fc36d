"""create applications and audit_log tables

Revision ID: 3b7e1c9d2a40
Revises:
Create Date: 2026-10-17 09:00:00.000000

Creates the identity verification tables:
1. applications - one row per submission, with its review status
2. audit_log - append-only trail of every action (FK ON DELETE RESTRICT)

The unique partial index on applications.id_number allows a number to be
reused only after every earlier application holding it was cancelled. It is
the backstop for concurrent submissions that both pass the service check.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


gender = postgresql.ENUM("男", "女", name="gender", create_type=False)
identity_document_type = postgresql.ENUM(
    "居民身份证", "港澳台居民居住证", name="identity_document_type", create_type=False
)
application_status = postgresql.ENUM(
    "PENDING", "APPROVED", "REJECTED", "CANCELLED", name="application_status", create_type=False
)
audit_action = postgresql.ENUM(
    "SUBMIT", "RESUBMIT", "CANCEL", "APPROVED", "REJECTED", name="audit_action", create_type=False
)


def upgrade() -> None:
    """Create enums, tables and indexes."""
    bind = op.get_bind()
    for enum_type in (gender, identity_document_type, application_status, audit_action):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("gender", gender, nullable=False),
        sa.Column("id_type", identity_document_type, nullable=False),
        sa.Column("id_number", sa.String(length=18), nullable=False),
        sa.Column("phone_number", sa.String(length=11), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("id_front_photo_url", sa.String(length=1024), nullable=False),
        sa.Column("id_back_photo_url", sa.String(length=1024), nullable=False),
        sa.Column(
            "status",
            application_status,
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index("ix_applications_owner_id", "applications", ["owner_id"])
    op.create_index(
        "ix_applications_id_number_phone", "applications", ["id_number", "phone_number"]
    )

    # One live application per identity number
    op.execute(
        """
        CREATE UNIQUE INDEX uq_applications_active_id_number
        ON applications (id_number)
        WHERE status <> 'CANCELLED'
        """
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("applications.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_audit_log_application_id", "audit_log", ["application_id"])


def downgrade() -> None:
    """Drop tables, indexes and enums."""
    op.drop_index("ix_audit_log_application_id", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("uq_applications_active_id_number", table_name="applications")
    op.drop_index("ix_applications_id_number_phone", table_name="applications")
    op.drop_index("ix_applications_owner_id", table_name="applications")
    op.drop_index("ix_applications_status", table_name="applications")
    op.drop_table("applications")

    bind = op.get_bind()
    for enum_type in (audit_action, application_status, identity_document_type, gender):
        enum_type.drop(bind, checkfirst=True)
