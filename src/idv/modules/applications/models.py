"""
Identity Verification Application Models

Database models for identity-verification applications and their audit trail.
An application is created by a customer (or anonymously), reviewed by an
auditor, and every state change is recorded in the append-only audit log.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idv.core.database import Base


class Gender(str, enum.Enum):
    """Applicant gender as printed on the identity document."""

    MALE = "男"
    FEMALE = "女"


class IdentityDocumentType(str, enum.Enum):
    """Supported identity documents."""

    RESIDENT_ID = "居民身份证"
    RESIDENCE_PERMIT = "港澳台居民居住证"


class ApplicationStatus(str, enum.Enum):
    """Status of an identity verification application."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class AuditAction(str, enum.Enum):
    """Actions recorded in the audit log."""

    SUBMIT = "SUBMIT"
    RESUBMIT = "RESUBMIT"
    CANCEL = "CANCEL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# Statuses that hold the identity number. A cancelled application frees it.
ACTIVE_STATUSES = (
    ApplicationStatus.PENDING,
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
)


class Application(Base):
    """
    Identity verification application.

    Stores the applicant's personal details, document number and the URIs of
    the uploaded document photos. Photos themselves live in blob storage.
    """

    __tablename__ = "applications"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Submitting customer (null for anonymous submissions)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    # Applicant details
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    gender: Mapped[Gender] = mapped_column(
        Enum(Gender, name="gender", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    id_type: Mapped[IdentityDocumentType] = mapped_column(
        Enum(
            IdentityDocumentType,
            name="identity_document_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    id_number: Mapped[str] = mapped_column(String(18), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(11), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)

    # Document photos (opaque URIs produced by the upload service)
    id_front_photo_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    id_back_photo_url: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Review state
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    audit_entries: Mapped[list["AuditLogEntry"]] = relationship(
        "AuditLogEntry",
        back_populates="application",
        order_by="desc(AuditLogEntry.created_at)",
        passive_deletes="all",
    )

    __table_args__ = (
        Index("ix_applications_status", "status"),
        Index("ix_applications_owner_id", "owner_id"),
        Index("ix_applications_id_number_phone", "id_number", "phone_number"),
        # One live application per identity number
        Index(
            "uq_applications_active_id_number",
            "id_number",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Application {self.id} status={self.status}>"


class AuditLogEntry(Base):
    """
    Append-only record of one action taken against an application.

    Rows are written in the same transaction as the change they document and
    are never updated or deleted.
    """

    __tablename__ = "audit_log"

    # Auto-increment id gives a stable tie-breaker for ordering
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    application_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("applications.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Principal id, or "system" for anonymous/system-initiated actions
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="audit_action"), nullable=False
    )
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    application: Mapped["Application"] = relationship(
        "Application", back_populates="audit_entries"
    )

    __table_args__ = (Index("ix_audit_log_application_id", "application_id"),)
