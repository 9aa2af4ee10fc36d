"""
Applications Module

Identity verification applications: submission, resubmission, cancellation
and auditor review, with an append-only audit log.
"""

from idv.modules.applications.admin_router import router as admin_router
from idv.modules.applications.models import (
    Application,
    ApplicationStatus,
    AuditAction,
    AuditLogEntry,
    Gender,
    IdentityDocumentType,
)
from idv.modules.applications.router import router

__all__ = [
    "router",
    "admin_router",
    "Application",
    "ApplicationStatus",
    "AuditAction",
    "AuditLogEntry",
    "Gender",
    "IdentityDocumentType",
]
