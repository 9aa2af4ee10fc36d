"""
Application Service Errors

Every error carries a machine-readable ``error_code`` and the HTTP status the
routers translate it to. All of them are recoverable at the request boundary.
"""

from uuid import UUID

from .models import ApplicationStatus, IdentityDocumentType


class ApplicationServiceError(Exception):
    """Base exception for application service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class ValidationError(ApplicationServiceError):
    """Raised when an input field is malformed or a required value is missing."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
        )


class InvalidIdentityFormatError(ValidationError):
    """Raised when an identity number does not match its document type."""

    def __init__(self, id_type: IdentityDocumentType, message: str):
        self.id_type = id_type
        super().__init__(message=message, error_code="INVALID_IDENTITY_FORMAT")


class DuplicateIdentityError(ApplicationServiceError):
    """Raised when the identity number is already held by a live application."""

    def __init__(self, message: str = "An active application already exists for this identity number."):
        super().__init__(
            message=message,
            error_code="DUPLICATE_IDENTITY",
            status_code=409,
        )


class ApplicationNotFoundError(ApplicationServiceError):
    """Raised when an application is not found."""

    def __init__(self, application_id: UUID | None = None):
        message = (
            f"Application {application_id} not found" if application_id else "Application not found"
        )
        super().__init__(
            message=message,
            error_code="APPLICATION_NOT_FOUND",
            status_code=404,
        )


class ForbiddenError(ApplicationServiceError):
    """Raised when the principal may not act on the application."""

    def __init__(self, message: str = "You do not have permission to perform this action."):
        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            status_code=403,
        )


class IllegalTransitionError(ApplicationServiceError):
    """Raised when an action is not valid for the application's current status."""

    def __init__(self, current_status: ApplicationStatus | None, action: str):
        self.current_status = current_status
        self.action = action
        status_label = current_status.value if current_status else "none"
        super().__init__(
            message=f"Cannot {action.lower()} an application with status '{status_label}'.",
            error_code="ILLEGAL_TRANSITION",
            status_code=409,
        )


class NoEffectiveChangeError(ApplicationServiceError):
    """Raised when a resubmission changes nothing."""

    def __init__(self):
        super().__init__(
            message="Resubmission must change at least one field.",
            error_code="NO_EFFECTIVE_CHANGE",
            status_code=422,
        )


class StorageFailureError(ApplicationServiceError):
    """Raised when persistence is unavailable or a transaction aborts."""

    def __init__(self, message: str = "Storage is temporarily unavailable. Please try again later."):
        super().__init__(
            message=message,
            error_code="STORAGE_FAILURE",
            status_code=503,
        )


__all__ = [
    "ApplicationNotFoundError",
    "ApplicationServiceError",
    "DuplicateIdentityError",
    "ForbiddenError",
    "IllegalTransitionError",
    "InvalidIdentityFormatError",
    "NoEffectiveChangeError",
    "StorageFailureError",
    "ValidationError",
]
