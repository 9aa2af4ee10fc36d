"""
Applications Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field

# Re-use enums from models (they work with Pydantic too!)
from .models import ApplicationStatus, AuditAction, Gender, IdentityDocumentType
from .transitions import ApplicationAction
from .validators import PHONE_NUMBER_PATTERN

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """Envelope shared by every successful response."""

    success: bool = True
    message: str
    data: DataT | None = None


class ErrorResponse(BaseModel):
    """Envelope for failed requests."""

    success: bool = False
    error: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable explanation")


# ============================================
# Request Schemas
# ============================================


class ApplicationCreate(BaseModel):
    """Request body for POST /applications."""

    name: str = Field(..., min_length=2, max_length=50)
    gender: Gender
    id_type: IdentityDocumentType
    id_number: str = Field(..., min_length=1, max_length=18)
    phone_number: str = Field(..., pattern=PHONE_NUMBER_PATTERN.pattern)
    address: str = Field(..., min_length=5, max_length=255)
    id_front_photo_url: AnyHttpUrl
    id_back_photo_url: AnyHttpUrl

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "张三",
                "gender": "男",
                "id_type": "居民身份证",
                "id_number": "11010519900101001X",
                "phone_number": "13800138000",
                "address": "北京市朝阳区建国路88号",
                "id_front_photo_url": "https://cdn.example.com/ids/front.jpg",
                "id_back_photo_url": "https://cdn.example.com/ids/back.jpg",
            }
        }
    )


class ApplicationPatch(BaseModel):
    """
    Request body for PATCH /applications/{id} (resubmission).

    Every field is optional; only fields that differ from the stored record
    are applied.
    """

    name: str | None = Field(None, min_length=2, max_length=50)
    gender: Gender | None = None
    id_type: IdentityDocumentType | None = None
    id_number: str | None = Field(None, min_length=1, max_length=18)
    phone_number: str | None = Field(None, pattern=PHONE_NUMBER_PATTERN.pattern)
    address: str | None = Field(None, min_length=5, max_length=255)
    id_front_photo_url: AnyHttpUrl | None = None
    id_back_photo_url: AnyHttpUrl | None = None


class DecisionRequest(BaseModel):
    """Request body for approving or rejecting an application."""

    remarks: str | None = Field(
        None,
        max_length=1000,
        description="Reviewer remarks. Required when rejecting.",
        json_schema_extra={"example": "Photo unreadable, please upload a clearer image."},
    )


class StatusLookupRequest(BaseModel):
    """Request body for the public status lookup."""

    id_number: str = Field(..., min_length=1, max_length=18)
    phone_number: str = Field(..., pattern=PHONE_NUMBER_PATTERN.pattern)


# ============================================
# Response Schemas
# ============================================


class ApplicationResponse(BaseModel):
    """Full application record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID | None = None
    name: str
    gender: Gender
    id_type: IdentityDocumentType
    id_number: str
    phone_number: str
    address: str
    id_front_photo_url: str
    id_back_photo_url: str
    status: ApplicationStatus
    comments: str | None = None
    created_at: datetime
    updated_at: datetime


class ApplicationStatusResponse(BaseModel):
    """Public status lookup result. Leaves out personal details."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: ApplicationStatus
    comments: str | None = None
    created_at: datetime
    updated_at: datetime


class AuditLogEntryResponse(BaseModel):
    """One audit trail entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    actor: str = Field(..., description="User id, or 'system' for anonymous actions")
    action: AuditAction
    remarks: str | None = None
    created_at: datetime


class ApplicationDetailResponse(BaseModel):
    """Application with its audit trail (newest first)."""

    model_config = ConfigDict(from_attributes=True)

    application: ApplicationResponse
    history: list[AuditLogEntryResponse]
    allowed_actions: list[ApplicationAction] = Field(
        default_factory=list,
        description="Actions legal from the current status",
    )


class ApplicationListResponse(BaseModel):
    """Paginated list of applications for the auditor view."""

    applications: list[ApplicationResponse]
    total: int = Field(..., ge=0, description="Total number of applications matching filters")
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1, le=100)
    total_pages: int = Field(..., ge=0)
