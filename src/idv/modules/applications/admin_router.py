"""
Applications Audit Router

API endpoints for auditors and admins to review identity verification
applications. All endpoints require a Bearer token with the auditor or
admin role.

Endpoints:
- GET /audit/applications - List applications with filters and pagination
- GET /audit/applications/{id} - Application detail with audit history
- POST /audit/applications/{id}/approve - Approve a pending application
- POST /audit/applications/{id}/reject - Reject a pending application (remarks required)

Security:
- Role check via get_current_reviewer (403 for customers)
- Rate limiting on decision endpoints to prevent mass operations
- Every decision is recorded in the audit log with the reviewer's id
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from idv.core.auth import Principal, get_current_reviewer
from idv.core.database import get_db
from idv.core.rate_limit import RateLimitExceeded, check_rate_limit
from idv.modules.applications import service
from idv.modules.applications.models import ApplicationStatus
from idv.modules.applications.schemas import (
    ApiResponse,
    ApplicationDetailResponse,
    ApplicationListResponse,
    ApplicationResponse,
    DecisionRequest,
    ErrorResponse,
)
from idv.modules.applications.service import (
    ApplicationNotFoundError,
    ApplicationServiceError,
    IllegalTransitionError,
)
from idv.modules.applications.transitions import ApplicationAction

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Rate Limiting Configuration
# ============================================

RATE_LIMIT_APPROVE = (30, 60)  # 30 approvals per minute
RATE_LIMIT_REJECT = (30, 60)  # 30 rejections per minute


async def _check_reviewer_rate_limit(
    reviewer: Principal,
    action: str,
    limit: int,
    window_seconds: int,
) -> None:
    """
    Check rate limit for a reviewer action.

    Raises:
        RateLimitExceeded: If rate limit is exceeded
    """
    key = f"audit:{action}:{reviewer.id}"
    allowed = await check_rate_limit(key, limit, window_seconds)

    if not allowed:
        logger.warning(
            f"Rate limit exceeded for reviewer {reviewer.id} on action '{action}': "
            f"{limit}/{window_seconds}s"
        )
        raise RateLimitExceeded(limit, window_seconds)


# ============================================
# Helper Functions
# ============================================


def _handle_service_error(e: ApplicationServiceError) -> None:
    """Convert service errors to HTTPExceptions."""
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "success": False,
            "error": e.error_code,
            "message": e.message,
        },
    ) from e


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "success": False,
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )


async def _decide(
    db: AsyncSession,
    application_id: UUID,
    reviewer: Principal,
    verdict: ApplicationAction,
    remarks: str | None,
) -> ApiResponse[ApplicationResponse]:
    try:
        application = await service.decide_application(
            db, application_id, reviewer, verdict, remarks
        )

        logger.info(
            f"Reviewer {reviewer.id} set application {application_id} to {application.status.value}"
        )

        return ApiResponse[ApplicationResponse](
            message=f"Application {application.status.value.lower()}.",
            data=ApplicationResponse.model_validate(application),
        )

    except ApplicationNotFoundError as e:
        logger.warning(f"Application not found: {application_id}")
        _handle_service_error(e)
    except IllegalTransitionError as e:
        logger.warning(
            f"Cannot {verdict.value.lower()} application {application_id}: "
            f"status={e.current_status}"
        )
        _handle_service_error(e)
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error deciding application {application_id}: {e}")
        raise _internal_error() from e


DECISION_RESPONSES = {
    400: {"description": "Remarks missing (reject)", "model": ErrorResponse},
    401: {"description": "Unauthorized - invalid or missing token"},
    403: {"description": "Forbidden - not an auditor or admin"},
    404: {"description": "Application not found", "model": ErrorResponse},
    409: {
        "description": "Application is not pending",
        "content": {
            "application/json": {
                "example": {
                    "success": False,
                    "error": "ILLEGAL_TRANSITION",
                    "message": "Cannot approve an application with status 'APPROVED'.",
                }
            }
        },
    },
    429: {"description": "Too many decisions"},
    503: {"description": "Storage temporarily unavailable", "model": ErrorResponse},
}


# ============================================
# List & Detail Endpoints
# ============================================


@router.get(
    "",
    response_model=ApiResponse[ApplicationListResponse],
    summary="List Applications",
    description="""
List applications for review, newest first.

**Filters:**
- `name`: substring match on applicant name
- `id_number`: exact identity number
- `status`: PENDING, APPROVED, REJECTED or CANCELLED

**Access:** Auditor or admin
""",
)
async def list_applications(
    name: str | None = Query(None, max_length=50, description="Applicant name contains"),
    id_number: str | None = Query(None, max_length=18, description="Exact identity number"),
    status_filter: ApplicationStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    reviewer: Principal = Depends(get_current_reviewer),
) -> ApiResponse[ApplicationListResponse]:
    try:
        result = await service.list_applications(
            db,
            name=name,
            id_number=id_number,
            status=status_filter,
            page=page,
            page_size=page_size,
        )

        return ApiResponse[ApplicationListResponse](
            message=f"Found {result['total']} application(s).",
            data=ApplicationListResponse(
                applications=[
                    ApplicationResponse.model_validate(a) for a in result["applications"]
                ],
                total=result["total"],
                page=result["page"],
                page_size=result["page_size"],
                total_pages=result["total_pages"],
            ),
        )

    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error listing applications: {e}")
        raise _internal_error() from e


@router.get(
    "/{application_id}",
    response_model=ApiResponse[ApplicationDetailResponse],
    summary="Get Application Detail",
    description="""
Get an application with its full audit history (newest first) and the
decisions currently available.

**Access:** Auditor or admin
""",
    responses={404: DECISION_RESPONSES[404]},
)
async def get_application_detail(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    reviewer: Principal = Depends(get_current_reviewer),
) -> ApiResponse[ApplicationDetailResponse]:
    try:
        detail = await service.get_application_detail(db, application_id, reviewer)
        return ApiResponse[ApplicationDetailResponse](
            message="Application retrieved.",
            data=ApplicationDetailResponse.model_validate(detail),
        )

    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Error getting application detail: {e}")
        raise _internal_error() from e


# ============================================
# Decision Endpoints
# ============================================


@router.post(
    "/{application_id}/approve",
    response_model=ApiResponse[ApplicationResponse],
    summary="Approve Application",
    description="""
Approve a pending application. Approval is final.

Optional `remarks` are stored as the reviewer comments.

**Access:** Auditor or admin
""",
    responses=DECISION_RESPONSES,
)
async def approve_application(
    application_id: UUID,
    data: DecisionRequest | None = Body(None),
    db: AsyncSession = Depends(get_db),
    reviewer: Principal = Depends(get_current_reviewer),
) -> ApiResponse[ApplicationResponse]:
    await _check_reviewer_rate_limit(reviewer, "approve", *RATE_LIMIT_APPROVE)

    remarks = data.remarks if data else None
    return await _decide(db, application_id, reviewer, ApplicationAction.APPROVE, remarks)


@router.post(
    "/{application_id}/reject",
    response_model=ApiResponse[ApplicationResponse],
    summary="Reject Application",
    description="""
Reject a pending application.

`remarks` are required and are shown to the customer, who may edit and
resubmit the application.

**Access:** Auditor or admin
""",
    responses=DECISION_RESPONSES,
)
async def reject_application(
    application_id: UUID,
    data: DecisionRequest,
    db: AsyncSession = Depends(get_db),
    reviewer: Principal = Depends(get_current_reviewer),
) -> ApiResponse[ApplicationResponse]:
    await _check_reviewer_rate_limit(reviewer, "reject", *RATE_LIMIT_REJECT)

    return await _decide(db, application_id, reviewer, ApplicationAction.REJECT, data.remarks)
