"""
Applications Router

Customer-facing endpoints for identity verification applications.

Endpoints:
- POST /applications - Submit a new application (customer or anonymous)
- GET /applications/mine - List the caller's applications
- POST /applications/status-lookup - Public status lookup by ID number + phone
- GET /applications/{id} - Application detail with audit history
- PATCH /applications/{id} - Resubmit a rejected application
- POST /applications/{id}/cancel - Cancel a pending application

Security:
- Bearer JWT required everywhere except submission and status lookup
- Customers can only read and change their own applications
- Rate limiting on submission and status lookup
- Input validation via Pydantic schemas
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from idv.core.auth import Principal, get_current_principal, get_optional_principal
from idv.core.database import get_db
from idv.core.rate_limit import enforce_rate_limit
from idv.modules.applications import service
from idv.modules.applications.schemas import (
    ApiResponse,
    ApplicationCreate,
    ApplicationDetailResponse,
    ApplicationPatch,
    ApplicationResponse,
    ApplicationStatusResponse,
    ErrorResponse,
    StatusLookupRequest,
)
from idv.modules.applications.service import (
    ApplicationServiceError,
    DuplicateIdentityError,
    StorageFailureError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Rate limits (requests, window seconds)
RATE_LIMIT_SUBMIT = (5, 60)
RATE_LIMIT_STATUS_LOOKUP = (20, 60)


def _client_key(request: Request, principal: Principal | None = None) -> str:
    if principal is not None and principal.id is not None:
        return str(principal.id)
    return request.client.host if request.client else "unknown"


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
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


ERROR_RESPONSES = {
    400: {"description": "Validation error", "model": ErrorResponse},
    401: {"description": "Missing or invalid token", "model": ErrorResponse},
    403: {"description": "Not your application", "model": ErrorResponse},
    404: {"description": "Application not found", "model": ErrorResponse},
    409: {"description": "Action not allowed in the current status", "model": ErrorResponse},
    503: {"description": "Storage temporarily unavailable", "model": ErrorResponse},
}


@router.post(
    "",
    response_model=ApiResponse[ApplicationResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Submit Identity Verification Application",
    description="""
Submit a new identity verification application.

Authentication is optional. Signed-in customers own the application and can
later resubmit or cancel it; anonymous submissions can only be tracked with
the status lookup.

**Validation:**
- Resident ID: 18 characters with a valid birth date, trailing digit or X
- Residence permit: starts with 810000, 820000 or 830000
- Phone: 11-digit mainland mobile number

**Duplicate Prevention:**
Only one non-cancelled application may exist per identity number.
""",
    responses={
        201: {"description": "Application submitted"},
        400: ERROR_RESPONSES[400],
        409: {
            "description": "Identity number already has an active application",
            "content": {
                "application/json": {
                    "example": {
                        "success": False,
                        "error": "DUPLICATE_IDENTITY",
                        "message": "An active application already exists for this identity number.",
                    }
                }
            },
        },
        429: {"description": "Too many submissions"},
        503: ERROR_RESPONSES[503],
    },
)
async def submit_application(
    request: Request,
    data: ApplicationCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_optional_principal),
) -> ApiResponse[ApplicationResponse]:
    """
    Submit a new identity verification application.
    """
    await enforce_rate_limit(
        f"rate_limit:submit:{_client_key(request, principal)}", *RATE_LIMIT_SUBMIT
    )

    try:
        application = await service.submit_application(db, principal, data)
        return ApiResponse[ApplicationResponse](
            message="Application submitted and awaiting review.",
            data=ApplicationResponse.model_validate(application),
        )

    except DuplicateIdentityError as e:
        logger.info(f"Duplicate submission rejected: {e.message}")
        _handle_service_error(e)
    except ApplicationServiceError as e:
        logger.warning(f"Submission failed: {e.error_code} - {e.message}")
        _handle_service_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error submitting application: {e}")
        raise _internal_error() from e


@router.get(
    "/mine",
    response_model=ApiResponse[list[ApplicationResponse]],
    summary="List My Applications",
    description="List the signed-in customer's applications, newest first.",
    responses={401: ERROR_RESPONSES[401], 503: ERROR_RESPONSES[503]},
)
async def list_my_applications(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ApiResponse[list[ApplicationResponse]]:
    try:
        applications = await service.list_my_applications(db, principal)
        return ApiResponse[list[ApplicationResponse]](
            message=f"Found {len(applications)} application(s).",
            data=[ApplicationResponse.model_validate(a) for a in applications],
        )

    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error listing applications: {e}")
        raise _internal_error() from e


@router.post(
    "/status-lookup",
    response_model=ApiResponse[ApplicationStatusResponse],
    summary="Look Up Application Status",
    description="""
Look up the most recent application for an identity number and phone number.

No authentication required. Both values must match; the response does not
reveal which one was wrong.
""",
    responses={404: ERROR_RESPONSES[404], 429: {"description": "Too many lookups"}},
)
async def lookup_status(
    request: Request,
    data: StatusLookupRequest,
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[ApplicationStatusResponse]:
    await enforce_rate_limit(
        f"rate_limit:status_lookup:{_client_key(request)}", *RATE_LIMIT_STATUS_LOOKUP
    )

    try:
        application = await service.lookup_application_status(
            db, data.id_number, data.phone_number
        )
        return ApiResponse[ApplicationStatusResponse](
            message="Application found.",
            data=ApplicationStatusResponse.model_validate(application),
        )

    except ApplicationServiceError as e:
        _handle_service_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error looking up status: {e}")
        raise _internal_error() from e


@router.get(
    "/{application_id}",
    response_model=ApiResponse[ApplicationDetailResponse],
    summary="Get Application Detail",
    description="Get one of your applications with its audit history (newest first).",
    responses={k: ERROR_RESPONSES[k] for k in (401, 403, 404, 503)},
)
async def get_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ApiResponse[ApplicationDetailResponse]:
    try:
        detail = await service.get_application_detail(db, application_id, principal)
        return ApiResponse[ApplicationDetailResponse](
            message="Application retrieved.",
            data=ApplicationDetailResponse.model_validate(detail),
        )

    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error getting application {application_id}: {e}")
        raise _internal_error() from e


@router.patch(
    "/{application_id}",
    response_model=ApiResponse[ApplicationResponse],
    summary="Resubmit Rejected Application",
    description="""
Edit and resubmit a rejected application.

Send only the fields you want to change. At least one field must differ from
the stored value. The application returns to `PENDING` and the reviewer's
comments are cleared.

**Requirements:**
- You must own the application
- Application must be in `REJECTED` status
""",
    responses={
        **{k: ERROR_RESPONSES[k] for k in (400, 401, 403, 404, 409, 503)},
        422: {"description": "Nothing changed", "model": ErrorResponse},
    },
)
async def resubmit_application(
    application_id: UUID,
    patch: ApplicationPatch,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ApiResponse[ApplicationResponse]:
    try:
        application = await service.resubmit_application(db, application_id, principal, patch)
        return ApiResponse[ApplicationResponse](
            message="Application resubmitted and awaiting review.",
            data=ApplicationResponse.model_validate(application),
        )

    except ApplicationServiceError as e:
        logger.warning(
            f"Resubmission of {application_id} failed: {e.error_code} - {e.message}"
        )
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error resubmitting application {application_id}: {e}")
        raise _internal_error() from e


@router.post(
    "/{application_id}/cancel",
    response_model=ApiResponse[ApplicationResponse],
    summary="Cancel Application",
    description="""
Cancel one of your pending applications.

Cancellation is final. The identity number becomes available for a new
submission.
""",
    responses={k: ERROR_RESPONSES[k] for k in (401, 403, 404, 409, 503)},
)
async def cancel_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ApiResponse[ApplicationResponse]:
    try:
        application = await service.cancel_application(db, application_id, principal)
        return ApiResponse[ApplicationResponse](
            message="Application cancelled.",
            data=ApplicationResponse.model_validate(application),
        )

    except StorageFailureError as e:
        _handle_service_error(e)
    except ApplicationServiceError as e:
        logger.warning(f"Cancellation of {application_id} failed: {e.error_code}")
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error cancelling application {application_id}: {e}")
        raise _internal_error() from e
