from fastapi import APIRouter

from idv.modules.applications import admin_router as audit_applications_router
from idv.modules.applications import router as applications_router

api_router = APIRouter()

api_router.include_router(applications_router, prefix="/applications", tags=["Applications"])

api_router.include_router(
    audit_applications_router,
    prefix="/audit/applications",
    tags=["Audit - Applications"],
)
