from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.crm.api import (
    campaigns_router,
    interactions_router,
    leads_router,
    pipelines_router,
    properties_router,
    tasks_router,
)
from app.documents.api import documents_router, folders_router
from app.meetings.api import router as meetings_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.users.api import router as users_router

router = APIRouter()
router.include_router(pipelines_router)
router.include_router(campaigns_router)
router.include_router(leads_router)
router.include_router(tasks_router)
router.include_router(interactions_router)
router.include_router(properties_router)
router.include_router(users_router)
router.include_router(folders_router)
router.include_router(documents_router)
router.include_router(meetings_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str]:
    return {
        "sub": user.sub,
        "role": user.role,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
