from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from learnlynk.core.auth import AuthUser, get_current_context, get_current_user
from learnlynk.core.config import get_settings
from learnlynk.crm.api import applications_router, leads_router, tasks_router
from learnlynk.directory.api import router as directory_router
from learnlynk.metrics import generate_metrics_payload, metrics_content_type
from learnlynk.platform.security.context import AuthContext

router = APIRouter()
router.include_router(leads_router)
router.include_router(applications_router)
router.include_router(tasks_router)
router.include_router(directory_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(
    user: AuthUser = Depends(get_current_user),
    ctx: AuthContext = Depends(get_current_context),
) -> dict[str, str | bool | list[str] | None]:
    return {
        "sub": user.sub,
        "tenant_id": user.tenant_id,
        "role": user.role,
        "authenticated": ctx.is_well_formed,
        "team_ids": sorted(str(team_id) for team_id in ctx.team_ids),
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing role: admin")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
