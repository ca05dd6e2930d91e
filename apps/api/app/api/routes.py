from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.cases.api import debtors_router, router as cases_router
from app.core.config import get_settings
from app.identity.api import agents_router, get_current_actor, router as identity_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import Actor
from app.tenants.api import router as tenants_router

router = APIRouter()
router.include_router(identity_router)
router.include_router(tenants_router)
router.include_router(agents_router)
router.include_router(debtors_router)
router.include_router(cases_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(actor: Actor = Depends(get_current_actor)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only administrators can read metrics")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
