from fastapi import APIRouter, Depends, Request

from supportdesk.dependencies.auth import CurrentUser, Role, role_required
from supportdesk.metrics import metrics_registry

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/admin",
    summary="Admin session probe",
    dependencies=[Depends(role_required(Role.ADMIN))],
)
async def admin_ping(user: CurrentUser, request: Request) -> dict[str, object]:
    broadcaster = getattr(request.app.state, "broadcaster", None)
    subscribers = broadcaster.subscriber_count if broadcaster is not None else 0
    return {"status": "ok", "user": user.user_id, "subscribers": subscribers}


@router.get(
    "/metrics",
    summary="Ticket workflow counters",
    dependencies=[Depends(role_required(Role.ADMIN))],
)
async def metrics() -> dict[str, dict[str, object]]:
    return metrics_registry.export()
