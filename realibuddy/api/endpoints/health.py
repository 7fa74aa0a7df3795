"""Health check endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...domain.errors import GovernorFaultError
from ...infrastructure.dependencies import ServiceContainer, get_service_container

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    container: ServiceContainer = Depends(get_service_container),
) -> Dict[str, Any]:
    """Check the health of all service components.

    Returns:
        Overall status, provider availability and the safety governor state
    """
    providers = container.provider_status()

    if not container.is_started:
        return {"status": "starting", "providers": providers, "safety": None}

    governor = container.governor
    safety: Dict[str, Any] = {
        "emergency_stop": governor.emergency_stop_active,
        "faulted": governor.is_faulted,
        "cooldown_remaining_ms": governor.cooldown_remaining(),
    }
    try:
        safety["actuation_count"] = await governor.actuation_count()
        safety["can_actuate"] = await governor.can_actuate()
    except GovernorFaultError:
        safety["faulted"] = True
        safety["can_actuate"] = False

    degraded = safety["faulted"] or not all(p["available"] for p in providers.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "providers": providers,
        "safety": safety,
    }
