from collections.abc import Callable

from fastapi import Depends

from voice_studio.auth import get_current_user
from voice_studio.config import settings
from voice_studio.orchestrator import TaskOrchestrator
from voice_studio.ratelimit import check_rate_limit
from voice_studio.vendor import VendorClient


def envelope(data: dict | list, status: str = "ok", error: dict | None = None) -> dict:
    return {
        "status": status,
        "data": data,
        "meta": {"model_version": settings.app_version, "latency_ms": 0},
        "error": error,
    }


def get_vendor() -> VendorClient:
    return VendorClient()


def get_orchestrator(vendor: VendorClient = Depends(get_vendor)) -> TaskOrchestrator:
    return TaskOrchestrator(vendor)


def rate_limited(endpoint: str) -> Callable[..., dict]:
    """Dependency: the current user, after counting this call against their window for ``endpoint``."""

    def _dependency(user: dict = Depends(get_current_user)) -> dict:
        check_rate_limit(user["id"], endpoint)
        return user

    return _dependency
