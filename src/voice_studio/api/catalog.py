import logging

from fastapi import APIRouter, Depends, Query

from voice_studio import billing
from voice_studio.api.deps import envelope, get_vendor
from voice_studio.auth import get_current_user
from voice_studio.errors import VendorError
from voice_studio.vendor import VendorClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["catalog"])

UNKNOWN_HEALTH = {"elevenlabs": "unknown", "minimax": "unknown"}


@router.get("/voices")
def list_voices(
    page_size: int = Query(default=100, ge=1, le=100),
    page: int = Query(default=0, ge=0),
    search: str = "",
    gender: str = "",
    language: str = "",
    age: str = "",
    accent: str = "",
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    api_key = billing.meter_for(user["id"], vendor).api_key
    result = vendor.list_shared_voices(
        api_key,
        page_size=page_size,
        page=page,
        search=search.strip(),
        gender=gender,
        language=language,
        age=age,
        accent=accent,
    )
    return envelope({**result, "page": page, "page_size": page_size})


@router.get("/models")
def list_models(
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    return envelope({"models": vendor.list_models(billing.meter_for(user["id"], vendor).api_key)})


@router.get("/vendor/health")
def vendor_health(
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    try:
        data = vendor.health_check(billing.meter_for(user["id"], vendor).api_key)
    except VendorError as exc:
        logger.warning("vendor_health_unavailable", extra={"user_id": user["id"], "error": exc.message})
        return envelope(dict(UNKNOWN_HEALTH), status="degraded", error=exc.to_dict())
    return envelope(data)
