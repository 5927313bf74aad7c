import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException

from voice_studio import billing, db, keystore
from voice_studio.api.deps import envelope, get_vendor
from voice_studio.auth import get_current_user
from voice_studio.schemas import (
    ApiKeyRequest,
    OrderCreateRequest,
    OrderResponse,
    PackageResponse,
    ProfileUpdate,
    UserResponse,
)
from voice_studio.vendor import VendorClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["account"])


def _user_payload(user: dict) -> dict:
    return UserResponse(
        id=user["id"],
        email=user["email"],
        display_name=user["display_name"],
        credits=int(user["credits"]),
        is_blocked=bool(user["is_blocked"]),
        created_at=user["created_at"],
    ).model_dump()


@router.get("/me")
def get_me(user: dict = Depends(get_current_user)) -> dict:
    return envelope(_user_payload(user))


@router.patch("/me")
def update_me(payload: ProfileUpdate, user: dict = Depends(get_current_user)) -> dict:
    db.update_user_profile(user["id"], payload.display_name.strip())
    return envelope(_user_payload(db.get_user(user["id"])))


@router.get("/credits")
def get_credits(user: dict = Depends(get_current_user)) -> dict:
    return envelope(
        {
            "credits": int(user["credits"]),
            "recent_ledger": db.list_ledger(user["id"], limit=20),
        }
    )


# vendor api key


@router.post("/api-key")
def save_api_key(
    payload: ApiKeyRequest,
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    result = keystore.save_user_api_key(vendor, user["id"], payload.api_key, provider=payload.provider)
    logger.info("api_key_saved", extra={"user_id": user["id"]})
    return envelope({"success": True, **result})


@router.delete("/api-key")
def delete_api_key(user: dict = Depends(get_current_user)) -> dict:
    return envelope({"success": keystore.delete_user_api_key(user["id"])})


@router.get("/api-key/balance")
def check_api_key_balance(
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    return envelope(keystore.check_balance(vendor, user["id"]))


@router.get("/api-key/subscription")
def api_key_subscription(
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    api_key = keystore.get_user_api_key(user["id"])
    if not api_key:
        raise HTTPException(status_code=404, detail="No API key saved")
    return envelope(vendor.get_subscription(api_key))


# voice clones on the vendor side


@router.get("/voices/clones")
def list_voice_clones(
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    api_key = billing.meter_for(user["id"], vendor).api_key
    return envelope({"clones": vendor.list_voice_clones(api_key)})


@router.delete("/voices/clones/{voice_id}")
def delete_voice_clone(
    voice_id: str,
    user: dict = Depends(get_current_user),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    api_key = billing.meter_for(user["id"], vendor).api_key
    vendor.delete_voice_clone(api_key, voice_id)
    logger.info("voice_clone_deleted", extra={"user_id": user["id"]})
    return envelope({"success": True})


# packages and orders


@router.get("/packages")
def list_packages() -> dict:
    packages = [PackageResponse(**{**p, "is_active": bool(p["is_active"])}).model_dump() for p in db.list_packages()]
    return envelope({"packages": packages})


@router.post("/orders")
def create_order(payload: OrderCreateRequest, user: dict = Depends(get_current_user)) -> dict:
    package = db.get_package(payload.package_id)
    if not package or not package["is_active"]:
        raise HTTPException(status_code=404, detail="Package not found")

    order_id = str(uuid4())
    db.create_order(
        order_id=order_id,
        user_id=user["id"],
        package_id=package["id"],
        credits=int(package["credits"]),
        amount_usdt=float(package["price_usdt"]),
        network=payload.network,
        txid=payload.txid,
        wallet_address=payload.wallet_address,
    )
    logger.info("order_created", extra={"order_id": order_id, "user_id": user["id"], "amount": package["credits"]})
    return envelope(OrderResponse(**db.get_order(order_id)).model_dump())


@router.get("/orders")
def list_my_orders(user: dict = Depends(get_current_user)) -> dict:
    return envelope({"orders": [OrderResponse(**o).model_dump() for o in db.list_orders(user_id=user["id"])]})
