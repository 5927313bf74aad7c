import logging

from fastapi import APIRouter, Depends, Query

from voice_studio import db, keystore, ledger
from voice_studio.api.deps import envelope, get_vendor
from voice_studio.auth import require_admin
from voice_studio.errors import ConflictError, NotFoundError
from voice_studio.schemas import (
    AdminApiKeyRequest,
    AdminCreditsRequest,
    ApproveOrderRequest,
    BlockRequest,
    OrderResponse,
    PackageRequest,
    RejectOrderRequest,
)
from voice_studio.vendor import VendorClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.post("/credits")
def set_user_credits(payload: AdminCreditsRequest, admin: dict = Depends(require_admin)) -> dict:
    old, new = ledger.set_balance(payload.target_user_id, payload.credits, actor_id=admin["id"], note=payload.note)
    db.log_admin_action(
        admin["id"],
        "update_credits",
        target_user_id=payload.target_user_id,
        details={"old_credits": old, "new_credits": new, "note": payload.note},
    )
    return envelope({"success": True, "oldCredits": old, "newCredits": new})


# orders


@router.get("/orders")
def list_orders(
    status: str | None = Query(default=None, pattern="^(pending|approved|rejected)$"),
    limit: int = Query(default=100, ge=1, le=500),
    admin: dict = Depends(require_admin),
) -> dict:
    orders = db.list_orders(status=status, limit=limit)
    return envelope({"orders": [OrderResponse(**o).model_dump() for o in orders]})


@router.post("/orders/approve")
def approve_order(payload: ApproveOrderRequest, admin: dict = Depends(require_admin)) -> dict:
    old, new = ledger.approve_order(
        payload.order_id,
        admin["id"],
        target_user_id=payload.target_user_id,
        credits=payload.credits,
    )
    order = db.get_order(payload.order_id)
    if payload.notes:
        db.set_order_notes(payload.order_id, payload.notes)
    db.log_admin_action(
        admin["id"],
        "approve_order",
        target_user_id=order["user_id"],
        details={"order_id": payload.order_id, "credits": order["credits"], "old_credits": old, "new_credits": new},
    )
    return envelope({"success": True, "oldCredits": old, "newCredits": new})


@router.post("/orders/reject")
def reject_order(payload: RejectOrderRequest, admin: dict = Depends(require_admin)) -> dict:
    order = db.get_order(payload.order_id)
    if not order:
        raise NotFoundError("Order not found", details={"order_id": payload.order_id})
    if not db.reject_order(payload.order_id, admin["id"], payload.notes):
        current = db.get_order(payload.order_id)
        raise ConflictError(f"Order is already {current['status']}", details={"status": current["status"]})
    db.log_admin_action(
        admin["id"],
        "reject_order",
        target_user_id=order["user_id"],
        details={"order_id": payload.order_id, "notes": payload.notes},
    )
    logger.info("order_rejected", extra={"order_id": payload.order_id, "admin_user_id": admin["id"]})
    return envelope({"success": True})


@router.post("/packages")
def upsert_package(payload: PackageRequest, admin: dict = Depends(require_admin)) -> dict:
    db.upsert_package(
        payload.id,
        payload.name,
        payload.credits,
        payload.price_usdt,
        description=payload.description,
        is_active=payload.is_active,
        sort_order=payload.sort_order,
    )
    db.log_admin_action(admin["id"], "upsert_package", details=payload.model_dump())
    return envelope(db.get_package(payload.id))


# users


@router.get("/users")
def list_users(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: dict = Depends(require_admin),
) -> dict:
    return envelope({"users": db.list_users(limit=limit, offset=offset), "limit": limit, "offset": offset})


@router.post("/users/{user_id}/block")
def block_user(user_id: str, payload: BlockRequest, admin: dict = Depends(require_admin)) -> dict:
    if user_id == admin["id"] and payload.blocked:
        raise ConflictError("Admins cannot block themselves")
    if not db.set_user_blocked(user_id, payload.blocked):
        raise NotFoundError("User not found", details={"user_id": user_id})
    db.log_admin_action(
        admin["id"],
        "block_user" if payload.blocked else "unblock_user",
        target_user_id=user_id,
    )
    logger.info(
        "user_block_changed",
        extra={"admin_user_id": admin["id"], "target_user_id": user_id, "status_code": int(payload.blocked)},
    )
    return envelope({"success": True, "blocked": payload.blocked})


@router.post("/api-keys")
def set_user_api_key(
    payload: AdminApiKeyRequest,
    admin: dict = Depends(require_admin),
    vendor: VendorClient = Depends(get_vendor),
) -> dict:
    if not db.get_user(payload.target_user_id):
        raise NotFoundError("User not found", details={"user_id": payload.target_user_id})
    result = keystore.save_user_api_key(
        vendor,
        payload.target_user_id,
        payload.api_key,
        provider=payload.provider,
        require_valid=False,
    )
    db.log_admin_action(
        admin["id"],
        "set_api_key",
        target_user_id=payload.target_user_id,
        details={"provider": payload.provider, "valid": result["valid"]},
    )
    return envelope({"success": True, **result})


@router.delete("/api-keys/{user_id}")
def delete_user_api_key(user_id: str, admin: dict = Depends(require_admin)) -> dict:
    deleted = keystore.delete_user_api_key(user_id)
    if deleted:
        db.log_admin_action(admin["id"], "delete_api_key", target_user_id=user_id)
    return envelope({"success": deleted})


@router.get("/stats")
def stats(admin: dict = Depends(require_admin)) -> dict:
    return envelope(db.get_dashboard_stats())


@router.get("/audit")
def audit_log(limit: int = Query(default=100, ge=1, le=500), admin: dict = Depends(require_admin)) -> dict:
    return envelope({"entries": db.list_admin_actions(limit=limit)})
