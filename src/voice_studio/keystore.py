import logging

from cryptography.fernet import Fernet, InvalidToken

from voice_studio import db
from voice_studio.config import settings
from voice_studio.errors import AppError, ValidationError, VendorError
from voice_studio.vendor import VendorClient

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "ai33"


def _get_fernet() -> Fernet:
    if not settings.encryption_key:
        raise AppError("ENCRYPTION_KEY is not configured")
    return Fernet(settings.encryption_key.encode())


def encrypt_key(api_key: str) -> str:
    return _get_fernet().encrypt(api_key.encode()).decode()


def decrypt_key(encrypted: str) -> str:
    return _get_fernet().decrypt(encrypted.encode()).decode()


def get_user_api_key(user_id: str, provider: str = DEFAULT_PROVIDER) -> str | None:
    """The user's own vendor key, if one is stored and still marked valid."""
    row = db.get_api_key_row(user_id, provider)
    if not row or not row["is_valid"]:
        return None
    try:
        return decrypt_key(row["encrypted_key"])
    except InvalidToken:
        logger.error("api_key_decrypt_failed", extra={"user_id": user_id})
        return None


def save_user_api_key(
    vendor: VendorClient,
    user_id: str,
    api_key: str,
    provider: str = DEFAULT_PROVIDER,
    require_valid: bool = True,
) -> dict:
    """Check the key against the vendor, then store it encrypted.

    Self-service saves refuse a key the vendor rejects. Admin saves pass
    ``require_valid=False`` and store the key flagged invalid instead.
    """
    api_key = api_key.strip()
    if len(api_key) < 10 or any(ch.isspace() for ch in api_key):
        raise ValidationError("Valid API key is required (minimum 10 characters)")

    is_valid = True
    remaining: int | None = None
    try:
        remaining = vendor.get_credits(api_key)
    except VendorError as exc:
        is_valid = False
        logger.info("api_key_validation_failed", extra={"user_id": user_id, "error": exc.message})
        if require_valid:
            raise ValidationError("Invalid API key - could not verify with provider") from exc

    db.save_api_key(user_id, provider, encrypt_key(api_key), is_valid, remaining)
    return {"valid": is_valid, "remaining_credits": remaining, "provider": provider}


def check_balance(vendor: VendorClient, user_id: str, provider: str = DEFAULT_PROVIDER) -> dict:
    api_key = get_user_api_key(user_id, provider)
    if not api_key:
        return {"credits": 0, "valid": False}
    try:
        credits = vendor.get_credits(api_key)
    except VendorError as exc:
        db.update_api_key_balance(user_id, provider, None, is_valid=exc.vendor_status not in {401, 403})
        return {"credits": 0, "valid": False, "error": exc.message}
    db.update_api_key_balance(user_id, provider, credits, is_valid=True)
    return {"credits": credits or 0, "valid": True}


def delete_user_api_key(user_id: str, provider: str = DEFAULT_PROVIDER) -> bool:
    return db.delete_api_key(user_id, provider)
