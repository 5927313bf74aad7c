"""Usage metering.

Every paid submission goes through a ``UsageMeter``. Callers holding their own
vendor key are metered against the vendor's quota for that key; everyone else
pays from the credit ledger and is served with the platform key. The task
orchestrator only ever sees the interface.
"""
import logging

from voice_studio import db, keystore, ledger
from voice_studio.config import settings
from voice_studio.errors import InsufficientFundsError, ValidationError
from voice_studio.vendor import VendorClient

logger = logging.getLogger(__name__)


class UsageMeter:
    mode = ""

    @property
    def api_key(self) -> str:
        raise NotImplementedError

    def authorize(self, user_id: str, units: int) -> None:
        """Raise InsufficientFundsError if ``units`` cannot be paid for. Changes nothing."""
        raise NotImplementedError

    def charge(self, user_id: str, task_id: str, units: int) -> bool:
        raise NotImplementedError

    def refund(self, task_id: str, units: int, note: str) -> int:
        raise NotImplementedError


class LedgerMeter(UsageMeter):
    mode = "ledger"

    @property
    def api_key(self) -> str:
        return settings.vendor_api_key

    def authorize(self, user_id: str, units: int) -> None:
        user = db.get_user(user_id)
        available = int(user["credits"]) if user else 0
        if available < units:
            raise InsufficientFundsError(
                f"Insufficient credits. You have {available}, but need {units}.",
                details={"available": available, "required": units},
            )

    def charge(self, user_id: str, task_id: str, units: int) -> bool:
        return ledger.charge_task(user_id, task_id, units)

    def refund(self, task_id: str, units: int, note: str) -> int:
        return ledger.refund_task(task_id, units, note)


class VendorQuotaMeter(UsageMeter):
    mode = "vendor_key"

    def __init__(self, api_key: str, vendor: VendorClient) -> None:
        self._api_key = api_key
        self.vendor = vendor

    @property
    def api_key(self) -> str:
        return self._api_key

    def authorize(self, user_id: str, units: int) -> None:
        remaining = self.vendor.get_credits(self._api_key)
        # unknown quota means the vendor enforces it on submission
        if remaining is not None and remaining < units:
            raise InsufficientFundsError(
                f"Your API key has {remaining} credits left, but this request needs {units}.",
                details={"available": remaining, "required": units},
            )

    def charge(self, user_id: str, task_id: str, units: int) -> bool:
        ledger.record_external_usage(task_id, units)
        logger.info("usage_metered_external", extra={"user_id": user_id, "task_id": task_id, "amount": units})
        return True

    def refund(self, task_id: str, units: int, note: str) -> int:
        # the vendor refunds the key holder directly
        return 0


def meter_for(user_id: str, vendor: VendorClient) -> UsageMeter:
    api_key = keystore.get_user_api_key(user_id)
    if api_key:
        return VendorQuotaMeter(api_key, vendor)
    return LedgerMeter()


def api_key_for_task(task: dict) -> str:
    """The key a task was dispatched with, so polls and deletes hit the same vendor account."""
    if task["billing_mode"] != VendorQuotaMeter.mode:
        return settings.vendor_api_key
    user_key = keystore.get_user_api_key(task["user_id"])
    if not user_key:
        logger.info("task_key_unavailable", extra={"task_id": task["id"], "user_id": task["user_id"]})
        raise ValidationError(
            "The API key this task was submitted with has been removed or is no longer valid",
            details={"task_id": task["id"]},
        )
    return user_key
