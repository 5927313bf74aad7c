"""Credit balance mutations.

Every balance change is a single conditional UPDATE inside a write
transaction, paired with a ``credit_ledger`` row recording the old and new
values. Nothing here reads a balance and writes it back from Python.
"""
import logging
import sqlite3

from voice_studio.config import settings
from voice_studio.db import _now, _tx, add_ledger_entry
from voice_studio.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class _Declined(Exception):
    """Rolls a charge transaction back when the balance does not cover it."""


def _balance(conn: sqlite3.Connection, user_id: str) -> int:
    row = conn.execute("SELECT credits FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise NotFoundError("User profile not found")
    return int(row["credits"])


def _check_delta(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Credit amount must be a positive integer", details={"amount": amount})
    if amount > settings.max_single_change:
        raise ValidationError(f"Single change cannot exceed {settings.max_single_change} credits")


def _debit_in(
    conn: sqlite3.Connection,
    user_id: str,
    amount: int,
    kind: str,
    task_id: str | None = None,
    actor_id: str | None = None,
    note: str | None = None,
) -> bool:
    cur = conn.execute(
        "UPDATE users SET credits = credits - ?, updated_at = ? WHERE id = ? AND credits >= ?",
        (amount, _now(), user_id, amount),
    )
    if cur.rowcount != 1:
        return False
    after = _balance(conn, user_id)
    add_ledger_entry(conn, user_id, kind, -amount, after + amount, after, actor_id=actor_id, task_id=task_id, note=note)
    return True


def _credit_in(
    conn: sqlite3.Connection,
    user_id: str,
    amount: int,
    kind: str,
    actor_id: str | None = None,
    task_id: str | None = None,
    order_id: str | None = None,
    note: str | None = None,
) -> int:
    cur = conn.execute(
        "UPDATE users SET credits = credits + ?, updated_at = ? WHERE id = ? AND credits + ? <= ?",
        (amount, _now(), user_id, amount, settings.max_credits),
    )
    if cur.rowcount != 1:
        current = _balance(conn, user_id)
        raise ValidationError(
            f"Adding {amount} credits would exceed maximum balance of {settings.max_credits}",
            details={"current": current, "amount": amount},
        )
    after = _balance(conn, user_id)
    add_ledger_entry(
        conn,
        user_id,
        kind,
        amount,
        after - amount,
        after,
        actor_id=actor_id,
        task_id=task_id,
        order_id=order_id,
        note=note,
    )
    return after


def debit(user_id: str, amount: int, note: str | None = None) -> bool:
    """Take ``amount`` credits if the balance covers it. False means insufficient funds."""
    if amount < 0:
        raise ValidationError("Debit amount must not be negative")
    if amount == 0:
        return True
    with _tx() as conn:
        ok = _debit_in(conn, user_id, amount, "debit", note=note)
    if not ok:
        logger.info("ledger_debit_insufficient", extra={"user_id": user_id, "amount": amount})
    return ok


def credit(
    user_id: str,
    amount: int,
    kind: str = "grant",
    actor_id: str | None = None,
    note: str | None = None,
) -> int:
    _check_delta(amount)
    with _tx() as conn:
        new_balance = _credit_in(conn, user_id, amount, kind, actor_id=actor_id, note=note)
    logger.info("ledger_credit", extra={"user_id": user_id, "amount": amount, "kind": kind})
    return new_balance


def set_balance(user_id: str, new_value: int, actor_id: str, note: str | None = None) -> tuple[int, int]:
    """Admin correction. Returns ``(old, new)``."""
    if not isinstance(new_value, int) or isinstance(new_value, bool) or new_value < 0 or new_value > settings.max_credits:
        raise ValidationError(f"Credits must be an integer between 0 and {settings.max_credits}")
    with _tx() as conn:
        # the write lock is already held, so the balance cannot move under us
        old = _balance(conn, user_id)
        if abs(new_value - old) > settings.max_single_change:
            raise ValidationError(f"Single change cannot exceed {settings.max_single_change} credits")
        conn.execute("UPDATE users SET credits = ?, updated_at = ? WHERE id = ?", (new_value, _now(), user_id))
        add_ledger_entry(conn, user_id, "admin_set", new_value - old, old, new_value, actor_id=actor_id, note=note)
    logger.info("ledger_set_balance", extra={"user_id": user_id, "admin_user_id": actor_id, "amount": new_value - old})
    return old, new_value


def charge_task(user_id: str, task_id: str, amount: int) -> bool:
    """Charge a task's cost once. False means insufficient funds and nothing changed."""
    try:
        with _tx() as conn:
            cur = conn.execute(
                "UPDATE generation_tasks SET cost = ?, charged_at = ?, updated_at = ? WHERE id = ? AND charged_at IS NULL",
                (amount, _now(), _now(), task_id),
            )
            if cur.rowcount != 1:
                raise ConflictError("Task has already been charged", details={"task_id": task_id})
            if amount > 0 and not _debit_in(conn, user_id, amount, "task_charge", task_id=task_id):
                raise _Declined()
    except _Declined:
        logger.info("ledger_charge_insufficient", extra={"user_id": user_id, "task_id": task_id, "amount": amount})
        return False
    return True


def record_external_usage(task_id: str, units: int) -> None:
    """Stamp a task as paid for outside the ledger (the caller's own vendor key)."""
    with _tx() as conn:
        cur = conn.execute(
            "UPDATE generation_tasks SET cost = ?, charged_at = ?, updated_at = ? WHERE id = ? AND charged_at IS NULL",
            (units, _now(), _now(), task_id),
        )
        if cur.rowcount != 1:
            raise ConflictError("Task has already been charged", details={"task_id": task_id})


def refund_task(task_id: str, amount: int, note: str) -> int:
    """Credit back up to what the task was charged and not yet refunded. Returns the amount refunded."""
    if amount <= 0:
        return 0
    with _tx() as conn:
        task = conn.execute(
            "SELECT user_id, cost, refunded_credits, billing_mode FROM generation_tasks WHERE id = ?",
            (task_id,),
        ).fetchone()
        if task is None:
            raise NotFoundError("Task not found")
        if task["billing_mode"] != "ledger":
            return 0
        refundable = int(task["cost"]) - int(task["refunded_credits"])
        refund = min(amount, refundable)
        if refund <= 0:
            return 0
        conn.execute(
            "UPDATE generation_tasks SET refunded_credits = refunded_credits + ?, updated_at = ? WHERE id = ?",
            (refund, _now(), task_id),
        )
        _credit_in(conn, task["user_id"], refund, "refund", task_id=task_id, note=note)
    logger.info("ledger_refund", extra={"task_id": task_id, "user_id": task["user_id"], "amount": refund})
    return refund


def approve_order(
    order_id: str,
    admin_user_id: str,
    target_user_id: str | None = None,
    credits: int | None = None,
) -> tuple[int, int]:
    """Move a pending order to approved and fulfil it in one transaction. Returns ``(old, new)`` balance."""
    with _tx() as conn:
        order = conn.execute("SELECT * FROM credit_orders WHERE id = ?", (order_id,)).fetchone()
        if order is None:
            raise NotFoundError("Order not found")
        if target_user_id and target_user_id != order["user_id"]:
            raise ValidationError("Target user does not own this order", details={"order_user_id": order["user_id"]})
        amount = int(order["credits"]) if credits is None else credits
        if not isinstance(amount, int) or amount < 0 or amount > settings.max_credits:
            raise ValidationError("Invalid credit amount")

        cur = conn.execute(
            """
            UPDATE credit_orders
            SET status = 'approved', credits = ?, processed_by = ?, processed_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (amount, admin_user_id, _now(), order_id),
        )
        if cur.rowcount != 1:
            raise ConflictError(f"Order is already {order['status']}", details={"status": order["status"]})

        old = _balance(conn, order["user_id"])
        new = old
        if amount > 0:
            if amount > settings.max_single_change:
                raise ValidationError(f"Single change cannot exceed {settings.max_single_change} credits")
            new = _credit_in(
                conn,
                order["user_id"],
                amount,
                "order_approved",
                actor_id=admin_user_id,
                order_id=order_id,
                note="credit order approved",
            )
    logger.info("order_approved", extra={"order_id": order_id, "admin_user_id": admin_user_id, "amount": amount})
    return old, new
