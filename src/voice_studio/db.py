import json
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from voice_studio.config import settings


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _expires_at() -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=settings.retention_hours)).isoformat()


def _connect() -> sqlite3.Connection:
    Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
    # autocommit; multi-statement writes go through _tx()
    conn = sqlite3.connect(settings.database_path, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def _conn() -> Iterator[sqlite3.Connection]:
    conn = _connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def _tx() -> Iterator[sqlite3.Connection]:
    """Write transaction holding the database write lock from the first statement."""
    conn = _connect()
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def init_db() -> None:
    with _conn() as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
              id TEXT PRIMARY KEY,
              email TEXT,
              display_name TEXT,
              credits INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
              is_blocked INTEGER NOT NULL DEFAULT 0,
              received_signup_grant INTEGER NOT NULL DEFAULT 0,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS user_roles (
              user_id TEXT NOT NULL,
              role TEXT NOT NULL,
              PRIMARY KEY (user_id, role)
            );

            CREATE TABLE IF NOT EXISTS credit_ledger (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              kind TEXT NOT NULL,
              amount INTEGER NOT NULL,
              balance_before INTEGER NOT NULL,
              balance_after INTEGER NOT NULL,
              actor_id TEXT,
              task_id TEXT,
              order_id TEXT,
              note TEXT,
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS generation_tasks (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL,
              kind TEXT NOT NULL,
              status TEXT NOT NULL,
              input_text TEXT,
              input_file_name TEXT,
              voice_id TEXT,
              voice_name TEXT,
              model TEXT,
              provider TEXT NOT NULL DEFAULT 'minimax',
              settings TEXT,
              billing_mode TEXT NOT NULL DEFAULT 'ledger',
              external_task_id TEXT,
              audio_url TEXT,
              srt_url TEXT,
              json_url TEXT,
              progress INTEGER NOT NULL DEFAULT 0,
              cost INTEGER NOT NULL DEFAULT 0,
              charged_at TEXT,
              refunded_credits INTEGER NOT NULL DEFAULT 0,
              error_message TEXT,
              vendor_deleted_at TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              completed_at TEXT,
              expires_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_tasks_user ON generation_tasks (user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_tasks_external ON generation_tasks (external_task_id);

            CREATE TABLE IF NOT EXISTS credit_packages (
              id TEXT PRIMARY KEY,
              name TEXT NOT NULL,
              credits INTEGER NOT NULL,
              price_usdt REAL NOT NULL,
              description TEXT,
              is_active INTEGER NOT NULL DEFAULT 1,
              sort_order INTEGER NOT NULL DEFAULT 0,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS credit_orders (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL,
              package_id TEXT,
              credits INTEGER NOT NULL,
              amount_usdt REAL NOT NULL,
              network TEXT,
              txid TEXT,
              wallet_address TEXT,
              status TEXT NOT NULL DEFAULT 'pending',
              admin_notes TEXT,
              processed_by TEXT,
              created_at TEXT NOT NULL,
              processed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS user_api_keys (
              user_id TEXT NOT NULL,
              provider TEXT NOT NULL,
              encrypted_key TEXT NOT NULL,
              is_valid INTEGER NOT NULL DEFAULT 1,
              remaining_credits INTEGER,
              last_balance_check TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              PRIMARY KEY (user_id, provider)
            );

            CREATE TABLE IF NOT EXISTS admin_audit_log (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              admin_user_id TEXT NOT NULL,
              action TEXT NOT NULL,
              target_user_id TEXT,
              details TEXT,
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS rate_limits (
              user_id TEXT NOT NULL,
              endpoint TEXT NOT NULL,
              request_count INTEGER NOT NULL DEFAULT 0,
              window_start REAL NOT NULL,
              PRIMARY KEY (user_id, endpoint)
            );
            """
        )


# users


def ensure_user(user_id: str, email: str | None = None, display_name: str | None = None) -> dict:
    """Create the user on first sight and hand out the signup grant exactly once."""
    existing = get_user(user_id)
    if existing:
        return existing

    ts = _now()
    with _tx() as conn:
        cur = conn.execute(
            """
            INSERT INTO users (id, email, display_name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (user_id, email, display_name, ts, ts),
        )
        grant = settings.signup_free_credits
        if cur.rowcount == 1 and grant > 0:
            conn.execute(
                "UPDATE users SET credits = ?, received_signup_grant = 1 WHERE id = ?",
                (grant, user_id),
            )
            add_ledger_entry(conn, user_id, "signup_grant", grant, 0, grant, note="free signup credits")
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return dict(row)


def get_user(user_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return dict(row) if row else None


def update_user_profile(user_id: str, display_name: str) -> None:
    with _conn() as conn:
        conn.execute("UPDATE users SET display_name = ?, updated_at = ? WHERE id = ?", (display_name, _now(), user_id))


def set_user_blocked(user_id: str, blocked: bool) -> bool:
    with _conn() as conn:
        cur = conn.execute(
            "UPDATE users SET is_blocked = ?, updated_at = ? WHERE id = ?",
            (1 if blocked else 0, _now(), user_id),
        )
    return cur.rowcount == 1


def list_users(limit: int = 100, offset: int = 0) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT * FROM users ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
    return [dict(r) for r in rows]


def has_role(user_id: str, role: str) -> bool:
    with _conn() as conn:
        row = conn.execute("SELECT 1 FROM user_roles WHERE user_id = ? AND role = ?", (user_id, role)).fetchone()
    return row is not None


def grant_role(user_id: str, role: str) -> None:
    with _conn() as conn:
        conn.execute("INSERT INTO user_roles (user_id, role) VALUES (?, ?) ON CONFLICT DO NOTHING", (user_id, role))


# ledger rows (balance mutations live in ledger.py)


def add_ledger_entry(
    conn: sqlite3.Connection,
    user_id: str,
    kind: str,
    amount: int,
    balance_before: int,
    balance_after: int,
    actor_id: str | None = None,
    task_id: str | None = None,
    order_id: str | None = None,
    note: str | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO credit_ledger (
          user_id, kind, amount, balance_before, balance_after, actor_id, task_id, order_id, note, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, kind, amount, balance_before, balance_after, actor_id, task_id, order_id, note, _now()),
    )


def list_ledger(user_id: str, limit: int = 20) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT * FROM credit_ledger WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
    return [dict(r) for r in rows]


# generation tasks


def create_task(
    task_id: str,
    user_id: str,
    kind: str,
    billing_mode: str,
    input_text: str | None = None,
    input_file_name: str | None = None,
    voice_id: str | None = None,
    voice_name: str | None = None,
    model: str | None = None,
    task_settings: dict | None = None,
) -> None:
    ts = _now()
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO generation_tasks (
              id, user_id, kind, status, input_text, input_file_name, voice_id, voice_name,
              model, settings, billing_mode, created_at, updated_at
            )
            VALUES (?, ?, ?, 'pending', ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task_id,
                user_id,
                kind,
                input_text,
                input_file_name,
                voice_id,
                voice_name,
                model,
                json.dumps(task_settings or {}),
                billing_mode,
                ts,
                ts,
            ),
        )


def get_task(task_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM generation_tasks WHERE id = ?", (task_id,)).fetchone()
    return dict(row) if row else None


def find_task_for_user(user_id: str, task_ref: str) -> dict | None:
    """Look a task up by local id first, then by the vendor's handle."""
    with _conn() as conn:
        row = conn.execute(
            "SELECT * FROM generation_tasks WHERE user_id = ? AND id = ?",
            (user_id, task_ref),
        ).fetchone()
        if row is None:
            row = conn.execute(
                "SELECT * FROM generation_tasks WHERE user_id = ? AND external_task_id = ? ORDER BY created_at DESC",
                (user_id, task_ref),
            ).fetchone()
    return dict(row) if row else None


def list_tasks(user_id: str, limit: int = 50, offset: int = 0, kind: str | None = None) -> list[dict]:
    sql = "SELECT * FROM generation_tasks WHERE user_id = ?"
    values: list[Any] = [user_id]
    if kind:
        sql += " AND kind = ?"
        values.append(kind)
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
    values.extend([limit, offset])
    with _conn() as conn:
        rows = conn.execute(sql, tuple(values)).fetchall()
    return [dict(r) for r in rows]


def mark_task_processing(task_id: str, external_task_id: str) -> bool:
    # the handle is write-once
    with _conn() as conn:
        cur = conn.execute(
            """
            UPDATE generation_tasks
            SET external_task_id = ?, status = 'processing', updated_at = ?
            WHERE id = ? AND external_task_id IS NULL AND status = 'pending'
            """,
            (external_task_id, _now(), task_id),
        )
    return cur.rowcount == 1


def mark_task_done(
    task_id: str,
    audio_url: str | None = None,
    srt_url: str | None = None,
    json_url: str | None = None,
    voice_id: str | None = None,
) -> bool:
    ts = _now()
    fields = ["status = 'done'", "progress = 100", "updated_at = ?", "completed_at = ?", "expires_at = ?"]
    values: list[Any] = [ts, ts, _expires_at()]

    if audio_url is not None:
        fields.append("audio_url = ?")
        values.append(audio_url)
    if srt_url is not None:
        fields.append("srt_url = ?")
        values.append(srt_url)
    if json_url is not None:
        fields.append("json_url = ?")
        values.append(json_url)
    if voice_id is not None:
        fields.append("voice_id = ?")
        values.append(voice_id)

    values.append(task_id)
    sql = f"UPDATE generation_tasks SET {', '.join(fields)} WHERE id = ? AND status NOT IN ('done', 'failed')"
    with _conn() as conn:
        cur = conn.execute(sql, tuple(values))
    return cur.rowcount == 1


def mark_task_failed(task_id: str, error_message: str) -> bool:
    with _conn() as conn:
        cur = conn.execute(
            """
            UPDATE generation_tasks
            SET status = 'failed', error_message = ?, updated_at = ?
            WHERE id = ? AND status NOT IN ('done', 'failed')
            """,
            (error_message, _now(), task_id),
        )
    return cur.rowcount == 1


def update_task_progress(task_id: str, progress: int) -> None:
    with _conn() as conn:
        conn.execute(
            """
            UPDATE generation_tasks SET progress = ?, updated_at = ?
            WHERE id = ? AND status NOT IN ('done', 'failed')
            """,
            (max(0, min(int(progress), 99)), _now(), task_id),
        )


def mark_vendor_deleted(task_id: str) -> bool:
    with _conn() as conn:
        cur = conn.execute(
            "UPDATE generation_tasks SET vendor_deleted_at = ?, updated_at = ? WHERE id = ? AND vendor_deleted_at IS NULL",
            (_now(), _now(), task_id),
        )
    return cur.rowcount == 1


# packages and orders


def upsert_package(
    package_id: str,
    name: str,
    credits: int,
    price_usdt: float,
    description: str | None = None,
    is_active: bool = True,
    sort_order: int = 0,
) -> None:
    ts = _now()
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO credit_packages (
              id, name, credits, price_usdt, description, is_active, sort_order, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              name = excluded.name,
              credits = excluded.credits,
              price_usdt = excluded.price_usdt,
              description = excluded.description,
              is_active = excluded.is_active,
              sort_order = excluded.sort_order,
              updated_at = excluded.updated_at
            """,
            (package_id, name, credits, price_usdt, description, 1 if is_active else 0, sort_order, ts, ts),
        )


def get_package(package_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM credit_packages WHERE id = ?", (package_id,)).fetchone()
    return dict(row) if row else None


def list_packages(active_only: bool = True) -> list[dict]:
    sql = "SELECT * FROM credit_packages"
    if active_only:
        sql += " WHERE is_active = 1"
    sql += " ORDER BY sort_order, credits"
    with _conn() as conn:
        rows = conn.execute(sql).fetchall()
    return [dict(r) for r in rows]


def create_order(
    order_id: str,
    user_id: str,
    package_id: str | None,
    credits: int,
    amount_usdt: float,
    network: str | None,
    txid: str | None,
    wallet_address: str | None = None,
) -> None:
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO credit_orders (
              id, user_id, package_id, credits, amount_usdt, network, txid, wallet_address, status, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?)
            """,
            (order_id, user_id, package_id, credits, amount_usdt, network, txid, wallet_address, _now()),
        )


def get_order(order_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM credit_orders WHERE id = ?", (order_id,)).fetchone()
    return dict(row) if row else None


def list_orders(user_id: str | None = None, status: str | None = None, limit: int = 100) -> list[dict]:
    clauses: list[str] = []
    values: list[Any] = []
    if user_id:
        clauses.append("user_id = ?")
        values.append(user_id)
    if status:
        clauses.append("status = ?")
        values.append(status)
    sql = "SELECT * FROM credit_orders"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY created_at DESC LIMIT ?"
    values.append(limit)
    with _conn() as conn:
        rows = conn.execute(sql, tuple(values)).fetchall()
    return [dict(r) for r in rows]


def reject_order(order_id: str, admin_user_id: str, notes: str | None) -> bool:
    with _conn() as conn:
        cur = conn.execute(
            """
            UPDATE credit_orders
            SET status = 'rejected', admin_notes = ?, processed_by = ?, processed_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (notes, admin_user_id, _now(), order_id),
        )
    return cur.rowcount == 1


def set_order_notes(order_id: str, notes: str | None) -> None:
    with _conn() as conn:
        conn.execute("UPDATE credit_orders SET admin_notes = ? WHERE id = ?", (notes, order_id))


# vendor api keys (values arrive already encrypted)


def save_api_key(
    user_id: str,
    provider: str,
    encrypted_key: str,
    is_valid: bool,
    remaining_credits: int | None,
) -> None:
    ts = _now()
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO user_api_keys (
              user_id, provider, encrypted_key, is_valid, remaining_credits, last_balance_check, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
              encrypted_key = excluded.encrypted_key,
              is_valid = excluded.is_valid,
              remaining_credits = excluded.remaining_credits,
              last_balance_check = excluded.last_balance_check,
              updated_at = excluded.updated_at
            """,
            (user_id, provider, encrypted_key, 1 if is_valid else 0, remaining_credits, ts, ts, ts),
        )


def get_api_key_row(user_id: str, provider: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute(
            "SELECT * FROM user_api_keys WHERE user_id = ? AND provider = ?",
            (user_id, provider),
        ).fetchone()
    return dict(row) if row else None


def update_api_key_balance(user_id: str, provider: str, remaining_credits: int | None, is_valid: bool) -> None:
    with _conn() as conn:
        conn.execute(
            """
            UPDATE user_api_keys
            SET remaining_credits = ?, is_valid = ?, last_balance_check = ?, updated_at = ?
            WHERE user_id = ? AND provider = ?
            """,
            (remaining_credits, 1 if is_valid else 0, _now(), _now(), user_id, provider),
        )


def delete_api_key(user_id: str, provider: str) -> bool:
    with _conn() as conn:
        cur = conn.execute("DELETE FROM user_api_keys WHERE user_id = ? AND provider = ?", (user_id, provider))
    return cur.rowcount > 0


# admin audit


def log_admin_action(
    admin_user_id: str,
    action: str,
    target_user_id: str | None = None,
    details: dict | None = None,
    conn: sqlite3.Connection | None = None,
) -> None:
    sql = """
        INSERT INTO admin_audit_log (admin_user_id, action, target_user_id, details, created_at)
        VALUES (?, ?, ?, ?, ?)
    """
    values = (admin_user_id, action, target_user_id, json.dumps(details or {}), _now())
    if conn is not None:
        conn.execute(sql, values)
        return
    with _conn() as own:
        own.execute(sql, values)


def list_admin_actions(limit: int = 100) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute("SELECT * FROM admin_audit_log ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    out = []
    for r in rows:
        item = dict(r)
        item["details"] = json.loads(item["details"] or "{}")
        out.append(item)
    return out


def get_dashboard_stats() -> dict:
    with _conn() as conn:
        users = conn.execute("SELECT COUNT(*) c, COALESCE(SUM(credits), 0) s FROM users").fetchone()
        blocked = conn.execute("SELECT COUNT(*) c FROM users WHERE is_blocked = 1").fetchone()["c"]
        by_status = conn.execute("SELECT status, COUNT(*) c FROM generation_tasks GROUP BY status").fetchall()
        charged = conn.execute("SELECT COALESCE(SUM(cost - refunded_credits), 0) s FROM generation_tasks").fetchone()["s"]
        pending_orders = conn.execute("SELECT COUNT(*) c FROM credit_orders WHERE status = 'pending'").fetchone()["c"]
        approved = conn.execute(
            "SELECT COUNT(*) c, COALESCE(SUM(amount_usdt), 0) s FROM credit_orders WHERE status = 'approved'"
        ).fetchone()

    return {
        "user_count": users["c"],
        "blocked_user_count": blocked,
        "outstanding_credits": users["s"],
        "tasks_by_status": {r["status"]: r["c"] for r in by_status},
        "credits_charged": charged,
        "pending_order_count": pending_orders,
        "approved_order_count": approved["c"],
        "approved_revenue_usdt": round(float(approved["s"]), 2),
    }


# rate limit windows


def hit_rate_limit(user_id: str, endpoint: str, window_sec: int, now: float | None = None) -> int:
    """Count one request in the caller's window and return the count so far, atomically."""
    now = time.time() if now is None else now
    stale_before = now - window_sec
    with _tx() as conn:
        conn.execute(
            """
            INSERT INTO rate_limits (user_id, endpoint, request_count, window_start)
            VALUES (?, ?, 1, ?)
            ON CONFLICT(user_id, endpoint) DO UPDATE SET
              request_count = CASE WHEN rate_limits.window_start <= ? THEN 1 ELSE rate_limits.request_count + 1 END,
              window_start = CASE WHEN rate_limits.window_start <= ? THEN excluded.window_start
                                  ELSE rate_limits.window_start END
            """,
            (user_id, endpoint, now, stale_before, stale_before),
        )
        row = conn.execute(
            "SELECT request_count FROM rate_limits WHERE user_id = ? AND endpoint = ?",
            (user_id, endpoint),
        ).fetchone()
    return int(row["request_count"])


def cleanup_rate_limits(older_than_sec: int, now: float | None = None) -> int:
    now = time.time() if now is None else now
    with _conn() as conn:
        cur = conn.execute("DELETE FROM rate_limits WHERE window_start < ?", (now - older_than_sec,))
    return cur.rowcount
