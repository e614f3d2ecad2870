import base64
import hashlib
import hmac
import logging
import os
from typing import Any

from config import settings
from db import get_conn

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 260_000


def _norm_email(email: str) -> str:
    return (email or "").strip().lower()


def _hash_password(password: str) -> str:
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return (
        f"pbkdf2_sha256${PBKDF2_ITERATIONS}$"
        f"{base64.b64encode(salt).decode('ascii')}$"
        f"{base64.b64encode(dk).decode('ascii')}"
    )


def _verify_password(password: str, encoded: str) -> bool:
    try:
        algo, iters, b64_salt, b64_hash = encoded.split("$", 3)
    except ValueError:
        return False
    if algo != "pbkdf2_sha256":
        return False
    salt = base64.b64decode(b64_salt.encode("ascii"))
    expected = base64.b64decode(b64_hash.encode("ascii"))
    got = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, int(iters))
    return hmac.compare_digest(got, expected)


def create_user(email: str, password: str, display_name: str | None = None, role: str = "user") -> dict[str, Any]:
    email_n = _norm_email(email)
    if "@" not in email_n:
        raise ValueError("Informe um e-mail válido.")
    if len(password or "") < 6:
        raise ValueError("A senha deve ter pelo menos 6 caracteres.")
    conn = get_conn()
    conn.execute(
        "INSERT INTO users(email, password_hash, display_name, role, is_active) VALUES (?, ?, ?, ?, TRUE)",
        (email_n, _hash_password(password), (display_name or "").strip() or None, role),
    )
    conn.commit()
    row = conn.execute(
        "SELECT id, email, display_name, role, is_active, created_at FROM users WHERE email = ?",
        (email_n,),
    ).fetchone()
    conn.close()
    return dict(row)


def ensure_bootstrap_admin() -> None:
    if not settings.admin_password:
        logger.info("ADMIN_BOOTSTRAP_PASSWORD não definido; admin inicial não criado.")
        return
    email = _norm_email(settings.admin_email)
    conn = get_conn()
    row = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
    if not row:
        conn.execute(
            "INSERT INTO users(email, password_hash, display_name, role, is_active) VALUES (?, ?, ?, 'admin', TRUE)",
            (email, _hash_password(settings.admin_password), settings.admin_name),
        )
        logger.info("Admin inicial %s criado.", email)
    conn.commit()
    conn.close()


def get_user_by_id(user_id: int) -> dict[str, Any] | None:
    conn = get_conn()
    row = conn.execute(
        "SELECT id, email, display_name, role, is_active, created_at FROM users WHERE id = ?",
        (int(user_id),),
    ).fetchone()
    conn.close()
    return dict(row) if row else None


def authenticate_user(email: str, password: str) -> dict[str, Any] | None:
    conn = get_conn()
    row = conn.execute(
        "SELECT id, email, display_name, role, is_active, created_at, password_hash FROM users WHERE email = ?",
        (_norm_email(email),),
    ).fetchone()
    conn.close()
    if not row or not bool(row["is_active"]):
        return None
    if not _verify_password(password, row["password_hash"]):
        return None
    user = dict(row)
    user.pop("password_hash", None)
    return user
