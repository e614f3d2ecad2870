"""Signed bearer tokens: ``<payload>.<signature>``, both base64url without padding."""

import base64
import binascii
import hashlib
import hmac
import json
import time

from config import settings

BEARER_PREFIX = "bearer "


def _encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _signature(body: str, secret: str | None = None) -> bytes:
    key = (secret or settings.token_secret).encode("utf-8")
    return hmac.new(key, body.encode("ascii"), hashlib.sha256).digest()


def create_token(user_id: int, email: str, ttl_seconds: int | None = None, now: float | None = None) -> str:
    issued = int(now if now is not None else time.time())
    claims = {
        "uid": int(user_id),
        "email": email,
        "iat": issued,
        "exp": issued + int(ttl_seconds or settings.token_ttl_seconds),
    }
    body = _encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}.{_encode(_signature(body))}"


def verify_token(token: str, now: float | None = None) -> dict | None:
    """Claims of a valid, unexpired token; ``None`` otherwise."""
    body, sep, sig = (token or "").partition(".")
    if not sep or not body or not sig:
        return None
    try:
        if not hmac.compare_digest(_signature(body), _decode(sig)):
            return None
        claims = json.loads(_decode(body))
    except (ValueError, UnicodeError, binascii.Error):
        return None
    if not isinstance(claims, dict) or "uid" not in claims:
        return None
    current = now if now is not None else time.time()
    if int(claims.get("exp", 0)) < int(current):
        return None
    return claims


def token_from_header(authorization: str | None) -> str | None:
    """Token part of an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None
