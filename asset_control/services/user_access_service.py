from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import threading
import time
from typing import Any


SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS") or str(60 * 60 * 12))

_LOCK = threading.Lock()
_REVOKED: dict[str, float] = {}


def _require_session_secret() -> bytes:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw.encode("utf-8")


_SESSION_SECRET = _require_session_secret()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _sign(encoded: str) -> bytes:
    return hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()


def create_session(principal_id: int, ttl_seconds: int | None = None) -> str:
    """Issue a signed token that identifies a principal.

    The payload holds the principal id and expiry only. Admin flags and role
    grants are looked up again on every authorization check.
    """
    payload = {
        "userID": int(principal_id),
        "expiresAt": time.time() + (ttl_seconds if ttl_seconds is not None else SESSION_TTL_SECONDS),
    }
    body = json.dumps(payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = _b64encode(body)
    return f"{encoded}.{_b64encode(_sign(encoded))}"


def _decode(token: str) -> dict[str, Any] | None:
    try:
        encoded, encoded_sig = token.split(".", 1)
        supplied_sig = _b64decode(encoded_sig)
        if not hmac.compare_digest(_sign(encoded), supplied_sig):
            return None
        payload = json.loads(_b64decode(encoded).decode("utf-8"))
    except (ValueError, UnicodeError):
        return None
    return payload if isinstance(payload, dict) else None


def _prune_revoked_unlocked(now: float) -> None:
    for token, expires_at in list(_REVOKED.items()):
        if now >= expires_at:
            _REVOKED.pop(token, None)


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    payload = _decode(token)
    if payload is None:
        return None

    now = time.time()
    try:
        expires_at = float(payload.get("expiresAt") or 0.0)
        principal_id = int(payload.get("userID") or 0)
    except (TypeError, ValueError):
        return None
    if now >= expires_at or principal_id <= 0:
        return None

    with _LOCK:
        _prune_revoked_unlocked(now)
        if token in _REVOKED:
            return None
    return {"userID": principal_id, "expiresAt": expires_at}


def remove_session(token: str | None) -> None:
    if not token:
        return
    payload = _decode(token)
    if payload is None:
        return
    try:
        expires_at = float(payload.get("expiresAt") or 0.0)
    except (TypeError, ValueError):
        return
    now = time.time()
    if expires_at <= now:
        return
    with _LOCK:
        _prune_revoked_unlocked(now)
        _REVOKED[token] = expires_at
