from __future__ import annotations

import hashlib
import hmac
import os

from fastapi import HTTPException, Request

AUTH_COOKIE = "reconboard_auth"


def configured_password() -> str:
    return os.getenv("RECON_PASSWORD", "")


def password_enabled() -> bool:
    return bool(configured_password())


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def check_password(candidate: str) -> bool:
    password = configured_password()
    if not password:
        return True
    return hmac.compare_digest(candidate.encode("utf-8"), password.encode("utf-8"))


def require_auth(request: Request) -> None:
    """Reject requests without the shared-secret cookie when a password is set."""
    password = configured_password()
    if not password:
        return
    cookie = request.cookies.get(AUTH_COOKIE) or ""
    if not hmac.compare_digest(cookie, hash_password(password)):
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": "Login required"},
        )
