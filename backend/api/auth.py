"""Signed session tokens identifying the tenant user behind each request."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import time
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

router = APIRouter()

AUTH_COOKIE_NAME = "adrevenue_auth"
TOKEN_TTL_SECONDS_DEFAULT = 12 * 60 * 60


class LoginRequest(BaseModel):
    username: str
    password: str


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _auth_users() -> dict[str, str]:
    # AUTH_USERS="user-1:secret,user-2:other"
    users: dict[str, str] = {}
    for pair in os.environ.get("AUTH_USERS", "").split(","):
        if ":" not in pair:
            continue
        user_id, password = pair.split(":", 1)
        if user_id.strip():
            users[user_id.strip()] = password
    return users


def _auth_secret() -> str:
    return os.environ.get("AUTH_SECRET_KEY", "").strip()


def _token_ttl_seconds() -> int:
    try:
        hours = int(os.environ.get("AUTH_SESSION_TTL_HOURS", "12"))
        if hours <= 0:
            return TOKEN_TTL_SECONDS_DEFAULT
        return hours * 60 * 60
    except ValueError:
        return TOKEN_TTL_SECONDS_DEFAULT


def is_auth_enabled() -> bool:
    return _bool_env("AUTH_ENABLED", default=True)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(payload_part: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload_part.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def issue_token(user_id: str) -> str:
    secret = _auth_secret()
    if not secret:
        raise HTTPException(status_code=500, detail="AUTH_SECRET_KEY is required when AUTH_ENABLED=true")

    now = int(time.time())
    payload = {"sub": user_id, "iat": now, "exp": now + _token_ttl_seconds()}
    payload_part = _b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{payload_part}.{_sign(payload_part, secret)}"


def validate_token(token: str) -> dict[str, Any] | None:
    token = str(token or "").strip()
    if not token or "." not in token:
        return None

    payload_part, sig_part = token.split(".", 1)
    secret = _auth_secret()
    if not secret:
        return None
    if not hmac.compare_digest(sig_part, _sign(payload_part, secret)):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_part).decode("utf-8"))
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    if int(payload.get("exp", 0) or 0) <= int(time.time()):
        return None
    if not str(payload.get("sub", "")).strip():
        return None
    return payload


def extract_request_token(request: Request) -> str:
    auth_header = str(request.headers.get("authorization", "")).strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return str(request.cookies.get(AUTH_COOKIE_NAME) or "").strip()


def require_user(request: Request) -> str:
    """FastAPI dependency returning the authenticated user id."""
    if not is_auth_enabled():
        dev_user = os.environ.get("DEV_USER_ID", "").strip()
        if not dev_user:
            raise HTTPException(status_code=401, detail="DEV_USER_ID is required when AUTH_ENABLED=false")
        return dev_user

    payload = validate_token(extract_request_token(request))
    if not payload:
        raise HTTPException(status_code=401, detail="Missing authorization")
    return str(payload["sub"])


@router.post("/login")
async def login(body: LoginRequest, response: Response):
    if not is_auth_enabled():
        raise HTTPException(status_code=400, detail="Auth is disabled")

    expected_password = _auth_users().get(body.username.strip())
    password_ok = expected_password is not None and hmac.compare_digest(body.password, expected_password)
    if not password_ok:
        raise HTTPException(status_code=401, detail="Invalid username or password")

    token = issue_token(body.username.strip())
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=_bool_env("AUTH_COOKIE_SECURE", default=False),
        samesite="lax",
        max_age=_token_ttl_seconds(),
        path="/",
    )
    return {"ok": True, "user": {"id": body.username.strip()}, "token": token, "expires_in": _token_ttl_seconds()}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(key=AUTH_COOKIE_NAME, path="/")
    return {"ok": True}
