"""
waitlist.api.deps — FastAPI dependency injection
=================================================

Bearer tokens are HS256 JWTs issued elsewhere.  ``sub`` carries the
account id; admin tokens additionally carry ``is_admin: true``.
"""

from __future__ import annotations

import os
import uuid
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from waitlist.config import WaitlistConfig, load_config
from waitlist.database.engine import create_db_engine, run_db
from waitlist.services import ban_service
from waitlist.services.log_context import RequestLogger, request_logger

_WEAK_SECRETS = frozenset({
    "waitlist-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> WaitlistConfig:
    return load_config()


def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token") from None


def get_current_account(
    authorization: Annotated[str | None, Header()] = None,
) -> int:
    """Validate JWT and return the account id from ``sub``. Raises 401 if invalid."""
    payload = _decode_bearer(authorization)
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject") from None


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    payload = _decode_bearer(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def admin_actor_id(admin: dict) -> int:
    try:
        return int(admin.get("sub", 0))
    except (TypeError, ValueError):
        return 0


def get_request_log(request: Request) -> RequestLogger:
    """A logger adapter tagged with this request's id."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
    return request_logger("waitlist.api", request_id=request_id)


async def require_active_account(
    account_id: Annotated[int, Depends(get_current_account)],
    engine: Annotated[Engine, Depends(get_engine)],
    log: Annotated[RequestLogger, Depends(get_request_log)],
) -> int:
    """Authenticated account id, after the ban gate has let it through."""
    log.extra["account_id"] = account_id
    result = await run_db(ban_service.check, engine, account_id, log=log)
    result.raise_if_denied()
    return account_id
