"""Caller identity: a bearer JWT when present, else the gateway's X-User-ID header."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt
from jose.exceptions import JWTError

from payments.config import Settings
from payments.dependencies import get_app_settings
from payments.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
USER_ID_HEADER = "X-User-ID"

# auto_error=False so the X-User-ID fallback can run
security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, secret: str, ttl: timedelta = timedelta(days=7)) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Optional[Dict]:
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info("JWT decode error: %r token_len=%d", e, len(token))
        return None


async def get_caller_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_app_settings),
) -> str:
    token = (credentials.credentials or "").strip() if credentials else ""

    if token:
        if not settings.jwt_secret:
            raise AuthorizationError("Bearer tokens are not accepted by this service")
        payload = decode_token(token, settings.jwt_secret)
        user_id = payload.get("sub") if payload else None
        if not user_id:
            raise AuthorizationError("Invalid or expired token")
        return str(user_id)

    user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        raise AuthorizationError("Missing caller identity")
    return user_id


def require_owner(caller_id: str, resource_user_id: str) -> None:
    if caller_id != resource_user_id:
        raise AuthorizationError("Unauthorized")
