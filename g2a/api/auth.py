from __future__ import annotations

import logging
import os
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status

from ..config import get_settings

logger = logging.getLogger(__name__)


class Principal:
    def __init__(self, subject: str | None) -> None:
        self.sub = subject


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None


async def jwt_optional(request: Request) -> Principal | None:
    """Resolve the caller from an optional bearer token.

    Configuration via env:
      - ENFORCE_JWT: when truthy, protected routes need a valid token
      - AUTH_JWT_SECRET: HS256 secret used to verify tokens
      - AUTH_JWT_AUDIENCE / AUTH_JWT_ISSUER: optional claims to validate
    Without enforcement a missing token maps to an anonymous principal so the
    editor can be wired up locally before auth is configured.
    """
    token = _bearer_token(request)
    if not token:
        return None if get_settings().enforce_jwt else Principal("anonymous")

    secret = os.getenv("AUTH_JWT_SECRET")
    if not secret:
        return Principal("dev-user")
    audience = os.getenv("AUTH_JWT_AUDIENCE") or None
    issuer = os.getenv("AUTH_JWT_ISSUER") or None
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            issuer=issuer,
            options={"verify_aud": bool(audience)},
        )
    except jwt.PyJWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None
    return Principal(str(claims.get("sub") or claims.get("subject") or "user"))


async def jwt_required(principal: Principal | None = Depends(jwt_optional)) -> Principal:
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing or invalid token")
    return principal
