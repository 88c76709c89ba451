from __future__ import annotations

import asyncio
import json
import logging
import socket
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from fastapi import Header, HTTPException, status
from pydantic import BaseModel

from signaldesk.config.settings import settings


logger = logging.getLogger(__name__)

_USER_PATH = "/auth/v1/user"


class AuthenticatedUser(BaseModel):
    id: str
    email: str | None = None


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _fetch_identity(token: str) -> dict[str, Any] | None:
    base_url = settings.supabase_url.rstrip("/")
    if not base_url:
        logger.error("Identity provider URL is not configured")
        return None

    request = Request(
        f"{base_url}{_USER_PATH}",
        headers={
            "Authorization": f"Bearer {token}",
            "apikey": settings.supabase_service_key,
        },
    )
    try:
        with urlopen(request, timeout=10) as response:
            payload = json.loads(response.read().decode("utf-8"))
    except HTTPError as exc:
        logger.info("Token rejected by identity provider (%s)", exc.code)
        return None
    except (URLError, json.JSONDecodeError, TimeoutError, socket.timeout):
        logger.warning("Identity provider unreachable", exc_info=True)
        return None
    return payload if isinstance(payload, dict) else None


async def verify_token(token: str) -> AuthenticatedUser | None:
    payload = await asyncio.to_thread(_fetch_identity, token)
    if not payload or not payload.get("id"):
        return None
    return AuthenticatedUser(id=str(payload["id"]), email=payload.get("email"))


async def require_user(authorization: str | None = Header(default=None)) -> AuthenticatedUser:
    token = extract_bearer_token(authorization)
    user = await verify_token(token) if token else None
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user
