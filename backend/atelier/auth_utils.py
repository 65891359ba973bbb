from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt, JWTError

SECRET = os.getenv("SECRET_KEY", "dev_change_me")
ALGO = "HS256"
TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL", str(60 * 60 * 24)))


def create_access_token(user_id: int, role: str, ttl_seconds: int | None = None) -> str:
    exp = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds or TTL_SECONDS)
    payload = {"sub": str(user_id), "role": role, "exp": int(exp.timestamp())}
    return jwt.encode(payload, SECRET, algorithm=ALGO)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, SECRET, algorithms=[ALGO])
    except JWTError as e:
        raise ValueError(f"invalid token: {e}")
    if not payload.get("sub"):
        raise ValueError("invalid token payload")
    return payload
