from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

PARTY_ROLES = ("customer", "provider")


def create_access_token(subject: str, role: str, ttl_minutes: int, settings) -> str:
    if role not in PARTY_ROLES:
        raise ValueError(f"Unsupported role: {role}")
    issued = datetime.now(tz=timezone.utc)
    payload: Dict[str, Any] = {
        "sub": subject,
        "role": role,
        "exp": issued + timedelta(minutes=ttl_minutes),
        "iat": issued,
    }
    return jwt.encode(payload, settings.auth_secret_key, algorithm="HS256")


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    return jwt.decode(token, secret, algorithms=["HS256"])
