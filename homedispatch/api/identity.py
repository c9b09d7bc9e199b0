import logging

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from homedispatch.domain.actors import Actor
from homedispatch.infra.auth import PARTY_ROLES, decode_access_token
from homedispatch.settings import settings

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Invalid authentication") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Actor:
    cached: Actor | None = getattr(request.state, "actor", None)
    if cached:
        return cached
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Missing bearer token")
    try:
        claims = decode_access_token(credentials.credentials, settings.auth_secret_key)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthorized()

    subject = claims.get("sub")
    role = claims.get("role")
    if not subject or role not in PARTY_ROLES:
        logger.warning("auth_token_claims_invalid", extra={"extra": {"role": str(role)}})
        raise _unauthorized()
    actor = Actor(actor_id=str(subject), role=role)
    request.state.actor = actor
    return actor
