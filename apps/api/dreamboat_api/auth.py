"""
Authentication

Bearer token verification. The identity provider issues the tokens;
this module only checks them and extracts the subject.
"""

import logging

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str, settings: Settings) -> dict:
    """
    Verify a bearer token and return its claims.

    Raises:
        JWTError: bad signature, expired token or wrong issuer/audience
    """
    options = {"verify_aud": settings.auth_jwt_audience is not None}
    return jwt.decode(
        token,
        settings.auth_jwt_key,
        algorithms=settings.auth_jwt_algorithms,
        audience=settings.auth_jwt_audience,
        issuer=settings.auth_jwt_issuer,
        options=options,
    )


async def get_current_owner(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    """FastAPI dependency returning the authenticated owner id."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = decode_token(credentials.credentials, settings)
    except JWTError as e:
        logger.info(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = claims.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")
    return subject


async def require_worker(
    x_worker_token: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard for worker callback routes."""
    if x_worker_token != settings.worker_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid worker token")
