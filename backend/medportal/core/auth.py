"""Bearer-token adapter for the external authentication provider.

Sign-in, password reset and token issuance live with the auth provider. This
module only verifies the signed token and turns its claims into a
:class:`~medportal.models.identity.Principal`.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from medportal.core.config import settings
from medportal.models.identity import Principal

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def create_principal_token(
    principal: Principal,
    expires_delta: timedelta | None = None,
    extra_claims: Optional[Mapping[str, Any]] = None,
) -> str:
    """Sign a token for ``principal`` (used by the dev auth shim and tests)."""
    to_encode: dict[str, Any] = {"sub": principal.id}
    if principal.email:
        to_encode["email"] = principal.email
    if principal.display_name:
        to_encode["name"] = principal.display_name
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=12))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_principal(token: str) -> Principal:
    """Decode and verify ``token``; raises JWTError when it is invalid or expired."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise JWTError("token has no subject")
    return Principal(id=subject, email=payload.get("email"), display_name=payload.get("name"))


async def get_optional_principal(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Principal]:
    """Return the current principal, or None when the request is unauthenticated."""
    if not token:
        return None
    try:
        return decode_principal(token)
    except JWTError as exc:
        logger.info("[auth] Rejected bearer token: %s", exc)
        return None


async def get_current_principal(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
