from __future__ import annotations

from dataclasses import dataclass
import logging
import time

import jwt

from slanglab.core.config import get_settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthIdentity:
    user_id: str
    email: str | None = None


def resolve_identity(token: str) -> AuthIdentity | None:
    """Verify an access token issued by the auth provider.

    Returns ``None`` for any token that fails verification; the caller decides
    whether that is a 401 or an anonymous request. This service never issues
    tokens itself.
    """
    settings = get_settings()
    options = {"require": ["sub", "exp"]}
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options=options if settings.auth_jwt_audience else {**options, "verify_aud": False},
        )
    except jwt.PyJWTError as exc:
        logger.info("auth_token_rejected reason=%s", type(exc).__name__)
        return None
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        return None
    email = claims.get("email")
    return AuthIdentity(user_id=subject, email=email if isinstance(email, str) else None)


def issue_token(user_id: str, *, email: str | None = None, expires_in_s: int = 3600) -> str:
    # Local tokens for scripts and tests; production tokens come from the auth provider.
    settings = get_settings()
    now = int(time.time())
    claims = {"sub": user_id, "iat": now, "exp": now + expires_in_s}
    if email:
        claims["email"] = email
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience
    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)
