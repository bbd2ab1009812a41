"""Bearer token verification."""
from dataclasses import dataclass
from typing import Optional

import jwt

from app.config import Settings
from app.core.errors import AuthError


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity extracted from a verified access token."""

    id: str
    email: str


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthError("No authorization header provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must use the Bearer scheme")
    return token.strip()


def decode_access_token(token: str, settings: Settings) -> AuthenticatedUser:
    """
    Verify signature and expiry, then read `sub` and `email`.

    Raises:
        AuthError: If the token is invalid or carries no email
    """
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except jwt.PyJWTError as e:
        raise AuthError("Authentication error", str(e)) from e

    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        raise AuthError("User not authenticated or email not available")
    return AuthenticatedUser(id=str(user_id), email=str(email))


def create_access_token(user_id: str, email: str, settings: Settings, **claims) -> str:
    """Issue a token in the shape the auth provider uses. Handy for local runs and tests."""
    payload = {"sub": user_id, "email": email, **claims}
    if settings.JWT_AUDIENCE and "aud" not in payload:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
