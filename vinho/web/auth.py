"""Access tokens for API requests (HS256 JWTs whose subject is the user id)."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from vinho.config import get_jwt_secret
from vinho.core.errors import AuthenticationError

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days
ACCESS_TOKEN_COOKIE = "vinho-access-token"


def create_access_token(user_id: str, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Issue a token for a user."""
    secret = get_jwt_secret()
    if not secret:
        raise AuthenticationError("VINHO_JWT_SECRET is not configured")
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": user_id, "exp": expire}, secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> str:
    """
    Validate a token and return its user id.

    Raises:
        AuthenticationError: If the token is invalid, expired or has no subject
    """
    secret = get_jwt_secret()
    if not secret:
        raise AuthenticationError("Authentication is not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        raise AuthenticationError(f"Invalid access token: {e}") from e

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Access token has no subject")
    return str(user_id)
