"""Password hashing and JWT token helpers."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt

from config import (
    ACCESS_TOKEN_TTL_MINUTES,
    JWT_ALGORITHM,
    JWT_REFRESH_SECRET,
    JWT_SECRET,
    REFRESH_TOKEN_TTL_DAYS,
)
from errors import AuthenticationError


def hash_password(password: str) -> str:
    """Hash a password with bcrypt (cost 10)."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _encode(claims: Dict[str, Any], secret: str, token_type: str, ttl: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "type": token_type, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def generate_tokens(user_id: str, email: str, role: str) -> Dict[str, str]:
    """
    Issue an access/refresh token pair.

    Args:
        user_id: User identifier
        email: User email
        role: User role

    Returns:
        Dict with accessToken and refreshToken
    """
    claims = {"id": user_id, "email": email, "role": role}
    return {
        "accessToken": _encode(claims, JWT_SECRET, "access", timedelta(minutes=ACCESS_TOKEN_TTL_MINUTES)),
        "refreshToken": _encode(claims, JWT_REFRESH_SECRET, "refresh", timedelta(days=REFRESH_TOKEN_TTL_DAYS)),
    }


def _decode(token: str, secret: str, token_type: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid token") from e

    if payload.get("type") != token_type or not payload.get("id"):
        raise AuthenticationError("Invalid token")
    return payload


def decode_access_token(token: str) -> Dict[str, Any]:
    return _decode(token, JWT_SECRET, "access")


def decode_refresh_token(token: str) -> Dict[str, Any]:
    return _decode(token, JWT_REFRESH_SECRET, "refresh")
