"""
Authentication utilities for bearer JWT verification.
"""
import jwt
from fastapi import HTTPException, status

from app.core import config


def verify_jwt_token(token: str) -> dict:
    """
    Verify a signed JWT and return its payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload containing user information

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"verify_exp": True}
        )

        return payload

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def user_id_from_payload(payload: dict) -> str | None:
    """The user id carried by a token: ``sub``, or ``userId`` for older issuers."""
    return payload.get("sub") or payload.get("userId")


def create_access_token(user_id: str, **claims) -> str:
    """Issue a token for ``user_id``. Used by the seed script and tests."""
    return jwt.encode({"sub": user_id, **claims}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
