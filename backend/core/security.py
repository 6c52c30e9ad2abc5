"""
Security utilities for the OA workflow service.

Includes:
- Password hashing with bcrypt
- Access/refresh JWTs carrying the user id and email
- FastAPI dependency resolving the bearer token of a request
"""

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials as HTTPAuthCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel

from app.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
REFRESH_TOKEN_EXPIRE_DAYS = settings.REFRESH_TOKEN_EXPIRE_DAYS

# Only used outside production; validate_secrets() refuses an empty key there
DEVELOPMENT_SECRET_KEY = "oa-development-secret-key-do-not-use-in-production"

security_scheme = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    """Decoded JWT claims."""
    sub: str  # user_id
    email: str
    exp: datetime
    iat: datetime
    type: str  # "access" or "refresh"


def _secret_key() -> str:
    return settings.SECRET_KEY or DEVELOPMENT_SECRET_KEY


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _create_token(user_id: str, email: str, token_type: str, lifetime: timedelta) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "email": email,
        "type": token_type,
        "iat": issued,
        "exp": issued + lifetime,
    }
    return jwt.encode(claims, _secret_key(), algorithm=ALGORITHM)


def create_access_token(user_id: str, email: str) -> str:
    """Short-lived token sent as ``Authorization: Bearer`` on every call."""
    return _create_token(user_id, email, "access", timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user_id: str, email: str) -> str:
    """Long-lived token only accepted by ``POST /auth/refresh``."""
    return _create_token(user_id, email, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))


def verify_token(token: str) -> TokenPayload:
    """
    Decode a token and check its signature, expiry and claims.

    Raises:
        HTTPException: 401 if the token is expired, malformed or incomplete
    """
    try:
        claims = jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")

    if claims.get("sub") is None or claims.get("email") is None:
        raise _unauthorized("Invalid token payload")

    return TokenPayload(
        sub=claims["sub"],
        email=claims["email"],
        exp=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        iat=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
        type=claims.get("type", "access"),
    )


async def get_current_user(
    credentials: HTTPAuthCredentials = Depends(security_scheme),
) -> TokenPayload:
    """
    FastAPI dependency returning the claims of the request's access token.

    Raises:
        HTTPException: If the header is missing or the token is not a valid
            access token
    """
    if not credentials:
        raise _unauthorized("Missing authorization header")

    payload = verify_token(credentials.credentials)
    if payload.type != "access":
        raise _unauthorized("Invalid token type")
    return payload
