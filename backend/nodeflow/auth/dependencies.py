"""
JWT verification dependencies for FastAPI.
Validates Supabase-issued JWT tokens on protected endpoints.
"""

import os
import logging
from typing import Optional
from functools import lru_cache
from fastapi import HTTPException, status, Header
from pydantic import BaseModel
import jwt
from jwt import PyJWKClient

logger = logging.getLogger(__name__)


class User(BaseModel):
    """User information extracted from JWT."""
    sub: str  # User ID (subject)
    email: Optional[str] = None
    role: Optional[str] = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_supabase_jwks_url() -> str:
    """JWKS endpoint: https://<project-ref>.supabase.co/auth/v1/.well-known/jwks.json"""
    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    if not supabase_url:
        raise ValueError("SUPABASE_URL environment variable is required")
    return f"{supabase_url}/auth/v1/.well-known/jwks.json"


@lru_cache(maxsize=1)
def get_jwks_client() -> PyJWKClient:
    """Get or create cached JWKS client."""
    jwks_url = get_supabase_jwks_url()
    logger.info("JWKS URL: %s", jwks_url)
    return PyJWKClient(jwks_url)


def get_jwt_issuer() -> str:
    """JWT issuer from the environment, inferred from SUPABASE_URL when unset."""
    issuer = os.getenv("SUPABASE_JWT_ISSUER")
    if issuer:
        return issuer
    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    if supabase_url:
        return f"{supabase_url}/auth/v1"
    raise ValueError("SUPABASE_JWT_ISSUER or SUPABASE_URL environment variable is required")


def get_jwt_audience() -> str:
    return os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")


def verify_jwt(token: str) -> User:
    """
    Verify a Supabase JWT token and extract user information.

    Raises:
        HTTPException: 401 if the token is invalid, expired, or cannot be verified
    """
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)

        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=get_jwt_audience(),
            issuer=get_jwt_issuer(),
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")
    except Exception as e:
        # JWKS fetch errors and misconfiguration
        logger.error("Token verification failed: %s", e)
        raise _unauthorized(f"Token verification failed: {str(e)}")

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Token missing 'sub' claim")

    return User(
        sub=user_id,
        email=payload.get("email"),
        role=payload.get("role", "authenticated"),
    )


async def get_current_user(
    authorization: Optional[str] = Header(None, description="Bearer token"),
) -> User:
    """
    FastAPI dependency to extract and verify JWT token from Authorization header.

    Usage:
        @router.get("/protected")
        async def protected_endpoint(user: User = Depends(get_current_user)):
            return {"user_id": user.sub}
    """
    if not authorization:
        raise _unauthorized("Authorization header is required")
    if not authorization.startswith("Bearer "):
        raise _unauthorized("Authorization header must start with 'Bearer '")

    token = authorization[7:].strip()
    if not token:
        raise _unauthorized("Token is required")

    return verify_jwt(token)
