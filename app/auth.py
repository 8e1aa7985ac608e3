"""
Carpool - Authentication
JWT session tokens. Accounts are created by the identity provider, which signs
tokens with the shared SECRET_KEY; this service only validates them and loads
the member record.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Depends
from pydantic import BaseModel
import jwt
import structlog

from app.config import settings
from app.db import get_session

logger = structlog.get_logger()

router = APIRouter(prefix="/v1/auth", tags=["auth"])

JWT_ALGORITHM = "HS256"
COOKIE_NAME = "access_token"


# ===========================================
# Models
# ===========================================

class UserResponse(BaseModel):
    id: str
    email: str
    full_name: str
    trust_score: int
    is_admin: bool


class TokenData(BaseModel):
    user_id: str
    email: str


# ===========================================
# JWT Token Helpers
# ===========================================

def decode_access_token(token: str) -> Optional[TokenData]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[JWT_ALGORITHM])
        return TokenData(user_id=payload["user_id"], email=payload["email"])
    except jwt.ExpiredSignatureError:
        logger.debug("token_expired")
        return None
    except (jwt.InvalidTokenError, KeyError):
        return None


def _token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


# ===========================================
# Database Operations
# ===========================================

def get_user_by_id(user_id: str) -> Optional[dict]:
    """Active (not soft-deleted) user node, or None."""
    with get_session() as session:
        record = session.run("""
            MATCH (u:User {id: $user_id})
            WHERE u.deleted_at IS NULL
            RETURN u {.*} as user
        """, user_id=user_id).single()
        return dict(record["user"]) if record else None


# ===========================================
# Auth Dependency
# ===========================================

async def get_current_user(request: Request) -> Optional[dict]:
    """Get current user from JWT cookie or Authorization header."""
    token = _token_from_request(request)
    if not token:
        return None

    token_data = decode_access_token(token)
    if not token_data:
        return None

    return get_user_by_id(token_data.user_id)


async def require_auth(request: Request) -> dict:
    """Require authentication - raises 401 if not logged in."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


# ===========================================
# Endpoints
# ===========================================

@router.get("/me", response_model=UserResponse)
async def get_me(user: dict = Depends(require_auth)):
    return UserResponse(
        id=user["id"],
        email=user.get("email", ""),
        full_name=user.get("full_name", ""),
        trust_score=user.get("trust_score", 0) or 0,
        is_admin=bool(user.get("is_admin", False)),
    )

