"""
Carpool - Security Layer
Re-exports auth dependencies for API modules.
"""
from fastapi import Depends, HTTPException

from app.auth import require_auth
from app.config import settings


def is_admin(user: dict) -> bool:
    return bool(user.get("is_admin")) or user.get("email", "").lower() in settings.ADMIN_EMAILS


async def require_admin(user: dict = Depends(require_auth)) -> dict:
    """Require admin access - the is_admin flag or an email on the admin list."""
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
