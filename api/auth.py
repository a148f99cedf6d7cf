"""
Role check for the underwriting decision routes.

The dashboard forwards the signed-in staff member's role in `X-User-Role`.
Disabled in development via AUTH_ENABLED=false, where every caller acts as admin.
"""
from typing import Optional

import structlog
from fastapi import Header, HTTPException

from config import settings

logger = structlog.get_logger()


async def require_decision_role(x_user_role: Optional[str] = Header(None)) -> str:
    """FastAPI dependency: returns the caller's role or rejects roles without decision access."""
    if not settings.auth_enabled:
        return "admin"

    role = (x_user_role or "").strip().lower()
    if not role:
        raise HTTPException(status_code=401, detail="Missing user role")
    if role not in settings.allowed_decision_roles:
        logger.warning("decision_access_denied", role=role)
        raise HTTPException(
            status_code=403,
            detail="Underwriting decisions are only accessible to admin and underwriting staff",
        )
    return role
