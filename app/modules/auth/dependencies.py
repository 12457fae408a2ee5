"""Authentication dependencies for the admin API.

Provides get_current_admin and require_roles for protecting routes.
"""

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import verify_access_token
from app.models.admin import AdminProfile, AdminRole
from app.modules.security.allowlist import check_allowlist, get_client_ip

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> AdminProfile:
    """
    FastAPI dependency to get the currently authenticated admin.

    Validates the bearer token, loads the active admin and enforces the IP
    allowlist on every request.

    Raises:
        HTTPException: 401 if not authenticated, 403 if inactive or IP not allowlisted

    Usage:
        @router.get("/me")
        async def me(admin: AdminProfile = Depends(get_current_admin)):
            return {"email": admin.email}
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("No token provided")

    claims = verify_access_token(credentials.credentials)
    if not claims:
        raise _unauthorized("Invalid or expired token")

    try:
        admin_id = UUID(claims["sub"])
    except (KeyError, ValueError):
        raise _unauthorized("Invalid or expired token")

    result = await db.execute(select(AdminProfile).where(AdminProfile.id == admin_id))
    admin = result.scalar_one_or_none()

    if not admin:
        raise _unauthorized("Admin not found")

    if not admin.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin account is inactive")

    decision = await check_allowlist(db, admin.id, get_client_ip(request))
    if not decision.allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)

    # Used as the audit session_id
    request.state.token_id = claims.get("jti")
    return admin


def require_roles(*roles: AdminRole):
    """
    Dependency factory restricting a route to some roles.

    super_admin passes every role check.

    Usage:
        @router.get("/abuse-alerts")
        async def list_alerts(admin: AdminProfile = Depends(require_roles(AdminRole.OPS))):
            ...
    """
    allowed = {role.value if isinstance(role, AdminRole) else role for role in roles}

    async def _check_role(admin: AdminProfile = Depends(get_current_admin)) -> AdminProfile:
        if admin.is_super_admin or admin.role in allowed:
            return admin
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )

    return _check_role
