"""
Authentication routes - admin login, logout and profile.

Endpoints:
- POST /api/auth/login - Exchange email + password for a bearer token
- POST /api/auth/logout - Record logout
- GET /api/auth/me - Current admin profile

Every failed login feeds the failed-login flood detector, and a successful
password check still has to pass the IP allowlist.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.middleware import limiter
from app.core.security import create_access_token, verify_password
from app.models.admin import AdminProfile
from app.modules.abuse.detectors import record_failed_login
from app.modules.audit.logger import log_admin_activity
from app.modules.auth.dependencies import get_current_admin
from app.modules.auth.schemas import AdminOut, LoginRequest, LoginResponse
from app.modules.security.allowlist import check_allowlist, get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])

LOGIN_RATE_LIMIT = "10/minute"


@router.post("/login", response_model=LoginResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Admin login.

    Flow:
    1. Missing email/password -> 400
    2. Unknown email or wrong password -> 401, attempt recorded for flood detection
    3. Inactive admin -> 403
    4. IP not allowlisted -> 403, audit admin_login_blocked_ip
    5. Success -> token, last_login_at stamped, audit admin_login
    """
    if not credentials.email or not credentials.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    email = credentials.email.strip().lower()
    client_ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent", "")

    result = await db.execute(select(AdminProfile).where(func.lower(AdminProfile.email) == email))
    admin = result.scalar_one_or_none()

    if not admin or not verify_password(credentials.password, admin.password_hash):
        await record_failed_login(email, client_ip, is_admin=True)
        logger.info(
            "Admin login failed: invalid credentials",
            extra={"client_ip": client_ip},
        )
        raise HTTPException(status_code=401, detail="Invalid login credentials")

    if not admin.is_active:
        raise HTTPException(
            status_code=403,
            detail="Access denied. You are not authorized as an admin.",
        )

    decision = await check_allowlist(db, admin.id, client_ip)
    if not decision.allowed:
        await log_admin_activity(
            admin.id,
            "admin_login_blocked_ip",
            ip=client_ip,
            details={"email": email, "reason": decision.reason},
            user_agent=user_agent,
        )
        raise HTTPException(
            status_code=403,
            detail=decision.reason or "Access denied. Your IP address is not in the allowlist.",
        )

    admin.last_login_at = datetime.utcnow()
    await db.commit()

    token, expires_at = create_access_token(admin.id, admin.role)

    await log_admin_activity(
        admin.id,
        "admin_login",
        ip=client_ip,
        details={"email": email, "user_agent": user_agent, "ip_address": client_ip},
    )

    logger.info(f"Admin logged in: {admin.id}", extra={"admin_id": str(admin.id), "role": admin.role})

    return LoginResponse(
        access_token=token,
        expires_at=expires_at,
        admin=AdminOut.model_validate(admin),
    )


@router.post("/logout")
async def logout(
    request: Request,
    admin: AdminProfile = Depends(get_current_admin),
):
    """
    Log out the current admin.

    Tokens are stateless; the client discards its token. The logout is
    recorded for the audit trail.
    """
    await log_admin_activity(
        admin.id,
        "admin_logout",
        ip=get_client_ip(request),
        session_id=getattr(request.state, "token_id", None),
    )
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me", response_model=AdminOut)
async def me(admin: AdminProfile = Depends(get_current_admin)):
    """Profile of the authenticated admin."""
    return AdminOut.model_validate(admin)
