"""Admin activity log browsing (super_admin only)."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.admin import AdminProfile, AdminRole
from app.models.admin_activity import AdminActivityLog
from app.modules.auth.dependencies import require_roles
from app.modules.security.routes import Pagination, paginate
from app.modules.security.schemas import ActivityLogOut

router = APIRouter(prefix="/api/activity-log", tags=["audit"])


@router.get("")
async def list_activity_log(
    admin_id: Optional[UUID] = None,
    action: Optional[str] = None,
    severity: Optional[str] = None,
    pagination: Pagination = Depends(),
    admin: AdminProfile = Depends(require_roles(AdminRole.SUPER_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    """Audit trail, newest first, filterable by admin, action and severity."""
    stmt = select(AdminActivityLog)
    if admin_id:
        stmt = stmt.where(AdminActivityLog.admin_id == admin_id)
    if action:
        stmt = stmt.where(AdminActivityLog.action == action)
    if severity:
        stmt = stmt.where(AdminActivityLog.severity == severity)

    rows, meta = await paginate(db, stmt, AdminActivityLog.created_at.desc(), pagination)
    return {"activities": [ActivityLogOut.model_validate(r) for r in rows], **meta}
