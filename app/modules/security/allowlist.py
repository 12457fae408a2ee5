"""
Two-tier IP allowlist for admin access.

Resolution order:
1. Global entries, when any are active, are authoritative: a match allows,
   a miss denies, and per-admin entries are never consulted.
2. Otherwise the admin's own entries decide the same way.
3. With nothing configured the check allows (the feature is opt-in).

Storage errors fail OPEN so a database hiccup never locks admins out.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence
from uuid import UUID

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.failure_policy import FAIL_OPEN, evaluate_with_fallback
from app.models.ip_allowlist import AllowlistEntry, AllowlistScope
from app.modules.security.ip_matching import matches_any

logger = logging.getLogger(__name__)

ALLOWLIST_FAILURE_POLICY = FAIL_OPEN

REASON_NO_IP = "Unable to determine IP address"
REASON_GLOBAL = "Access denied. Your IP address is not in the global allowlist."
REASON_ADMIN = "Access denied. Your IP address is not in your personal allowlist."


@dataclass(frozen=True)
class AllowlistDecision:
    allowed: bool
    reason: Optional[str] = None


def evaluate_allowlist(
    client_ip: Optional[str],
    global_entries: Sequence,
    admin_entries: Sequence,
) -> AllowlistDecision:
    """
    Decide access from the two fetched allowlist slices.

    Args:
        client_ip: Caller IPv4 address
        global_entries: Active global entries (AllowlistEntry or raw strings)
        admin_entries: Active entries for the admin (AllowlistEntry or raw strings)

    Returns:
        AllowlistDecision
    """
    if not client_ip:
        return AllowlistDecision(allowed=False, reason=REASON_NO_IP)

    if global_entries:
        if matches_any(client_ip, global_entries):
            return AllowlistDecision(allowed=True)
        return AllowlistDecision(allowed=False, reason=REASON_GLOBAL)

    if admin_entries:
        if matches_any(client_ip, admin_entries):
            return AllowlistDecision(allowed=True)
        return AllowlistDecision(allowed=False, reason=REASON_ADMIN)

    return AllowlistDecision(allowed=True)


async def load_global_entries(session: AsyncSession) -> list[AllowlistEntry]:
    result = await session.execute(
        select(AllowlistEntry).where(
            AllowlistEntry.scope == AllowlistScope.GLOBAL.value,
            AllowlistEntry.is_active.is_(True),
        )
    )
    return list(result.scalars().all())


async def load_admin_entries(session: AsyncSession, admin_id: UUID) -> list[AllowlistEntry]:
    result = await session.execute(
        select(AllowlistEntry).where(
            AllowlistEntry.scope == AllowlistScope.ADMIN.value,
            AllowlistEntry.admin_id == admin_id,
            AllowlistEntry.is_active.is_(True),
        )
    )
    return list(result.scalars().all())


async def check_allowlist(
    session: AsyncSession,
    admin_id: UUID,
    client_ip: Optional[str],
) -> AllowlistDecision:
    """
    Check whether an admin may connect from `client_ip`.

    Per-admin entries are only loaded when no global entry is active.

    Usage:
        decision = await check_allowlist(db, admin.id, client_ip)
        if not decision.allowed:
            raise HTTPException(status_code=403, detail=decision.reason)
    """
    if not client_ip:
        return AllowlistDecision(allowed=False, reason=REASON_NO_IP)

    async def _check() -> AllowlistDecision:
        # Savepoint: a failed lookup must not abort the caller's transaction
        async with session.begin_nested():
            global_entries = await load_global_entries(session)
            admin_entries = [] if global_entries else await load_admin_entries(session, admin_id)
        return evaluate_allowlist(client_ip, global_entries, admin_entries)

    decision = await evaluate_with_fallback(
        _check,
        policy=ALLOWLIST_FAILURE_POLICY,
        allow=AllowlistDecision(allowed=True),
        deny=AllowlistDecision(allowed=False, reason="IP allowlist check failed"),
        operation="ip_allowlist_check",
        context={"admin_id": str(admin_id)},
    )

    if not decision.allowed:
        logger.warning(
            f"IP allowlist denied admin {admin_id}",
            extra={"admin_id": str(admin_id), "client_ip": client_ip, "reason": decision.reason},
        )

    return decision


def get_client_ip(request: Request) -> Optional[str]:
    """
    Resolve the caller's IP address.

    X-Forwarded-For is only honoured when TRUST_PROXY_HEADERS is enabled;
    otherwise a client could spoof its way into an allowlist.
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

    if request.client and request.client.host:
        return request.client.host
    return None
