"""
Failure policies for guarded checks.

Security checks disagree on what to do when storage is unavailable:
- IP allowlist checks fail OPEN (admins are never locked out by an outage)
- Webhook signature checks fail CLOSED (unauthenticated traffic is rejected)
- Audit logging and login-path abuse detection fail OPEN (the admin's
  primary action is never blocked)

Every call site names its policy with one of the constants below and runs
its check through evaluate_with_fallback().
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from app.core.sentry import capture_business_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailurePolicy(str, Enum):
    """What a guarded check returns when it raises unexpectedly."""
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


FAIL_OPEN = FailurePolicy.FAIL_OPEN
FAIL_CLOSED = FailurePolicy.FAIL_CLOSED


async def evaluate_with_fallback(
    check: Callable[[], Awaitable[T]],
    *,
    policy: FailurePolicy,
    allow: Any = None,
    deny: Any = None,
    operation: str,
    context: Optional[dict] = None,
) -> T:
    """
    Run an async check and apply the failure policy if it raises.

    Args:
        check: Zero-argument coroutine function performing the real work
        policy: FAIL_OPEN returns `allow` on error, FAIL_CLOSED returns `deny`
        allow: Fallback value permitting the guarded action
        deny: Fallback value refusing the guarded action
        operation: Short operation name for logs and Sentry
        context: Extra structured context (never include secrets)

    Returns:
        The check's result, or the policy's fallback value on error

    Usage:
        decision = await evaluate_with_fallback(
            lambda: _load_and_evaluate(session, admin_id, client_ip),
            policy=FAIL_OPEN,
            allow=AllowlistDecision(allowed=True),
            operation="ip_allowlist_check",
        )
    """
    try:
        return await check()
    except Exception as e:
        fallback = allow if policy is FailurePolicy.FAIL_OPEN else deny
        capture_business_error(
            error=e,
            context={
                "operation": operation,
                "failure_policy": policy.value,
                **(context or {}),
            },
            level="warning" if policy is FailurePolicy.FAIL_OPEN else "error",
        )
        logger.warning(
            f"{operation} failed, applying {policy.value}",
            extra={"operation": operation, "failure_policy": policy.value},
        )
        return fallback
