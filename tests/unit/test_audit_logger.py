"""
Unit tests for admin activity audit logging.

Severity comes from the action name alone, and a failed audit write must
never propagate to the admin's request.
"""

import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.modules.audit.logger import (
    CRITICAL_ACTIONS,
    WARNING_ACTIONS,
    build_activity_entry,
    classify_action_severity,
    log_admin_activity,
)

LOGGER = "app.modules.audit.logger"


class TestClassifyActionSeverity:
    """Tests for action -> severity mapping."""

    @pytest.mark.parametrize("action", sorted(CRITICAL_ACTIONS))
    def test_critical_actions(self, action):
        assert classify_action_severity(action) == "critical"

    @pytest.mark.parametrize("action", sorted(WARNING_ACTIONS))
    def test_warning_actions(self, action):
        assert classify_action_severity(action) == "warning"

    def test_everything_else_is_info(self):
        assert classify_action_severity("admin_login") == "info"
        assert classify_action_severity("abuse_alert_resolved") == "info"
        assert classify_action_severity("") == "info"

    def test_sets_are_disjoint(self):
        assert not CRITICAL_ACTIONS & WARNING_ACTIONS


class TestBuildActivityEntry:
    """Tests for audit row construction."""

    def test_fields(self):
        admin_id = uuid.uuid4()
        target_id = uuid.uuid4()

        entry = build_activity_entry(
            admin_id,
            "global_ip_allowlist_added",
            target_type="ip_allowlist",
            target_id=target_id,
            ip="10.0.0.1",
            details={"ip_address": "10.0.0.0/24", "at": datetime(2024, 1, 1, 12, 0)},
        )

        assert entry.admin_id == admin_id
        assert entry.severity == "critical"
        assert entry.target_id == str(target_id)
        assert entry.ip_address == "10.0.0.1"
        assert entry.details["at"] == "2024-01-01T12:00:00"
        assert entry.old_values is None

    def test_user_agent_falls_back_to_details(self):
        entry = build_activity_entry(None, "admin_login", details={"user_agent": "curl/8.0"})
        assert entry.user_agent == "curl/8.0"

    def test_explicit_user_agent_wins(self):
        entry = build_activity_entry(
            None, "admin_login", details={"user_agent": "curl/8.0"}, user_agent="Mozilla/5.0"
        )
        assert entry.user_agent == "Mozilla/5.0"

    def test_missing_details_become_empty_dict(self):
        entry = build_activity_entry(None, "admin_logout")
        assert entry.details == {}


def _session_factory(session):
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


class TestLogAdminActivity:
    """Tests for best-effort persistence."""

    @pytest.mark.asyncio
    async def test_writes_and_commits(self, mocker, mock_session):
        mocker.patch(f"{LOGGER}.AsyncSessionLocal", _session_factory(mock_session))

        await log_admin_activity(uuid.uuid4(), "webhook_security_setting_created", target_id="abc")

        entry = mock_session.add.call_args.args[0]
        assert entry.action == "webhook_security_setting_created"
        assert entry.severity == "critical"
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_commit_failure_is_swallowed(self, mocker, mock_session, caplog):
        mock_session.commit.side_effect = RuntimeError("connection reset")
        mocker.patch(f"{LOGGER}.AsyncSessionLocal", _session_factory(mock_session))

        await log_admin_activity(uuid.uuid4(), "admin_login")

        assert "Failed to log admin activity" in caplog.text

    @pytest.mark.asyncio
    async def test_session_failure_is_swallowed(self, mocker):
        mocker.patch(f"{LOGGER}.AsyncSessionLocal", side_effect=RuntimeError("pool exhausted"))

        # Must not raise
        await log_admin_activity(None, "admin_login_blocked_ip", details={"email": "x@example.com"})
