"""
Unit tests for the two-tier admin IP allowlist.

Covers:
- Global entries short-circuit per-admin entries
- Per-admin entries apply only when no global entry is active
- Empty allowlists allow everyone
- Storage errors fail open
- Client IP resolution and proxy header trust
"""

import uuid
from types import SimpleNamespace

import pytest

from app.core.config import settings
from app.modules.security.allowlist import (
    REASON_ADMIN,
    REASON_GLOBAL,
    REASON_NO_IP,
    AllowlistDecision,
    check_allowlist,
    evaluate_allowlist,
    get_client_ip,
)

ALLOWLIST = "app.modules.security.allowlist"


class TestEvaluateAllowlist:
    """Tests for the pure allowlist decision."""

    def test_no_entries_allows(self):
        assert evaluate_allowlist("8.8.8.8", [], []) == AllowlistDecision(allowed=True)

    def test_missing_ip_denied(self):
        decision = evaluate_allowlist(None, ["0.0.0.0/0"], [])
        assert decision.allowed is False
        assert decision.reason == REASON_NO_IP

    def test_global_match_allows(self):
        decision = evaluate_allowlist("10.1.2.3", ["10.0.0.0/8"], [])
        assert decision.allowed is True

    def test_global_miss_denies(self):
        decision = evaluate_allowlist("192.168.1.1", ["10.0.0.0/8"], [])
        assert decision.allowed is False
        assert decision.reason == REASON_GLOBAL

    def test_global_tier_short_circuits_admin_tier(self):
        """An admin-tier match cannot rescue a global-tier miss."""
        decision = evaluate_allowlist("192.168.1.1", ["10.0.0.0/8"], ["192.168.1.1"])
        assert decision.allowed is False
        assert decision.reason == REASON_GLOBAL

    def test_admin_tier_applies_without_global(self):
        assert evaluate_allowlist("203.0.113.7", [], ["203.0.113.7"]).allowed is True

        decision = evaluate_allowlist("203.0.113.8", [], ["203.0.113.7"])
        assert decision.allowed is False
        assert decision.reason == REASON_ADMIN


class TestCheckAllowlist:
    """Tests for the storage-backed allowlist check."""

    @pytest.mark.asyncio
    async def test_admin_entries_not_loaded_when_global_exists(self, mocker, mock_session):
        mocker.patch(f"{ALLOWLIST}.load_global_entries", return_value=["10.0.0.0/8"])
        load_admin = mocker.patch(f"{ALLOWLIST}.load_admin_entries", return_value=["1.2.3.4"])

        decision = await check_allowlist(mock_session, uuid.uuid4(), "10.9.9.9")

        assert decision.allowed is True
        load_admin.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_entries_consulted_without_global(self, mocker, mock_session):
        mocker.patch(f"{ALLOWLIST}.load_global_entries", return_value=[])
        load_admin = mocker.patch(f"{ALLOWLIST}.load_admin_entries", return_value=["1.2.3.4"])
        admin_id = uuid.uuid4()
        session = mock_session

        decision = await check_allowlist(session, admin_id, "5.6.7.8")

        assert decision.allowed is False
        assert decision.reason == REASON_ADMIN
        load_admin.assert_awaited_once_with(session, admin_id)

    @pytest.mark.asyncio
    async def test_storage_error_fails_open(self, mocker, mock_session):
        mocker.patch(f"{ALLOWLIST}.load_global_entries", side_effect=RuntimeError("db down"))
        capture = mocker.patch("app.core.failure_policy.capture_business_error")

        decision = await check_allowlist(mock_session, uuid.uuid4(), "5.6.7.8")

        assert decision.allowed is True
        capture.assert_called_once()

    @pytest.mark.asyncio
    async def test_storage_error_rolls_back_savepoint_only(self, mocker, mock_session):
        """A failed lookup is contained so the caller can keep using its session."""
        mocker.patch(f"{ALLOWLIST}.load_global_entries", side_effect=RuntimeError("db down"))
        mocker.patch("app.core.failure_policy.capture_business_error")

        decision = await check_allowlist(mock_session, uuid.uuid4(), "5.6.7.8")

        assert decision.allowed is True
        savepoint = mock_session.begin_nested.return_value
        savepoint.__aenter__.assert_awaited_once()
        exc_type = savepoint.__aexit__.await_args.args[0]
        assert exc_type is RuntimeError
        mock_session.rollback.assert_not_called()

    @pytest.mark.asyncio
    async def test_lookups_run_inside_savepoint(self, mocker, mock_session):
        order = []
        savepoint = mock_session.begin_nested.return_value
        savepoint.__aenter__.side_effect = lambda *a: order.append("savepoint")
        savepoint.__aexit__.side_effect = lambda *a: order.append("release") or False

        async def _load_global(session):
            order.append("global")
            return []

        async def _load_admin(session, admin_id):
            order.append("admin")
            return []

        mocker.patch(f"{ALLOWLIST}.load_global_entries", side_effect=_load_global)
        mocker.patch(f"{ALLOWLIST}.load_admin_entries", side_effect=_load_admin)

        decision = await check_allowlist(mock_session, uuid.uuid4(), "5.6.7.8")

        assert decision.allowed is True
        assert order == ["savepoint", "global", "admin", "release"]

    @pytest.mark.asyncio
    async def test_missing_ip_denied_without_lookup(self, mocker, mock_session):
        load_global = mocker.patch(f"{ALLOWLIST}.load_global_entries")

        decision = await check_allowlist(mock_session, uuid.uuid4(), None)

        assert decision.allowed is False
        assert decision.reason == REASON_NO_IP
        load_global.assert_not_called()


class TestGetClientIp:
    """Tests for resolving the caller's IP."""

    def _request(self, host="10.0.0.1", forwarded=None):
        headers = {"x-forwarded-for": forwarded} if forwarded else {}
        client = SimpleNamespace(host=host) if host else None
        return SimpleNamespace(headers=headers, client=client)

    def test_uses_peer_address_by_default(self, mocker):
        mocker.patch.object(settings, "TRUST_PROXY_HEADERS", False)
        request = self._request(forwarded="1.1.1.1")
        assert get_client_ip(request) == "10.0.0.1"

    def test_first_forwarded_hop_when_trusted(self, mocker):
        mocker.patch.object(settings, "TRUST_PROXY_HEADERS", True)
        request = self._request(forwarded="203.0.113.7, 10.0.0.2")
        assert get_client_ip(request) == "203.0.113.7"

    def test_no_client(self, mocker):
        mocker.patch.object(settings, "TRUST_PROXY_HEADERS", False)
        assert get_client_ip(self._request(host=None)) is None
