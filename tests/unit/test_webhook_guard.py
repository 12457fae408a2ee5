"""
Unit tests for the inbound webhook guard pipeline.

Covers:
- Pass-through for endpoints without a setting
- 401 for missing / invalid signatures
- 403 for callers outside the setting's IP allowlist
- 429 once the per-minute budget is spent
- Fail-closed 500 when validation itself errors
- What gets written to the request log
"""

import json
import uuid
from types import SimpleNamespace

import pytest
from starlette.requests import Request

from app.core.security import encrypt_secret
from app.modules.webhooks.guard import (
    ERROR_IP_NOT_ALLOWED,
    ERROR_RATE_LIMITED,
    ERROR_SIGNATURE_INVALID,
    ERROR_SIGNATURE_REQUIRED,
    ERROR_VALIDATION_FAILED,
    WebhookRejected,
    build_logged_body,
    evaluate_webhook_request,
    redact_headers,
    resolve_provider,
    verify_webhook_request,
)
from app.modules.webhooks.signature import compute_signature

GUARD = "app.modules.webhooks.guard"
PATH = "/webhooks/twilio/voice"
SECRET = "whsec_guard_test"
BODY = json.dumps({"provider": "twilio", "CallSid": "CA123"}).encode()


def make_request(headers=None, body=BODY, path=PATH, client_ip="203.0.113.7"):
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "root_path": "",
        "scheme": "http",
        "query_string": b"",
        "server": ("testserver", 80),
        "client": (client_ip, 50000),
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


def make_setting(**overrides):
    values = dict(
        id=uuid.uuid4(),
        provider_name="twilio",
        webhook_endpoint=PATH,
        secret_key=encrypt_secret(SECRET),
        signature_algorithm="hmac_sha256",
        is_enabled=True,
        require_signature=True,
        allowed_ips=[],
        rate_limit_per_minute=60,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def signed_headers(body=BODY, **extra):
    headers = {"X-Signature": compute_signature(body, SECRET, "hmac_sha256")}
    headers.update(extra)
    return headers


@pytest.fixture
def log_request(mocker):
    return mocker.patch(f"{GUARD}.log_webhook_request")


@pytest.fixture
def recent_count(mocker):
    return mocker.patch(f"{GUARD}.count_recent_requests", return_value=0)


class TestPassThrough:
    """Endpoints without an enabled setting are not checked."""

    @pytest.mark.asyncio
    async def test_no_setting_accepts_unsigned(self, mocker, mock_session, log_request):
        mocker.patch(f"{GUARD}.load_webhook_setting", return_value=None)

        verdict = await evaluate_webhook_request(mock_session, make_request(), BODY)

        assert verdict.accepted is True
        assert verdict.checked is False
        assert verdict.provider == "twilio"
        assert verdict.endpoint == PATH
        log_request.assert_not_called()


class TestSignatureChecks:
    """Signature presence and validity."""

    @pytest.mark.asyncio
    async def test_missing_signature(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(f"{GUARD}.load_webhook_setting", return_value=make_setting())

        verdict = await evaluate_webhook_request(mock_session, make_request(), BODY)

        assert verdict.accepted is False
        assert verdict.status_code == 401
        assert verdict.error == ERROR_SIGNATURE_REQUIRED
        kwargs = log_request.call_args.kwargs
        assert kwargs["signature_valid"] is False
        assert kwargs["signature_error"] == "Missing signature"

    @pytest.mark.asyncio
    async def test_invalid_signature(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(f"{GUARD}.load_webhook_setting", return_value=make_setting())
        request = make_request({"X-Signature": "deadbeef"})

        verdict = await evaluate_webhook_request(mock_session, request, BODY)

        assert verdict.status_code == 401
        assert verdict.error == ERROR_SIGNATURE_INVALID
        assert log_request.call_args.kwargs["signature_error"] == "Invalid signature"

    @pytest.mark.asyncio
    async def test_valid_signature_accepted(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(f"{GUARD}.load_webhook_setting", return_value=make_setting())

        verdict = await evaluate_webhook_request(mock_session, make_request(signed_headers()), BODY)

        assert verdict.accepted is True
        assert verdict.checked is True
        kwargs = log_request.call_args.kwargs
        assert kwargs["signature_valid"] is True
        assert kwargs["signature_error"] is None
        assert kwargs["client_ip"] == "203.0.113.7"
        # last_validated_at stamped
        mock_session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_prefixed_github_style_signature(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(f"{GUARD}.load_webhook_setting", return_value=make_setting())
        sig = compute_signature(BODY, SECRET, "hmac_sha256")
        request = make_request({"X-Hub-Signature-256": f"sha256={sig}"})

        verdict = await evaluate_webhook_request(mock_session, request, BODY)

        assert verdict.accepted is True


class TestIpAllowlist:
    """Per-setting source IP restrictions."""

    @pytest.mark.asyncio
    async def test_ip_outside_allowlist(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(
            f"{GUARD}.load_webhook_setting",
            return_value=make_setting(allowed_ips=["10.0.0.0/8"]),
        )

        verdict = await evaluate_webhook_request(mock_session, make_request(signed_headers()), BODY)

        assert verdict.status_code == 403
        assert verdict.error == ERROR_IP_NOT_ALLOWED
        recent_count.assert_not_called()

    @pytest.mark.asyncio
    async def test_ip_inside_allowlist(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(
            f"{GUARD}.load_webhook_setting",
            return_value=make_setting(allowed_ips=["10.0.0.0/8", "203.0.113.7"]),
        )

        verdict = await evaluate_webhook_request(mock_session, make_request(signed_headers()), BODY)

        assert verdict.accepted is True


class TestRateLimit:
    """Per (provider, endpoint) budget over the trailing minute."""

    @pytest.mark.asyncio
    async def test_fourth_request_rejected_then_accepted_after_window(self, mocker, mock_session, log_request):
        mocker.patch(
            f"{GUARD}.load_webhook_setting",
            return_value=make_setting(rate_limit_per_minute=3),
        )
        mocker.patch(f"{GUARD}.count_recent_requests", side_effect=[0, 1, 2, 3, 0])

        verdicts = [
            await evaluate_webhook_request(mock_session, make_request(signed_headers()), BODY)
            for _ in range(4)
        ]

        assert [v.accepted for v in verdicts] == [True, True, True, False]
        assert verdicts[3].status_code == 429
        assert verdicts[3].error == ERROR_RATE_LIMITED
        assert log_request.call_args.kwargs["signature_error"] == "Rate limit exceeded"

        # once the first three have aged out of the window
        later = await evaluate_webhook_request(mock_session, make_request(signed_headers()), BODY)
        assert later.accepted is True
        assert later.status_code == 200


class TestFailClosed:
    """verify_webhook_request rejects when validation itself fails."""

    @pytest.mark.asyncio
    async def test_storage_error_rejects_with_500(self, mocker, mock_session):
        mocker.patch(f"{GUARD}.load_webhook_setting", side_effect=RuntimeError("db down"))
        mocker.patch("app.core.failure_policy.capture_business_error")

        with pytest.raises(WebhookRejected) as exc_info:
            await verify_webhook_request(make_request(signed_headers()), db=mock_session)

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == ERROR_VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_undecryptable_secret_rejects_with_500(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(
            f"{GUARD}.load_webhook_setting",
            return_value=make_setting(secret_key="not-a-fernet-token"),
        )
        mocker.patch("app.core.failure_policy.capture_business_error")

        with pytest.raises(WebhookRejected) as exc_info:
            await verify_webhook_request(make_request(signed_headers()), db=mock_session)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_rejection_raised_with_status(self, mocker, mock_session, log_request, recent_count):
        mocker.patch(f"{GUARD}.load_webhook_setting", return_value=make_setting())

        with pytest.raises(WebhookRejected) as exc_info:
            await verify_webhook_request(make_request({"X-Signature": "bad"}), db=mock_session)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == ERROR_SIGNATURE_INVALID


class TestLoggedRequest:
    """Shape of what is written to webhook_request_logs."""

    def test_sensitive_headers_redacted(self):
        headers = {"Authorization": "Bearer abc", "Cookie": "s=1", "X-Signature": "sig", "Host": "x"}
        redacted = redact_headers(headers)

        assert redacted["Authorization"] == "[REDACTED]"
        assert redacted["Cookie"] == "[REDACTED]"
        assert redacted["X-Signature"] == "sig"
        assert redacted["Host"] == "x"

    def test_large_body_replaced_with_marker(self, mocker):
        from app.core.config import settings

        mocker.patch.object(settings, "WEBHOOK_LOG_BODY_LIMIT", 10)
        raw = b'{"data": "more than ten bytes"}'

        assert build_logged_body(raw, json.loads(raw)) == {"truncated": True, "size": len(raw)}

    def test_non_json_body_kept_as_raw(self):
        assert build_logged_body(b"CallSid=CA123", None) == {"raw": "CallSid=CA123"}
        assert build_logged_body(b"", None) == {}

    def test_provider_resolution(self):
        assert resolve_provider({"x-provider": "stripe"}, {"provider": "twilio"}) == "stripe"
        assert resolve_provider({}, {"provider": "twilio"}) == "twilio"
        assert resolve_provider({}, None) == "unknown"


class TestRateLimitWindow:
    @pytest.mark.asyncio
    async def test_counts_trailing_sixty_seconds(self, mock_session, scalar_result):
        from datetime import datetime, timedelta

        from app.modules.webhooks.guard import count_recent_requests

        now = datetime(2024, 3, 10, 14, 30, 0)
        mock_session.execute.return_value = scalar_result(2)

        count = await count_recent_requests(mock_session, "twilio", PATH, now=now)

        assert count == 2
        params = mock_session.execute.call_args.args[0].compile().params
        assert now - timedelta(seconds=60) in params.values()
        assert "twilio" in params.values()

    @pytest.mark.asyncio
    async def test_request_61_seconds_old_outside_window(self, mock_session, scalar_result):
        from datetime import datetime, timedelta

        from app.modules.webhooks.guard import count_recent_requests

        now = datetime(2024, 3, 10, 14, 30, 0)
        mock_session.execute.return_value = scalar_result(None)

        assert await count_recent_requests(mock_session, "twilio", PATH, now=now) == 0

        stmt = mock_session.execute.call_args.args[0]
        assert "webhook_request_logs.created_at >= " in str(stmt)
        since = [v for v in stmt.compile().params.values() if isinstance(v, datetime)]
        assert since == [now - timedelta(seconds=60)]
        assert now - timedelta(seconds=61) < since[0]
