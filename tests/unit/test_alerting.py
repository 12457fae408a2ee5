"""
Unit tests for abuse alert notification.
"""

from app.core.alerting import _get_sentry_level, notify_abuse_alert, send_admin_alert


class TestSendAdminAlert:
    def test_sent_to_sentry(self, mocker):
        capture = mocker.patch("app.core.alerting.sentry_sdk.capture_message")

        assert send_admin_alert("Webhook flood", "150 requests", severity="HIGH") is True
        assert capture.call_args.kwargs["level"] == "error"
        assert capture.call_args.kwargs["extras"]["alert_message"] == "150 requests"

    def test_sentry_failure_is_swallowed(self, mocker, caplog):
        mocker.patch(
            "app.core.alerting.sentry_sdk.capture_message",
            side_effect=RuntimeError("transport closed"),
        )

        assert send_admin_alert("Webhook flood", "150 requests") is False
        assert "[MEDIUM] Webhook flood" in caplog.text

    def test_levels(self):
        assert _get_sentry_level("CRITICAL") == "error"
        assert _get_sentry_level("MEDIUM") == "warning"
        assert _get_sentry_level("LOW") == "info"
        assert _get_sentry_level("whatever") == "warning"


class TestNotifyAbuseAlert:
    def test_formats_alert(self, mocker):
        send = mocker.patch("app.core.alerting.send_admin_alert", return_value=True)

        notify_abuse_alert(
            alert_type="failed_login_flood",
            severity="high",
            entity_type="ip_address",
            entity_id="203.0.113.7",
            threshold_value=5,
            actual_value=7,
            time_window_minutes=15,
        )

        kwargs = send.call_args.kwargs
        assert kwargs["severity"] == "HIGH"
        assert "203.0.113.7" in kwargs["title"]
        assert kwargs["message"] == "7 events in 15 min (threshold 5)"
        assert kwargs["extra_data"]["entity_type"] == "ip_address"
