"""
Unit tests for submitter notifications.
"""
import json

import httpx
from fastapi import BackgroundTasks
from fastapi.testclient import TestClient

from app.config import settings
from app.main import app
from app.routers.reimbursements import get_notifier
from app.services.notifier import (
    BackgroundNotificationQueue,
    LoggingNotifier,
    WebhookNotifier,
    build_notifier,
    deliver,
    next_steps_text,
    status_text,
)

URL = "http://mail.test/api/send-notification"


def _notifier(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return WebhookNotifier(URL, client=client)


class TestWebhookNotifier:
    def test_status_change_payload(self):
        sent = []

        def handler(request):
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        ok = _notifier(handler).notify_status_change(
            "r1", "rejected", "submitted", "user-auditor", {"rejectionReason": "duplicate"}
        )

        assert ok is True
        assert sent == [{
            "type": "status_change",
            "reimbursementId": "r1",
            "newStatus": "rejected",
            "previousStatus": "submitted",
            "changedByUserId": "user-auditor",
            "statusText": "Rejected",
            "nextSteps": next_steps_text("rejected"),
            "additionalContext": {"rejectionReason": "duplicate"},
        }]

    def test_comment_payload(self):
        sent = []

        def handler(request):
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        assert _notifier(handler).notify_comment("r1", "please resend", "user-auditor", False)
        assert sent[0]["type"] == "comment"
        assert sent[0]["comment"] == "please resend"
        assert sent[0]["isPrivate"] is False

    def test_server_error(self, caplog):
        notifier = _notifier(lambda request: httpx.Response(500, text="boom"))
        assert notifier.notify_comment("r1", "x", "u", False) is False
        assert "HTTP 500" in caplog.text

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert _notifier(handler).notify_status_change("r1", "paid", "in_progress", "u") is False

    def test_unsuccessful_body(self):
        notifier = _notifier(lambda request: httpx.Response(200, json={"success": False}))
        assert notifier.notify_status_change("r1", "paid", "in_progress", "u") is False

    def test_non_json_body(self):
        notifier = _notifier(lambda request: httpx.Response(200, text="ok"))
        assert notifier.notify_status_change("r1", "paid", "in_progress", "u") is False


class TestTexts:
    def test_known_status(self):
        assert status_text("under_review") == "Under Review"
        assert "within 1-2 business days" in next_steps_text("in_progress")

    def test_unknown_status(self):
        assert status_text("archived") == "Archived"
        assert status_text(None) == "Unknown"
        assert next_steps_text("archived").startswith("Check your dashboard")


class TestDispatch:
    def test_build_without_url_only_logs(self):
        assert isinstance(build_notifier(""), LoggingNotifier)
        assert isinstance(build_notifier(URL), WebhookNotifier)

    def test_deliver_swallows_exceptions(self, caplog):
        def send(*args):
            raise RuntimeError("no route to host")

        assert deliver(send, "r1") is False
        assert "no route to host" in caplog.text

    def test_deliver_reports_false(self, caplog):
        assert deliver(lambda *args: False, "r1") is False
        assert "reported failure" in caplog.text

    def test_background_queue_defers(self):
        calls = []
        tasks = BackgroundTasks()
        BackgroundNotificationQueue(tasks).submit(lambda *args: calls.append(args) or True, "r1", "paid")

        assert calls == []
        [task] = tasks.tasks
        assert task.func is deliver
        task.func(*task.args, **task.kwargs)
        assert calls == [("r1", "paid")]


class TestShutdown:
    def test_cached_webhook_client_closed(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", URL)
        get_notifier.cache_clear()
        with TestClient(app):
            notifier = get_notifier()
            assert isinstance(notifier, WebhookNotifier)
            assert not notifier._client.is_closed

        assert notifier._client.is_closed
        assert get_notifier.cache_info().currsize == 0
