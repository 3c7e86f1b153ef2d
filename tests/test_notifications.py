"""
Tests for the notification inbox and email dispatch
"""

import pytest
import requests

from resolve_core.config import ResolveConfig
from resolve_core.errors import NotFoundError
from resolve_core.notifications import (
    NotificationType, EmailDispatcher, EmailTemplate, LogEmailTransport,
    WebhookEmailTransport, DEFAULT_EMAIL_TEMPLATES, create_email_dispatcher,
)

from conftest import RecordingEmailTransport


class TestInbox:
    """Test in-app notifications"""

    def test_notify_and_list(self, notifications):
        notifications.notify("usr_1", NotificationType.NEW_COMPLAINT, "First", {"type": "complaint", "id": "c1"})
        notifications.notify("usr_1", NotificationType.STATUS_UPDATE, "Second")
        notifications.notify("usr_2", NotificationType.STATUS_UPDATE, "Other user")

        inbox = notifications.list_for_user("usr_1")
        assert {n.message for n in inbox} == {"First", "Second"}
        assert all(not n.is_read for n in inbox)
        assert notifications.unread_count("usr_1") == 2

    def test_notify_without_user_is_ignored(self, notifications):
        assert notifications.notify(None, NotificationType.SYSTEM, "Nobody") is None

    def test_notify_many(self, notifications):
        sent = notifications.notify_many(["usr_1", "usr_2"], NotificationType.SYSTEM, "Maintenance tonight")
        assert sent == 2
        assert notifications.unread_count("usr_2") == 1

    def test_mark_read(self, notifications):
        note = notifications.notify("usr_1", NotificationType.ASSIGNMENT, "Assigned")
        notifications.mark_read(note.id, "usr_1")
        assert notifications.unread_count("usr_1") == 0
        assert notifications.list_for_user("usr_1", unread_only=True) == []

    def test_mark_read_requires_owner(self, notifications):
        note = notifications.notify("usr_1", NotificationType.ASSIGNMENT, "Assigned")
        with pytest.raises(NotFoundError):
            notifications.mark_read(note.id, "usr_2")
        with pytest.raises(NotFoundError):
            notifications.mark_read("missing", "usr_1")

    def test_limit(self, notifications):
        for i in range(5):
            notifications.notify("usr_1", NotificationType.SYSTEM, f"Message {i}")
        assert len(notifications.list_for_user("usr_1", limit=3)) == 3

    def test_storage_failure_is_swallowed(self, notifications, storage, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(storage, "save", broken)
        assert notifications.notify("usr_1", NotificationType.SYSTEM, "Lost") is None


class TestEmailTemplates:
    """Test template rendering"""

    def test_render_fills_placeholders(self):
        rendered = DEFAULT_EMAIL_TEMPLATES['status_update'].render({
            'user_name': "Sam Student",
            'complaint_title': "Broken heater",
            'complaint_id': "c1",
            'new_status': "Resolved",
            'comment': "Heater replaced",
        })
        assert rendered['subject'] == "Complaint Status Update - Broken heater"
        assert "Dear Sam Student" in rendered['body']
        assert "New Status: Resolved" in rendered['body']

    def test_missing_placeholders_render_empty(self):
        template = EmailTemplate("custom", "Hello {user_name}", "Ref {complaint_id}.")
        assert template.render({}) == {'subject': "Hello ", 'body': "Ref ."}


class TestEmailDispatcher:
    """Test dispatch and transports"""

    def test_send_through_log_transport(self):
        transport = RecordingEmailTransport()
        dispatcher = EmailDispatcher(transport=transport, from_address="help@northfield.edu",
                                     from_name="Northfield Help", frontend_url="https://resolve.example.edu/")
        assert dispatcher.send('assignment', "dana@northfield.edu", {
            'user_name': "Dana", 'complaint_title': "Broken heater", 'complaint_id': "c1", 'priority': "High",
        })

        message = transport.sent[0]
        assert message.to == "dana@northfield.edu"
        assert message.from_address == "Northfield Help <help@northfield.edu>"
        assert message.template_key == "assignment"
        assert "https://resolve.example.edu/complaints/c1" in message.body

    def test_unknown_template(self):
        transport = RecordingEmailTransport()
        assert not EmailDispatcher(transport=transport).send('missing', "a@example.edu", {})
        assert transport.sent == []

    def test_no_recipient(self):
        transport = RecordingEmailTransport()
        assert not EmailDispatcher(transport=transport).send('assignment', None, {})
        assert transport.sent == []

    def test_register_template(self):
        transport = RecordingEmailTransport()
        dispatcher = EmailDispatcher(transport=transport)
        dispatcher.register_template(EmailTemplate("reminder", "Reminder: {complaint_title}", "Please check."))
        assert dispatcher.send('reminder', "a@example.edu", {'complaint_title': "Heater"})
        assert transport.sent[0].subject == "Reminder: Heater"

    def test_log_transport_keeps_no_messages(self):
        lines = []

        class ListLogger:
            def info(self, message, *args, **kwargs):
                lines.append(message % args)

        transport = LogEmailTransport(log=ListLogger())
        dispatcher = EmailDispatcher(transport=transport)
        for i in range(3):
            assert dispatcher.send('new_complaint', f"user{i}@example.edu", {'complaint_title': "Heater"})
        assert not hasattr(transport, "sent")
        assert lines[0] == "EMAIL to user0@example.edu: New Complaint Assigned - Heater"
        assert len(lines) == 3


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


class TestWebhookTransport:
    """Test the mail relay webhook"""

    def test_posts_rendered_email(self, monkeypatch):
        calls = []

        def fake_post(url, json=None, timeout=None, headers=None):
            calls.append((url, json, timeout))
            return FakeResponse(202)

        monkeypatch.setattr(requests, "post", fake_post)
        dispatcher = EmailDispatcher(transport=WebhookEmailTransport("https://mail.example.edu/send", timeout=3))
        assert dispatcher.send('new_complaint', "dana@northfield.edu", {'complaint_title': "Heater"})

        url, payload, timeout = calls[0]
        assert url == "https://mail.example.edu/send"
        assert timeout == 3
        assert payload["to"] == "dana@northfield.edu"
        assert payload["template"] == "new_complaint"
        assert payload["subject"] == "New Complaint Assigned - Heater"

    def test_error_status_reports_failure(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *args, **kwargs: FakeResponse(500, "relay down"))
        dispatcher = EmailDispatcher(transport=WebhookEmailTransport("https://mail.example.edu/send"))
        assert dispatcher.send('new_complaint', "dana@northfield.edu", {}) is False

    def test_unreachable_relay_reports_failure(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(requests, "post", refuse)
        dispatcher = EmailDispatcher(transport=WebhookEmailTransport("https://mail.example.edu/send"))
        assert dispatcher.send('new_complaint', "dana@northfield.edu", {}) is False


class TestDispatcherFactory:
    """Test building a dispatcher from configuration"""

    def test_log_transport_by_default(self):
        dispatcher = create_email_dispatcher(ResolveConfig(email_transport="log"))
        assert isinstance(dispatcher.transport, LogEmailTransport)

    def test_webhook_requires_url(self):
        with pytest.raises(ValueError):
            create_email_dispatcher(ResolveConfig(email_transport="webhook", email_webhook_url=""))

    def test_webhook_transport(self):
        dispatcher = create_email_dispatcher(ResolveConfig(
            email_transport="webhook", email_webhook_url="https://mail.example.edu/send"
        ))
        assert isinstance(dispatcher.transport, WebhookEmailTransport)
        assert dispatcher.transport.url == "https://mail.example.edu/send"
