"""
Notification Module

In-app notification inbox plus templated email dispatch. Both are
fire-and-forget from the workflow engine's point of view: delivery problems
are logged and reported as a boolean, never raised to the caller.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any

import requests

from .storage import StorageInterface, StorageRecord, utc_now, parse_datetime
from .errors import ExternalDispatchError, NotFoundError

logger = logging.getLogger("resolve.notifications")


class NotificationType(Enum):
    """Kinds of in-app notifications"""
    NEW_COMPLAINT = "new_complaint"
    STATUS_UPDATE = "status_update"
    WORKFLOW_UPDATE = "workflow_update"
    ASSIGNMENT = "assignment"
    ESCALATION = "escalation"
    NEW_COMMENT = "new_comment"
    SYSTEM = "system"


@dataclass
class Notification(StorageRecord):
    """A single inbox entry for a user"""
    user_id: str
    notification_type: NotificationType
    message: str
    related_to: Dict[str, Any] = field(default_factory=dict)
    is_read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'user_id': self.user_id,
            'notification_type': self.notification_type.value,
            'message': self.message,
            'related_to': self.related_to,
            'is_read': self.is_read,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            user_id=data['user_id'],
            notification_type=NotificationType(data['notification_type']),
            message=data['message'],
            related_to=data.get('related_to') or {},
            is_read=data.get('is_read', False),
        )


class NotificationService:
    """Stores in-app notifications and serves a user's inbox"""

    TABLE = "notifications"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def notify(self, user_id: Optional[str], notification_type: NotificationType, message: str,
               related_to: Optional[Dict[str, Any]] = None) -> Optional[Notification]:
        """
        Create an inbox notification.

        Never raises: a storage failure is logged and None is returned so that
        workflow processing is not interrupted by inbox problems.
        """
        if not user_id:
            return None
        try:
            now = utc_now()
            notification = Notification(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                notification_type=notification_type,
                message=message,
                related_to=related_to or {},
            )
            self.storage.save(self.TABLE, notification.id, notification.to_dict())
            return notification
        except Exception:
            logger.exception("Failed to store notification for user %s", user_id)
            return None

    def notify_many(self, user_ids: List[str], notification_type: NotificationType, message: str,
                    related_to: Optional[Dict[str, Any]] = None) -> int:
        """Notify several users; returns how many notifications were stored"""
        sent = 0
        for user_id in user_ids:
            if self.notify(user_id, notification_type, message, related_to):
                sent += 1
        return sent

    def list_for_user(self, user_id: str, unread_only: bool = False,
                      limit: Optional[int] = None) -> List[Notification]:
        """Newest first"""
        filters: Dict[str, Any] = {'user_id': user_id}
        if unread_only:
            filters['is_read'] = False
        notifications = [Notification.from_dict(d) for d in self.storage.find(self.TABLE, filters)]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        if limit:
            notifications = notifications[:limit]
        return notifications

    def unread_count(self, user_id: str) -> int:
        return len(self.storage.find(self.TABLE, {'user_id': user_id, 'is_read': False}))

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        """Mark a notification read; only its owner may do so"""
        data = self.storage.load(self.TABLE, notification_id)
        if not data or data['user_id'] != user_id:
            raise NotFoundError("Notification not found")
        notification = Notification.from_dict(data)
        notification.is_read = True
        notification.touch()
        self.storage.save(self.TABLE, notification.id, notification.to_dict())
        return notification


# Email

@dataclass
class EmailTemplate:
    """Subject and body with {placeholder} fields"""
    key: str
    subject: str
    body: str

    def render(self, payload: Dict[str, Any]) -> Dict[str, str]:
        values = _DefaultDict(payload)
        return {
            'subject': self.subject.format_map(values),
            'body': self.body.format_map(values),
        }


class _DefaultDict(dict):
    def __missing__(self, key):
        return ""


DEFAULT_EMAIL_TEMPLATES = {
    'new_complaint': EmailTemplate(
        key='new_complaint',
        subject="New Complaint Assigned - {complaint_title}",
        body=(
            "Dear {user_name},\n\n"
            "A new complaint has been assigned to your department:\n\n"
            "{complaint_title}\n"
            "Complaint ID: {complaint_id}\n"
            "Priority: {priority}\n\n"
            "Please review and take appropriate action.\n{complaint_link}"
        ),
    ),
    'status_update': EmailTemplate(
        key='status_update',
        subject="Complaint Status Update - {complaint_title}",
        body=(
            "Dear {user_name},\n\n"
            "Your complaint has been updated:\n\n"
            "{complaint_title}\n"
            "Complaint ID: {complaint_id}\n"
            "New Status: {new_status}\n"
            "Comment: {comment}\n{complaint_link}"
        ),
    ),
    'assignment': EmailTemplate(
        key='assignment',
        subject="Complaint Assigned - {complaint_title}",
        body=(
            "Dear {user_name},\n\n"
            "A complaint has been assigned to you:\n\n"
            "{complaint_title}\n"
            "Complaint ID: {complaint_id}\n"
            "Priority: {priority}\n\n"
            "Please review and take appropriate action.\n{complaint_link}"
        ),
    ),
    'feedback_request': EmailTemplate(
        key='feedback_request',
        subject="Please Provide Feedback - {complaint_title}",
        body=(
            "Dear {user_name},\n\n"
            "Your complaint has been successfully resolved.\n\n"
            "{complaint_title}\n"
            "Complaint ID: {complaint_id}\n"
            "Resolution Details: {comment}\n\n"
            "Please log in to your account to provide feedback.\n{complaint_link}"
        ),
    ),
}


@dataclass
class EmailMessage:
    """A rendered email ready for a transport"""
    to: str
    subject: str
    body: str
    template_key: str
    from_address: str
    sent_at: datetime = field(default_factory=utc_now)


class EmailTransport(ABC):
    """Delivers rendered emails"""

    @abstractmethod
    def deliver(self, message: EmailMessage) -> None:
        """Deliver the message; raise ExternalDispatchError on failure"""
        pass


class LogEmailTransport(EmailTransport):
    """Writes emails to the log instead of sending them"""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.logger = log or logger

    def deliver(self, message: EmailMessage) -> None:
        self.logger.info(
            "EMAIL to %s: %s", message.to, message.subject,
            extra={'action': 'email_sent', 'extra_data': {'template': message.template_key}}
        )


class WebhookEmailTransport(EmailTransport):
    """POSTs rendered emails to a mail relay webhook"""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def deliver(self, message: EmailMessage) -> None:
        payload = {
            "from": message.from_address,
            "to": message.to,
            "subject": message.subject,
            "body": message.body,
            "template": message.template_key,
            "timestamp": message.sent_at.isoformat(),
        }
        try:
            response = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            raise ExternalDispatchError(f"Email webhook unreachable: {e}") from e

        if response.status_code >= 300:
            raise ExternalDispatchError(
                f"Email webhook returned {response.status_code}: {response.text[:200]}"
            )


class EmailDispatcher:
    """
    Renders email templates and hands them to a transport.

    `send` reports success as a boolean; transport failures are logged and
    swallowed.
    """

    def __init__(self, transport: Optional[EmailTransport] = None,
                 from_address: str = "noreply@resolvesuite.local",
                 from_name: str = "ResolveSuite",
                 frontend_url: Optional[str] = None,
                 templates: Optional[Dict[str, EmailTemplate]] = None):
        self.transport = transport or LogEmailTransport()
        self.from_address = from_address
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/") if frontend_url else None
        self.templates = dict(templates or DEFAULT_EMAIL_TEMPLATES)

    def register_template(self, template: EmailTemplate) -> None:
        self.templates[template.key] = template

    def send(self, template_key: str, to: Optional[str], payload: Dict[str, Any]) -> bool:
        """
        Render and deliver one email.

        Args:
            template_key: Key of a registered template
            to: Recipient address; nothing is sent when empty
            payload: Placeholder values

        Returns:
            True if the transport accepted the message
        """
        if not to:
            return False
        template = self.templates.get(template_key)
        if not template:
            logger.error("Unknown email template '%s'", template_key)
            return False

        values = dict(payload)
        if self.frontend_url and values.get('complaint_id'):
            values.setdefault('complaint_link', f"{self.frontend_url}/complaints/{values['complaint_id']}")
        rendered = template.render(values)
        message = EmailMessage(
            to=to,
            subject=rendered['subject'],
            body=rendered['body'],
            template_key=template_key,
            from_address=f"{self.from_name} <{self.from_address}>",
        )

        try:
            self.transport.deliver(message)
            return True
        except ExternalDispatchError as e:
            logger.warning("Email '%s' to %s failed: %s", template_key, to, e.message)
            return False
        except Exception:
            logger.exception("Email '%s' to %s failed", template_key, to)
            return False


def create_email_dispatcher(config) -> EmailDispatcher:
    """Build the dispatcher described by a ResolveConfig"""
    if config.email_transport == "webhook":
        if not config.email_webhook_url:
            raise ValueError("email_webhook_url is required for the webhook email transport")
        transport: EmailTransport = WebhookEmailTransport(
            config.email_webhook_url, timeout=config.email_webhook_timeout
        )
    else:
        transport = LogEmailTransport()
    return EmailDispatcher(
        transport=transport,
        from_address=config.email_from_address,
        from_name=config.email_from_name,
        frontend_url=config.frontend_url,
    )
