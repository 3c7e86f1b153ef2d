"""
Complaint Lifecycle Coordinator

Ties complaint operations to the workflow engine: creation starts the
workflow, manual status changes move the workflow to the stage that sets the
status, and explicit escalation marks both the complaint and its instance.
Manual assignment and comments notify the people on the other side.
"""

import logging
from datetime import datetime
from typing import List, Optional

from .audit import AuditTrail, AuditEventType
from .complaints import Complaint, ComplaintComment, ComplaintStore, ComplaintStatus, ComplaintPriority
from .directory import Directory, UserRole
from .errors import InvalidReferenceError, ValidationError
from .logging_config import log_action
from .notifications import NotificationService, NotificationType, EmailDispatcher
from .stage_actions import StageActionExecutor
from .storage import utc_now
from .workflow_engine import WorkflowEngine
from .workflows import InstanceStatus

logger = logging.getLogger("resolve.lifecycle")

MAX_COMMENT_LENGTH = 1000


class ComplaintLifecycleCoordinator:
    """Complaint create/status/escalate flows that drive the workflow engine"""

    def __init__(self, complaints: ComplaintStore, directory: Directory, engine: WorkflowEngine,
                 executor: StageActionExecutor, notifications: NotificationService,
                 emails: EmailDispatcher, audit_trail: AuditTrail):
        self.complaints = complaints
        self.directory = directory
        self.engine = engine
        self.executor = executor
        self.notifications = notifications
        self.emails = emails
        self.audit = audit_trail

    def create_complaint(self, organization_id: str, complainant_id: str, complaint_type_id: str,
                         department_id: str, title: str, description: str,
                         priority: ComplaintPriority = ComplaintPriority.MEDIUM,
                         now: Optional[datetime] = None) -> Complaint:
        """
        File a complaint and start its workflow

        Workflow initialization and notification failures are logged; they
        never fail the creation itself.

        Raises:
            ValidationError: Title or description missing
            InvalidReferenceError: Department or complaint type outside the organization
        """
        errors = []
        if not title or not title.strip():
            errors.append("Title is required")
        if not description or not description.strip():
            errors.append("Description is required")
        if errors:
            raise ValidationError("Invalid complaint", errors)
        self.directory.require_department(department_id, organization_id)
        self.directory.require_complaint_type(complaint_type_id, organization_id)

        now = now or utc_now()
        complaint = self.complaints.create(
            organization_id, complainant_id, complaint_type_id, department_id,
            title.strip(), description.strip(), priority,
        )
        self.audit.log_event(
            AuditEventType.COMPLAINT_CREATED,
            'complaint',
            complaint.id,
            {'title': complaint.title, 'department_id': department_id,
             'complaint_type_id': complaint_type_id, 'priority': priority},
            complainant_id
        )

        try:
            instance = self.engine.initialize(complaint, now)
        except Exception:
            logger.exception("Error initializing workflow for complaint %s", complaint.id)
            instance = None
        if instance is None:
            logger.info("No workflow started for complaint %s", complaint.id)

        # The engine's effects may have changed stage name, status or assignee
        complaint = self.complaints.get(complaint.id) or complaint

        related = {'type': 'complaint', 'id': complaint.id}
        for user in self.directory.active_users(department_id, UserRole.DEPARTMENT_USER):
            self.notifications.notify(
                user.id, NotificationType.NEW_COMPLAINT, f"New complaint: {complaint.title}", related
            )
            if user.email_notifications:
                self.emails.send('new_complaint', user.email, {
                    'user_name': user.full_name or user.email,
                    'complaint_title': complaint.title,
                    'complaint_id': complaint.id,
                    'priority': complaint.priority.value,
                })

        log_action(
            logger, "info", "Complaint created",
            user_id=complainant_id, action="complaint_created", resource=complaint.id,
            organization_id=organization_id,
        )
        return complaint

    def update_status(self, complaint_id: str, status: ComplaintStatus, actor_id: Optional[str] = None,
                      comment: Optional[str] = None, organization_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> Complaint:
        """
        Manually change a complaint's status

        When the workflow has a stage whose actions set this status and the
        instance is still running, the instance moves to that stage first
        (without a transition check). If that move completes the workflow
        the complaint stays Closed; otherwise the requested status is set.
        """
        now = now or utc_now()
        complaint = self.complaints.require(complaint_id, organization_id)
        previous = complaint.status

        applied_by_move = False
        instance = self.engine.get_for_complaint(complaint.id)
        if instance is not None and not instance.is_terminal and not instance.is_completed:
            definition = self.engine.definitions.get(instance.workflow_id)
            target = definition.first_stage_setting_status(status)
            if target is not None and target.id != instance.current_stage_id:
                note = f"Status update comment: {comment}" if comment else None
                instance = self.engine.move_to_stage(instance.id, target.id, actor_id, note, now)
                complaint = self.complaints.require(complaint.id)
                # The stage's STATUS_UPDATE action has already set and audited the status
                applied_by_move = complaint.status == status or (
                    instance.status == InstanceStatus.COMPLETED and complaint.status == ComplaintStatus.CLOSED
                )

        if not applied_by_move:
            complaint.set_status(status, now)
            self.complaints.save(complaint)
            self.audit.log_event(
                AuditEventType.STATUS_UPDATED,
                'complaint',
                complaint.id,
                {'previous_status': previous, 'new_status': complaint.status,
                 'comment': comment, 'source': 'manual'},
                actor_id
            )

        complainant = self.directory.get_user(complaint.complainant_id)
        self.notifications.notify(
            complaint.complainant_id, NotificationType.STATUS_UPDATE,
            f"Complaint status updated to: {complaint.status.value}",
            {'type': 'complaint', 'id': complaint.id}
        )
        if complainant is not None:
            payload = {
                'user_name': complainant.full_name or complainant.email,
                'complaint_title': complaint.title,
                'complaint_id': complaint.id,
            }
            if complaint.status == ComplaintStatus.RESOLVED:
                self.emails.send('feedback_request', complainant.email,
                                 dict(payload, comment=comment or ''))
            self.emails.send('status_update', complainant.email,
                             dict(payload, new_status=complaint.status.value, comment=comment or ''))

        log_action(
            logger, "info", f"Complaint status changed to {complaint.status.value}",
            user_id=actor_id, action="complaint_status_updated", resource=complaint.id,
            organization_id=complaint.organization_id,
        )
        return complaint

    def escalate_complaint(self, complaint_id: str, actor_id: Optional[str], reason: str,
                           organization_id: Optional[str] = None,
                           now: Optional[datetime] = None) -> Complaint:
        """
        Escalate by hand: priority goes to Urgent, status to In Progress,
        and a running workflow instance is marked ESCALATED.

        Raises:
            ValidationError: No reason given, or the complaint is Closed
        """
        if not reason or not reason.strip():
            raise ValidationError("Escalation reason is required")
        now = now or utc_now()
        complaint = self.complaints.require(complaint_id, organization_id)
        if complaint.status == ComplaintStatus.CLOSED:
            raise ValidationError("Cannot escalate closed complaints")

        instance = self.engine.get_for_complaint(complaint.id)
        if instance is not None and not instance.is_terminal and not instance.is_completed:
            self.engine.escalate(instance.id, reason, actor_id, now)

        complaint.priority = ComplaintPriority.URGENT
        complaint.set_status(ComplaintStatus.IN_PROGRESS, now)
        self.executor.escalate_complaint(complaint, reason, increase_priority=False, now=now)

        complainant = self.directory.get_user(complaint.complainant_id)
        if complainant is not None:
            self.emails.send('status_update', complainant.email, {
                'user_name': complainant.full_name or complainant.email,
                'complaint_title': complaint.title,
                'complaint_id': complaint.id,
                'new_status': 'Escalated',
                'comment': reason,
            })

        log_action(
            logger, "warning", f"Complaint escalated: {reason}",
            user_id=actor_id, action="complaint_escalated", resource=complaint.id,
            organization_id=complaint.organization_id,
        )
        return complaint

    def assign_complaint(self, complaint_id: str, user_id: str, actor_id: Optional[str] = None,
                         organization_id: Optional[str] = None) -> Complaint:
        """
        Hand a complaint to an active department user of its department

        Raises:
            InvalidReferenceError: The user cannot take complaints of this department
        """
        complaint = self.complaints.require(complaint_id, organization_id)
        assignee = self.executor.eligible_assignee(complaint, user_id)
        if assignee is None or assignee.role != UserRole.DEPARTMENT_USER:
            raise InvalidReferenceError("Invalid user assignment")

        previous = complaint.assigned_to
        self.executor.assign_to(complaint, assignee)
        self.audit.log_event(
            AuditEventType.COMPLAINT_ASSIGNED,
            'complaint',
            complaint.id,
            {'previous_assignee': previous, 'assigned_to': assignee.id,
             'comment': f"Assigned to {assignee.full_name or assignee.email}"},
            actor_id
        )
        log_action(
            logger, "info", "Complaint assigned",
            user_id=actor_id, action="complaint_assigned", resource=complaint.id,
            organization_id=complaint.organization_id, extra={'assigned_to': assignee.id},
        )
        return complaint

    def add_comment(self, complaint_id: str, author_id: str, text: str,
                    organization_id: Optional[str] = None) -> ComplaintComment:
        """
        Comment on a complaint

        A comment from anyone but the complainant notifies the complainant;
        the complainant's own comments notify the assignee, if any.
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("Comment is required")
        if len(text) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment must not exceed {MAX_COMMENT_LENGTH} characters")
        complaint = self.complaints.require(complaint_id, organization_id)

        comment = self.complaints.add_comment(complaint.id, author_id, text)
        self.audit.log_event(
            AuditEventType.COMMENT_ADDED, 'complaint', complaint.id, {'comment_id': comment.id}, author_id
        )

        related = {'type': 'complaint', 'id': complaint.id}
        if author_id != complaint.complainant_id:
            self.notifications.notify(
                complaint.complainant_id, NotificationType.NEW_COMMENT,
                f"New comment on your complaint: {complaint.title}", related
            )
        elif complaint.assigned_to:
            self.notifications.notify(
                complaint.assigned_to, NotificationType.NEW_COMMENT,
                f"New comment on complaint: {complaint.title}", related
            )
        return comment

    def list_comments(self, complaint_id: str, organization_id: Optional[str] = None) -> List[ComplaintComment]:
        complaint = self.complaints.require(complaint_id, organization_id)
        return self.complaints.comments_for(complaint.id)
