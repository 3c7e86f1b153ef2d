"""
Stage Action Executor

Runs the actions of a workflow stage against a complaint: notifications,
status updates, assignment and escalation. The executor writes the complaint
but never the workflow instance; it reports what it did as ActionOutcome
records which the engine appends to the instance history.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any

from .audit import AuditTrail, AuditEventType
from .complaints import Complaint, ComplaintStore
from .directory import Directory, User, UserRole
from .notifications import NotificationService, NotificationType, EmailDispatcher
from .storage import utc_now
from .workflows import (
    Stage, StageAction, ActionType, AssignmentType, HistoryAction,
    NotificationConfig, StatusUpdateConfig, AssignmentConfig, EscalationConfig,
)

logger = logging.getLogger("resolve.stage_actions")

AUTOMATIC_NOTE = "Automatic action performed by workflow"


@dataclass
class ActionOutcome:
    """Result of running one stage action"""
    action_type: ActionType
    performed_at: datetime
    performed: bool = True
    result: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = AUTOMATIC_NOTE
    error: Optional[str] = None
    escalated: bool = False

    @property
    def recordable(self) -> bool:
        """Whether the outcome belongs in the instance history"""
        return self.performed or self.error is not None

    def to_history_action(self) -> HistoryAction:
        result = dict(self.result)
        if self.error:
            result['error'] = self.error
        return HistoryAction(
            action_type=self.action_type.value,
            performed_at=self.performed_at,
            result=result,
            notes=self.notes,
        )


def _skipped(action_type: ActionType, now: datetime, reason: str) -> ActionOutcome:
    return ActionOutcome(action_type, now, performed=False, notes=reason)


class StageActionExecutor:
    """Executes stage actions in declared order, isolating each one"""

    def __init__(self, complaints: ComplaintStore, directory: Directory,
                 notifications: NotificationService, emails: EmailDispatcher,
                 audit_trail: Optional[AuditTrail] = None):
        self.complaints = complaints
        self.directory = directory
        self.notifications = notifications
        self.emails = emails
        self.audit = audit_trail
        self._handlers = {
            ActionType.NOTIFICATION: self._handle_notification,
            ActionType.STATUS_UPDATE: self._handle_status_update,
            ActionType.ASSIGNMENT: self._handle_assignment,
            ActionType.ESCALATION: self._handle_escalation,
        }

    def execute(self, stage: Stage, complaint: Complaint,
                now: Optional[datetime] = None) -> List[ActionOutcome]:
        """
        Run every action of a stage against a complaint.

        An action that raises is logged and reported as an outcome with
        ``error`` set; the remaining actions still run.

        Args:
            stage: Stage whose actions to run
            complaint: Complaint to act on; mutated and saved in place
            now: Time to stamp on outcomes and complaint fields

        Returns:
            One ActionOutcome per action, in declared order
        """
        now = now or utc_now()
        outcomes = []
        for action in stage.actions:
            outcomes.append(self.execute_action(action, complaint, now))
        return outcomes

    def execute_action(self, action: StageAction, complaint: Complaint, now: datetime) -> ActionOutcome:
        handler = self._handlers[action.action_type]
        try:
            return handler(action.config, complaint, now)
        except Exception as e:
            logger.exception(
                "Stage action %s failed for complaint %s", action.action_type.value, complaint.id
            )
            return ActionOutcome(action.action_type, now, performed=False, error=str(e))

    # Handlers

    def _handle_notification(self, config: NotificationConfig, complaint: Complaint,
                             now: datetime) -> ActionOutcome:
        notified = []
        related = _related(complaint)

        if config.notify_complainant:
            complainant = self.directory.get_user(complaint.complainant_id)
            if complainant and self._deliver(
                complainant,
                NotificationType.STATUS_UPDATE,
                config.custom_message or f"Your complaint '{complaint.title}' has been updated.",
                related,
                'status_update',
                {
                    'new_status': complaint.status.value,
                    'comment': config.custom_message or 'Your complaint has been updated.',
                },
                complaint,
            ):
                notified.append(f"Notified complainant {complainant.email}")

        if config.notify_department:
            message = config.custom_message or f"New complaint in your department: {complaint.title}"
            for user in self.directory.active_users(complaint.department_id):
                if self._deliver(user, NotificationType.NEW_COMPLAINT, message, related,
                                 'new_complaint', {}, complaint):
                    notified.append(f"Notified department user {user.email}")

        if config.notify_assignee and complaint.assigned_to:
            assignee = self.directory.get_user(complaint.assigned_to)
            message = config.custom_message or f"Complaint assigned to you: {complaint.title}"
            if assignee and self._deliver(assignee, NotificationType.ASSIGNMENT, message, related,
                                          'assignment', {}, complaint):
                notified.append(f"Notified assignee {assignee.email}")

        return ActionOutcome(ActionType.NOTIFICATION, now, result={'notifications': notified})

    def _handle_status_update(self, config: StatusUpdateConfig, complaint: Complaint,
                              now: datetime) -> ActionOutcome:
        if not config.status:
            return _skipped(ActionType.STATUS_UPDATE, now, "No status configured")

        previous = complaint.set_status(config.status, now)
        self.complaints.save(complaint)
        reason = config.update_reason or "Automatic status update by workflow"
        if self.audit:
            self.audit.log_event(
                AuditEventType.STATUS_UPDATED,
                'complaint',
                complaint.id,
                {'previous_status': previous, 'new_status': config.status, 'reason': reason, 'source': 'workflow'}
            )
        return ActionOutcome(ActionType.STATUS_UPDATE, now, result={
            'previousStatus': previous.value,
            'newStatus': config.status.value,
            'reason': reason,
        })

    def _handle_assignment(self, config: AssignmentConfig, complaint: Complaint,
                           now: datetime) -> ActionOutcome:
        assignee = None
        if config.assignment_type == AssignmentType.SPECIFIC and config.specific_user_id:
            assignee = self.eligible_assignee(complaint, config.specific_user_id)
        elif config.assignment_type == AssignmentType.AUTO and config.find_available_user:
            assignee = self.least_loaded_user(complaint.department_id)

        if not assignee:
            return _skipped(ActionType.ASSIGNMENT, now, "No eligible user to assign")

        self.assign_to(complaint, assignee)
        return ActionOutcome(ActionType.ASSIGNMENT, now, result={'assignedUserId': assignee.id})

    # Shared with manual assignment

    def eligible_assignee(self, complaint: Complaint, user_id: Optional[str]) -> Optional[User]:
        """The user, if active and a member of the complaint's department"""
        user = self.directory.get_user(user_id)
        if user and user.is_active and user.department_id == complaint.department_id:
            return user
        return None

    def assign_to(self, complaint: Complaint, assignee: User) -> None:
        """Record the assignee and tell them by email and in-app"""
        complaint.assigned_to = assignee.id
        self.complaints.save(complaint)
        self.emails.send('assignment', assignee.email, self._email_payload(assignee, complaint))
        self.notifications.notify(
            assignee.id, NotificationType.ASSIGNMENT,
            f"Complaint assigned to you: {complaint.title}", _related(complaint)
        )

    def _handle_escalation(self, config: EscalationConfig, complaint: Complaint,
                           now: datetime) -> ActionOutcome:
        reason = config.escalation_reason or "Automatic escalation by workflow"
        self.escalate_complaint(complaint, reason, config.increase_priority, now)
        return ActionOutcome(ActionType.ESCALATION, now, escalated=True, result={
            'escalationReason': complaint.escalation_reason,
            'newPriority': complaint.priority.value,
        })

    # Shared with the engine's auto-escalation path

    def escalate_complaint(self, complaint: Complaint, reason: str, increase_priority: bool,
                           now: Optional[datetime] = None) -> None:
        """Stamp escalation metadata, optionally bump priority, tell department staff"""
        now = now or utc_now()
        previous_priority = complaint.priority
        if increase_priority:
            complaint.priority = complaint.priority.bumped()
        complaint.escalated_at = now
        complaint.escalation_reason = reason
        self.complaints.save(complaint)

        if self.audit:
            self.audit.log_event(
                AuditEventType.COMPLAINT_ESCALATED,
                'complaint',
                complaint.id,
                {'reason': reason, 'previous_priority': previous_priority, 'new_priority': complaint.priority}
            )

        for user in self.directory.active_users(complaint.department_id, UserRole.DEPARTMENT_USER):
            self._deliver(
                user, NotificationType.ESCALATION,
                f"Complaint escalated: {complaint.title} ({reason})",
                _related(complaint),
                'status_update', {'new_status': 'Escalated', 'comment': reason},
                complaint,
            )

    def least_loaded_user(self, department_id: str) -> Optional[User]:
        """Active department user with the fewest open complaints; ties go to the first found"""
        best = None
        best_count = None
        for user in self.directory.active_users(department_id):
            count = self.complaints.count_open_assigned(user.id)
            if best_count is None or count < best_count:
                best, best_count = user, count
        return best

    # Delivery helpers

    def _deliver(self, user: User, notification_type: NotificationType, message: str,
                 related: Dict[str, Any], template_key: str, extra: Dict[str, Any],
                 complaint: Complaint) -> bool:
        """Inbox notification plus email for one recipient; failures are logged"""
        try:
            self.notifications.notify(user.id, notification_type, message, related)
            if user.email_notifications:
                payload = self._email_payload(user, complaint)
                payload.update(extra)
                self.emails.send(template_key, user.email, payload)
            return True
        except Exception:
            logger.exception("Failed to notify user %s about complaint %s", user.id, complaint.id)
            return False

    @staticmethod
    def _email_payload(user: User, complaint: Complaint) -> Dict[str, Any]:
        return {
            'user_name': user.full_name or user.email,
            'complaint_title': complaint.title,
            'complaint_id': complaint.id,
            'priority': complaint.priority.value,
        }


def _related(complaint: Complaint) -> Dict[str, Any]:
    return {'type': 'complaint', 'id': complaint.id}
