"""
Tests for the stage action executor
"""

import pytest

from conftest import T0, stage, action

from resolve_core.complaints import ComplaintStatus, ComplaintPriority
from resolve_core.directory import UserRole
from resolve_core.notifications import NotificationType
from resolve_core.workflows import ActionType, parse_stages


def build_stage(*actions):
    return parse_stages([stage("work", 1, actions=list(actions))])[0]


class TestNotificationAction:
    """Test NOTIFICATION actions"""

    def test_notifies_complainant_with_custom_message(self, executor, make_complaint, student,
                                                      notifications, email_transport):
        complaint = make_complaint()
        outcomes = executor.execute(
            build_stage(action("NOTIFICATION", notifyComplainant=True, customMessage="We are on it")),
            complaint, T0,
        )
        assert outcomes[0].performed
        inbox = notifications.list_for_user(student.id)
        assert [n.message for n in inbox] == ["We are on it"]
        assert inbox[0].notification_type == NotificationType.STATUS_UPDATE
        assert email_transport.sent[0].to == student.email
        assert email_transport.sent[0].template_key == "status_update"

    def test_notifies_every_department_user(self, executor, make_complaint, staff, notifications):
        complaint = make_complaint()
        outcome = executor.execute(
            build_stage(action("NOTIFICATION", notifyDepartment=True)), complaint, T0
        )[0]
        assert len(outcome.result['notifications']) == 2
        for user in staff:
            assert notifications.unread_count(user.id) == 1

    def test_inactive_department_user_skipped(self, executor, directory, make_complaint, staff, notifications):
        staff[1].is_active = False
        directory.save_user(staff[1])
        executor.execute(build_stage(action("NOTIFICATION", notifyDepartment=True)), make_complaint(), T0)
        assert notifications.unread_count(staff[0].id) == 1
        assert notifications.unread_count(staff[1].id) == 0

    def test_email_opt_out_still_gets_inbox(self, executor, directory, make_complaint, student,
                                            notifications, email_transport):
        student.email_notifications = False
        directory.save_user(student)
        executor.execute(build_stage(action("NOTIFICATION", notifyComplainant=True)), make_complaint(), T0)
        assert notifications.unread_count(student.id) == 1
        assert email_transport.sent == []

    def test_assignee_not_notified_when_unassigned(self, executor, make_complaint, notifications, staff):
        outcome = executor.execute(
            build_stage(action("NOTIFICATION", notifyAssignee=True)), make_complaint(), T0
        )[0]
        assert outcome.result['notifications'] == []


class TestStatusUpdateAction:
    """Test STATUS_UPDATE actions"""

    def test_sets_status_and_reports_previous(self, executor, make_complaint, complaints):
        complaint = make_complaint()
        outcome = executor.execute(
            build_stage(action("STATUS_UPDATE", status="Resolved", updateReason="Heater replaced")),
            complaint, T0,
        )[0]
        assert outcome.result == {
            'previousStatus': "Open", 'newStatus': "Resolved", 'reason': "Heater replaced",
        }
        stored = complaints.get(complaint.id)
        assert stored.status == ComplaintStatus.RESOLVED
        assert stored.resolved_at == T0

    def test_missing_status_is_skipped(self, executor, make_complaint):
        outcome = executor.execute(build_stage(action("STATUS_UPDATE")), make_complaint(), T0)[0]
        assert not outcome.performed
        assert not outcome.recordable


class TestAssignmentAction:
    """Test ASSIGNMENT actions"""

    def test_auto_picks_least_loaded_user(self, executor, make_complaint, complaints, staff):
        # dana already holds three open complaints, eli holds one
        for assignee, count in ((staff[0], 3), (staff[1], 1)):
            for i in range(count):
                busy = make_complaint(f"Existing {assignee.first_name} {i}")
                busy.assigned_to = assignee.id
                complaints.save(busy)

        complaint = make_complaint("Leaking tap")
        outcome = executor.execute(build_stage(action("ASSIGNMENT", assignmentType="AUTO")), complaint, T0)[0]

        assert outcome.result == {'assignedUserId': staff[1].id}
        assert complaints.get(complaint.id).assigned_to == staff[1].id

    def test_closed_complaints_do_not_count_as_load(self, executor, make_complaint, complaints, staff):
        for i in range(2):
            done = make_complaint(f"Old {i}")
            done.assigned_to = staff[0].id
            done.set_status(ComplaintStatus.CLOSED, T0)
            complaints.save(done)
        extra = make_complaint("Open one")
        extra.assigned_to = staff[1].id
        complaints.save(extra)

        assert executor.least_loaded_user(staff[0].department_id).id == staff[0].id

    def test_tie_goes_to_first_user(self, executor, make_complaint, staff):
        complaint = make_complaint()
        executor.execute(build_stage(action("ASSIGNMENT", assignmentType="AUTO")), complaint, T0)
        assert complaint.assigned_to == staff[0].id

    def test_specific_user(self, executor, make_complaint, staff, notifications, email_transport):
        complaint = make_complaint()
        executor.execute(
            build_stage(action("ASSIGNMENT", assignmentType="SPECIFIC", specificUserId=staff[1].id)),
            complaint, T0,
        )
        assert complaint.assigned_to == staff[1].id
        assert notifications.list_for_user(staff[1].id)[0].notification_type == NotificationType.ASSIGNMENT
        assert [m.template_key for m in email_transport.sent] == ["assignment"]

    def test_specific_user_outside_department_is_skipped(self, executor, directory, org, other_department,
                                                         make_complaint):
        outsider = directory.create_user(org.id, "fran@northfield.edu", UserRole.DEPARTMENT_USER,
                                         "Fran", "Lee", department_id=other_department.id)
        complaint = make_complaint()
        outcome = executor.execute(
            build_stage(action("ASSIGNMENT", assignmentType="SPECIFIC", specificUserId=outsider.id)),
            complaint, T0,
        )[0]
        assert not outcome.performed
        assert complaint.assigned_to is None

    def test_no_eligible_user_is_a_no_op(self, executor, make_complaint, complaints):
        complaint = make_complaint()
        outcome = executor.execute(build_stage(action("ASSIGNMENT", assignmentType="AUTO")), complaint, T0)[0]
        assert not outcome.performed
        assert outcome.error is None
        assert complaints.get(complaint.id).assigned_to is None


class TestEscalationAction:
    """Test ESCALATION actions"""

    def test_increase_priority_bumps_one_step(self, executor, make_complaint, complaints):
        complaint = make_complaint(priority=ComplaintPriority.HIGH)
        outcome = executor.execute(
            build_stage(action("ESCALATION", escalationReason="Repeat fault", increasePriority=True)),
            complaint, T0,
        )[0]
        assert outcome.escalated
        stored = complaints.get(complaint.id)
        assert stored.priority == ComplaintPriority.URGENT
        assert stored.escalated_at == T0
        assert stored.escalation_reason == "Repeat fault"

    def test_urgent_stays_urgent(self, executor, make_complaint):
        complaint = make_complaint(priority=ComplaintPriority.URGENT)
        executor.execute(build_stage(action("ESCALATION", increasePriority=True)), complaint, T0)
        assert complaint.priority == ComplaintPriority.URGENT
        assert complaint.escalation_reason == "Automatic escalation by workflow"

    def test_priority_unchanged_without_flag(self, executor, make_complaint):
        complaint = make_complaint()
        executor.execute(build_stage(action("ESCALATION")), complaint, T0)
        assert complaint.priority == ComplaintPriority.MEDIUM

    def test_department_users_told(self, executor, make_complaint, staff, notifications):
        executor.execute(build_stage(action("ESCALATION", escalationReason="No heat")), make_complaint(), T0)
        inbox = notifications.list_for_user(staff[0].id)
        assert inbox[0].notification_type == NotificationType.ESCALATION
        assert "No heat" in inbox[0].message


class TestExecution:
    """Test ordering and failure isolation"""

    def test_actions_run_in_declared_order(self, executor, make_complaint, complaints):
        complaint = make_complaint()
        outcomes = executor.execute(build_stage(
            action("STATUS_UPDATE", status="In Progress"),
            action("STATUS_UPDATE", status="Resolved"),
        ), complaint, T0)
        assert [o.result['newStatus'] for o in outcomes] == ["In Progress", "Resolved"]
        assert complaints.get(complaint.id).status == ComplaintStatus.RESOLVED

    def test_failing_action_does_not_stop_the_rest(self, executor, make_complaint, complaints,
                                                   directory, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("directory offline")

        monkeypatch.setattr(directory, "active_users", broken)
        complaint = make_complaint()
        outcomes = executor.execute(build_stage(
            action("ASSIGNMENT", assignmentType="AUTO"),
            action("STATUS_UPDATE", status="In Progress"),
        ), complaint, T0)

        assert outcomes[0].action_type == ActionType.ASSIGNMENT
        assert outcomes[0].error == "directory offline"
        assert outcomes[0].recordable
        assert outcomes[0].to_history_action().result == {'error': "directory offline"}
        assert outcomes[1].performed
        assert complaints.get(complaint.id).status == ComplaintStatus.IN_PROGRESS
