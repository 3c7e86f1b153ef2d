"""
Shared fixtures: an organization with two departments, users of every role,
and the workflow components wired over in-memory storage.
"""

import pytest
from datetime import datetime, timezone

from resolve_core.storage import InMemoryStorage, utc_now
from resolve_core.audit import AuditTrail
from resolve_core.directory import Directory, UserRole
from resolve_core.complaints import ComplaintStore
from resolve_core.notifications import NotificationService, EmailDispatcher, LogEmailTransport
from resolve_core.workflow_templates import WorkflowTemplateLibrary
from resolve_core.workflows import WorkflowDefinition, WorkflowDefinitionStore, parse_stages
from resolve_core.stage_actions import StageActionExecutor
from resolve_core.workflow_engine import WorkflowEngine
from resolve_core.scheduler import TimedTransitionScheduler
from resolve_core.lifecycle import ComplaintLifecycleCoordinator


T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def storage():
    """Create in-memory storage for testing"""
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def directory(storage, audit_trail):
    return Directory(storage, audit_trail)


@pytest.fixture
def org(directory):
    return directory.register_organization("Northfield University", "University", "admin@northfield.edu")


@pytest.fixture
def department(directory, org):
    return directory.create_department(org.id, "Student Affairs")


@pytest.fixture
def other_department(directory, org):
    return directory.create_department(org.id, "Facilities")


@pytest.fixture
def complaint_type(directory, org, department):
    return directory.create_complaint_type(org.id, "Housing", default_department_id=department.id)


@pytest.fixture
def admin(directory, org):
    return directory.create_user(org.id, "admin@northfield.edu", UserRole.SUPER_ADMIN, "Ada", "Admin")


@pytest.fixture
def student(directory, org):
    return directory.create_user(org.id, "sam@northfield.edu", UserRole.STUDENT, "Sam", "Student")


@pytest.fixture
def staff(directory, org, department):
    """Two department users; the first is created first"""
    return [
        directory.create_user(org.id, "dana@northfield.edu", UserRole.DEPARTMENT_USER, "Dana", "Ng",
                              department_id=department.id),
        directory.create_user(org.id, "eli@northfield.edu", UserRole.DEPARTMENT_USER, "Eli", "Ortiz",
                              department_id=department.id),
    ]


@pytest.fixture
def complaints(storage):
    return ComplaintStore(storage)


@pytest.fixture
def notifications(storage):
    return NotificationService(storage)


@pytest.fixture
def email_transport():
    return RecordingEmailTransport()


@pytest.fixture
def emails(email_transport):
    return EmailDispatcher(transport=email_transport, frontend_url="https://resolve.example.edu")


@pytest.fixture
def templates():
    return WorkflowTemplateLibrary()


@pytest.fixture
def definitions(storage, audit_trail, directory, templates):
    return WorkflowDefinitionStore(storage, audit_trail, directory, templates)


@pytest.fixture
def executor(complaints, directory, notifications, emails, audit_trail):
    return StageActionExecutor(complaints, directory, notifications, emails, audit_trail)


@pytest.fixture
def engine(storage, definitions, complaints, executor, notifications, audit_trail):
    return WorkflowEngine(storage, definitions, complaints, executor, notifications, audit_trail)


@pytest.fixture
def scheduler(engine, complaints):
    return TimedTransitionScheduler(engine, complaints, interval_seconds=60)


@pytest.fixture
def lifecycle(complaints, directory, engine, executor, notifications, emails, audit_trail):
    return ComplaintLifecycleCoordinator(
        complaints, directory, engine, executor, notifications, emails, audit_trail
    )


@pytest.fixture
def make_definition(definitions, org, complaint_type, department):
    """Factory storing a definition for the housing complaint type from wire-format stages"""
    def _make(stages, name="Housing workflow", **overrides):
        now = utc_now()
        fields = dict(
            id="",
            created_at=now,
            updated_at=now,
            organization_id=org.id,
            name=name,
            complaint_type_id=complaint_type.id,
            department_id=department.id,
            stages=parse_stages(stages),
        )
        fields.update(overrides)
        return definitions.create(WorkflowDefinition(**fields))
    return _make


@pytest.fixture
def make_complaint(complaints, org, student, complaint_type, department):
    """Factory storing a complaint without starting a workflow"""
    def _make(title="Broken heater", **overrides):
        fields = dict(
            organization_id=org.id,
            complainant_id=student.id,
            complaint_type_id=complaint_type.id,
            department_id=department.id,
            title=title,
            description="The heater in room 204 does not work",
        )
        fields.update(overrides)
        return complaints.create(**fields)
    return _make


def stage(stage_id, order, name=None, hours=24, actions=None, transitions=None):
    """Wire-format stage"""
    return {
        "id": stage_id,
        "name": name or stage_id.replace("_", " ").title(),
        "order": order,
        "durationInHours": hours,
        "actions": actions or [],
        "transitions": transitions or [],
    }


def goes_to(target, condition="ALWAYS", value=None):
    """Wire-format transition"""
    condition_wire = {"type": condition}
    if value is not None:
        condition_wire["value"] = value
    return {"targetStageId": target, "condition": condition_wire}


def action(action_type, **config):
    """Wire-format stage action"""
    return {"type": action_type, "config": config}


class RecordingEmailTransport(LogEmailTransport):
    """Log transport that also keeps what it delivered"""

    def __init__(self):
        super().__init__()
        self.sent = []

    def deliver(self, message):
        self.sent.append(message)
        super().deliver(message)
