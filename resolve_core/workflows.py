"""
Workflow Model Module

Stage-graph workflow definitions, running workflow instances and the
definition store. A definition is an ordered list of stages; each stage
carries the actions to run on entry and the transitions that may leave it.
An instance tracks one complaint's walk through its definition.

Stage graphs use camelCase keys on the wire and in storage
(``durationInHours``, ``targetStageId``, ``notifyDepartment``...), top-level
record columns stay snake_case so they can be used as storage filters.
"""

import copy
import uuid
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union
from enum import Enum

from .storage import StorageInterface, StorageRecord, utc_now, parse_datetime, format_datetime
from .audit import AuditTrail, AuditEventType
from .complaints import ComplaintStatus
from .errors import ConflictError, NotFoundError, ValidationError

DEFINITIONS_TABLE = "workflow_definitions"
INSTANCES_TABLE = "workflow_instances"

DEFAULT_STAGE_DURATION_HOURS = 24

COMMENT_ACTION = "COMMENT"


class ActionType(Enum):
    """Actions a stage can run when it is entered"""
    NOTIFICATION = "NOTIFICATION"
    STATUS_UPDATE = "STATUS_UPDATE"
    ASSIGNMENT = "ASSIGNMENT"
    ESCALATION = "ESCALATION"


class ConditionType(Enum):
    """Transition condition kinds"""
    ALWAYS = "ALWAYS"
    TIME_BASED = "TIME_BASED"
    USER_ROLE = "USER_ROLE"
    CUSTOM = "CUSTOM"


class AssignmentType(Enum):
    SPECIFIC = "SPECIFIC"
    AUTO = "AUTO"


class InstanceStatus(Enum):
    """Workflow instance lifecycle states"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    ESCALATED = "ESCALATED"


TERMINAL_STATUSES = (InstanceStatus.COMPLETED, InstanceStatus.CANCELED)


# Wire parsing helpers

def _opt(raw: Dict[str, Any], key: str, kinds, default, errors: List[str], where: str):
    value = raw.get(key, default)
    if value is None:
        return default
    # bool is an int subclass; reject it where a number is expected
    if isinstance(value, bool) and bool not in (kinds if isinstance(kinds, tuple) else (kinds,)):
        errors.append(f"{where}: '{key}' has the wrong type")
        return default
    if not isinstance(value, kinds):
        errors.append(f"{where}: '{key}' has the wrong type")
        return default
    return value


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# Action configurations

@dataclass
class NotificationConfig:
    notify_complainant: bool = False
    notify_department: bool = False
    notify_assignee: bool = False
    custom_message: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return _drop_none({
            'notifyComplainant': self.notify_complainant,
            'notifyDepartment': self.notify_department,
            'notifyAssignee': self.notify_assignee,
            'customMessage': self.custom_message,
        })

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], errors: List[str], where: str) -> 'NotificationConfig':
        return cls(
            notify_complainant=_opt(raw, 'notifyComplainant', bool, False, errors, where),
            notify_department=_opt(raw, 'notifyDepartment', bool, False, errors, where),
            notify_assignee=_opt(raw, 'notifyAssignee', bool, False, errors, where),
            custom_message=_opt(raw, 'customMessage', str, None, errors, where),
        )


@dataclass
class StatusUpdateConfig:
    status: Optional[ComplaintStatus] = None
    update_reason: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return _drop_none({
            'status': self.status.value if self.status else None,
            'updateReason': self.update_reason,
        })

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], errors: List[str], where: str) -> 'StatusUpdateConfig':
        status = None
        value = _opt(raw, 'status', str, None, errors, where)
        if value:
            try:
                status = ComplaintStatus(value)
            except ValueError:
                errors.append(f"{where}: unknown complaint status '{value}'")
        return cls(status=status, update_reason=_opt(raw, 'updateReason', str, None, errors, where))


@dataclass
class AssignmentConfig:
    assignment_type: AssignmentType = AssignmentType.AUTO
    specific_user_id: Optional[str] = None
    find_available_user: bool = True

    def to_wire(self) -> Dict[str, Any]:
        return _drop_none({
            'assignmentType': self.assignment_type.value,
            'specificUserId': self.specific_user_id,
            'findAvailableUser': self.find_available_user,
        })

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], errors: List[str], where: str) -> 'AssignmentConfig':
        assignment_type = AssignmentType.AUTO
        value = _opt(raw, 'assignmentType', str, None, errors, where)
        if value:
            try:
                assignment_type = AssignmentType(value)
            except ValueError:
                errors.append(f"{where}: unknown assignment type '{value}'")
        return cls(
            assignment_type=assignment_type,
            specific_user_id=_opt(raw, 'specificUserId', str, None, errors, where),
            find_available_user=_opt(raw, 'findAvailableUser', bool, True, errors, where),
        )


@dataclass
class EscalationConfig:
    escalation_reason: Optional[str] = None
    increase_priority: bool = False

    def to_wire(self) -> Dict[str, Any]:
        return _drop_none({
            'escalationReason': self.escalation_reason,
            'increasePriority': self.increase_priority,
        })

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], errors: List[str], where: str) -> 'EscalationConfig':
        return cls(
            escalation_reason=_opt(raw, 'escalationReason', str, None, errors, where),
            increase_priority=_opt(raw, 'increasePriority', bool, False, errors, where),
        )


ActionConfig = Union[NotificationConfig, StatusUpdateConfig, AssignmentConfig, EscalationConfig]

CONFIG_TYPES = {
    ActionType.NOTIFICATION: NotificationConfig,
    ActionType.STATUS_UPDATE: StatusUpdateConfig,
    ActionType.ASSIGNMENT: AssignmentConfig,
    ActionType.ESCALATION: EscalationConfig,
}


@dataclass
class StageAction:
    """An action run when a stage is entered"""
    action_type: ActionType
    config: ActionConfig

    def to_wire(self) -> Dict[str, Any]:
        return {'type': self.action_type.value, 'config': self.config.to_wire()}

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], errors: List[str], where: str) -> Optional['StageAction']:
        if not isinstance(raw, dict):
            errors.append(f"{where}: action must be an object")
            return None
        try:
            action_type = ActionType(raw.get('type'))
        except ValueError:
            errors.append(f"{where}: unknown action type '{raw.get('type')}'")
            return None
        config = raw.get('config') or {}
        if not isinstance(config, dict):
            errors.append(f"{where}: action config must be an object")
            config = {}
        return cls(action_type, CONFIG_TYPES[action_type].from_wire(config, errors, where))


@dataclass
class TransitionCondition:
    """When a transition may fire. TIME_BASED values are hours."""
    condition_type: ConditionType = ConditionType.ALWAYS
    value: Any = None

    def to_wire(self) -> Dict[str, Any]:
        return _drop_none({'type': self.condition_type.value, 'value': self.value})


@dataclass
class Transition:
    """A permitted move from one stage to another"""
    target_stage_id: str
    condition: TransitionCondition = field(default_factory=TransitionCondition)
    name: Optional[str] = None
    description: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return _drop_none({
            'targetStageId': self.target_stage_id,
            'condition': self.condition.to_wire(),
            'name': self.name,
            'description': self.description,
        })

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], errors: List[str], where: str) -> Optional['Transition']:
        if not isinstance(raw, dict):
            errors.append(f"{where}: transition must be an object")
            return None
        target = raw.get('targetStageId')
        if not isinstance(target, str) or not target:
            errors.append(f"{where}: transition targetStageId is required")
            return None
        condition = TransitionCondition()
        raw_condition = raw.get('condition') or {}
        if isinstance(raw_condition, dict) and raw_condition.get('type'):
            try:
                condition = TransitionCondition(ConditionType(raw_condition['type']), raw_condition.get('value'))
            except ValueError:
                errors.append(f"{where}: unknown condition type '{raw_condition['type']}'")
        return cls(
            target_stage_id=target,
            condition=condition,
            name=_opt(raw, 'name', str, None, errors, where),
            description=_opt(raw, 'description', str, None, errors, where),
        )


@dataclass
class Stage:
    """One step of a workflow definition"""
    id: str
    name: str
    order: int
    description: Optional[str] = None
    duration_in_hours: float = DEFAULT_STAGE_DURATION_HOURS
    actions: List[StageAction] = field(default_factory=list)
    transitions: List[Transition] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        return timedelta(hours=self.duration_in_hours)

    def status_updates(self) -> List[ComplaintStatus]:
        """Statuses this stage's STATUS_UPDATE actions set"""
        return [
            action.config.status for action in self.actions
            if action.action_type == ActionType.STATUS_UPDATE and action.config.status
        ]

    def time_based_transition(self) -> Optional[Transition]:
        """First TIME_BASED transition in declaration order"""
        for transition in self.transitions:
            if transition.condition.condition_type == ConditionType.TIME_BASED:
                return transition
        return None

    def to_wire(self) -> Dict[str, Any]:
        return _drop_none({
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'order': self.order,
            'durationInHours': self.duration_in_hours,
            'actions': [a.to_wire() for a in self.actions],
            'transitions': [t.to_wire() for t in self.transitions],
        })

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], errors: List[str], index: int) -> Optional['Stage']:
        where = f"stages[{index}]"
        if not isinstance(raw, dict):
            errors.append(f"{where}: stage must be an object")
            return None
        order = raw.get('order')
        if isinstance(order, bool) or not isinstance(order, int):
            errors.append(f"{where}: 'order' must be an integer")
            order = None
        duration = _opt(raw, 'durationInHours', (int, float), DEFAULT_STAGE_DURATION_HOURS, errors, where)
        actions = []
        for i, raw_action in enumerate(raw.get('actions') or []):
            action = StageAction.from_wire(raw_action, errors, f"{where}.actions[{i}]")
            if action:
                actions.append(action)
        transitions = []
        for i, raw_transition in enumerate(raw.get('transitions') or []):
            transition = Transition.from_wire(raw_transition, errors, f"{where}.transitions[{i}]")
            if transition:
                transitions.append(transition)
        if order is None:
            return None
        return cls(
            id=_opt(raw, 'id', str, "", errors, where),
            name=_opt(raw, 'name', str, "", errors, where),
            order=order,
            description=_opt(raw, 'description', str, None, errors, where),
            duration_in_hours=duration,
            actions=actions,
            transitions=transitions,
        )


def parse_stages(raw_stages: Any) -> List[Stage]:
    """Parse a wire-format stage list, raising ValidationError listing every problem"""
    if not isinstance(raw_stages, list):
        raise ValidationError("Stages must be a list", ["stages: must be a list"])
    errors: List[str] = []
    stages = []
    for index, raw in enumerate(raw_stages):
        stage = Stage.from_wire(raw, errors, index)
        if stage:
            stages.append(stage)
    if errors:
        raise ValidationError("Invalid workflow stages", errors)
    return stages


def validate_stages(stages: List[Stage]) -> List[str]:
    """Structural problems with a stage list; empty when valid"""
    problems = []
    if not stages:
        return ["Workflow must have at least one stage"]

    seen_ids = set()
    seen_orders = set()
    for stage in stages:
        if not stage.id:
            problems.append(f"Stage '{stage.name}' has no id")
        elif stage.id in seen_ids:
            problems.append(f"Duplicate stage id '{stage.id}'")
        seen_ids.add(stage.id)

        if not stage.name:
            problems.append(f"Stage '{stage.id}' has no name")
        if stage.order in seen_orders:
            problems.append(f"Duplicate stage order {stage.order}")
        seen_orders.add(stage.order)

        if stage.duration_in_hours is None or stage.duration_in_hours <= 0:
            problems.append(f"Stage '{stage.id}' must have a positive duration")

    for stage in stages:
        for transition in stage.transitions:
            if transition.target_stage_id not in seen_ids:
                problems.append(
                    f"Stage '{stage.id}' has a transition to unknown stage '{transition.target_stage_id}'"
                )
    return problems


@dataclass
class WorkflowDefinition(StorageRecord):
    """An organization's workflow: ordered stages with actions and transitions"""
    organization_id: str
    name: str
    stages: List[Stage]
    description: str = ""
    complaint_type_id: Optional[str] = None
    department_id: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None

    def ordered_stages(self) -> List[Stage]:
        return sorted(self.stages, key=lambda s: s.order)

    def stage_by_id(self, stage_id: str) -> Optional[Stage]:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def entry_stage(self) -> Stage:
        """The stage with the lowest order"""
        return min(self.stages, key=lambda s: s.order)

    def is_final_stage(self, stage: Stage) -> bool:
        """A stage completes the workflow when it has the highest order and no way out"""
        max_order = max(s.order for s in self.stages)
        return stage.order == max_order and not stage.transitions

    def remaining_duration(self, from_order: Optional[int] = None) -> timedelta:
        """Sum of stage durations from a given order onward (all stages when None)"""
        hours = sum(
            s.duration_in_hours for s in self.stages
            if from_order is None or s.order >= from_order
        )
        return timedelta(hours=hours)

    def first_stage_setting_status(self, status: ComplaintStatus) -> Optional[Stage]:
        """First stage, in declaration order, whose actions set the given status"""
        for stage in self.stages:
            if status in stage.status_updates():
                return stage
        return None

    def stages_to_wire(self) -> List[Dict[str, Any]]:
        return [s.to_wire() for s in self.stages]

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'organization_id': self.organization_id,
            'name': self.name,
            'description': self.description,
            'complaint_type_id': self.complaint_type_id,
            'department_id': self.department_id,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'stages': self.stages_to_wire(),
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowDefinition':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            organization_id=data['organization_id'],
            name=data['name'],
            description=data.get('description') or "",
            complaint_type_id=data.get('complaint_type_id'),
            department_id=data.get('department_id'),
            is_active=data.get('is_active', True),
            created_by=data.get('created_by'),
            stages=parse_stages(data.get('stages', [])),
        )


# Instances

@dataclass
class HistoryAction:
    """Something that happened while an instance sat in a stage"""
    action_type: str  # ActionType value or COMMENT
    performed_at: datetime
    performed_by: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            'type': self.action_type,
            'performedAt': format_datetime(self.performed_at),
            'performedBy': self.performed_by,
            'result': self.result,
            'notes': self.notes,
        }

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> 'HistoryAction':
        return cls(
            action_type=raw['type'],
            performed_at=parse_datetime(raw['performedAt']),
            performed_by=raw.get('performedBy'),
            result=raw.get('result') or {},
            notes=raw.get('notes'),
        )


@dataclass
class HistoryEntry:
    """One visit to a stage"""
    stage_id: str
    entered_at: datetime
    exited_at: Optional[datetime] = None
    actions: List[HistoryAction] = field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            'stageId': self.stage_id,
            'enteredAt': format_datetime(self.entered_at),
            'exitedAt': format_datetime(self.exited_at),
            'actions': [a.to_wire() for a in self.actions],
        }

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> 'HistoryEntry':
        return cls(
            stage_id=raw['stageId'],
            entered_at=parse_datetime(raw['enteredAt']),
            exited_at=parse_datetime(raw.get('exitedAt')),
            actions=[HistoryAction.from_wire(a) for a in raw.get('actions', [])],
        )


@dataclass
class WorkflowInstance(StorageRecord):
    """A complaint's progress through a workflow definition"""
    workflow_id: str
    complaint_id: str
    organization_id: str
    current_stage_id: str
    started_at: datetime
    history: List[HistoryEntry] = field(default_factory=list)
    status: InstanceStatus = InstanceStatus.ACTIVE
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    expected_completion_date: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def open_entry(self) -> Optional[HistoryEntry]:
        """The history entry for the current stage, if still open"""
        for entry in reversed(self.history):
            if entry.exited_at is None:
                return entry
        return None

    def copy(self) -> 'WorkflowInstance':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'workflow_id': self.workflow_id,
            'complaint_id': self.complaint_id,
            'organization_id': self.organization_id,
            'current_stage_id': self.current_stage_id,
            'started_at': format_datetime(self.started_at),
            'history': [entry.to_wire() for entry in self.history],
            'status': self.status.value,
            'is_completed': self.is_completed,
            'completed_at': format_datetime(self.completed_at),
            'expected_completion_date': format_datetime(self.expected_completion_date),
            'version': self.version,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowInstance':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            workflow_id=data['workflow_id'],
            complaint_id=data['complaint_id'],
            organization_id=data['organization_id'],
            current_stage_id=data['current_stage_id'],
            started_at=parse_datetime(data['started_at']),
            history=[HistoryEntry.from_wire(h) for h in data.get('history', [])],
            status=InstanceStatus(data['status']),
            is_completed=data.get('is_completed', False),
            completed_at=parse_datetime(data.get('completed_at')),
            expected_completion_date=parse_datetime(data.get('expected_completion_date')),
            version=data.get('version', 0),
        )


# Definition store

class WorkflowDefinitionStore:
    """
    Create, edit, list and delete workflow definitions.

    Every write validates the stage graph and the department/complaint-type
    references before anything is persisted, and is recorded in the audit
    trail.
    """

    UPDATABLE_FIELDS = ('name', 'description', 'complaint_type_id', 'department_id', 'is_active', 'stages')

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, directory,
                 template_library=None):
        self.storage = storage
        self.audit = audit_trail
        self.directory = directory
        if template_library is None:
            from .workflow_templates import WorkflowTemplateLibrary
            template_library = WorkflowTemplateLibrary()
        self.templates = template_library

    def create(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Validate and persist a new definition

        Args:
            definition: Definition to store; an empty id is replaced with a new one

        Returns:
            The stored definition

        Raises:
            ValidationError: The stage graph is malformed
            InvalidReferenceError: Department or complaint type is not the organization's
        """
        self._validate(definition)

        now = utc_now()
        if not definition.id:
            definition.id = str(uuid.uuid4())
        definition.created_at = now
        definition.updated_at = now

        self.storage.save(DEFINITIONS_TABLE, definition.id, definition.to_dict())
        self.audit.log_event(
            AuditEventType.WORKFLOW_DEFINITION_CREATED,
            'workflow_definition',
            definition.id,
            {
                'name': definition.name,
                'organization_id': definition.organization_id,
                'stage_count': len(definition.stages),
            },
            definition.created_by
        )
        return definition

    def update(self, definition_id: str, patch: Dict[str, Any],
               organization_id: Optional[str] = None,
               updated_by: Optional[str] = None) -> WorkflowDefinition:
        """
        Apply a partial update. ``stages`` replaces the whole stage list and may
        be given as Stage objects or wire-format dicts.
        """
        definition = self.get(definition_id, organization_id)

        changed = []
        for key, value in patch.items():
            if key not in self.UPDATABLE_FIELDS:
                continue
            if key == 'stages' and value and not isinstance(value[0], Stage):
                value = parse_stages(value)
            setattr(definition, key, value)
            changed.append(key)

        self._validate(definition)
        if 'stages' in changed:
            self._check_stages_in_use(definition)
        definition.touch()
        self.storage.save(DEFINITIONS_TABLE, definition.id, definition.to_dict())
        self.audit.log_event(
            AuditEventType.WORKFLOW_DEFINITION_UPDATED,
            'workflow_definition',
            definition.id,
            {'fields': changed},
            updated_by
        )
        return definition

    def get(self, definition_id: str, organization_id: Optional[str] = None) -> WorkflowDefinition:
        """Definition by id; another organization's definition is reported as missing"""
        data = self.storage.load(DEFINITIONS_TABLE, definition_id)
        if not data or (organization_id and data['organization_id'] != organization_id):
            raise NotFoundError("Workflow not found")
        return WorkflowDefinition.from_dict(data)

    def list_by(self, organization_id: str, department_id: Optional[str] = None,
                complaint_type_id: Optional[str] = None,
                is_active: Optional[bool] = None) -> List[WorkflowDefinition]:
        filters: Dict[str, Any] = {'organization_id': organization_id}
        if department_id:
            filters['department_id'] = department_id
        if complaint_type_id:
            filters['complaint_type_id'] = complaint_type_id
        if is_active is not None:
            filters['is_active'] = is_active
        definitions = [WorkflowDefinition.from_dict(d) for d in self.storage.find(DEFINITIONS_TABLE, filters)]
        return sorted(definitions, key=lambda d: d.created_at, reverse=True)

    def delete(self, definition_id: str, organization_id: Optional[str] = None,
               deleted_by: Optional[str] = None) -> None:
        """Delete a definition no unfinished instance still uses"""
        definition = self.get(definition_id, organization_id)
        in_use = self._unfinished_instances(definition_id)
        if in_use:
            raise ConflictError(
                f"Cannot delete workflow: {len(in_use)} active instance(s) still use it"
            )
        self.storage.delete(DEFINITIONS_TABLE, definition_id)
        self.audit.log_event(
            AuditEventType.WORKFLOW_DEFINITION_DELETED,
            'workflow_definition',
            definition_id,
            {'name': definition.name},
            deleted_by
        )

    def find_active_for(self, organization_id: str, complaint_type_id: str) -> Optional[WorkflowDefinition]:
        """The active definition for a complaint type; the oldest wins if several exist"""
        matches = self.storage.find(DEFINITIONS_TABLE, {
            'organization_id': organization_id,
            'complaint_type_id': complaint_type_id,
            'is_active': True,
        })
        if not matches:
            return None
        definitions = sorted((WorkflowDefinition.from_dict(d) for d in matches), key=lambda d: d.created_at)
        return definitions[0]

    # Templates

    def create_from_template(self, template_id: str, organization_id: str,
                             complaint_type_id: Optional[str] = None,
                             department_id: Optional[str] = None,
                             name: Optional[str] = None,
                             description: Optional[str] = None,
                             created_by: Optional[str] = None) -> WorkflowDefinition:
        """Instantiate a catalog template as a new definition of the organization"""
        template = self.templates.get_by_id(template_id)
        if not template:
            raise NotFoundError("Template not found")

        now = utc_now()
        definition = WorkflowDefinition(
            id="",
            created_at=now,
            updated_at=now,
            organization_id=organization_id,
            name=name or template.name,
            description=description if description is not None else template.description,
            complaint_type_id=complaint_type_id,
            department_id=department_id,
            stages=template.stages,
            created_by=created_by,
        )
        return self.create(definition)

    def import_all(self, organization_id: str, complaint_type_id: Optional[str] = None,
                   department_id: Optional[str] = None,
                   created_by: Optional[str] = None) -> List[WorkflowDefinition]:
        """Instantiate every catalog template for an organization"""
        if complaint_type_id:
            self.directory.require_complaint_type(complaint_type_id, organization_id)
        if department_id:
            self.directory.require_department(department_id, organization_id)
        return [
            self.create_from_template(
                template.id, organization_id,
                complaint_type_id=complaint_type_id,
                department_id=department_id,
                created_by=created_by,
            )
            for template in self.templates.list_all()
        ]

    def _unfinished_instances(self, definition_id: str) -> List[Dict[str, Any]]:
        return [
            data for data in self.storage.find(INSTANCES_TABLE, {'workflow_id': definition_id, 'is_completed': False})
            if InstanceStatus(data['status']) not in TERMINAL_STATUSES
        ]

    def _check_stages_in_use(self, definition: WorkflowDefinition) -> None:
        """Unfinished instances must still find their current stage in the new stage list"""
        stage_ids = {stage.id for stage in definition.stages}
        stranded = sorted({
            data['current_stage_id'] for data in self._unfinished_instances(definition.id)
            if data['current_stage_id'] not in stage_ids
        })
        if stranded:
            raise ConflictError(
                f"Cannot remove stage(s) {', '.join(stranded)}: active instances are still in them"
            )

    def _validate(self, definition: WorkflowDefinition) -> None:
        if not definition.name or not definition.name.strip():
            problems = ["Workflow name is required"]
        else:
            problems = []
        problems.extend(validate_stages(definition.stages))
        if problems:
            raise ValidationError("Invalid workflow definition", problems)

        if definition.department_id:
            self.directory.require_department(definition.department_id, definition.organization_id)
        if definition.complaint_type_id:
            self.directory.require_complaint_type(definition.complaint_type_id, definition.organization_id)
