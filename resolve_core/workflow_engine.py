"""
Workflow Instance Engine

State machine for workflow instances. Transition decisions are made by pure
planning functions (``plan_initialize``/``plan_advance``) that return the new
instance state plus the side effects it implies. The engine commits the new
state under the instance's lock with a version check, then runs the effects
(stage actions, complaint mirroring, notifications) one by one. A failing
effect is logged and never rolls the committed state back.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Any

from .audit import AuditTrail, AuditEventType
from .complaints import Complaint, ComplaintStore, ComplaintStatus
from .errors import (
    ConcurrentModificationError, ConflictError, InvalidReferenceError,
    InvalidTransitionError, NotFoundError,
)
from .logging_config import log_action
from .notifications import NotificationService, NotificationType
from .stage_actions import StageActionExecutor, ActionOutcome
from .storage import StorageInterface, utc_now
from .workflows import (
    INSTANCES_TABLE, COMMENT_ACTION,
    WorkflowDefinition, WorkflowDefinitionStore, WorkflowInstance, InstanceStatus,
    HistoryEntry, HistoryAction, Stage,
)

logger = logging.getLogger("resolve.workflow")

EXPECTED_COMPLETION_TOLERANCE = timedelta(minutes=1)


class EffectType(Enum):
    """Side effects a committed transition asks for"""
    MIRROR_STAGE_NAME = "mirror_stage_name"
    RUN_STAGE_ACTIONS = "run_stage_actions"
    MIRROR_CLOSED = "mirror_closed"
    NOTIFY_COMPLAINANT = "notify_complainant"


@dataclass
class Effect:
    effect_type: EffectType
    stage_id: Optional[str] = None
    message: Optional[str] = None


@dataclass
class TransitionPlan:
    """New instance state plus the effects to run once it is committed"""
    instance: WorkflowInstance
    effects: List[Effect] = field(default_factory=list)
    from_stage_id: Optional[str] = None
    to_stage_id: Optional[str] = None
    completed: bool = False


def plan_initialize(definition: WorkflowDefinition, complaint: Complaint, now: datetime) -> TransitionPlan:
    """Plan a fresh instance entering the definition's lowest-order stage"""
    entry = definition.entry_stage()
    instance = WorkflowInstance(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        workflow_id=definition.id,
        complaint_id=complaint.id,
        organization_id=complaint.organization_id,
        current_stage_id=entry.id,
        started_at=now,
        history=[HistoryEntry(stage_id=entry.id, entered_at=now)],
        expected_completion_date=now + definition.remaining_duration(),
    )
    return TransitionPlan(
        instance=instance,
        effects=[
            Effect(EffectType.MIRROR_STAGE_NAME, entry.id),
            Effect(EffectType.RUN_STAGE_ACTIONS, entry.id),
        ],
        to_stage_id=entry.id,
    )


def valid_targets(definition: WorkflowDefinition, stage: Optional[Stage]) -> List[str]:
    """Stage ids reachable from a stage; a stage without transitions may go anywhere"""
    if stage is None or not stage.transitions:
        return [s.id for s in definition.ordered_stages()]
    return [t.target_stage_id for t in stage.transitions]


def plan_advance(definition: WorkflowDefinition, instance: WorkflowInstance, target_stage_id: str,
                 now: datetime, actor_id: Optional[str] = None, comment: Optional[str] = None,
                 check_legality: bool = True) -> TransitionPlan:
    """
    Plan a move of an instance to another stage

    Args:
        definition: The instance's workflow definition
        instance: Current instance state; left untouched
        target_stage_id: Stage to move to
        now: Transition time
        actor_id: User making the move, None for the system
        comment: Optional comment recorded on the stage being left
        check_legality: Enforce the current stage's transitions

    Returns:
        TransitionPlan with the new state and its effects

    Raises:
        InvalidTransitionError: Instance is finished, or the move is not permitted
        InvalidReferenceError: Target stage does not exist in the definition
    """
    if instance.is_completed or instance.is_terminal:
        raise InvalidTransitionError(
            f"Workflow is already {instance.status.value.lower()}; no further stage changes allowed"
        )

    target = definition.stage_by_id(target_stage_id)
    if target is None:
        raise InvalidReferenceError(f"Invalid stage ID: {target_stage_id}")

    current = definition.stage_by_id(instance.current_stage_id)
    if check_legality and current is not None and current.transitions:
        allowed = valid_targets(definition, current)
        if target_stage_id not in allowed:
            raise InvalidTransitionError(
                f"Invalid transition from '{current.name}' to '{target.name}'",
                valid_targets=allowed,
            )

    new_state = instance.copy()
    open_entry = new_state.open_entry()
    if open_entry is not None:
        open_entry.exited_at = now
        if comment:
            open_entry.actions.append(HistoryAction(
                action_type=COMMENT_ACTION,
                performed_at=now,
                performed_by=actor_id,
                notes=comment,
            ))
    new_state.history.append(HistoryEntry(stage_id=target.id, entered_at=now))
    new_state.current_stage_id = target.id
    new_state.expected_completion_date = now + definition.remaining_duration(target.order)

    effects = [
        Effect(EffectType.MIRROR_STAGE_NAME, target.id),
        Effect(EffectType.RUN_STAGE_ACTIONS, target.id),
    ]

    completed = definition.is_final_stage(target)
    if completed:
        new_state.is_completed = True
        new_state.completed_at = now
        new_state.status = InstanceStatus.COMPLETED
        effects.append(Effect(EffectType.MIRROR_CLOSED))
        effects.append(Effect(
            EffectType.NOTIFY_COMPLAINANT,
            message="Your complaint workflow has been completed and the complaint is now closed.",
        ))
    else:
        effects.append(Effect(
            EffectType.NOTIFY_COMPLAINANT,
            message=f"Your complaint has moved to the '{target.name}' stage.",
        ))

    return TransitionPlan(
        instance=new_state,
        effects=effects,
        from_stage_id=instance.current_stage_id,
        to_stage_id=target.id,
        completed=completed,
    )


class WorkflowEngine:
    """
    Drives workflow instances through their definitions.

    Every mutation of an instance happens while holding that instance's
    record lock and is committed with a version compare-and-swap, so the
    scheduler and API requests cannot interleave on one instance.
    """

    def __init__(self, storage: StorageInterface, definitions: WorkflowDefinitionStore,
                 complaints: ComplaintStore, executor: StageActionExecutor,
                 notifications: NotificationService, audit_trail: AuditTrail):
        self.storage = storage
        self.definitions = definitions
        self.complaints = complaints
        self.executor = executor
        self.notifications = notifications
        self.audit = audit_trail

    plan_initialize = staticmethod(plan_initialize)
    plan_advance = staticmethod(plan_advance)

    # Queries

    def get(self, instance_id: str) -> WorkflowInstance:
        data = self.storage.load(INSTANCES_TABLE, instance_id)
        if not data:
            raise NotFoundError("Workflow instance not found")
        return WorkflowInstance.from_dict(data)

    def get_for_complaint(self, complaint_id: str) -> Optional[WorkflowInstance]:
        data = self.storage.find_one(INSTANCES_TABLE, {'complaint_id': complaint_id})
        return WorkflowInstance.from_dict(data) if data else None

    def list_instances(self, status: Optional[InstanceStatus] = None,
                       workflow_id: Optional[str] = None,
                       is_completed: Optional[bool] = None,
                       organization_id: Optional[str] = None) -> List[WorkflowInstance]:
        filters: Dict[str, Any] = {}
        if status:
            filters['status'] = status.value
        if workflow_id:
            filters['workflow_id'] = workflow_id
        if is_completed is not None:
            filters['is_completed'] = is_completed
        if organization_id:
            filters['organization_id'] = organization_id
        instances = [WorkflowInstance.from_dict(d) for d in self.storage.find(INSTANCES_TABLE, filters)]
        return sorted(instances, key=lambda i: i.started_at)

    # Lifecycle

    def initialize(self, complaint: Complaint, now: Optional[datetime] = None) -> Optional[WorkflowInstance]:
        """
        Start the workflow for a new complaint

        Returns:
            The created instance, or None when the complaint type has no active workflow

        Raises:
            ConflictError: The complaint already has a workflow instance
        """
        now = now or utc_now()
        definition = self.definitions.find_active_for(complaint.organization_id, complaint.complaint_type_id)
        if not definition:
            logger.warning(
                "No active workflow found for complaint type %s", complaint.complaint_type_id,
                extra={'organization_id': complaint.organization_id, 'resource': complaint.id}
            )
            return None

        with self.storage.record_lock(INSTANCES_TABLE, f"complaint:{complaint.id}"):
            if self.storage.find_one(INSTANCES_TABLE, {'complaint_id': complaint.id}):
                raise ConflictError(f"Complaint {complaint.id} already has a workflow instance")

            plan = plan_initialize(definition, complaint, now)
            with self.storage.record_lock(INSTANCES_TABLE, plan.instance.id):
                self._commit(plan.instance, expected_version=None)
                self.audit.log_event(
                    AuditEventType.WORKFLOW_INSTANCE_CREATED,
                    'workflow_instance',
                    plan.instance.id,
                    {
                        'complaint_id': complaint.id,
                        'workflow_id': definition.id,
                        'stage_id': plan.to_stage_id,
                    }
                )
                log_action(
                    logger, "info", "Workflow initialized",
                    action="workflow_initialized", resource=plan.instance.id,
                    organization_id=complaint.organization_id,
                    extra={'complaint_id': complaint.id, 'workflow_id': definition.id}
                )
                return self._run_effects(plan, definition, complaint, None, now)

    def advance(self, instance_id: str, target_stage_id: str, actor_id: Optional[str] = None,
                comment: Optional[str] = None, now: Optional[datetime] = None,
                from_stage_id: Optional[str] = None) -> Optional[WorkflowInstance]:
        """
        Move an instance to another stage, enforcing the current stage's transitions.

        When ``from_stage_id`` is given the move only happens if the instance
        is still ACTIVE in that stage; otherwise None is returned and nothing
        changes. The scheduler uses this to avoid acting on stale reads.
        """
        return self._transition(instance_id, target_stage_id, actor_id, comment, now,
                                check_legality=True, from_stage_id=from_stage_id)

    def advance_for_complaint(self, complaint_id: str, target_stage_id: str,
                              actor_id: Optional[str] = None, comment: Optional[str] = None,
                              now: Optional[datetime] = None) -> WorkflowInstance:
        instance = self.get_for_complaint(complaint_id)
        if not instance:
            raise NotFoundError("No workflow found for this complaint")
        return self.advance(instance.id, target_stage_id, actor_id, comment, now)

    def move_to_stage(self, instance_id: str, target_stage_id: str, actor_id: Optional[str] = None,
                      comment: Optional[str] = None, now: Optional[datetime] = None) -> WorkflowInstance:
        """Move without the transition check; used for status-driven moves"""
        return self._transition(instance_id, target_stage_id, actor_id, comment, now,
                                check_legality=False)

    def recompute_expected_completion(self, instance_id: str,
                                      now: Optional[datetime] = None) -> WorkflowInstance:
        """Refresh expected completion from the current stage; writes only on a change of a minute or more"""
        now = now or utc_now()
        with self.storage.record_lock(INSTANCES_TABLE, instance_id):
            instance = self.get(instance_id)
            if instance.is_completed or instance.is_terminal:
                return instance
            definition = self.definitions.get(instance.workflow_id)
            current = definition.stage_by_id(instance.current_stage_id)
            if current is None:
                return instance

            expected = now + definition.remaining_duration(current.order)
            stored = instance.expected_completion_date
            if stored is not None and abs(expected - stored) < EXPECTED_COMPLETION_TOLERANCE:
                return instance

            updated = instance.copy()
            updated.expected_completion_date = expected
            self._commit(updated, expected_version=instance.version)
            return updated

    def escalate(self, instance_id: str, reason: Optional[str] = None, actor_id: Optional[str] = None,
                 now: Optional[datetime] = None) -> WorkflowInstance:
        """Mark an instance ESCALATED; stage and history are left alone"""
        with self.storage.record_lock(INSTANCES_TABLE, instance_id):
            instance = self.get(instance_id)
            if instance.is_completed or instance.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot escalate a {instance.status.value.lower()} workflow"
                )
            if instance.status == InstanceStatus.ESCALATED:
                return instance

            updated = instance.copy()
            updated.status = InstanceStatus.ESCALATED
            self._commit(updated, expected_version=instance.version, now=now)
            self.audit.log_event(
                AuditEventType.WORKFLOW_ESCALATED,
                'workflow_instance',
                instance_id,
                {'complaint_id': instance.complaint_id, 'stage_id': instance.current_stage_id, 'reason': reason},
                actor_id
            )
            return updated

    def auto_escalate(self, instance_id: str, reason: str, now: Optional[datetime] = None) -> WorkflowInstance:
        """
        Scheduler escalation: escalate the instance and the complaint behind it.

        Happens at most once; an instance that is already ESCALATED, or whose
        complaint already carries an escalation stamp, is returned unchanged.
        """
        now = now or utc_now()
        with self.storage.record_lock(INSTANCES_TABLE, instance_id):
            current = self.get(instance_id)
            complaint = self.complaints.get(current.complaint_id)
            if current.status == InstanceStatus.ESCALATED or (
                complaint is not None and complaint.escalated_at is not None
            ):
                logger.info("Instance %s is already escalated; skipping", instance_id)
                return current

            instance = self.escalate(instance_id, reason, now=now)
            if complaint:
                try:
                    self.executor.escalate_complaint(complaint, reason, increase_priority=True, now=now)
                except Exception:
                    logger.exception("Failed to escalate complaint %s", complaint.id)
            log_action(
                logger, "warning", f"Workflow auto-escalated: {reason}",
                action="workflow_auto_escalated", resource=instance_id,
                organization_id=instance.organization_id,
                extra={'complaint_id': instance.complaint_id}
            )
            return instance

    def cancel(self, instance_id: str, actor_id: Optional[str] = None, reason: Optional[str] = None,
               now: Optional[datetime] = None) -> WorkflowInstance:
        """Stop an unfinished instance; its open history entry is closed"""
        now = now or utc_now()
        with self.storage.record_lock(INSTANCES_TABLE, instance_id):
            instance = self.get(instance_id)
            if instance.is_completed or instance.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot cancel a {instance.status.value.lower()} workflow"
                )

            updated = instance.copy()
            updated.status = InstanceStatus.CANCELED
            entry = updated.open_entry()
            if entry is not None:
                entry.exited_at = now
                if reason:
                    entry.actions.append(HistoryAction(
                        action_type=COMMENT_ACTION, performed_at=now, performed_by=actor_id, notes=reason,
                    ))
            self._commit(updated, expected_version=instance.version, now=now)
            self.audit.log_event(
                AuditEventType.WORKFLOW_CANCELED,
                'workflow_instance',
                instance_id,
                {'complaint_id': instance.complaint_id, 'reason': reason},
                actor_id
            )
            return updated

    # Internals

    def _transition(self, instance_id: str, target_stage_id: str, actor_id: Optional[str],
                    comment: Optional[str], now: Optional[datetime], check_legality: bool,
                    from_stage_id: Optional[str] = None) -> Optional[WorkflowInstance]:
        now = now or utc_now()
        with self.storage.record_lock(INSTANCES_TABLE, instance_id):
            instance = self.get(instance_id)
            if from_stage_id is not None and (
                instance.current_stage_id != from_stage_id or instance.status != InstanceStatus.ACTIVE
            ):
                logger.info("Instance %s moved on before the timed transition; skipping", instance_id)
                return None

            definition = self.definitions.get(instance.workflow_id)
            plan = plan_advance(definition, instance, target_stage_id, now,
                                actor_id=actor_id, comment=comment, check_legality=check_legality)
            self._commit(plan.instance, expected_version=instance.version, now=now)

            self.audit.log_event(
                AuditEventType.WORKFLOW_UPDATED,
                'workflow_instance',
                instance_id,
                {
                    'complaint_id': instance.complaint_id,
                    'from_stage_id': plan.from_stage_id,
                    'to_stage_id': plan.to_stage_id,
                    'comment': comment,
                    'legality_checked': check_legality,
                },
                actor_id
            )
            if plan.completed:
                self.audit.log_event(
                    AuditEventType.WORKFLOW_COMPLETED,
                    'workflow_instance',
                    instance_id,
                    {'complaint_id': instance.complaint_id, 'final_stage_id': plan.to_stage_id},
                    actor_id
                )
            log_action(
                logger, "info", "Workflow stage changed",
                user_id=actor_id, action="workflow_stage_changed", resource=instance_id,
                organization_id=instance.organization_id,
                extra={'from': plan.from_stage_id, 'to': plan.to_stage_id, 'completed': plan.completed}
            )

            complaint = self.complaints.get(instance.complaint_id)
            return self._run_effects(plan, definition, complaint, actor_id, now)

    def _commit(self, instance: WorkflowInstance, expected_version: Optional[int],
                now: Optional[datetime] = None) -> None:
        """Write the instance if the stored version still matches; bumps the version"""
        with self.storage.atomic():
            stored = self.storage.load(INSTANCES_TABLE, instance.id)
            stored_version = stored.get('version', 0) if stored else None
            if stored_version != expected_version:
                raise ConcurrentModificationError(
                    f"Workflow instance {instance.id} was modified concurrently"
                )
            instance.version = 1 if expected_version is None else expected_version + 1
            instance.touch(now)
            self.storage.save(INSTANCES_TABLE, instance.id, instance.to_dict())

    def _run_effects(self, plan: TransitionPlan, definition: WorkflowDefinition,
                     complaint: Optional[Complaint], actor_id: Optional[str],
                     now: datetime) -> WorkflowInstance:
        instance = plan.instance
        if complaint is None:
            logger.error("Complaint %s for instance %s not found; skipping effects",
                         instance.complaint_id, instance.id)
            return instance

        for effect in plan.effects:
            try:
                if effect.effect_type == EffectType.MIRROR_STAGE_NAME:
                    stage = definition.stage_by_id(effect.stage_id)
                    complaint.current_stage = stage.name
                    self.complaints.save(complaint)
                elif effect.effect_type == EffectType.RUN_STAGE_ACTIONS:
                    stage = definition.stage_by_id(effect.stage_id)
                    outcomes = self.executor.execute(stage, complaint, now)
                    instance = self._record_outcomes(instance, outcomes, now)
                elif effect.effect_type == EffectType.MIRROR_CLOSED:
                    if complaint.status != ComplaintStatus.CLOSED:
                        previous = complaint.set_status(ComplaintStatus.CLOSED, now)
                        self.complaints.save(complaint)
                        self.audit.log_event(
                            AuditEventType.STATUS_UPDATED,
                            'complaint',
                            complaint.id,
                            {'previous_status': previous, 'new_status': ComplaintStatus.CLOSED,
                             'reason': 'Workflow completed', 'source': 'workflow'},
                            actor_id
                        )
                elif effect.effect_type == EffectType.NOTIFY_COMPLAINANT:
                    self.notifications.notify(
                        complaint.complainant_id, NotificationType.WORKFLOW_UPDATE, effect.message,
                        {'type': 'complaint', 'id': complaint.id}
                    )
            except Exception:
                logger.exception("Workflow effect %s failed for instance %s",
                                 effect.effect_type.value, instance.id)
        return instance

    def _record_outcomes(self, instance: WorkflowInstance, outcomes: List[ActionOutcome],
                         now: datetime) -> WorkflowInstance:
        """Append action outcomes to the open history entry in a follow-up commit"""
        recordable = [o for o in outcomes if o.recordable]
        escalated = any(o.escalated for o in outcomes)
        if not recordable and not escalated:
            return instance

        updated = instance.copy()
        entry = updated.open_entry()
        if entry is None and updated.history:
            # A completed instance keeps its final entry open, so this only
            # happens after a concurrent cancel
            entry = updated.history[-1]
        if entry is not None:
            entry.actions.extend(o.to_history_action() for o in recordable)
        newly_escalated = escalated and updated.status == InstanceStatus.ACTIVE
        if newly_escalated:
            updated.status = InstanceStatus.ESCALATED
        self._commit(updated, expected_version=instance.version, now=now)
        if newly_escalated:
            self.audit.log_event(
                AuditEventType.WORKFLOW_ESCALATED,
                'workflow_instance',
                updated.id,
                {'complaint_id': updated.complaint_id, 'stage_id': updated.current_stage_id,
                 'reason': 'Stage escalation action'}
            )
        return updated
