"""
Workflow Template Library

Read-only catalog of ready-made workflows for common institutional complaint
scenarios, grouped by category. Organizations instantiate a template through
WorkflowDefinitionStore.create_from_template.

The intake stage of every template gets an id generated when the catalog is
built; all other stage ids are fixed literals unique within their template.
"""

import copy
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Sequence, Tuple

from .complaints import ComplaintStatus
from .workflows import (
    Stage, StageAction, Transition, TransitionCondition, ActionType, ConditionType,
    NotificationConfig, StatusUpdateConfig, AssignmentConfig, EscalationConfig, AssignmentType,
)


class TemplateCategory:
    BASIC = "basic"
    ACADEMIC = "academic"
    ADMINISTRATIVE = "administrative"
    FACILITIES = "facilities"
    IT_SUPPORT = "it_support"

    ALL = (BASIC, ACADEMIC, ADMINISTRATIVE, FACILITIES, IT_SUPPORT)


@dataclass
class WorkflowTemplate:
    """A catalog entry"""
    id: str
    name: str
    description: str
    category: str
    icon: str
    stages: List[Stage]

    def to_wire(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'icon': self.icon,
            'stages': [s.to_wire() for s in self.stages],
        }


# Stage building blocks

def _always(target: str, name: str) -> Transition:
    return Transition(target, TransitionCondition(ConditionType.ALWAYS), name=name)


def _after_hours(target: str, hours: int, name: str) -> Transition:
    return Transition(target, TransitionCondition(ConditionType.TIME_BASED, hours), name=name)


def _notify_department(message: Optional[str] = None) -> StageAction:
    return StageAction(ActionType.NOTIFICATION, NotificationConfig(notify_department=True, custom_message=message))


def _notify_complainant(message: str) -> StageAction:
    return StageAction(ActionType.NOTIFICATION, NotificationConfig(notify_complainant=True, custom_message=message))


def _auto_assign() -> StageAction:
    return StageAction(ActionType.ASSIGNMENT, AssignmentConfig(AssignmentType.AUTO, find_available_user=True))


def _status(status: ComplaintStatus, reason: str) -> StageAction:
    return StageAction(ActionType.STATUS_UPDATE, StatusUpdateConfig(status, reason))


def _in_progress() -> StageAction:
    return _status(ComplaintStatus.IN_PROGRESS, "Complaint is being processed")


def _resolved() -> StageAction:
    return _status(ComplaintStatus.RESOLVED, "Complaint has been resolved")


def _escalate(reason: str) -> StageAction:
    return StageAction(ActionType.ESCALATION, EscalationConfig(escalation_reason=reason, increase_priority=True))


# (stage id, name, hours, description, name of the transition leaving the stage)
Step = Tuple[str, str, int, str, Optional[str]]


def _pipeline(steps: Sequence[Step], resolved_message: str, assign_on_intake: bool = False) -> List[Stage]:
    """
    Chain steps with ALWAYS transitions. The intake step notifies the
    department, the second step marks the complaint In Progress and the last
    one resolves it and tells the complainant.
    """
    stages = []
    for index, (stage_id, name, hours, description, exit_name) in enumerate(steps):
        actions = []
        if index == 0:
            stage_id = _intake_id()
            actions.append(_notify_department())
            if assign_on_intake:
                actions.append(_auto_assign())
        elif index == 1:
            actions.append(_in_progress())
        if index == len(steps) - 1:
            actions.extend([_resolved(), _notify_complainant(resolved_message)])
            transitions = []
        else:
            transitions = [_always(steps[index + 1][0], exit_name)]
        stages.append(Stage(
            id=stage_id, name=name, order=index + 1, description=description,
            duration_in_hours=hours, actions=actions, transitions=transitions,
        ))
    return stages


def _intake_id() -> str:
    return str(uuid.uuid4())


# Catalog

def _basic_templates() -> List[WorkflowTemplate]:
    linear = WorkflowTemplate(
        'basic-linear-3-step', 'Simple 3-Step Resolution',
        'Basic linear workflow with review, processing, and resolution stages',
        TemplateCategory.BASIC, 'workflow',
        _pipeline([
            ('intake', 'Initial Review', 24, 'Review and validate the complaint', 'Start Processing'),
            ('processing_stage', 'Processing', 48, 'Work on resolving the complaint', 'Complete Resolution'),
            ('resolution_stage', 'Resolution', 24, 'Complete the resolution and close the complaint', None),
        ], 'Your complaint has been resolved. Please review the resolution.', assign_on_intake=True),
    )

    feedback = WorkflowTemplate(
        'basic-with-feedback', 'Resolution with Feedback',
        'Linear workflow that includes a feedback stage',
        TemplateCategory.BASIC, 'message-square',
        [
            Stage(_intake_id(), 'Initial Review', 1, 'Review and validate the complaint', 24,
                  [_notify_department()], [_always('processing_stage', 'Start Processing')]),
            Stage('processing_stage', 'Processing', 2, 'Work on resolving the complaint', 48,
                  [_in_progress()], [_always('resolution_stage', 'Complete Resolution')]),
            Stage('resolution_stage', 'Resolution', 3, 'Resolve the complaint and request feedback', 24,
                  [_resolved(), _notify_complainant('Your complaint has been resolved. Please provide feedback.')],
                  [_after_hours('feedback_stage', 72, 'Wait for Feedback')]),
            Stage('feedback_stage', 'Feedback Collection', 4, 'Collect feedback from the complainant', 72,
                  [], [_after_hours('closed_stage', 72, 'Close Complaint')]),
            Stage('closed_stage', 'Closed', 5, 'Close the complaint', 1,
                  [_status(ComplaintStatus.CLOSED, 'Complaint closed after feedback period')], []),
        ],
    )

    multi_approval = WorkflowTemplate(
        'basic-multi-approval', 'Multi-Level Approval',
        'Workflow with multiple approval stages for complex complaints',
        TemplateCategory.BASIC, 'check-circle',
        _pipeline([
            ('intake', 'Intake', 24, 'Receive and log the complaint', 'Send for First Approval'),
            ('first_approval', 'Department Approval', 48, 'Department level review and approval', 'Send for Second Approval'),
            ('second_approval', 'Administrative Approval', 72, 'Administrative review and approval', 'Proceed to Implementation'),
            ('implementation', 'Implementation', 120, 'Implement the approved resolution', 'Complete Resolution'),
            ('resolution_stage', 'Resolution', 24, 'Complete the resolution', None),
        ], 'Your complaint has been resolved after multi-level approval.'),
    )

    time_sensitive = WorkflowTemplate(
        'basic-time-sensitive', 'Time-Sensitive Resolution',
        'Expedited workflow with shorter timeframes for urgent issues',
        TemplateCategory.BASIC, 'clock',
        [
            Stage(_intake_id(), 'Urgent Review', 1, 'Immediate review of urgent complaint', 4,
                  [_notify_department(), _auto_assign()],
                  [_always('urgent_processing', 'Start Urgent Processing')]),
            Stage('urgent_processing', 'Expedited Processing', 2, 'Fast-track processing of the complaint', 8,
                  [_in_progress()],
                  [_always('urgent_resolution', 'Complete Urgent Resolution'),
                   _after_hours('escalation', 8, 'Escalate If Not Resolved')]),
            Stage('escalation', 'Escalation', 3, 'Escalate the unresolved urgent complaint', 4,
                  [_escalate('Time-sensitive issue not resolved within SLA'),
                   _notify_department('This urgent complaint has been escalated due to SLA breach.')],
                  [_always('urgent_resolution', 'Continue to Resolution')]),
            Stage('urgent_resolution', 'Urgent Resolution', 4, 'Resolve the urgent complaint', 4,
                  [_resolved(), _notify_complainant('Your urgent complaint has been resolved.')], []),
        ],
    )
    return [linear, feedback, multi_approval, time_sensitive]


def _academic_templates() -> List[WorkflowTemplate]:
    return [
        WorkflowTemplate(
            'academic-grade-dispute', 'Grade Dispute Resolution',
            'Specialized workflow for handling grade-related complaints',
            TemplateCategory.ACADEMIC, 'award',
            _pipeline([
                ('intake', 'Initial Assessment', 48, 'Assess the grade dispute', 'Send to Faculty for Review'),
                ('faculty_review', 'Faculty Review', 72, 'Course instructor reviews the grade', 'Send to Department Chair'),
                ('department_chair_review', 'Department Chair Review', 72, 'Department chair reviews the case', 'Make Final Decision'),
                ('decision', 'Final Decision', 48, 'Final decision on the grade', 'Update Academic Records'),
                ('update_records', 'Update Records', 24, 'Update academic records if needed', 'Complete Resolution'),
                ('resolution', 'Resolution Notification', 24, 'Notify the student of the outcome', None),
            ], 'Your grade dispute has been resolved. Please check the final decision details.'),
        ),
        WorkflowTemplate(
            'academic-academic-misconduct', 'Academic Misconduct Process',
            'Structured workflow for addressing academic misconduct allegations',
            TemplateCategory.ACADEMIC, 'alert-triangle',
            _misconduct_stages(),
        ),
        WorkflowTemplate(
            'academic-course-content', 'Course Content Complaint',
            'Process for addressing concerns about course materials or content',
            TemplateCategory.ACADEMIC, 'book-open',
            _pipeline([
                ('intake', 'Initial Review', 48, 'Review the content concern', 'Request Instructor Feedback'),
                ('instructor_feedback', 'Instructor Feedback', 72, 'Gather the instructor\'s response', 'Review Against Curriculum Standards'),
                ('curriculum_review', 'Curriculum Review', 96, 'Review against curriculum standards', 'Make Content Decision'),
                ('decision', 'Decision', 48, 'Decide on content changes', 'Implement Resolution'),
                ('resolution', 'Resolution', 72, 'Implement the decision', None),
            ], 'Your complaint regarding course content has been resolved. Please see the decision details.'),
        ),
    ]


def _misconduct_stages() -> List[Stage]:
    stages = _pipeline([
        ('intake', 'Report Intake', 24, 'Receive the misconduct report', 'Begin Investigation'),
        ('initial_investigation', 'Initial Investigation', 72, 'Investigate the allegation', 'Notify Student'),
        ('student_notification', 'Student Notification', 48, 'Notify the student of the allegation', 'Schedule Hearing'),
        ('hearing', 'Academic Hearing', 120, 'Hold the academic hearing', 'Make Determination'),
        ('decision', 'Decision & Sanctions', 72, 'Determine outcome and sanctions', 'Begin Appeal Period'),
        ('appeal_period', 'Appeal Period', 120, 'Allow time for appeals', 'Close Case'),
        ('case_closed', 'Case Closed', 24, 'Close the case', None),
    ], 'The academic misconduct case has been closed. Please refer to the final documentation for details.')
    # The appeal period closes on its own once it has run
    appeal = stages[5]
    appeal.transitions = [_after_hours('case_closed', 120, 'Close Case')]
    return stages


def _administrative_templates() -> List[WorkflowTemplate]:
    return [
        WorkflowTemplate(
            'admin-financial-aid', 'Financial Aid Dispute',
            'Process for handling financial aid complaints and disputes',
            TemplateCategory.ADMINISTRATIVE, 'dollar-sign',
            _pipeline([
                ('intake', 'Initial Assessment', 24, 'Assess the financial aid dispute', 'Verify Documentation'),
                ('document_verification', 'Document Verification', 72, 'Verify supporting documents', 'Pass to Financial Aid Officer'),
                ('aid_officer_review', 'Financial Aid Officer Review', 48, 'Officer reviews the case', 'Make Determination'),
                ('determination', 'Aid Determination', 48, 'Determine the aid outcome', 'Process Adjustments If Needed'),
                ('financial_adjustment', 'Financial Adjustments', 72, 'Apply any adjustments', 'Complete Resolution'),
                ('resolution', 'Resolution', 24, 'Notify the student', None),
            ], 'Your financial aid dispute has been resolved. Please check your updated financial aid information.'),
        ),
        WorkflowTemplate(
            'admin-registration-issue', 'Registration Issue Process',
            'Workflow for resolving course registration problems',
            TemplateCategory.ADMINISTRATIVE, 'clipboard',
            _pipeline([
                ('intake', 'Initial Review', 24, 'Review registration issue details', 'Verify Student Status'),
                ('verification', 'Student Status Verification', 24, 'Verify student enrollment status and eligibility', 'Send to Registrar'),
                ('registrar_review', 'Registrar Review', 48, "Review by registrar's office", 'Update Registration System'),
                ('system_update', 'Registration System Update', 24, 'Make necessary changes in registration system', 'Complete Resolution'),
                ('resolution', 'Resolution', 24, 'Complete the resolution and notify student', None),
            ], 'Your registration issue has been resolved. Please check your updated course registration.'),
        ),
        WorkflowTemplate(
            'admin-policy-violation', 'Policy Violation Investigation',
            'Process for investigating policy violations on campus',
            TemplateCategory.ADMINISTRATIVE, 'shield',
            _pipeline([
                ('intake', 'Report Reception', 24, 'Receive and document the reported violation', 'Begin Preliminary Review'),
                ('preliminary_review', 'Preliminary Review', 48, 'Initial assessment of reported violation', 'Gather Evidence'),
                ('evidence_gathering', 'Evidence Collection', 72, 'Gather and document evidence related to the violation', 'Conduct Interviews'),
                ('interviews', 'Interviews', 96, 'Interview relevant parties and witnesses', 'Make Determination'),
                ('determination', 'Violation Determination', 48, 'Determine if a violation occurred and its severity', 'Determine Sanctions'),
                ('sanction_determination', 'Sanctions', 48, 'Determine appropriate sanctions if violation confirmed', 'Notify Parties'),
                ('notification', 'Notification', 24, 'Notify all parties of the outcome', None),
            ], 'The policy violation investigation has been completed. Please refer to the notification for details.'),
        ),
    ]


def _facilities_templates() -> List[WorkflowTemplate]:
    return [
        WorkflowTemplate(
            'facilities-maintenance', 'Maintenance Request',
            'Standard workflow for routine maintenance requests',
            TemplateCategory.FACILITIES, 'tool',
            _pipeline([
                ('intake', 'Request Submission', 24, 'Review incoming maintenance request', 'Assess Request'),
                ('assessment', 'Assessment', 24, 'Evaluate maintenance requirements and priority', 'Schedule Maintenance'),
                ('scheduling', 'Scheduling', 24, 'Schedule maintenance work', 'Begin Work'),
                ('execution', 'Work Execution', 72, 'Perform the maintenance work', 'Inspect Work'),
                ('inspection', 'Quality Inspection', 24, 'Verify that work meets quality standards', 'Close Request'),
                ('closure', 'Request Closure', 24, 'Complete paperwork and close the maintenance request', None),
            ], 'Your maintenance request has been completed. Please let us know if you have any concerns.',
                assign_on_intake=True),
        ),
        WorkflowTemplate(
            'facilities-emergency-repair', 'Emergency Repair',
            'Expedited process for urgent facility repairs',
            TemplateCategory.FACILITIES, 'alert-octagon',
            _pipeline([
                ('intake', 'Emergency Triage', 2, 'Immediate assessment of emergency repair need', 'Dispatch Team'),
                ('rapid_response', 'Rapid Response', 2, 'Send emergency response team to the location', 'Perform Emergency Repair'),
                ('emergency_repair', 'Emergency Repair Work', 8, 'Complete urgent repairs to address the emergency', 'Perform Safety Check'),
                ('safety_check', 'Safety Check', 2, 'Verify safety and functionality after emergency repair', 'Document Emergency Event'),
                ('documentation', 'Documentation', 4, 'Document the emergency and repair details', 'Close Emergency Ticket'),
                ('closure', 'Emergency Closure', 2, 'Close the emergency repair ticket', None),
            ], 'The emergency repair has been completed. Please let us know if you notice any issues.',
                assign_on_intake=True),
        ),
        WorkflowTemplate(
            'facilities-renovation', 'Renovation Request',
            'Process for handling space renovation requests',
            TemplateCategory.FACILITIES, 'home',
            _pipeline([
                ('intake', 'Request Submission', 48, 'Review incoming renovation request', 'Conduct Initial Review'),
                ('initial_review', 'Initial Review', 72, 'Preliminary assessment of renovation feasibility', 'Seek Budget Approval'),
                ('budget_approval', 'Budget Approval', 120, 'Obtain necessary budgetary approvals', 'Begin Design Phase'),
                ('design_phase', 'Design Phase', 168, 'Develop renovation designs and plans', 'Select Contractors'),
                ('contractor_selection', 'Contractor Selection', 96, 'Select contractors for the renovation work', 'Schedule Work'),
                ('scheduling', 'Work Scheduling', 72, 'Schedule the renovation work', 'Begin Renovation'),
                ('execution', 'Renovation Execution', 240, 'Conduct the renovation work', 'Inspect Completed Work'),
                ('inspection', 'Final Inspection', 48, 'Inspect completed renovation work', 'Close Renovation Project'),
                ('closure', 'Project Closure', 48, 'Complete paperwork and close the renovation request', None),
            ], 'Your renovation project has been completed. Please review the work and provide feedback.'),
        ),
    ]


def _it_templates() -> List[WorkflowTemplate]:
    technical_support = WorkflowTemplate(
        'it-technical-support', 'Technical Support Ticket',
        'Standard process for handling technical support requests',
        TemplateCategory.IT_SUPPORT, 'monitor',
        [
            Stage(_intake_id(), 'Ticket Reception', 1, 'Receive and categorize the support ticket', 4,
                  [_notify_department(), _auto_assign()],
                  [_always('initial_diagnosis', 'Begin Diagnosis')]),
            Stage('initial_diagnosis', 'Initial Diagnosis', 2, 'Diagnose the technical issue', 8,
                  [_in_progress()], [_always('user_communication', 'Contact User')]),
            Stage('user_communication', 'User Communication', 3,
                  'Communicate with user to gather additional information if needed', 8,
                  [], [_always('troubleshooting', 'Begin Troubleshooting')]),
            Stage('troubleshooting', 'Troubleshooting', 4, 'Apply troubleshooting steps to resolve the issue', 24,
                  [], [_always('resolution', 'Implement Solution'),
                       _after_hours('escalation', 24, 'Escalate If Not Resolved')]),
            Stage('escalation', 'Escalation', 5, 'Escalate to higher-level support if needed', 8,
                  [_escalate('Technical issue requires specialized expertise')],
                  [_always('advanced_troubleshooting', 'Begin Advanced Troubleshooting')]),
            Stage('advanced_troubleshooting', 'Advanced Troubleshooting', 6,
                  'Apply specialized expertise to resolve complex issues', 16,
                  [], [_always('resolution', 'Implement Solution')]),
            Stage('resolution', 'Resolution', 7, 'Apply the solution and verify it works', 8,
                  [_resolved()], [_always('documentation', 'Document Solution')]),
            Stage('documentation', 'Documentation', 8, 'Document the issue and solution for knowledge base', 4,
                  [_notify_complainant('Your technical support ticket has been resolved. '
                                       'Please let us know if you experience any further issues.')], []),
        ],
    )

    service_stages = _pipeline([
        ('intake', 'Request Reception', 24, 'Receive and categorize the service request', 'Conduct Initial Review'),
        ('initial_review', 'Initial Review', 48, 'Review service request for feasibility and requirements', 'Seek Approval'),
        ('approval', 'Request Approval', 72, 'Obtain necessary approvals for the service', 'Allocate Resources'),
        ('resource_allocation', 'Resource Allocation', 48, 'Allocate necessary resources for the service', 'Schedule Implementation'),
        ('scheduling', 'Implementation Scheduling', 24, 'Schedule the service implementation', 'Begin Implementation'),
        ('implementation', 'Service Implementation', 72, 'Implement the requested service', 'Test Implementation'),
        ('testing', 'Testing', 24, 'Test the implemented service for functionality', 'Provide User Training'),
        ('user_training', 'User Training', 48, 'Provide training for the new service if necessary', 'Close Service Request'),
        ('closure', 'Request Closure', 24, 'Complete the service request', None),
    ], 'Your requested IT service has been successfully implemented. '
       'Please let us know if you need any additional assistance.')
    service_stages[4].actions.append(_notify_complainant(
        'Your service request has been scheduled for implementation. '
        'You will be notified of the specific date and time.'
    ))
    service_request = WorkflowTemplate(
        'it-service-request', 'IT Service Request',
        'Process for handling new service requests and installations',
        TemplateCategory.IT_SUPPORT, 'server', service_stages,
    )

    security_incident = WorkflowTemplate(
        'it-security-incident', 'Security Incident Response',
        'Process for handling IT security incidents',
        TemplateCategory.IT_SUPPORT, 'lock',
        _pipeline([
            ('intake', 'Incident Detection', 4, 'Detect and initially assess the security incident', 'Initiate Response'),
            ('initial_response', 'Initial Response', 4, 'Immediate actions to contain the security incident', 'Contain Incident'),
            ('containment', 'Containment', 8, 'Contain the security incident to prevent further damage', 'Begin Investigation'),
            ('investigation', 'Investigation', 24, 'Investigate the cause and impact of the security incident', 'Begin Eradication'),
            ('eradication', 'Eradication', 16, 'Remove the source of the security incident', 'Begin Recovery'),
            ('recovery', 'Recovery', 24, 'Restore affected systems to normal operation', 'Conduct Lessons Learned'),
            ('lessons_learned', 'Lessons Learned', 16, 'Document lessons learned from the incident', 'Close Incident'),
            ('closure', 'Incident Closure', 8, 'Close the security incident', None),
        ], 'The security incident has been resolved. Enhanced security measures have been '
           'implemented to prevent similar incidents.', assign_on_intake=True),
    )
    return [technical_support, service_request, security_incident]


class WorkflowTemplateLibrary:
    """Catalog of workflow templates; every accessor returns deep copies"""

    def __init__(self):
        self._by_category: Dict[str, List[WorkflowTemplate]] = {
            TemplateCategory.BASIC: _basic_templates(),
            TemplateCategory.ACADEMIC: _academic_templates(),
            TemplateCategory.ADMINISTRATIVE: _administrative_templates(),
            TemplateCategory.FACILITIES: _facilities_templates(),
            TemplateCategory.IT_SUPPORT: _it_templates(),
        }
        self._by_id: Dict[str, WorkflowTemplate] = {
            template.id: template
            for templates in self._by_category.values()
            for template in templates
        }

    def list_all(self) -> List[WorkflowTemplate]:
        return [
            copy.deepcopy(template)
            for category in TemplateCategory.ALL
            for template in self._by_category[category]
        ]

    def list_by_category(self, category: str) -> List[WorkflowTemplate]:
        """Templates of a category; an unknown category yields an empty list"""
        return copy.deepcopy(self._by_category.get(category, []))

    def get_by_id(self, template_id: str) -> Optional[WorkflowTemplate]:
        template = self._by_id.get(template_id)
        return copy.deepcopy(template) if template else None
