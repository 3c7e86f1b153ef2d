"""
Pydantic schemas for API requests, plus response builders

Request and response bodies use camelCase keys; snake_case names are
accepted on input too.
"""

from typing import Dict, List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..complaints import Complaint, ComplaintComment
from ..directory import ComplaintType, Department, Organization, User
from ..notifications import Notification
from ..storage import format_datetime
from ..workflows import WorkflowDefinition, WorkflowInstance


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Workflow schemas
class CreateWorkflowRequest(CamelModel):
    name: str
    description: str = ""
    complaint_type_id: Optional[str] = None
    department_id: Optional[str] = None
    is_active: bool = True
    stages: List[Dict[str, Any]] = Field(..., description="Stages in wire format")


class UpdateWorkflowRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    complaint_type_id: Optional[str] = None
    department_id: Optional[str] = None
    is_active: Optional[bool] = None
    stages: Optional[List[Dict[str, Any]]] = None


class CreateFromTemplateRequest(CamelModel):
    template_id: str
    complaint_type_id: Optional[str] = None
    department_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


class ImportTemplatesRequest(CamelModel):
    complaint_type_id: Optional[str] = None
    department_id: Optional[str] = None


class UpdateStageRequest(CamelModel):
    stage_id: str
    comment: Optional[str] = None


# Complaint schemas
class CreateComplaintRequest(CamelModel):
    title: str
    description: str
    complaint_type_id: str
    department_id: str
    priority: str = Field("Medium", description="Low, Medium, High or Urgent")


class UpdateStatusRequest(CamelModel):
    status: str = Field(..., description="Open, In Progress, Resolved or Closed")
    comment: Optional[str] = None


class EscalateRequest(CamelModel):
    reason: str


class AssignComplaintRequest(CamelModel):
    user_id: str


class CommentRequest(CamelModel):
    comment: str


# Account schemas
class RegisterOrganizationRequest(CamelModel):
    name: str
    org_type: str
    contact_email: str
    contact_phone: Optional[str] = None


class RegisterSuperAdminRequest(CamelModel):
    organization_id: str
    email: str
    password: str
    first_name: str = ""
    last_name: str = ""


class LoginRequest(CamelModel):
    email: str
    password: str
    organization_id: Optional[str] = None


class SignupRequest(CamelModel):
    registration_id: str
    email: str
    password: str
    first_name: str = ""
    last_name: str = ""


class AddUserRequest(CamelModel):
    email: str
    role: str = Field(..., description="DepartmentUser, Student or Faculty")


# Directory schemas
class DepartmentRequest(CamelModel):
    name: str
    description: str = ""


class UpdateDepartmentRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class DepartmentUsersRequest(CamelModel):
    user_ids: List[str]


class ComplaintTypeRequest(CamelModel):
    name: str
    description: str = ""
    default_department_id: Optional[str] = None


class UpdateComplaintTypeRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    default_department_id: Optional[str] = None


# Response builders
def definition_response(definition: WorkflowDefinition) -> Dict[str, Any]:
    return {
        "id": definition.id,
        "organizationId": definition.organization_id,
        "name": definition.name,
        "description": definition.description,
        "complaintTypeId": definition.complaint_type_id,
        "departmentId": definition.department_id,
        "isActive": definition.is_active,
        "createdBy": definition.created_by,
        "stages": definition.stages_to_wire(),
        "createdAt": format_datetime(definition.created_at),
        "updatedAt": format_datetime(definition.updated_at),
    }


def instance_response(instance: WorkflowInstance,
                      definition: Optional[WorkflowDefinition] = None) -> Dict[str, Any]:
    result = {
        "id": instance.id,
        "workflowId": instance.workflow_id,
        "complaintId": instance.complaint_id,
        "organizationId": instance.organization_id,
        "currentStageId": instance.current_stage_id,
        "status": instance.status.value,
        "isCompleted": instance.is_completed,
        "startedAt": format_datetime(instance.started_at),
        "completedAt": format_datetime(instance.completed_at),
        "expectedCompletionDate": format_datetime(instance.expected_completion_date),
        "history": [entry.to_wire() for entry in instance.history],
        "version": instance.version,
    }
    if definition is not None:
        result["workflow"] = definition_response(definition)
    return result


def complaint_response(complaint: Complaint) -> Dict[str, Any]:
    return {
        "id": complaint.id,
        "organizationId": complaint.organization_id,
        "complainantId": complaint.complainant_id,
        "complaintTypeId": complaint.complaint_type_id,
        "departmentId": complaint.department_id,
        "title": complaint.title,
        "description": complaint.description,
        "status": complaint.status.value,
        "priority": complaint.priority.value,
        "currentStage": complaint.current_stage,
        "assignedTo": complaint.assigned_to,
        "escalatedAt": format_datetime(complaint.escalated_at),
        "escalationReason": complaint.escalation_reason,
        "resolvedAt": format_datetime(complaint.resolved_at),
        "closedAt": format_datetime(complaint.closed_at),
        "createdAt": format_datetime(complaint.created_at),
        "updatedAt": format_datetime(complaint.updated_at),
    }


def notification_response(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.notification_type.value,
        "message": notification.message,
        "relatedTo": notification.related_to,
        "isRead": notification.is_read,
        "createdAt": format_datetime(notification.created_at),
    }


def comment_response(comment: ComplaintComment, author: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": comment.id,
        "complaintId": comment.complaint_id,
        "authorId": comment.author_id,
        "authorName": (author.full_name or author.email) if author else None,
        "authorRole": author.role.value if author else None,
        "comment": comment.text,
        "createdAt": format_datetime(comment.created_at),
    }


def organization_response(organization: Organization) -> Dict[str, Any]:
    return {
        "id": organization.id,
        "name": organization.name,
        "orgType": organization.org_type,
        "contactEmail": organization.contact_email,
        "contactPhone": organization.contact_phone,
        "createdAt": format_datetime(organization.created_at),
    }


def department_response(department: Department) -> Dict[str, Any]:
    return {
        "id": department.id,
        "organizationId": department.organization_id,
        "name": department.name,
        "description": department.description,
        "isActive": department.is_active,
        "createdAt": format_datetime(department.created_at),
        "updatedAt": format_datetime(department.updated_at),
    }


def user_response(user: User) -> Dict[str, Any]:
    """Public view of a user; password material never leaves the directory"""
    return {
        "id": user.id,
        "organizationId": user.organization_id,
        "email": user.email,
        "role": user.role.value,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "departmentId": user.department_id,
        "isActive": user.is_active,
        "registrationId": user.registration_id,
        "lastLoginAt": format_datetime(user.last_login_at),
        "createdAt": format_datetime(user.created_at),
    }


def complaint_type_response(complaint_type: ComplaintType) -> Dict[str, Any]:
    return {
        "id": complaint_type.id,
        "organizationId": complaint_type.organization_id,
        "name": complaint_type.name,
        "description": complaint_type.description,
        "defaultDepartmentId": complaint_type.default_department_id,
        "createdAt": format_datetime(complaint_type.created_at),
        "updatedAt": format_datetime(complaint_type.updated_at),
    }


def token_response(user: User, token: str) -> Dict[str, Any]:
    return {"token": token, "tokenType": "bearer", "user": user_response(user)}
