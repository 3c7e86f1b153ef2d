"""
Workflow endpoints: definitions, templates and per-complaint instances
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .auth import ResolveSystem, get_resolve_system, get_current_user, require_super_admin
from .schemas import (
    CreateWorkflowRequest,
    UpdateWorkflowRequest,
    CreateFromTemplateRequest,
    ImportTemplatesRequest,
    UpdateStageRequest,
    definition_response,
    instance_response,
)
from ..directory import User, UserRole
from ..errors import NotFoundError
from ..storage import utc_now
from ..workflows import WorkflowDefinition, parse_stages


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: CreateWorkflowRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Create a workflow definition"""
    now = utc_now()
    definition = WorkflowDefinition(
        id="",
        created_at=now,
        updated_at=now,
        organization_id=user.organization_id,
        name=request.name,
        description=request.description,
        complaint_type_id=request.complaint_type_id,
        department_id=request.department_id,
        is_active=request.is_active,
        stages=parse_stages(request.stages),
        created_by=user.id,
    )
    definition = system.definitions.create(definition)
    return definition_response(definition)


@router.get("")
async def list_workflows(
    is_active: Optional[bool] = None,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List the organization's workflow definitions"""
    definitions = system.definitions.list_by(user.organization_id, is_active=is_active)
    return [definition_response(d) for d in definitions]


# Templates

@router.get("/templates")
async def list_templates(
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List every workflow template"""
    return [t.to_wire() for t in system.templates.list_all()]


@router.get("/templates/category/{category}")
async def list_templates_by_category(
    category: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List workflow templates of one category"""
    return [t.to_wire() for t in system.templates.list_by_category(category)]


@router.get("/templates/{template_id}")
async def get_template(
    template_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Get a workflow template"""
    template = system.templates.get_by_id(template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template.to_wire()


@router.post("/from-template", status_code=status.HTTP_201_CREATED)
async def create_from_template(
    request: CreateFromTemplateRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Create a workflow definition from a template"""
    definition = system.definitions.create_from_template(
        request.template_id,
        user.organization_id,
        complaint_type_id=request.complaint_type_id,
        department_id=request.department_id,
        name=request.name,
        description=request.description,
        created_by=user.id,
    )
    return definition_response(definition)


@router.post("/import-templates", status_code=status.HTTP_201_CREATED)
async def import_templates(
    request: ImportTemplatesRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Create a workflow definition from every template"""
    definitions = system.definitions.import_all(
        user.organization_id,
        complaint_type_id=request.complaint_type_id,
        department_id=request.department_id,
        created_by=user.id,
    )
    return {
        "message": f"Imported {len(definitions)} workflow templates",
        "workflows": [definition_response(d) for d in definitions],
    }


# Lookups

@router.get("/department/{department_id}")
async def list_workflows_for_department(
    department_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List workflow definitions of a department"""
    system.directory.require_department(department_id, user.organization_id)
    definitions = system.definitions.list_by(user.organization_id, department_id=department_id)
    return [definition_response(d) for d in definitions]


@router.get("/complaint-type/{complaint_type_id}")
async def list_workflows_for_complaint_type(
    complaint_type_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List workflow definitions of a complaint type"""
    system.directory.require_complaint_type(complaint_type_id, user.organization_id)
    definitions = system.definitions.list_by(user.organization_id, complaint_type_id=complaint_type_id)
    return [definition_response(d) for d in definitions]


# Instances

@router.get("/complaint/{complaint_id}")
async def get_workflow_for_complaint(
    complaint_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Get a complaint's workflow instance with a refreshed expected completion date"""
    complaint = system.complaints.require(complaint_id, user.organization_id)
    instance = system.workflow_engine.get_for_complaint(complaint.id)
    if not instance:
        raise NotFoundError("No workflow found for this complaint")
    instance = system.workflow_engine.recompute_expected_completion(instance.id)
    definition = system.definitions.get(instance.workflow_id)
    return instance_response(instance, definition)


@router.put("/complaint/{complaint_id}/stage")
async def update_workflow_stage(
    complaint_id: str,
    request: UpdateStageRequest,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Move a complaint's workflow to another stage"""
    if user.role == UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="Not authorized to update workflow stage")
    complaint = system.complaints.require(complaint_id, user.organization_id)
    if user.role == UserRole.DEPARTMENT_USER and user.department_id != complaint.department_id:
        raise HTTPException(status_code=403, detail="Not authorized to update this complaint")

    instance = system.workflow_engine.advance_for_complaint(
        complaint.id, request.stage_id, actor_id=user.id, comment=request.comment
    )
    definition = system.definitions.get(instance.workflow_id)
    return instance_response(instance, definition)


# Definitions by id

@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Get a workflow definition"""
    return definition_response(system.definitions.get(workflow_id, user.organization_id))


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Update a workflow definition; stages replace the whole stage list"""
    patch = request.model_dump(exclude_unset=True, by_alias=False)
    if "stages" in patch:
        patch["stages"] = parse_stages(patch["stages"] or [])
    definition = system.definitions.update(
        workflow_id, patch, organization_id=user.organization_id, updated_by=user.id
    )
    return definition_response(definition)


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Delete a workflow definition no active complaint uses"""
    system.definitions.delete(workflow_id, organization_id=user.organization_id, deleted_by=user.id)
    return {"message": "Workflow removed"}
