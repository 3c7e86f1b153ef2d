"""
Complaint type endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import ResolveSystem, get_resolve_system, get_current_user, require_super_admin
from .schemas import ComplaintTypeRequest, UpdateComplaintTypeRequest, complaint_type_response
from ..directory import User
from ..errors import NotFoundError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_complaint_type(
    request: ComplaintTypeRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Create a complaint type"""
    complaint_type = system.directory.create_complaint_type(
        user.organization_id, request.name, request.description, request.default_department_id
    )
    return complaint_type_response(complaint_type)


@router.get("")
async def list_complaint_types(
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    return [complaint_type_response(t) for t in system.directory.list_complaint_types(user.organization_id)]


@router.get("/{complaint_type_id}")
async def get_complaint_type(
    complaint_type_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    complaint_type = system.directory.get_complaint_type(complaint_type_id)
    if complaint_type is None or complaint_type.organization_id != user.organization_id:
        raise NotFoundError("Complaint type not found")
    return complaint_type_response(complaint_type)


@router.put("/{complaint_type_id}")
async def update_complaint_type(
    complaint_type_id: str,
    request: UpdateComplaintTypeRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    complaint_type = system.directory.update_complaint_type(
        complaint_type_id, user.organization_id, request.model_dump(exclude_unset=True), updated_by=user.id
    )
    return complaint_type_response(complaint_type)


@router.delete("/{complaint_type_id}")
async def delete_complaint_type(
    complaint_type_id: str,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Delete a complaint type nothing was filed under"""
    system.directory.delete_complaint_type(complaint_type_id, user.organization_id, deleted_by=user.id)
    return {"msg": "Complaint type deleted successfully"}
