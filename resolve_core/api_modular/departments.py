"""
Department endpoints and department membership
"""

from fastapi import APIRouter, Depends, status

from .auth import ResolveSystem, get_resolve_system, get_current_user, require_super_admin
from .schemas import (
    DepartmentRequest,
    UpdateDepartmentRequest,
    DepartmentUsersRequest,
    department_response,
    user_response,
)
from ..directory import User
from ..errors import NotFoundError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_department(
    request: DepartmentRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Create a department in the admin's organization"""
    department = system.directory.create_department(user.organization_id, request.name, request.description)
    return department_response(department)


@router.get("")
async def list_departments(
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List departments of the current user's organization"""
    return [department_response(d) for d in system.directory.list_departments(user.organization_id)]


@router.get("/{department_id}")
async def get_department(
    department_id: str,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    department = system.directory.get_department(department_id)
    if department is None or department.organization_id != user.organization_id:
        raise NotFoundError("Department not found")
    return department_response(department)


@router.put("/{department_id}")
async def update_department(
    department_id: str,
    request: UpdateDepartmentRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Rename, describe or (de)activate a department"""
    department = system.directory.update_department(
        department_id, user.organization_id, request.model_dump(exclude_unset=True), updated_by=user.id
    )
    return department_response(department)


@router.delete("/{department_id}")
async def delete_department(
    department_id: str,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Delete a department without members"""
    system.directory.delete_department(department_id, user.organization_id, deleted_by=user.id)
    return {"msg": "Department deleted successfully"}


@router.post("/{department_id}/users")
async def assign_department_users(
    department_id: str,
    request: DepartmentUsersRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Move active users into a department"""
    assigned = system.directory.assign_users_to_department(
        department_id, user.organization_id, request.user_ids, assigned_by=user.id
    )
    return [user_response(u) for u in assigned]


@router.get("/{department_id}/users")
async def list_department_users(
    department_id: str,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    members = system.directory.department_members(department_id, user.organization_id)
    return [user_response(u) for u in members]


@router.delete("/{department_id}/users/{user_id}")
async def remove_department_user(
    department_id: str,
    user_id: str,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Take a user out of a department"""
    removed = system.directory.remove_user_from_department(
        department_id, user_id, user.organization_id, removed_by=user.id
    )
    return user_response(removed)
