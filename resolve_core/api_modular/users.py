"""
User management endpoints (super admin only)
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .auth import ResolveSystem, get_resolve_system, require_super_admin
from .schemas import AddUserRequest, user_response
from ..directory import User, UserRole
from ..errors import ValidationError


router = APIRouter()


def _parse_role(value: str) -> UserRole:
    try:
        return UserRole(value)
    except ValueError:
        raise ValidationError(f"Invalid role: {value}", [f"role: must be one of {[r.value for r in UserRole]}"])


@router.post("/add", status_code=status.HTTP_201_CREATED)
async def add_user(
    request: AddUserRequest,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Pre-approve a user; they sign up later with the returned registration id"""
    added = system.directory.add_preapproved_user(
        user.organization_id, request.email, _parse_role(request.role), added_by=user.id
    )
    return {"msg": "User added successfully", "registrationId": added.registration_id,
            "user": user_response(added)}


@router.get("")
async def list_users(
    role: Optional[str] = None,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    users = system.directory.list_users(user.organization_id, _parse_role(role) if role else None)
    return [user_response(u) for u in users]


@router.get("/department-eligible")
async def list_department_eligible_users(
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Department users not yet placed in a department"""
    return [user_response(u) for u in system.directory.department_eligible_users(user.organization_id)]


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
):
    system.directory.delete_user(user_id, user.organization_id, deleted_by=user.id)
    return {"msg": "User deleted successfully"}
