"""
Complaint endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .auth import ResolveSystem, get_resolve_system, get_current_user
from .schemas import (
    CreateComplaintRequest,
    UpdateStatusRequest,
    EscalateRequest,
    AssignComplaintRequest,
    CommentRequest,
    complaint_response,
    comment_response,
)
from ..complaints import Complaint, ComplaintStatus, ComplaintPriority
from ..directory import User, UserRole
from ..errors import ValidationError


router = APIRouter()


def _parse_status(value: str) -> ComplaintStatus:
    try:
        return ComplaintStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}", [f"status: must be one of {[s.value for s in ComplaintStatus]}"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_complaint(
    request: CreateComplaintRequest,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """File a new complaint and start its workflow"""
    try:
        priority = ComplaintPriority(request.priority)
    except ValueError:
        raise ValidationError(f"Invalid priority: {request.priority}")

    complaint = system.lifecycle.create_complaint(
        organization_id=user.organization_id,
        complainant_id=user.id,
        complaint_type_id=request.complaint_type_id,
        department_id=request.department_id,
        title=request.title,
        description=request.description,
        priority=priority,
    )
    return complaint_response(complaint)


@router.get("")
async def list_complaints(
    status_filter: Optional[str] = None,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List complaints visible to the current user"""
    complaint_status = _parse_status(status_filter) if status_filter else None
    complaints = system.complaints.list_for_organization(user.organization_id, complaint_status)
    if user.role in (UserRole.STUDENT, UserRole.FACULTY):
        complaints = [c for c in complaints if c.complainant_id == user.id]
    elif user.role == UserRole.DEPARTMENT_USER:
        complaints = [c for c in complaints if c.department_id == user.department_id]
    return [complaint_response(c) for c in complaints]


@router.get("/{complaint_id}")
async def get_complaint(
    complaint_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Get complaint by ID"""
    complaint = system.complaints.require(complaint_id, user.organization_id)
    return complaint_response(complaint)


@router.put("/{complaint_id}/status")
async def update_complaint_status(
    complaint_id: str,
    request: UpdateStatusRequest,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Change a complaint's status, moving its workflow along"""
    if user.role == UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="Not authorized to update complaint status")
    complaint = system.complaints.require(complaint_id, user.organization_id)
    if user.role == UserRole.DEPARTMENT_USER and user.department_id != complaint.department_id:
        raise HTTPException(status_code=403, detail="Not authorized to update this complaint")

    complaint = system.lifecycle.update_status(
        complaint.id, _parse_status(request.status), actor_id=user.id, comment=request.comment
    )
    return complaint_response(complaint)


@router.put("/{complaint_id}/escalate")
async def escalate_complaint(
    complaint_id: str,
    request: EscalateRequest,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Escalate a complaint"""
    if user.role == UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="Not authorized to escalate complaints")
    complaint = system.lifecycle.escalate_complaint(
        complaint_id, user.id, request.reason, organization_id=user.organization_id
    )
    return complaint_response(complaint)


@router.put("/{complaint_id}/assign")
async def assign_complaint(
    complaint_id: str,
    request: AssignComplaintRequest,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Assign a complaint to a user of its department"""
    if user.role not in (UserRole.SUPER_ADMIN, UserRole.DEPARTMENT_USER):
        raise HTTPException(status_code=403, detail="Not authorized to assign complaints")
    complaint = system.complaints.require(complaint_id, user.organization_id)
    if user.role == UserRole.DEPARTMENT_USER and user.department_id != complaint.department_id:
        raise HTTPException(status_code=403, detail="Not authorized to assign this complaint")

    complaint = system.lifecycle.assign_complaint(
        complaint.id, request.user_id, actor_id=user.id, organization_id=user.organization_id
    )
    return complaint_response(complaint)


@router.get("/{complaint_id}/comments")
async def list_comments(
    complaint_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Comments on a complaint, oldest first"""
    _require_visible(system.complaints.require(complaint_id, user.organization_id), user)
    comments = system.lifecycle.list_comments(complaint_id, user.organization_id)
    return [comment_response(c, system.directory.get_user(c.author_id)) for c in comments]


@router.post("/{complaint_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    complaint_id: str,
    request: CommentRequest,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Comment on a complaint"""
    _require_visible(system.complaints.require(complaint_id, user.organization_id), user)
    comment = system.lifecycle.add_comment(complaint_id, user.id, request.comment, user.organization_id)
    return comment_response(comment, user)


def _require_visible(complaint: Complaint, user: User) -> None:
    if user.role in (UserRole.STUDENT, UserRole.FACULTY) and complaint.complainant_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to access this complaint")
    if user.role == UserRole.DEPARTMENT_USER and complaint.department_id != user.department_id:
        raise HTTPException(status_code=403, detail="Not authorized to access this complaint")
