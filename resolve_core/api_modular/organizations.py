"""
Organization endpoints (public: used before anyone can sign in)
"""

from fastapi import APIRouter, Depends, status

from .auth import ResolveSystem, get_resolve_system
from .schemas import RegisterOrganizationRequest, organization_response
from ..errors import NotFoundError


router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_organization(
    request: RegisterOrganizationRequest,
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Register a new organization"""
    organization = system.directory.register_organization(
        request.name, request.org_type, request.contact_email, request.contact_phone
    )
    return organization_response(organization)


@router.get("")
async def list_organizations(system: ResolveSystem = Depends(get_resolve_system)):
    """List organizations by name"""
    return [organization_response(o) for o in system.directory.list_organizations()]


@router.get("/check-name/{name}")
async def check_organization_name(
    name: str,
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Whether an organization name is still free"""
    return {"name": name, "available": system.directory.is_name_available(name)}


@router.get("/{organization_id}")
async def get_organization(
    organization_id: str,
    system: ResolveSystem = Depends(get_resolve_system)
):
    organization = system.directory.get_organization(organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")
    return organization_response(organization)
