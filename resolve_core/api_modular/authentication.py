"""
Sign-in endpoints: super admin registration, login, pre-approved signup
"""

import logging

from fastapi import APIRouter, Depends, status

from .auth import ResolveSystem, get_resolve_system, get_current_user, create_access_token
from .schemas import (
    RegisterSuperAdminRequest,
    LoginRequest,
    SignupRequest,
    token_response,
    user_response,
)
from ..directory import User
from ..errors import InvalidReferenceError
from ..logging_config import log_action


router = APIRouter()
logger = logging.getLogger("resolve.auth")


@router.post("/register-superadmin", status_code=status.HTTP_201_CREATED)
async def register_super_admin(
    request: RegisterSuperAdminRequest,
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Register the administrator of a freshly registered organization"""
    if system.directory.get_organization(request.organization_id) is None:
        raise InvalidReferenceError("Invalid organization ID")
    user = system.directory.register_super_admin(
        request.organization_id, request.email, request.password, request.first_name, request.last_name
    )
    return token_response(user, create_access_token(user))


@router.post("/login")
async def login(
    request: LoginRequest,
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Exchange an email and password for a bearer token"""
    user = system.directory.authenticate(request.email, request.password, request.organization_id)
    log_action(
        logger, "info", "User logged in",
        user_id=user.id, action="login", organization_id=user.organization_id,
    )
    return token_response(user, create_access_token(user))


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Activate a pre-approved account with its registration id"""
    user = system.directory.signup(
        request.registration_id, request.email, request.password, request.first_name, request.last_name
    )
    return token_response(user, create_access_token(user))


@router.post("/logout")
async def logout(user: User = Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy
    log_action(
        logger, "info", "User logged out",
        user_id=user.id, action="logout", organization_id=user.organization_id,
    )
    return {"msg": "Logged out successfully"}


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    """The signed-in user"""
    return user_response(user)
