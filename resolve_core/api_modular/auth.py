"""
Authentication and authorization dependencies
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import InMemoryStorage, SQLiteStorage
from ..audit import AuditTrail
from ..directory import Directory, User, UserRole
from ..complaints import ComplaintStore
from ..notifications import NotificationService, create_email_dispatcher
from ..workflow_templates import WorkflowTemplateLibrary
from ..workflows import WorkflowDefinitionStore
from ..stage_actions import StageActionExecutor
from ..workflow_engine import WorkflowEngine
from ..scheduler import TimedTransitionScheduler
from ..lifecycle import ComplaintLifecycleCoordinator
from ..config import get_config


class ResolveSystem:
    """Complaint management system with all components initialized"""

    def __init__(self, use_sqlite: bool = True, database_path: Optional[str] = None):
        config = get_config()

        # Initialize storage
        if use_sqlite:
            self.storage = SQLiteStorage(database_path or config.database_path)
        else:
            self.storage = InMemoryStorage()

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage)
        self.directory = Directory(self.storage, self.audit_trail)
        self.complaints = ComplaintStore(self.storage)
        self.notifications = NotificationService(self.storage)
        self.emails = create_email_dispatcher(config)

        # Initialize workflow components
        self.templates = WorkflowTemplateLibrary()
        self.definitions = WorkflowDefinitionStore(
            self.storage, self.audit_trail, self.directory, self.templates
        )
        self.executor = StageActionExecutor(
            self.complaints, self.directory, self.notifications, self.emails, self.audit_trail
        )
        self.workflow_engine = WorkflowEngine(
            self.storage, self.definitions, self.complaints, self.executor,
            self.notifications, self.audit_trail
        )
        self.scheduler = TimedTransitionScheduler(
            self.workflow_engine, self.complaints, config.scheduler_interval_seconds
        )
        self.lifecycle = ComplaintLifecycleCoordinator(
            self.complaints, self.directory, self.workflow_engine, self.executor,
            self.notifications, self.emails, self.audit_trail
        )


# Global system instance, created on first use
resolve_system: Optional[ResolveSystem] = None

AUTH_ENABLED = get_config().auth_enabled

# JWT Security
security = HTTPBearer(auto_error=False)


# Dependency to get the system
def get_resolve_system() -> ResolveSystem:
    global resolve_system
    if resolve_system is None:
        config = get_config()
        resolve_system = ResolveSystem(use_sqlite=config.use_sqlite)
    return resolve_system


def create_access_token(user: User, expires_in: Optional[timedelta] = None) -> str:
    """Issue a bearer token for a user"""
    config = get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "org": user.organization_id,
        "role": user.role.value,
        "iat": now,
        "exp": now + (expires_in or timedelta(hours=config.jwt_expiry_hours)),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def _decode_token(token: str) -> dict:
    config = get_config()
    if not AUTH_ENABLED:
        # Claims are trusted as-is for local development
        return jwt.decode(token, options={"verify_signature": False})
    return jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])


# Authentication Dependencies
def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security),
                     system: ResolveSystem = Depends(get_resolve_system)) -> User:
    """Dependency that validates the bearer token and returns the active user"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = _decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = system.directory.get_user(user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def require_role(*roles: UserRole):
    """Dependency factory for role checking"""
    def check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return check


require_super_admin = require_role(UserRole.SUPER_ADMIN)
