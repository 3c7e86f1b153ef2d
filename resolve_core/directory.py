"""
Directory Module

Organizations (tenants), their departments, users and complaint types. The
workflow engine only reads from here: it resolves department membership for
assignment and notification, and checks that definitions reference entities
owned by the same organization.

Users sign in with scrypt-hashed passwords. Everyone except a super admin is
pre-approved by email first and activates the account with a registration id.
"""

import hashlib
import secrets
import uuid
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface, StorageRecord, utc_now, parse_datetime, format_datetime
from .audit import AuditTrail, AuditEventType
from .complaints import ComplaintStore
from .errors import (
    AuthenticationError, ConflictError, InvalidReferenceError, NotFoundError, ValidationError,
)


class UserRole(Enum):
    """Roles a user can hold within an organization"""
    SUPER_ADMIN = "SuperAdmin"
    DEPARTMENT_USER = "DepartmentUser"
    STUDENT = "Student"
    FACULTY = "Faculty"


@dataclass
class Organization(StorageRecord):
    """A tenant institution"""
    name: str
    org_type: str
    contact_email: str
    contact_phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'name': self.name,
            'name_key': self.name.strip().lower(),
            'org_type': self.org_type,
            'contact_email': self.contact_email,
            'contact_phone': self.contact_phone,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Organization':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            org_type=data['org_type'],
            contact_email=data['contact_email'],
            contact_phone=data.get('contact_phone'),
        )


@dataclass
class Department(StorageRecord):
    """A department within an organization"""
    organization_id: str
    name: str
    description: str = ""
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'organization_id': self.organization_id,
            'name': self.name,
            'description': self.description,
            'is_active': self.is_active,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Department':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            organization_id=data['organization_id'],
            name=data['name'],
            description=data.get('description', ""),
            is_active=data.get('is_active', True),
        )


@dataclass
class User(StorageRecord):
    """A person who files or handles complaints"""
    organization_id: str
    email: str
    role: UserRole
    first_name: str = ""
    last_name: str = ""
    department_id: Optional[str] = None
    is_active: bool = True
    email_notifications: bool = True
    registration_id: Optional[str] = None
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None
    last_login_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'organization_id': self.organization_id,
            'email': self.email,
            'role': self.role.value,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'department_id': self.department_id,
            'is_active': self.is_active,
            'email_notifications': self.email_notifications,
            'registration_id': self.registration_id,
            'password_hash': self.password_hash,
            'password_salt': self.password_salt,
            'last_login_at': format_datetime(self.last_login_at),
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            organization_id=data['organization_id'],
            email=data['email'],
            role=UserRole(data['role']),
            first_name=data.get('first_name', ""),
            last_name=data.get('last_name', ""),
            department_id=data.get('department_id'),
            is_active=data.get('is_active', True),
            email_notifications=data.get('email_notifications', True),
            registration_id=data.get('registration_id'),
            password_hash=data.get('password_hash'),
            password_salt=data.get('password_salt'),
            last_login_at=parse_datetime(data.get('last_login_at')),
        )


@dataclass
class ComplaintType(StorageRecord):
    """A category of complaint, usually owned by a default department"""
    organization_id: str
    name: str
    description: str = ""
    default_department_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'organization_id': self.organization_id,
            'name': self.name,
            'description': self.description,
            'default_department_id': self.default_department_id,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComplaintType':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            organization_id=data['organization_id'],
            name=data['name'],
            description=data.get('description', ""),
            default_department_id=data.get('default_department_id'),
        )


PASSWORD_MIN_LENGTH = 8


class Directory:
    """
    Registry of organizations, departments, users and complaint types,
    plus password-based sign-in for users
    """

    ORGANIZATIONS = "organizations"
    DEPARTMENTS = "departments"
    USERS = "users"
    COMPLAINT_TYPES = "complaint_types"

    DEPARTMENT_FIELDS = ('name', 'description', 'is_active')
    COMPLAINT_TYPE_FIELDS = ('name', 'description', 'default_department_id')

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail

    # Organizations

    def register_organization(self, name: str, org_type: str, contact_email: str,
                              contact_phone: Optional[str] = None) -> Organization:
        """Register a new organization; names are unique case-insensitively"""
        if not name or not name.strip():
            raise ValidationError("Organization name is required")
        if not self.is_name_available(name):
            raise ConflictError(f"Organization '{name}' already exists")

        now = utc_now()
        organization = Organization(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            org_type=org_type,
            contact_email=contact_email,
            contact_phone=contact_phone,
        )
        self.storage.save(self.ORGANIZATIONS, organization.id, organization.to_dict())
        self.audit_trail.log_event(
            AuditEventType.ORGANIZATION_REGISTERED,
            'organization',
            organization.id,
            {'name': organization.name}
        )
        return organization

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        data = self.storage.load(self.ORGANIZATIONS, organization_id)
        return Organization.from_dict(data) if data else None

    def list_organizations(self) -> List[Organization]:
        organizations = [Organization.from_dict(d) for d in self.storage.load_all(self.ORGANIZATIONS)]
        return sorted(organizations, key=lambda o: o.name.lower())

    def is_name_available(self, name: str) -> bool:
        return not self.storage.find(self.ORGANIZATIONS, {'name_key': name.strip().lower()})

    # Departments

    def create_department(self, organization_id: str, name: str, description: str = "") -> Department:
        """Create a department inside an organization"""
        self._require_organization(organization_id)
        if not name or not name.strip():
            raise ValidationError("Department name is required")
        self._check_department_name(organization_id, name)

        now = utc_now()
        department = Department(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            organization_id=organization_id,
            name=name.strip(),
            description=description,
        )
        self.storage.save(self.DEPARTMENTS, department.id, department.to_dict())
        self.audit_trail.log_event(
            AuditEventType.DEPARTMENT_CREATED,
            'department',
            department.id,
            {'organization_id': organization_id, 'name': department.name}
        )
        return department

    def get_department(self, department_id: str) -> Optional[Department]:
        data = self.storage.load(self.DEPARTMENTS, department_id)
        return Department.from_dict(data) if data else None

    def require_department(self, department_id: str, organization_id: str) -> Department:
        """Department owned by the organization, or InvalidReferenceError"""
        department = self.get_department(department_id)
        if not department or department.organization_id != organization_id:
            raise InvalidReferenceError(f"Invalid department ID: {department_id}")
        return department

    def list_departments(self, organization_id: str) -> List[Department]:
        departments = [
            Department.from_dict(d)
            for d in self.storage.find(self.DEPARTMENTS, {'organization_id': organization_id})
        ]
        return sorted(departments, key=lambda d: d.name.lower())

    def update_department(self, department_id: str, organization_id: str, patch: Dict[str, Any],
                          updated_by: Optional[str] = None) -> Department:
        """Rename, describe or (de)activate a department"""
        department = self._department_of(department_id, organization_id)
        changes = {k: v for k, v in patch.items() if k in self.DEPARTMENT_FIELDS and v is not None}
        if 'name' in changes:
            if not changes['name'].strip():
                raise ValidationError("Department name is required")
            changes['name'] = changes['name'].strip()
            if changes['name'].lower() != department.name.lower():
                self._check_department_name(organization_id, changes['name'])

        for key, value in changes.items():
            setattr(department, key, value)
        department.touch()
        self.storage.save(self.DEPARTMENTS, department.id, department.to_dict())
        self.audit_trail.log_event(
            AuditEventType.DEPARTMENT_UPDATED,
            'department',
            department.id,
            {'fields': sorted(changes)},
            updated_by
        )
        return department

    def delete_department(self, department_id: str, organization_id: str,
                          deleted_by: Optional[str] = None) -> None:
        """Delete a department that has no members left"""
        department = self._department_of(department_id, organization_id)
        if self.storage.find(self.USERS, {'department_id': department_id}):
            raise ConflictError(
                "Cannot delete department with assigned users. Remove all users from it first."
            )
        self.storage.delete(self.DEPARTMENTS, department_id)
        self.audit_trail.log_event(
            AuditEventType.DEPARTMENT_DELETED,
            'department',
            department_id,
            {'name': department.name},
            deleted_by
        )

    def department_members(self, department_id: str, organization_id: str) -> List[User]:
        """Every user of a department, active or not"""
        self._department_of(department_id, organization_id)
        users = [User.from_dict(d) for d in self.storage.find(self.USERS, {'department_id': department_id})]
        return sorted(users, key=lambda u: u.created_at)

    def assign_users_to_department(self, department_id: str, organization_id: str, user_ids: List[str],
                                   assigned_by: Optional[str] = None) -> List[User]:
        """
        Move active users of the organization into a department

        Unknown, inactive or foreign user ids are skipped.

        Raises:
            NotFoundError: Department missing, or none of the ids is an active user
        """
        self._department_of(department_id, organization_id)
        assigned = []
        for user_id in user_ids:
            user = self.get_user(user_id)
            if not user or not user.is_active or user.organization_id != organization_id:
                continue
            user.department_id = department_id
            self.save_user(user)
            assigned.append(user)

        if not assigned:
            raise NotFoundError("No valid active users found")
        self.audit_trail.log_event(
            AuditEventType.DEPARTMENT_UPDATED,
            'department',
            department_id,
            {'assigned_users': [u.id for u in assigned]},
            assigned_by
        )
        return assigned

    def remove_user_from_department(self, department_id: str, user_id: str, organization_id: str,
                                    removed_by: Optional[str] = None) -> User:
        self._department_of(department_id, organization_id)
        user = self.get_user(user_id)
        if not user or user.organization_id != organization_id or user.department_id != department_id:
            raise NotFoundError("User not found in department")
        user.department_id = None
        self.save_user(user)
        self.audit_trail.log_event(
            AuditEventType.DEPARTMENT_UPDATED,
            'department',
            department_id,
            {'removed_user': user_id},
            removed_by
        )
        return user

    # Users

    def create_user(self, organization_id: str, email: str, role: UserRole,
                    first_name: str = "", last_name: str = "",
                    department_id: Optional[str] = None,
                    is_active: bool = True,
                    password: Optional[str] = None,
                    created_by: Optional[str] = None) -> User:
        """Create a user; emails are unique within an organization"""
        organization = self._require_organization(organization_id)
        if not email or not email.strip():
            raise ValidationError("Email is required")
        email = email.strip()
        if self.storage.find(self.USERS, {'organization_id': organization_id, 'email': email}):
            raise ConflictError(f"User with email {email} already exists in this organization")
        if department_id:
            self.require_department(department_id, organization_id)

        now = utc_now()
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            organization_id=organization_id,
            email=email,
            role=role,
            first_name=first_name,
            last_name=last_name,
            department_id=department_id,
            is_active=is_active,
            registration_id=self._next_registration_id(organization, role),
        )
        if password is not None:
            self._set_password(user, password)
        self.storage.save(self.USERS, user.id, user.to_dict())
        self.audit_trail.log_event(
            AuditEventType.USER_CREATED,
            'user',
            user.id,
            {'organization_id': organization_id, 'role': role.value, 'is_active': is_active},
            created_by
        )
        return user

    def register_super_admin(self, organization_id: str, email: str, password: str,
                             first_name: str = "", last_name: str = "") -> User:
        """Create the signed-up administrator of an organization"""
        if self.storage.find(self.USERS, {'organization_id': organization_id, 'role': UserRole.SUPER_ADMIN.value}):
            raise ConflictError("SuperAdmin already exists for this organization")
        return self.create_user(
            organization_id, email, UserRole.SUPER_ADMIN, first_name, last_name, password=password,
        )

    def add_preapproved_user(self, organization_id: str, email: str, role: UserRole,
                             added_by: Optional[str] = None) -> User:
        """
        Pre-approve a user by email

        The user stays inactive until they sign up with the returned
        registration id and choose a password.
        """
        if role == UserRole.SUPER_ADMIN:
            raise ValidationError("Super admins cannot be pre-approved")
        return self.create_user(organization_id, email, role, is_active=False, created_by=added_by)

    def signup(self, registration_id: str, email: str, password: str,
               first_name: str = "", last_name: str = "") -> User:
        """Activate a pre-approved user"""
        pending = self.storage.find(self.USERS, {'registration_id': registration_id, 'is_active': False})
        if not pending:
            raise ValidationError("Invalid registration ID")
        email_key = (email or "").strip().lower()
        matching = [User.from_dict(d) for d in pending if d['email'].lower() == email_key]
        if not matching:
            raise ValidationError("Email does not match the pre-approved email for this registration ID")
        user = matching[0]

        self._set_password(user, password)
        user.first_name = first_name
        user.last_name = last_name
        user.is_active = True
        self.save_user(user)
        self.audit_trail.log_event(
            AuditEventType.USER_ACTIVATED,
            'user',
            user.id,
            {'registration_id': registration_id},
            user.id
        )
        return user

    def authenticate(self, email: str, password: str, organization_id: Optional[str] = None) -> User:
        """
        Check an email and password

        Without an organization the first active account whose password
        matches wins.

        Raises:
            AuthenticationError: No active account matches
        """
        filters: Dict[str, Any] = {'email': (email or "").strip(), 'is_active': True}
        if organization_id:
            filters['organization_id'] = organization_id
        candidates = sorted((User.from_dict(d) for d in self.storage.find(self.USERS, filters)),
                            key=lambda u: u.created_at)
        for user in candidates:
            if self._verify_password(user, password):
                user.last_login_at = utc_now()
                self.save_user(user)
                self.audit_trail.log_event(
                    AuditEventType.USER_LOGIN, 'user', user.id, {'organization_id': user.organization_id}, user.id
                )
                return user

        self.audit_trail.log_event(
            AuditEventType.LOGIN_FAILED, 'authentication', filters['email'], {'organization_id': organization_id}
        )
        raise AuthenticationError("Invalid credentials")

    def get_user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        data = self.storage.load(self.USERS, user_id)
        return User.from_dict(data) if data else None

    def save_user(self, user: User) -> None:
        user.touch()
        self.storage.save(self.USERS, user.id, user.to_dict())

    def list_users(self, organization_id: str, role: Optional[UserRole] = None) -> List[User]:
        filters: Dict[str, Any] = {'organization_id': organization_id}
        if role:
            filters['role'] = role.value
        users = [User.from_dict(d) for d in self.storage.find(self.USERS, filters)]
        return sorted(users, key=lambda u: u.created_at)

    def department_eligible_users(self, organization_id: str) -> List[User]:
        """Department users not yet placed in any department"""
        return [
            user for user in self.list_users(organization_id, UserRole.DEPARTMENT_USER)
            if not user.department_id
        ]

    def delete_user(self, user_id: str, organization_id: str, deleted_by: Optional[str] = None) -> None:
        user = self.get_user(user_id)
        if not user or user.organization_id != organization_id:
            raise NotFoundError("User not found")
        if user.role == UserRole.SUPER_ADMIN:
            raise ValidationError("Cannot delete a SuperAdmin user")
        self.storage.delete(self.USERS, user_id)
        self.audit_trail.log_event(
            AuditEventType.USER_DELETED,
            'user',
            user_id,
            {'email': user.email, 'role': user.role.value},
            deleted_by
        )

    def active_users(self, department_id: str, role: Optional[UserRole] = None) -> List[User]:
        """Active users of a department in creation order, optionally by role"""
        filters: Dict[str, Any] = {'department_id': department_id, 'is_active': True}
        if role:
            filters['role'] = role.value
        users = [User.from_dict(data) for data in self.storage.find(self.USERS, filters)]
        users.sort(key=lambda u: u.created_at)
        return users

    # Complaint types

    def create_complaint_type(self, organization_id: str, name: str, description: str = "",
                              default_department_id: Optional[str] = None) -> ComplaintType:
        self._require_organization(organization_id)
        if not name or not name.strip():
            raise ValidationError("Complaint type name is required")
        if default_department_id:
            self.require_department(default_department_id, organization_id)

        now = utc_now()
        complaint_type = ComplaintType(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            organization_id=organization_id,
            name=name.strip(),
            description=description,
            default_department_id=default_department_id,
        )
        self.storage.save(self.COMPLAINT_TYPES, complaint_type.id, complaint_type.to_dict())
        self.audit_trail.log_event(
            AuditEventType.COMPLAINT_TYPE_CREATED,
            'complaint_type',
            complaint_type.id,
            {'organization_id': organization_id, 'name': complaint_type.name}
        )
        return complaint_type

    def get_complaint_type(self, complaint_type_id: str) -> Optional[ComplaintType]:
        data = self.storage.load(self.COMPLAINT_TYPES, complaint_type_id)
        return ComplaintType.from_dict(data) if data else None

    def require_complaint_type(self, complaint_type_id: str, organization_id: str) -> ComplaintType:
        """Complaint type owned by the organization, or InvalidReferenceError"""
        complaint_type = self.get_complaint_type(complaint_type_id)
        if not complaint_type or complaint_type.organization_id != organization_id:
            raise InvalidReferenceError(f"Invalid complaint type ID: {complaint_type_id}")
        return complaint_type

    def list_complaint_types(self, organization_id: str) -> List[ComplaintType]:
        types = [
            ComplaintType.from_dict(d)
            for d in self.storage.find(self.COMPLAINT_TYPES, {'organization_id': organization_id})
        ]
        return sorted(types, key=lambda t: t.name.lower())

    def update_complaint_type(self, complaint_type_id: str, organization_id: str, patch: Dict[str, Any],
                              updated_by: Optional[str] = None) -> ComplaintType:
        complaint_type = self._complaint_type_of(complaint_type_id, organization_id)
        changes = {k: v for k, v in patch.items() if k in self.COMPLAINT_TYPE_FIELDS and v is not None}
        if 'name' in changes and not changes['name'].strip():
            raise ValidationError("Complaint type name is required")
        if changes.get('default_department_id'):
            self.require_department(changes['default_department_id'], organization_id)

        for key, value in changes.items():
            setattr(complaint_type, key, value)
        complaint_type.touch()
        self.storage.save(self.COMPLAINT_TYPES, complaint_type.id, complaint_type.to_dict())
        self.audit_trail.log_event(
            AuditEventType.COMPLAINT_TYPE_UPDATED,
            'complaint_type',
            complaint_type.id,
            {'fields': sorted(changes)},
            updated_by
        )
        return complaint_type

    def delete_complaint_type(self, complaint_type_id: str, organization_id: str,
                              deleted_by: Optional[str] = None) -> None:
        """Delete a complaint type no complaint was filed under"""
        complaint_type = self._complaint_type_of(complaint_type_id, organization_id)
        if self.storage.find(ComplaintStore.TABLE, {'complaint_type_id': complaint_type_id}):
            raise ConflictError("Cannot delete complaint type that has associated complaints")
        self.storage.delete(self.COMPLAINT_TYPES, complaint_type_id)
        self.audit_trail.log_event(
            AuditEventType.COMPLAINT_TYPE_DELETED,
            'complaint_type',
            complaint_type_id,
            {'name': complaint_type.name},
            deleted_by
        )

    # Internals

    def _require_organization(self, organization_id: str) -> Organization:
        organization = self.get_organization(organization_id)
        if organization is None:
            raise NotFoundError(f"Organization {organization_id} not found")
        return organization

    def _department_of(self, department_id: str, organization_id: str) -> Department:
        department = self.get_department(department_id)
        if not department or department.organization_id != organization_id:
            raise NotFoundError("Department not found")
        return department

    def _complaint_type_of(self, complaint_type_id: str, organization_id: str) -> ComplaintType:
        complaint_type = self.get_complaint_type(complaint_type_id)
        if not complaint_type or complaint_type.organization_id != organization_id:
            raise NotFoundError("Complaint type not found")
        return complaint_type

    def _check_department_name(self, organization_id: str, name: str) -> None:
        for data in self.storage.find(self.DEPARTMENTS, {'organization_id': organization_id}):
            if data['name'].lower() == name.strip().lower():
                raise ConflictError("Department with this name already exists in your organization")

    def _next_registration_id(self, organization: Organization, role: UserRole) -> str:
        count = len(self.storage.find(self.USERS, {'organization_id': organization.id, 'role': role.value}))
        if role == UserRole.SUPER_ADMIN:
            return f"{organization.name[:3].upper()}_SUPER_{count + 1}"
        return f"{organization.name[:4].upper()}_{role.value.upper()}_{count + 1}"

    # Passwords

    def _hash_password(self, password: str, salt: str) -> str:
        return hashlib.scrypt(password.encode(), salt=salt.encode(), n=16384, r=8, p=1).hex()

    def _set_password(self, user: User, password: str) -> None:
        if not password or len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        user.password_salt = secrets.token_hex(16)
        user.password_hash = self._hash_password(password, user.password_salt)

    def _verify_password(self, user: User, password: str) -> bool:
        if not user.password_hash or not user.password_salt or not password:
            return False
        expected = self._hash_password(password, user.password_salt)
        return secrets.compare_digest(expected, user.password_hash)
