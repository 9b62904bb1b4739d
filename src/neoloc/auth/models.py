"""
Hub authentication data models.

Data classes for users, roles, permissions, their association edges,
primary sessions, SSO tokens and module directory records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


SYSTEM_ROLES = ("administrator", "manager", "operator", "viewer")
ACTIONS = ("read", "write", "delete", "admin")
SUPER_ADMIN_ROLE = "administrator"


@dataclass
class User:
    """
    User account.

    Attributes:
        id: Unique user identifier (UUID)
        email: Unique email address, used as login name
        password_hash: Bcrypt hashed password
        full_name: Display name
        role: Primary role name (administrator/manager/operator/viewer)
        is_active: Whether account is active
        module_access: Module names granted directly to the user
        created_at: Account creation timestamp
        last_login: Last successful login, None if never logged in
    """
    id: str
    email: str
    password_hash: str
    full_name: str
    role: str
    created_at: datetime
    is_active: bool = True
    module_access: List[str] = field(default_factory=list)
    last_login: Optional[datetime] = None

    def to_view(self) -> "UserView":
        return UserView(
            id=self.id,
            email=self.email,
            full_name=self.full_name,
            role=self.role,
            is_active=self.is_active,
            module_access=list(self.module_access),
            created_at=self.created_at,
            last_login=self.last_login,
        )


@dataclass
class UserView:
    """User projection without the password hash."""
    id: str
    email: str
    full_name: str
    role: str
    is_active: bool
    module_access: List[str]
    created_at: datetime
    last_login: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role,
            "isActive": self.is_active,
            "moduleAccess": list(self.module_access),
            "createdAt": self.created_at.isoformat(),
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
        }


@dataclass
class Role:
    """
    Named bundle of permissions.

    Attributes:
        id: Unique role identifier
        name: Unique role name (e.g., "manager")
        display_name: Human-readable name
        description: Human-readable description
        is_system: Built-in role; cannot be deleted or renamed
        created_at: Creation timestamp
    """
    id: str
    name: str
    display_name: str
    description: str
    created_at: datetime
    is_system: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "isSystem": self.is_system,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class Permission:
    """
    Atomic capability on a resource.

    Attributes:
        id: Unique permission identifier
        name: Derived name, "<resource>.<action>"
        display_name: Human-readable name
        description: Human-readable description
        resource: Module name or "system.<area>"
        action: One of read/write/delete/admin
        created_at: Creation timestamp
    """
    id: str
    name: str
    display_name: str
    description: str
    resource: str
    action: str
    created_at: datetime

    @property
    def key(self) -> tuple:
        return (self.resource, self.action)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "resource": self.resource,
            "action": self.action,
        }


@dataclass
class RolePermission:
    id: str
    role_id: str
    permission_id: str
    created_at: datetime


@dataclass
class UserRole:
    id: str
    user_id: str
    role_id: str
    assigned_by: str
    created_at: datetime


@dataclass
class Session:
    """
    Primary authentication session.

    Attributes:
        id: Unique session identifier
        user_id: User who owns this session
        token: Signed bearer token, the lookup key
        expires_at: Absolute expiry
        created_at: Session creation timestamp
    """
    id: str
    user_id: str
    token: str
    expires_at: datetime
    created_at: datetime


@dataclass
class SsoToken:
    """
    Single-use federation grant for one module.

    A token whose used_at is set is permanently invalid.
    """
    id: str
    user_id: str
    module_id: str
    token: str
    expires_at: datetime
    created_at: datetime
    used_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    used_ip_address: Optional[str] = None
    used_user_agent: Optional[str] = None


@dataclass
class Module:
    """Module directory record."""
    id: str
    name: str
    display_name: str
    url: str
    description: str = ""
    category: str = "business"
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "url": self.url,
            "category": self.category,
            "isActive": self.is_active,
        }


@dataclass
class LoginResult:
    user: UserView
    token: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user.to_dict(),
            "token": self.token,
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass
class SsoGrant:
    token: str
    redirect_url: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "redirectUrl": self.redirect_url,
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass
class SsoUserData:
    """User projection handed to an external module on redemption."""
    id: str
    email: str
    full_name: str
    role: str
    module_access: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role,
            "moduleAccess": list(self.module_access),
        }
