"""
Authentication and authorization core for the NeoLoc hub.

Provides the RBAC graph, the authorization service, primary JWT sessions and
the single-use SSO token broker for external modules.
"""

from .models import (
    User,
    UserView,
    Role,
    Permission,
    RolePermission,
    UserRole,
    Session,
    SsoToken,
    Module,
    LoginResult,
    SsoGrant,
    SsoUserData,
    SYSTEM_ROLES,
    ACTIONS,
    SUPER_ADMIN_ROLE,
)
from .exceptions import (
    HubError,
    InvalidCredentials,
    SessionInvalid,
    AccessDenied,
    ModuleNotFound,
    TokenInvalid,
    UserInactive,
    StorageUnavailable,
    AuthorizationCheckFailed,
    DuplicateUser,
)
from .repository import HubStore
from .memory_store import MemoryStore
from .database import UserDatabase
from .jwt_handler import JWTHandler, TokenPayload, SsoTokenPayload
from .passwords import PasswordHasher
from .context import AuthContext, RequestContext
from .permissions import RbacGraph, Clock, utc_now
from .authorization import AuthorizationService, is_super_admin
from .modules import ModuleDirectory
from .user_manager import UserManager
from .session_manager import SessionManager
from .sso import SsoBroker
from .sweeper import Sweeper

__all__ = [
    # Models
    "User",
    "UserView",
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
    "Session",
    "SsoToken",
    "Module",
    "LoginResult",
    "SsoGrant",
    "SsoUserData",
    "SYSTEM_ROLES",
    "ACTIONS",
    "SUPER_ADMIN_ROLE",
    # Errors
    "HubError",
    "InvalidCredentials",
    "SessionInvalid",
    "AccessDenied",
    "ModuleNotFound",
    "TokenInvalid",
    "UserInactive",
    "StorageUnavailable",
    "AuthorizationCheckFailed",
    "DuplicateUser",
    # Storage
    "HubStore",
    "MemoryStore",
    "UserDatabase",
    # Tokens and passwords
    "JWTHandler",
    "TokenPayload",
    "SsoTokenPayload",
    "PasswordHasher",
    # Services
    "AuthContext",
    "RequestContext",
    "RbacGraph",
    "Clock",
    "utc_now",
    "AuthorizationService",
    "is_super_admin",
    "ModuleDirectory",
    "UserManager",
    "SessionManager",
    "SsoBroker",
    "Sweeper",
]
