"""
Storage interfaces for the hub.

One abstract repository per entity family. MemoryStore and UserDatabase
implement all of them, so services depend only on these interfaces and
either backend can be swapped in.

Implementations must:
- raise StorageUnavailable when a lookup or write cannot complete within
  the configured timeout (never report "not found" instead)
- apply cascades and the SSO claim atomically
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .models import (
    Module,
    Permission,
    Role,
    RolePermission,
    Session,
    SsoToken,
    User,
    UserRole,
)


class UserRepository(ABC):
    """Principal store."""

    @abstractmethod
    def add_user(self, user: User) -> User:
        """Persist a new user. Raises DuplicateUser if the email is taken."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def update_user(self, user_id: str, **changes) -> Optional[User]:
        """Apply a partial update. Returns None if the user does not exist."""

    @abstractmethod
    def delete_user(self, user_id: str) -> bool:
        """Delete a user with its sessions, SSO tokens and role edges."""

    @abstractmethod
    def list_users(self) -> List[User]: ...


class RbacRepository(ABC):
    """Roles, permissions and the edges between roles, permissions and users."""

    @abstractmethod
    def add_role(self, role: Role) -> Role: ...

    @abstractmethod
    def get_role(self, role_id: str) -> Optional[Role]: ...

    @abstractmethod
    def get_role_by_name(self, name: str) -> Optional[Role]: ...

    @abstractmethod
    def list_roles(self) -> List[Role]: ...

    @abstractmethod
    def update_role(self, role_id: str, **changes) -> Optional[Role]: ...

    @abstractmethod
    def delete_role(self, role_id: str) -> bool:
        """
        Delete a non-system role and every edge referencing it.

        Returns False, leaving everything intact, if the role is a system
        role or does not exist.
        """

    @abstractmethod
    def add_permission(self, permission: Permission) -> Permission:
        """Persist a permission; returns the existing one for a known (resource, action)."""

    @abstractmethod
    def get_permission(self, permission_id: str) -> Optional[Permission]: ...

    @abstractmethod
    def get_permission_by_name(self, name: str) -> Optional[Permission]: ...

    @abstractmethod
    def list_permissions(self) -> List[Permission]: ...

    @abstractmethod
    def delete_permission(self, permission_id: str) -> bool: ...

    @abstractmethod
    def add_role_permission(self, edge: RolePermission) -> RolePermission:
        """
        Store the edge unless one already links the pair; return the stored edge.

        Raises:
            ValueError: If the role or the permission does not exist
        """

    @abstractmethod
    def remove_role_permission(self, role_id: str, permission_id: str) -> bool: ...

    @abstractmethod
    def get_role_permissions(self, role_id: str) -> List[Permission]: ...

    @abstractmethod
    def add_user_role(self, edge: UserRole) -> UserRole:
        """
        Store the edge unless one already links the pair; return the stored edge.

        Raises:
            ValueError: If the user or the role does not exist
        """

    @abstractmethod
    def remove_user_role(self, user_id: str, role_id: str) -> bool: ...

    @abstractmethod
    def get_user_roles(self, user_id: str) -> List[Role]: ...

    @abstractmethod
    def get_user_permissions(self, user_id: str) -> List[Permission]:
        """Permissions of every role assigned to the user, read as one snapshot."""


class SessionRepository(ABC):
    """Primary sessions, indexed by token."""

    @abstractmethod
    def add_session(self, session: Session) -> Session: ...

    @abstractmethod
    def get_session(self, token: str) -> Optional[Session]: ...

    @abstractmethod
    def delete_session(self, token: str) -> bool: ...

    @abstractmethod
    def delete_user_sessions(self, user_id: str) -> int: ...

    @abstractmethod
    def delete_expired_sessions(self, now: datetime) -> int: ...


class SsoTokenRepository(ABC):
    """Federation grants, indexed by token."""

    @abstractmethod
    def add_sso_token(self, sso_token: SsoToken) -> SsoToken: ...

    @abstractmethod
    def get_sso_token(self, token: str) -> Optional[SsoToken]: ...

    @abstractmethod
    def claim_sso_token(
        self,
        token: str,
        module_id: str,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[SsoToken]:
        """
        Atomically redeem a token.

        Sets used_at and the redemption ip/user-agent only if a row exists
        for (token, module_id), is unused and has not expired. Returns the
        updated row, or None if any condition failed.
        """

    @abstractmethod
    def delete_expired_sso_tokens(self, now: datetime) -> int: ...


class ModuleRepository(ABC):
    """Read side of the module directory, plus seeding."""

    @abstractmethod
    def add_module(self, module: Module) -> Module: ...

    @abstractmethod
    def get_module(self, module_id: str) -> Optional[Module]: ...

    @abstractmethod
    def get_module_by_name(self, name: str) -> Optional[Module]: ...

    @abstractmethod
    def list_modules(self) -> List[Module]: ...


class HubStore(
    UserRepository,
    RbacRepository,
    SessionRepository,
    SsoTokenRepository,
    ModuleRepository,
):
    """A backend implementing every repository."""
