"""
Authorization service.

Yes/no answers to "may this user do X". A pure query layer over the
principal store and the RBAC graph; it never mutates state.

Any storage failure while resolving a decision surfaces as
AuthorizationCheckFailed, which callers must treat as a denial.
"""

from typing import List, Optional

from loguru import logger

from .exceptions import AccessDenied, AuthorizationCheckFailed, StorageUnavailable
from .models import Module, SUPER_ADMIN_ROLE, User
from .modules import ModuleDirectory
from .permissions import RbacGraph
from .repository import UserRepository


def is_super_admin(user: Optional[User]) -> bool:
    """
    The administrator bypass.

    Active users whose primary role is administrator pass every check
    without consulting the permission table.
    """
    return user is not None and user.is_active and user.role == SUPER_ADMIN_ROLE


class AuthorizationService:
    """Permission and role checks built on the RBAC graph."""

    def __init__(self, users: UserRepository, rbac: RbacGraph, modules: ModuleDirectory):
        self.users = users
        self.rbac = rbac
        self.modules = modules

    def has_permission(self, user: Optional[User], resource: str, action: str) -> bool:
        """
        Check whether a user holds (resource, action).

        Exact match only: no wildcards, and no implication between actions
        (write does not imply read).

        Raises:
            AuthorizationCheckFailed: If the permission table cannot be read
        """
        if user is None or not user.is_active:
            return False

        if is_super_admin(user):
            return True

        try:
            permissions = self.rbac.get_user_permissions(user.id)
        except StorageUnavailable as e:
            logger.error(f"Permission check failed for user {user.id}: {e}")
            raise AuthorizationCheckFailed(str(e)) from e

        return any(p.resource == resource and p.action == action for p in permissions)

    def has_role(self, user: Optional[User], role_name: str) -> bool:
        """
        Check whether a user holds a role through an assignment.

        Raises:
            AuthorizationCheckFailed: If the role edges cannot be read
        """
        if user is None or not user.is_active:
            return False

        if is_super_admin(user):
            return True

        try:
            roles = self.rbac.get_user_roles(user.id)
        except StorageUnavailable as e:
            logger.error(f"Role check failed for user {user.id}: {e}")
            raise AuthorizationCheckFailed(str(e)) from e

        return any(role.name == role_name for role in roles)

    def user_has_permission(self, user_id: str, resource: str, action: str) -> bool:
        return self.has_permission(self._load_user(user_id), resource, action)

    def user_has_role(self, user_id: str, role_name: str) -> bool:
        return self.has_role(self._load_user(user_id), role_name)

    def can_access_module(self, user: Optional[User], module: Module) -> bool:
        """
        Check whether a user may open a module.

        Access comes from the administrator bypass, a read permission on the
        module, or a direct module grant on the user record.
        """
        if user is None or not user.is_active:
            return False
        if self.has_permission(user, module.name, "read"):
            return True
        return module.name in user.module_access

    def accessible_modules(self, user: Optional[User]) -> List[Module]:
        """Active modules the user may open."""
        if user is None or not user.is_active:
            return []

        try:
            modules = self.modules.list_active_modules()
            if is_super_admin(user):
                return modules
            readable = {
                p.resource for p in self.rbac.get_user_permissions(user.id) if p.action == "read"
            }
        except StorageUnavailable as e:
            logger.error(f"Module access check failed for user {user.id}: {e}")
            raise AuthorizationCheckFailed(str(e)) from e

        granted = readable | set(user.module_access)
        return [module for module in modules if module.name in granted]

    def require_permission(self, user: Optional[User], resource: str, action: str) -> None:
        """
        Require a permission.

        Raises:
            AccessDenied: If the user does not hold the permission
            AuthorizationCheckFailed: If the check could not complete
        """
        if not self.has_permission(user, resource, action):
            raise AccessDenied(user.id if user else None, resource, action)

    def require_module_access(self, user: Optional[User], module: Module) -> None:
        if not self.can_access_module(user, module):
            raise AccessDenied(user.id if user else None, module.name, "read")

    def require_role(self, user: Optional[User], role_name: str) -> None:
        if not self.has_role(user, role_name):
            raise AccessDenied(user.id if user else None, f"role:{role_name}", "assume")

    def _load_user(self, user_id: str) -> Optional[User]:
        try:
            return self.users.get_user(user_id)
        except StorageUnavailable as e:
            raise AuthorizationCheckFailed(str(e)) from e
