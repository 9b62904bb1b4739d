"""
Role-Based Access Control (RBAC) graph for the hub.

This module provides:
- The built-in roles and the default permission catalogue
- Role and permission management
- Role <-> permission and user <-> role edges
- Effective permission resolution (additive union over a user's roles)
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from .models import (
    ACTIONS,
    Permission,
    Role,
    RolePermission,
    SUPER_ADMIN_ROLE,
    UserRole,
)
from .repository import RbacRepository


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Built-in roles: (name, display name, description)
SYSTEM_ROLE_DEFINITIONS = (
    ("administrator", "Administrator", "Full system access with all permissions"),
    ("manager", "Manager", "Management access with most permissions"),
    ("operator", "Operator", "Operational access with limited permissions"),
    ("viewer", "Viewer", "Read-only access to assigned modules"),
)

DEFAULT_MODULES = (
    "inventario",
    "compras",
    "estoque",
    "almoxarifado",
    "comercial",
    "financeiro",
    "expedicao",
    "manutencao",
    "bi",
)

SYSTEM_AREAS = ("users", "roles", "modules", "system")


def permission_name(resource: str, action: str) -> str:
    return f"{resource}.{action}"


def system_resource(area: str) -> str:
    return f"system.{area}"


class RbacGraph:
    """
    Roles, permissions and their associations.

    Edge assignment is idempotent. Role deletion refuses system roles and
    otherwise removes the role together with every edge referencing it.
    """

    def __init__(self, store: RbacRepository, clock: Clock = utc_now):
        """
        Initialize graph.

        Args:
            store: Repository holding roles, permissions and edges
            clock: Returns the current UTC time
        """
        self.store = store
        self.clock = clock

    # ========================================================================
    # Roles
    # ========================================================================

    def create_role(
        self,
        name: str,
        display_name: str,
        description: str = "",
        is_system: bool = False,
    ) -> Role:
        role = Role(
            id=str(uuid.uuid4()),
            name=name,
            display_name=display_name,
            description=description,
            is_system=is_system,
            created_at=self.clock(),
        )
        self.store.add_role(role)
        logger.info(f"Role created: {name} ({role.id})")
        return role

    def get_role(self, role_id: str) -> Optional[Role]:
        return self.store.get_role(role_id)

    def get_role_by_name(self, name: str) -> Optional[Role]:
        return self.store.get_role_by_name(name)

    def list_roles(self) -> List[Role]:
        return self.store.list_roles()

    def update_role(self, role_id: str, **changes) -> Optional[Role]:
        """
        Update a custom role.

        Returns None if the role does not exist, if it is a system role
        (system roles are immutable), or if the change would alter the
        system flag.
        """
        role = self.store.get_role(role_id)
        if role is None:
            return None
        if role.is_system or "is_system" in changes:
            logger.warning(f"Refused update of role {role.name}")
            return None
        return self.store.update_role(role_id, **changes)

    def delete_role(self, role_id: str) -> bool:
        """
        Delete a custom role and all of its edges.

        Returns:
            False if the role is a system role or does not exist
        """
        deleted = self.store.delete_role(role_id)
        if deleted:
            logger.info(f"Role deleted: {role_id}")
        else:
            logger.warning(f"Role not deleted (missing or system role): {role_id}")
        return deleted

    def get_role_with_permissions(self, role_id: str) -> Optional[Dict]:
        role = self.store.get_role(role_id)
        if role is None:
            return None
        data = role.to_dict()
        data["permissions"] = [p.to_dict() for p in self.get_role_permissions(role_id)]
        return data

    def list_roles_with_permissions(self) -> List[Dict]:
        return [
            data
            for data in (self.get_role_with_permissions(role.id) for role in self.store.list_roles())
            if data is not None
        ]

    # ========================================================================
    # Permissions
    # ========================================================================

    def create_permission(
        self,
        resource: str,
        action: str,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Permission:
        """
        Create a permission, or return the existing one for (resource, action).

        Raises:
            ValueError: If action is not one of read/write/delete/admin
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown action: {action}")

        permission = Permission(
            id=str(uuid.uuid4()),
            name=permission_name(resource, action),
            display_name=display_name or f"{resource.title()} {action.title()}",
            description=description or f"{action.title()} access to {resource}",
            resource=resource,
            action=action,
            created_at=self.clock(),
        )
        return self.store.add_permission(permission)

    def get_permission(self, permission_id: str) -> Optional[Permission]:
        return self.store.get_permission(permission_id)

    def get_permission_by_name(self, name: str) -> Optional[Permission]:
        return self.store.get_permission_by_name(name)

    def list_permissions(self) -> List[Permission]:
        return self.store.list_permissions()

    def get_permissions_by_resource(self, resource: str) -> List[Permission]:
        return [p for p in self.store.list_permissions() if p.resource == resource]

    def delete_permission(self, permission_id: str) -> bool:
        deleted = self.store.delete_permission(permission_id)
        if deleted:
            logger.info(f"Permission deleted: {permission_id}")
        return deleted

    # ========================================================================
    # Role <-> Permission
    # ========================================================================

    def assign_permission_to_role(self, role_id: str, permission_id: str) -> RolePermission:
        """
        Link a permission to a role. Idempotent.

        Raises:
            ValueError: If the role or the permission does not exist
        """
        edge = RolePermission(
            id=str(uuid.uuid4()),
            role_id=role_id,
            permission_id=permission_id,
            created_at=self.clock(),
        )
        return self.store.add_role_permission(edge)

    def remove_permission_from_role(self, role_id: str, permission_id: str) -> bool:
        return self.store.remove_role_permission(role_id, permission_id)

    def get_role_permissions(self, role_id: str) -> List[Permission]:
        return self.store.get_role_permissions(role_id)

    # ========================================================================
    # User <-> Role
    # ========================================================================

    def assign_role_to_user(self, user_id: str, role_id: str, assigned_by: str) -> UserRole:
        """
        Assign a role to a user. Idempotent.

        Raises:
            ValueError: If the user or the role does not exist
        """
        edge = UserRole(
            id=str(uuid.uuid4()),
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            created_at=self.clock(),
        )
        stored = self.store.add_user_role(edge)
        if stored.id == edge.id:
            logger.info(f"Role {role_id} assigned to user {user_id} by {assigned_by}")
        return stored

    def remove_role_from_user(self, user_id: str, role_id: str) -> bool:
        removed = self.store.remove_user_role(user_id, role_id)
        if removed:
            logger.info(f"Role {role_id} removed from user {user_id}")
        return removed

    def get_user_roles(self, user_id: str) -> List[Role]:
        return self.store.get_user_roles(user_id)

    def get_user_permissions(self, user_id: str) -> List[Permission]:
        """
        Effective permissions of a user.

        Union of the permissions of every assigned role, deduplicated by
        (resource, action). Grants are additive only.
        """
        effective: Dict[tuple, Permission] = {}
        for permission in self.store.get_user_permissions(user_id):
            effective.setdefault(permission.key, permission)
        return list(effective.values())

    # ========================================================================
    # Bootstrap
    # ========================================================================

    def ensure_system_roles(self) -> List[Role]:
        roles = []
        for name, display_name, description in SYSTEM_ROLE_DEFINITIONS:
            role = self.store.get_role_by_name(name)
            if role is None:
                role = self.create_role(name, display_name, description, is_system=True)
            roles.append(role)
        return roles

    def ensure_permission_catalogue(self, module_names: Iterable[str] = DEFAULT_MODULES) -> List[Permission]:
        permissions = []
        for module_name in module_names:
            for action in ACTIONS:
                permissions.append(self.create_permission(
                    module_name,
                    action,
                    display_name=f"{module_name.capitalize()} {action.capitalize()}",
                    description=f"{action.capitalize()} access to {module_name} module",
                ))
        for area in SYSTEM_AREAS:
            for action in ACTIONS:
                permissions.append(self.create_permission(
                    system_resource(area),
                    action,
                    display_name=f"System {area.capitalize()} {action.capitalize()}",
                    description=f"{action.capitalize()} access to {area}",
                ))
        return permissions

    def grant_all_to_administrator(self) -> int:
        """Attach every existing permission to the administrator role."""
        admin_role = self.store.get_role_by_name(SUPER_ADMIN_ROLE)
        if admin_role is None:
            raise RuntimeError("Administrator role is missing; run ensure_system_roles first")

        permissions = self.store.list_permissions()
        for permission in permissions:
            self.assign_permission_to_role(admin_role.id, permission.id)

        logger.info(f"Administrator role granted {len(permissions)} permissions")
        return len(permissions)
