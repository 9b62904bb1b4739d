"""
In-memory hub storage.

Thread-safe maps for users, roles, permissions, edges, sessions, SSO tokens
and modules. All operations are serialized by one threading.RLock whose
acquisition is bounded by a timeout.
"""

import threading
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from loguru import logger

from .exceptions import DuplicateUser, StorageUnavailable
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
from .repository import HubStore


def _copy_user(user: User) -> User:
    return replace(user, module_access=list(user.module_access))


def _check_changes(entity_type, changes: dict) -> None:
    known = {f.name for f in fields(entity_type)} - {"id"}
    rejected = sorted(set(changes) - known)
    if rejected:
        raise ValueError(f"Cannot update {entity_type.__name__} fields: {rejected}")


class MemoryStore(HubStore):
    """
    Process-local storage backend.

    Returned entities are copies; mutate through the update methods.
    """

    def __init__(self, timeout: float = 3.0):
        """
        Initialize store.

        Args:
            timeout: Seconds to wait for the store lock before failing
        """
        self.timeout = timeout
        self._lock = threading.RLock()

        self._users: Dict[str, User] = {}
        self._roles: Dict[str, Role] = {}
        self._permissions: Dict[str, Permission] = {}
        self._role_permissions: Dict[str, RolePermission] = {}
        self._user_roles: Dict[str, UserRole] = {}
        self._sessions: Dict[str, Session] = {}  # keyed by token
        self._sso_tokens: Dict[str, SsoToken] = {}  # keyed by token
        self._modules: Dict[str, Module] = {}

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout):
            logger.error(f"Memory store lock not acquired within {self.timeout}s")
            raise StorageUnavailable("Storage lock timed out")
        try:
            yield
        finally:
            self._lock.release()

    # ========================================================================
    # User Operations
    # ========================================================================

    def add_user(self, user: User) -> User:
        with self._locked():
            if any(u.email == user.email for u in self._users.values()):
                raise DuplicateUser(user.email)
            self._users[user.id] = _copy_user(user)
            return _copy_user(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._locked():
            user = self._users.get(user_id)
            return _copy_user(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._locked():
            for user in self._users.values():
                if user.email == email:
                    return _copy_user(user)
            return None

    def update_user(self, user_id: str, **changes) -> Optional[User]:
        _check_changes(User, changes)
        with self._locked():
            user = self._users.get(user_id)
            if not user:
                return None
            email = changes.get("email")
            if email and any(u.email == email and u.id != user_id for u in self._users.values()):
                raise DuplicateUser(email)
            updated = replace(user, **changes)
            self._users[user_id] = _copy_user(updated)
            return _copy_user(updated)

    def delete_user(self, user_id: str) -> bool:
        with self._locked():
            if user_id not in self._users:
                return False
            for key in [k for k, ur in self._user_roles.items() if ur.user_id == user_id]:
                del self._user_roles[key]
            for token in [t for t, s in self._sessions.items() if s.user_id == user_id]:
                del self._sessions[token]
            for token in [t for t, s in self._sso_tokens.items() if s.user_id == user_id]:
                del self._sso_tokens[token]
            del self._users[user_id]
            return True

    def list_users(self) -> List[User]:
        with self._locked():
            return sorted((_copy_user(u) for u in self._users.values()), key=lambda u: u.email)

    # ========================================================================
    # Role Operations
    # ========================================================================

    def add_role(self, role: Role) -> Role:
        with self._locked():
            if any(r.name == role.name for r in self._roles.values()):
                raise ValueError(f"Role '{role.name}' already exists")
            self._roles[role.id] = replace(role)
            return replace(role)

    def get_role(self, role_id: str) -> Optional[Role]:
        with self._locked():
            role = self._roles.get(role_id)
            return replace(role) if role else None

    def get_role_by_name(self, name: str) -> Optional[Role]:
        with self._locked():
            for role in self._roles.values():
                if role.name == name:
                    return replace(role)
            return None

    def list_roles(self) -> List[Role]:
        with self._locked():
            return [replace(r) for r in self._roles.values()]

    def update_role(self, role_id: str, **changes) -> Optional[Role]:
        _check_changes(Role, changes)
        with self._locked():
            role = self._roles.get(role_id)
            if not role:
                return None
            updated = replace(role, **changes)
            self._roles[role_id] = updated
            return replace(updated)

    def delete_role(self, role_id: str) -> bool:
        with self._locked():
            role = self._roles.get(role_id)
            if not role or role.is_system:
                return False
            for key in [k for k, rp in self._role_permissions.items() if rp.role_id == role_id]:
                del self._role_permissions[key]
            for key in [k for k, ur in self._user_roles.items() if ur.role_id == role_id]:
                del self._user_roles[key]
            del self._roles[role_id]
            return True

    # ========================================================================
    # Permission Operations
    # ========================================================================

    def add_permission(self, permission: Permission) -> Permission:
        with self._locked():
            for existing in self._permissions.values():
                if existing.key == permission.key:
                    return replace(existing)
            self._permissions[permission.id] = replace(permission)
            return replace(permission)

    def get_permission(self, permission_id: str) -> Optional[Permission]:
        with self._locked():
            permission = self._permissions.get(permission_id)
            return replace(permission) if permission else None

    def get_permission_by_name(self, name: str) -> Optional[Permission]:
        with self._locked():
            for permission in self._permissions.values():
                if permission.name == name:
                    return replace(permission)
            return None

    def list_permissions(self) -> List[Permission]:
        with self._locked():
            return [replace(p) for p in self._permissions.values()]

    def delete_permission(self, permission_id: str) -> bool:
        with self._locked():
            if permission_id not in self._permissions:
                return False
            for key in [k for k, rp in self._role_permissions.items() if rp.permission_id == permission_id]:
                del self._role_permissions[key]
            del self._permissions[permission_id]
            return True

    # ========================================================================
    # Edge Operations
    # ========================================================================

    def add_role_permission(self, edge: RolePermission) -> RolePermission:
        with self._locked():
            if edge.role_id not in self._roles or edge.permission_id not in self._permissions:
                raise ValueError(f"Unknown role {edge.role_id} or permission {edge.permission_id}")
            for existing in self._role_permissions.values():
                if existing.role_id == edge.role_id and existing.permission_id == edge.permission_id:
                    return replace(existing)
            self._role_permissions[edge.id] = replace(edge)
            return replace(edge)

    def remove_role_permission(self, role_id: str, permission_id: str) -> bool:
        with self._locked():
            for key, rp in self._role_permissions.items():
                if rp.role_id == role_id and rp.permission_id == permission_id:
                    del self._role_permissions[key]
                    return True
            return False

    def get_role_permissions(self, role_id: str) -> List[Permission]:
        with self._locked():
            return self._role_permissions_unlocked(role_id)

    def _role_permissions_unlocked(self, role_id: str) -> List[Permission]:
        return [
            replace(self._permissions[rp.permission_id])
            for rp in self._role_permissions.values()
            if rp.role_id == role_id and rp.permission_id in self._permissions
        ]

    def add_user_role(self, edge: UserRole) -> UserRole:
        with self._locked():
            if edge.user_id not in self._users or edge.role_id not in self._roles:
                raise ValueError(f"Unknown user {edge.user_id} or role {edge.role_id}")
            for existing in self._user_roles.values():
                if existing.user_id == edge.user_id and existing.role_id == edge.role_id:
                    return replace(existing)
            self._user_roles[edge.id] = replace(edge)
            return replace(edge)

    def remove_user_role(self, user_id: str, role_id: str) -> bool:
        with self._locked():
            for key, ur in self._user_roles.items():
                if ur.user_id == user_id and ur.role_id == role_id:
                    del self._user_roles[key]
                    return True
            return False

    def get_user_roles(self, user_id: str) -> List[Role]:
        with self._locked():
            return self._user_roles_unlocked(user_id)

    def _user_roles_unlocked(self, user_id: str) -> List[Role]:
        return [
            replace(self._roles[ur.role_id])
            for ur in self._user_roles.values()
            if ur.user_id == user_id and ur.role_id in self._roles
        ]

    def get_user_permissions(self, user_id: str) -> List[Permission]:
        with self._locked():
            permissions: List[Permission] = []
            for role in self._user_roles_unlocked(user_id):
                permissions.extend(self._role_permissions_unlocked(role.id))
            return permissions

    # ========================================================================
    # Session Operations
    # ========================================================================

    def add_session(self, session: Session) -> Session:
        with self._locked():
            self._sessions[session.token] = replace(session)
            return replace(session)

    def get_session(self, token: str) -> Optional[Session]:
        with self._locked():
            session = self._sessions.get(token)
            return replace(session) if session else None

    def delete_session(self, token: str) -> bool:
        with self._locked():
            return self._sessions.pop(token, None) is not None

    def delete_user_sessions(self, user_id: str) -> int:
        with self._locked():
            tokens = [t for t, s in self._sessions.items() if s.user_id == user_id]
            for token in tokens:
                del self._sessions[token]
            return len(tokens)

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._locked():
            tokens = [t for t, s in self._sessions.items() if s.expires_at <= now]
            for token in tokens:
                del self._sessions[token]
            return len(tokens)

    # ========================================================================
    # SSO Token Operations
    # ========================================================================

    def add_sso_token(self, sso_token: SsoToken) -> SsoToken:
        with self._locked():
            self._sso_tokens[sso_token.token] = replace(sso_token)
            return replace(sso_token)

    def get_sso_token(self, token: str) -> Optional[SsoToken]:
        with self._locked():
            sso_token = self._sso_tokens.get(token)
            return replace(sso_token) if sso_token else None

    def claim_sso_token(
        self,
        token: str,
        module_id: str,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[SsoToken]:
        with self._locked():
            sso_token = self._sso_tokens.get(token)
            if (
                sso_token is None
                or sso_token.module_id != module_id
                or sso_token.used_at is not None
                or sso_token.expires_at <= now
            ):
                return None
            claimed = replace(
                sso_token,
                used_at=now,
                used_ip_address=ip_address,
                used_user_agent=user_agent,
            )
            self._sso_tokens[token] = claimed
            return replace(claimed)

    def delete_expired_sso_tokens(self, now: datetime) -> int:
        with self._locked():
            tokens = [t for t, s in self._sso_tokens.items() if s.expires_at <= now]
            for token in tokens:
                del self._sso_tokens[token]
            return len(tokens)

    # ========================================================================
    # Module Operations
    # ========================================================================

    def add_module(self, module: Module) -> Module:
        with self._locked():
            self._modules[module.id] = replace(module)
            return replace(module)

    def get_module(self, module_id: str) -> Optional[Module]:
        with self._locked():
            module = self._modules.get(module_id)
            return replace(module) if module else None

    def get_module_by_name(self, name: str) -> Optional[Module]:
        with self._locked():
            for module in self._modules.values():
                if module.name == name:
                    return replace(module)
            return None

    def list_modules(self) -> List[Module]:
        with self._locked():
            return sorted((replace(m) for m in self._modules.values()), key=lambda m: m.name)
