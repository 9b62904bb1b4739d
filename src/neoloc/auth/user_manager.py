"""
Principal store operations.

Creates, updates, deactivates and deletes user accounts. Deactivation and
deletion also revoke the user's primary sessions so they take effect
immediately.
"""

import uuid
from typing import Iterable, List, Optional

from loguru import logger

from .models import SYSTEM_ROLES, User
from .passwords import PasswordHasher
from .permissions import Clock, utc_now
from .repository import HubStore


class UserManager:
    """
    User account manager.

    Combines the storage backend and the password capability to provide:
    - Account creation with hashed passwords
    - Profile and password updates
    - Deactivation and deletion with session revocation
    """

    def __init__(
        self,
        store: HubStore,
        hasher: Optional[PasswordHasher] = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize manager.

        Args:
            store: Storage backend
            hasher: Password hashing capability
            clock: Returns the current UTC time
        """
        self.store = store
        self.hasher = hasher or PasswordHasher()
        self.clock = clock

    def create_user(
        self,
        email: str,
        password: str,
        full_name: str,
        role: str = "viewer",
        module_access: Optional[Iterable[str]] = None,
    ) -> User:
        """
        Create new user with hashed password.

        Args:
            email: Unique email address
            password: Plain text password (will be hashed)
            full_name: Display name
            role: Primary role (administrator/manager/operator/viewer)
            module_access: Module names granted directly

        Returns:
            Created User object

        Raises:
            ValueError: If role is not a primary role
            DuplicateUser: If the email already exists
        """
        if role not in SYSTEM_ROLES:
            raise ValueError(f"Unknown primary role: {role}")

        user = User(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=self.hasher.hash(password),
            full_name=full_name,
            role=role,
            is_active=True,
            module_access=list(module_access or []),
            created_at=self.clock(),
            last_login=None,
        )
        self.store.add_user(user)

        logger.info(f"User created: {email} ({user.id}) with role: {role}")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.store.get_user(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.store.get_user_by_email(email)

    def list_users(self) -> List[User]:
        return self.store.list_users()

    def update_user(self, user_id: str, **changes) -> Optional[User]:
        """
        Apply a partial profile update.

        Password fields are ignored here; use set_password. Setting
        is_active to False revokes the user's sessions.

        Returns:
            Updated user, or None if it does not exist
        """
        changes.pop("password", None)
        changes.pop("password_hash", None)

        role = changes.get("role")
        if role is not None and role not in SYSTEM_ROLES:
            raise ValueError(f"Unknown primary role: {role}")
        if "module_access" in changes:
            changes["module_access"] = list(changes["module_access"])

        user = self.store.update_user(user_id, **changes)
        if user is None:
            return None

        if changes.get("is_active") is False:
            revoked = self.store.delete_user_sessions(user_id)
            logger.info(f"User deactivated: {user.email} ({revoked} sessions revoked)")
        else:
            logger.info(f"User updated: {user.email}")

        return user

    def set_password(self, user_id: str, password: str) -> bool:
        user = self.store.update_user(user_id, password_hash=self.hasher.hash(password))
        if user is None:
            return False
        self.store.delete_user_sessions(user_id)
        logger.info(f"Password changed for user {user.email}")
        return True

    def deactivate_user(self, user_id: str) -> Optional[User]:
        return self.update_user(user_id, is_active=False)

    def activate_user(self, user_id: str) -> Optional[User]:
        return self.update_user(user_id, is_active=True)

    def record_login(self, user_id: str) -> Optional[User]:
        return self.store.update_user(user_id, last_login=self.clock())

    def delete_user(self, user_id: str) -> bool:
        """
        Delete user and all associated data.

        Sessions, SSO tokens and role assignments are removed with it.
        """
        deleted = self.store.delete_user(user_id)
        if deleted:
            logger.info(f"User deleted: {user_id}")
        return deleted
