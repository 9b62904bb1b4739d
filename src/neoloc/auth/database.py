"""
SQLite database for hub storage.

Thread-safe persistent backend with support for users, roles, permissions,
their edges, sessions, SSO tokens and modules.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

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


USER_COLUMNS = {
    "email", "password_hash", "full_name", "role", "is_active",
    "module_access", "created_at", "last_login",
}
ROLE_COLUMNS = {"name", "display_name", "description", "is_system", "created_at"}


def _ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        full_name=row["full_name"],
        role=row["role"],
        is_active=bool(row["is_active"]),
        module_access=json.loads(row["module_access"]),
        created_at=_dt(row["created_at"]),
        last_login=_dt(row["last_login"]),
    )


def _role(row: sqlite3.Row) -> Role:
    return Role(
        id=row["id"],
        name=row["name"],
        display_name=row["display_name"],
        description=row["description"],
        is_system=bool(row["is_system"]),
        created_at=_dt(row["created_at"]),
    )


def _permission(row: sqlite3.Row) -> Permission:
    return Permission(
        id=row["id"],
        name=row["name"],
        display_name=row["display_name"],
        description=row["description"],
        resource=row["resource"],
        action=row["action"],
        created_at=_dt(row["created_at"]),
    )


def _session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        user_id=row["user_id"],
        token=row["token"],
        expires_at=_dt(row["expires_at"]),
        created_at=_dt(row["created_at"]),
    )


def _sso_token(row: sqlite3.Row) -> SsoToken:
    return SsoToken(
        id=row["id"],
        user_id=row["user_id"],
        module_id=row["module_id"],
        token=row["token"],
        expires_at=_dt(row["expires_at"]),
        created_at=_dt(row["created_at"]),
        used_at=_dt(row["used_at"]),
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        used_ip_address=row["used_ip_address"],
        used_user_agent=row["used_user_agent"],
    )


def _module(row: sqlite3.Row) -> Module:
    return Module(
        id=row["id"],
        name=row["name"],
        display_name=row["display_name"],
        url=row["url"],
        description=row["description"],
        category=row["category"],
        is_active=bool(row["is_active"]),
    )


class UserDatabase(HubStore):
    """
    Thread-safe hub database.

    Manages all hub entities using SQLite. Writes are serialized by a
    threading.RLock; every statement group runs in one transaction.
    """

    def __init__(self, db_path: Path, timeout: float = 3.0):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait for the lock or a busy database
        """
        self.db_path = db_path
        self.timeout = timeout
        self._lock = threading.RLock()
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Cursor]:
        """Open a transaction; commit on success, roll back on error."""
        if not self._lock.acquire(timeout=self.timeout):
            raise StorageUnavailable("Database lock timed out")
        conn = None
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            cursor = conn.cursor()
            yield cursor
            conn.commit()
        except sqlite3.OperationalError as e:
            if conn is not None:
                conn.rollback()
            logger.error(f"Database unavailable: {e}")
            raise StorageUnavailable(str(e)) from e
        except Exception:
            if conn is not None:
                conn.rollback()
            raise
        finally:
            if conn is not None:
                conn.close()
            self._lock.release()

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._connect() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    full_name TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'viewer',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    module_access TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    last_login TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS roles (
                    id TEXT PRIMARY KEY,
                    name TEXT UNIQUE NOT NULL,
                    display_name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    is_system INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS permissions (
                    id TEXT PRIMARY KEY,
                    name TEXT UNIQUE NOT NULL,
                    display_name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    resource TEXT NOT NULL,
                    action TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (resource, action)
                )
            """)

            # Role permissions (many-to-many)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS role_permissions (
                    id TEXT PRIMARY KEY,
                    role_id TEXT NOT NULL,
                    permission_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (role_id, permission_id),
                    FOREIGN KEY (role_id) REFERENCES roles(id) ON DELETE CASCADE,
                    FOREIGN KEY (permission_id) REFERENCES permissions(id) ON DELETE CASCADE
                )
            """)

            # User roles (many-to-many)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_roles (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    role_id TEXT NOT NULL,
                    assigned_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, role_id),
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY (role_id) REFERENCES roles(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    token TEXT UNIQUE NOT NULL,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sso_tokens (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    module_id TEXT NOT NULL,
                    token TEXT UNIQUE NOT NULL,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    used_at TEXT,
                    ip_address TEXT,
                    user_agent TEXT,
                    used_ip_address TEXT,
                    used_user_agent TEXT,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS modules (
                    id TEXT PRIMARY KEY,
                    name TEXT UNIQUE NOT NULL,
                    display_name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    url TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT 'business',
                    is_active INTEGER NOT NULL DEFAULT 1
                )
            """)

            # Indexes for performance
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sso_tokens_user ON sso_tokens(user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_user_roles_user ON user_roles(user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_role_permissions_role ON role_permissions(role_id)")

        logger.info(f"Hub database initialized: {self.db_path}")

    # ========================================================================
    # User Operations
    # ========================================================================

    def add_user(self, user: User) -> User:
        try:
            with self._connect() as cursor:
                cursor.execute("""
                    INSERT INTO users (id, email, password_hash, full_name, role,
                                       is_active, module_access, created_at, last_login)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    user.id,
                    user.email,
                    user.password_hash,
                    user.full_name,
                    user.role,
                    1 if user.is_active else 0,
                    json.dumps(list(user.module_access)),
                    _ts(user.created_at),
                    _ts(user.last_login),
                ))
        except sqlite3.IntegrityError as e:
            raise DuplicateUser(user.email) from e
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cursor.fetchone()
        return _user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM users WHERE email = ?", (email,))
            row = cursor.fetchone()
        return _user(row) if row else None

    def update_user(self, user_id: str, **changes) -> Optional[User]:
        rejected = sorted(set(changes) - USER_COLUMNS)
        if rejected:
            raise ValueError(f"Cannot update User fields: {rejected}")

        values = {}
        for column, value in changes.items():
            if column == "module_access":
                value = json.dumps(list(value))
            elif column == "is_active":
                value = 1 if value else 0
            elif column in ("created_at", "last_login"):
                value = _ts(value)
            values[column] = value

        try:
            with self._connect() as cursor:
                if values:
                    assignments = ", ".join(f"{column} = ?" for column in values)
                    cursor.execute(
                        f"UPDATE users SET {assignments} WHERE id = ?",
                        (*values.values(), user_id),
                    )
                cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
                row = cursor.fetchone()
        except sqlite3.IntegrityError as e:
            raise DuplicateUser(changes.get("email", "")) from e

        return _user(row) if row else None

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as cursor:
            # Sessions, SSO tokens and role edges cascade
            cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))
            success = cursor.rowcount > 0

        if success:
            logger.info(f"User deleted: {user_id}")
        return success

    def list_users(self) -> List[User]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM users ORDER BY email")
            rows = cursor.fetchall()
        return [_user(row) for row in rows]

    # ========================================================================
    # Role Operations
    # ========================================================================

    def add_role(self, role: Role) -> Role:
        try:
            with self._connect() as cursor:
                cursor.execute("""
                    INSERT INTO roles (id, name, display_name, description, is_system, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    role.id,
                    role.name,
                    role.display_name,
                    role.description,
                    1 if role.is_system else 0,
                    _ts(role.created_at),
                ))
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Role '{role.name}' already exists") from e
        return role

    def get_role(self, role_id: str) -> Optional[Role]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM roles WHERE id = ?", (role_id,))
            row = cursor.fetchone()
        return _role(row) if row else None

    def get_role_by_name(self, name: str) -> Optional[Role]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM roles WHERE name = ?", (name,))
            row = cursor.fetchone()
        return _role(row) if row else None

    def list_roles(self) -> List[Role]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM roles ORDER BY created_at, name")
            rows = cursor.fetchall()
        return [_role(row) for row in rows]

    def update_role(self, role_id: str, **changes) -> Optional[Role]:
        rejected = sorted(set(changes) - ROLE_COLUMNS)
        if rejected:
            raise ValueError(f"Cannot update Role fields: {rejected}")

        values = {}
        for column, value in changes.items():
            if column == "is_system":
                value = 1 if value else 0
            elif column == "created_at":
                value = _ts(value)
            values[column] = value

        with self._connect() as cursor:
            if values:
                assignments = ", ".join(f"{column} = ?" for column in values)
                cursor.execute(
                    f"UPDATE roles SET {assignments} WHERE id = ?",
                    (*values.values(), role_id),
                )
            cursor.execute("SELECT * FROM roles WHERE id = ?", (role_id,))
            row = cursor.fetchone()
        return _role(row) if row else None

    def delete_role(self, role_id: str) -> bool:
        with self._connect() as cursor:
            # Edges cascade through the foreign keys
            cursor.execute("DELETE FROM roles WHERE id = ? AND is_system = 0", (role_id,))
            return cursor.rowcount > 0

    # ========================================================================
    # Permission Operations
    # ========================================================================

    def add_permission(self, permission: Permission) -> Permission:
        with self._connect() as cursor:
            cursor.execute("""
                INSERT OR IGNORE INTO permissions
                    (id, name, display_name, description, resource, action, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                permission.id,
                permission.name,
                permission.display_name,
                permission.description,
                permission.resource,
                permission.action,
                _ts(permission.created_at),
            ))
            cursor.execute(
                "SELECT * FROM permissions WHERE resource = ? AND action = ?",
                (permission.resource, permission.action),
            )
            row = cursor.fetchone()
        return _permission(row)

    def get_permission(self, permission_id: str) -> Optional[Permission]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM permissions WHERE id = ?", (permission_id,))
            row = cursor.fetchone()
        return _permission(row) if row else None

    def get_permission_by_name(self, name: str) -> Optional[Permission]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM permissions WHERE name = ?", (name,))
            row = cursor.fetchone()
        return _permission(row) if row else None

    def list_permissions(self) -> List[Permission]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM permissions ORDER BY resource, action")
            rows = cursor.fetchall()
        return [_permission(row) for row in rows]

    def delete_permission(self, permission_id: str) -> bool:
        with self._connect() as cursor:
            cursor.execute("DELETE FROM permissions WHERE id = ?", (permission_id,))
            return cursor.rowcount > 0

    # ========================================================================
    # Edge Operations
    # ========================================================================

    def add_role_permission(self, edge: RolePermission) -> RolePermission:
        try:
            with self._connect() as cursor:
                cursor.execute("""
                    INSERT OR IGNORE INTO role_permissions (id, role_id, permission_id, created_at)
                    VALUES (?, ?, ?, ?)
                """, (edge.id, edge.role_id, edge.permission_id, _ts(edge.created_at)))
                cursor.execute(
                    "SELECT * FROM role_permissions WHERE role_id = ? AND permission_id = ?",
                    (edge.role_id, edge.permission_id),
                )
                row = cursor.fetchone()
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Unknown role {edge.role_id} or permission {edge.permission_id}") from e
        return RolePermission(
            id=row["id"],
            role_id=row["role_id"],
            permission_id=row["permission_id"],
            created_at=_dt(row["created_at"]),
        )

    def remove_role_permission(self, role_id: str, permission_id: str) -> bool:
        with self._connect() as cursor:
            cursor.execute(
                "DELETE FROM role_permissions WHERE role_id = ? AND permission_id = ?",
                (role_id, permission_id),
            )
            return cursor.rowcount > 0

    def get_role_permissions(self, role_id: str) -> List[Permission]:
        with self._connect() as cursor:
            cursor.execute("""
                SELECT p.*
                FROM permissions p
                JOIN role_permissions rp ON p.id = rp.permission_id
                WHERE rp.role_id = ?
            """, (role_id,))
            rows = cursor.fetchall()
        return [_permission(row) for row in rows]

    def add_user_role(self, edge: UserRole) -> UserRole:
        try:
            with self._connect() as cursor:
                cursor.execute("""
                    INSERT OR IGNORE INTO user_roles (id, user_id, role_id, assigned_by, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (edge.id, edge.user_id, edge.role_id, edge.assigned_by, _ts(edge.created_at)))
                cursor.execute(
                    "SELECT * FROM user_roles WHERE user_id = ? AND role_id = ?",
                    (edge.user_id, edge.role_id),
                )
                row = cursor.fetchone()
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Unknown user {edge.user_id} or role {edge.role_id}") from e
        return UserRole(
            id=row["id"],
            user_id=row["user_id"],
            role_id=row["role_id"],
            assigned_by=row["assigned_by"],
            created_at=_dt(row["created_at"]),
        )

    def remove_user_role(self, user_id: str, role_id: str) -> bool:
        with self._connect() as cursor:
            cursor.execute(
                "DELETE FROM user_roles WHERE user_id = ? AND role_id = ?",
                (user_id, role_id),
            )
            return cursor.rowcount > 0

    def get_user_roles(self, user_id: str) -> List[Role]:
        with self._connect() as cursor:
            cursor.execute("""
                SELECT r.*
                FROM roles r
                JOIN user_roles ur ON r.id = ur.role_id
                WHERE ur.user_id = ?
            """, (user_id,))
            rows = cursor.fetchall()
        return [_role(row) for row in rows]

    def get_user_permissions(self, user_id: str) -> List[Permission]:
        with self._connect() as cursor:
            cursor.execute("""
                SELECT p.*
                FROM permissions p
                JOIN role_permissions rp ON p.id = rp.permission_id
                JOIN user_roles ur ON rp.role_id = ur.role_id
                WHERE ur.user_id = ?
            """, (user_id,))
            rows = cursor.fetchall()
        return [_permission(row) for row in rows]

    # ========================================================================
    # Session Operations
    # ========================================================================

    def add_session(self, session: Session) -> Session:
        with self._connect() as cursor:
            cursor.execute("""
                INSERT INTO sessions (id, user_id, token, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                session.id,
                session.user_id,
                session.token,
                _ts(session.expires_at),
                _ts(session.created_at),
            ))
        return session

    def get_session(self, token: str) -> Optional[Session]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM sessions WHERE token = ?", (token,))
            row = cursor.fetchone()
        return _session(row) if row else None

    def delete_session(self, token: str) -> bool:
        with self._connect() as cursor:
            cursor.execute("DELETE FROM sessions WHERE token = ?", (token,))
            return cursor.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self._connect() as cursor:
            cursor.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
            return cursor.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._connect() as cursor:
            cursor.execute("DELETE FROM sessions WHERE expires_at <= ?", (_ts(now),))
            return cursor.rowcount

    # ========================================================================
    # SSO Token Operations
    # ========================================================================

    def add_sso_token(self, sso_token: SsoToken) -> SsoToken:
        with self._connect() as cursor:
            cursor.execute("""
                INSERT INTO sso_tokens (id, user_id, module_id, token, expires_at, created_at,
                                        used_at, ip_address, user_agent,
                                        used_ip_address, used_user_agent)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                sso_token.id,
                sso_token.user_id,
                sso_token.module_id,
                sso_token.token,
                _ts(sso_token.expires_at),
                _ts(sso_token.created_at),
                _ts(sso_token.used_at),
                sso_token.ip_address,
                sso_token.user_agent,
                sso_token.used_ip_address,
                sso_token.used_user_agent,
            ))
        return sso_token

    def get_sso_token(self, token: str) -> Optional[SsoToken]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM sso_tokens WHERE token = ?", (token,))
            row = cursor.fetchone()
        return _sso_token(row) if row else None

    def claim_sso_token(
        self,
        token: str,
        module_id: str,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[SsoToken]:
        with self._connect() as cursor:
            # Compare-and-set: only an unused, unexpired row for this module matches
            cursor.execute("""
                UPDATE sso_tokens
                SET used_at = ?, used_ip_address = ?, used_user_agent = ?
                WHERE token = ? AND module_id = ? AND used_at IS NULL AND expires_at > ?
            """, (_ts(now), ip_address, user_agent, token, module_id, _ts(now)))
            if cursor.rowcount != 1:
                return None
            cursor.execute("SELECT * FROM sso_tokens WHERE token = ?", (token,))
            row = cursor.fetchone()
        return _sso_token(row)

    def delete_expired_sso_tokens(self, now: datetime) -> int:
        with self._connect() as cursor:
            cursor.execute("DELETE FROM sso_tokens WHERE expires_at <= ?", (_ts(now),))
            return cursor.rowcount

    # ========================================================================
    # Module Operations
    # ========================================================================

    def add_module(self, module: Module) -> Module:
        with self._connect() as cursor:
            cursor.execute("""
                INSERT OR REPLACE INTO modules (id, name, display_name, description, url, category, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                module.id,
                module.name,
                module.display_name,
                module.description,
                module.url,
                module.category,
                1 if module.is_active else 0,
            ))
        return module

    def get_module(self, module_id: str) -> Optional[Module]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM modules WHERE id = ?", (module_id,))
            row = cursor.fetchone()
        return _module(row) if row else None

    def get_module_by_name(self, name: str) -> Optional[Module]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM modules WHERE name = ?", (name,))
            row = cursor.fetchone()
        return _module(row) if row else None

    def list_modules(self) -> List[Module]:
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM modules ORDER BY name")
            rows = cursor.fetchall()
        return [_module(row) for row in rows]
