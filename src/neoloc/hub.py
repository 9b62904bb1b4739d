"""
Hub assembly.

Builds the storage backend and every service from HubSettings, and seeds
the system roles, the permission catalogue, the module directory and the
initial administrator.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from neoloc.auth.audit import AuditTrail
from neoloc.auth.authorization import AuthorizationService
from neoloc.auth.database import UserDatabase
from neoloc.auth.jwt_handler import JWTHandler
from neoloc.auth.memory_store import MemoryStore
from neoloc.auth.models import SUPER_ADMIN_ROLE, User
from neoloc.auth.modules import ModuleDirectory
from neoloc.auth.passwords import PasswordHasher
from neoloc.auth.permissions import Clock, RbacGraph, utc_now
from neoloc.auth.repository import HubStore
from neoloc.auth.session_manager import SessionManager
from neoloc.auth.sso import SsoBroker
from neoloc.auth.sweeper import Sweeper
from neoloc.auth.user_manager import UserManager
from neoloc.config import HubSettings


@dataclass
class Hub:
    """All services of one hub instance, sharing one store and clock."""
    settings: HubSettings
    store: HubStore
    rbac: RbacGraph
    users: UserManager
    modules: ModuleDirectory
    authorization: AuthorizationService
    sessions: SessionManager
    sso: SsoBroker
    sweeper: Sweeper


def create_store(settings: HubSettings) -> HubStore:
    if settings.database_path is None:
        return MemoryStore(timeout=settings.storage_timeout)
    return UserDatabase(settings.database_path, timeout=settings.storage_timeout)


def create_hub(
    settings: HubSettings,
    store: Optional[HubStore] = None,
    hasher: Optional[PasswordHasher] = None,
    clock: Clock = utc_now,
) -> Hub:
    """
    Wire the services together.

    Args:
        settings: Hub settings
        store: Storage backend; built from settings when omitted
        hasher: Password capability; bcrypt with default rounds when omitted
        clock: Returns the current UTC time
    """
    store = store or create_store(settings)
    hasher = hasher or PasswordHasher()
    audit = AuditTrail()
    jwt_handler = JWTHandler(settings.jwt_secret.get_secret_value())

    rbac = RbacGraph(store, clock=clock)
    modules = ModuleDirectory(store)
    users = UserManager(store, hasher=hasher, clock=clock)
    authorization = AuthorizationService(store, rbac, modules)
    sessions = SessionManager(
        store,
        jwt_handler,
        hasher=hasher,
        audit=audit,
        clock=clock,
        session_ttl=settings.session_ttl,
    )
    sso = SsoBroker(
        store,
        jwt_handler,
        sessions,
        authorization,
        modules,
        audit=audit,
        clock=clock,
        token_ttl=settings.sso_token_ttl,
    )
    sweeper = Sweeper(sessions, sso, interval=settings.sweep_interval)

    return Hub(
        settings=settings,
        store=store,
        rbac=rbac,
        users=users,
        modules=modules,
        authorization=authorization,
        sessions=sessions,
        sso=sso,
        sweeper=sweeper,
    )


def bootstrap(hub: Hub) -> Optional[User]:
    """
    Seed a fresh hub.

    Creates the four system roles, the module directory and the permission
    catalogue, grants the administrator role every permission, and creates
    the initial administrator if one is configured and missing. Safe to run
    again on an already seeded store.

    Returns:
        The configured administrator user, or None if none is configured
    """
    settings = hub.settings

    hub.rbac.ensure_system_roles()
    modules = hub.modules.seed_defaults(settings.module_host, settings.module_first_port)
    hub.rbac.ensure_permission_catalogue(module.name for module in modules)
    hub.rbac.grant_all_to_administrator()

    if not settings.admin_email or settings.admin_password is None:
        logger.warning("No initial administrator configured")
        return None

    admin = hub.users.get_user_by_email(settings.admin_email)
    if admin is None:
        admin = hub.users.create_user(
            email=settings.admin_email,
            password=settings.admin_password.get_secret_value(),
            full_name="System Administrator",
            role=SUPER_ADMIN_ROLE,
            module_access=[module.name for module in modules],
        )

    admin_role = hub.rbac.get_role_by_name(SUPER_ADMIN_ROLE)
    hub.rbac.assign_role_to_user(admin.id, admin_role.id, assigned_by=admin.id)

    logger.info(f"Hub bootstrapped: {len(modules)} modules, administrator {admin.email}")
    return admin
