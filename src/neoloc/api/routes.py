"""
HTTP handlers for the hub.

Handles login/logout, SSO token minting for the dashboard, the redemption
endpoint called by external modules, and the administration endpoints.
Every handler builds an explicit RequestContext/AuthContext and passes it
to the services.
"""

import asyncio
import functools
import json
from typing import Type, TypeVar

from aiohttp import web
from loguru import logger
from pydantic import BaseModel

from neoloc.auth.authorization import is_super_admin
from neoloc.auth.context import AuthContext, RequestContext
from neoloc.auth.exceptions import (
    AccessDenied,
    AuthorizationCheckFailed,
    HubError,
    ModuleNotFound,
    StorageUnavailable,
)
from neoloc.auth.models import SUPER_ADMIN_ROLE, SYSTEM_ROLES
from neoloc.hub import Hub

from .schemas import (
    AssignPermissionRequest,
    AssignRoleRequest,
    CreateRoleRequest,
    CreateUserRequest,
    GenerateTokenRequest,
    LoginRequest,
    UpdateUserRequest,
    ValidateTokenRequest,
)


HUB_KEY = web.AppKey("hub", Hub)

Body = TypeVar("Body", bound=BaseModel)


async def run_sync(func, *args, **kwargs):
    """Run a blocking service call (storage, bcrypt) off the event loop."""
    return await asyncio.to_thread(functools.partial(func, *args, **kwargs))


async def read_body(request: web.Request, model: Type[Body]) -> Body:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({'message': 'Request body must be JSON'}),
            content_type='application/json',
        )
    if not isinstance(data, dict):
        data = {}
    return model.model_validate(data)


def request_context(request: web.Request) -> RequestContext:
    return RequestContext(
        ip_address=request.remote,
        user_agent=request.headers.get('User-Agent'),
    )


def bearer_token(request: web.Request) -> str:
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return ''
    return auth_header[7:]  # Remove 'Bearer ' prefix


async def authenticate(request: web.Request) -> AuthContext:
    """Validate the bearer token; raises SessionInvalid on failure."""
    hub = request.app[HUB_KEY]
    return await run_sync(hub.sessions.validate, bearer_token(request), request_context(request))


async def authorize(request: web.Request, resource: str, action: str) -> AuthContext:
    """Authenticate, then require (resource, action)."""
    hub = request.app[HUB_KEY]
    context = await authenticate(request)
    await run_sync(hub.authorization.require_permission, context.user, resource, action)
    return context


def guard_administrator(context: AuthContext, *roles: str) -> None:
    """
    Only a super-admin may grant, revoke or touch the administrator role.

    Raises:
        AccessDenied: If any of the roles is administrator and the caller
            is not a super-admin
    """
    if SUPER_ADMIN_ROLE in roles and not is_super_admin(context.user):
        raise AccessDenied(context.user_id, 'system.users', 'admin')


# ============================================================================
# Authentication
# ============================================================================

async def handle_login(request):
    """
    Handle login request.

    POST /api/auth/login
    Body: {"email": "...", "password": "..."}
    Returns: {"user": {...}, "token": "...", "expiresAt": "..."}
    """
    hub = request.app[HUB_KEY]
    body = await read_body(request, LoginRequest)
    result = await run_sync(hub.sessions.login, body.email, body.password, request_context(request))
    return web.json_response(result.to_dict())


async def handle_logout(request):
    """
    Handle logout request.

    POST /api/auth/logout
    Headers: Authorization: Bearer <token>
    """
    hub = request.app[HUB_KEY]
    context = await authenticate(request)
    await run_sync(hub.sessions.logout, context.token)
    logger.info(f"User logged out: {context.user.email}")
    return web.json_response({'message': 'Logged out successfully'})


async def handle_me(request):
    context = await authenticate(request)
    return web.json_response(context.user.to_view().to_dict())


# ============================================================================
# Modules and SSO
# ============================================================================

async def handle_modules(request):
    hub = request.app[HUB_KEY]
    context = await authenticate(request)
    modules = await run_sync(hub.authorization.accessible_modules, context.user)
    return web.json_response([module.to_dict() for module in modules])


async def handle_get_module(request):
    """
    GET /api/modules/{module_id}
    Headers: Authorization: Bearer <token>
    Returns: the module, 404 if unknown or inactive, 403 without access
    """
    hub = request.app[HUB_KEY]
    context = await authenticate(request)
    module_id = request.match_info['module_id']

    module = await run_sync(hub.modules.get_module, module_id)
    if module is None or not module.is_active:
        raise ModuleNotFound(module_id)
    await run_sync(hub.authorization.require_module_access, context.user, module)
    return web.json_response(module.to_dict())


async def handle_generate_token(request):
    """
    Mint a one-time SSO token for a module.

    POST /api/sso/generate-token
    Headers: Authorization: Bearer <token>
    Body: {"moduleId": "..."}
    Returns: {"token": "...", "redirectUrl": "...", "expiresAt": "..."}
    """
    hub = request.app[HUB_KEY]
    body = await read_body(request, GenerateTokenRequest)
    grant = await run_sync(
        hub.sso.mint,
        bearer_token(request),
        body.module_id,
        request_context(request),
    )
    return web.json_response(grant.to_dict())


async def handle_validate_token(request):
    """
    Redeem an SSO token on behalf of an external module.

    POST /sso/validate-token
    Body: {"token": "...", "moduleId": "..."}
    Returns: {"valid": true, "userData": {...}} or 401 {"valid": false}

    Failures carry no detail: malformed, expired, used, mis-scoped tokens
    and deactivated users all look the same to the caller.
    """
    hub = request.app[HUB_KEY]
    try:
        data = await request.json()
        body = ValidateTokenRequest.model_validate(data if isinstance(data, dict) else {})
    except ValueError:
        return web.json_response({'valid': False}, status=401)

    try:
        user_data = await run_sync(
            hub.sso.redeem,
            body.token,
            body.module_id,
            request_context(request),
        )
    except (StorageUnavailable, AuthorizationCheckFailed) as e:
        logger.error(f"SSO redemption aborted, storage unavailable: {e}")
        return web.json_response({'valid': False}, status=503)
    except HubError as e:
        logger.warning(f"SSO redemption rejected for module {body.module_id}: {type(e).__name__}")
        return web.json_response({'valid': False}, status=401)

    return web.json_response({'valid': True, 'userData': user_data.to_dict()})


# ============================================================================
# Administration: users
# ============================================================================

async def handle_list_users(request):
    hub = request.app[HUB_KEY]
    await authorize(request, 'system.users', 'read')
    users = await run_sync(hub.users.list_users)
    return web.json_response([user.to_view().to_dict() for user in users])


async def handle_create_user(request):
    hub = request.app[HUB_KEY]
    context = await authorize(request, 'system.users', 'write')
    body = await read_body(request, CreateUserRequest)
    guard_administrator(context, body.role)
    user = await run_sync(
        hub.users.create_user,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        role=body.role,
        module_access=body.module_access,
    )
    return web.json_response(user.to_view().to_dict(), status=201)


async def handle_update_user(request):
    hub = request.app[HUB_KEY]
    context = await authorize(request, 'system.users', 'write')
    body = await read_body(request, UpdateUserRequest)
    changes = body.model_dump(exclude_none=True)
    user_id = request.match_info['user_id']

    target = await run_sync(hub.users.get_user, user_id)
    if target is None:
        return web.json_response({'message': 'User not found'}, status=404)
    guard_administrator(context, target.role, changes.get('role', target.role))

    user = await run_sync(hub.users.update_user, user_id, **changes)
    if user is None:
        return web.json_response({'message': 'User not found'}, status=404)
    return web.json_response(user.to_view().to_dict())


async def handle_delete_user(request):
    hub = request.app[HUB_KEY]
    context = await authorize(request, 'system.users', 'delete')
    user_id = request.match_info['user_id']

    if user_id == context.user_id:
        return web.json_response({'message': 'Cannot delete your own account'}, status=400)

    target = await run_sync(hub.users.get_user, user_id)
    if target is None:
        return web.json_response({'message': 'User not found'}, status=404)
    guard_administrator(context, target.role)

    if not await run_sync(hub.users.delete_user, user_id):
        return web.json_response({'message': 'User not found'}, status=404)
    return web.json_response({'message': 'User deleted successfully'})


async def handle_assign_role(request):
    hub = request.app[HUB_KEY]
    context = await authorize(request, 'system.users', 'write')
    body = await read_body(request, AssignRoleRequest)
    user_id = request.match_info['user_id']

    if await run_sync(hub.users.get_user, user_id) is None:
        return web.json_response({'message': 'User not found'}, status=404)
    role = await run_sync(hub.rbac.get_role, body.role_id)
    if role is None:
        return web.json_response({'message': 'Role not found'}, status=404)
    guard_administrator(context, role.name)

    edge = await run_sync(hub.rbac.assign_role_to_user, user_id, body.role_id, context.user_id)
    return web.json_response({
        'id': edge.id,
        'userId': edge.user_id,
        'roleId': edge.role_id,
        'assignedBy': edge.assigned_by,
        'createdAt': edge.created_at.isoformat(),
    }, status=201)


async def handle_remove_role(request):
    hub = request.app[HUB_KEY]
    context = await authorize(request, 'system.users', 'write')
    role = await run_sync(hub.rbac.get_role, request.match_info['role_id'])
    if role is not None:
        guard_administrator(context, role.name)
    removed = await run_sync(
        hub.rbac.remove_role_from_user,
        request.match_info['user_id'],
        request.match_info['role_id'],
    )
    return web.json_response({'removed': removed})


# ============================================================================
# Administration: roles and permissions
# ============================================================================

async def handle_list_roles(request):
    hub = request.app[HUB_KEY]
    await authorize(request, 'system.roles', 'read')
    roles = await run_sync(hub.rbac.list_roles_with_permissions)
    return web.json_response(roles)


async def handle_create_role(request):
    hub = request.app[HUB_KEY]
    await authorize(request, 'system.roles', 'write')
    body = await read_body(request, CreateRoleRequest)

    if await run_sync(hub.rbac.get_role_by_name, body.name) is not None:
        return web.json_response({'message': f"Role '{body.name}' already exists"}, status=409)

    role = await run_sync(hub.rbac.create_role, body.name, body.display_name, body.description)
    return web.json_response(role.to_dict(), status=201)


async def handle_delete_role(request):
    hub = request.app[HUB_KEY]
    await authorize(request, 'system.roles', 'delete')
    role_id = request.match_info['role_id']

    role = await run_sync(hub.rbac.get_role, role_id)
    if role is None:
        return web.json_response({'message': 'Role not found'}, status=404)

    deleted = await run_sync(hub.rbac.delete_role, role_id)
    if not deleted:
        return web.json_response({'message': 'System roles cannot be deleted', 'deleted': False}, status=400)
    return web.json_response({'deleted': True})


async def handle_assign_permission(request):
    hub = request.app[HUB_KEY]
    await authorize(request, 'system.roles', 'write')
    body = await read_body(request, AssignPermissionRequest)
    role_id = request.match_info['role_id']

    if await run_sync(hub.rbac.get_role, role_id) is None:
        return web.json_response({'message': 'Role not found'}, status=404)
    if await run_sync(hub.rbac.get_permission, body.permission_id) is None:
        return web.json_response({'message': 'Permission not found'}, status=404)

    edge = await run_sync(hub.rbac.assign_permission_to_role, role_id, body.permission_id)
    return web.json_response({
        'id': edge.id,
        'roleId': edge.role_id,
        'permissionId': edge.permission_id,
        'createdAt': edge.created_at.isoformat(),
    }, status=201)


async def handle_remove_permission(request):
    hub = request.app[HUB_KEY]
    await authorize(request, 'system.roles', 'write')
    removed = await run_sync(
        hub.rbac.remove_permission_from_role,
        request.match_info['role_id'],
        request.match_info['permission_id'],
    )
    return web.json_response({'removed': removed})


async def handle_list_permissions(request):
    hub = request.app[HUB_KEY]
    await authorize(request, 'system.roles', 'read')
    permissions = await run_sync(hub.rbac.list_permissions)
    return web.json_response([permission.to_dict() for permission in permissions])


# ============================================================================
# Dashboard and health
# ============================================================================

async def handle_dashboard_stats(request):
    hub = request.app[HUB_KEY]
    await authenticate(request)
    users = await run_sync(hub.users.list_users)
    modules = await run_sync(hub.modules.list_modules)

    return web.json_response({
        'totalUsers': len(users),
        'activeUsers': sum(1 for u in users if u.is_active),
        'totalModules': len(modules),
        'activeModules': sum(1 for m in modules if m.is_active),
        'usersByRole': {role: sum(1 for u in users if u.role == role) for role in SYSTEM_ROLES},
    })


async def health_check(request):
    return web.json_response({'status': 'healthy', 'service': 'neoloc-hub'})
