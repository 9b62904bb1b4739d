"""
aiohttp application for the hub.
"""

import asyncio
import contextlib

from aiohttp import web
from loguru import logger

from neoloc.hub import Hub

from . import routes
from .middleware import cors_middleware, error_middleware
from .routes import HUB_KEY


async def sweeper_context(app: web.Application):
    """Run the expiry sweeper for the lifetime of the application."""
    hub = app[HUB_KEY]
    task = asyncio.create_task(hub.sweeper.run_forever())
    yield
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def create_app(hub: Hub, run_sweeper: bool = True) -> web.Application:
    """
    Build the HTTP application.

    Args:
        hub: Wired hub services
        run_sweeper: Start the periodic expiry sweeper with the application

    Returns:
        aiohttp application, ready for web.run_app or a test server
    """
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app[HUB_KEY] = hub

    # Authentication
    app.router.add_post('/api/auth/login', routes.handle_login)
    app.router.add_post('/api/auth/logout', routes.handle_logout)
    app.router.add_get('/api/auth/me', routes.handle_me)

    # Modules and SSO
    app.router.add_get('/api/modules', routes.handle_modules)
    app.router.add_get('/api/modules/{module_id}', routes.handle_get_module)
    app.router.add_post('/api/sso/generate-token', routes.handle_generate_token)
    app.router.add_post('/sso/validate-token', routes.handle_validate_token)

    # Administration
    app.router.add_get('/api/admin/users', routes.handle_list_users)
    app.router.add_post('/api/admin/users', routes.handle_create_user)
    app.router.add_put('/api/admin/users/{user_id}', routes.handle_update_user)
    app.router.add_delete('/api/admin/users/{user_id}', routes.handle_delete_user)
    app.router.add_post('/api/admin/users/{user_id}/roles', routes.handle_assign_role)
    app.router.add_delete('/api/admin/users/{user_id}/roles/{role_id}', routes.handle_remove_role)
    app.router.add_get('/api/admin/roles', routes.handle_list_roles)
    app.router.add_post('/api/admin/roles', routes.handle_create_role)
    app.router.add_delete('/api/admin/roles/{role_id}', routes.handle_delete_role)
    app.router.add_post('/api/admin/roles/{role_id}/permissions', routes.handle_assign_permission)
    app.router.add_delete(
        '/api/admin/roles/{role_id}/permissions/{permission_id}',
        routes.handle_remove_permission,
    )
    app.router.add_get('/api/admin/permissions', routes.handle_list_permissions)

    app.router.add_get('/api/dashboard/stats', routes.handle_dashboard_stats)
    app.router.add_get('/health', routes.health_check)

    if run_sweeper:
        app.cleanup_ctx.append(sweeper_context)

    logger.debug(f"Application created with {len(app.router.routes())} routes")
    return app
