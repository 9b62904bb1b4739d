"""
aiohttp middlewares: error mapping and CORS.
"""

from aiohttp import web
from loguru import logger
from pydantic import ValidationError

from neoloc.auth.exceptions import (
    AccessDenied,
    AuthorizationCheckFailed,
    DuplicateUser,
    HubError,
    InvalidCredentials,
    ModuleNotFound,
    SessionInvalid,
    StorageUnavailable,
    TokenInvalid,
    UserInactive,
)


# AuthorizationCheckFailed is a denial, never an allow
ERROR_STATUS = {
    InvalidCredentials: 401,
    SessionInvalid: 401,
    TokenInvalid: 401,
    UserInactive: 401,
    AccessDenied: 403,
    AuthorizationCheckFailed: 403,
    ModuleNotFound: 404,
    DuplicateUser: 409,
    StorageUnavailable: 503,
}


def status_for(error: HubError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return 500


@web.middleware
async def error_middleware(request, handler):
    """Translate hub errors and invalid bodies into JSON responses."""
    try:
        return await handler(request)
    except ValidationError as e:
        return web.json_response({
            'message': 'Invalid input',
            'errors': e.errors(include_url=False, include_context=False, include_input=False),
        }, status=400)
    except HubError as e:
        status = status_for(e)
        if status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e}")
        return web.json_response({'message': str(e)}, status=status)


CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, PUT, DELETE, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Authorization',
}


# CORS middleware
@web.middleware
async def cors_middleware(request, handler):
    """Add CORS headers to all responses, including aiohttp HTTP errors."""
    if request.method == 'OPTIONS':
        # Preflight request
        response = web.Response()
    else:
        try:
            response = await handler(request)
        except web.HTTPException as e:
            e.headers.update(CORS_HEADERS)
            raise

    response.headers.update(CORS_HEADERS)
    return response
