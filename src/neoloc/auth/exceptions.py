"""
Authentication and authorization errors.

Every failure the core reports is a subclass of HubError. Authorization
failures are fail-closed: callers translate any of them into a denial.
"""

from typing import Optional


class HubError(Exception):
    """Base class for all hub authentication/authorization errors."""


class InvalidCredentials(HubError):
    """
    Login failed.

    Raised for an unknown email, an inactive account and a wrong password
    alike, so the caller cannot tell which one occurred.
    """

    def __init__(self):
        super().__init__("Invalid credentials")


class SessionInvalid(HubError):
    """Primary session token is malformed, expired or revoked."""

    def __init__(self, reason: str = "Invalid or expired session"):
        super().__init__(reason)


class AccessDenied(HubError):
    """
    Authenticated but not authorized.

    Attributes:
        user_id: The user who was denied
        resource: Resource that was requested
        action: Action that was requested
    """

    def __init__(self, user_id: Optional[str], resource: str, action: str):
        self.user_id = user_id
        self.resource = resource
        self.action = action
        super().__init__(f"User {user_id} denied {action} on {resource}")


class ModuleNotFound(HubError):
    """Requested module does not exist or is not active."""

    def __init__(self, module_id: str):
        self.module_id = module_id
        super().__init__(f"Module {module_id} not found")


class TokenInvalid(HubError):
    """SSO token is malformed, expired, already used or scoped to another module."""

    def __init__(self):
        super().__init__("Invalid token")


class UserInactive(HubError):
    """User was removed or deactivated after the SSO token was minted."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} is not active")


class StorageUnavailable(HubError):
    """Storage backend timed out or failed; the operation was not applied."""


class AuthorizationCheckFailed(HubError):
    """Permission resolution could not complete. Treat as a denial."""


class DuplicateUser(HubError):
    """A user with this email already exists."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User with email {email} already exists")
