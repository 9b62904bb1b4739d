"""
Explicit request context.

Handlers build a RequestContext from the inbound call and, once the bearer
token has been validated, an AuthContext. Both are passed to service calls
as arguments; nothing is read from ambient request state.
"""

from dataclasses import dataclass
from typing import Optional

from .models import Session, User


@dataclass(frozen=True)
class RequestContext:
    """
    Client information recorded with sessions and SSO tokens.

    Attributes:
        ip_address: Client IP address (optional)
        user_agent: Client User-Agent header (optional)
    """
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class AuthContext:
    """
    Context of an authenticated call.

    Contains the validated session and the user as loaded at validation time.
    """
    user: User
    session: Session
    request: RequestContext = RequestContext()

    @property
    def token(self) -> str:
        return self.session.token

    @property
    def user_id(self) -> str:
        return self.user.id
