"""
SSO federation broker.

Lets the hub vouch for a signed-in user to an independently hosted module
without sharing long-lived credentials:

    hub user --mint--> one-time token in the module redirect URL
    module   --redeem--> POST /sso/validate-token, exactly once

Tokens live 5 minutes, are scoped to one module and are single-use. A token
that was redeemed is dead forever, even before its expiry. Malformed,
expired, used and mis-scoped tokens are all reported as TokenInvalid.
"""

import uuid
from datetime import timedelta
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger

from .audit import AuditTrail
from .authorization import AuthorizationService
from .context import RequestContext
from .exceptions import AccessDenied, ModuleNotFound, TokenInvalid, UserInactive
from .jwt_handler import JWTHandler
from .models import Module, SsoGrant, SsoToken, SsoUserData
from .modules import ModuleDirectory
from .permissions import Clock, utc_now
from .repository import HubStore
from .session_manager import SessionManager


SSO_TOKEN_TTL = timedelta(minutes=5)


def build_redirect_url(module: Module, token: str, user_id: str) -> str:
    """Append token and userId to the module URL, keeping its own query."""
    scheme, netloc, path, query, fragment = urlsplit(module.url)
    params = parse_qsl(query, keep_blank_values=True)
    params.extend([("token", token), ("userId", user_id)])
    return urlunsplit((scheme, netloc, path, urlencode(params), fragment))


class SsoBroker:
    """Mints and redeems module-scoped single-use tokens."""

    def __init__(
        self,
        store: HubStore,
        jwt_handler: JWTHandler,
        sessions: SessionManager,
        authorization: AuthorizationService,
        modules: ModuleDirectory,
        audit: Optional[AuditTrail] = None,
        clock: Clock = utc_now,
        token_ttl: timedelta = SSO_TOKEN_TTL,
    ):
        self.store = store
        self.jwt = jwt_handler
        self.sessions = sessions
        self.authorization = authorization
        self.modules = modules
        self.audit = audit or AuditTrail()
        self.clock = clock
        self.token_ttl = token_ttl

    def mint(
        self,
        session_token: str,
        module_id: str,
        request: RequestContext = RequestContext(),
    ) -> SsoGrant:
        """
        Mint a one-time token for a module.

        Args:
            session_token: Caller's primary session token, re-validated here
            module_id: Target module
            request: Client ip/user-agent recorded on the token row

        Returns:
            SsoGrant with the token, the module redirect URL and the expiry

        Raises:
            SessionInvalid: If the primary session is not valid
            ModuleNotFound: If the module does not exist or is inactive
            AccessDenied: If the user may not open the module
        """
        context = self.sessions.validate(session_token, request)
        user = context.user

        module = self.modules.get_module(module_id)
        if module is None or not module.is_active:
            logger.warning(f"SSO mint for unknown module {module_id}")
            raise ModuleNotFound(module_id)

        if not self.authorization.can_access_module(user, module):
            self.audit.record("sso_mint_denied", user_id=user.id, module=module.name)
            raise AccessDenied(user.id, module.name, "read")

        now = self.clock()
        expires_at = now + self.token_ttl

        token = self.jwt.create_sso_token(
            user_id=user.id,
            module_id=module.id,
            email=user.email,
            full_name=user.full_name,
            role=user.role,
            issued_at=now,
            expires_at=expires_at,
        )

        self.store.add_sso_token(SsoToken(
            id=str(uuid.uuid4()),
            user_id=user.id,
            module_id=module.id,
            token=token,
            expires_at=expires_at,
            created_at=now,
            used_at=None,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
        ))

        logger.info(f"SSO token minted for user {user.email} and module {module.name}")

        return SsoGrant(
            token=token,
            redirect_url=build_redirect_url(module, token, user.id),
            expires_at=expires_at,
        )

    def redeem(
        self,
        token: str,
        module_id: str,
        request: RequestContext = RequestContext(),
    ) -> SsoUserData:
        """
        Redeem a token on behalf of an external module.

        The token row is claimed with one atomic compare-and-set before
        anything is returned, so concurrent redemptions of one token have
        exactly one winner.

        Args:
            token: SSO token presented by the module
            module_id: Module presenting it
            request: Redemption ip/user-agent recorded on the token row

        Returns:
            Minimal user projection for the module

        Raises:
            TokenInvalid: Malformed, wrong type, wrong module, unknown,
                expired or already used
            UserInactive: The user was removed or deactivated after minting
            StorageUnavailable: The claim could not be recorded
        """
        payload = self.jwt.verify_sso_token(token)
        if payload is None:
            raise TokenInvalid()

        if payload.module_id != module_id:
            self.audit.record("sso_redeem_rejected", reason="module_mismatch", module_id=module_id)
            raise TokenInvalid()

        claimed = self.store.claim_sso_token(
            token,
            module_id,
            self.clock(),
            ip_address=request.ip_address,
            user_agent=request.user_agent,
        )
        if claimed is None:
            self.audit.record("sso_redeem_rejected", reason="unknown_expired_or_used", module_id=module_id)
            raise TokenInvalid()

        if claimed.user_id != payload.user_id:
            logger.error(f"SSO token row owner mismatch for token {claimed.id}")
            raise TokenInvalid()

        user = self.store.get_user(claimed.user_id)
        if user is None or not user.is_active:
            self.audit.record("sso_redeem_rejected", reason="user_inactive", user_id=claimed.user_id)
            raise UserInactive(claimed.user_id)

        module_access = [m.name for m in self.authorization.accessible_modules(user)]

        logger.success(f"SSO token redeemed for user {user.email} by module {module_id}")

        return SsoUserData(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            role=user.role,
            module_access=module_access,
        )

    def sweep_expired(self) -> int:
        """
        Remove expired SSO tokens, redeemed or not.

        Returns:
            Number of tokens deleted
        """
        deleted = self.store.delete_expired_sso_tokens(self.clock())
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired SSO tokens")
        return deleted
