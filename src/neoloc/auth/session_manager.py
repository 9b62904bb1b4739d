"""
Primary session manager.

Issues, validates and revokes the long-lived bearer sessions created at
login.

A session token is only accepted when its signature and expiry claim verify
AND its session row still exists. Revocation (logout, deactivation) works by
deleting the row, even though the token itself would keep verifying until
its natural expiry.
"""

import uuid
from datetime import timedelta
from typing import Optional

from loguru import logger

from .audit import AuditTrail
from .context import AuthContext, RequestContext
from .exceptions import InvalidCredentials, SessionInvalid
from .jwt_handler import JWTHandler
from .models import LoginResult, Session, UserView
from .passwords import PasswordHasher
from .permissions import Clock, utc_now
from .repository import HubStore


SESSION_TTL = timedelta(hours=24)


class SessionManager:
    """
    Primary authentication sessions.

    Lifecycle per session: issued at login, valid until it expires or is
    revoked. Expired and revoked sessions are rejected identically.
    """

    def __init__(
        self,
        store: HubStore,
        jwt_handler: JWTHandler,
        hasher: Optional[PasswordHasher] = None,
        audit: Optional[AuditTrail] = None,
        clock: Clock = utc_now,
        session_ttl: timedelta = SESSION_TTL,
    ):
        self.store = store
        self.jwt = jwt_handler
        self.hasher = hasher or PasswordHasher()
        self.audit = audit or AuditTrail()
        self.clock = clock
        self.session_ttl = session_ttl
        self._dummy_hash: Optional[str] = None

    def _burn_verify(self, password: str) -> None:
        # Unknown and inactive accounts still pay for one hash check
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(uuid.uuid4().hex)
        self.hasher.verify(password, self._dummy_hash)

    def login(self, email: str, password: str, request: RequestContext = RequestContext()) -> LoginResult:
        """
        Authenticate a user and open a session.

        Args:
            email: Login email
            password: Plain text password
            request: Client information for the audit trail

        Returns:
            LoginResult with the user (without password hash), token and expiry

        Raises:
            InvalidCredentials: For an unknown email, an inactive account or
                a wrong password, without distinguishing them
        """
        user = self.store.get_user_by_email(email)

        if user is None:
            self._burn_verify(password)
            self.audit.record("login_failed", reason="unknown_user", email=email, ip=request.ip_address)
            logger.warning("Login failed: invalid credentials")
            raise InvalidCredentials()

        if not user.is_active:
            self._burn_verify(password)
            self.audit.record("login_failed", reason="inactive_user", user_id=user.id, ip=request.ip_address)
            logger.warning("Login failed: invalid credentials")
            raise InvalidCredentials()

        if not self.hasher.verify(password, user.password_hash):
            self.audit.record("login_failed", reason="bad_password", user_id=user.id, ip=request.ip_address)
            logger.warning("Login failed: invalid credentials")
            raise InvalidCredentials()

        now = self.clock()
        expires_at = now + self.session_ttl

        user = self.store.update_user(user.id, last_login=now) or user

        token = self.jwt.create_session_token(
            user_id=user.id,
            email=user.email,
            role=user.role,
            issued_at=now,
            expires_at=expires_at,
        )

        self.store.add_session(Session(
            id=str(uuid.uuid4()),
            user_id=user.id,
            token=token,
            expires_at=expires_at,
            created_at=now,
        ))

        self.audit.record("login_succeeded", user_id=user.id, ip=request.ip_address)
        logger.info(f"User logged in: {user.email}")

        return LoginResult(user=user.to_view(), token=token, expires_at=expires_at)

    def validate(self, token: str, request: RequestContext = RequestContext()) -> AuthContext:
        """
        Validate a session token.

        Args:
            token: Bearer token
            request: Client information carried into the returned context

        Returns:
            AuthContext for the session owner

        Raises:
            SessionInvalid: If the token is malformed, expired or revoked, or
                its user is missing or inactive
            StorageUnavailable: If the session table cannot be read
        """
        if not token:
            raise SessionInvalid("Access token required")

        payload = self.jwt.verify_session_token(token)
        if payload is None:
            raise SessionInvalid()

        session = self.store.get_session(token)
        if session is None:
            logger.warning(f"Session not found for user {payload.user_id}")
            raise SessionInvalid()

        if session.expires_at <= self.clock():
            self.store.delete_session(token)
            logger.info(f"Expired session removed for user {session.user_id}")
            raise SessionInvalid()

        if session.user_id != payload.user_id:
            logger.warning(f"Session owner mismatch for token of user {payload.user_id}")
            raise SessionInvalid()

        user = self.store.get_user(session.user_id)
        if user is None or not user.is_active:
            logger.warning(f"User {session.user_id} not found or inactive")
            raise SessionInvalid("User not found or inactive")

        return AuthContext(user=user, session=session, request=request)

    def me(self, token: str) -> UserView:
        return self.validate(token).user.to_view()

    def logout(self, token: str) -> None:
        """Revoke a session. Logging out twice is not an error."""
        if self.store.delete_session(token):
            logger.info("Session revoked")

    def revoke_user_sessions(self, user_id: str) -> int:
        revoked = self.store.delete_user_sessions(user_id)
        if revoked:
            logger.info(f"Revoked {revoked} sessions for user {user_id}")
        return revoked

    def sweep_expired(self) -> int:
        """
        Remove expired sessions.

        Returns:
            Number of sessions deleted
        """
        deleted = self.store.delete_expired_sessions(self.clock())
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired sessions")
        return deleted
