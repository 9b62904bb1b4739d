"""
JWT token generation and validation.

Handles creation and verification of the two bearer token formats the hub
issues: long-lived primary session tokens and short-lived SSO tokens.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

import jwt
from loguru import logger


ALGORITHM = "HS256"
SESSION_TOKEN_TYPE = "session"
SSO_TOKEN_TYPE = "sso"


@dataclass
class TokenPayload:
    """
    Decoded primary session token.

    Attributes:
        user_id: User UUID
        email: User email
        role: Primary role name at issue time
        exp: Expiration timestamp
        iat: Issued at timestamp
        jti: JWT ID, makes every token string unique
    """
    user_id: str
    email: str
    role: str
    exp: datetime
    iat: datetime
    jti: str


@dataclass
class SsoTokenPayload:
    """
    Decoded SSO token.

    The email/full_name/role claims are a snapshot taken at mint time.
    """
    user_id: str
    module_id: str
    email: str
    full_name: str
    role: str
    exp: datetime
    iat: datetime
    jti: str


class JWTHandler:
    """
    JWT token handler.

    Creates and validates HMAC-signed tokens. Rotating the secret key
    invalidates every outstanding token.
    """

    def __init__(self, secret_key: str, algorithm: str = ALGORITHM):
        """
        Initialize handler.

        Args:
            secret_key: Secret key for signing tokens
            algorithm: JWT algorithm (default: HS256)
        """
        if not secret_key:
            raise ValueError("JWT secret key must not be empty")

        self.secret_key = secret_key
        self.algorithm = algorithm

    def create_session_token(
        self,
        user_id: str,
        email: str,
        role: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        """
        Create a primary session token.

        Args:
            user_id: User UUID
            email: User email
            role: Primary role name
            issued_at: Issue time
            expires_at: Absolute expiry, matching the stored session row

        Returns:
            JWT token string
        """
        payload = {
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "sub": user_id,
            "userId": user_id,
            "email": email,
            "role": role,
            "jti": secrets.token_urlsafe(16),
            "type": SESSION_TOKEN_TYPE,
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Session token created for user {email}")

        return token

    def create_sso_token(
        self,
        user_id: str,
        module_id: str,
        email: str,
        full_name: str,
        role: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        """
        Create a module-scoped SSO token.

        Args:
            user_id: User UUID
            module_id: Module the token may be redeemed against
            email: User email
            full_name: User display name
            role: Primary role name
            issued_at: Issue time
            expires_at: Absolute expiry, matching the stored token row

        Returns:
            JWT token string
        """
        payload = {
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "sub": user_id,
            "userId": user_id,
            "moduleId": module_id,
            "email": email,
            "fullName": full_name,
            "role": role,
            "jti": secrets.token_urlsafe(16),
            "type": SSO_TOKEN_TYPE,
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"SSO token created for user {email} and module {module_id}")

        return token

    def _decode(self, token: str) -> Optional[Dict]:
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "jti", "type"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

    def verify_session_token(self, token: str) -> Optional[TokenPayload]:
        """
        Verify and decode a primary session token.

        Args:
            token: JWT token string

        Returns:
            TokenPayload if valid, None if invalid
        """
        payload = self._decode(token)
        if payload is None:
            return None

        if payload.get("type") != SESSION_TOKEN_TYPE:
            logger.warning("Token is not a session token")
            return None

        try:
            return TokenPayload(
                user_id=payload["userId"],
                email=payload["email"],
                role=payload["role"],
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                jti=payload["jti"],
            )
        except KeyError as e:
            logger.warning(f"Session token missing claim: {e}")
            return None

    def verify_sso_token(self, token: str) -> Optional[SsoTokenPayload]:
        """
        Verify and decode an SSO token.

        Args:
            token: JWT token string

        Returns:
            SsoTokenPayload if valid, None if invalid or not an SSO token
        """
        payload = self._decode(token)
        if payload is None:
            return None

        if payload.get("type") != SSO_TOKEN_TYPE:
            logger.warning("Token is not an SSO token")
            return None

        try:
            return SsoTokenPayload(
                user_id=payload["userId"],
                module_id=payload["moduleId"],
                email=payload["email"],
                full_name=payload["fullName"],
                role=payload["role"],
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                jti=payload["jti"],
            )
        except KeyError as e:
            logger.warning(f"SSO token missing claim: {e}")
            return None
