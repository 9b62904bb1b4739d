"""
Hub configuration.

Settings come from NEOLOC_* environment variables. The JWT signing key is
never part of the settings defaults: it is resolved through a
SecretProvider, and startup fails if none is configured.
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, SecretStr

from neoloc.auth.secret_store import (
    ChainedSecretProvider,
    EnvSecretProvider,
    FileSecretProvider,
    SecretProvider,
)


JWT_SECRET_NAME = "jwt_secret"


class HubSettings(BaseModel):
    """Runtime settings for the hub."""

    jwt_secret: SecretStr
    session_ttl: timedelta = timedelta(hours=24)
    sso_token_ttl: timedelta = timedelta(minutes=5)
    sweep_interval: float = Field(default=3600.0, gt=0)
    storage_timeout: float = Field(default=3.0, gt=0)
    database_path: Optional[Path] = None  # None: in-memory storage
    host: str = "0.0.0.0"
    port: int = Field(default=5000, ge=1, le=65535)
    log_level: str = "INFO"
    module_host: str = "localhost"
    module_first_port: int = 3001
    admin_email: Optional[str] = None
    admin_password: Optional[SecretStr] = None

    @classmethod
    def from_env(cls, secrets: Optional[SecretProvider] = None, **overrides) -> "HubSettings":
        """
        Build settings from the environment.

        Args:
            secrets: Where to find the signing key; defaults to the
                NEOLOC_JWT_SECRET variable, then the file named
                jwt_secret in NEOLOC_SECRETS_DIR
            **overrides: Values that take precedence over the environment

        Raises:
            SecretNotFound: If no signing key is configured
        """
        env = os.environ
        if secrets is None:
            providers = [EnvSecretProvider()]
            if env.get("NEOLOC_SECRETS_DIR"):
                providers.append(FileSecretProvider(Path(env["NEOLOC_SECRETS_DIR"])))
            secrets = ChainedSecretProvider(*providers)

        values = {"jwt_secret": secrets.require(JWT_SECRET_NAME)}

        if env.get("NEOLOC_SESSION_TTL_HOURS"):
            values["session_ttl"] = timedelta(hours=float(env["NEOLOC_SESSION_TTL_HOURS"]))
        if env.get("NEOLOC_SSO_TOKEN_TTL_SECONDS"):
            values["sso_token_ttl"] = timedelta(seconds=float(env["NEOLOC_SSO_TOKEN_TTL_SECONDS"]))
        for field_name in (
            "sweep_interval",
            "storage_timeout",
            "database_path",
            "host",
            "port",
            "log_level",
            "module_host",
            "module_first_port",
            "admin_email",
        ):
            value = env.get(f"NEOLOC_{field_name.upper()}")
            if value:
                values[field_name] = value

        admin_password = secrets.get_secret("admin_password")
        if admin_password:
            values["admin_password"] = admin_password

        values.update(overrides)
        return cls(**values)
