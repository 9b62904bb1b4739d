"""
Secret management for signing keys.

Signing keys are obtained through a SecretProvider so they can come from the
environment, a protected file, or an external secret store, and are never
hard-coded or kept in user-editable records.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from loguru import logger


class SecretNotFound(Exception):
    """Raised when a required secret cannot be loaded."""


class SecretProvider(ABC):
    """Source of named secrets."""

    @abstractmethod
    def get_secret(self, name: str) -> Optional[str]:
        """Return the secret value, or None if the provider does not hold it."""

    def require(self, name: str) -> str:
        value = self.get_secret(name)
        if not value:
            raise SecretNotFound(f"Secret '{name}' is not configured")
        return value


class EnvSecretProvider(SecretProvider):
    """Reads secrets from environment variables."""

    def __init__(self, prefix: str = "NEOLOC_"):
        self.prefix = prefix

    def get_secret(self, name: str) -> Optional[str]:
        return os.environ.get(f"{self.prefix}{name.upper()}")


class FileSecretProvider(SecretProvider):
    """
    Reads each secret from its own file in a directory.

    Example:
        FileSecretProvider(Path("/run/secrets")).get_secret("jwt_secret")
        reads /run/secrets/jwt_secret
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def get_secret(self, name: str) -> Optional[str]:
        path = self.directory / name
        try:
            if path.exists():
                return path.read_text().strip()
            logger.debug(f"Secret file not found: {path}")
            return None
        except OSError as e:
            logger.error(f"Failed to load secret {name}: {e}")
            return None


class ChainedSecretProvider(SecretProvider):
    """Asks each provider in turn and returns the first value found."""

    def __init__(self, *providers: SecretProvider):
        self.providers = providers

    def get_secret(self, name: str) -> Optional[str]:
        for provider in self.providers:
            value = provider.get_secret(name)
            if value:
                return value
        return None
