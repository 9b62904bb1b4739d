"""
Password hashing capability.

The rest of the hub only calls hash() and verify(); the digest format is
opaque to it.
"""

import bcrypt


class PasswordHasher:
    """Bcrypt-backed password hashing."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(
            password.encode('utf-8'),
            bcrypt.gensalt(rounds=self.rounds)
        ).decode('utf-8')

    def verify(self, password: str, password_hash: str) -> bool:
        """
        Verify password against a stored hash.

        Returns False for a malformed hash instead of raising.
        """
        try:
            return bcrypt.checkpw(
                password.encode('utf-8'),
                password_hash.encode('utf-8')
            )
        except ValueError:
            return False
