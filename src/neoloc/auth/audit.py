"""
Security audit trail.

Audit records carry the internal reason for a rejection (for example
whether a failed login hit an unknown, inactive or mis-typed account).
They go to the log only and never into a response.
"""

from typing import Any

from loguru import logger


class AuditTrail:
    """Writes audit events as bound loguru records."""

    def __init__(self, channel: str = "audit"):
        self._logger = logger.bind(audit=True, channel=channel)

    def record(self, event: str, **fields: Any) -> None:
        """
        Record one audit event.

        Args:
            event: Event name (e.g., "login_failed")
            **fields: Event attributes; values are logged as-is
        """
        details = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
        self._logger.bind(event=event, **fields).info(f"[audit] {event} {details}".rstrip())
