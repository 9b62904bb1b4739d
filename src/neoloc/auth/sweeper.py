"""
Periodic cleanup of expired sessions and SSO tokens.

A failed cycle is logged and skipped; the next cycle retries. Missing a
cycle only delays reclaiming dead rows.
"""

import asyncio
from typing import Tuple

from loguru import logger

from .session_manager import SessionManager
from .sso import SsoBroker


SWEEP_INTERVAL_SECONDS = 60 * 60


class Sweeper:
    """Runs both sweeps on a fixed interval."""

    def __init__(
        self,
        sessions: SessionManager,
        sso: SsoBroker,
        interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self.sessions = sessions
        self.sso = sso
        self.interval = interval

    def run_once(self) -> Tuple[int, int]:
        """
        Run one sweep cycle.

        Returns:
            (sessions deleted, SSO tokens deleted)
        """
        return self.sessions.sweep_expired(), self.sso.sweep_expired()

    async def run_forever(self) -> None:
        logger.info(f"Sweeper started (interval {self.interval}s)")
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await asyncio.to_thread(self.run_once)
                except Exception as e:
                    logger.error(f"Sweep cycle failed, will retry next cycle: {e}")
        except asyncio.CancelledError:
            logger.info("Sweeper stopped")
            raise
