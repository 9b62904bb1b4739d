"""
Tests for the periodic expiry sweeper.
"""

import asyncio

import pytest

from neoloc.auth.exceptions import StorageUnavailable
from neoloc.auth.sweeper import Sweeper

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


class FlakySweep:
    """Sweep double that fails on its first call."""

    def __init__(self):
        self.calls = 0

    def sweep_expired(self):
        self.calls += 1
        if self.calls == 1:
            raise StorageUnavailable("Storage lock timed out")
        return 0


class TestSweeper:
    def test_run_once(self, hub, clock, module):
        """Test one sweep cycle."""
        session = hub.sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)
        hub.sso.mint(session.token, module.id)

        clock.advance(hours=25)

        assert hub.sweeper.run_once() == (1, 1)
        assert hub.sweeper.run_once() == (0, 0)

    async def test_failed_cycle_is_skipped(self):
        """Test a failing cycle does not stop the loop."""
        sessions = FlakySweep()
        sso = FlakySweep()
        sweeper = Sweeper(sessions, sso, interval=0.01)

        task = asyncio.create_task(sweeper.run_forever())
        for _ in range(100):
            await asyncio.sleep(0.01)
            if sessions.calls >= 3:
                break

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert sessions.calls >= 3
        assert sso.calls >= 2
