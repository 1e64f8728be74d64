"""
Instruction poller tests.

Tests cadence, single-flight behavior, dropping of wait and stale answers,
and recovery from failed polls.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import unittest

import requests

from services.instruction_poller import InstructionPoller
from services.instructions import Instruction, InstructionError, InstructionKind
from services.session_api import SessionApiError
from tests.fixtures.fakes import wait_until

PLAY = Instruction(InstructionKind.PLAY_STIMULUS, stimulus_url="/s/1.mp4", stimulus_name="Card")
WAIT = Instruction(InstructionKind.WAIT)


class ScriptedFetch:
    """Async fetch that answers from a script (then wait), optionally slowly."""

    def __init__(self, script=None, delay=0.0):
        self.script = list(script or [])
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, student_id):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self.script.pop(0) if self.script else WAIT
            if isinstance(item, Exception):
                raise item
            return item
        finally:
            self.in_flight -= 1


class TestInstructionPoller(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.active = True
        self.received = []

    def _poller(self, fetch, interval=0.02):
        return InstructionPoller(
            fetch=fetch,
            is_active=lambda: self.active,
            on_instruction=self.received.append,
            interval_sec=interval,
        )

    async def test_polls_periodically_while_active(self):
        fetch = ScriptedFetch()
        poller = self._poller(fetch)
        poller.start("S1")
        self.assertTrue(await wait_until(lambda: fetch.calls >= 4))
        self.assertTrue(poller.is_running)
        poller.stop()
        self.assertFalse(poller.is_running)

    async def test_wait_is_not_dispatched(self):
        fetch = ScriptedFetch([WAIT, WAIT, PLAY])
        poller = self._poller(fetch)
        poller.start("S1")
        self.assertTrue(await wait_until(lambda: bool(self.received)))
        poller.stop()
        self.assertEqual(self.received, [PLAY])

    async def test_single_flight_when_coordinator_is_slow(self):
        fetch = ScriptedFetch(delay=0.1)
        poller = self._poller(fetch, interval=0.01)
        poller.start("S1")
        await asyncio.sleep(0.35)
        poller.stop()
        self.assertEqual(fetch.max_in_flight, 1)
        self.assertLessEqual(fetch.calls, 4)

    async def test_stop_drops_in_flight_answer(self):
        fetch = ScriptedFetch([PLAY], delay=0.1)
        poller = self._poller(fetch)
        poller.start("S1")
        self.assertTrue(await wait_until(lambda: fetch.in_flight == 1))
        poller.stop()
        await asyncio.sleep(0.2)
        self.assertEqual(self.received, [])

    async def test_inactive_session_drops_answer_and_stops_ticking(self):
        fetch = ScriptedFetch([PLAY], delay=0.05)
        poller = self._poller(fetch)
        poller.start("S1")
        self.assertTrue(await wait_until(lambda: fetch.in_flight == 1))
        self.active = False
        await asyncio.sleep(0.15)
        self.assertEqual(self.received, [])
        self.assertEqual(fetch.calls, 1)
        self.assertFalse(poller.is_running)

    async def test_failed_polls_are_logged_and_polling_continues(self):
        fetch = ScriptedFetch([
            requests.ConnectionError("refused"),
            SessionApiError("GET /next_instruction/S1 returned status 500", 500),
            InstructionError("play_stimulus instruction without stimulus_url"),
            PLAY,
        ])
        poller = self._poller(fetch)
        with self.assertLogs("services.instruction_poller", level="WARNING") as logs:
            poller.start("S1")
            self.assertTrue(await wait_until(lambda: bool(self.received)))
        poller.stop()
        self.assertEqual(self.received, [PLAY])
        self.assertEqual(len([r for r in logs.records if "Poll error" in r.getMessage()]), 3)

    async def test_unexpected_error_is_logged_with_traceback(self):
        fetch = ScriptedFetch([KeyError("voice_url"), PLAY])
        poller = self._poller(fetch)
        with self.assertLogs("services.instruction_poller", level="ERROR") as logs:
            poller.start("S1")
            self.assertTrue(await wait_until(lambda: bool(self.received)))
        poller.stop()
        self.assertIsNotNone(logs.records[0].exc_info)

    async def test_restart_replaces_previous_loop(self):
        fetch = ScriptedFetch()
        poller = self._poller(fetch)
        poller.start("S1")
        first = poller._tick_task
        poller.start("S2")
        await asyncio.sleep(0)
        self.assertTrue(first.cancelled() or first.done())
        self.assertTrue(poller.is_running)
        poller.stop()


if __name__ == "__main__":
    unittest.main()
