"""
Instruction poller.

While a session is active, asks the coordinator "what should the presentation
layer do now" on a fixed cadence and hands each answer to the session
controller. At most one poll is in flight at a time; a stale answer (from
before a stop) is dropped.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import requests

import config
from services.instructions import Instruction, InstructionError, InstructionKind
from services.session_api import SessionApiError

logger = logging.getLogger(__name__)

# Failures that are expected on a flaky network; anything else is a bug and is logged with a traceback
_POLL_ERRORS = (requests.RequestException, SessionApiError, InstructionError)


class InstructionPoller:
    """
    Fixed-period, single-flight poll loop tied to session liveness.

    Usage:
        poller = InstructionPoller(fetch, is_active, on_instruction)
        poller.start("S1")
        ...
        poller.stop()
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[Instruction]],
        is_active: Callable[[], bool],
        on_instruction: Callable[[Instruction], None],
        interval_sec: float = config.POLL_INTERVAL_SEC,
    ):
        """
        Args:
            fetch: Async callable performing one poll for a student
            is_active: Read view of the session's active flag
            on_instruction: Controller dispatch point for non-wait instructions
            interval_sec: Tick period (700 ms by default)
        """
        self._fetch = fetch
        self._is_active = is_active
        self._on_instruction = on_instruction
        self.interval_sec = interval_sec

        self._tick_task: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._generation = 0
        self.polls_started = 0

    @property
    def is_running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def start(self, student_id: str) -> None:
        """Arm the tick loop for this student. Must be called from the event loop."""
        self.stop()
        self._generation += 1
        self._tick_task = asyncio.get_running_loop().create_task(
            self._run(student_id, self._generation)
        )

    def stop(self) -> None:
        """Stop ticking now. An in-flight poll finishes but its answer is ignored."""
        self._generation += 1
        if self._tick_task is not None and not self._tick_task.done():
            self._tick_task.cancel()
        self._tick_task = None

    async def _run(self, student_id: str, generation: int) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval_sec
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            next_tick += self.interval_sec
            if generation != self._generation or not self._is_active():
                logger.debug("Poller for %s stopped (session inactive)", student_id)
                return
            self._tick(student_id, generation)

    def _tick(self, student_id: str, generation: int) -> None:
        if self._in_flight is not None and not self._in_flight.done():
            logger.debug("Previous poll for %s still pending, skipping tick", student_id)
            return
        self.polls_started += 1
        self._in_flight = asyncio.get_running_loop().create_task(
            self._poll_once(student_id, generation)
        )

    async def _poll_once(self, student_id: str, generation: int) -> None:
        try:
            instruction = await self._fetch(student_id)
        except _POLL_ERRORS as e:
            logger.warning("Poll error for %s: %s", student_id, e)
            return
        except Exception:
            logger.exception("Unexpected poll failure for %s", student_id)
            return

        if generation != self._generation or not self._is_active():
            logger.debug("Dropping stale poll response for %s: %s", student_id, instruction.kind.value)
            return
        if instruction.kind is InstructionKind.WAIT:
            return
        self._on_instruction(instruction)
