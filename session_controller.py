"""
Session Controller.

Owns one monitoring session from start to stop and is the only writer of its
state. While a session is active it:

  - runs the landmark capture unit and forwards every sample to the scorer,
    keeping the returned smoothed attention as the live score;
  - runs the instruction poller and dispatches each instruction (voice prompt,
    stimulus, session complete) to the playback sequencer;
  - on "session complete", stops without telling the coordinator again (it has
    already finalized the session) and, after a short pause, tells the host.

Lifecycle: IDLE → STARTING → ACTIVE → STOPPING → IDLE. STARTING and STOPPING
only span the start / end-session requests. Everything runs on one asyncio
loop; blocking HTTP calls go through asyncio.to_thread and every continuation
checks that its session is still the live one before touching state.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set, Union

import requests

import config
from services.instruction_poller import InstructionPoller
from services.instructions import Instruction, InstructionKind, StartResponse
from services.playback_sequencer import PlaybackSequencer, Stimulus
from services.session_api import SessionApiClient, SessionApiError, get_session_api
from utils.landmark_capture import LandmarkCaptureUnit, LandmarkSample
from utils.media_elements import StimulusContainer, VideoElement

logger = logging.getLogger(__name__)

_API_ERRORS = (SessionApiError, requests.RequestException)

CompletionCallback = Callable[[str], Union[None, Awaitable[None]]]


class SessionStartError(Exception):
    """Raised when a session cannot be started; the controller stays idle."""


class SessionPhase(Enum):
    """Controller lifecycle phases."""
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


def _number(value: Any, default: float) -> float:
    """Form-style coercion: blank, zero or non-numeric input falls back to the default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number else default


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "1", "on")
    return bool(value)


@dataclass(frozen=True)
class SessionConfig:
    """Per-session settings, fixed once the session has started."""
    stimulus_duration_seconds: int = config.DEFAULT_STIMULUS_SECONDS
    voice_on_low_attention: bool = config.DEFAULT_VOICE_ON_LOW_ATTENTION
    voice_threshold: float = config.DEFAULT_VOICE_THRESHOLD

    def __post_init__(self):
        if self.stimulus_duration_seconds < config.MIN_STIMULUS_SECONDS:
            raise ValueError(
                f"stimulus_duration_seconds must be at least {config.MIN_STIMULUS_SECONDS}"
            )
        if not 0.0 <= self.voice_threshold <= 1.0:
            raise ValueError("voice_threshold must be between 0 and 1")

    @classmethod
    def from_inputs(cls, stimulus_seconds: Any, voice_on_low: Any, voice_threshold: Any) -> "SessionConfig":
        """Build a config from raw form/CLI values."""
        return cls(
            stimulus_duration_seconds=int(_number(stimulus_seconds, config.DEFAULT_STIMULUS_SECONDS)),
            voice_on_low_attention=_flag(voice_on_low),
            voice_threshold=_number(voice_threshold, config.DEFAULT_VOICE_THRESHOLD),
        )

    def to_request(self) -> dict:
        return {
            "total_time": self.stimulus_duration_seconds,
            "voice_on_low_attention": self.voice_on_low_attention,
            "voice_threshold": self.voice_threshold,
        }


@dataclass
class SessionState:
    """Everything the host may show about the current session."""
    student_id: Optional[str] = None
    config: Optional[SessionConfig] = None
    phase: SessionPhase = SessionPhase.IDLE
    active: bool = False
    current_action: str = ""
    status_message: str = ""
    live_attention_score: Optional[float] = None
    current_stimulus: Optional[Stimulus] = None
    capture_error: Optional[str] = None

    @property
    def attention_display(self) -> Optional[str]:
        """Live score as a percentage with one decimal, e.g. "82.0%"."""
        if self.live_attention_score is None:
            return None
        return f"{self.live_attention_score * 100:.1f}%"


def _default_sequencer(**callbacks: Any) -> PlaybackSequencer:
    container = StimulusContainer()
    return PlaybackSequencer(video=VideoElement(container), container=container, **callbacks)


class SessionController:
    """
    Top-level session state machine.

    Usage:
        controller = SessionController(on_session_complete=show_results)
        await controller.start("S1", SessionConfig(30, True, 0.4))
        ...
        await controller.stop()
    """

    def __init__(
        self,
        api: Optional[SessionApiClient] = None,
        on_session_complete: Optional[CompletionCallback] = None,
        on_change: Optional[Callable[[SessionState], None]] = None,
        capture_factory: Optional[Callable[..., LandmarkCaptureUnit]] = None,
        sequencer_factory: Optional[Callable[..., PlaybackSequencer]] = None,
        poll_interval_sec: float = config.POLL_INTERVAL_SEC,
        completion_delay_sec: float = config.COMPLETION_NOTIFY_DELAY_SEC,
    ):
        """
        Args:
            api: Coordinator client (default: shared SessionApiClient)
            on_session_complete: Called with the student id once a completed session is ready for review
            on_change: Called with a state snapshot after every state change
            capture_factory: Builds the capture unit from on_sample/on_error callbacks
            sequencer_factory: Builds the playback sequencer from on_status/on_stimulus/is_active
            poll_interval_sec: Instruction poll period
            completion_delay_sec: Pause between completion teardown and on_session_complete
        """
        self._api = api or get_session_api()
        self._on_session_complete = on_session_complete
        self._on_change = on_change
        self.completion_delay_sec = completion_delay_sec

        self._state = SessionState()
        self._generation = 0
        self._completing = False
        self._closed = False
        self._tasks: Set[asyncio.Task] = set()

        self.capture = (capture_factory or LandmarkCaptureUnit)(
            on_sample=self._on_sample,
            on_error=self._on_capture_error,
        )
        self.sequencer = (sequencer_factory or _default_sequencer)(
            on_status=self._set_status,
            on_stimulus=self._set_stimulus,
            is_active=self.is_active,
        )
        self.poller = InstructionPoller(
            fetch=self._fetch_instruction,
            is_active=self.is_active,
            on_instruction=self._dispatch,
            interval_sec=poll_interval_sec,
        )

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Snapshot of the session state (mutating it has no effect)."""
        return replace(self._state)

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    def is_active(self) -> bool:
        return self._state.active

    def _is_live(self, generation: int) -> bool:
        return generation == self._generation and self._state.active

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, student_id: str, session_config: Optional[SessionConfig] = None) -> StartResponse:
        """
        Start a session for ``student_id``.

        Raises:
            SessionStartError: no student, a session already running, the client
                closed, or the coordinator refused / could not be reached (controller stays idle)
        """
        if not student_id or not str(student_id).strip():
            raise SessionStartError("Please select or register a student first")
        if self._closed:
            raise SessionStartError("Session client is closed")
        if self._state.phase is not SessionPhase.IDLE:
            raise SessionStartError(f"A session is already {self._state.phase.value}")

        session_config = session_config or SessionConfig()
        self._set_phase(SessionPhase.STARTING)
        try:
            response = await asyncio.to_thread(
                self._api.start_session, student_id, **session_config.to_request()
            )
        except _API_ERRORS as e:
            logger.error("Start session error: %s", e)
            self._set_phase(SessionPhase.IDLE)
            raise SessionStartError(f"Failed to start session: {e}") from e
        except BaseException:
            self._set_phase(SessionPhase.IDLE)
            raise

        if self._closed:
            # The host closed while the coordinator was starting the session
            await self._end_remote(student_id)
            self._set_phase(SessionPhase.IDLE)
            raise SessionStartError("Session client closed while starting")

        self._generation += 1
        generation = self._generation
        self._completing = False
        self._state = SessionState(
            student_id=student_id,
            config=session_config,
            phase=SessionPhase.ACTIVE,
            active=True,
            status_message="Session started",
            live_attention_score=None,
        )
        logger.info(
            "Session started for %s (duration=%ss, voice_on_low=%s, threshold=%.2f)",
            student_id,
            session_config.stimulus_duration_seconds,
            session_config.voice_on_low_attention,
            session_config.voice_threshold,
        )

        # Same call stack as the user's start action, before anything else is awaited
        self.sequencer.enter_fullscreen()

        if response.instruction is not None and response.instruction.kind is InstructionKind.PLAY_VOICE:
            self._state.current_action = "Playing voice"
            self.sequencer.play_voice(response.instruction.voice_url)

        self._notify()
        self.poller.start(student_id)
        self._spawn(self._activate_capture(student_id, generation))
        return response

    async def stop(self, notify_remote: bool = True) -> None:
        """
        End the active session. A no-op unless a session is active.

        Args:
            notify_remote: Send the end-session request first (its failure is logged, teardown still runs)
        """
        if self._state.phase is not SessionPhase.ACTIVE:
            return
        student_id = self._state.student_id
        if self._completing:
            # The coordinator already finalized the session
            notify_remote = False
        self._set_phase(SessionPhase.STOPPING)

        if notify_remote:
            await self._end_remote(student_id)

        self._teardown()
        logger.info("Session stopped for %s (notified=%s)", student_id, notify_remote)
        await self.capture.wait_closed()

    async def close(self) -> None:
        """Host teardown: stop any active session and release the stimulus window."""
        self._closed = True
        await self.stop()
        await self.capture.wait_closed()
        self.sequencer.close()

    async def _end_remote(self, student_id: str) -> None:
        try:
            await asyncio.to_thread(self._api.end_session, student_id)
        except _API_ERRORS as e:
            logger.error("End session error: %s", e)

    def _teardown(self) -> None:
        self._state.active = False
        self.poller.stop()
        self.capture.deactivate()
        self.sequencer.stop()
        self._state.current_action = ""
        self._state.status_message = ""
        self._state.current_stimulus = None
        self._state.phase = SessionPhase.IDLE
        self._notify()

    # ------------------------------------------------------------------
    # Capture → scorer
    # ------------------------------------------------------------------

    async def _activate_capture(self, student_id: str, generation: int) -> None:
        started = await self.capture.activate(student_id)
        if started and not self._is_live(generation):
            self.capture.deactivate()

    def _on_capture_error(self, message: str) -> None:
        if not self._state.active:
            return
        self._state.capture_error = message
        self._state.status_message = message
        self._notify()

    def _on_sample(self, sample: LandmarkSample) -> None:
        if not self._state.active:
            return
        self._spawn(self._forward_sample(sample, self._generation))

    async def _forward_sample(self, sample: LandmarkSample, generation: int) -> None:
        try:
            result = await asyncio.to_thread(self._api.send_frame, sample.to_payload())
        except _API_ERRORS as e:
            logger.warning("Frame send error: %s", e)
            return
        if not self._is_live(generation):
            return

        if result.smoothed_attention is not None:
            self._state.live_attention_score = result.smoothed_attention
            self._notify()
        if result.alert and result.alert_msg:
            logger.info("Alert: %s", result.alert_msg)

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    async def _fetch_instruction(self, student_id: str) -> Instruction:
        return await asyncio.to_thread(self._api.next_instruction, student_id)

    def _dispatch(self, instruction: Instruction) -> None:
        """Single entry point for every coordinator instruction."""
        if self._state.phase is not SessionPhase.ACTIVE or self._completing:
            logger.debug("Ignoring %s outside an active session", instruction.kind.value)
            return

        kind = instruction.kind
        if kind is InstructionKind.NO_SESSION:
            self._state.status_message = "No active session"
        elif kind is InstructionKind.PLAY_VOICE:
            self._state.current_action = "Playing voice"
            self._state.status_message = "Playing voice prompt..."
            self.sequencer.play_voice(instruction.voice_url)
        elif kind is InstructionKind.PLAY_STIMULUS:
            self._state.current_action = "Playing stimulus"
            self.sequencer.play_stimulus(
                instruction.stimulus_url,
                instruction.stimulus_name,
                voice_url=instruction.voice_url,
            )
        elif kind is InstructionKind.SESSION_COMPLETE:
            self._completing = True
            self._state.current_action = "Session complete"
            self._state.status_message = "Session completed!"
            self._spawn(self._finish_completed_session(self._state.student_id))
        self._notify()

    async def _finish_completed_session(self, student_id: str) -> None:
        # The coordinator already finalized the session; telling it again would clear state mid-save
        await self.stop(notify_remote=False)
        await asyncio.sleep(self.completion_delay_sec)

        if self._on_session_complete is None:
            return
        try:
            result = self._on_session_complete(student_id)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Session complete handler failed")

    # ------------------------------------------------------------------
    # State writes requested by subsystems
    # ------------------------------------------------------------------

    def _set_status(self, message: str) -> None:
        if not self._state.active:
            return
        self._state.status_message = message
        self._notify()

    def _set_stimulus(self, stimulus: Stimulus) -> None:
        if not self._state.active:
            return
        self._state.current_stimulus = stimulus
        self._notify()

    def _set_phase(self, phase: SessionPhase) -> None:
        self._state.phase = phase
        self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.state)
        except Exception:
            logger.exception("State change listener failed")

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
