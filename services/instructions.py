"""
Coordinator response types.

The remote coordinator answers every poll with exactly one instruction telling
the client what to present next. This module turns the raw JSON of the start,
poll, and frame endpoints into small typed values so the rest of the client
never handles dicts directly.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class InstructionError(ValueError):
    """Raised when a coordinator payload cannot be turned into an instruction."""


class InstructionKind(Enum):
    """Closed set of instructions the coordinator can send."""
    WAIT = "wait"
    NO_SESSION = "no_session"
    PLAY_VOICE = "play_voice"
    PLAY_STIMULUS = "play_stimulus"
    SESSION_COMPLETE = "session_complete"


_STATUS_KINDS = (InstructionKind.WAIT, InstructionKind.NO_SESSION)
_ACTION_KINDS = {
    InstructionKind.PLAY_VOICE.value: InstructionKind.PLAY_VOICE,
    InstructionKind.PLAY_STIMULUS.value: InstructionKind.PLAY_STIMULUS,
    InstructionKind.SESSION_COMPLETE.value: InstructionKind.SESSION_COMPLETE,
}


@dataclass(frozen=True)
class Instruction:
    """One directive from the coordinator (tagged by ``kind``)."""
    kind: InstructionKind
    voice_url: Optional[str] = None
    stimulus_url: Optional[str] = None
    stimulus_name: Optional[str] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "Instruction":
        """
        Parse a poll response.

        ``{"status": "wait"}`` and ``{"status": "no_session"}`` map directly;
        otherwise ``action`` decides. Unknown actions degrade to WAIT.

        Raises:
            InstructionError: payload is not a dict, or play_stimulus has no URL
        """
        if not isinstance(data, dict):
            raise InstructionError(f"Expected a JSON object, got {type(data).__name__}")

        status = data.get("status")
        for kind in _STATUS_KINDS:
            if status == kind.value:
                return cls(kind)

        action = data.get("action")
        kind = _ACTION_KINDS.get(action)
        if kind is None:
            logger.warning("Unrecognised coordinator response, treating as wait: %r", data)
            return cls(InstructionKind.WAIT)

        voice_url = data.get("voice_url") or None
        if kind is InstructionKind.PLAY_STIMULUS:
            stimulus_url = data.get("stimulus_url")
            if not stimulus_url:
                raise InstructionError("play_stimulus instruction without stimulus_url")
            return cls(
                kind,
                voice_url=voice_url,
                stimulus_url=stimulus_url,
                stimulus_name=data.get("stimulus_name") or "",
            )
        if kind is InstructionKind.PLAY_VOICE:
            return cls(kind, voice_url=voice_url)
        return cls(kind)


@dataclass(frozen=True)
class StartResponse:
    """Result of a successful start request; the coordinator may pre-empt the first poll."""
    instruction: Optional[Instruction] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "StartResponse":
        if isinstance(data, dict) and data.get("action") == InstructionKind.PLAY_VOICE.value:
            return cls(Instruction(InstructionKind.PLAY_VOICE, voice_url=data.get("voice_url") or None))
        return cls()


@dataclass(frozen=True)
class FrameResult:
    """Scorer reply to one landmark frame."""
    smoothed_attention: Optional[float] = None
    alert: bool = False
    alert_msg: Optional[str] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "FrameResult":
        if not isinstance(data, dict):
            return cls()
        raw = data.get("smoothed_attention")
        try:
            score = float(raw) if raw is not None else None
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric smoothed_attention: %r", raw)
            score = None
        return cls(
            smoothed_attention=score,
            alert=bool(data.get("alert")),
            alert_msg=data.get("alert_msg"),
        )
