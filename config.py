"""
=============================================================================
CONFIGURATION FOR THE ATTENTION SESSION CLIENT (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the client in one place. Other
files read from it. Values come from the environment (e.g. your .env file or
system variables), so the same code can talk to a local coordinator during
development and a hosted one in production.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Remote API       — Where the session coordinator / scorer lives and how long we wait.
  2. Timing           — Poll cadence, landmark send interval, playback delays.
  3. Camera           — Which webcam to open and at what resolution.
  4. Face landmarks   — MediaPipe Face Landmarker model and confidences.
  5. Playback         — Stimulus window name and the external audio player.
  6. Session defaults — Stimulus duration, voice-on-low-attention, threshold.
  7. Logging          — Log level for the whole process.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. ATTENTION_API_BASE) override everything.
  - If an env var is not set, we use a default where it's safe.
=============================================================================
"""

import os
import shlex
import sys
from typing import List


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# REMOTE API (session coordinator + attention scorer)
# ============================================================================
# Every session call (start, poll, frame, end) goes to this base address. It is
# resolved once at startup; media URLs returned by the coordinator are relative
# to it as well.
# ----------------------------------------------------------------------------
API_BASE: str = (os.getenv("ATTENTION_API_BASE") or "http://localhost:5000").strip().rstrip("/")
API_TIMEOUT_SEC: float = float(os.getenv("ATTENTION_API_TIMEOUT_SEC", "8"))

# ============================================================================
# TIMING
# ============================================================================
# POLL_INTERVAL_SEC: how often we ask the coordinator "what next" while active.
# SEND_INTERVAL_SEC: minimum gap between two landmark samples sent to the scorer.
# STIMULUS_VOICE_DELAY_SEC: when a stimulus comes with a voice prompt, the voice
#   starts this long after the video play call. Tunable; 0.5 s keeps the audio
#   from starting before the first video frame on slow decoders.
# FULLSCREEN_SETTLE_SEC: wait after the first "playing" event before fullscreen.
# COMPLETION_NOTIFY_DELAY_SEC: pause between a completed session's teardown and
#   telling the host, so the final state stays visible for a moment.
# ----------------------------------------------------------------------------
POLL_INTERVAL_SEC: float = float(os.getenv("POLL_INTERVAL_SEC", "0.7"))
SEND_INTERVAL_SEC: float = float(os.getenv("SEND_INTERVAL_SEC", "0.12"))
STIMULUS_VOICE_DELAY_SEC: float = float(os.getenv("STIMULUS_VOICE_DELAY_SEC", "0.5"))
FULLSCREEN_SETTLE_SEC: float = float(os.getenv("FULLSCREEN_SETTLE_SEC", "0.5"))
COMPLETION_NOTIFY_DELAY_SEC: float = float(os.getenv("COMPLETION_NOTIFY_DELAY_SEC", "1.0"))

# ============================================================================
# CAMERA
# ============================================================================
# 640x480 keeps landmark inference fast on ordinary laptops.
# ----------------------------------------------------------------------------
CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
CAMERA_WIDTH: int = int(os.getenv("CAMERA_WIDTH", "640"))
CAMERA_HEIGHT: int = int(os.getenv("CAMERA_HEIGHT", "480"))

# ============================================================================
# FACE LANDMARKS (MediaPipe Face Landmarker)
# ============================================================================
# The model file is downloaded next to this file on first use if missing.
# Only one face is tracked; the detector's first-ranked face is used.
# ----------------------------------------------------------------------------
_BASE_DIR = os.path.dirname(os.path.abspath(__file__))

FACE_LANDMARKER_MODEL_URL: str = os.getenv(
    "FACE_LANDMARKER_MODEL_URL",
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task",
)
FACE_LANDMARKER_MODEL_PATH: str = os.getenv(
    "FACE_LANDMARKER_MODEL_PATH", os.path.join(_BASE_DIR, "face_landmarker.task")
)
MIN_FACE_DETECTION_CONFIDENCE: float = float(os.getenv("MIN_FACE_DETECTION_CONFIDENCE", "0.5"))
MIN_FACE_TRACKING_CONFIDENCE: float = float(os.getenv("MIN_FACE_TRACKING_CONFIDENCE", "0.5"))

# ============================================================================
# PLAYBACK
# ============================================================================
# Stimulus video is rendered with OpenCV into a named window. Voice prompts are
# handed to an external player; the URL is appended as the last argument.
# ----------------------------------------------------------------------------
STIMULUS_WINDOW_NAME: str = os.getenv("STIMULUS_WINDOW_NAME", "Stimulus")
AUDIO_PLAYER_COMMAND: str = os.getenv(
    "AUDIO_PLAYER_COMMAND", "ffplay -nodisp -autoexit -loglevel error"
)

# ============================================================================
# SESSION DEFAULTS (what the start form is pre-filled with)
# ============================================================================
DEFAULT_STIMULUS_SECONDS: int = int(os.getenv("DEFAULT_STIMULUS_SECONDS", "30"))
DEFAULT_VOICE_ON_LOW_ATTENTION: bool = _env_bool("DEFAULT_VOICE_ON_LOW_ATTENTION", "true")
DEFAULT_VOICE_THRESHOLD: float = float(os.getenv("DEFAULT_VOICE_THRESHOLD", "0.4"))
MIN_STIMULUS_SECONDS: int = 5

# ============================================================================
# LOGGING
# ============================================================================
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()

# ============================================================================
# Helper Functions
# ============================================================================

def resolve_media_url(path: str) -> str:
    """
    Turn a coordinator-relative media path (e.g. "/v/1.mp3") into a full URL.
    Absolute http(s) URLs are returned unchanged.
    """
    if not path:
        return path
    if path.startswith(("http://", "https://")):
        return path
    return f"{API_BASE}/{path.lstrip('/')}"


def get_audio_player_command() -> List[str]:
    """Split AUDIO_PLAYER_COMMAND into argv form."""
    return shlex.split(AUDIO_PLAYER_COMMAND)


def get_session_defaults() -> dict:
    """Default values for a new session's settings."""
    return {
        "stimulus_duration_seconds": DEFAULT_STIMULUS_SECONDS,
        "voice_on_low_attention": DEFAULT_VOICE_ON_LOW_ATTENTION,
        "voice_threshold": DEFAULT_VOICE_THRESHOLD,
    }


def warn_missing_config() -> None:
    """
    Print a warning when settings look wrong. Call from app startup.
    Does not raise.
    """
    problems = []
    if not API_BASE.startswith(("http://", "https://")):
        problems.append(f"ATTENTION_API_BASE must start with http:// or https:// (got {API_BASE!r})")
    if not get_audio_player_command():
        problems.append("AUDIO_PLAYER_COMMAND is empty; voice prompts will not play")
    if problems:
        print("Config warning: " + "; ".join(problems), file=sys.stderr)


def build_config_summary() -> dict:
    """Aggregate the effective settings (for startup logging)."""
    return {
        "api": {"base": API_BASE, "timeoutSec": API_TIMEOUT_SEC},
        "timing": {
            "pollIntervalSec": POLL_INTERVAL_SEC,
            "sendIntervalSec": SEND_INTERVAL_SEC,
            "stimulusVoiceDelaySec": STIMULUS_VOICE_DELAY_SEC,
            "fullscreenSettleSec": FULLSCREEN_SETTLE_SEC,
            "completionNotifyDelaySec": COMPLETION_NOTIFY_DELAY_SEC,
        },
        "camera": {"index": CAMERA_INDEX, "width": CAMERA_WIDTH, "height": CAMERA_HEIGHT},
        "faceLandmarks": {
            "modelPath": FACE_LANDMARKER_MODEL_PATH,
            "minDetectionConfidence": MIN_FACE_DETECTION_CONFIDENCE,
            "minTrackingConfidence": MIN_FACE_TRACKING_CONFIDENCE,
        },
        "playback": {"windowName": STIMULUS_WINDOW_NAME, "audioPlayer": AUDIO_PLAYER_COMMAND},
        "sessionDefaults": get_session_defaults(),
    }
