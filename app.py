"""
=============================================================================
ATTENTION SESSION CLIENT — APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the client. When you run "python app.py", it:

  1. Asks the session coordinator to start a session for one student.
  2. Opens the webcam, finds the student's face and streams facial landmarks
     to the attention scorer (about 8 samples per second).
  3. Plays whatever the coordinator asks for: voice prompts, stimulus videos
     (fullscreen when the display allows it).
  4. When the coordinator says the session is complete, shows the student's
     analytics summary and exits.

Press Ctrl+C (or close the stimulus window) at any time to end the session
early; the coordinator is told that the session ended.

HOW TO RUN:
-----------
  - From project root:  python app.py --student-id S1
  - Options:            --seconds 30 --voice-on-low yes --threshold 0.4
  - The coordinator defaults to http://localhost:5000 (ATTENTION_API_BASE).

CONFIGURATION:
--------------
  - Settings come from the .env file and config.py.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ---------------------------------------------------------------------------
# Step 2: Import our own modules
# ---------------------------------------------------------------------------
import argparse
import asyncio
import json
import logging
import sys

import requests

import config
from services.session_api import SessionApiError, get_session_api
from session_controller import SessionConfig, SessionController, SessionStartError, SessionState

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("app")

# ---------------------------------------------------------------------------
# Step 3: Warn the user if important settings are missing
# ---------------------------------------------------------------------------
config.warn_missing_config()


def build_parser() -> argparse.ArgumentParser:
    defaults = config.get_session_defaults()
    parser = argparse.ArgumentParser(
        description="Run one attention-monitoring stimulus session",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python app.py --student-id S1
  python app.py --student-id S1 --seconds 60 --voice-on-low no
  python app.py --student-id S1 --threshold 0.35
        """,
    )
    parser.add_argument("--student-id", required=True, help="Student to run the session for")
    parser.add_argument(
        "--seconds",
        default=defaults["stimulus_duration_seconds"],
        help="Stimulus duration in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--voice-on-low",
        default="yes" if defaults["voice_on_low_attention"] else "no",
        choices=("yes", "no"),
        help="Play a voice prompt when attention drops (default: %(default)s)",
    )
    parser.add_argument(
        "--threshold",
        default=defaults["voice_threshold"],
        help="Attention level that triggers the voice prompt, 0-1 (default: %(default)s)",
    )
    return parser


def _log_state(previous: dict, state: SessionState) -> None:
    """Log the user-facing fields that changed since the last snapshot."""
    current = {
        "phase": state.phase.value,
        "action": state.current_action,
        "status": state.status_message,
        "stimulus": state.current_stimulus.name if state.current_stimulus else None,
    }
    changed = {k: v for k, v in current.items() if previous.get(k) != v}
    if changed:
        logger.info("Session: %s", ", ".join(f"{k}={v!r}" for k, v in changed.items()))
    previous.update(current)

    attention = state.attention_display
    if attention and previous.get("attention") != attention:
        logger.debug("Attention: %s", attention)
        previous["attention"] = attention


def show_analytics(student_id: str) -> None:
    """Fetch and print the student's analytics summary (the post-session view)."""
    try:
        analytics = get_session_api().analytics_by_student(student_id)
    except (SessionApiError, requests.RequestException) as e:
        logger.error("Could not load analytics for %s: %s", student_id, e)
        return
    print(json.dumps(analytics, indent=2, default=str))


async def run_session(student_id: str, session_config: SessionConfig) -> int:
    completed = asyncio.Event()
    snapshot: dict = {}

    async def on_complete(sid: str) -> None:
        await asyncio.to_thread(show_analytics, sid)
        completed.set()

    controller = SessionController(
        on_session_complete=on_complete,
        on_change=lambda state: _log_state(snapshot, state),
    )
    try:
        await controller.start(student_id, session_config)
    except SessionStartError as e:
        logger.error("%s", e)
        await controller.close()
        return 1

    waiters = [
        asyncio.ensure_future(completed.wait()),
        asyncio.ensure_future(watch_stimulus_window(controller)),
    ]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        # Ctrl+C, a closed window or cancellation ends the session on the coordinator too
        await controller.close()
    return 0


async def watch_stimulus_window(controller: SessionController, interval_sec: float = 0.5) -> None:
    """Return once the user closes the stimulus window during an active session."""
    container = controller.sequencer.container
    while True:
        await asyncio.sleep(interval_sec)
        if controller.is_active() and container.closed_by_user():
            logger.info("Stimulus window closed; ending session")
            return


def main() -> int:
    args = build_parser().parse_args()
    try:
        session_config = SessionConfig.from_inputs(args.seconds, args.voice_on_low, args.threshold)
    except ValueError as e:
        print(f"Invalid session settings: {e}", file=sys.stderr)
        return 2

    print("=" * 60)
    print("Attention Session Client")
    print("=" * 60)
    print(json.dumps(config.build_config_summary(), indent=2))
    print()

    try:
        return asyncio.run(run_session(args.student_id, session_config))
    except KeyboardInterrupt:
        logger.info("Interrupted; session ended")
        return 130


if __name__ == "__main__":
    sys.exit(main())
