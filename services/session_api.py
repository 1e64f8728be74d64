"""
Session coordinator API module.

Handles every HTTP call the client makes to the remote session coordinator
and attention scorer: start a session, poll for the next instruction, send a
landmark frame, end a session, and (for the host) fetch a student's analytics
summary. Calls are blocking ``requests`` calls; the session controller runs
them off the event loop.
"""

from typing import Any, Dict, Optional

import requests

import config
from services.instructions import FrameResult, Instruction, StartResponse


class SessionApiError(Exception):
    """Raised when the coordinator answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionApiClient:
    """
    Client for the session coordinator / scorer.

    Usage:
        api = SessionApiClient()
        api.start_session("S1", total_time=30, voice_on_low_attention=True, voice_threshold=0.4)
        instruction = api.next_instruction("S1")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Coordinator address (default: config.API_BASE)
            timeout: Per-request timeout in seconds (default: config.API_TIMEOUT_SEC)
            session: Optional requests.Session to reuse connections
        """
        self.base_url = (base_url or config.API_BASE).strip().rstrip("/")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid coordinator address: {self.base_url}. Must start with http:// or https://")
        self.timeout = config.API_TIMEOUT_SEC if timeout is None else timeout
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send one request and return the decoded JSON body ({} when empty).

        Raises:
            SessionApiError: non-2xx status (message from the body's "error" when present)
            requests.Timeout: the request timed out
            requests.RequestException: transport failure
        """
        try:
            resp = self._session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.Timeout:
            raise requests.Timeout(f"{method} {path} timed out after {self.timeout}s")

        if not 200 <= resp.status_code < 300:
            message = f"{method} {path} returned status {resp.status_code}"
            try:
                body = resp.json()
                if isinstance(body, dict) and body.get("error"):
                    message = f"{message}: {body['error']}"
            except ValueError:
                pass
            raise SessionApiError(message, status_code=resp.status_code)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            raise SessionApiError(f"{method} {path} returned a non-JSON body", status_code=resp.status_code)

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def start_session(
        self,
        student_id: str,
        total_time: int,
        voice_on_low_attention: bool,
        voice_threshold: float,
    ) -> StartResponse:
        """Begin the server-side session. The reply may already carry a play_voice action."""
        data = self._request(
            "POST",
            "/start_stimulus",
            json={
                "student_id": student_id,
                "total_time": total_time,
                "voice_on_low_attention": voice_on_low_attention,
                "voice_threshold": voice_threshold,
            },
        )
        return StartResponse.from_response(data)

    def next_instruction(self, student_id: str) -> Instruction:
        """Ask what the presentation layer should do now (side-effect free for wait)."""
        data = self._request("GET", f"/next_instruction/{student_id}")
        return Instruction.from_response(data)

    def end_session(self, student_id: str) -> Dict[str, Any]:
        """Tell the coordinator the user stopped the session."""
        return self._request("POST", "/end_stimulus", json={"student_id": student_id})

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def send_frame(self, payload: Dict[str, Any]) -> FrameResult:
        """Submit one landmark sample; returns the smoothed attention and alert flag."""
        data = self._request("POST", "/frame", json=payload)
        return FrameResult.from_response(data)

    # ------------------------------------------------------------------
    # Host helpers
    # ------------------------------------------------------------------

    def analytics_by_student(self, student_id: str) -> Dict[str, Any]:
        """Per-student analytics summary shown after a completed session."""
        return self._request("GET", f"/analytics/student/{student_id}")

    def close(self) -> None:
        self._session.close()


# Lazy singleton: initialized on first use to avoid network setup at import time
_session_api: Optional[SessionApiClient] = None


def get_session_api() -> SessionApiClient:
    """Return the shared API client, creating it on first call (lazy init)."""
    global _session_api
    if _session_api is None:
        _session_api = SessionApiClient()
    return _session_api
