"""
Media elements for stimulus and voice playback.

- StimulusContainer: the OpenCV window that hosts the stimulus (and can go
  fullscreen on its own, before any video has rendered).
- VideoElement: decodes a stimulus URL with OpenCV and renders it into the
  container at the stream's frame rate.
- AudioElement: plays one voice prompt through an external player process
  (ffplay by default; see config.AUDIO_PLAYER_COMMAND).

Elements report lifecycle events to listeners registered with
``add_listener(event, callback)``; callbacks receive ``(element, event, detail)``.
Events: "loadedmetadata", "playing", "ended", "error".
"""

import asyncio
import logging
import subprocess
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

import config
from utils.fullscreen import FullscreenError

logger = logging.getLogger(__name__)

MEDIA_EVENTS = ("loadedmetadata", "playing", "ended", "error")

Listener = Callable[["MediaElement", str, Optional[str]], None]


class MediaError(RuntimeError):
    """Raised when a media element cannot load or play its source."""


class MediaElement:
    """Minimal event emitter shared by audio and video elements."""

    def __init__(self):
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = {e: [] for e in MEDIA_EVENTS}

    def add_listener(self, event: str, callback: Listener, once: bool = False) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown media event: {event}")
        self._listeners[event].append((callback, once))

    def remove_listeners(self, event: Optional[str] = None) -> None:
        events = [event] if event else list(self._listeners)
        for e in events:
            self._listeners[e] = []

    def _emit(self, event: str, detail: Optional[str] = None) -> None:
        entries = self._listeners[event]
        self._listeners[event] = [(cb, once) for cb, once in entries if not once]
        for callback, _ in entries:
            try:
                callback(self, event, detail)
            except Exception:
                logger.exception("Media listener for %r failed", event)


class StimulusContainer:
    """The window the stimulus video is rendered into."""

    def __init__(self, window_name: str = config.STIMULUS_WINDOW_NAME):
        self.window_name = window_name
        self._created = False

    def _ensure_window(self) -> None:
        if not self._created:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            self._created = True

    def show(self, frame: np.ndarray) -> None:
        self._ensure_window()
        cv2.imshow(self.window_name, frame)
        cv2.waitKey(1)

    def request_fullscreen(self) -> None:
        self._ensure_window()
        cv2.setWindowProperty(self.window_name, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
        cv2.waitKey(1)

    def closed_by_user(self) -> bool:
        """True once the window was shown and the user has closed it."""
        if not self._created:
            return False
        try:
            return cv2.getWindowProperty(self.window_name, cv2.WND_PROP_VISIBLE) < 1
        except cv2.error:
            return True

    def close(self) -> None:
        if self._created:
            try:
                cv2.destroyWindow(self.window_name)
            except cv2.error as e:
                logger.debug("destroyWindow failed: %s", e)
            self._created = False


class VideoElement(MediaElement):
    """
    Stimulus video rendered with OpenCV.

    ``load(url)`` stops current playback and sets the source; ``await play()``
    opens the stream, emits "loadedmetadata", and starts rendering ("playing" on
    the first frame, "ended" at end of stream). ``play()`` raises MediaError when
    the source cannot be opened.
    """

    DEFAULT_FPS = 25.0

    def __init__(self, container: StimulusContainer):
        super().__init__()
        self.container = container
        self.src: Optional[str] = None
        self._generation = 0
        self._render_task: Optional[asyncio.Task] = None
        self._rendered = False

    @property
    def paused(self) -> bool:
        return self._render_task is None or self._render_task.done()

    def load(self, url: str) -> None:
        self.pause()
        self.src = url
        self._rendered = False

    async def play(self) -> None:
        if not self.src:
            raise MediaError("No video source loaded")
        self.pause()
        generation = self._generation
        src = self.src

        cap = await asyncio.to_thread(cv2.VideoCapture, src)
        if not cap.isOpened():
            cap.release()
            message = f"Could not open video: {src}"
            self._emit("error", message)
            raise MediaError(message)
        if generation != self._generation:
            # Superseded by load()/pause() while opening
            cap.release()
            return

        fps = cap.get(cv2.CAP_PROP_FPS) or self.DEFAULT_FPS
        self._emit("loadedmetadata")
        self._render_task = asyncio.get_running_loop().create_task(
            self._render(cap, fps, generation)
        )

    def pause(self) -> None:
        self._generation += 1
        self._render_task = None

    def request_fullscreen(self) -> None:
        if not self._rendered:
            raise FullscreenError("Video has not rendered a frame yet")
        self.container.request_fullscreen()

    async def _render(self, cap: cv2.VideoCapture, fps: float, generation: int) -> None:
        loop = asyncio.get_running_loop()
        frame_interval = 1.0 / fps if fps > 0 else 1.0 / self.DEFAULT_FPS
        next_frame = loop.time()
        first = True
        try:
            while generation == self._generation:
                ok, frame = await asyncio.to_thread(cap.read)
                if generation != self._generation:
                    break
                if not ok or frame is None:
                    if first:
                        self._emit("error", f"No frames could be decoded from {self.src}")
                    else:
                        self._emit("ended")
                    break
                self.container.show(frame)
                if first:
                    first = False
                    self._rendered = True
                    self._emit("playing")
                next_frame += frame_interval
                await asyncio.sleep(max(0.0, next_frame - loop.time()))
        except cv2.error as e:
            self._emit("error", f"Video render failed: {e}")
        finally:
            cap.release()


class AudioElement(MediaElement):
    """
    One voice prompt played by an external player process.

    Emits "playing" once the player starts, "ended" when it exits cleanly and
    "error" when it cannot start or exits with a failure. ``pause()`` stops the
    player without emitting anything.
    """

    def __init__(self, url: str, command: Optional[List[str]] = None):
        super().__init__()
        self.url = url
        self._command = command if command is not None else config.get_audio_player_command()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._stopped = False

    async def play(self) -> None:
        if not self._command:
            message = "No audio player configured"
            self._emit("error", message)
            raise MediaError(message)
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                self.url,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            message = f"Could not start audio player {self._command[0]!r}: {e}"
            self._emit("error", message)
            raise MediaError(message) from e

        if self._stopped:
            self._terminate()
            return
        self._emit("playing")
        self._watch_task = asyncio.get_running_loop().create_task(self._watch())

    async def _watch(self) -> None:
        process = self._process
        _, stderr = await process.communicate()
        if self._stopped:
            return
        if process.returncode == 0:
            self._emit("ended")
        else:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()
            self._emit("error", detail or f"Audio player exited with status {process.returncode}")

    def pause(self) -> None:
        self._stopped = True
        self._terminate()

    def _terminate(self) -> None:
        if self._process is not None and self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass
