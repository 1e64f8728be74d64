"""
Playback sequencer.

Realizes coordinator instructions as audio/video/fullscreen behavior:

  play_voice     → stop the current voice prompt, start the new one
  play_stimulus  → load and play the stimulus video; its voice prompt (if any)
                   starts STIMULUS_VOICE_DELAY_SEC after the play call; the
                   first "playing" event triggers fullscreen after a short settle

One video element and at most one audio element are alive at a time. All media
events go through ``_on_media_event``; events from a superseded audio element
or arriving after ``stop()`` are ignored.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

import config
from utils.fullscreen import request_fullscreen
from utils.media_elements import AudioElement, MediaElement, MediaError, StimulusContainer, VideoElement

logger = logging.getLogger(__name__)

VOICE_FINISHED_STATUS = "Voice finished, waiting for stimulus..."
VIDEO_ERROR_STATUS = "Error loading video. Please check the file format."


@dataclass(frozen=True)
class Stimulus:
    """The stimulus currently on screen."""
    url: str
    name: str


class PlaybackSequencer:
    """
    Owns the stimulus video element and the voice audio element.

    Usage:
        sequencer = PlaybackSequencer(video, container, on_status, on_stimulus, is_active)
        sequencer.play_stimulus("/s/2.mp4", "Color Card", voice_url="/v/2.mp3")
        ...
        sequencer.stop()
    """

    def __init__(
        self,
        video: VideoElement,
        container: StimulusContainer,
        on_status: Callable[[str], None],
        on_stimulus: Callable[[Stimulus], None],
        is_active: Callable[[], bool],
        audio_factory: Callable[[str], AudioElement] = AudioElement,
        resolve_url: Callable[[str], str] = config.resolve_media_url,
        voice_delay_sec: float = config.STIMULUS_VOICE_DELAY_SEC,
        fullscreen_settle_sec: float = config.FULLSCREEN_SETTLE_SEC,
    ):
        self._video = video
        self._container = container
        self._on_status = on_status
        self._on_stimulus = on_stimulus
        self._is_active = is_active
        self._audio_factory = audio_factory
        self._resolve_url = resolve_url
        self.voice_delay_sec = voice_delay_sec
        self.fullscreen_settle_sec = fullscreen_settle_sec

        self._audio: Optional[AudioElement] = None
        self._pending_voice: Optional[asyncio.Task] = None
        self._timers: Set[asyncio.Task] = set()
        self._tasks: Set[asyncio.Task] = set()
        self.current_stimulus: Optional[Stimulus] = None

        for event in ("loadedmetadata", "ended", "error"):
            self._video.add_listener(event, self._on_media_event)

    @property
    def audio(self) -> Optional[AudioElement]:
        return self._audio

    @property
    def container(self) -> StimulusContainer:
        return self._container

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    def play_voice(self, voice_url: Optional[str]) -> Optional[AudioElement]:
        """Start a voice prompt, replacing any prompt still playing. No URL is a silent prompt."""
        self._cancel_pending_voice()
        return self._start_voice(voice_url)

    def _start_voice(self, voice_url: Optional[str]) -> Optional[AudioElement]:
        if not voice_url:
            return None
        self._release_audio()

        audio = self._audio_factory(self._resolve_url(voice_url))
        audio.add_listener("ended", self._on_media_event)
        audio.add_listener("error", self._on_media_event)
        self._audio = audio
        self._spawn(self._start(audio.play(), "Audio"))
        return audio

    def play_stimulus(
        self,
        stimulus_url: str,
        stimulus_name: str,
        voice_url: Optional[str] = None,
    ) -> Stimulus:
        """Show a stimulus video; its voice prompt follows after ``voice_delay_sec``."""
        self._cancel_pending_voice()
        stimulus = Stimulus(url=self._resolve_url(stimulus_url), name=stimulus_name)
        self.current_stimulus = stimulus
        self._on_stimulus(stimulus)
        self._on_status(f"Playing stimulus: {stimulus_name}")

        self._video.load(stimulus.url)
        self._video.remove_listeners("playing")
        self._video.add_listener("playing", self._on_media_event, once=True)
        self._spawn(self._start(self._video.play(), "Video"))

        if voice_url:
            self._pending_voice = self._after(self.voice_delay_sec, self._start_voice, voice_url)
        return stimulus

    def enter_fullscreen(self) -> bool:
        """Best-effort fullscreen on the video, falling back to its window. Never raises."""
        return request_fullscreen(self._video, self._container)

    def stop(self) -> None:
        """Cancel pending delayed actions and halt audio and video."""
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        self._pending_voice = None
        self._release_audio()
        self._video.pause()
        self._video.remove_listeners("playing")
        self.current_stimulus = None

    def close(self) -> None:
        self.stop()
        self._container.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_pending_voice(self) -> None:
        # A later instruction supersedes a stimulus voice that has not started yet
        if self._pending_voice is not None:
            self._pending_voice.cancel()
            self._pending_voice = None

    def _release_audio(self) -> None:
        if self._audio is not None:
            self._audio.remove_listeners()
            self._audio.pause()
            self._audio = None

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _after(self, delay: float, callback: Callable, *args) -> asyncio.Task:
        async def run() -> None:
            await asyncio.sleep(delay)
            if self._is_active():
                callback(*args)

        timer = asyncio.get_running_loop().create_task(run())
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)
        return timer

    async def _start(self, play: Awaitable[None], label: str) -> None:
        try:
            await play
        except MediaError as e:
            logger.error("%s play error: %s", label, e)
            if label == "Video" and self._is_active():
                self._on_status(f"Error playing video: {e}")

    def _on_media_event(self, element: MediaElement, event: str, detail: Optional[str]) -> None:
        if not self._is_active():
            return

        if element is self._video:
            if event == "playing":
                self._after(self.fullscreen_settle_sec, self.enter_fullscreen)
            elif event == "loadedmetadata":
                logger.info("Video loaded successfully")
            elif event == "ended":
                logger.info("Stimulus finished: %s", self.current_stimulus.name if self.current_stimulus else "?")
            elif event == "error":
                logger.error("Video error: %s", detail)
                self._on_status(VIDEO_ERROR_STATUS)
            return

        if element is self._audio:
            if event == "ended":
                self._on_status(VOICE_FINISHED_STATUS)
            elif event == "error":
                logger.error("Audio error: %s", detail)
                self._on_status(f"Voice playback error: {detail}")
