"""
Landmark Capture Unit

Turns a live camera feed into throttled landmark samples:

  camera frame → face landmarker → (drop if no face) → (drop if < 120 ms since
  the last emitted sample) → LandmarkSample → on_sample callback

Samples are never queued: a detection that arrives inside the send interval is
discarded, so every emitted sample is the freshest one available. The unit knows
nothing about where samples go; the session controller forwards them.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import config
from utils.face_detection_interface import FaceDetectionResult, FaceDetectorInterface
from utils.video_source_handler import VideoSourceError, VideoSourceHandler, VideoSourceType

logger = logging.getLogger(__name__)

Landmark = Tuple[float, float, float]


@dataclass(frozen=True)
class LandmarkSample:
    """One normalized facial-geometry snapshot of the tracked face."""
    student_id: str
    timestamp: float  # Unix seconds, fractional
    image_width: int
    image_height: int
    landmarks: Tuple[Landmark, ...]

    def to_payload(self) -> dict:
        """Wire form expected by the scorer's /frame endpoint."""
        return {
            "student_id": self.student_id,
            "ts": self.timestamp,
            "image_w": self.image_width,
            "image_h": self.image_height,
            "landmarks": [{"x": x, "y": y, "z": z} for x, y, z in self.landmarks],
        }


class SendThrottle:
    """
    Minimum-interval gate on a monotonic clock.

    ``ready()`` is True at most once per interval, measured from the last time
    it returned True.
    """

    def __init__(self, interval_sec: float, clock: Callable[[], float] = time.monotonic):
        self.interval_sec = interval_sec
        self._clock = clock
        self._last_sent: Optional[float] = None

    def ready(self) -> bool:
        now = self._clock()
        if self._last_sent is not None and now - self._last_sent < self.interval_sec:
            return False
        self._last_sent = now
        return True

    def reset(self) -> None:
        self._last_sent = None


def _default_detector() -> FaceDetectorInterface:
    # Imported lazily so tests and hosts without MediaPipe can still import this module
    from utils.mediapipe_detector import MediaPipeFaceDetector
    return MediaPipeFaceDetector()


class LandmarkCaptureUnit:
    """
    Owns the camera and the landmark detector while a session is active.

    Usage:
        unit = LandmarkCaptureUnit(on_sample=controller_callback)
        await unit.activate("S1")
        ...
        unit.deactivate()
        await unit.wait_closed()
    """

    def __init__(
        self,
        on_sample: Callable[[LandmarkSample], None],
        on_error: Optional[Callable[[str], None]] = None,
        source: Optional[VideoSourceHandler] = None,
        detector_factory: Optional[Callable[[], FaceDetectorInterface]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        send_interval_sec: float = config.SEND_INTERVAL_SEC,
        source_type: VideoSourceType = VideoSourceType.WEBCAM,
        source_path: Optional[str] = None,
    ):
        """
        Args:
            on_sample: Called with every emitted sample ("sample ready")
            on_error: Called with a message when the camera/detector cannot run
            source: Video source (default: a new VideoSourceHandler)
            detector_factory: Builds the detector on activation (default: MediaPipe)
            clock: Monotonic clock used for throttling
            wall_clock: Clock used for sample timestamps
            send_interval_sec: Minimum gap between emitted samples
            source_type, source_path: Which feed to open (webcam by default)
        """
        self._on_sample = on_sample
        self._on_error = on_error
        self._source = source or VideoSourceHandler()
        self._detector_factory = detector_factory or _default_detector
        self._clock = clock
        self._wall_clock = wall_clock
        self._throttle = SendThrottle(send_interval_sec, clock)
        self._source_type = source_type
        self._source_path = source_path

        self._detector: Optional[FaceDetectorInterface] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False
        # Bumped by every activate/deactivate; an open that finishes under an older value is discarded
        self._activation = 0
        self._open_lock = asyncio.Lock()
        self._student_id: Optional[str] = None

        self.last_error: Optional[str] = None
        self.samples_emitted = 0

    @property
    def active(self) -> bool:
        return self._active

    async def activate(self, student_id: str) -> bool:
        """
        Open the camera and start the capture loop.

        Returns:
            True if capture is running, False if the camera/detector could not be
            opened (the error is recorded in ``last_error`` and reported to
            ``on_error``; nothing is raised).
        """
        if self._active:
            return True
        self._activation += 1
        token = self._activation

        # A newer activation waits here until a superseded one has released the camera
        async with self._open_lock:
            await self.wait_closed()
            if token != self._activation:
                return False

            self._student_id = student_id
            self.last_error = None
            self._throttle.reset()
            self._active = True

            try:
                await asyncio.to_thread(self._open)
            except (VideoSourceError, FileNotFoundError, OSError, RuntimeError, ValueError) as e:
                self._release()
                if token == self._activation:
                    self._fail(str(e))
                return False

            if token != self._activation or not self._active:
                logger.info("Landmark capture for %s cancelled while the camera was opening", student_id)
                self._release()
                return False

            self._task = asyncio.get_running_loop().create_task(self._capture_loop())
        logger.info("Landmark capture started for %s", student_id)
        return True

    def deactivate(self) -> None:
        """
        Stop emitting immediately. The loop exits at its next check and releases
        the camera; await ``wait_closed()`` to wait for that. An activation still
        opening the camera is abandoned.
        """
        if self._active:
            logger.info("Landmark capture stopping for %s", self._student_id)
        self._activation += 1
        self._active = False

    async def wait_closed(self) -> None:
        task = self._task
        if task is not None:
            await task
            self._task = None

    def _open(self) -> None:
        self._source.initialize_source(self._source_type, self._source_path)
        self._detector = self._detector_factory()

    def _release(self) -> None:
        self._source.release()
        if self._detector is not None:
            self._detector.close()
            self._detector = None

    def _fail(self, message: str) -> None:
        self._active = False
        self.last_error = message
        logger.error("Landmark capture error: %s", message)
        if self._on_error:
            self._on_error(message)

    async def _capture_loop(self) -> None:
        try:
            while self._active:
                ok, frame = await asyncio.to_thread(self._source.read_frame)
                if not self._active:
                    break
                if not ok:
                    self._fail("Camera stopped delivering frames.")
                    break

                height, width = frame.shape[:2]
                timestamp_ms = int(self._clock() * 1000)
                try:
                    faces = await asyncio.to_thread(self._detector.detect_faces, frame, timestamp_ms)
                except (RuntimeError, ValueError) as e:
                    logger.warning("Landmark detection failed on frame: %s", e)
                    continue
                self.handle_detection(faces, width, height)
        except Exception as e:
            logger.exception("Capture loop crashed")
            self._fail(f"Capture stopped: {e}")
        finally:
            self._release()

    def handle_detection(
        self,
        faces: Sequence[FaceDetectionResult],
        image_width: int,
        image_height: int,
    ) -> Optional[LandmarkSample]:
        """
        Apply the emission policy to one detection result.

        Nothing is emitted when inactive, when no face was found, or when the
        send interval has not elapsed. With several faces the first-ranked one
        is used.
        """
        if not self._active or not faces:
            return None
        if not self._throttle.ready():
            return None

        face = faces[0]
        landmarks: List[Landmark] = [(float(x), float(y), float(z)) for x, y, z in face.landmarks]
        sample = LandmarkSample(
            student_id=self._student_id,
            timestamp=self._wall_clock(),
            image_width=int(image_width),
            image_height=int(image_height),
            landmarks=tuple(landmarks),
        )
        self.samples_emitted += 1
        self._on_sample(sample)
        return sample
