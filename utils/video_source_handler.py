"""
Video Source Handler Module

Opens the feed that landmark capture reads from:
- the student's webcam (default), probed across capture backends and camera
  indices until one delivers a frame, then set to 640x480 with a one-frame buffer
- a local video file, for replaying a recorded session without a camera

Failures to open raise VideoSourceError with a message fit to show the user.
"""

import logging
import sys
from enum import Enum
from typing import Iterator, List, Optional, Tuple

import cv2
import numpy as np

import config

logger = logging.getLogger(__name__)

CAMERA_DENIED_MESSAGE = "Failed to access camera. Please grant camera permissions."


class VideoSourceError(RuntimeError):
    """Raised when a video source cannot be opened."""


class VideoSourceType(Enum):
    """Where frames come from."""
    WEBCAM = "webcam"
    FILE = "file"


def _capture_backends() -> List[int]:
    # DirectShow opens most USB cameras fastest on Windows; MSMF is the fallback there
    if sys.platform == "win32":
        return [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY]
    return [cv2.CAP_ANY]


def _camera_candidates(preferred: int) -> Iterator[Tuple[int, int]]:
    """(index, backend) pairs to try, preferred camera first."""
    indices = [preferred] + [i for i in (0, 1, 2) if i != preferred]
    for backend in _capture_backends():
        for index in indices:
            yield index, backend


class VideoSourceHandler:
    """
    Owns one cv2.VideoCapture for the duration of a session.

    Usage:
        source = VideoSourceHandler()
        source.initialize_source()          # webcam
        ok, frame = source.read_frame()
        source.release()
    """

    def __init__(self):
        self.cap: Optional[cv2.VideoCapture] = None
        self.source_type: Optional[VideoSourceType] = None
        self.source_path: Optional[str] = None

    def initialize_source(
        self,
        source_type: VideoSourceType = VideoSourceType.WEBCAM,
        source_path: Optional[str] = None,
        camera_index: int = config.CAMERA_INDEX,
        width: int = config.CAMERA_WIDTH,
        height: int = config.CAMERA_HEIGHT,
    ) -> None:
        """
        Open the webcam or a video file, releasing anything opened before.

        Raises:
            VideoSourceError: camera denied/busy/missing, or file unreadable
            ValueError: FILE without a path, or an unknown source type
        """
        self.release()

        if source_type == VideoSourceType.WEBCAM:
            self.cap = self._open_webcam(camera_index)
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        elif source_type == VideoSourceType.FILE:
            if not source_path:
                raise ValueError("source_path is required for FILE source type")
            cap = cv2.VideoCapture(source_path)
            if not cap.isOpened():
                cap.release()
                raise VideoSourceError(f"Could not open video file: {source_path}")
            self.cap = cap
        else:
            raise ValueError(f"Unsupported source type: {source_type}")

        self.source_type = source_type
        self.source_path = source_path

    @staticmethod
    def _open_webcam(camera_index: int) -> cv2.VideoCapture:
        # A camera can report opened yet never deliver a frame (e.g. held by another app)
        for index, backend in _camera_candidates(camera_index):
            cap = cv2.VideoCapture(index, backend)
            if cap.isOpened() and cap.read()[0]:
                logger.info("Camera %d opened (backend %d)", index, backend)
                return cap
            cap.release()
        raise VideoSourceError(CAMERA_DENIED_MESSAGE)

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """(True, BGR frame) on success, (False, None) when no frame is available."""
        if self.cap is None or not self.cap.isOpened():
            return False, None
        ok, frame = self.cap.read()
        if not ok or frame is None:
            return False, None
        return True, frame

    def is_open(self) -> bool:
        return self.cap is not None and self.cap.isOpened()

    def release(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        self.source_type = None
        self.source_path = None
