"""
Face Detection Interface Module

This module defines an abstract interface for face landmark detectors, so the
capture unit can run against MediaPipe in production and a scripted fake in
tests without knowing which one it has.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

import numpy as np


@dataclass
class FaceDetectionResult:
    """
    Standardized face detection result.

    Landmarks are normalized image-space coordinates: x and y in 0-1, z a
    relative depth (same scale as x). One row per landmark.
    """
    landmarks: np.ndarray  # (N, 3) float array
    confidence: float = 1.0  # Detection confidence (0-1)


class FaceDetectorInterface(ABC):
    """
    Abstract interface for face landmark detectors.

    Results are ranked: index 0 is the detector's best candidate.
    """

    @abstractmethod
    def detect_faces(self, image: np.ndarray, timestamp_ms: int) -> List[FaceDetectionResult]:
        """
        Detect faces in a video frame.

        Args:
            image: BGR image array (OpenCV format)
            timestamp_ms: Monotonically increasing frame time in milliseconds

        Returns:
            List of FaceDetectionResult objects, best candidate first
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """
        Get the name of this detection method.

        Returns:
            String name (e.g., "mediapipe")
        """
        pass

    def close(self) -> None:
        """
        Clean up resources. Override if needed.

        Default implementation does nothing.
        """
        pass
