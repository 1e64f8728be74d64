"""
MediaPipe Face Landmark Detection Implementation

This module provides a MediaPipe-based implementation of the FaceDetectorInterface
using the Face Landmarker task in VIDEO running mode (tracking between frames).
The model file is fetched on first use when it is not already on disk.
"""

import logging
import os
from typing import List

import cv2
import mediapipe as mp
import numpy as np
import requests
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

import config
from utils.face_detection_interface import FaceDetectionResult, FaceDetectorInterface

logger = logging.getLogger(__name__)


def ensure_face_landmarker_model(
    path: str = config.FACE_LANDMARKER_MODEL_PATH,
    url: str = config.FACE_LANDMARKER_MODEL_URL,
) -> str:
    """Return path to face_landmarker.task, downloading it if missing."""
    if os.path.isfile(path):
        return path
    logger.info("Downloading face landmarker model to %s", path)
    try:
        resp = requests.get(url, timeout=60)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise FileNotFoundError(
            f"Could not download face_landmarker.task. "
            f"Download manually from {url} and place it at {path}"
        ) from e
    tmp_path = path + ".part"
    with open(tmp_path, "wb") as f:
        f.write(resp.content)
    os.replace(tmp_path, path)
    return path


class MediaPipeFaceDetector(FaceDetectorInterface):
    """
    MediaPipe Face Landmarker detector.

    Tracks a single face and returns its normalized landmarks.
    """

    def __init__(
        self,
        min_detection_confidence: float = config.MIN_FACE_DETECTION_CONFIDENCE,
        min_tracking_confidence: float = config.MIN_FACE_TRACKING_CONFIDENCE,
        num_faces: int = 1,
    ):
        """
        Initialize the Face Landmarker.

        Args:
            min_detection_confidence: Minimum confidence for face detection (0-1)
            min_tracking_confidence: Minimum confidence for frame-to-frame tracking (0-1)
            num_faces: Maximum faces returned; the capture unit only uses the first
        """
        self._det_conf = max(0.01, min(0.99, float(min_detection_confidence)))
        self._track_conf = max(0.01, min(0.99, float(min_tracking_confidence)))

        model_path = ensure_face_landmarker_model()
        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=num_faces,
            min_face_detection_confidence=self._det_conf,
            min_tracking_confidence=self._track_conf,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        self._last_timestamp_ms = -1

    def detect_faces(self, image: np.ndarray, timestamp_ms: int) -> List[FaceDetectionResult]:
        """
        Run the landmarker on one BGR frame.

        VIDEO mode rejects non-increasing timestamps, so equal or older ones are
        bumped by 1 ms.
        """
        if image is None or image.size == 0:
            return []

        if timestamp_ms <= self._last_timestamp_ms:
            timestamp_ms = self._last_timestamp_ms + 1
        self._last_timestamp_ms = timestamp_ms

        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = self._landmarker.detect_for_video(mp_image, timestamp_ms)
        if not result.face_landmarks:
            return []

        faces = []
        for face_landmarks in result.face_landmarks:
            landmarks = np.array(
                [[lm.x, lm.y, lm.z] for lm in face_landmarks], dtype=np.float32
            )
            faces.append(FaceDetectionResult(landmarks=landmarks))
        return faces

    def get_name(self) -> str:
        """Get detector name."""
        return "mediapipe"

    def close(self) -> None:
        """Release the landmarker."""
        try:
            self._landmarker.close()
        except Exception as e:
            logger.warning("Face landmarker close failed: %s", e)
