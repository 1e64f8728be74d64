"""
Utilities package for the Attention Session Client.

This package contains the camera, landmark detection and media helpers used
while a session is active. The MediaPipe detector is imported on first use
(see landmark_capture._default_detector).
"""

from .video_source_handler import VideoSourceHandler, VideoSourceType, VideoSourceError
from .face_detection_interface import FaceDetectorInterface, FaceDetectionResult
from .landmark_capture import LandmarkCaptureUnit, LandmarkSample, SendThrottle
from .fullscreen import request_fullscreen, FullscreenError

__all__ = [
    'VideoSourceHandler',
    'VideoSourceType',
    'VideoSourceError',
    'FaceDetectorInterface',
    'FaceDetectionResult',
    'LandmarkCaptureUnit',
    'LandmarkSample',
    'SendThrottle',
    'request_fullscreen',
    'FullscreenError',
]
