"""
Video input utilities.

This module handles camera and video-file capture, and the paced capture
thread that hands each frame to the processing callback.
"""

import logging
import platform
import threading
import time
from typing import Callable, List, Optional

import cv2
import numpy as np

FrameCallback = Callable[[np.ndarray, float], None]


class VideoProcessor:
    """Handles video input capture."""

    def __init__(self, config=None):
        """Initialize video processor.

        Args:
            config: Configuration dictionary
        """
        self.config = config or {}
        self.cap: Optional[cv2.VideoCapture] = None
        self.logger = logging.getLogger(__name__)

        # Video settings from config
        self.camera_id = self.config.get('camera_id', 0)
        self.width = self.config.get('video_width', 640)
        self.height = self.config.get('video_height', 480)
        self.fps = self.config.get('video_fps', 30)

        # Backend priority list
        self.backend_priority = self._resolve_backend_priority(
            self.config.get('camera_backend_priority')
        )
        self.selected_backend: Optional[int] = None

        # Frame warmup attempts
        self.max_init_attempts = self.config.get('camera_init_attempts', 10)
        self.max_read_failures = self.config.get('camera_max_read_failures', 30)

        # Capture thread state
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.frames_captured = 0

    @staticmethod
    def _resolve_backend_priority(user_priority: Optional[List[int]]) -> List[int]:
        """Determine backend priority order based on platform and config."""
        if user_priority:
            return user_priority

        system = platform.system()
        backends: List[int] = []

        def add_backend(name: str):
            value = getattr(cv2, name, None)
            if value is not None:
                backends.append(value)

        if system == 'Darwin':
            add_backend('CAP_AVFOUNDATION')
        elif system == 'Windows':
            add_backend('CAP_DSHOW')
            add_backend('CAP_MSMF')
        else:
            add_backend('CAP_V4L2')
            add_backend('CAP_GSTREAMER')

        add_backend('CAP_ANY')
        return backends or [cv2.CAP_ANY]

    @staticmethod
    def _backend_name(backend: Optional[int]) -> str:
        """Return human-readable name for backend constant."""
        if backend is None:
            return "Unknown"

        for attr in dir(cv2):
            if attr.startswith("CAP_") and getattr(cv2, attr) == backend:
                return attr
        return f"Backend({backend})"

    def initialize(self):
        """Open the configured camera, trying each backend in turn.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        self.cleanup()

        for backend in self.backend_priority:
            self.logger.info(
                "Attempting to initialize camera %s using backend %s",
                self.camera_id,
                self._backend_name(backend),
            )
            try:
                cap = cv2.VideoCapture(self.camera_id, backend)
            except cv2.error as e:
                self.logger.error(
                    "Error initializing camera %s with backend %s: %s",
                    self.camera_id,
                    self._backend_name(backend),
                    e,
                )
                continue

            if not cap.isOpened():
                self.logger.warning(
                    "Failed to open camera %s with backend %s",
                    self.camera_id,
                    self._backend_name(backend),
                )
                cap.release()
                continue

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)

            # Warm up and verify frame capture
            test_frame = self._warmup_camera(cap)
            if test_frame is None:
                self.logger.warning(
                    "Camera opened but failed to provide frames (backend %s)",
                    self._backend_name(backend),
                )
                cap.release()
                continue

            self.cap = cap
            self.selected_backend = backend
            info = self.get_frame_info()
            self.logger.info(
                "Camera initialized with backend %s: %sx%s @ %sfps",
                info['backend'],
                info['width'],
                info['height'],
                info['fps'],
            )
            return True

        self.logger.error(
            "Unable to initialize camera %s with available backends: %s",
            self.camera_id,
            [self._backend_name(b) for b in self.backend_priority],
        )
        return False

    def _warmup_camera(self, cap: cv2.VideoCapture) -> Optional[np.ndarray]:
        """Capture a few frames to allow camera to warm up."""
        for attempt in range(1, self.max_init_attempts + 1):
            ret, frame = cap.read()
            if ret and frame is not None and frame.size > 0:
                if frame.mean() == 0:
                    # Completely black frame - continue warming up
                    self.logger.debug(
                        "Warmup frame %s captured but appears black; retrying...", attempt
                    )
                    continue
                return frame
        return None

    def capture_frame(self):
        """Capture a frame from the video source.

        Returns:
            np.ndarray or None: Captured frame or None if failed
        """
        if self.cap is None or not self.cap.isOpened():
            return None

        ret, frame = self.cap.read()
        if not ret or frame is None:
            self.logger.debug("Failed to capture frame")
            return None
        return frame

    def load_video_file(self, filepath):
        """Load a video file instead of camera.

        Args:
            filepath: Path to video file

        Returns:
            bool: True if load successful, False otherwise
        """
        self.cleanup()
        self.cap = cv2.VideoCapture(filepath)

        if not self.cap.isOpened():
            self.logger.error(f"Failed to open video file: {filepath}")
            self.cap = None
            return False

        self.logger.info(f"Video file loaded: {filepath}")
        return True

    def get_frame_info(self):
        """Get information about the current video stream.

        Returns:
            dict: Frame information
        """
        if self.cap is None:
            return {}

        return {
            'width': int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            'height': int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            'fps': int(self.cap.get(cv2.CAP_PROP_FPS)),
            'backend': self._backend_name(self.selected_backend),
        }

    # ------------------------------------------------------------------ #
    # Capture thread
    # ------------------------------------------------------------------ #
    def start_capture(self, callback: FrameCallback) -> bool:
        """Start the producer thread.

        Each captured frame is passed to ``callback(frame, timestamp)`` on
        the capture thread; the next frame is read only after it returns.

        Returns:
            bool: True if the thread was started
        """
        if self.is_capturing:
            self.logger.warning("Capture already running")
            return False
        if self.cap is None:
            self.logger.error("Cannot start capture before the video source is opened")
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._capture_loop, args=(callback,), name="codice-capture", daemon=True
        )
        self._thread.start()
        self.logger.info("Capture started at %s fps", self.fps)
        return True

    def stop_capture(self, timeout: float = 2.0):
        if self._thread is None:
            return
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        self.logger.info("Capture stopped after %d frames", self.frames_captured)

    @property
    def is_capturing(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _capture_loop(self, callback: FrameCallback):
        frame_budget = 1.0 / max(self.fps, 1)
        failures = 0

        while not self._stop_event.is_set():
            started = time.monotonic()

            frame = self.capture_frame()
            if frame is None:
                failures += 1
                if failures >= self.max_read_failures:
                    self.logger.warning("Video source stopped delivering frames")
                    break
            else:
                failures = 0
                self.frames_captured += 1
                try:
                    callback(frame, started)
                except Exception:
                    self.logger.exception("Frame callback failed")

            remaining = frame_budget - (time.monotonic() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)

    def cleanup(self):
        """Clean up video resources."""
        self.stop_capture()
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Video processor cleaned up")
