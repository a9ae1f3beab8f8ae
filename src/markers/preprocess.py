"""
Frame preprocessing for marker detection.

Converts camera frames into the grayscale image the decoder samples and the
binary edge image the candidate extractor traces.
"""

from __future__ import annotations

import logging
from typing import Tuple

import cv2
import numpy as np

from .structures import DetectionConfiguration

LOGGER = logging.getLogger(__name__)


def to_gray(frame: np.ndarray) -> np.ndarray:
    """Single-channel view of a BGR, BGRA or grayscale frame."""
    if frame.ndim == 2:
        return frame
    channels = frame.shape[2]
    if channels == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    if channels == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    if channels == 1:
        return frame[:, :, 0]
    raise ValueError(f"Unsupported frame with {channels} channels")


class ImageProcessor:
    """Grayscale, blur, contrast and edge stages applied before detection."""

    def __init__(self, config: DetectionConfiguration):
        if config.blur_kernel < 1 or (config.blur_kernel > 1 and config.blur_kernel % 2 == 0):
            raise ValueError(f"blur_kernel must be 1 or an odd size, got {config.blur_kernel}")
        if config.contrast_alpha <= 0:
            raise ValueError("contrast_alpha must be positive")
        if config.canny_low < 0 or config.canny_low >= config.canny_high:
            raise ValueError(
                f"Invalid Canny thresholds: low={config.canny_low}, high={config.canny_high}"
            )
        if config.morph_kernel < 1:
            raise ValueError("morph_kernel must be positive")

        self.config = config
        self._morph_element = cv2.getStructuringElement(
            cv2.MORPH_RECT, (config.morph_kernel, config.morph_kernel)
        )

    def preprocess(self, frame: np.ndarray) -> np.ndarray:
        """Return the grayscale, contrast-adjusted frame.

        Args:
            frame: BGR, BGRA or grayscale image

        Returns:
            Single-channel uint8 image
        """
        if frame is None or frame.size == 0:
            raise ValueError("Cannot preprocess an empty frame")

        gray = to_gray(frame)

        if self.config.blur_kernel > 1:
            k = self.config.blur_kernel
            gray = cv2.GaussianBlur(gray, (k, k), 0)

        if self.config.contrast_alpha != 1.0 or self.config.brightness_beta != 0:
            gray = cv2.convertScaleAbs(
                gray,
                alpha=self.config.contrast_alpha,
                beta=self.config.brightness_beta,
            )

        return gray

    def detect_edges(self, gray: np.ndarray) -> np.ndarray:
        """Canny edges closed with a small rectangular kernel."""
        edges = cv2.Canny(gray, self.config.canny_low, self.config.canny_high)
        return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, self._morph_element)

    def process(self, frame: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Run the full preprocessing chain.

        Returns:
            (preprocessed grayscale frame, binary edge image)
        """
        gray = self.preprocess(frame)
        return gray, self.detect_edges(gray)
