"""
Per-frame Codice marker detection.

Chains the image processor, the candidate extractor and the decoder, and
keeps running counters of what each frame produced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import cv2
import numpy as np

from .candidates import CandidateExtractor
from .decoder import MarkerDecoder
from .preprocess import ImageProcessor
from .structures import CandidateRegion, DecodedMarker, DetectionConfiguration

LOGGER = logging.getLogger(__name__)


@dataclass
class DetectionResult:
    """Result container for marker detection on a frame."""

    success: bool
    candidates: List[CandidateRegion] = field(default_factory=list)
    markers: List[DecodedMarker] = field(default_factory=list)
    preprocessed: Optional[np.ndarray] = None
    edges: Optional[np.ndarray] = None
    error: str = ""

    @property
    def frame_size(self) -> Optional[tuple]:
        """(width, height) of the processed frame, when available."""
        if self.preprocessed is None:
            return None
        height, width = self.preprocessed.shape[:2]
        return width, height


@dataclass
class DetectionMetrics:
    """Accumulated detection counters."""

    frames_processed: int = 0
    detection_attempts: int = 0
    markers_detected: int = 0
    failed_frames: int = 0

    @property
    def detection_rate(self) -> float:
        """Markers decoded per candidate examined."""
        return self.markers_detected / max(self.detection_attempts, 1)


class MarkerDetector:
    """Detects and decodes Codice markers in video frames."""

    def __init__(self, config: Optional[Union[Dict, DetectionConfiguration]] = None):
        if isinstance(config, DetectionConfiguration):
            self.config = config
        else:
            self.config = DetectionConfiguration.from_dict(config)

        self.processor = ImageProcessor(self.config)
        self.extractor = CandidateExtractor(self.config)
        self.decoder = MarkerDecoder(self.config)
        self.metrics = DetectionMetrics()

        LOGGER.info(
            "MarkerDetector initialized: %dx%d raster, %d data bits, min confidence %.2f",
            self.config.raster_size,
            self.config.raster_size,
            self.config.data_bits,
            self.config.min_confidence,
        )

    def detect(self, frame: Optional[np.ndarray]) -> DetectionResult:
        """Detect markers in a frame.

        Args:
            frame: BGR, BGRA or grayscale image

        Returns:
            DetectionResult; ``success`` is False for empty or malformed
            input, or when OpenCV fails on the frame
        """
        if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
            return DetectionResult(success=False, error="empty frame")

        try:
            preprocessed, edges = self.processor.process(frame)
            candidates = self.extractor.extract(edges)

            markers: List[DecodedMarker] = []
            for candidate in candidates:
                decoded = self.decoder.decode(candidate.corners, preprocessed)
                if decoded is None:
                    continue
                if decoded.confidence < self.config.min_confidence:
                    LOGGER.debug(
                        "Dropped marker %d with confidence %.2f",
                        decoded.marker_id,
                        decoded.confidence,
                    )
                    continue
                markers.append(decoded)
        except (cv2.error, ValueError) as e:
            LOGGER.error("Marker detection failed: %s", e)
            self.metrics.failed_frames += 1
            return DetectionResult(success=False, error=str(e))

        self.metrics.frames_processed += 1
        self.metrics.detection_attempts += len(candidates)
        self.metrics.markers_detected += len(markers)

        return DetectionResult(
            success=True,
            candidates=candidates,
            markers=markers,
            preprocessed=preprocessed,
            edges=edges,
        )

    def get_metrics(self) -> DetectionMetrics:
        """Get accumulated detection metrics."""
        return self.metrics

    def reset_metrics(self):
        self.metrics = DetectionMetrics()
