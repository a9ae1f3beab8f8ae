"""
Per-frame processing pipeline.

Runs detection, lifecycle tracking and TUIO publishing for one frame at a
time and publishes an immutable diagnostics snapshot for the debug viewer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from bridge import TuioBridge
from lifecycle import LifecycleEvent, LifecycleListener, MarkerLifecycleManager, MarkerPose, TrackedMarker
from markers.detector import DetectionResult, MarkerDetector
from markers.structures import DecodedMarker

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticsSnapshot:
    """Read-only view of one processed frame."""

    frame_index: int
    timestamp: float
    candidates: Tuple[np.ndarray, ...]
    markers: Tuple[DecodedMarker, ...]
    tracked: Tuple[TrackedMarker, ...]


@dataclass
class FrameResult:
    """Outcome of processing one frame."""

    success: bool
    frame_index: int
    detection: Optional[DetectionResult] = None
    events: List[LifecycleEvent] = field(default_factory=list)
    tracked: List[TrackedMarker] = field(default_factory=list)
    sent: bool = False
    processing_time: float = 0.0


@dataclass
class PipelineStatistics:
    frames: int = 0
    failed_frames: int = 0
    total_processing_time: float = 0.0

    @property
    def avg_processing_ms(self) -> float:
        return self.total_processing_time / max(self.frames, 1) * 1000.0


class CodicePipeline:
    """Detect -> lifecycle -> bridge, synchronously per frame."""

    def __init__(
        self,
        config: Optional[Dict] = None,
        bridge: Optional[TuioBridge] = None,
        listener: Optional[LifecycleListener] = None,
    ):
        self.config = config or {}
        self.detector = MarkerDetector(self.config.get("detection", {}))
        self.lifecycle = MarkerLifecycleManager(self.config.get("lifecycle", {}), listener=listener)
        self.bridge = bridge

        self.frame_index = 0
        self.stats = PipelineStatistics()
        self._snapshot: Optional[DiagnosticsSnapshot] = None

    @property
    def snapshot(self) -> Optional[DiagnosticsSnapshot]:
        """Diagnostics of the most recently completed frame."""
        return self._snapshot

    def process_frame(self, frame: Optional[np.ndarray], timestamp: Optional[float] = None) -> FrameResult:
        """Process one camera frame.

        Args:
            frame: BGR or grayscale image
            timestamp: Monotonic capture time in seconds (defaults to now)

        Returns:
            FrameResult; on a failed detection no tracking state is changed
        """
        start = time.perf_counter()
        if timestamp is None:
            timestamp = time.monotonic()

        detection = self.detector.detect(frame)
        if not detection.success:
            self.stats.failed_frames += 1
            LOGGER.debug("Frame skipped: %s", detection.error)
            return FrameResult(success=False, frame_index=self.frame_index, detection=detection)

        self.frame_index += 1
        width, height = detection.frame_size
        poses = [MarkerPose.from_decoded(m, width, height) for m in detection.markers]

        events = self.lifecycle.update(poses, timestamp)
        tracked = self.lifecycle.get_tracked_markers()

        sent = False
        if self.bridge is not None and self.bridge.is_running:
            sent = self.bridge.update(tracked)

        self._snapshot = DiagnosticsSnapshot(
            frame_index=self.frame_index,
            timestamp=timestamp,
            candidates=tuple(c.corners.copy() for c in detection.candidates),
            markers=tuple(detection.markers),
            tracked=tuple(tracked),
        )

        elapsed = time.perf_counter() - start
        self.stats.frames += 1
        self.stats.total_processing_time += elapsed

        return FrameResult(
            success=True,
            frame_index=self.frame_index,
            detection=detection,
            events=events,
            tracked=tracked,
            sent=sent,
            processing_time=elapsed,
        )

    def statistics_summary(self) -> str:
        metrics = self.detector.get_metrics()
        summary = (
            f"frames={self.stats.frames} failed={self.stats.failed_frames} "
            f"avg={self.stats.avg_processing_ms:.1f}ms "
            f"candidates={metrics.detection_attempts} markers={metrics.markers_detected} "
            f"tracked={len(self.lifecycle)}"
        )
        if self.bridge is not None:
            summary += f" | tuio: {self.bridge.get_statistics().summary()}"
        return summary

    def reset(self):
        self.lifecycle.reset()
        self.detector.reset_metrics()
        self.stats = PipelineStatistics()
        self._snapshot = None
