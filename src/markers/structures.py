"""
Shared data structures for Codice marker detection.

Holds the detection configuration used by the preprocessor, the candidate
extractor and the decoder, together with the per-frame containers those
stages exchange.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

# Codice markers carry a 4x4 data grid surrounded by a one-cell border ring.
INNER_GRID_SIZE = 4
MAX_DATA_BITS = INNER_GRID_SIZE * INNER_GRID_SIZE - 4
MAX_MARKER_ID = (1 << MAX_DATA_BITS) - 1


@dataclass
class DetectionConfiguration:
    """Configuration for the Codice detection stages."""

    # Preprocessing
    blur_kernel: int = 1  # 1 disables blurring, otherwise an odd kernel size
    contrast_alpha: float = 1.3
    brightness_beta: float = 20.0
    canny_low: float = 30.0
    canny_high: float = 100.0
    morph_kernel: int = 3

    # Candidate extraction
    min_contour_area: float = 500.0
    max_contour_area: float = 100000.0
    min_contour_perimeter: float = 80.0
    approx_epsilon_ratio: float = 0.05
    min_aspect_ratio: float = 0.8
    max_aspect_ratio: float = 1.25

    # Decoding
    min_marker_size: float = 40.0
    max_marker_size: float = 200.0
    grid_cells: int = 6  # inner grid plus the border ring on each side
    cell_size: int = 20
    sample_size: int = 10  # side of the centred patch sampled per cell
    luma_threshold: int = 70
    border_min_consistency: float = 0.4
    data_bits: int = MAX_DATA_BITS

    # Filtering
    min_confidence: float = 0.7

    def __post_init__(self):
        if self.grid_cells != INNER_GRID_SIZE + 2:
            raise ValueError(
                f"grid_cells must be {INNER_GRID_SIZE + 2}, got {self.grid_cells}"
            )
        if self.cell_size <= 0 or not 0 < self.sample_size <= self.cell_size:
            raise ValueError("sample_size must be within (0, cell_size]")
        if not 1 <= self.data_bits <= MAX_DATA_BITS:
            raise ValueError(
                f"data_bits must be within [1, {MAX_DATA_BITS}], got {self.data_bits}"
            )
        if self.min_marker_size > self.max_marker_size:
            raise ValueError("min_marker_size must not exceed max_marker_size")
        if self.min_aspect_ratio > self.max_aspect_ratio:
            raise ValueError("min_aspect_ratio must not exceed max_aspect_ratio")

    @property
    def raster_size(self) -> int:
        """Side length in pixels of the deskewed marker raster."""
        return self.grid_cells * self.cell_size

    @property
    def max_marker_id(self) -> int:
        return (1 << self.data_bits) - 1

    @classmethod
    def from_dict(cls, config: Optional[Dict] = None) -> DetectionConfiguration:
        """Build a configuration from a dict, ignoring unknown keys."""
        cfg_dict = dict(config or {})
        return cls(**{
            k: v for k, v in cfg_dict.items()
            if k in cls.__dataclass_fields__
        })


@dataclass
class CandidateRegion:
    """Quadrilateral that may contain a marker."""

    corners: np.ndarray  # shape (4, 2), float32, ordered TL, TR, BR, BL
    contour: np.ndarray  # source contour as returned by cv2.findContours

    @property
    def center(self) -> Tuple[float, float]:
        cx, cy = self.corners.mean(axis=0)
        return float(cx), float(cy)


@dataclass
class DecodedMarker:
    """A marker decoded from a single frame.

    Has no identity across frames; the lifecycle manager assigns that.
    """

    marker_id: int
    confidence: float
    center: Tuple[float, float]
    angle: float  # degrees in [0, 360), top edge plus orientation rotation
    deskew_angle: float  # degrees, top edge before perspective correction
    corners: np.ndarray = field(default_factory=lambda: np.zeros((4, 2), dtype=np.float32))
    rotation: int = 0  # orientation cell rotation in degrees (0, 90, 180, 270)
