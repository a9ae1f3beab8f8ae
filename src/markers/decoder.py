"""
Codice marker decoding.

A candidate quadrilateral is perspective-corrected into a square raster of
6x6 cells: a one-cell border ring around a 4x4 data grid. Exactly one of the
four data-grid corner cells is light; its position gives the marker's
rotation. The remaining 12 cells, read row-major after undoing the rotation,
carry the marker id with the first cell as the least significant bit.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import cv2
import numpy as np

from .preprocess import to_gray
from .structures import INNER_GRID_SIZE, DecodedMarker, DetectionConfiguration

LOGGER = logging.getLogger(__name__)

# Data-grid corner cells in TL, TR, BR, BL order.
CORNER_CELLS = ((0, 0), (0, INNER_GRID_SIZE - 1),
                (INNER_GRID_SIZE - 1, INNER_GRID_SIZE - 1), (INNER_GRID_SIZE - 1, 0))
CORNER_ROTATIONS = (0, 90, 180, 270)


class OrientationKind(Enum):
    """Outcome of inspecting the four orientation corner cells."""
    NO_ORIENTATION = "no_orientation"
    AMBIGUOUS = "ambiguous"
    ORIENTED = "oriented"


@dataclass(frozen=True)
class Orientation:
    """Tagged orientation result; ``rotation`` is set only when ORIENTED."""

    kind: OrientationKind
    rotation: Optional[int] = None

    @property
    def is_oriented(self) -> bool:
        return self.kind is OrientationKind.ORIENTED


def classify_orientation(corner_cells: Sequence[bool]) -> Orientation:
    """Classify the light/dark state of the TL, TR, BR, BL corner cells.

    Exactly one light corner yields its rotation (0, 90, 180, 270 degrees for
    TL, TR, BR, BL). No light corner is NO_ORIENTATION; two or more is
    AMBIGUOUS.
    """
    if len(corner_cells) != 4:
        raise ValueError(f"Expected 4 corner cells, got {len(corner_cells)}")

    light = [i for i, is_light in enumerate(corner_cells) if is_light]
    if not light:
        return Orientation(OrientationKind.NO_ORIENTATION)
    if len(light) > 1:
        return Orientation(OrientationKind.AMBIGUOUS)
    return Orientation(OrientationKind.ORIENTED, CORNER_ROTATIONS[light[0]])


@dataclass
class RasterDecode:
    """Id, confidence and rotation read from a deskewed raster."""

    marker_id: int
    confidence: float
    rotation: int


def compute_confidence(marker_id: int, max_id: int) -> float:
    """Additive confidence for a structurally valid decode."""
    confidence = 0.5
    if 0 <= marker_id <= max_id:
        confidence += 0.3
    confidence += 0.2
    return min(1.0, confidence)


def edge_angle(start: np.ndarray, end: np.ndarray) -> float:
    """Angle in degrees of the vector from ``start`` to ``end``."""
    return math.degrees(math.atan2(float(end[1] - start[1]), float(end[0] - start[0])))


class MarkerDecoder:
    """Decodes candidate quadrilaterals into Codice marker ids."""

    def __init__(self, config: Optional[DetectionConfiguration] = None):
        self.config = config or DetectionConfiguration()

        size = self.config.raster_size
        self._destination = np.array(
            [[0, 0], [size - 1, 0], [size - 1, size - 1], [0, size - 1]],
            dtype=np.float32,
        )

        cell = self.config.cell_size
        ring = np.ones((size, size), dtype=bool)
        ring[cell:size - cell, cell:size - cell] = False
        self._ring_mask = ring

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def decode(self, corners: np.ndarray, frame: np.ndarray) -> Optional[DecodedMarker]:
        """Decode the marker bounded by ``corners`` in ``frame``.

        Args:
            corners: Four points ordered TL, TR, BR, BL
            frame: Preprocessed grayscale frame

        Returns:
            DecodedMarker, or None when the region is not a valid marker
        """
        pts = np.asarray(corners, dtype=np.float32)
        if pts.shape != (4, 2):
            LOGGER.debug("Rejected candidate with corner array of shape %s", pts.shape)
            return None

        top_edge = float(np.linalg.norm(pts[1] - pts[0]))
        if top_edge < self.config.min_marker_size or top_edge > self.config.max_marker_size:
            LOGGER.debug("Rejected candidate with edge length %.1f px", top_edge)
            return None

        deskew_angle = edge_angle(pts[0], pts[1])
        raster = self.deskew(pts, frame)

        result = self.decode_raster(raster)
        if result is None:
            return None

        cx, cy = pts.mean(axis=0)
        return DecodedMarker(
            marker_id=result.marker_id,
            confidence=result.confidence,
            center=(float(cx), float(cy)),
            angle=(deskew_angle + result.rotation) % 360.0,
            deskew_angle=deskew_angle,
            corners=pts.copy(),
            rotation=result.rotation,
        )

    def deskew(self, corners: np.ndarray, frame: np.ndarray) -> np.ndarray:
        """Perspective-map the quadrilateral onto the square marker raster."""
        frame = to_gray(frame)
        size = self.config.raster_size
        transform = cv2.getPerspectiveTransform(corners.astype(np.float32), self._destination)
        return cv2.warpPerspective(frame, transform, (size, size))

    def decode_raster(self, raster: np.ndarray) -> Optional[RasterDecode]:
        """Decode an already deskewed ``raster_size`` x ``raster_size`` image."""
        size = self.config.raster_size
        if raster is None or raster.shape[:2] != (size, size):
            LOGGER.debug("Raster has unexpected shape %s", None if raster is None else raster.shape)
            return None
        raster = to_gray(raster)

        binary = raster > self.config.luma_threshold
        grid = self._sample_grid(binary)

        corners = [grid[r, c] for r, c in CORNER_CELLS]
        light_corners = sum(corners)
        if light_corners in (0, INNER_GRID_SIZE):
            binary = ~binary
            grid = ~grid
            corners = [not c for c in corners]

        if not self._border_is_consistent(binary):
            LOGGER.debug("Rejected raster with inconsistent border")
            return None

        orientation = classify_orientation(corners)
        if not orientation.is_oriented:
            LOGGER.debug("Rejected raster: %s", orientation.kind.value)
            return None

        marker_id = self._read_bits(grid, orientation.rotation)
        if marker_id > self.config.max_marker_id:
            LOGGER.debug(
                "Rejected id %d outside %d-bit range", marker_id, self.config.data_bits
            )
            return None

        return RasterDecode(
            marker_id=marker_id,
            confidence=compute_confidence(marker_id, self.config.max_marker_id),
            rotation=orientation.rotation,
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _sample_grid(self, binary: np.ndarray) -> np.ndarray:
        """Return a 4x4 boolean grid, True where a data cell is light."""
        cell = self.config.cell_size
        sample = self.config.sample_size
        margin = (cell - sample) // 2

        grid = np.zeros((INNER_GRID_SIZE, INNER_GRID_SIZE), dtype=bool)
        for row in range(INNER_GRID_SIZE):
            for col in range(INNER_GRID_SIZE):
                y0 = (row + 1) * cell + margin
                x0 = (col + 1) * cell + margin
                patch = binary[y0:y0 + sample, x0:x0 + sample]
                grid[row, col] = patch.mean() * 255 > 127
        return grid

    def _border_is_consistent(self, binary: np.ndarray) -> bool:
        # After polarity normalisation the orientation cell is light, so the
        # ring around the data grid is expected to be dark.
        ring = binary[self._ring_mask]
        dark_fraction = 1.0 - float(ring.mean())
        return dark_fraction >= self.config.border_min_consistency

    def _read_bits(self, grid: np.ndarray, rotation: int) -> int:
        # Rotating counter-clockwise by the detected rotation brings the
        # orientation cell back to the top-left.
        upright = np.rot90(grid, k=rotation // 90)
        corner_set = set(CORNER_CELLS)

        marker_id = 0
        bit = 0
        for row in range(INNER_GRID_SIZE):
            for col in range(INNER_GRID_SIZE):
                if (row, col) in corner_set:
                    continue
                if upright[row, col]:
                    marker_id |= 1 << bit
                bit += 1
        return marker_id
