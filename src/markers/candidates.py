"""
Candidate region extraction.

Traces external contours in a binary edge image and keeps the ones that
simplify to a near-square quadrilateral.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import cv2
import numpy as np

from .structures import CandidateRegion, DetectionConfiguration

LOGGER = logging.getLogger(__name__)


def order_corners(points: np.ndarray) -> np.ndarray:
    """Order four points TL, TR, BR, BL.

    Points are sorted by angle around their centroid, which walks them
    clockwise in image coordinates, then rolled so the point with the
    smallest x + y comes first.
    """
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    pts = pts[np.argsort(angles)]
    start = int(np.argmin(pts.sum(axis=1)))
    return np.roll(pts, -start, axis=0)


class CandidateExtractor:
    """Finds quadrilateral marker candidates in an edge image."""

    def __init__(self, config: Optional[DetectionConfiguration] = None):
        self.config = config or DetectionConfiguration()

    def extract(self, edges: np.ndarray) -> List[CandidateRegion]:
        """Return all near-square quadrilaterals found in ``edges``.

        An empty list is a normal result.
        """
        if edges is None or edges.size == 0:
            return []

        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        candidates: List[CandidateRegion] = []
        for contour in contours:
            candidate = self._evaluate_contour(contour)
            if candidate is not None:
                candidates.append(candidate)

        LOGGER.debug("%d contours -> %d candidates", len(contours), len(candidates))
        return candidates

    def _evaluate_contour(self, contour: np.ndarray) -> Optional[CandidateRegion]:
        cfg = self.config

        area = cv2.contourArea(contour)
        if area < cfg.min_contour_area or area > cfg.max_contour_area:
            return None

        perimeter = cv2.arcLength(contour, True)
        if perimeter < cfg.min_contour_perimeter:
            return None

        approx = cv2.approxPolyDP(contour, cfg.approx_epsilon_ratio * perimeter, True)
        if len(approx) != 4:
            LOGGER.debug("Rejected contour with %d corners", len(approx))
            return None

        _, _, width, height = cv2.boundingRect(approx)
        if height == 0:
            return None
        aspect = width / float(height)
        if aspect < cfg.min_aspect_ratio or aspect > cfg.max_aspect_ratio:
            LOGGER.debug("Rejected quadrilateral with aspect ratio %.2f", aspect)
            return None

        return CandidateRegion(corners=order_corners(approx), contour=contour)
