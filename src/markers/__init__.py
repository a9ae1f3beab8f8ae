"""
Marker detection subpackage.

Locates square Codice fiducials in camera frames and decodes their 12-bit
identifier:

- ImageProcessor: grayscale, contrast and edge preprocessing
- CandidateExtractor: near-square quadrilaterals from the edge image
- MarkerDecoder: deskew, orientation and bit pattern
- MarkerDetector: the three stages above for one frame
"""

from .candidates import CandidateExtractor, order_corners
from .decoder import (
    MarkerDecoder,
    Orientation,
    OrientationKind,
    RasterDecode,
    classify_orientation,
    compute_confidence,
)
from .detector import DetectionMetrics, DetectionResult, MarkerDetector
from .preprocess import ImageProcessor
from .structures import (
    MAX_MARKER_ID,
    CandidateRegion,
    DecodedMarker,
    DetectionConfiguration,
)

__all__ = [
    "MAX_MARKER_ID",
    "CandidateExtractor",
    "CandidateRegion",
    "DecodedMarker",
    "DetectionConfiguration",
    "DetectionMetrics",
    "DetectionResult",
    "ImageProcessor",
    "MarkerDecoder",
    "MarkerDetector",
    "Orientation",
    "OrientationKind",
    "RasterDecode",
    "classify_orientation",
    "compute_confidence",
    "order_corners",
]
