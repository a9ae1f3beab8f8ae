"""
Marker lifecycle tracking.

Turns the per-frame list of decoded markers into stable tracked records:
one record per marker id, a session id assigned on first sighting, and
DETECTED / UPDATED / LOST transitions as markers appear, stay and vanish.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from markers.structures import MAX_MARKER_ID, DecodedMarker

LOGGER = logging.getLogger(__name__)


class MarkerState(Enum):
    """Lifecycle state of a tracked marker."""
    DETECTED = "detected"
    ACTIVE = "active"  # logical "currently present" label, never emitted
    UPDATED = "updated"
    LOST = "lost"


@dataclass
class MarkerPose:
    """Position of one decoded marker in normalised frame coordinates."""

    marker_id: int
    x: float
    y: float
    angle: float = 0.0  # degrees
    confidence: float = 1.0

    @classmethod
    def from_decoded(cls, marker: DecodedMarker, frame_width: int, frame_height: int) -> MarkerPose:
        """Normalise a decoded marker's pixel centre by the frame size."""
        if frame_width <= 0 or frame_height <= 0:
            raise ValueError(f"Invalid frame size {frame_width}x{frame_height}")
        cx, cy = marker.center
        return cls(
            marker_id=marker.marker_id,
            x=min(max(cx / frame_width, 0.0), 1.0),
            y=min(max(cy / frame_height, 0.0), 1.0),
            angle=marker.angle,
            confidence=marker.confidence,
        )


def validate_pose(pose: MarkerPose) -> Optional[str]:
    """Return a description of the first problem with ``pose``, or None."""
    if not 0 <= pose.marker_id <= MAX_MARKER_ID:
        return f"marker id {pose.marker_id} outside [0, {MAX_MARKER_ID}]"
    for name in ("x", "y", "confidence"):
        value = getattr(pose, name)
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            return f"{name}={value} outside [0, 1]"
    return None


class HistoryRing:
    """Fixed-capacity ring of (state, timestamp) pairs.

    Storage is a preallocated list indexed by a moving head; once full, each
    append overwrites the oldest entry.
    """

    def __init__(self, capacity: int = 10):
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self.capacity = capacity
        self._slots: List[Optional[Tuple[MarkerState, float]]] = [None] * capacity
        self._head = 0  # next slot to write
        self._size = 0

    def append(self, state: MarkerState, timestamp: float):
        self._slots[self._head] = (state, timestamp)
        self._head = (self._head + 1) % self.capacity
        self._size = min(self._size + 1, self.capacity)

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[Tuple[MarkerState, float]]:
        """Iterate entries oldest first."""
        start = (self._head - self._size) % self.capacity
        for offset in range(self._size):
            yield self._slots[(start + offset) % self.capacity]

    def latest(self) -> Optional[Tuple[MarkerState, float]]:
        if self._size == 0:
            return None
        return self._slots[(self._head - 1) % self.capacity]

    def to_list(self) -> List[Tuple[MarkerState, float]]:
        return list(self)

    def copy(self) -> HistoryRing:
        clone = HistoryRing(self.capacity)
        clone._slots = list(self._slots)
        clone._head = self._head
        clone._size = self._size
        return clone


@dataclass
class TrackedMarker:
    """Cross-frame record for one marker id."""

    marker_id: int
    session_id: int
    state: MarkerState
    first_detected: float
    last_seen: float
    update_count: int = 0
    pose: Optional[MarkerPose] = None
    history: HistoryRing = field(default_factory=HistoryRing)

    @property
    def is_active(self) -> bool:
        return self.state in (MarkerState.DETECTED, MarkerState.UPDATED)

    def age_ms(self, now: float) -> float:
        """Milliseconds since the marker was last seen."""
        return (now - self.last_seen) * 1000.0

    def snapshot(self) -> TrackedMarker:
        """Independent copy safe to hand to listeners and viewers."""
        return replace(
            self,
            pose=replace(self.pose) if self.pose is not None else None,
            history=self.history.copy(),
        )


class SessionIdAllocator:
    """Monotonic session id counter, safe to share between threads."""

    def __init__(self, start: int = 1000):
        self._next = start
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            session_id = self._next
            self._next += 1
            return session_id

    def peek(self) -> int:
        """Id the next call to ``next_id`` will return."""
        with self._lock:
            return self._next


@dataclass(frozen=True)
class LifecycleEvent:
    """A state transition of one tracked marker."""

    marker_id: int
    state: MarkerState
    marker: TrackedMarker


@dataclass
class LifecycleConfiguration:
    """Configuration for the lifecycle manager."""

    marker_timeout_ms: float = 1000.0
    history_size: int = 10
    remove_on_absence: bool = True
    session_id_start: int = 1000

    def __post_init__(self):
        if self.marker_timeout_ms < 0:
            raise ValueError("marker_timeout_ms must not be negative")
        if self.history_size <= 0:
            raise ValueError("history_size must be positive")

    @classmethod
    def from_dict(cls, config: Optional[Dict] = None) -> LifecycleConfiguration:
        cfg_dict = dict(config or {})
        return cls(**{
            k: v for k, v in cfg_dict.items()
            if k in cls.__dataclass_fields__
        })


LifecycleListener = Callable[[int, MarkerState, TrackedMarker], None]


class MarkerLifecycleManager:
    """Maintains tracked markers across frames and emits lifecycle events.

    State is mutated only by ``update``, ``sweep_expired`` and ``reset``,
    all of which are expected to run on the frame-processing thread.
    """

    def __init__(
        self,
        config: Optional[Union[Dict, LifecycleConfiguration]] = None,
        listener: Optional[LifecycleListener] = None,
        allocator: Optional[SessionIdAllocator] = None,
    ):
        if isinstance(config, LifecycleConfiguration):
            self.config = config
        else:
            self.config = LifecycleConfiguration.from_dict(config)

        self.listener = listener
        self.allocator = allocator or SessionIdAllocator(self.config.session_id_start)
        self._markers: Dict[int, TrackedMarker] = {}

        LOGGER.info(
            "MarkerLifecycleManager initialized: timeout=%.0fms, history=%d",
            self.config.marker_timeout_ms,
            self.config.history_size,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def set_listener(self, listener: Optional[LifecycleListener]):
        self.listener = listener

    def update(self, poses: Sequence[MarkerPose], now: Optional[float] = None) -> List[LifecycleEvent]:
        """Apply one frame's worth of marker sightings.

        Args:
            poses: Markers decoded in the current frame
            now: Frame timestamp in seconds (defaults to ``time.monotonic()``)

        Returns:
            Lifecycle events in the order they were emitted
        """
        if now is None:
            now = time.monotonic()

        events = self.sweep_expired(now)

        seen: Dict[int, MarkerPose] = {}
        for pose in poses:
            problem = validate_pose(pose)
            if problem is not None:
                LOGGER.warning("Ignoring invalid marker pose: %s", problem)
                continue
            current = seen.get(pose.marker_id)
            if current is None or pose.confidence > current.confidence:
                seen[pose.marker_id] = pose

        for marker_id, pose in seen.items():
            marker = self._markers.get(marker_id)
            if marker is None:
                events.append(self._track_new(pose, now))
            else:
                events.append(self._track_existing(marker, pose, now))

        if self.config.remove_on_absence:
            for marker_id in [m for m in self._markers if m not in seen]:
                events.append(self._drop(marker_id, now))

        return events

    def sweep_expired(self, now: Optional[float] = None) -> List[LifecycleEvent]:
        """Drop every marker not seen within the timeout, emitting LOST."""
        if now is None:
            now = time.monotonic()

        expired = [
            marker_id for marker_id, marker in self._markers.items()
            if marker.age_ms(now) > self.config.marker_timeout_ms
        ]
        return [self._drop(marker_id, now) for marker_id in expired]

    def get_tracked_markers(self) -> List[TrackedMarker]:
        """Snapshots of all tracked markers ordered by session id."""
        markers = sorted(self._markers.values(), key=lambda m: m.session_id)
        return [m.snapshot() for m in markers]

    def get_marker(self, marker_id: int) -> Optional[TrackedMarker]:
        marker = self._markers.get(marker_id)
        return marker.snapshot() if marker is not None else None

    def __len__(self) -> int:
        return len(self._markers)

    def __contains__(self, marker_id: int) -> bool:
        return marker_id in self._markers

    def reset(self):
        """Forget all tracked markers. Session ids keep increasing."""
        self._markers.clear()
        LOGGER.info("Lifecycle state reset")

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #
    def _track_new(self, pose: MarkerPose, now: float) -> LifecycleEvent:
        marker = TrackedMarker(
            marker_id=pose.marker_id,
            session_id=self.allocator.next_id(),
            state=MarkerState.DETECTED,
            first_detected=now,
            last_seen=now,
            pose=pose,
            history=HistoryRing(self.config.history_size),
        )
        marker.history.append(MarkerState.DETECTED, now)
        self._markers[pose.marker_id] = marker

        LOGGER.info("Marker %d detected (session %d)", marker.marker_id, marker.session_id)
        return self._emit(marker)

    def _track_existing(self, marker: TrackedMarker, pose: MarkerPose, now: float) -> LifecycleEvent:
        marker.update_count += 1
        marker.last_seen = max(marker.last_seen, now)
        marker.state = MarkerState.UPDATED
        marker.pose = pose
        marker.history.append(MarkerState.UPDATED, now)

        LOGGER.debug(
            "Marker %d updated (session %d, count %d)",
            marker.marker_id,
            marker.session_id,
            marker.update_count,
        )
        return self._emit(marker)

    def _drop(self, marker_id: int, now: float) -> LifecycleEvent:
        marker = self._markers.pop(marker_id)
        marker.state = MarkerState.LOST
        marker.history.append(MarkerState.LOST, now)

        LOGGER.info(
            "Marker %d lost (session %d, last seen %.0fms ago)",
            marker.marker_id,
            marker.session_id,
            marker.age_ms(now),
        )
        return self._emit(marker)

    def _emit(self, marker: TrackedMarker) -> LifecycleEvent:
        event = LifecycleEvent(marker.marker_id, marker.state, marker.snapshot())
        if self.listener is not None:
            try:
                self.listener(event.marker_id, event.state, event.marker)
            except Exception:
                LOGGER.exception("Lifecycle listener failed for marker %d", marker.marker_id)
        return event
