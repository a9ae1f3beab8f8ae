"""
Lifecycle to TUIO bridge.

Mirrors the lifecycle manager's table of tracked markers onto a TUIO server
once per frame: new sessions are added, known sessions updated, vanished
sessions removed, and the frame committed.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Sequence, Set

from lifecycle import TrackedMarker
from tuio import TuioError, TuioServer, validate_object_data

LOGGER = logging.getLogger(__name__)


@dataclass
class BridgeStatistics:
    """Counters accumulated while the bridge is running."""

    objects_created: int = 0
    objects_updated: int = 0
    objects_removed: int = 0
    objects_skipped: int = 0
    frames_sent: int = 0
    frames_failed: int = 0
    uptime_s: float = 0.0

    def summary(self) -> str:
        return (
            f"created={self.objects_created} updated={self.objects_updated} "
            f"removed={self.objects_removed} skipped={self.objects_skipped} "
            f"frames={self.frames_sent} failed={self.frames_failed} "
            f"uptime={self.uptime_s:.1f}s"
        )


class TuioBridge:
    """Publishes tracked markers as TUIO objects."""

    def __init__(
        self,
        config: Optional[Dict] = None,
        server_factory: Optional[Callable[[str, int], TuioServer]] = None,
    ):
        self.config = dict(config or {})
        self.host = self.config.get("host", "localhost")
        self.port = self.config.get("port", 3333)
        self.max_objects = self.config.get("max_markers", 100)
        self._server_factory = server_factory or self._default_server

        self.server: Optional[TuioServer] = None
        self._running = False
        self._start_time: Optional[float] = None
        self._active: Set[int] = set()  # session ids currently on the server
        self.stats = BridgeStatistics()

    def _default_server(self, host: str, port: int) -> TuioServer:
        return TuioServer(host, port, max_objects=self.max_objects)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def initialize(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        """Create the TUIO server.

        Returns:
            bool: True if the server was created, False otherwise
        """
        if host is not None:
            self.host = host
        if port is not None:
            self.port = port

        try:
            self.server = self._server_factory(self.host, self.port)
        except OSError as e:
            LOGGER.error("Failed to create TUIO server for %s:%s: %s", self.host, self.port, e)
            self.server = None
            return False

        LOGGER.info("TUIO bridge initialized for %s:%s", self.host, self.port)
        return True

    def start(self) -> bool:
        if self.server is None:
            LOGGER.error("TUIO bridge must be initialized before starting")
            return False
        if not self._running:
            self._running = True
            self._start_time = time.monotonic()
            LOGGER.info("TUIO bridge started")
        return True

    def stop(self):
        """Remove every live object, send a final frame and stop."""
        if not self._running:
            return

        try:
            self.server.begin_frame()
            for session_id in sorted(self._active):
                self.server.remove_object(session_id)
                self.stats.objects_removed += 1
            self._commit()
        except TuioError as e:
            LOGGER.error("Failed to clear TUIO objects on stop: %s", e)
        self._active.clear()

        self.stats.uptime_s = self.uptime
        self._running = False
        self._start_time = None
        self.server.close()
        LOGGER.info("TUIO bridge stopped: %s", self.stats.summary())

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def uptime(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.monotonic() - self._start_time

    @property
    def active_sessions(self) -> Set[int]:
        return set(self._active)

    # ------------------------------------------------------------------ #
    # Per-frame update
    # ------------------------------------------------------------------ #
    def update(self, markers: Sequence[TrackedMarker]) -> bool:
        """Send one frame describing ``markers``.

        Returns:
            bool: True if a frame was committed and sent
        """
        if not self._running:
            return False

        self.server.begin_frame()

        current: Set[int] = set()
        for marker in markers:
            if marker.pose is None:
                continue
            if self._publish(marker):
                current.add(marker.session_id)

        for session_id in sorted(self._active - current):
            try:
                self.server.remove_object(session_id)
                self.stats.objects_removed += 1
            except TuioError as e:
                LOGGER.warning("Failed to remove session %d: %s", session_id, e)
        self._active = current

        return self._commit()

    def _publish(self, marker: TrackedMarker) -> bool:
        pose = marker.pose
        angle = math.radians(pose.angle)

        validation = validate_object_data(marker.marker_id, pose.x, pose.y, angle)
        if not validation.is_valid:
            LOGGER.warning("Skipping marker %d: %s", marker.marker_id, validation.error_message)
            self.stats.objects_skipped += 1
            return False
        for warning in validation.warnings:
            LOGGER.debug("Marker %d: %s", marker.marker_id, warning)

        try:
            if marker.session_id in self._active:
                self.server.update_object(marker.session_id, pose.x, pose.y, angle)
                self.stats.objects_updated += 1
            else:
                obj = self.server.add_object(
                    marker.marker_id, pose.x, pose.y, angle, session_id=marker.session_id
                )
                if obj is None:
                    LOGGER.warning("TUIO server refused marker %d", marker.marker_id)
                    self.stats.objects_skipped += 1
                    return False
                self.stats.objects_created += 1
        except TuioError as e:
            LOGGER.warning("Skipping marker %d: %s", marker.marker_id, e)
            self.stats.objects_skipped += 1
            return False
        return True

    def _commit(self) -> bool:
        if self.server.commit_frame():
            self.stats.frames_sent += 1
            return True
        self.stats.frames_failed += 1
        return False

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    def get_statistics(self) -> BridgeStatistics:
        if self._running:
            self.stats.uptime_s = self.uptime
        return self.stats

    def get_configuration(self) -> Dict:
        return {
            "host": self.host,
            "port": self.port,
            "max_markers": self.max_objects,
            "running": self._running,
            "statistics": asdict(self.get_statistics()),
        }
