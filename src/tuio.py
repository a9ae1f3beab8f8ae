"""
TUIO 1.1 object server.

Keeps the set of live tangible objects and, on every committed frame, sends
one OSC bundle with the ``/tuio/2Dobj`` profile messages (``source``,
``alive``, ``set`` and ``fseq``) over UDP using python-osc.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pythonosc import osc_bundle_builder, osc_message_builder, udp_client

from markers.structures import MAX_MARKER_ID

LOGGER = logging.getLogger(__name__)

OBJECT_PROFILE = "/tuio/2Dobj"

_INT = osc_message_builder.OscMessageBuilder.ARG_TYPE_INT
_FLOAT = osc_message_builder.OscMessageBuilder.ARG_TYPE_FLOAT
_STRING = osc_message_builder.OscMessageBuilder.ARG_TYPE_STRING


class TuioError(RuntimeError):
    """Raised when the server is used out of protocol order."""


@dataclass
class ValidationResult:
    """Outcome of validating object data before it is sent."""

    is_valid: bool
    error_message: str = ""
    warnings: List[str] = field(default_factory=list)


def validate_object_data(symbol_id: int, x: float, y: float, angle: float) -> ValidationResult:
    """Check symbol id, normalised position and angle (radians).

    An angle outside [-2pi, 2pi] is accepted with a warning.
    """
    if not 0 <= symbol_id <= MAX_MARKER_ID:
        return ValidationResult(False, f"Invalid symbol ID: {symbol_id}")
    if math.isnan(x) or not 0.0 <= x <= 1.0:
        return ValidationResult(False, f"Invalid x coordinate: {x}")
    if math.isnan(y) or not 0.0 <= y <= 1.0:
        return ValidationResult(False, f"Invalid y coordinate: {y}")

    result = ValidationResult(True)
    if not -2.0 * math.pi <= angle <= 2.0 * math.pi:
        result.warnings.append(f"Angle may be outside normal range: {angle}")
    return result


@dataclass
class TuioObject:
    """A live tangible object as described by a ``/tuio/2Dobj set`` message."""

    session_id: int
    symbol_id: int
    x: float
    y: float
    angle: float  # radians
    x_speed: float = 0.0
    y_speed: float = 0.0
    rotation_speed: float = 0.0
    motion_accel: float = 0.0
    rotation_accel: float = 0.0
    updated_at: float = 0.0

    def set_arguments(self) -> list:
        return [
            self.session_id, self.symbol_id,
            self.x, self.y, self.angle,
            self.x_speed, self.y_speed, self.rotation_speed,
            self.motion_accel, self.rotation_accel,
        ]


class TuioServer:
    """Frame-oriented TUIO object server.

    Usage per frame: ``begin_frame``, any number of ``add_object`` /
    ``update_object`` / ``remove_object`` calls, then ``commit_frame``.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3333,
        source: str = "codice-tuio",
        max_objects: int = 100,
        client=None,
    ):
        self.host = host
        self.port = port
        self.source = f"{source}@{host}"
        self.max_objects = max_objects
        self._owns_client = client is None
        self.client = udp_client.UDPClient(host, port) if client is None else client

        self._objects: Dict[int, TuioObject] = {}
        self._changed: List[int] = []
        self._next_session_id = 1
        self._frame_id = 0
        self._in_frame = False

        self.frames_sent = 0
        self.send_errors = 0

        LOGGER.info("TUIO server sending to %s:%d", host, port)

    # ------------------------------------------------------------------ #
    # Frame protocol
    # ------------------------------------------------------------------ #
    def begin_frame(self):
        if self._in_frame:
            raise TuioError("begin_frame called twice without commit_frame")
        self._in_frame = True
        self._changed = []

    def add_object(
        self,
        symbol_id: int,
        x: float,
        y: float,
        angle: float,
        session_id: Optional[int] = None,
    ) -> Optional[TuioObject]:
        """Add a new object; returns None when the server is full."""
        self._require_frame("add_object")
        if session_id is None:
            session_id = self._next_session_id
        if session_id in self._objects:
            raise TuioError(f"Session {session_id} already exists")
        if len(self._objects) >= self.max_objects:
            LOGGER.warning("Object limit %d reached, not adding symbol %d", self.max_objects, symbol_id)
            return None

        self._next_session_id = max(self._next_session_id, session_id + 1)
        obj = TuioObject(
            session_id=int(session_id),
            symbol_id=int(symbol_id),
            x=float(x),
            y=float(y),
            angle=float(angle),
            updated_at=time.monotonic(),
        )
        self._objects[obj.session_id] = obj
        self._changed.append(obj.session_id)
        return obj

    def update_object(self, session_id: int, x: float, y: float, angle: float) -> TuioObject:
        self._require_frame("update_object")
        obj = self._objects.get(session_id)
        if obj is None:
            raise TuioError(f"Cannot update unknown session {session_id}")

        now = time.monotonic()
        dt = now - obj.updated_at
        if dt > 0:
            x_speed = (x - obj.x) / dt
            y_speed = (y - obj.y) / dt
            rotation_speed = (angle - obj.angle) / (2.0 * math.pi) / dt
            motion_speed = math.hypot(x_speed, y_speed)
            obj.motion_accel = (motion_speed - math.hypot(obj.x_speed, obj.y_speed)) / dt
            obj.rotation_accel = (rotation_speed - obj.rotation_speed) / dt
            obj.x_speed, obj.y_speed, obj.rotation_speed = x_speed, y_speed, rotation_speed

        obj.x, obj.y, obj.angle = float(x), float(y), float(angle)
        obj.updated_at = now
        if session_id not in self._changed:
            self._changed.append(session_id)
        return obj

    def remove_object(self, session_id: int):
        self._require_frame("remove_object")
        if self._objects.pop(session_id, None) is None:
            raise TuioError(f"Cannot remove unknown session {session_id}")
        if session_id in self._changed:
            self._changed.remove(session_id)

    def commit_frame(self) -> bool:
        """Send the frame bundle.

        Returns:
            bool: True if the bundle was sent, False on a socket error
        """
        self._require_frame("commit_frame")
        self._in_frame = False
        self._frame_id += 1

        bundle = self._build_bundle()
        try:
            self.client.send(bundle)
        except OSError as e:
            self.send_errors += 1
            LOGGER.error("Failed to send TUIO frame %d: %s", self._frame_id, e)
            return False

        self.frames_sent += 1
        return True

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #
    @property
    def frame_id(self) -> int:
        return self._frame_id

    @property
    def in_frame(self) -> bool:
        return self._in_frame

    def get_object(self, session_id: int) -> Optional[TuioObject]:
        return self._objects.get(session_id)

    def get_objects(self) -> List[TuioObject]:
        return list(self._objects.values())

    def close(self):
        """Close the UDP client this server created.

        An injected client belongs to the caller and is left open.
        """
        if self._owns_client:
            self.client.close()
        LOGGER.info("TUIO server closed after %d frames", self.frames_sent)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _require_frame(self, operation: str):
        if not self._in_frame:
            raise TuioError(f"{operation} called outside begin_frame/commit_frame")

    def _build_bundle(self):
        bundle = osc_bundle_builder.OscBundleBuilder(osc_bundle_builder.IMMEDIATELY)

        source = osc_message_builder.OscMessageBuilder(address=OBJECT_PROFILE)
        source.add_arg("source", _STRING)
        source.add_arg(self.source, _STRING)
        bundle.add_content(source.build())

        alive = osc_message_builder.OscMessageBuilder(address=OBJECT_PROFILE)
        alive.add_arg("alive", _STRING)
        for session_id in sorted(self._objects):
            alive.add_arg(session_id, _INT)
        bundle.add_content(alive.build())

        for session_id in self._changed:
            obj = self._objects[session_id]
            message = osc_message_builder.OscMessageBuilder(address=OBJECT_PROFILE)
            message.add_arg("set", _STRING)
            args = obj.set_arguments()
            message.add_arg(args[0], _INT)
            message.add_arg(args[1], _INT)
            for value in args[2:]:
                message.add_arg(float(value), _FLOAT)
            bundle.add_content(message.build())

        fseq = osc_message_builder.OscMessageBuilder(address=OBJECT_PROFILE)
        fseq.add_arg("fseq", _STRING)
        fseq.add_arg(self._frame_id, _INT)
        bundle.add_content(fseq.build())

        return bundle.build()
