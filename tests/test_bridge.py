"""
Tests for the lifecycle to TUIO bridge.
"""

import math
import os
import sys
import unittest

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from bridge import TuioBridge  # type: ignore
from lifecycle import MarkerLifecycleManager, MarkerPose, MarkerState, TrackedMarker  # type: ignore
from tuio import TuioError, TuioServer  # type: ignore


class RecordingClient:
    def __init__(self):
        self.sent = []

    def send(self, content):
        self.sent.append(content)


class FailingUpdateServer(TuioServer):
    """Server whose updates always fail."""

    def update_object(self, session_id, x, y, angle):
        raise TuioError("update rejected")


def tracked(marker_id, session_id, x=0.5, y=0.5, angle=0.0):
    return TrackedMarker(
        marker_id=marker_id,
        session_id=session_id,
        state=MarkerState.DETECTED,
        first_detected=0.0,
        last_seen=0.0,
        pose=MarkerPose(marker_id, x, y, angle, 1.0),
    )


class TestTuioBridge(unittest.TestCase):
    """Add/update/remove/commit sequencing."""

    def make_bridge(self, server_cls=TuioServer, **config):
        self.client = RecordingClient()
        bridge = TuioBridge(
            config,
            server_factory=lambda host, port: server_cls(
                host, port, max_objects=config.get("max_markers", 100), client=self.client
            ),
        )
        self.assertTrue(bridge.initialize("127.0.0.1", 3334))
        self.assertTrue(bridge.start())
        return bridge

    def test_not_running_does_nothing(self):
        bridge = TuioBridge()
        self.assertFalse(bridge.start())
        self.assertFalse(bridge.update([tracked(1, 1000)]))
        self.assertFalse(bridge.is_running)

    def test_add_then_update_then_remove(self):
        bridge = self.make_bridge()
        server = bridge.server

        self.assertTrue(bridge.update([tracked(5, 1000, angle=90.0)]))
        obj = server.get_object(1000)
        self.assertEqual(obj.symbol_id, 5)
        self.assertAlmostEqual(obj.angle, math.pi / 2)

        bridge.update([tracked(5, 1000, x=0.6)])
        self.assertAlmostEqual(server.get_object(1000).x, 0.6)

        bridge.update([])
        self.assertIsNone(server.get_object(1000))

        stats = bridge.get_statistics()
        self.assertEqual(
            (stats.objects_created, stats.objects_updated, stats.objects_removed),
            (1, 1, 1),
        )
        self.assertEqual(stats.frames_sent, 3)
        self.assertEqual(len(self.client.sent), 3)

    def test_invalid_object_is_skipped(self):
        bridge = self.make_bridge()
        with self.assertLogs("bridge", level="WARNING"):
            bridge.update([tracked(1, 1000, x=1.5), tracked(2, 1001)])
        self.assertEqual(bridge.active_sessions, {1001})
        self.assertEqual(bridge.get_statistics().objects_skipped, 1)

    def test_refused_add_is_skipped(self):
        bridge = self.make_bridge(max_markers=1)
        bridge.update([tracked(1, 1000), tracked(2, 1001)])
        self.assertEqual(bridge.active_sessions, {1000})
        self.assertEqual(bridge.get_statistics().objects_skipped, 1)

    def test_server_error_skips_marker(self):
        bridge = self.make_bridge(server_cls=FailingUpdateServer)
        bridge.update([tracked(1, 1000), tracked(2, 1001)])
        bridge.update([tracked(1, 1000)])
        self.assertEqual(bridge.get_statistics().objects_skipped, 1)
        self.assertTrue(self.client.sent)

    def test_markers_without_pose_are_ignored(self):
        bridge = self.make_bridge()
        marker = tracked(1, 1000)
        marker.pose = None
        bridge.update([marker])
        self.assertEqual(bridge.active_sessions, set())

    def test_stop_removes_all_objects(self):
        bridge = self.make_bridge()
        server = bridge.server
        bridge.update([tracked(1, 1000), tracked(2, 1001)])

        bridge.stop()

        self.assertFalse(bridge.is_running)
        self.assertEqual(server.get_objects(), [])
        self.assertEqual(bridge.get_statistics().objects_removed, 2)
        self.assertEqual(len(self.client.sent), 2)

    def test_follows_lifecycle_sessions(self):
        bridge = self.make_bridge()
        manager = MarkerLifecycleManager()

        manager.update([MarkerPose(10, 0.2, 0.2, 0.0, 1.0)], now=0.0)
        bridge.update(manager.get_tracked_markers())
        manager.update([MarkerPose(10, 0.3, 0.2, 0.0, 1.0)], now=0.033)
        bridge.update(manager.get_tracked_markers())

        self.assertEqual(bridge.active_sessions, {1000})
        self.assertAlmostEqual(bridge.server.get_object(1000).x, 0.3)

    def test_get_configuration(self):
        bridge = self.make_bridge(max_markers=5)
        config = bridge.get_configuration()
        self.assertEqual(config["host"], "127.0.0.1")
        self.assertEqual(config["port"], 3334)
        self.assertEqual(config["max_markers"], 5)
        self.assertTrue(config["running"])
        self.assertIn("objects_created", config["statistics"])


if __name__ == "__main__":
    unittest.main()
