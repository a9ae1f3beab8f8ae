"""
Integration tests for the Codice TUIO pipeline.

Runs synthetic marker sequences through detection, lifecycle tracking and the
TUIO bridge, with the UDP client replaced by an in-memory recorder.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import sys
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pytest

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from bridge import TuioBridge
from lifecycle import MarkerState
from main import apply_overrides, parse_args
from pipeline import CodicePipeline
from tuio import TuioServer
from ui import MARKER_COLOR, DebugViewer
from utils import get_config

from marker_images import render_frame

LOGGER = logging.getLogger(__name__)

FRAME_DT = 1.0 / 30.0


class RecordingClient:
    """In-memory replacement for the UDP client."""

    def __init__(self):
        self.bundles = []

    def send(self, content):
        self.bundles.append(content)

    def commands(self, index: int) -> List[Tuple[str, list]]:
        return [(m.params[0], list(m.params[1:])) for m in self.bundles[index]]


class SyntheticMarkerSequence:
    """Generate frame sequences with Codice markers."""

    @staticmethod
    def moving(
        marker_id: int,
        num_frames: int = 10,
        start: Tuple[int, int] = (100, 100),
        step: Tuple[int, int] = (8, 4),
        rotation: int = 0,
    ) -> List[np.ndarray]:
        """One marker translating by ``step`` pixels per frame."""
        frames = []
        for i in range(num_frames):
            position = (start[0] + step[0] * i, start[1] + step[1] * i)
            frames.append(render_frame([(marker_id, position)], rotation=rotation))
        return frames

    @staticmethod
    def blank(num_frames: int = 1) -> List[np.ndarray]:
        return [render_frame([]) for _ in range(num_frames)]


def make_pipeline(
    config: Optional[Dict] = None,
    with_bridge: bool = True,
) -> Tuple[CodicePipeline, Optional[RecordingClient]]:
    config = config or get_config()
    client = None
    bridge = None
    if with_bridge:
        client = RecordingClient()
        bridge = TuioBridge(
            config["tuio"],
            server_factory=lambda host, port: TuioServer(host, port, client=client),
        )
        assert bridge.initialize()
        assert bridge.start()
    return CodicePipeline(config, bridge=bridge), client


def run_sequence(pipeline: CodicePipeline, frames: Sequence[np.ndarray], t0: float = 0.0):
    return [pipeline.process_frame(frame, t0 + i * FRAME_DT) for i, frame in enumerate(frames)]


# ============================================================================
# Test Cases
# ============================================================================

class TestEndToEnd:
    """Frames in, lifecycle events and TUIO bundles out."""

    def test_single_marker_detected(self):
        pipeline, client = make_pipeline()
        result = pipeline.process_frame(render_frame([(5, (200, 150))]), 0.0)

        assert result.success
        assert [m.marker_id for m in result.detection.markers] == [5]
        assert [(e.marker_id, e.state) for e in result.events] == [(5, MarkerState.DETECTED)]
        assert result.sent

        tracked = result.tracked[0]
        assert tracked.session_id == 1000
        assert tracked.pose.x == pytest.approx(259.5 / 640, abs=0.01)
        assert tracked.pose.y == pytest.approx(209.5 / 480, abs=0.01)

        commands = client.commands(0)
        assert [c for c, _ in commands] == ["source", "alive", "set", "fseq"]
        assert commands[1][1] == [1000]
        assert commands[2][1][:2] == [1000, 5]

    def test_moving_marker_keeps_session(self):
        pipeline, _ = make_pipeline()
        frames = SyntheticMarkerSequence.moving(42, num_frames=8)
        results = run_sequence(pipeline, frames)

        assert all(r.success for r in results)
        sessions = {r.tracked[0].session_id for r in results}
        assert sessions == {1000}
        assert results[-1].tracked[0].update_count == 7
        xs = [r.tracked[0].pose.x for r in results]
        assert xs == sorted(xs)

    def test_sighting_then_silence(self):
        config = get_config()
        config["lifecycle"]["remove_on_absence"] = False
        config["lifecycle"]["marker_timeout_ms"] = 200
        pipeline, client = make_pipeline(config)

        events = []
        frames = [render_frame([(5, (200, 150))])] + SyntheticMarkerSequence.blank(12)
        for result in run_sequence(pipeline, frames):
            events.extend((e.marker_id, e.state) for e in result.events)

        assert events == [(5, MarkerState.DETECTED), (5, MarkerState.LOST)]
        assert len(pipeline.lifecycle) == 0
        # The final bundle has an empty alive list.
        assert client.commands(len(client.bundles) - 1)[1][1] == []

    def test_rotated_marker_sequence(self):
        for rotation in (90, 180, 270):
            pipeline, _ = make_pipeline(with_bridge=False)
            results = run_sequence(
                pipeline, SyntheticMarkerSequence.moving(777, num_frames=3, rotation=rotation)
            )
            assert [r.tracked[0].marker_id for r in results] == [777, 777, 777]

    def test_markers_enter_and_leave(self):
        pipeline, client = make_pipeline()
        frames = [
            render_frame([(1, (40, 40))]),
            render_frame([(1, (40, 40)), (2, (300, 200))]),
            render_frame([(2, (300, 200))]),
        ]
        results = run_sequence(pipeline, frames)

        assert {(e.marker_id, e.state) for e in results[1].events} == {
            (1, MarkerState.UPDATED), (2, MarkerState.DETECTED),
        }
        assert [(e.marker_id, e.state) for e in results[2].events] == [
            (2, MarkerState.UPDATED), (1, MarkerState.LOST),
        ]
        assert client.commands(1)[1][1] == [1000, 1001]
        assert client.commands(2)[1][1] == [1001]

    def test_bridge_stop_clears_objects(self):
        pipeline, client = make_pipeline()
        run_sequence(pipeline, [render_frame([(9, (200, 150))])])
        pipeline.bridge.stop()

        assert client.commands(len(client.bundles) - 1)[1][1] == []
        assert not pipeline.bridge.is_running


class TestFailureHandling:
    """Failed frames leave tracking state untouched."""

    def test_empty_frame_does_not_mutate_state(self):
        pipeline, client = make_pipeline()
        pipeline.process_frame(render_frame([(5, (200, 150))]), 0.0)
        snapshot = pipeline.snapshot
        sent_before = len(client.bundles)

        result = pipeline.process_frame(None, 10.0)

        assert not result.success
        assert len(pipeline.lifecycle) == 1
        assert pipeline.snapshot is snapshot
        assert len(client.bundles) == sent_before
        assert pipeline.stats.failed_frames == 1

    def test_pipeline_without_bridge(self):
        pipeline, _ = make_pipeline(with_bridge=False)
        result = pipeline.process_frame(render_frame([(5, (200, 150))]), 0.0)
        assert result.success
        assert not result.sent


class TestDiagnostics:
    """Snapshot handed to the debug viewer."""

    def test_snapshot_contents(self):
        pipeline, _ = make_pipeline(with_bridge=False)
        pipeline.process_frame(render_frame([(5, (200, 150)), (6, (400, 300))]), 1.5)

        snapshot = pipeline.snapshot
        assert snapshot.frame_index == 1
        assert snapshot.timestamp == 1.5
        assert len(snapshot.candidates) == 2
        assert sorted(m.marker_id for m in snapshot.markers) == [5, 6]
        assert len(snapshot.tracked) == 2

    def test_snapshot_is_frozen(self):
        pipeline, _ = make_pipeline(with_bridge=False)
        pipeline.process_frame(render_frame([(5, (200, 150))]), 0.0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            pipeline.snapshot.frame_index = 99

    def test_snapshot_survives_later_frames(self):
        pipeline, _ = make_pipeline(with_bridge=False)
        pipeline.process_frame(render_frame([(5, (200, 150))]), 0.0)
        first = pipeline.snapshot
        pipeline.process_frame(render_frame([(5, (210, 150))]), FRAME_DT)

        assert first.tracked[0].update_count == 0
        assert pipeline.snapshot.tracked[0].update_count == 1

    def test_debug_viewer_draws_snapshot(self):
        pipeline, _ = make_pipeline(with_bridge=False)
        frame = render_frame([(5, (200, 150))])
        pipeline.process_frame(frame, 0.0)

        canvas = DebugViewer().draw_snapshot(frame, pipeline.snapshot)
        assert canvas.shape == frame.shape
        assert not np.array_equal(canvas, frame)
        assert np.all(canvas == MARKER_COLOR, axis=2).any()
        # The input frame is left untouched.
        assert np.all(frame[0, 0] == 255)

    def test_statistics_summary(self):
        pipeline, _ = make_pipeline()
        run_sequence(pipeline, SyntheticMarkerSequence.moving(3, num_frames=4))
        summary = pipeline.statistics_summary()
        LOGGER.info("Pipeline statistics: %s", summary)
        assert "frames=4" in summary
        assert "markers=4" in summary
        assert "tuio:" in summary


class TestCommandLine:
    """Argument parsing and configuration overrides."""

    def test_overrides(self):
        args = parse_args([
            "--camera", "2", "--host", "10.0.0.5", "--port", "4444",
            "--no-tuio", "--debug-view", "--profile", "low_latency",
        ])
        config = apply_overrides(get_config(profile=args.profile), args)

        assert config["camera_id"] == 2
        assert config["tuio"]["host"] == "10.0.0.5"
        assert config["tuio"]["port"] == 4444
        assert config["tuio"]["enabled"] is False
        assert config["debug"]["show_debug_view"] is True
        assert config["lifecycle"]["marker_timeout_ms"] == 500

    def test_defaults_leave_config_untouched(self):
        config = apply_overrides(get_config(), parse_args([]))
        assert config == get_config()

    def test_unknown_profile_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["--profile", "turbo"])
