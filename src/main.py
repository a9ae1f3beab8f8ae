"""
Main entry point for the Codice TUIO tracker.

Captures frames from a camera or video file, detects Codice markers, tracks
them across frames and streams them to TUIO clients.

Usage:
    codice-tuio                              # Camera 0, TUIO on localhost:3333
    codice-tuio --profile low_latency        # Apply a configuration profile
    codice-tuio --video clip.mp4 --debug-view
    codice-tuio --verbose                    # Enable debug logging
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from typing import Optional

import numpy as np

from bridge import TuioBridge
from pipeline import CodicePipeline
from ui import DebugViewer
from utils import PROFILES, get_config, setup_logging, validate_config
from video import VideoProcessor

LOGGER = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Codice marker tracker with TUIO output",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls (with --debug-view):
  C      - Toggle candidate outlines
  P      - Pause display
  H      - Print help
  Q/ESC  - Quit
        """,
    )

    parser.add_argument("--config", "-c", help="Path to a JSON configuration file")
    parser.add_argument(
        "--profile", "-p",
        choices=sorted(PROFILES),
        help="Configuration profile applied on top of the file",
    )
    parser.add_argument("--camera", type=int, help="Camera index")
    parser.add_argument("--video", help="Read frames from a video file instead of a camera")
    parser.add_argument("--host", help="TUIO client host")
    parser.add_argument("--port", type=int, help="TUIO client port")
    parser.add_argument("--no-tuio", action="store_true", help="Disable TUIO output")
    parser.add_argument("--debug-view", action="store_true", help="Show the debug window")
    parser.add_argument(
        "--verbose", "-V",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    return parser.parse_args(argv)


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Apply command-line overrides to a loaded configuration."""
    if args.camera is not None:
        config['camera_id'] = args.camera
    if args.host:
        config['tuio']['host'] = args.host
    if args.port is not None:
        config['tuio']['port'] = args.port
    if args.no_tuio:
        config['tuio']['enabled'] = False
    if args.debug_view:
        config['debug']['show_debug_view'] = True
    return config


class FrameSlot:
    """Latest captured frame, handed from the capture thread to the viewer."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None

    def put(self, frame: np.ndarray):
        with self._lock:
            self._frame = frame

    def get(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._frame


def run(config: dict, video_path: Optional[str] = None) -> int:
    """Run the tracker until the source ends or the user quits.

    Returns:
        int: Process exit code
    """
    bridge = None
    if config['tuio'].get('enabled', True):
        bridge = TuioBridge(config['tuio'])
        if not bridge.initialize() or not bridge.start():
            return 1

    pipeline = CodicePipeline(config, bridge=bridge)
    video = VideoProcessor(config)
    opened = video.load_video_file(video_path) if video_path else video.initialize()
    if not opened:
        if bridge is not None:
            bridge.stop()
        return 1

    viewer = None
    if config['debug'].get('show_debug_view'):
        viewer = DebugViewer(config['debug'])
        if not viewer.initialize():
            viewer = None

    slot = FrameSlot()

    def on_frame(frame: np.ndarray, timestamp: float):
        pipeline.process_frame(frame, timestamp)
        slot.put(frame)

    stats_interval = config['debug'].get('statistics_interval_ms', 5000) / 1000.0
    next_stats = time.monotonic() + stats_interval

    video.start_capture(on_frame)
    try:
        while video.is_capturing:
            if viewer is not None:
                frame = slot.get()
                if frame is not None and not viewer.paused:
                    viewer.display(frame, pipeline.snapshot)
                if not viewer.handle_events():
                    break
            else:
                time.sleep(0.05)

            if time.monotonic() >= next_stats:
                LOGGER.info("Statistics: %s", pipeline.statistics_summary())
                next_stats = time.monotonic() + stats_interval
    except KeyboardInterrupt:
        LOGGER.info("Interrupted, shutting down")
    finally:
        video.cleanup()
        if bridge is not None:
            bridge.stop()
        if viewer is not None:
            viewer.cleanup()

    LOGGER.info("Final statistics: %s", pipeline.statistics_summary())
    return 0


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = get_config(args.config, args.profile)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    apply_overrides(config, args)

    verbose = args.verbose or config['debug'].get('enable_debug_logging', False)
    setup_logging(level=logging.DEBUG if verbose else logging.INFO)

    if not validate_config(config):
        sys.exit(2)

    LOGGER.info("Starting Codice TUIO tracker...")
    sys.exit(run(config, args.video))


if __name__ == "__main__":
    main()
