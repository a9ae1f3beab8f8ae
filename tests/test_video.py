"""
Tests for the paced capture thread.
"""

import os
import sys
import threading
import time
import unittest

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from video import VideoProcessor  # type: ignore


class FakeCapture:
    """Stands in for cv2.VideoCapture with a fixed number of frames."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.released = False

    def isOpened(self):
        return not self.released

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def get(self, prop):
        return 0

    def release(self):
        self.released = True


class TestCaptureThread(unittest.TestCase):
    """Frames are delivered synchronously, in order, on one thread."""

    def make_processor(self, frame_count, fps=200):
        processor = VideoProcessor({'video_fps': fps, 'camera_max_read_failures': 2})
        frames = [np.full((4, 4, 3), i, dtype=np.uint8) for i in range(frame_count)]
        processor.cap = FakeCapture(frames)
        return processor

    def wait_until_stopped(self, processor, timeout=5.0):
        deadline = time.monotonic() + timeout
        while processor.is_capturing and time.monotonic() < deadline:
            time.sleep(0.01)

    def test_frames_delivered_in_order(self):
        processor = self.make_processor(5)
        received = []
        threads = set()

        def callback(frame, timestamp):
            received.append((int(frame[0, 0, 0]), timestamp))
            threads.add(threading.current_thread().name)

        self.assertTrue(processor.start_capture(callback))
        self.wait_until_stopped(processor)
        processor.cleanup()

        self.assertEqual([i for i, _ in received], [0, 1, 2, 3, 4])
        timestamps = [t for _, t in received]
        self.assertEqual(timestamps, sorted(timestamps))
        self.assertEqual(threads, {"codice-capture"})
        self.assertEqual(processor.frames_captured, 5)

    def test_callback_errors_do_not_stop_capture(self):
        processor = self.make_processor(3)
        calls = []

        def callback(frame, timestamp):
            calls.append(frame)
            raise RuntimeError("processing failed")

        with self.assertLogs("video", level="ERROR"):
            processor.start_capture(callback)
            self.wait_until_stopped(processor)
        processor.cleanup()
        self.assertEqual(len(calls), 3)

    def test_frames_are_paced(self):
        processor = self.make_processor(4, fps=20)
        stamps = []
        processor.start_capture(lambda frame, ts: stamps.append(ts))
        self.wait_until_stopped(processor)
        processor.cleanup()

        gaps = np.diff(stamps)
        self.assertTrue(np.all(gaps >= 0.045))

    def test_stop_capture(self):
        processor = VideoProcessor({'video_fps': 100})
        processor.cap = FakeCapture([np.zeros((2, 2, 3), dtype=np.uint8)] * 10000)

        processor.start_capture(lambda frame, ts: None)
        self.assertTrue(processor.is_capturing)
        self.assertFalse(processor.start_capture(lambda frame, ts: None))
        processor.stop_capture()
        self.assertFalse(processor.is_capturing)
        processor.cleanup()

    def test_start_requires_open_source(self):
        processor = VideoProcessor()
        self.assertFalse(processor.start_capture(lambda frame, ts: None))


if __name__ == "__main__":
    unittest.main()
