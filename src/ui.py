"""
Debug viewer.

OpenCV window that draws the latest diagnostics snapshot over the camera
frame and handles keyboard controls.
"""

import logging

import cv2
import numpy as np

CANDIDATE_COLOR = (0, 255, 255)  # Yellow
MARKER_COLOR = (0, 255, 0)  # Green
SESSION_COLOR = (255, 200, 0)


class DebugViewer:
    """Visualizes candidates, decoded markers and tracked sessions."""

    def __init__(self, config=None):
        """Initialize debug viewer.

        Args:
            config: The ``debug`` configuration section
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self.window_name = "Codice TUIO"
        self.display_width = self.config.get('display_width', 640)
        self.display_height = self.config.get('display_height', 480)

        self.show_candidates = self.config.get('show_candidates', True)
        self.paused = False

    def initialize(self):
        """Create the display window.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        try:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.resizeWindow(self.window_name, self.display_width, self.display_height)
        except cv2.error as e:
            self.logger.error(f"Debug viewer initialization failed: {e}")
            return False

        self.logger.info(f"Debug viewer initialized: {self.display_width}x{self.display_height}")
        return True

    def draw_snapshot(self, frame, snapshot):
        """Draw a diagnostics snapshot onto a copy of ``frame``.

        Args:
            frame: Camera frame the snapshot was computed from
            snapshot: DiagnosticsSnapshot, or None

        Returns:
            np.ndarray: Annotated BGR frame
        """
        canvas = frame.copy()
        if canvas.ndim == 2:
            canvas = cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)
        if snapshot is None:
            return canvas

        if self.show_candidates:
            for corners in snapshot.candidates:
                pts = np.round(corners).astype(np.int32).reshape(-1, 1, 2)
                cv2.polylines(canvas, [pts], True, CANDIDATE_COLOR, 1)

        for marker in snapshot.markers:
            pts = np.round(marker.corners).astype(np.int32).reshape(-1, 1, 2)
            cv2.polylines(canvas, [pts], True, MARKER_COLOR, 2)
            center = (int(round(marker.center[0])), int(round(marker.center[1])))
            cv2.circle(canvas, center, 4, MARKER_COLOR, -1)
            cv2.putText(
                canvas,
                f"ID:{marker.marker_id}  C:{marker.confidence:.2f}",
                (center[0] - 40, center[1] - 12),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, MARKER_COLOR, 1,
            )

        height, width = canvas.shape[:2]
        for tracked in snapshot.tracked:
            if tracked.pose is None:
                continue
            x = int(tracked.pose.x * width)
            y = int(tracked.pose.y * height)
            cv2.putText(
                canvas,
                f"S:{tracked.session_id}",
                (x - 40, y + 24),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, SESSION_COLOR, 1,
            )

        self._add_status_text(canvas, snapshot)
        return canvas

    def display(self, frame, snapshot=None):
        """Draw and show a frame."""
        if frame is None:
            return
        cv2.imshow(self.window_name, self.draw_snapshot(frame, snapshot))

    def handle_events(self):
        """Handle user input events.

        Returns:
            bool: True to continue running, False to exit
        """
        key = cv2.waitKey(1) & 0xFF

        if key == ord('q') or key == 27:  # 'q' or ESC to quit
            self.logger.info("User requested exit")
            return False

        elif key == ord('c'):
            self.show_candidates = not self.show_candidates
            self.logger.info(f"Candidate display: {self.show_candidates}")

        elif key == ord('p'):
            self.paused = not self.paused
            self.logger.info(f"Paused: {self.paused}")

        elif key == ord('h'):
            self._print_help()

        return True

    def _add_status_text(self, canvas, snapshot):
        font = cv2.FONT_HERSHEY_SIMPLEX
        y_offset = 20
        if self.paused:
            cv2.putText(canvas, "PAUSED", (10, y_offset), font, 0.5, (0, 0, 255), 1)
            y_offset += 20

        status = (
            f"Frame {snapshot.frame_index} | candidates {len(snapshot.candidates)} | "
            f"markers {len(snapshot.markers)} | tracked {len(snapshot.tracked)}"
        )
        cv2.putText(canvas, status, (10, y_offset), font, 0.5, MARKER_COLOR, 1)

    def _print_help(self):
        """Print help information to console."""
        help_text = """
        Codice TUIO Controls:
        =====================
        q / ESC - Quit application
        c       - Toggle candidate outlines
        p       - Pause/Resume display
        h       - Show this help
        """
        print(help_text)

    def cleanup(self):
        """Clean up UI resources."""
        try:
            cv2.destroyWindow(self.window_name)
        except cv2.error as e:
            self.logger.error(f"Debug viewer cleanup error: {e}")
            return
        self.logger.info("Debug viewer cleaned up")
