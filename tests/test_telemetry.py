"""Tests for loop closing metrics publishers."""

import numpy as np
import rerun as rr

from graphslam.loop_closure import NullMetricsPublisher, RerunMetricsPublisher


class TestPublishers:
    """Test suite for the metrics publishers."""

    def test_null_publisher(self):
        """Test that the null publisher never has subscribers."""
        publisher = NullMetricsPublisher()

        assert not publisher.has_subscribers()
        publisher.publish("queue", 3)
        publisher.log_loop_closure(1, np.zeros(3), np.ones(3))

    def test_rerun_without_recording(self):
        """Test that Rerun reports no subscribers before a recording exists."""
        publisher = RerunMetricsPublisher()

        assert not publisher.has_subscribers()
        # Skipped silently without a recording
        publisher.log_loop_closure(1, np.zeros(3), np.ones(3))

    def test_rerun_subscribed_while_recording_exists(self, monkeypatch):
        """Test that any active global recording counts as a subscriber."""
        monkeypatch.setattr(rr, "get_global_data_recording", lambda: object())
        publisher = RerunMetricsPublisher()

        assert publisher.has_subscribers()
