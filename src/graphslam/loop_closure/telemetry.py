"""Metrics publishing for the loop closing worker.

Metrics are fire-and-forget scalars. Publishers report whether anyone is
listening so the worker can skip the work entirely when nobody is.
"""

from __future__ import annotations

from typing import Protocol

import numpy as np
import rerun as rr


class MetricsPublisher(Protocol):
    """Sink for named scalar metrics."""

    def has_subscribers(self) -> bool:
        ...

    def publish(self, name: str, value: float) -> None:
        ...

    def log_loop_closure(
        self, index: int, from_position: np.ndarray, to_position: np.ndarray
    ) -> None:
        ...


class NullMetricsPublisher:
    """Publisher with no subscribers."""

    def has_subscribers(self) -> bool:
        return False

    def publish(self, name: str, value: float) -> None:
        pass

    def log_loop_closure(
        self, index: int, from_position: np.ndarray, to_position: np.ndarray
    ) -> None:
        pass


class RerunMetricsPublisher:
    """Logs metrics as Rerun scalar time series.

    Entity hierarchy:
        loop_closing/
            loop_closings   - Confirmed loop closures
            queue           - Clusters waiting to be processed
            edges           - Loop closure edges (3D line strips)

    Nothing is logged unless a Rerun recording is active (e.g. after
    `rr.init(..., spawn=True)` or `rr.connect_grpc()` in the application).
    A subscriber here means an active global recording: Rerun does not
    report whether a viewer or sink is attached, so a bare `rr.init()`
    buffers metrics in memory until one is.
    """

    def __init__(self, entity_root: str = "loop_closing") -> None:
        self._entity_root = entity_root

    def has_subscribers(self) -> bool:
        """True while a global Rerun recording exists."""
        return rr.get_global_data_recording() is not None

    def publish(self, name: str, value: float) -> None:
        rr.log(f"{self._entity_root}/{name}", rr.Scalars(float(value)))

    def log_loop_closure(
        self, index: int, from_position: np.ndarray, to_position: np.ndarray
    ) -> None:
        """Log loop closure `index` as a line between two camera positions."""
        if not self.has_subscribers():
            return

        rr.log(
            f"{self._entity_root}/edges/{index}",
            rr.LineStrips3D(
                [[from_position, to_position]],
                colors=[[255, 0, 0]],  # Red
                radii=0.02,
            ),
        )
