"""Mapping back end combining graph ingestion and loop closing.

SLAMSystem owns:
- PoseGraphStore: vertices/edges and periodic optimization
- GraphIngestionPipeline: frames -> vertices + sequential edges
- LoopClosingPipeline: clusters -> loop closure edges

Both pipelines run in their own worker thread and share only the pose
graph store and a stop event.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from .config import SLAMConfig
from .graph import (
    GraphIngestionPipeline,
    PoseGraphOptimizer,
    PoseGraphStore,
    ScipyPoseGraphOptimizer,
)
from .loop_closure import (
    LoopClosingPipeline,
    LoopClosurePolicy,
    MetricsPublisher,
    ObservationStore,
)
from .messages import Cluster, Frame
from .pose import SE3


class SLAMSystem:
    """Pose graph + loop closing back end.

    Lifecycle: `init()` prepares the working area, `start()` (or the
    blocking `run()`) launches the workers, `stop()` asks them to exit and
    `finalize()` removes the working area.
    """

    def __init__(
        self,
        config: SLAMConfig | None = None,
        optimizer: PoseGraphOptimizer | None = None,
        publisher: MetricsPublisher | None = None,
        policy: LoopClosurePolicy | None = None,
    ) -> None:
        """Initialize the system.

        Args:
            config: System configuration
            optimizer: Pose graph solver (default: scipy)
            publisher: Metrics sink for loop closing (default: Rerun)
            policy: Loop closure acceptance rule (default: accept nothing)
        """
        self._config = config or SLAMConfig()
        self._stop_event = threading.Event()

        self._graph = PoseGraphStore(
            camera_matrix=self._config.camera.to_matrix(),
            optimizer=optimizer
            or ScipyPoseGraphOptimizer(max_iterations=self._config.graph.max_iterations),
        )
        self._graph.set_camera_to_odom(SE3.from_matrix(self._config.camera_to_odom))

        self._ingestion = GraphIngestionPipeline(
            self._graph,
            config=self._config.graph,
            snapshot_dir=self._config.working_directory,
        )

        self._store = ObservationStore(self._config.working_directory)
        self._loop_closing = LoopClosingPipeline(
            self._store,
            self._graph,
            config=self._config.loop_closing,
            publisher=publisher,
            policy=policy,
        )

    @classmethod
    def from_yaml(cls, path: str | Path, **kwargs) -> SLAMSystem:
        """Create a system from a YAML configuration file.

        Args:
            path: Configuration file
            **kwargs: Additional arguments passed to __init__
        """
        return cls(config=SLAMConfig.from_yaml(path), **kwargs)

    def init(self) -> bool:
        """Recreate the working area empty.

        Failure is reported but not fatal: persistence degrades to lookups
        returning nothing.

        Returns:
            True if the working area is ready
        """
        ok = self._store.init()
        if not ok:
            print("[SLAM] Working area unavailable, loop closing runs without history")
        return ok

    def start(self) -> None:
        """Launch both worker threads."""
        self._stop_event.clear()
        self._ingestion.start(self._stop_event)
        self._loop_closing.start(self._stop_event)

    def run(self) -> None:
        """Start the workers and block until `stop()` or Ctrl-C."""
        self.start()
        try:
            while not self._stop_event.is_set():
                time.sleep(0.1)
        except KeyboardInterrupt:
            print("[SLAM] Interrupted")
        finally:
            self.stop()

    def stop(self, timeout: float = 5.0) -> bool:
        """Signal the workers to exit and wait for them.

        Returns:
            False if a worker is still running after `timeout`
        """
        self._stop_event.set()
        ingestion_stopped = self._ingestion.join(timeout=timeout)
        loop_closing_stopped = self._loop_closing.join(timeout=timeout)
        if not (ingestion_stopped and loop_closing_stopped):
            print("[SLAM] Workers did not stop within the timeout")
            return False
        return True

    def finalize(self) -> bool:
        """Tear down the working area once both workers have exited.

        Returns:
            False if a worker is still running and nothing was removed
        """
        if self.is_running:
            print("[SLAM] Workers still running, working area kept")
            return False
        return self._loop_closing.finalize()

    def add_frame(self, frame: Frame) -> None:
        """Queue a frame for insertion into the pose graph."""
        self._ingestion.enqueue(frame)

    def add_cluster(self, cluster: Cluster) -> int:
        """Queue a cluster for loop closing and return its ID."""
        return self._loop_closing.enqueue(cluster)

    def wait_until_idle(self, timeout: float = 10.0) -> bool:
        """Block until both queues are drained."""
        deadline = time.monotonic() + timeout
        ok = self._ingestion.wait_until_idle(timeout)
        remaining = max(deadline - time.monotonic(), 0.0)
        return self._loop_closing.wait_until_idle(remaining) and ok

    @property
    def graph(self) -> PoseGraphStore:
        return self._graph

    @property
    def ingestion(self) -> GraphIngestionPipeline:
        return self._ingestion

    @property
    def loop_closing(self) -> LoopClosingPipeline:
        return self._loop_closing

    @property
    def config(self) -> SLAMConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._ingestion.is_running or self._loop_closing.is_running

    def __enter__(self) -> SLAMSystem:
        """Context manager entry - prepares the working area and starts."""
        self.init()
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - stops the workers and cleans up."""
        self.stop()
        self.finalize()
