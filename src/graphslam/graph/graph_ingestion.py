"""Graph ingestion worker.

Drains the frame queue in FIFO order, turning each frame into a vertex
linked to its predecessor by a sequential edge, and periodically asks the
pose graph store to optimize.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from ..config import GraphConfig
from ..messages import Frame
from ..pose import SE3
from ..work_queue import WorkQueue
from .pose_graph import PoseGraphStore


class GraphIngestionPipeline:
    """Producer/consumer front of the pose graph.

    Producers call `enqueue` from any thread; a single worker thread runs
    `run` until the shared stop event is set.
    """

    def __init__(
        self,
        graph: PoseGraphStore,
        config: GraphConfig | None = None,
        snapshot_dir: str | Path | None = None,
    ) -> None:
        """Initialize the ingestion pipeline.

        Args:
            graph: Store receiving vertices and sequential edges
            config: Ingestion/optimization settings
            snapshot_dir: Directory for graph snapshots (None disables them)
        """
        self._graph = graph
        self._config = config or GraphConfig()
        self._snapshot_dir = Path(snapshot_dir) if snapshot_dir is not None else None

        self._queue: WorkQueue[Frame] = WorkQueue()
        self._last_vertex_id: int | None = None
        self._last_pose: SE3 | None = None
        self._loop_edges_at_last_optimization = 0
        self._num_optimizations = 0

        self._busy = False
        self._thread: threading.Thread | None = None

    def enqueue(self, frame: Frame) -> None:
        """Queue a frame for insertion. Never blocks, never drops."""
        self._queue.put(frame)

    def process_next(self) -> int | None:
        """Insert the oldest queued frame into the graph.

        Returns:
            The new vertex ID, or None if the queue was empty
        """
        self._busy = True
        try:
            frame = self._queue.try_get()
            if frame is None:
                return None

            vertex_id = self._graph.add_vertex(frame.pose)
            # Odometry is measured between unoptimized poses
            pose = self._graph.get_vertex(vertex_id).pose

            if self._last_vertex_id is not None:
                self._graph.add_edge(
                    self._last_vertex_id,
                    vertex_id,
                    self._last_pose.inverse().compose(pose),
                    self._config.sequential_edge_inliers,
                )
            self._last_vertex_id = vertex_id
            self._last_pose = pose

            if self._should_optimize(vertex_id):
                self.update()
        finally:
            self._busy = False

        return vertex_id

    def _should_optimize(self, vertex_id: int) -> bool:
        if self._config.optimize_every > 0 and (vertex_id + 1) % self._config.optimize_every == 0:
            return True
        # A loop closure arrived since the last optimization
        return self._graph.num_loop_edges > self._loop_edges_at_last_optimization

    def update(self) -> None:
        """Optimize the graph and write a snapshot if configured."""
        self._loop_edges_at_last_optimization = self._graph.num_loop_edges
        self._graph.optimize()
        self._num_optimizations += 1

        if self._config.save_on_optimize and self._snapshot_dir is not None:
            self._graph.save(self._snapshot_dir / self._config.snapshot_name)

    def run(self, stop_event: threading.Event) -> None:
        """Worker loop: poll the queue until `stop_event` is set."""
        print("[Graph] Ingestion started")

        while not stop_event.is_set():
            try:
                if self.process_next() is None:
                    time.sleep(self._config.poll_interval)
            except Exception as e:
                print(f"[Graph] Error: {e}")
                continue

        print("[Graph] Ingestion stopped")

    def start(self, stop_event: threading.Event) -> None:
        """Run the worker loop in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self.run, args=(stop_event,), name="graph-ingestion", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float = 5.0) -> bool:
        """Wait for the worker thread to exit.

        Returns:
            False if the worker is still running after `timeout`
        """
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                return False
            self._thread = None
        return True

    def wait_until_idle(self, timeout: float = 5.0) -> bool:
        """Block until the queue is drained and no frame is in flight.

        Returns:
            True if idle before the timeout expired
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if len(self._queue) == 0 and not self._busy:
                return True
            time.sleep(self._config.poll_interval)
        return False

    @property
    def pending(self) -> int:
        """Number of frames waiting in the queue."""
        return len(self._queue)

    @property
    def num_optimizations(self) -> int:
        return self._num_optimizations

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
