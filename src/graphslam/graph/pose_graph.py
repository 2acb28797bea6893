"""Pose graph store shared by the ingestion and loop closing workers.

Vertices are robot poses, one per ingested frame; edges are relative pose
constraints, either sequential (odometry between consecutive vertices) or
loop closures proposed by the loop closing worker. All mutations go through
a single lock, so both workers can add to the graph concurrently.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ..pose import SE3
from .optimizer import PoseGraphOptimizer, ScipyPoseGraphOptimizer


@dataclass(eq=False)
class Vertex:
    """A node in the pose graph.

    Attributes:
        id: Vertex ID (allocated in insertion order, starting at 0)
        pose: Robot pose in the world frame
    """

    id: int
    pose: SE3


@dataclass(frozen=True, eq=False)
class Edge:
    """A relative pose constraint between two vertices.

    Attributes:
        from_id: Source vertex ID
        to_id: Target vertex ID
        transform: Measured relative transform T_from_to
        inliers: Confidence proxy (feature inlier count)
        is_loop: Whether this is a loop closure edge
    """

    from_id: int
    to_id: int
    transform: SE3
    inliers: int
    is_loop: bool = False

    @property
    def information(self) -> np.ndarray:
        """6x6 information matrix, proportional to the inlier count."""
        return float(self.inliers) * np.eye(6, dtype=np.float64)


class PoseGraphStore:
    """Owns the graph vertices and edges.

    Optimization copies the graph under the lock, solves without holding it
    and writes the results back under the lock, so vertices and edges can be
    added while the solver runs.
    """

    def __init__(
        self,
        camera_matrix: np.ndarray | None = None,
        optimizer: PoseGraphOptimizer | None = None,
    ) -> None:
        """Initialize an empty graph.

        Args:
            camera_matrix: 3x3 camera intrinsics, exposed to loop closing
            optimizer: Pose graph solver (default: ScipyPoseGraphOptimizer)
        """
        self._camera_matrix = (
            np.eye(3, dtype=np.float64)
            if camera_matrix is None
            else np.asarray(camera_matrix, dtype=np.float64).copy()
        )
        self._optimizer = optimizer or ScipyPoseGraphOptimizer()
        self._camera_to_odom = SE3.identity()

        self._vertices: list[Vertex] = []
        self._edges: list[Edge] = []
        self._num_rejected_edges = 0
        self._lock = threading.Lock()

    def set_camera_to_odom(self, camera_to_odom: SE3) -> None:
        """Set the extrinsic composed onto every incoming frame pose."""
        self._camera_to_odom = camera_to_odom.copy()

    @property
    def camera_to_odom(self) -> SE3:
        return self._camera_to_odom.copy()

    @property
    def camera_matrix(self) -> np.ndarray:
        """3x3 camera intrinsics (copy)."""
        return self._camera_matrix.copy()

    def add_vertex(self, pose: SE3) -> int:
        """Insert a vertex for a camera pose.

        Args:
            pose: Camera pose in the world frame

        Returns:
            The new vertex ID
        """
        vertex_pose = pose.compose(self._camera_to_odom)
        with self._lock:
            vertex_id = len(self._vertices)
            self._vertices.append(Vertex(id=vertex_id, pose=vertex_pose))
        return vertex_id

    def add_edge(
        self,
        from_id: int,
        to_id: int,
        transform: SE3,
        inliers: int,
        is_loop: bool = False,
    ) -> bool:
        """Insert an edge between two existing vertices.

        Args:
            from_id: Source vertex ID
            to_id: Target vertex ID
            transform: Relative transform T_from_to
            inliers: Inlier count backing the measurement
            is_loop: True for loop closure edges

        Returns:
            True if inserted, False if rejected because a vertex is unknown
        """
        with self._lock:
            n = len(self._vertices)
            if not (0 <= from_id < n and 0 <= to_id < n):
                self._num_rejected_edges += 1
                rejected = True
            else:
                self._edges.append(
                    Edge(
                        from_id=from_id,
                        to_id=to_id,
                        transform=transform.copy(),
                        inliers=int(inliers),
                        is_loop=is_loop,
                    )
                )
                rejected = False

        if rejected:
            print(
                f"[Graph] Rejected edge {from_id} -> {to_id}: "
                f"unknown vertex (graph has {n} vertices)"
            )
        return not rejected

    def optimize(self) -> dict[int, SE3]:
        """Refine all vertex poses with the solver.

        Returns:
            Vertex ID -> optimized pose for the vertices present when the
            snapshot was taken
        """
        with self._lock:
            poses = {v.id: v.pose.copy() for v in self._vertices}
            edges = list(self._edges)

        optimized = self._optimizer.optimize(poses, edges)

        with self._lock:
            for vertex_id, pose in optimized.items():
                self._vertices[vertex_id].pose = pose.copy()

        return optimized

    def save(self, path: str | Path) -> bool:
        """Write the graph in g2o text format.

        Args:
            path: Output file

        Returns:
            True on success; failures are reported and ignored
        """
        with self._lock:
            vertices = [Vertex(id=v.id, pose=v.pose.copy()) for v in self._vertices]
            edges = list(self._edges)

        lines = []
        for v in vertices:
            lines.append(f"VERTEX_SE3:QUAT {v.id} {_format_pose(v.pose)}")
        for e in edges:
            info = e.information[np.triu_indices(6)]
            lines.append(
                f"EDGE_SE3:QUAT {e.from_id} {e.to_id} {_format_pose(e.transform)} "
                + " ".join(f"{x:g}" for x in info)
            )

        try:
            Path(path).write_text("\n".join(lines) + "\n")
        except OSError as e:
            print(f"[Graph] ERROR -> Impossible to save the graph to {path}: {e}")
            return False
        return True

    def get_vertex(self, vertex_id: int) -> Vertex | None:
        """Return a copy of a vertex, or None if it doesn't exist."""
        with self._lock:
            if not 0 <= vertex_id < len(self._vertices):
                return None
            v = self._vertices[vertex_id]
            return Vertex(id=v.id, pose=v.pose.copy())

    @property
    def vertices(self) -> list[Vertex]:
        """All vertices in ID order (copies)."""
        with self._lock:
            return [Vertex(id=v.id, pose=v.pose.copy()) for v in self._vertices]

    @property
    def edges(self) -> list[Edge]:
        """All edges in insertion order."""
        with self._lock:
            return list(self._edges)

    @property
    def num_vertices(self) -> int:
        with self._lock:
            return len(self._vertices)

    @property
    def num_edges(self) -> int:
        with self._lock:
            return len(self._edges)

    @property
    def num_loop_edges(self) -> int:
        with self._lock:
            return sum(1 for e in self._edges if e.is_loop)

    @property
    def num_rejected_edges(self) -> int:
        """Edges dropped because they referenced unknown vertices."""
        with self._lock:
            return self._num_rejected_edges


def _format_pose(pose: SE3) -> str:
    qx, qy, qz, qw = pose.to_quaternion()
    x, y, z = pose.translation
    return f"{x:.6f} {y:.6f} {z:.6f} {qx:.6f} {qy:.6f} {qz:.6f} {qw:.6f}"
