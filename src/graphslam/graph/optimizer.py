"""Pose graph optimization for global drift correction.

The solver sees a snapshot of the graph (vertex poses and relative pose
constraints) and returns refined poses. It only optimizes poses, never
3D structure, which keeps it fast enough to run online.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from ..pose import SE3

if TYPE_CHECKING:
    from .pose_graph import Edge


class PoseGraphOptimizer(Protocol):
    """Solver interface used by PoseGraphStore."""

    def optimize(self, poses: dict[int, SE3], edges: list[Edge]) -> dict[int, SE3]:
        """Return refined poses for every vertex in `poses`."""
        ...


class ScipyPoseGraphOptimizer:
    """Sparse least-squares pose graph solver built on scipy.

    The lowest vertex ID is held fixed to remove the gauge freedom. Each edge
    contributes a 6D residual log(T_ij_pred^-1 @ T_ij_meas), weighted by the
    square root of its inlier count.
    """

    def __init__(self, max_iterations: int = 50, ftol: float = 1e-6) -> None:
        """Initialize solver.

        Args:
            max_iterations: Function evaluations per parameter
            ftol: Relative cost tolerance for termination
        """
        self._max_iterations = max_iterations
        self._ftol = ftol

    def optimize(self, poses: dict[int, SE3], edges: list[Edge]) -> dict[int, SE3]:
        """Optimize all poses in the graph.

        Args:
            poses: Vertex ID -> initial pose
            edges: Relative pose constraints between vertices in `poses`

        Returns:
            Vertex ID -> optimized pose
        """
        edges = [e for e in edges if e.from_id in poses and e.to_id in poses]
        if len(poses) < 2 or not edges:
            return {k: v.copy() for k, v in poses.items()}

        pose_ids = sorted(poses)
        anchor = pose_ids[0]
        free_ids = pose_ids[1:]
        # Parameter block index for every free vertex; the anchor has none
        block = {pid: i for i, pid in enumerate(free_ids)}

        x0 = np.concatenate([np.concatenate(poses[pid].to_rvec_tvec()) for pid in free_ids])
        weights = [np.sqrt(max(edge.inliers, 1)) for edge in edges]

        def unpack(x: np.ndarray) -> dict[int, SE3]:
            current = {anchor: poses[anchor]}
            for pid, i in block.items():
                current[pid] = SE3.from_rvec_tvec(x[6 * i : 6 * i + 3], x[6 * i + 3 : 6 * i + 6])
            return current

        def residuals(x: np.ndarray) -> np.ndarray:
            current = unpack(x)
            out = np.empty(6 * len(edges), dtype=np.float64)
            for k, edge in enumerate(edges):
                predicted = current[edge.from_id].inverse().compose(current[edge.to_id])
                error = predicted.inverse().compose(edge.transform)
                out[6 * k : 6 * k + 6] = _se3_log(error) * weights[k]
            return out

        result = least_squares(
            residuals,
            x0,
            method="trf",  # 'lm' doesn't support jac_sparsity
            jac_sparsity=_jacobian_sparsity(edges, block),
            ftol=self._ftol,
            max_nfev=self._max_iterations * len(x0),
        )

        optimized = unpack(result.x)
        optimized[anchor] = poses[anchor].copy()
        return optimized


def _jacobian_sparsity(edges: list[Edge], block: dict[int, int]):
    """Each edge residual depends only on the parameters of its two vertices."""
    jac = lil_matrix((6 * len(edges), 6 * len(block)), dtype=np.int8)
    for k, edge in enumerate(edges):
        for vertex_id in (edge.from_id, edge.to_id):
            if vertex_id in block:
                i = block[vertex_id]
                jac[6 * k : 6 * k + 6, 6 * i : 6 * i + 6] = 1
    return jac.tocsr()


def _se3_log(pose: SE3) -> np.ndarray:
    """6D error vector [axis-angle rotation, translation]."""
    rvec, _ = cv2.Rodrigues(pose.rotation)
    return np.concatenate([rvec.flatten(), pose.translation])
