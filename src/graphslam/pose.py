"""SE(3) pose representation for graph vertices, edges and clusters."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np
from scipy.spatial.transform import Rotation


@dataclass
class SE3:
    """A 6-DoF rigid transform.

    Used both as an absolute pose (T_world_camera for clusters,
    T_world_odom for graph vertices) and as a relative constraint
    (T_from_to on edges). Applying it to a point:

        p_world = rotation @ p_local + translation

    Attributes:
        rotation: Proper rotation matrix (3, 3)
        translation: Translation vector (3,)
    """

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        """Coerce to float64 and check shapes."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).reshape(-1)

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(f"Translation must be (3,), got {self.translation.shape}")

    @classmethod
    def identity(cls) -> SE3:
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Build from a homogeneous 4x4 matrix (as persisted with clusters)."""
        T = np.asarray(T, dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Build from an OpenCV axis-angle vector and a translation.

        Note that cv2.solvePnP* describe T_camera_world, so a PnP result has
        to be inverted before it can be used as a camera pose.
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=R, translation=tvec)

    def to_matrix(self) -> np.ndarray:
        """Homogeneous 4x4 form."""
        T = np.identity(4)
        T[:3, :3], T[:3, 3] = self.rotation, self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Axis-angle rotation and translation, the solver's parameterization."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.reshape(3), self.translation.copy()

    def to_quaternion(self) -> np.ndarray:
        """Rotation as a unit quaternion in g2o order (x, y, z, w)."""
        return Rotation.from_matrix(self.rotation).as_quat()

    def inverse(self) -> SE3:
        rotation_t = self.rotation.T
        return SE3(rotation=rotation_t, translation=-(rotation_t @ self.translation))

    def compose(self, other: SE3) -> SE3:
        """Chain two transforms: `a.compose(b)` is a @ b.

        Example:
            vertex_i.pose.inverse().compose(vertex_j.pose) is the edge T_i_j
        """
        return SE3(
            rotation=self.rotation @ other.rotation,
            translation=self.rotation @ other.translation + self.translation,
        )

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 3) local points, e.g. a cluster's 3D points, to the world."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")
        return points @ self.rotation.T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        return self.rotation @ np.asarray(point, dtype=np.float64).reshape(3) + self.translation

    def copy(self) -> SE3:
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    def is_close(self, other: SE3, atol: float = 1e-9) -> bool:
        """Element-wise comparison of rotation and translation."""
        return bool(
            np.allclose(self.rotation, other.rotation, atol=atol)
            and np.allclose(self.translation, other.translation, atol=atol)
        )

    @property
    def position(self) -> np.ndarray:
        """Origin of the local frame, in world coordinates."""
        return self.translation.copy()

    def __repr__(self) -> str:
        x, y, z = self.translation
        return f"SE3(t=[{x:.3f}, {y:.3f}, {z:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        return self.compose(other)
