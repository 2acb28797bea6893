"""Input records produced by the perception front end.

Frames feed the pose graph; clusters feed loop closing. Both are plain
dataclasses holding primitive arrays so they can be queued between
worker threads without copying custom objects around.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

import numpy as np

from .pose import SE3


@dataclass(frozen=True, eq=False)
class Frame:
    """A pose observation to be inserted into the graph as a vertex.

    Attributes:
        pose: Camera pose in the world frame
        timestamp: Acquisition time or sequence number
    """

    pose: SE3
    timestamp: float = 0.0


@dataclass(frozen=True, eq=False)
class Cluster:
    """A visual observation used for loop closure detection.

    Attributes:
        frame_id: ID of the graph vertex this observation was taken from
        pose: Camera pose in the world frame
        keypoints: 2D keypoint locations (N, 2)
        descriptors: Feature descriptors (N, D), uint8 (binary) or float32
        points_3d: 3D points in the camera frame (N, 3), row-aligned with
            keypoints and descriptors
        id: Cluster ID, assigned when the cluster is queued for loop closing
    """

    frame_id: int
    pose: SE3
    keypoints: np.ndarray = field(repr=False)
    descriptors: np.ndarray = field(repr=False)
    points_3d: np.ndarray = field(repr=False)
    id: int = -1

    def __post_init__(self) -> None:
        # Copies, so the producer can reuse its buffers after queueing
        keypoints = np.array(self.keypoints, dtype=np.float32).reshape(-1, 2)
        points_3d = np.array(self.points_3d, dtype=np.float32).reshape(-1, 3)
        descriptors = np.array(self.descriptors)
        if descriptors.ndim != 2:
            raise ValueError(
                f"Descriptors must be a 2D matrix, got shape {descriptors.shape}"
            )

        n = len(descriptors)
        if len(keypoints) != n or len(points_3d) != n:
            raise ValueError(
                f"Cluster arrays must be aligned: {len(keypoints)} keypoints, "
                f"{n} descriptors, {len(points_3d)} 3D points"
            )

        # Frozen dataclass: normalized arrays are set through object.__setattr__
        object.__setattr__(self, "keypoints", keypoints)
        object.__setattr__(self, "points_3d", points_3d)
        object.__setattr__(self, "descriptors", descriptors)

    def with_id(self, cluster_id: int) -> Cluster:
        """Shallow copy carrying `cluster_id`; arrays are shared, not converted."""
        cluster = copy.copy(self)
        object.__setattr__(cluster, "id", cluster_id)
        return cluster

    @property
    def num_features(self) -> int:
        """Number of keypoints/descriptors/3D points."""
        return len(self.descriptors)
