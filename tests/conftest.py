"""Shared fixtures: synthetic scenes observed by a pinhole camera."""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest

from graphslam.config import CameraIntrinsics
from graphslam.loop_closure import NullMetricsPublisher, ObservationStore
from graphslam.messages import Cluster
from graphslam.pose import SE3

INTRINSICS = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)


class Scene:
    """Generates clusters observing random 3D points with known geometry.

    Descriptors are random float vectors, so two independently generated
    places share (almost) no ratio-test matches, while re-observing a place
    reuses its descriptors exactly.
    """

    def __init__(self, seed: int = 0, n_points: int = 60, dimension: int = 128) -> None:
        self.rng = np.random.default_rng(seed)
        self.n_points = n_points
        self.dimension = dimension
        self.camera_matrix = INTRINSICS.to_matrix()

    @staticmethod
    def small_motion(yaw_deg: float = 2.0, translation=(0.05, 0.0, 0.1)) -> SE3:
        """A small rigid motion (rotation about the camera y axis)."""
        rvec = np.array([0.0, np.deg2rad(yaw_deg), 0.0])
        return SE3.from_rvec_tvec(rvec, np.asarray(translation, dtype=np.float64))

    @staticmethod
    def trajectory_pose(index: int) -> SE3:
        """Camera moving along x, 0.5 m per step."""
        return SE3(rotation=np.eye(3), translation=[0.5 * index, 0.0, 0.0])

    def descriptors(self, n: int | None = None) -> np.ndarray:
        return self.rng.random((n or self.n_points, self.dimension)).astype(np.float32)

    def points_in_view(self, pose: SE3, n: int | None = None) -> np.ndarray:
        """World points 4-8 m in front of a camera."""
        n = n or self.n_points
        camera_points = np.column_stack(
            [
                self.rng.uniform(-2.0, 2.0, n),
                self.rng.uniform(-1.5, 1.5, n),
                self.rng.uniform(4.0, 8.0, n),
            ]
        )
        return pose.transform_points(camera_points)

    def observe(
        self,
        frame_id: int,
        pose: SE3,
        points_world: np.ndarray,
        descriptors: np.ndarray,
    ) -> Cluster:
        """Cluster seen from `pose`: projected keypoints and camera-frame points."""
        camera_points = pose.inverse().transform_points(points_world)
        rvec = np.zeros(3)
        tvec = np.zeros(3)
        keypoints, _ = cv2.projectPoints(
            np.ascontiguousarray(camera_points), rvec, tvec, self.camera_matrix, None
        )
        return Cluster(
            frame_id=frame_id,
            pose=pose,
            keypoints=keypoints.reshape(-1, 2),
            descriptors=descriptors,
            points_3d=camera_points,
        )

    def place(self, frame_id: int, pose: SE3 | None = None) -> Cluster:
        """A never-seen-before place."""
        pose = pose or self.trajectory_pose(frame_id)
        return self.observe(frame_id, pose, self.points_in_view(pose), self.descriptors())

    def revisit(self, cluster: Cluster, frame_id: int, pose: SE3) -> Cluster:
        """Observe the points of `cluster` again from `pose`, rows shuffled."""
        points_world = cluster.pose.transform_points(cluster.points_3d)
        order = self.rng.permutation(cluster.num_features)
        return self.observe(frame_id, pose, points_world[order], cluster.descriptors[order])


class RecordingGraph:
    """Graph interface stand-in that records proposed edges."""

    def __init__(self, camera_matrix: np.ndarray) -> None:
        self.camera_matrix = camera_matrix
        self.camera_to_odom = SE3.identity()
        self.edges: list[tuple] = []

    def add_edge(self, from_id, to_id, transform, inliers, is_loop=False) -> bool:
        self.edges.append((from_id, to_id, transform, inliers, is_loop))
        return True


class RecordingPublisher:
    """Metrics publisher that records what it is given."""

    def __init__(self, subscribed: bool = True) -> None:
        self.subscribed = subscribed
        self.published: list[tuple[str, float]] = []
        self.loop_closures: list[int] = []

    def has_subscribers(self) -> bool:
        return self.subscribed

    def publish(self, name: str, value: float) -> None:
        self.published.append((name, value))

    def log_loop_closure(self, index, from_position, to_position) -> None:
        self.loop_closures.append(index)


@pytest.fixture
def scene() -> Scene:
    return Scene(seed=7)


@pytest.fixture
def store(tmp_path: Path) -> ObservationStore:
    """Observation store with an initialized working area."""
    store = ObservationStore(tmp_path / "work")
    assert store.init()
    return store


@pytest.fixture
def recording_graph(scene: Scene) -> RecordingGraph:
    return RecordingGraph(scene.camera_matrix)


@pytest.fixture
def null_publisher() -> NullMetricsPublisher:
    return NullMetricsPublisher()


@pytest.fixture
def subscribed_publisher() -> RecordingPublisher:
    return RecordingPublisher(subscribed=True)


@pytest.fixture
def unsubscribed_publisher() -> RecordingPublisher:
    return RecordingPublisher(subscribed=False)
