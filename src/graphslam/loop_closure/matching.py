"""Feature matching and robust motion estimation for loop closure.

Two OpenCV-backed collaborators used by the loop closing worker:
- DescriptorMatcher: brute-force k-NN matching with Lowe's ratio test
- MotionEstimator: PnP + RANSAC on 2D-3D correspondences

Degenerate inputs (too few descriptors, too few correspondences, solver
failure) yield empty results instead of errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import cv2
import numpy as np

from ..pose import SE3

MIN_PNP_CORRESPONDENCES = 4


@dataclass(eq=False)
class MotionEstimate:
    """Result of PnP + RANSAC.

    Attributes:
        pose: Camera pose in the frame of the 3D points (None if unsolved)
        inliers: Indices of inlier correspondences (at most max_inliers)
        num_correspondences: Number of correspondences fed to the solver
    """

    pose: SE3 | None = None
    inliers: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    num_correspondences: int = 0

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)


class DescriptorMatcher:
    """Brute-force ratio-test matcher.

    Binary (uint8) descriptors are compared with Hamming distance, all
    others with L2 distance.
    """

    def __init__(self) -> None:
        self._hamming = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
        self._l2 = cv2.BFMatcher(cv2.NORM_L2, crossCheck=False)

    def match(
        self,
        query_descriptors: np.ndarray,
        train_descriptors: np.ndarray,
        ratio: float = 0.8,
    ) -> list[cv2.DMatch]:
        """Match query descriptors against train descriptors.

        Args:
            query_descriptors: Query set (N, D)
            train_descriptors: Train set (M, D)
            ratio: Accept a match if best < ratio * second best

        Returns:
            Matches with queryIdx/trainIdx into the two sets
        """
        if len(query_descriptors) < 2 or len(train_descriptors) < 2:
            return []

        if query_descriptors.dtype == np.uint8 and train_descriptors.dtype == np.uint8:
            matcher = self._hamming
            query, train = query_descriptors, train_descriptors
        else:
            matcher = self._l2
            query = np.ascontiguousarray(query_descriptors, dtype=np.float32)
            train = np.ascontiguousarray(train_descriptors, dtype=np.float32)

        good = []
        for pair in matcher.knnMatch(query, train, k=2):
            if len(pair) == 2 and pair[0].distance < ratio * pair[1].distance:
                good.append(pair[0])
        return good


class MotionEstimator:
    """Camera pose from 2D-3D correspondences with PnP + RANSAC."""

    def estimate(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        camera_matrix: np.ndarray,
        iterations: int = 100,
        reprojection_error: float = 1.3,
        max_inliers: int = 100,
    ) -> MotionEstimate:
        """Estimate the camera pose observing `points_3d` at `points_2d`.

        Args:
            points_3d: 3D points (N, 3)
            points_2d: Their image observations (N, 2)
            camera_matrix: 3x3 intrinsics
            iterations: RANSAC iteration cap
            reprojection_error: RANSAC inlier threshold in pixels
            max_inliers: Cap on the reported inlier set

        Returns:
            MotionEstimate; zero inliers when no pose could be estimated
        """
        points_3d = np.ascontiguousarray(points_3d, dtype=np.float64).reshape(-1, 3)
        points_2d = np.ascontiguousarray(points_2d, dtype=np.float64).reshape(-1, 2)
        n = len(points_3d)

        if n < MIN_PNP_CORRESPONDENCES:
            return MotionEstimate(num_correspondences=n)

        try:
            success, rvec, tvec, inliers = cv2.solvePnPRansac(
                objectPoints=points_3d,
                imagePoints=points_2d,
                cameraMatrix=np.asarray(camera_matrix, dtype=np.float64),
                distCoeffs=None,
                iterationsCount=iterations,
                reprojectionError=reprojection_error,
                confidence=0.99,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error:
            return MotionEstimate(num_correspondences=n)

        if not success or inliers is None or len(inliers) == 0:
            return MotionEstimate(num_correspondences=n)

        # PnP returns T_camera_world; the camera pose is its inverse
        pose = SE3.from_rvec_tvec(rvec, tvec).inverse()
        return MotionEstimate(
            pose=pose,
            inliers=inliers.flatten()[:max_inliers].astype(np.int64),
            num_correspondences=n,
        )
