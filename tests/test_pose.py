"""Tests for the SE3 pose type."""

import numpy as np
import pytest

from graphslam.pose import SE3


def _pose(rvec, tvec) -> SE3:
    return SE3.from_rvec_tvec(np.asarray(rvec, dtype=np.float64), np.asarray(tvec))


class TestSE3:
    """Test suite for SE3."""

    def test_identity(self):
        """Test that identity has no rotation and no translation."""
        T = SE3.identity()
        assert np.allclose(T.to_matrix(), np.eye(4))

    def test_invalid_shapes(self):
        """Test that malformed rotations and translations are rejected."""
        with pytest.raises(ValueError, match="Rotation must be 3x3"):
            SE3(rotation=np.eye(2), translation=np.zeros(3))
        with pytest.raises(ValueError, match="Translation must be"):
            SE3(rotation=np.eye(3), translation=np.zeros(4))
        with pytest.raises(ValueError, match="Transform must be 4x4"):
            SE3.from_matrix(np.eye(3))

    def test_inverse_compose_is_identity(self):
        """Test that T @ T^-1 is the identity."""
        T = _pose([0.1, -0.2, 0.3], [1.0, 2.0, -0.5])
        assert (T @ T.inverse()).is_close(SE3.identity(), atol=1e-12)
        assert (T.inverse() @ T).is_close(SE3.identity(), atol=1e-12)

    def test_matrix_round_trip(self):
        """Test conversion to and from a 4x4 matrix."""
        T = _pose([0.3, 0.0, -0.1], [0.0, 1.0, 2.0])
        assert SE3.from_matrix(T.to_matrix()).is_close(T)

    def test_rvec_tvec_round_trip(self):
        """Test conversion to and from an OpenCV rvec/tvec pair."""
        T = _pose([0.05, 0.4, -0.2], [3.0, -1.0, 0.5])
        rvec, tvec = T.to_rvec_tvec()
        assert SE3.from_rvec_tvec(rvec, tvec).is_close(T, atol=1e-12)

    def test_compose_chains_frames(self):
        """Test that composing world<-a and a<-b gives world<-b."""
        T_wa = _pose([0.0, 0.0, np.pi / 2], [1.0, 0.0, 0.0])
        T_ab = SE3(rotation=np.eye(3), translation=[1.0, 0.0, 0.0])

        T_wb = T_wa.compose(T_ab)

        # 1 m along a's x axis is 1 m along the world y axis
        assert np.allclose(T_wb.position, [1.0, 1.0, 0.0])

    def test_transform_points(self):
        """Test that batch and single point transforms agree."""
        T = _pose([0.2, 0.1, 0.0], [0.5, -0.5, 1.0])
        points = np.array([[1.0, 2.0, 3.0], [-1.0, 0.0, 4.0]])

        batch = T.transform_points(points)

        assert batch.shape == (2, 3)
        assert np.allclose(batch[1], T.transform_point(points[1]))

    def test_transform_points_wrong_shape(self):
        """Test that non Nx3 input is rejected."""
        with pytest.raises(ValueError, match="Points must be Nx3"):
            SE3.identity().transform_points(np.zeros((4, 2)))

    def test_to_quaternion(self):
        """Test quaternion ordering (x, y, z, w)."""
        T = _pose([0.0, 0.0, np.pi], [0.0, 0.0, 0.0])
        q = T.to_quaternion()
        assert np.allclose(np.abs(q), [0.0, 0.0, 1.0, 0.0], atol=1e-9)
        assert np.allclose(SE3.identity().to_quaternion(), [0.0, 0.0, 0.0, 1.0])

    def test_copy_is_independent(self):
        """Test that copies don't share arrays."""
        T = SE3.identity()
        C = T.copy()
        C.translation[0] = 5.0
        assert T.translation[0] == 0.0
