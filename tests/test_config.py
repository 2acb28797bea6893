"""Tests for configuration loading."""

from pathlib import Path

import numpy as np
import pytest

from graphslam.config import (
    CameraIntrinsics,
    GraphConfig,
    LoopClosingConfig,
    SLAMConfig,
)


class TestSLAMConfig:
    """Test suite for SLAMConfig."""

    def test_defaults(self):
        """Test that the defaults match the loop closing reference values."""
        config = SLAMConfig()

        assert config.loop_closing.neighbors == 10
        assert config.loop_closing.ratio == 0.8
        assert config.loop_closing.min_match_percentage == 50
        assert config.loop_closing.n_candidates == 5
        assert config.loop_closing.pnp_iterations == 100
        assert config.loop_closing.pnp_reprojection_error == 1.3
        assert config.loop_closing.poll_interval == 0.002
        assert np.allclose(config.camera_to_odom, np.eye(4))

    def test_from_yaml(self, tmp_path: Path):
        """Test loading a full configuration file."""
        config_file = tmp_path / "slam.yaml"
        config_file.write_text(
            "working_directory: /tmp/somewhere\n"
            "camera:\n"
            "  intrinsics: [500, 501, 320, 240]\n"
            "camera_to_odom:\n"
            "  data: [1, 0, 0, 0.5,  0, 1, 0, 0,  0, 0, 1, 0,  0, 0, 0, 1]\n"
            "graph:\n"
            "  optimize_every: 5\n"
            "loop_closing:\n"
            "  neighbors: 4\n"
            "  verbose: true\n"
        )

        config = SLAMConfig.from_yaml(config_file)

        assert config.working_directory == Path("/tmp/somewhere")
        assert config.camera == CameraIntrinsics(500.0, 501.0, 320.0, 240.0)
        assert config.camera_to_odom[0, 3] == 0.5
        assert config.graph.optimize_every == 5
        assert config.graph.max_iterations == GraphConfig().max_iterations
        assert config.loop_closing.neighbors == 4
        assert config.loop_closing.verbose is True
        assert config.loop_closing.ratio == LoopClosingConfig().ratio

    def test_from_yaml_empty_file(self, tmp_path: Path):
        """Test that an empty file yields the defaults."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        config = SLAMConfig.from_yaml(config_file)
        assert config.loop_closing == LoopClosingConfig()

    def test_from_yaml_missing_file(self, tmp_path: Path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            SLAMConfig.from_yaml(tmp_path / "missing.yaml")

    def test_unknown_top_level_key(self):
        """Test that typos are reported instead of ignored."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            SLAMConfig.from_dict({"loop_closure": {}})

    def test_unknown_section_key(self):
        """Test that unknown section keys are rejected."""
        with pytest.raises(ValueError, match="Unknown keys in 'loop_closing'"):
            SLAMConfig.from_dict({"loop_closing": {"neighbours": 3}})

    def test_bad_intrinsics(self):
        """Test that intrinsics must have four values."""
        with pytest.raises(ValueError, match="camera.intrinsics"):
            SLAMConfig.from_dict({"camera": {"intrinsics": [1, 2, 3]}})

    def test_bad_extrinsic(self):
        """Test that camera_to_odom must have sixteen values."""
        with pytest.raises(ValueError, match="camera_to_odom.data"):
            SLAMConfig.from_dict({"camera_to_odom": {"data": [1, 0, 0]}})

    def test_not_a_mapping(self):
        """Test that a non-mapping document is rejected."""
        with pytest.raises(ValueError, match="must be a mapping"):
            SLAMConfig.from_dict(["neighbors", 3])


class TestCameraIntrinsics:
    """Test suite for CameraIntrinsics."""

    def test_to_matrix(self):
        """Test the intrinsic matrix layout."""
        K = CameraIntrinsics(fx=500.0, fy=400.0, cx=320.0, cy=240.0).to_matrix()
        assert np.allclose(K, [[500.0, 0.0, 320.0], [0.0, 400.0, 240.0], [0.0, 0.0, 1.0]])
