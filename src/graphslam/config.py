"""Configuration for the pose graph and loop closing workers.

All parameters have defaults, so an empty YAML file (or none at all) gives a
working setup. A full configuration file looks like:

    working_directory: /tmp/graphslam
    camera:
      intrinsics: [458.654, 457.296, 367.215, 248.375]  # [fx, fy, cx, cy]
    camera_to_odom:
      data: [1, 0, 0, 0,  0, 1, 0, 0,  0, 0, 1, 0,  0, 0, 0, 1]
    graph:
      optimize_every: 20
    loop_closing:
      neighbors: 10
      ratio: 0.8
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import numpy as np
import yaml


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float = 458.654  # Focal length x (pixels)
    fy: float = 457.296  # Focal length y (pixels)
    cx: float = 367.215  # Principal point x (pixels)
    cy: float = 248.375  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass
class GraphConfig:
    """Configuration for graph ingestion and optimization."""

    poll_interval: float = 0.002  # Sleep (s) when the frame queue is empty
    optimize_every: int = 20  # Vertices between two optimizations
    max_iterations: int = 50  # Solver iterations
    sequential_edge_inliers: int = 100  # Confidence given to odometry edges
    save_on_optimize: bool = True  # Write a graph snapshot after optimizing
    snapshot_name: str = "graph.g2o"


@dataclass
class LoopClosingConfig:
    """Configuration for loop closure detection."""

    poll_interval: float = 0.002  # Sleep (s) when the cluster queue is empty
    neighbors: int = 10  # Temporal neighbors examined / excluded from hash search
    ratio: float = 0.8  # Ratio test threshold for descriptor matching
    min_match_percentage: int = 50  # Retain neighbors matching more than this
    n_candidates: int = 5  # Hash candidates returned per query
    pnp_iterations: int = 100
    pnp_reprojection_error: float = 1.3  # Pixels
    max_inliers: int = 100  # Inlier count saturates here
    n_projections: int = 64  # Random projections in the hash
    hash_seed: int = 0
    verbose: bool = False


@dataclass
class SLAMConfig:
    """Top-level configuration.

    Attributes:
        working_directory: Root for per-process persisted state
        camera: Intrinsics used for PnP
        camera_to_odom: 4x4 extrinsic applied to frame poses
        graph: Pose graph settings
        loop_closing: Loop closing settings
    """

    working_directory: Path = field(default_factory=lambda: Path("/tmp/graphslam"))
    camera: CameraIntrinsics = field(default_factory=CameraIntrinsics)
    camera_to_odom: np.ndarray = field(default_factory=lambda: np.eye(4))
    graph: GraphConfig = field(default_factory=GraphConfig)
    loop_closing: LoopClosingConfig = field(default_factory=LoopClosingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> SLAMConfig:
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML file

        Returns:
            Parsed configuration

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file contents are invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SLAMConfig:
        """Build configuration from a parsed mapping."""
        if not isinstance(data, dict):
            raise ValueError(f"Configuration must be a mapping, got {type(data).__name__}")

        known = {"working_directory", "camera", "camera_to_odom", "graph", "loop_closing"}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        config = cls()
        if "working_directory" in data:
            config.working_directory = Path(data["working_directory"])

        if "camera" in data:
            intrinsics = (data["camera"] or {}).get("intrinsics")
            if intrinsics is None or len(intrinsics) != 4:
                raise ValueError("camera.intrinsics must be [fx, fy, cx, cy]")
            config.camera = CameraIntrinsics(*(float(v) for v in intrinsics))

        if "camera_to_odom" in data:
            values = (data["camera_to_odom"] or {}).get("data")
            if values is None or len(values) != 16:
                raise ValueError("camera_to_odom.data must hold 16 values")
            config.camera_to_odom = np.array(values, dtype=np.float64).reshape(4, 4)

        if "graph" in data:
            config.graph = _section(GraphConfig, data["graph"], "graph")
        if "loop_closing" in data:
            config.loop_closing = _section(
                LoopClosingConfig, data["loop_closing"], "loop_closing"
            )

        return config


def _section(section_cls: type, values: dict[str, Any] | None, name: str):
    """Instantiate a config section, rejecting unknown keys."""
    values = values or {}
    allowed = {f.name for f in fields(section_cls)}
    unknown = set(values) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return section_cls(**values)
