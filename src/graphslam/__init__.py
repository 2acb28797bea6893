"""graphslam - online pose graph and loop closing back end for visual SLAM."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .config import CameraIntrinsics, GraphConfig, LoopClosingConfig, SLAMConfig
from .errors import (
    DescriptorDimensionError,
    GraphSLAMError,
    HashIndexNotInitializedError,
)
from .graph import (
    Edge,
    GraphIngestionPipeline,
    PoseGraphStore,
    ScipyPoseGraphOptimizer,
    Vertex,
)
from .loop_closure import (
    HashIndex,
    LoopClosingPipeline,
    LoopClosureRecord,
    MinInliersPolicy,
    ObservationStore,
    RerunMetricsPublisher,
    UndecidedPolicy,
)
from .messages import Cluster, Frame
from .pose import SE3
from .slam_system import SLAMSystem

__all__ = [
    "__version__",
    # System
    "SLAMSystem",
    # Configuration
    "SLAMConfig",
    "GraphConfig",
    "LoopClosingConfig",
    "CameraIntrinsics",
    # Data
    "SE3",
    "Frame",
    "Cluster",
    # Pose graph
    "PoseGraphStore",
    "Vertex",
    "Edge",
    "ScipyPoseGraphOptimizer",
    "GraphIngestionPipeline",
    # Loop closure
    "HashIndex",
    "ObservationStore",
    "LoopClosingPipeline",
    "LoopClosureRecord",
    "UndecidedPolicy",
    "MinInliersPolicy",
    "RerunMetricsPublisher",
    # Errors
    "GraphSLAMError",
    "HashIndexNotInitializedError",
    "DescriptorDimensionError",
]
