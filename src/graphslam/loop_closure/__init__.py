"""Loop closure detection for the pose graph.

Detects when the camera revisits a previously seen place so the pose
graph can correct accumulated drift.

Key components:
- HashIndex: Order-independent descriptor fingerprints for candidate search
- ObservationStore: Disk-backed cluster storage keyed by ID
- DescriptorMatcher / MotionEstimator: Ratio matching and PnP + RANSAC
- LoopClosingPipeline: Worker running neighborhood and hash searches
- MetricsPublisher: Telemetry sinks (Rerun)
"""

from .hash_index import HashEntry, HashIndex
from .loop_closing import (
    CandidateVerification,
    GraphInterface,
    LoopClosingPipeline,
    LoopClosurePolicy,
    LoopClosureRecord,
    MinInliersPolicy,
    NeighborhoodResult,
    UndecidedPolicy,
)
from .matching import DescriptorMatcher, MotionEstimate, MotionEstimator
from .observation_store import ObservationStore
from .telemetry import MetricsPublisher, NullMetricsPublisher, RerunMetricsPublisher

__all__ = [
    # Hash index
    "HashIndex",
    "HashEntry",
    # Storage
    "ObservationStore",
    # Matching
    "DescriptorMatcher",
    "MotionEstimator",
    "MotionEstimate",
    # Pipeline
    "LoopClosingPipeline",
    "LoopClosureRecord",
    "NeighborhoodResult",
    "CandidateVerification",
    "GraphInterface",
    # Policies
    "LoopClosurePolicy",
    "UndecidedPolicy",
    "MinInliersPolicy",
    # Telemetry
    "MetricsPublisher",
    "NullMetricsPublisher",
    "RerunMetricsPublisher",
]
