"""Pose graph: vertex/edge store, solver and ingestion worker."""

from .graph_ingestion import GraphIngestionPipeline
from .optimizer import PoseGraphOptimizer, ScipyPoseGraphOptimizer
from .pose_graph import Edge, PoseGraphStore, Vertex

__all__ = [
    # Store
    "PoseGraphStore",
    "Vertex",
    "Edge",
    # Solver
    "PoseGraphOptimizer",
    "ScipyPoseGraphOptimizer",
    # Worker
    "GraphIngestionPipeline",
]
