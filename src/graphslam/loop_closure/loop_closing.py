"""Loop closing worker.

For every queued cluster the worker runs three stages:

1. Ingest: fingerprint the cluster into the hash index and persist it.
2. Neighborhood search: match against the previous clusters of other
   frames, gather 2D-3D correspondences from the well-matched ones and
   estimate the camera pose with PnP + RANSAC.
3. Hash search: rank older clusters (outside the temporal window) by
   fingerprint similarity and geometrically verify the best candidates.

Whether a verified estimate is good enough to become a loop closure edge is
decided by a LoopClosurePolicy. The default policy accepts nothing: both
searches run and report their evidence, but no edge is proposed until an
acceptance rule is supplied.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

import cv2
import numpy as np

from ..config import LoopClosingConfig
from ..messages import Cluster
from ..pose import SE3
from ..work_queue import WorkQueue
from .hash_index import HashIndex
from .matching import DescriptorMatcher, MotionEstimate, MotionEstimator
from .observation_store import ObservationStore
from .telemetry import MetricsPublisher, RerunMetricsPublisher


@dataclass(frozen=True)
class LoopClosureRecord:
    """A confirmed loop closure between two clusters."""

    cluster_id_a: int
    cluster_id_b: int

    def involves(self, cluster_id: int) -> bool:
        return cluster_id in (self.cluster_id_a, self.cluster_id_b)

    def other(self, cluster_id: int) -> int:
        """Return the cluster linked to `cluster_id` by this record."""
        return self.cluster_id_b if cluster_id == self.cluster_id_a else self.cluster_id_a


@dataclass(eq=False)
class NeighborhoodResult:
    """Evidence gathered from the temporal neighbors of a cluster.

    Attributes:
        cluster_id: Query cluster
        processed_neighbors: Neighbors of other frames that were matched
        retained: (neighbor cluster ID, match count) of neighbors above the
            match percentage threshold
        motion: PnP + RANSAC estimate of the query camera pose (world frame)
        relative_pose: Transform from the best neighbor's vertex to the
            query's vertex (None without an estimate)
        best_frame_id: Frame of the best retained neighbor (-1 if none)
    """

    cluster_id: int
    processed_neighbors: int = 0
    retained: list[tuple[int, int]] = field(default_factory=list)
    motion: MotionEstimate = field(default_factory=MotionEstimate)
    relative_pose: SE3 | None = None
    best_frame_id: int = -1

    @property
    def num_inliers(self) -> int:
        return self.motion.num_inliers

    @property
    def num_correspondences(self) -> int:
        return self.motion.num_correspondences


@dataclass(eq=False)
class CandidateVerification:
    """Geometric verification of one hash candidate.

    Attributes:
        query_id: Query cluster
        candidate_id: Candidate cluster
        similarity: Fingerprint similarity that ranked the candidate
        candidate_frame_id: Frame of the candidate (-1 if it couldn't be read)
        num_matches: Ratio-test matches between the two clusters
        match_percentage: Matches relative to the smaller descriptor set
        motion: PnP + RANSAC estimate of the query camera pose (world frame)
        relative_pose: Transform from the candidate's vertex to the query's
            vertex (None without an estimate)
    """

    query_id: int
    candidate_id: int
    similarity: float
    candidate_frame_id: int = -1
    num_matches: int = 0
    match_percentage: int = 0
    motion: MotionEstimate = field(default_factory=MotionEstimate)
    relative_pose: SE3 | None = None

    @property
    def num_inliers(self) -> int:
        return self.motion.num_inliers


class LoopClosurePolicy(Protocol):
    """Decides which geometric estimates become loop closure edges."""

    def accept_candidate(self, verification: CandidateVerification) -> bool:
        ...

    def accept_neighborhood(self, result: NeighborhoodResult) -> bool:
        ...


class UndecidedPolicy:
    """Accepts nothing; estimates are computed and reported only."""

    def accept_candidate(self, verification: CandidateVerification) -> bool:
        return False

    def accept_neighborhood(self, result: NeighborhoodResult) -> bool:
        return False


class MinInliersPolicy:
    """Accepts estimates backed by at least `min_inliers` PnP inliers.

    There is no default threshold: callers must choose one.
    """

    def __init__(self, min_inliers: int, accept_neighborhood: bool = False) -> None:
        """Initialize policy.

        Args:
            min_inliers: Minimum inlier count for acceptance
            accept_neighborhood: Also close loops from neighborhood estimates
        """
        self._min_inliers = min_inliers
        self._neighborhood = accept_neighborhood

    def accept_candidate(self, verification: CandidateVerification) -> bool:
        return verification.num_inliers >= self._min_inliers

    def accept_neighborhood(self, result: NeighborhoodResult) -> bool:
        return self._neighborhood and result.num_inliers >= self._min_inliers


class GraphInterface(Protocol):
    """The part of PoseGraphStore loop closing depends on."""

    @property
    def camera_matrix(self) -> np.ndarray:
        ...

    @property
    def camera_to_odom(self) -> SE3:
        ...

    def add_edge(
        self,
        from_id: int,
        to_id: int,
        transform: SE3,
        inliers: int,
        is_loop: bool = False,
    ) -> bool:
        ...


class LoopClosingPipeline:
    """Producer/consumer loop closure detector.

    Producers call `enqueue` from any thread; a single worker thread runs
    `run` until the shared stop event is set. Clusters are persisted in the
    ObservationStore and read back by ID during the searches.
    """

    def __init__(
        self,
        store: ObservationStore,
        graph: GraphInterface,
        config: LoopClosingConfig | None = None,
        matcher: DescriptorMatcher | None = None,
        estimator: MotionEstimator | None = None,
        publisher: MetricsPublisher | None = None,
        policy: LoopClosurePolicy | None = None,
    ) -> None:
        """Initialize loop closing.

        Args:
            store: Cluster persistence
            graph: Receives loop closure edges, provides camera intrinsics
            config: Loop closing settings
            matcher: Descriptor matcher (default: OpenCV brute force)
            estimator: Motion estimator (default: OpenCV PnP + RANSAC)
            publisher: Metrics sink (default: Rerun)
            policy: Acceptance rule (default: UndecidedPolicy)
        """
        self._store = store
        self._graph = graph
        self._config = config or LoopClosingConfig()
        self._matcher = matcher or DescriptorMatcher()
        self._estimator = estimator or MotionEstimator()
        self._publisher = publisher or RerunMetricsPublisher()
        self._policy = policy or UndecidedPolicy()

        self._hash = HashIndex(
            n_projections=self._config.n_projections,
            seed=self._config.hash_seed,
        )
        self._queue: WorkQueue[Cluster] = WorkQueue()

        self._records: list[LoopClosureRecord] = []
        self._records_lock = threading.Lock()

        self._num_processed = 0
        self._busy = False
        self._thread: threading.Thread | None = None

    def enqueue(self, cluster: Cluster) -> int:
        """Queue a cluster for loop closing.

        Args:
            cluster: Cluster to process; its `id` is ignored

        Returns:
            The cluster ID assigned on ingestion
        """
        queued = self._queue.put_with(cluster.with_id)
        return queued.id

    def process_next(self) -> bool:
        """Run all stages for the oldest queued cluster.

        Returns:
            False if the queue was empty
        """
        self._busy = True
        try:
            cluster = self._queue.try_get()
            if cluster is None:
                return False

            self._process_new_cluster(cluster)
            self.search_in_neighborhood(cluster)
            self.search_by_hash(cluster)
            self._num_processed += 1
            return True
        finally:
            self._busy = False

    def _process_new_cluster(self, cluster: Cluster) -> None:
        # Hash first: descriptors of the wrong dimensionality are rejected
        # before the cluster can become anyone's neighbor
        self._hash.add(cluster.id, cluster.descriptors)
        self._store.put(cluster)

    def search_in_neighborhood(self, cluster: Cluster) -> NeighborhoodResult:
        """Estimate the pose of a cluster from its temporal neighbors.

        Walks back from `cluster.id - 1`, skipping clusters of the same frame
        and clusters that can't be read, until `neighbors` clusters have
        been matched.

        Args:
            cluster: Query cluster

        Returns:
            NeighborhoodResult with the accumulated evidence
        """
        cfg = self._config
        result = NeighborhoodResult(cluster_id=cluster.id)

        points_2d: list[np.ndarray] = []
        points_3d: list[np.ndarray] = []
        neighbors: dict[int, Cluster] = {}

        neighbor_id = cluster.id - 1
        while result.processed_neighbors < cfg.neighbors and neighbor_id >= 0:
            neighbor = self._store.get(neighbor_id)
            neighbor_id -= 1
            if neighbor is None or neighbor.frame_id == cluster.frame_id:
                continue

            result.processed_neighbors += 1
            matches, percentage = self._match(cluster, neighbor)
            if percentage > cfg.min_match_percentage:
                q2d, w3d = _correspondences(cluster, neighbor, matches)
                points_2d.append(q2d)
                points_3d.append(w3d)
                result.retained.append((neighbor.id, len(matches)))
                neighbors[neighbor.id] = neighbor

        if points_2d:
            result.motion = self._estimate(np.vstack(points_3d), np.vstack(points_2d))

        if result.retained and result.motion.pose is not None:
            best_id = max(result.retained, key=lambda item: item[1])[0]
            best = neighbors[best_id]
            result.best_frame_id = best.frame_id
            result.relative_pose = self._relative_pose(best.pose, result.motion.pose)

        if cfg.verbose:
            print(
                f"[LoopClosing] Cluster {cluster.id}: "
                f"{result.processed_neighbors} neighbors | "
                f"{result.num_correspondences} correspondences, "
                f"{result.num_inliers} inliers"
            )

        if result.relative_pose is not None and self._policy.accept_neighborhood(result):
            self._graph.add_edge(
                result.best_frame_id,
                cluster.frame_id,
                result.relative_pose,
                result.num_inliers,
                is_loop=True,
            )

        return result

    def search_by_hash(self, cluster: Cluster) -> list[CandidateVerification]:
        """Find and verify loop closure candidates by fingerprint similarity.

        Candidates are verified in similarity order; verification stops at
        the first one the policy accepts.

        Args:
            cluster: Query cluster (already in the hash index)

        Returns:
            Verification of every candidate examined (empty if none)
        """
        verifications = []
        for candidate_id, similarity in self.get_candidates(cluster.id):
            verification = self.verify_candidate(cluster, candidate_id, similarity)
            verifications.append(verification)

            if verification.relative_pose is not None and self._policy.accept_candidate(
                verification
            ):
                self._close_loop(cluster, verification)
                break

        return verifications

    def get_candidates(self, cluster_id: int) -> list[tuple[int, float]]:
        """Rank older clusters by fingerprint similarity.

        Excludes the query itself, the most recent `neighbors` clusters
        before it, and clusters already linked to it by a loop closure.

        Returns:
            Up to `n_candidates` (cluster_id, similarity) pairs, best first
        """
        with self._records_lock:
            excluded = [r.other(cluster_id) for r in self._records if r.involves(cluster_id)]

        return self._hash.candidates(
            cluster_id,
            window=self._config.neighbors,
            excluded=excluded,
            n_candidates=self._config.n_candidates,
        )

    def verify_candidate(
        self, cluster: Cluster, candidate_id: int, similarity: float = 0.0
    ) -> CandidateVerification:
        """Geometrically verify a candidate against the query cluster.

        Uses the same matching threshold and PnP + RANSAC settings as the
        neighborhood search, with the candidate as the only neighbor.
        """
        verification = CandidateVerification(
            query_id=cluster.id,
            candidate_id=candidate_id,
            similarity=similarity,
        )

        candidate = self._store.get(candidate_id)
        if candidate is None:
            return verification
        verification.candidate_frame_id = candidate.frame_id

        matches, percentage = self._match(cluster, candidate)
        verification.num_matches = len(matches)
        verification.match_percentage = percentage
        if percentage <= self._config.min_match_percentage:
            return verification

        q2d, w3d = _correspondences(cluster, candidate, matches)
        verification.motion = self._estimate(w3d, q2d)
        if verification.motion.pose is not None:
            verification.relative_pose = self._relative_pose(
                candidate.pose, verification.motion.pose
            )
        return verification

    def record_loop_closure(self, cluster_id_a: int, cluster_id_b: int) -> LoopClosureRecord:
        """Append a confirmed loop closure record."""
        record = LoopClosureRecord(cluster_id_a=cluster_id_a, cluster_id_b=cluster_id_b)
        with self._records_lock:
            self._records.append(record)
        return record

    def _close_loop(self, cluster: Cluster, verification: CandidateVerification) -> None:
        self.record_loop_closure(verification.candidate_id, cluster.id)
        self._graph.add_edge(
            verification.candidate_frame_id,
            cluster.frame_id,
            verification.relative_pose,
            verification.num_inliers,
            is_loop=True,
        )

        print(
            f"[LoopClosing] ✓ Loop closed: cluster {verification.candidate_id} "
            f"→ cluster {cluster.id} "
            f"(frames {verification.candidate_frame_id} → {cluster.frame_id}, "
            f"similarity={verification.similarity:.3f}, "
            f"inliers={verification.num_inliers})"
        )

        if self._publisher.has_subscribers():
            candidate = self._store.get(verification.candidate_id)
            if candidate is not None:
                self._publisher.log_loop_closure(
                    self.num_loop_closures, candidate.pose.position, cluster.pose.position
                )

    def _match(self, query: Cluster, reference: Cluster) -> tuple[list[cv2.DMatch], int]:
        """Ratio-test matches and their percentage of the smaller set."""
        matches = self._matcher.match(
            query.descriptors, reference.descriptors, self._config.ratio
        )
        smaller = min(query.num_features, reference.num_features)
        if smaller == 0:
            return matches, 0
        # Half away from zero: 50.5 % counts as 51
        return matches, int(math.floor(100.0 * len(matches) / smaller + 0.5))

    def _estimate(self, points_3d: np.ndarray, points_2d: np.ndarray) -> MotionEstimate:
        cfg = self._config
        return self._estimator.estimate(
            points_3d,
            points_2d,
            self._graph.camera_matrix,
            iterations=cfg.pnp_iterations,
            reprojection_error=cfg.pnp_reprojection_error,
            max_inliers=cfg.max_inliers,
        )

    def _relative_pose(self, reference_pose: SE3, estimated_pose: SE3) -> SE3:
        """Vertex-frame transform from the reference camera to the estimate."""
        relative = reference_pose.inverse().compose(estimated_pose)
        extrinsic = self._graph.camera_to_odom
        return extrinsic.inverse().compose(relative).compose(extrinsic)

    def _publish_metrics(self) -> None:
        if not self._publisher.has_subscribers():
            return
        self._publisher.publish("loop_closings", self.num_loop_closures)
        self._publisher.publish("queue", len(self._queue))

    def run(self, stop_event: threading.Event) -> None:
        """Worker loop: poll the queue until `stop_event` is set."""
        print("[LoopClosing] Started")

        while not stop_event.is_set():
            processed = False
            try:
                processed = self.process_next()
                self._publish_metrics()
            except Exception as e:
                print(f"[LoopClosing] Error: {e}")
            if not processed:
                time.sleep(self._config.poll_interval)

        print("[LoopClosing] Stopped")

    def start(self, stop_event: threading.Event) -> None:
        """Run the worker loop in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self.run, args=(stop_event,), name="loop-closing", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float = 5.0) -> bool:
        """Wait for the worker thread to exit.

        Returns:
            False if the worker is still running after `timeout`
        """
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                return False
            self._thread = None
        return True

    def wait_until_idle(self, timeout: float = 10.0) -> bool:
        """Block until the queue is drained and no cluster is in flight.

        Returns:
            True if idle before the timeout expired
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if len(self._queue) == 0 and not self._busy:
                return True
            time.sleep(self._config.poll_interval)
        return False

    def finalize(self) -> bool:
        """Remove persisted clusters.

        Refused while the worker thread is alive, since it may still read
        or write the working area.

        Returns:
            True if the working area was cleared
        """
        if self.is_running:
            print("[LoopClosing] Worker still running, working area kept")
            return False
        self._store.clear()
        return True

    @property
    def hash_index(self) -> HashIndex:
        return self._hash

    @property
    def loop_closures(self) -> list[LoopClosureRecord]:
        """Confirmed loop closures in the order they were found."""
        with self._records_lock:
            return list(self._records)

    @property
    def num_loop_closures(self) -> int:
        with self._records_lock:
            return len(self._records)

    @property
    def num_processed(self) -> int:
        """Clusters that went through all stages."""
        return self._num_processed

    @property
    def pending(self) -> int:
        """Clusters waiting in the queue."""
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


def _correspondences(
    query: Cluster, reference: Cluster, matches: list[cv2.DMatch]
) -> tuple[np.ndarray, np.ndarray]:
    """Query keypoints and the matched reference points in the world frame."""
    query_idx = np.array([m.queryIdx for m in matches], dtype=np.int64)
    train_idx = np.array([m.trainIdx for m in matches], dtype=np.int64)
    points_2d = query.keypoints[query_idx].astype(np.float64).reshape(-1, 2)
    points_world = reference.pose.transform_points(
        reference.points_3d[train_idx].reshape(-1, 3)
    )
    return points_2d, points_world
