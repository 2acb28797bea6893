"""Incremental hash index for loop closure candidate search.

Each cluster's descriptor set is summarized into a fixed-length fingerprint
by projecting the (L2-normalized) descriptors onto a set of random
orthonormal directions and keeping the mean and standard deviation of every
projection. Both statistics ignore row order, so the fingerprint describes
the set rather than the sequence of descriptors.

The projection basis is drawn from a seeded generator the first time the
index sees descriptors, which fixes the descriptor dimensionality for the
lifetime of the index.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from ..errors import DescriptorDimensionError, HashIndexNotInitializedError


@dataclass(eq=False)
class HashEntry:
    """A fingerprint stored in the index.

    Attributes:
        cluster_id: ID of the cluster the fingerprint describes
        fingerprint: Fixed-length summary vector (float64)
    """

    cluster_id: int
    fingerprint: np.ndarray


class HashIndex:
    """Append-only table of cluster fingerprints with similarity search."""

    def __init__(self, n_projections: int = 64, seed: int = 0) -> None:
        """Initialize an empty, uninitialized index.

        Args:
            n_projections: Number of projection directions (capped at the
                descriptor dimensionality)
            seed: Seed for the projection basis
        """
        self._n_projections = n_projections
        self._seed = seed

        self._dimension: int | None = None
        self._projections: np.ndarray | None = None  # (D, P)

        self._entries: list[HashEntry] = []
        self._by_id: dict[int, HashEntry] = {}

    def initialize(self, reference_descriptors: np.ndarray) -> None:
        """Fix the fingerprint layout from a first descriptor set.

        Does nothing if the index is already initialized.

        Args:
            reference_descriptors: Descriptor matrix (N, D)
        """
        if self.is_initialized:
            return

        descriptors = np.asarray(reference_descriptors)
        if descriptors.ndim != 2 or descriptors.shape[1] == 0:
            raise DescriptorDimensionError(
                f"Descriptors must be a non-empty (N, D) matrix, got {descriptors.shape}"
            )

        dimension = descriptors.shape[1]
        n_projections = min(self._n_projections, dimension)

        # Orthonormal random directions via QR of a Gaussian matrix
        rng = np.random.default_rng(self._seed)
        gaussian = rng.standard_normal((dimension, n_projections))
        q, r = np.linalg.qr(gaussian)
        # Sign fix makes the basis unique for a given draw
        q *= np.sign(np.diag(r))

        self._dimension = dimension
        self._projections = q

    @property
    def is_initialized(self) -> bool:
        return self._projections is not None

    @property
    def dimension(self) -> int | None:
        """Descriptor dimensionality, or None before initialization."""
        return self._dimension

    @property
    def fingerprint_length(self) -> int:
        if self._projections is None:
            raise HashIndexNotInitializedError("Hash index is not initialized")
        return 2 * self._projections.shape[1]

    def fingerprint(self, descriptors: np.ndarray) -> np.ndarray:
        """Summarize a descriptor set into a fixed-length vector.

        Args:
            descriptors: Descriptor matrix (N, D)

        Returns:
            Fingerprint of length 2 * n_projections (zeros for an empty set)

        Raises:
            HashIndexNotInitializedError: If `initialize` was never called
            DescriptorDimensionError: If D differs from the initialized layout
        """
        if self._projections is None:
            raise HashIndexNotInitializedError("Hash index is not initialized")

        descriptors = np.asarray(descriptors)
        if descriptors.ndim != 2 or descriptors.shape[1] != self._dimension:
            raise DescriptorDimensionError(
                f"Expected descriptors with {self._dimension} columns, "
                f"got shape {descriptors.shape}"
            )

        if len(descriptors) == 0:
            return np.zeros(self.fingerprint_length, dtype=np.float64)

        # Sort rows so the float reductions below see the same order for
        # any permutation of the input
        rows = descriptors[np.lexsort(descriptors.T[::-1])].astype(np.float64)
        norms = np.linalg.norm(rows, axis=1, keepdims=True)
        rows = rows / np.maximum(norms, 1e-12)

        projected = rows @ self._projections  # (N, P)
        return np.concatenate([projected.mean(axis=0), projected.std(axis=0)])

    @staticmethod
    def similarity(fp_a: np.ndarray, fp_b: np.ndarray) -> float:
        """Similarity of two fingerprints in (0, 1].

        Computed as 1 / (1 + L1 distance): symmetric, and 1.0 exactly when
        the fingerprints are identical.
        """
        distance = float(np.abs(np.asarray(fp_a) - np.asarray(fp_b)).sum())
        return 1.0 / (1.0 + distance)

    def add(self, cluster_id: int, descriptors: np.ndarray) -> HashEntry:
        """Fingerprint a cluster and append it to the table.

        Initializes the index from these descriptors if needed.

        Args:
            cluster_id: Cluster ID (must not already be in the table)
            descriptors: Cluster descriptors (N, D)

        Returns:
            The created HashEntry
        """
        if cluster_id in self._by_id:
            raise ValueError(f"Cluster {cluster_id} is already in the hash index")

        if not self.is_initialized:
            self.initialize(descriptors)

        entry = HashEntry(cluster_id=cluster_id, fingerprint=self.fingerprint(descriptors))
        self._entries.append(entry)
        self._by_id[cluster_id] = entry
        return entry

    def get(self, cluster_id: int) -> HashEntry | None:
        """Return the entry of a cluster, or None if it was never added."""
        return self._by_id.get(cluster_id)

    def candidates(
        self,
        cluster_id: int,
        window: int,
        excluded: Iterable[int] = (),
        n_candidates: int = 5,
    ) -> list[tuple[int, float]]:
        """Rank stored clusters by similarity to a query cluster.

        Args:
            cluster_id: Query cluster (must be in the table)
            window: Clusters with ID >= cluster_id - window are skipped, as
                are all queries while the table holds <= window entries
            excluded: Cluster IDs never to return
            n_candidates: Maximum number of results

        Returns:
            (cluster_id, similarity) pairs, most similar first
        """
        query = self._by_id.get(cluster_id)
        if query is None or len(self._entries) <= window:
            return []

        excluded = set(excluded)
        scored = []
        for entry in self._entries:
            if entry.cluster_id == cluster_id or entry.cluster_id in excluded:
                continue
            if entry.cluster_id >= cluster_id - window:
                continue
            scored.append(
                (entry.cluster_id, self.similarity(query.fingerprint, entry.fingerprint))
            )

        # Stable sort keeps older clusters first among equal scores
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:n_candidates]

    @property
    def entries(self) -> list[HashEntry]:
        """All entries in insertion order."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
