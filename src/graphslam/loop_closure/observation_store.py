"""Disk-backed cluster storage keyed by cluster ID.

Clusters are written to a per-process working area as one .npz archive per
cluster and read back on demand, so loop closing can revisit any past
observation without keeping the whole history in memory.
"""

from __future__ import annotations

import shutil
import zipfile
from pathlib import Path

import numpy as np

from ..messages import Cluster
from ..pose import SE3

WORKING_AREA_NAME = "loop_closing"


class ObservationStore:
    """Persists clusters under `<root>/loop_closing/<id>.npz`.

    Storage failures never raise: writes report False and reads of missing
    or unreadable records return None.
    """

    def __init__(self, root: str | Path) -> None:
        """Initialize the store.

        Args:
            root: Directory owning the working area (created by `init`)
        """
        self._root = Path(root)
        self._directory = self._root / WORKING_AREA_NAME

    @property
    def directory(self) -> Path:
        """The working area."""
        return self._directory

    def init(self) -> bool:
        """Recreate the working area empty.

        Returns:
            True if the working area exists and is empty afterwards
        """
        try:
            if self._directory.is_dir():
                shutil.rmtree(self._directory)
            self._directory.mkdir(parents=True)
        except OSError as e:
            print(
                f"[ObservationStore] ERROR -> Impossible to create the working "
                f"area {self._directory}: {e}"
            )
            return False
        return True

    def _path(self, cluster_id: int) -> Path:
        return self._directory / f"{cluster_id}.npz"

    def put(self, cluster: Cluster) -> bool:
        """Persist a cluster under its ID.

        Args:
            cluster: Cluster with an assigned ID

        Returns:
            True if written
        """
        if cluster.id < 0:
            raise ValueError("Cluster has no ID assigned")

        try:
            np.savez(
                self._path(cluster.id),
                frame_id=cluster.frame_id,
                pose=cluster.pose.to_matrix(),
                keypoints=cluster.keypoints,
                descriptors=cluster.descriptors,
                points_3d=cluster.points_3d,
            )
        except OSError as e:
            print(f"[ObservationStore] Failed to store cluster {cluster.id}: {e}")
            return False
        return True

    def get(self, cluster_id: int) -> Cluster | None:
        """Read a cluster back.

        Args:
            cluster_id: Cluster ID

        Returns:
            The stored cluster, or None if it doesn't exist or can't be read
        """
        path = self._path(cluster_id)
        if cluster_id < 0 or not path.is_file():
            return None

        try:
            with np.load(path) as data:
                return Cluster(
                    id=cluster_id,
                    frame_id=int(data["frame_id"]),
                    pose=SE3.from_matrix(data["pose"]),
                    keypoints=data["keypoints"],
                    descriptors=data["descriptors"],
                    points_3d=data["points_3d"],
                )
        except (OSError, ValueError, KeyError, EOFError, zipfile.BadZipFile) as e:
            print(f"[ObservationStore] Corrupt record for cluster {cluster_id}: {e}")
            return None

    def contains(self, cluster_id: int) -> bool:
        return self._path(cluster_id).is_file()

    def clear(self) -> None:
        """Remove the working area and everything in it."""
        try:
            if self._directory.is_dir():
                shutil.rmtree(self._directory)
        except OSError as e:
            print(
                f"[ObservationStore] ERROR -> Impossible to remove the working "
                f"area {self._directory}: {e}"
            )
