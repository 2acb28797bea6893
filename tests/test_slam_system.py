"""Tests for the SLAMSystem back end."""

import threading
from pathlib import Path

from graphslam import SLAMSystem
from graphslam.config import CameraIntrinsics, GraphConfig, SLAMConfig
from graphslam.loop_closure import LoopClosureRecord, MinInliersPolicy, NullMetricsPublisher
from graphslam.messages import Frame
from graphslam.pose import SE3

INTRINSICS = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)


def _config(working_directory: Path) -> SLAMConfig:
    return SLAMConfig(working_directory=working_directory, camera=INTRINSICS)


class TestSLAMSystem:
    """Test suite for SLAMSystem."""

    def test_context_manager_lifecycle(self, tmp_path: Path):
        """Test that the context manager starts, stops and cleans up."""
        system = SLAMSystem(_config(tmp_path), publisher=NullMetricsPublisher())
        working_area = tmp_path / "loop_closing"

        with system:
            assert system.is_running
            assert working_area.is_dir()

        assert not system.is_running
        assert not working_area.exists()

    def test_init_failure_not_fatal(self, tmp_path: Path, capsys):
        """Test that the system still runs without a working area."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        system = SLAMSystem(_config(blocker), publisher=NullMetricsPublisher())

        assert not system.init()
        assert "[SLAM] Working area unavailable" in capsys.readouterr().out

        system.start()
        try:
            system.add_frame(Frame(pose=SE3.identity()))
            assert system.wait_until_idle(timeout=5.0)
        finally:
            system.stop()
        assert system.graph.num_vertices == 1

    def test_from_yaml(self, tmp_path: Path):
        """Test building a system from a configuration file."""
        config_file = tmp_path / "slam.yaml"
        config_file.write_text(
            f"working_directory: {tmp_path / 'work'}\n"
            "camera:\n"
            "  intrinsics: [500, 500, 320, 240]\n"
            "loop_closing:\n"
            "  neighbors: 3\n"
        )

        system = SLAMSystem.from_yaml(config_file, publisher=NullMetricsPublisher())

        assert system.config.loop_closing.neighbors == 3
        assert system.config.camera == CameraIntrinsics(500.0, 500.0, 320.0, 240.0)
        assert system.graph.camera_matrix[0, 2] == 320.0

    def test_revisit_closes_loop(self, tmp_path: Path, scene):
        """Test the threaded system end to end on a sequence with one revisit."""
        config = _config(tmp_path)
        config.graph = GraphConfig(optimize_every=10)
        system = SLAMSystem(
            config,
            publisher=NullMetricsPublisher(),
            policy=MinInliersPolicy(min_inliers=20),
        )

        clusters = []
        for i in range(20):
            if i == 17:
                cluster = scene.revisit(clusters[2], 17, clusters[2].pose @ scene.small_motion())
            else:
                cluster = scene.place(i)
            clusters.append(cluster)

        with system:
            for cluster in clusters:
                system.add_frame(Frame(pose=cluster.pose, timestamp=float(cluster.frame_id)))
            assert system.ingestion.wait_until_idle(timeout=10.0)

            ids = [system.add_cluster(cluster) for cluster in clusters]
            assert system.wait_until_idle(timeout=30.0)

            assert ids == list(range(20))
            assert system.loop_closing.loop_closures == [
                LoopClosureRecord(cluster_id_a=2, cluster_id_b=17)
            ]
            assert system.graph.num_loop_edges == 1
            assert system.graph.num_vertices == 20
            assert system.ingestion.num_optimizations == 2
            assert (tmp_path / "graph.g2o").is_file()
    def test_finalize_refused_while_worker_runs(self, tmp_path: Path, capsys):
        """Test that teardown waits until a slow worker has exited."""
        entered = threading.Event()
        release = threading.Event()

        class BlockingOptimizer:
            def optimize(self, poses, edges):
                entered.set()
                release.wait(timeout=10.0)
                return {k: v.copy() for k, v in poses.items()}

        config = _config(tmp_path)
        config.graph = GraphConfig(optimize_every=1)
        system = SLAMSystem(
            config, optimizer=BlockingOptimizer(), publisher=NullMetricsPublisher()
        )
        working_area = tmp_path / "loop_closing"

        assert system.init()
        system.start()
        try:
            system.add_frame(Frame(pose=SE3.identity()))
            assert entered.wait(timeout=10.0)

            assert not system.stop(timeout=0.05)
            assert system.is_running
            assert not system.finalize()
            assert working_area.is_dir()
        finally:
            release.set()

        assert system.stop(timeout=10.0)
        assert system.finalize()
        assert not working_area.exists()
        out = capsys.readouterr().out
        assert "[SLAM] Workers did not stop within the timeout" in out
        assert "[SLAM] Workers still running, working area kept" in out
