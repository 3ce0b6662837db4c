"""
Tests for the docker CLI wrapper.
"""

import subprocess
from unittest.mock import MagicMock, patch

from docker_sync.runtime.docker import DockerRuntime


class TestDockerRuntime:
    """Tests for DockerRuntime."""

    @patch("docker_sync.runtime.docker.shutil.which", return_value=None)
    def test_unavailable_without_binary(self, mock_which):
        assert DockerRuntime().available() is False

    @patch("docker_sync.runtime.docker.subprocess.run")
    @patch("docker_sync.runtime.docker.shutil.which", return_value="/usr/bin/docker")
    def test_unavailable_when_daemon_down(self, mock_which, mock_run):
        mock_run.return_value = MagicMock(returncode=1)

        assert DockerRuntime().available() is False

    @patch("docker_sync.runtime.docker.subprocess.run")
    def test_pull_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0)

        ok, error = DockerRuntime().pull("ghcr.nju.edu.cn/alice/nginx:alpine")

        assert ok is True
        assert error is None
        assert mock_run.call_args.args[0] == ["docker", "pull", "ghcr.nju.edu.cn/alice/nginx:alpine"]

    @patch("docker_sync.runtime.docker.subprocess.run")
    def test_pull_failure(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1)

        ok, error = DockerRuntime().pull("x")

        assert ok is False
        assert "exited with 1" in error

    @patch("docker_sync.runtime.docker.subprocess.run")
    def test_pull_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="docker pull", timeout=5)

        ok, error = DockerRuntime(pull_timeout=5).pull("x")

        assert ok is False
        assert "timed out" in error

    @patch("docker_sync.runtime.docker.subprocess.run")
    def test_tag_reports_stderr(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stderr="Error: No such image\n")

        ok, error = DockerRuntime().tag("a", "b")

        assert ok is False
        assert error == "Error: No such image"
