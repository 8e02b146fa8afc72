"""Tests for desktop.resources module."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from desktop.resources import ResourceAdjuster
from desktop.runtime import RuntimeInfo


@pytest.fixture
def adjuster(default_session_config, tmp_path):
    pam = tmp_path / "common-session"
    pam.write_text("session required pam_unix.so")
    return ResourceAdjuster(
        default_session_config,
        runtime=RuntimeInfo(engine="docker", rootless=False, privileged=False),
        shm_path=tmp_path,
        limits_file=tmp_path / "limits.d" / "90-desktop.conf",
        pam_file=pam,
    )


class TestSharedMemory:
    def test_remount(self, adjuster, tmp_path):
        with patch("desktop.resources.run") as mock_run:
            assert adjuster.expand_shared_memory() is True
        mock_run.assert_called_once_with(
            ["mount", "-o", "remount,size=2G", str(tmp_path)], capture_output=True
        )

    def test_refused_remount_is_not_fatal(self, adjuster, capsys):
        with patch("desktop.resources.run", side_effect=subprocess.CalledProcessError(32, ["mount"])):
            assert adjuster.expand_shared_memory() is False
        out = capsys.readouterr().out
        assert "--shm-size" in out
        assert "Current" in out


class TestLimits:
    def test_render(self, adjuster):
        lines = adjuster.render_limits().splitlines()
        assert "desktop-test-user soft nproc 65535" in lines
        assert "desktop-test-user hard nofile 65535" in lines
        assert len(lines) == 4

    def test_write(self, adjuster):
        assert adjuster.write_limits() is True
        assert "nofile" in adjuster.limits_file.read_text()

    def test_pam_enabled_once(self, adjuster):
        assert adjuster.enable_pam_limits() is True
        assert adjuster.enable_pam_limits() is False
        content = adjuster.pam_file.read_text()
        assert content.count("pam_limits.so") == 1
        assert content.endswith("session required pam_limits.so\n")

    def test_missing_pam_file(self, adjuster, tmp_path):
        adjuster.pam_file = tmp_path / "absent"
        assert adjuster.enable_pam_limits() is False

    def test_apply_runs_every_step(self, adjuster):
        with patch("desktop.resources.run", side_effect=OSError("mount missing")):
            adjuster.apply()
        assert adjuster.limits_file.exists()
        assert "pam_limits.so" in adjuster.pam_file.read_text()
