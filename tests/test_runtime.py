"""Tests for desktop.runtime module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from desktop.runtime import RuntimeInfo, _detect_engine, _is_privileged, _is_rootless


@pytest.fixture(autouse=True)
def _no_codespaces(monkeypatch):
    monkeypatch.delenv("CODESPACES", raising=False)


def _exists_sequence(*answers):
    """Answer successive Path(...).exists() calls in _detect_engine order."""
    remaining = list(answers)

    def _exists():
        return remaining.pop(0) if remaining else False

    return _exists


class TestDetectEngine:
    def test_codespaces(self, monkeypatch):
        monkeypatch.setenv("CODESPACES", "true")
        assert _detect_engine() == "codespaces"

    @patch("desktop.runtime.Path")
    def test_kubernetes(self, mock_path):
        mock_path.return_value.exists = _exists_sequence(True)
        assert _detect_engine() == "kubernetes"

    @patch("desktop.runtime.Path")
    def test_podman(self, mock_path):
        mock_path.return_value.exists = _exists_sequence(False, True)
        assert _detect_engine() == "podman"

    @patch("desktop.runtime.Path")
    def test_docker(self, mock_path):
        mock_path.return_value.exists = _exists_sequence(False, False, True)
        assert _detect_engine() == "docker"

    @patch("desktop.runtime.Path")
    def test_bare_host(self, mock_path):
        mock_path.return_value.exists = _exists_sequence()
        assert _detect_engine() == "none"


def _proc_files(**files):
    return patch("desktop.runtime._read_proc_self", side_effect=lambda name: files.get(name, ""))


class TestIsRootless:
    def test_identity_mapping(self):
        with _proc_files(uid_map="         0          0 4294967295\n"):
            assert _is_rootless() is False

    def test_root_mapped_to_host_user(self):
        with _proc_files(uid_map="         0       1000          1\n         1     100000      65536\n"):
            assert _is_rootless() is True

    def test_unreadable(self):
        with _proc_files():
            assert _is_rootless() is False

    def test_reads_real_file(self, tmp_path):
        (tmp_path / "uid_map").write_text("0 1000 1\n")
        with patch("desktop.runtime.Path", side_effect=lambda _root, name: tmp_path / name):
            assert _is_rootless() is True


class TestIsPrivileged:
    def test_full_bounding_set(self):
        with _proc_files(status="Name:\tpython\nCapBnd:\t000001ffffffffff\n"):
            assert _is_privileged() is True

    def test_default_docker_set(self):
        with _proc_files(status="Name:\tpython\nCapBnd:\t00000000a80425fb\n"):
            assert _is_privileged() is False

    def test_garbled_value(self):
        with _proc_files(status="CapBnd:\tnot-hex\n"):
            assert _is_privileged() is False

    def test_missing_status(self):
        with patch("desktop.runtime.Path", side_effect=lambda _root, name: Path("/nonexistent") / name):
            assert _is_privileged() is False


class TestRuntimeInfo:
    def test_bare_host_is_not_sandboxed(self):
        assert RuntimeInfo(engine="none", rootless=False, privileged=False).sandboxed is False

    def test_unprivileged_container_is_sandboxed(self):
        assert RuntimeInfo(engine="docker", rootless=False, privileged=False).sandboxed is True

    def test_privileged_container(self):
        assert RuntimeInfo(engine="docker", rootless=False, privileged=True).sandboxed is False

    def test_rootless_container(self):
        assert RuntimeInfo(engine="podman", rootless=True, privileged=True).sandboxed is True
