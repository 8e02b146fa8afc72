"""Tests for desktop.models module."""

from __future__ import annotations

import dataclasses
from pathlib import Path

from desktop.models import ServiceHandle, UserInfo


class TestUserInfo:
    def test_is_root(self):
        assert UserInfo(name="root", uid=0, gid=0, home=Path("/root")).is_root is True
        assert UserInfo(name="alice", uid=1000, gid=1000, home=Path("/home/alice")).is_root is False


class TestSessionConfigPaths:
    def test_user_files(self, default_session_config):
        home = default_session_config.user.home
        assert default_session_config.passwd_file == home / ".vnc" / "passwd"
        assert default_session_config.xstartup_file == home / ".vnc" / "xstartup"
        assert default_session_config.pulse_config_file == home / ".config" / "pulse" / "default.pa"

    def test_gateway_files(self, default_session_config):
        base = default_session_config.guac_config_dir
        assert default_session_config.properties_file == base / "guacamole.properties"
        assert default_session_config.mapping_file == base / "user-mapping.xml"


class TestSessionConfigAddresses:
    def test_bridge(self, default_session_config):
        assert default_session_config.host_address == "host.docker.internal"
        assert default_session_config.guacd_hostname == "guacd"
        assert default_session_config.ready_url == "http://127.0.0.1:8080/guacamole/"
        assert default_session_config.ready_marker == "Guacamole"

    def test_host(self, default_session_config):
        cfg = dataclasses.replace(default_session_config, network_mode="host")
        assert cfg.host_address == "127.0.0.1"
        assert cfg.guacd_hostname == "127.0.0.1"

    def test_novnc(self, default_session_config):
        cfg = dataclasses.replace(default_session_config, gateway="novnc", web_port=6080)
        assert cfg.host_address == "127.0.0.1"
        assert cfg.ready_url == "http://127.0.0.1:6080/vnc.html"
        assert cfg.ready_marker == "noVNC"


class TestProfileDirs:
    def test_all_candidate_locations(self, default_session_config):
        name = default_session_config.profile_dir.name
        assert default_session_config.profile_dirs == (
            default_session_config.profile_dir,
            Path("/tmp") / name,
            Path("/dev/shm") / name,
        )

    def test_deduplicated(self, default_session_config):
        cfg = dataclasses.replace(default_session_config, profile_dir=Path("/dev/shm/chrome_profile_x"))
        assert cfg.profile_dirs == (Path("/dev/shm/chrome_profile_x"), Path("/tmp/chrome_profile_x"))


class TestServiceHandle:
    def test_release(self):
        calls = []
        handle = ServiceHandle(name="display", release=lambda: calls.append(1))
        handle.release()
        assert calls == [1]
        assert "release" not in repr(handle)
