"""Shared test fixtures for browser-desktop."""

from __future__ import annotations

import os
import pwd
from pathlib import Path

import pytest

from desktop.constants import CHROME_FLAGS, GUACD_PORT, PULSE_PORT, VNC_DISPLAY, VNC_PORT
from desktop.models import SessionConfig, UserInfo


@pytest.fixture
def desktop_user(tmp_path) -> UserInfo:
    """The current user with a throwaway home, so chown/sudo are no-ops."""
    home = tmp_path / "home"
    home.mkdir()
    return UserInfo(name="desktop-test-user", uid=os.geteuid(), gid=os.getegid(), home=home)


@pytest.fixture
def default_session_config(desktop_user, tmp_path) -> SessionConfig:
    """Return a Guacamole/bridge SessionConfig rooted in tmp_path."""
    return SessionConfig(
        user=desktop_user,
        gateway="guacamole",
        network_mode="bridge",
        network_name="guacnet",
        geometry="1366x768",
        depth=24,
        display=VNC_DISPLAY,
        vnc_port=VNC_PORT,
        web_port=8080,
        audio_enabled=True,
        pulse_port=PULSE_PORT,
        audio_acl="127.0.0.1;172.16.0.0/12",
        guacd_port=GUACD_PORT,
        vnc_password="s3cretPass12",
        password_generated=False,
        guac_user="admin",
        guac_password="guac-pass",
        guac_config_dir=tmp_path / "guacamole",
        guacd_image="guacamole/guacd",
        guacamole_image="guacamole/guacamole",
        profile_dir=tmp_path / "shm" / "chrome_profile_desktop-test-user",
        chrome_flags=CHROME_FLAGS,
        ready_attempts=3,
        ready_interval=0.0,
    )


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set


# All environment variables that parse_env() reads, used to ensure a clean slate.
_PARSE_ENV_VARS = [
    "TARGET_USER",
    "SUDO_USER",
    "GATEWAY",
    "GATEWAY_NETWORK",
    "GATEWAY_NETWORK_NAME",
    "VNC_GEOMETRY",
    "VNC_DEPTH",
    "WEB_PORT",
    "VNC_PASSWORD",
    "GUAC_USER",
    "GUAC_PASS",
    "GUAC_CONFIG_DIR",
    "AUDIO_ENABLE",
    "AUDIO_ACL",
    "READY_ATTEMPTS",
    "READY_INTERVAL",
    "READY_BACKOFF",
    "SHM_SIZE",
    "EXPAND_RESOURCES",
    "SKIP_INSTALL",
    "EXTRA_PACKAGES",
    "GUACD_IMAGE",
    "GUACAMOLE_IMAGE",
    "CODESPACES",
    "DESKTOP_CONFIG",
]


@pytest.fixture
def current_user_name() -> str:
    return pwd.getpwuid(os.getuid()).pw_name


@pytest.fixture
def clean_env(monkeypatch, tmp_path, current_user_name):
    """Clear every variable parse_env() reads and point it at the current user."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("TARGET_USER", current_user_name)
    monkeypatch.setenv("DESKTOP_CONFIG", str(tmp_path / "missing-config.yaml"))
    return Path(tmp_path)
