"""Tests for desktop.teardown module."""

from __future__ import annotations

import dataclasses
from unittest.mock import MagicMock, patch

import pytest

from desktop.exceptions import DesktopError
from desktop.gateway import GuacamoleGateway
from desktop.teardown import Teardown


@pytest.fixture
def teardown(default_session_config):
    return Teardown(default_session_config, gateway=MagicMock())


class TestTeardown:
    def test_runs_every_step(self, teardown, default_session_config):
        with patch("desktop.teardown.kill_user_processes", return_value=False) as mock_kill:
            assert teardown.run() is True
        teardown.gateway.stop.assert_called_once()
        patterns = [c.args[1] for c in mock_kill.call_args_list]
        assert patterns == ["websockify", "Xtigervnc", "pulseaudio"]
        assert all(c.args[0] == default_session_config.user for c in mock_kill.call_args_list)

    def test_twice_on_clean_system(self, teardown):
        with patch("desktop.teardown.kill_user_processes", return_value=False):
            assert teardown.run() is True
            assert teardown.run() is True
        assert teardown.failures == []

    def test_failing_step_does_not_block_others(self, teardown):
        teardown.gateway.stop.side_effect = DesktopError("docker went away")
        with patch("desktop.teardown.kill_user_processes", return_value=True) as mock_kill:
            assert teardown.run() is False
        assert mock_kill.call_count == 3
        assert [name for name, _ in teardown.failures] == ["gateway containers"]

    def test_profile_removed_and_mapping_kept(self, teardown, default_session_config):
        cfg = default_session_config
        cfg.profile_dir.mkdir(parents=True)
        (cfg.profile_dir / "Default").mkdir()
        cfg.guac_config_dir.mkdir(parents=True)
        cfg.mapping_file.write_text("<user-mapping/>")
        cfg.properties_file.write_text("guacd-port: 4822\n")

        with patch("desktop.teardown.kill_user_processes", return_value=False):
            teardown.run()

        assert not cfg.profile_dir.exists()
        assert cfg.mapping_file.read_text() == "<user-mapping/>"
        assert cfg.properties_file.exists()

    def test_profile_inside_config_dir_is_refused(self, default_session_config):
        cfg = dataclasses.replace(
            default_session_config,
            profile_dir=default_session_config.guac_config_dir / "chrome_profile_desktop-test-user",
        )
        cfg.profile_dir.mkdir(parents=True)
        teardown = Teardown(cfg, gateway=MagicMock())
        teardown.remove_profiles()
        assert cfg.profile_dir.exists()

    def test_default_gateway_is_guacamole(self, default_session_config):
        assert isinstance(Teardown(default_session_config).gateway, GuacamoleGateway)
