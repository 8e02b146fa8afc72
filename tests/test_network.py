"""Tests for desktop.network module."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from desktop.exceptions import PortInUseError
from desktop.network import (
    PortStatus,
    check_port,
    codespace_public_url,
    parse_tcp_table,
    require_port_free,
    server_address,
)

_HEADER = "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode\n"

TCP4_TABLE = _HEADER + (
    "   0: 00000000:1F90 00000000:0000 0A 00000000:00000000 00:00000000 00000000     0        0 1001\n"
    "   1: 0100007F:170D 00000000:0000 0A 00000000:00000000 00:00000000 00000000  1000        0 1002\n"
    "   2: 0100007F:1F90 0100007F:D2F0 01 00000000:00000000 00:00000000 00000000     0        0 1003\n"
)

TCP6_TABLE = _HEADER + (
    "   0: 00000000000000000000000000000000:1F90 00000000000000000000000000000000:0000 0A "
    "00000000:00000000 00:00000000 00000000     0        0 2001\n"
    "   1: 00000000000000000000000001000000:1269 00000000000000000000000000000000:0000 0A "
    "00000000:00000000 00:00000000 00000000     0        0 2002\n"
)


class TestParseTcpTable:
    def test_ipv4_wildcard_listener(self):
        assert parse_tcp_table(TCP4_TABLE, 8080) == ["0.0.0.0:8080"]

    def test_ipv4_loopback_listener(self):
        assert parse_tcp_table(TCP4_TABLE, 5901) == ["127.0.0.1:5901"]

    def test_established_connections_ignored(self):
        table = _HEADER + (
            "   0: 0100007F:1F90 0100007F:D2F0 01 00000000:00000000 00:00000000 00000000 0 0 1\n"
        )
        assert parse_tcp_table(table, 8080) == []

    def test_ipv6_listeners(self):
        assert parse_tcp_table(TCP6_TABLE, 8080) == ["[::]:8080"]
        assert parse_tcp_table(TCP6_TABLE, 4713) == ["[::1]:4713"]

    def test_unrelated_port(self):
        assert parse_tcp_table(TCP4_TABLE, 4822) == []


class TestCheckPort:
    def _tables(self, tmp_path):
        tcp = tmp_path / "tcp"
        tcp6 = tmp_path / "tcp6"
        tcp.write_text(TCP4_TABLE)
        tcp6.write_text(TCP6_TABLE)
        return [tcp, tcp6]

    def test_port_in_use_on_both_families(self, tmp_path):
        status = check_port(8080, tables=self._tables(tmp_path))
        assert status.available is False
        assert status.listeners == ["0.0.0.0:8080", "[::]:8080"]
        assert status.loopback_only is False

    def test_loopback_only(self, tmp_path):
        status = check_port(5901, tables=self._tables(tmp_path))
        assert status.loopback_only is True

    def test_free_port(self, tmp_path):
        status = check_port(9999, tables=self._tables(tmp_path))
        assert status.available is True
        assert status.listeners == []

    def test_missing_tables_fall_back_to_bind(self, tmp_path):
        with patch("desktop.network._bind_probe", return_value=PortStatus(port=8080, available=True)) as probe:
            status = check_port(8080, tables=[tmp_path / "absent"])
        probe.assert_called_once_with(8080)
        assert status.available is True


class TestRequirePortFree:
    def test_busy_port_raises(self):
        busy = PortStatus(port=8080, available=False, listeners=["0.0.0.0:8080"])
        with patch("desktop.network.check_port", return_value=busy):
            with pytest.raises(PortInUseError, match="Port 8080 is already in use") as excinfo:
                require_port_free(8080)
        assert excinfo.value.port == 8080
        assert excinfo.value.listeners == ["0.0.0.0:8080"]

    def test_free_port_returns_status(self):
        free = PortStatus(port=8080, available=True)
        with patch("desktop.network.check_port", return_value=free):
            assert require_port_free(8080) is free


class TestServerAddress:
    def test_first_address(self):
        result = MagicMock(stdout="10.0.0.5 172.17.0.1 \n")
        with patch("desktop.network.run", return_value=result):
            assert server_address() == "10.0.0.5"

    def test_no_addresses(self):
        with patch("desktop.network.run", return_value=MagicMock(stdout="\n")):
            assert server_address() == "localhost"

    def test_command_failure(self):
        with patch("desktop.network.run", side_effect=subprocess.CalledProcessError(1, ["hostname"])):
            assert server_address() == "localhost"


class TestCodespacePublicUrl:
    def test_gh_missing(self, desktop_user):
        with patch("desktop.network.shutil.which", return_value=None):
            assert codespace_public_url(8080, desktop_user) is None

    def test_returns_browse_url(self, desktop_user):
        ports = MagicMock(stdout='[{"portNumber": 8080, "browseUrl": "https://x-8080.app.github.dev"}]')
        with patch("desktop.network.shutil.which", return_value="/usr/bin/gh"), patch(
            "desktop.network.run", side_effect=[MagicMock(), MagicMock(), ports]
        ):
            assert codespace_public_url(8080, desktop_user) == "https://x-8080.app.github.dev"

    def test_not_authenticated(self, desktop_user):
        with patch("desktop.network.shutil.which", return_value="/usr/bin/gh"), patch(
            "desktop.network.run", side_effect=subprocess.CalledProcessError(1, ["gh"])
        ):
            assert codespace_public_url(8080, desktop_user) is None
