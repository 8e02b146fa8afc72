"""Listening-socket inspection and host address discovery for browser-desktop."""

from __future__ import annotations

import errno
import ipaddress
import json
import shutil
import socket
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from desktop.exceptions import PortInUseError
from desktop.models import UserInfo
from desktop.utils import log, run, user_command

PROC_TCP_TABLES = (Path("/proc/net/tcp"), Path("/proc/net/tcp6"))
_TCP_LISTEN = "0A"


@dataclass
class PortStatus:
    port: int
    available: bool
    listeners: List[str] = field(default_factory=list)

    @property
    def loopback_only(self) -> bool:
        """True when every listener is bound to a loopback address."""
        if not self.listeners:
            return False
        for listener in self.listeners:
            host = listener.rsplit(":", 1)[0].strip("[]")
            if not ipaddress.ip_address(host).is_loopback:
                return False
        return True


def _decode_address(hex_addr: str) -> str:
    """Decode a /proc/net/tcp{,6} address (host byte order words) into text."""
    raw = bytes.fromhex(hex_addr)
    # The kernel prints each 32-bit word in host (little-endian) order
    ordered = b"".join(raw[i : i + 4][::-1] for i in range(0, len(raw), 4))
    return str(ipaddress.ip_address(ordered))


def parse_tcp_table(text: str, port: int) -> List[str]:
    """Return ``address:port`` for every LISTEN entry on ``port``."""
    listeners: List[str] = []
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 4 or fields[3] != _TCP_LISTEN:
            continue
        addr_hex, _, port_hex = fields[1].partition(":")
        if int(port_hex, 16) != port:
            continue
        address = _decode_address(addr_hex)
        if ":" in address:
            listeners.append(f"[{address}]:{port}")
        else:
            listeners.append(f"{address}:{port}")
    return listeners


def _bind_probe(port: int) -> PortStatus:
    """Fallback for hosts without /proc: try to bind the port ourselves."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("0.0.0.0", port))
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                return PortStatus(port=port, available=False, listeners=[f"0.0.0.0:{port}"])
            raise
    return PortStatus(port=port, available=True)


def check_port(port: int, tables: Sequence[Path] = PROC_TCP_TABLES) -> PortStatus:
    """Query the local listening-socket table for ``port``."""
    readable = [table for table in tables if table.exists()]
    if not readable:
        log("DEBUG", "No /proc TCP tables available; probing port by binding")
        return _bind_probe(port)
    listeners: List[str] = []
    for table in readable:
        listeners.extend(parse_tcp_table(table.read_text(), port))
    return PortStatus(port=port, available=not listeners, listeners=listeners)


def require_port_free(port: int) -> PortStatus:
    status = check_port(port)
    if not status.available:
        log("ERROR", f"Port {port} is already in use!")
        for listener in status.listeners:
            log("ERROR", f"  listener: tcp {listener} LISTEN")
        raise PortInUseError(port, status.listeners)
    log("DEBUG", f"Port {port} is available")
    return status


def server_address() -> str:
    """Return the host's first non-loopback address, or ``localhost``."""
    try:
        result = run(["hostname", "-I"], check=True, capture_output=True)
    except (OSError, subprocess.CalledProcessError):
        return "localhost"
    addresses = result.stdout.split()
    return addresses[0] if addresses else "localhost"


def codespace_public_url(port: int, user: UserInfo) -> Optional[str]:
    """Make ``port`` public in a GitHub Codespace and return its browse URL.

    Best effort: any failure is logged and ``None`` is returned.
    """
    if shutil.which("gh") is None:
        log("WARN", "GitHub CLI not found; skipping public port forwarding")
        return None
    try:
        run(user_command(user, ["gh", "auth", "status"]), capture_output=True)
        run(
            user_command(user, ["gh", "codespace", "ports", "visibility", f"{port}:public"]),
            capture_output=True,
        )
        result = run(
            user_command(user, ["gh", "codespace", "ports", "--json", "portNumber,browseUrl"]),
            capture_output=True,
        )
        ports = json.loads(result.stdout or "[]")
    except subprocess.CalledProcessError:
        log("WARN", "GitHub CLI not authenticated; skipping public port forwarding")
        return None
    except (OSError, ValueError) as exc:
        log("WARN", f"Could not query Codespace ports: {exc}")
        return None
    for entry in ports:
        if entry.get("portNumber") == port:
            return entry.get("browseUrl")
    return None
