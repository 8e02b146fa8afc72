"""Display (TigerVNC) and audio (PulseAudio) servers for browser-desktop."""

from __future__ import annotations

from typing import Callable

from desktop.constants import AUDIO_PROCESS_PATTERN, DISPLAY_PROCESS_PATTERN
from desktop.exceptions import DesktopError
from desktop.models import ServiceHandle, SessionConfig, UserInfo
from desktop.network import PortStatus, check_port
from desktop.utils import log, retry_until, run, run_checked, user_command


def kill_user_processes(user: UserInfo, pattern: str) -> bool:
    """``pkill -u user -f pattern``; returns True if something was signalled.

    pkill exits 1 when nothing matched, which counts as success here.
    """
    result = run(["pkill", "-u", user.name, "-f", pattern], check=False, capture_output=True)
    if result.returncode == 0:
        log("DEBUG", f"Signalled {pattern} processes of {user.name}")
        return True
    if result.returncode == 1:
        return False
    raise DesktopError(f"pkill {pattern} failed (exit {result.returncode}): {result.stderr.strip()}")


def wait_for_listener(
    port: int,
    attempts: int = 10,
    interval: float = 0.5,
    checker: Callable[[int], PortStatus] = check_port,
) -> PortStatus:
    """Poll until something listens on ``port``; returns the last status seen."""
    status = checker(port)
    if not status.available:
        return status

    def _listening() -> bool:
        nonlocal status
        status = checker(port)
        return not status.available

    retry_until(_listening, attempts=attempts, interval=interval)
    return status


class DisplayServer:
    """TigerVNC server on the configured virtual display, reachable from containers."""

    def __init__(self, cfg: SessionConfig) -> None:
        self.cfg = cfg

    def command(self) -> list:
        cfg = self.cfg
        return [
            "vncserver",
            cfg.display,
            "-geometry",
            cfg.geometry,
            "-depth",
            str(cfg.depth),
            "-localhost",
            "no",
            "-SecurityTypes",
            "VncAuth",
        ]

    def start(self) -> ServiceHandle:
        cfg = self.cfg
        log("INFO", f"Starting VNC server (display {cfg.display}) as {cfg.user.name}...")
        run_checked(user_command(cfg.user, self.command()), "Starting VNC server", capture_output=True)
        status = wait_for_listener(cfg.vnc_port)
        if status.available:
            self.stop()
            raise DesktopError(f"VNC server is not listening on port {cfg.vnc_port}")
        log("SUCCESS", f"VNC server is listening on {', '.join(status.listeners)}")
        if status.loopback_only:
            log("WARN", "VNC server only listens on loopback; the gateway may not reach it")
        return ServiceHandle(name="display", release=self.stop)

    def stop(self) -> None:
        if kill_user_processes(self.cfg.user, DISPLAY_PROCESS_PATTERN):
            log("INFO", "Stopped VNC server")


class AudioServer:
    """PulseAudio daemon for the user, accepting TCP clients per the ACL file."""

    def __init__(self, cfg: SessionConfig) -> None:
        self.cfg = cfg

    def start(self) -> ServiceHandle:
        cfg = self.cfg
        log("INFO", f"Starting PulseAudio for {cfg.user.name}...")
        run_checked(
            user_command(cfg.user, ["pulseaudio", "--start", "--log-target=syslog"]),
            "Starting PulseAudio",
            capture_output=True,
        )
        status = wait_for_listener(cfg.pulse_port)
        if status.available:
            log("WARN", f"PulseAudio is running but not listening on port {cfg.pulse_port}; audio may be silent")
        else:
            log("SUCCESS", f"PulseAudio is listening on port {cfg.pulse_port}")
        return ServiceHandle(name="audio", release=self.stop)

    def stop(self) -> None:
        if kill_user_processes(self.cfg.user, AUDIO_PROCESS_PATTERN):
            log("INFO", "Stopped PulseAudio")

