"""CLI entry points for browser-desktop."""

from __future__ import annotations

import argparse
import os
import shutil
from typing import List, Optional

from desktop.config import parse_env
from desktop.constants import _SENSITIVE_FIELDS, CHROME_BINARY
from desktop.exceptions import DesktopError
from desktop.gateway import docker_available
from desktop.models import SessionConfig
from desktop.network import check_port, codespace_public_url, server_address
from desktop.session import DesktopSession
from desktop.teardown import Teardown
from desktop.utils import log


def show_config(cfg: SessionConfig) -> None:
    """Print the resolved session configuration."""
    import dataclasses

    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if field.name in _SENSITIVE_FIELDS:
            print(f"  {field.name}: ********")
        elif dataclasses.is_dataclass(value):
            print(f"  {field.name}:")
            for sub_field in dataclasses.fields(value):
                print(f"    {sub_field.name}: {getattr(value, sub_field.name)}")
        elif isinstance(value, tuple):
            print(f"  {field.name}: {' '.join(value) if value else '-'}")
        else:
            print(f"  {field.name}: {value}")


def print_startup_banner(cfg: SessionConfig, public_url: Optional[str] = None) -> None:
    """Print a visually distinct access-info banner once the gateway is ready."""
    host = server_address()
    lines: List[str] = []
    lines.append(f"  Remote Desktop for {cfg.user.name} ({cfg.geometry}x{cfg.depth}, gateway={cfg.gateway})")
    if public_url:
        lines.append(f"  Public URL: {public_url.rstrip('/')}{cfg.web_path}")
    lines.append(f"  Access URL: http://{host}:{cfg.web_port}{cfg.web_path}")
    lines.append(f"  Local URL:  http://localhost:{cfg.web_port}{cfg.web_path}")
    lines.append("")
    if cfg.gateway == "guacamole":
        lines.append(f"  Web login:    {cfg.guac_user} / {cfg.guac_password}")
        lines.append(f"  VNC password: {cfg.vnc_password} (internal use only)")
    else:
        lines.append(f"  VNC password: {cfg.vnc_password}")
    if cfg.audio_enabled:
        lines.append(f"  Audio:        enabled (PulseAudio port {cfg.pulse_port})")
    if cfg.codespaces and not public_url:
        lines.append("")
        lines.append(f"  Make sure port {cfg.web_port} is forwarded/exposed.")

    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def dry_run(cfg: SessionConfig) -> int:
    """Validate configuration and host preconditions without starting anything."""
    log("INFO", "=== Configuration ===")
    show_config(cfg)
    log("INFO", "=== Environment Checks ===")
    ok = True
    status = check_port(cfg.web_port)
    if status.available:
        log("SUCCESS", f"Web port:    {cfg.web_port} available")
    else:
        log("ERROR", f"Web port:    {cfg.web_port} in use by {', '.join(status.listeners)}")
        ok = False
    binaries = ["vncserver", "vncpasswd", CHROME_BINARY]
    if cfg.audio_enabled:
        binaries.append("pulseaudio")
    if cfg.gateway == "novnc":
        binaries.append("websockify")
    for binary in binaries:
        if shutil.which(binary):
            log("SUCCESS", f"Binary:      {binary} found")
        else:
            log("WARN", f"Binary:      {binary} missing (will be installed)")
    if cfg.gateway == "guacamole":
        if docker_available():
            log("SUCCESS", "Docker:      daemon responsive")
        else:
            log("WARN", "Docker:      daemon not responsive (will be started)")
        log("INFO", f"Network:     {cfg.network_mode} ({cfg.network_name})")
    if cfg.mapping_file.exists():
        log("INFO", f"Gateway config: {cfg.guac_config_dir} (will be regenerated)")
    log("INFO", "=== Dry-run complete (nothing started) ===")
    print_startup_banner(cfg)
    return 0 if ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Browser-based remote desktop launcher (VNC + Guacamole/noVNC)")
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument("--dry-run", action="store_true", help="Validate config and environment, then exit")
    parser.add_argument("--cleanup", action="store_true", help="Stop any running desktop session and exit")
    args = parser.parse_args(argv)

    try:
        cfg = parse_env()
    except DesktopError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    if args.dry_run:
        return dry_run(cfg)

    if os.geteuid() != 0:
        log("ERROR", "This tool must be run as root (e.g. with sudo).")
        return 1

    if args.cleanup:
        return 0 if Teardown(cfg).run() else 1

    session = DesktopSession(cfg)

    def _announce() -> None:
        public_url = codespace_public_url(cfg.web_port, cfg.user) if cfg.codespaces else None
        log("SUCCESS", "Remote Desktop READY!")
        print_startup_banner(cfg, public_url)
        if cfg.password_generated:
            log("WARN", "Set VNC_PASSWORD to keep the same VNC password across runs.")

    try:
        session.run(on_ready=_announce)
    except DesktopError as exc:
        log("ERROR", str(exc))
        return 1
    except KeyboardInterrupt:
        log("WARN", "Interrupted during startup")
        return 130
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1
    return 0
