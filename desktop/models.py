"""Data models for browser-desktop."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Tuple

from desktop.constants import GUACD_CONTAINER, HOST_ALIAS, READY_MARKERS


@dataclass(frozen=True)
class UserInfo:
    name: str
    uid: int
    gid: int
    home: Path

    @property
    def is_root(self) -> bool:
        return self.uid == 0


@dataclass(frozen=True)
class SessionConfig:
    user: UserInfo
    gateway: str  # "guacamole" or "novnc"
    network_mode: str  # "bridge" or "host"
    network_name: str
    geometry: str
    depth: int
    display: str
    vnc_port: int
    web_port: int
    audio_enabled: bool
    pulse_port: int
    audio_acl: str
    guacd_port: int
    vnc_password: str
    password_generated: bool
    guac_user: str
    guac_password: str
    guac_config_dir: Path
    guacd_image: str
    guacamole_image: str
    profile_dir: Path
    chrome_flags: Tuple[str, ...]
    # Readiness polling
    ready_attempts: int = 30
    ready_interval: float = 2.0
    ready_backoff: float = 1.0
    # Host preparation
    shm_size: str = "2G"
    expand_resources: bool = True
    skip_install: bool = False
    extra_packages: Tuple[str, ...] = ()
    codespaces: bool = False

    @property
    def vnc_dir(self) -> Path:
        return self.user.home / ".vnc"

    @property
    def passwd_file(self) -> Path:
        return self.vnc_dir / "passwd"

    @property
    def xstartup_file(self) -> Path:
        return self.vnc_dir / "xstartup"

    @property
    def pulse_config_file(self) -> Path:
        return self.user.home / ".config" / "pulse" / "default.pa"

    @property
    def properties_file(self) -> Path:
        return self.guac_config_dir / "guacamole.properties"

    @property
    def mapping_file(self) -> Path:
        return self.guac_config_dir / "user-mapping.xml"

    @property
    def host_address(self) -> str:
        """Address the gateway backend uses to reach the display/audio servers."""
        if self.gateway == "guacamole" and self.network_mode == "bridge":
            return HOST_ALIAS
        return "127.0.0.1"

    @property
    def guacd_hostname(self) -> str:
        return GUACD_CONTAINER if self.network_mode == "bridge" else "127.0.0.1"

    @property
    def web_path(self) -> str:
        return "/guacamole/" if self.gateway == "guacamole" else "/vnc.html"

    @property
    def ready_url(self) -> str:
        return f"http://127.0.0.1:{self.web_port}{self.web_path}"

    @property
    def ready_marker(self) -> str:
        return READY_MARKERS[self.gateway]

    @property
    def profile_dirs(self) -> Tuple[Path, ...]:
        """Every location a browser profile for this user may have been left in."""
        name = self.profile_dir.name
        candidates = (self.profile_dir, Path("/tmp") / name, Path("/dev/shm") / name)
        return tuple(dict.fromkeys(candidates))


@dataclass
class ServiceHandle:
    """A started service; ``release`` performs its shutdown step."""

    name: str
    release: Callable[[], None] = field(repr=False)
