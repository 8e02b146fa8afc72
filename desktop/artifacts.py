"""Credential and configuration file generation for browser-desktop."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from xml.etree.ElementTree import Element, SubElement, tostring

from desktop.constants import CHROME_BINARY
from desktop.exceptions import DesktopError
from desktop.models import SessionConfig, UserInfo
from desktop.utils import chown, ensure_directory, log, run_checked, user_command

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class ShellScript:
    """A small bash script: exports, unsets, background jobs and a final exec."""

    exports: Dict[str, str] = field(default_factory=dict)
    unsets: List[str] = field(default_factory=list)
    background: List[Sequence[str]] = field(default_factory=list)
    exec_command: Optional[Sequence[str]] = None

    def render(self) -> str:
        lines = ["#!/bin/bash"]
        for name, value in self.exports.items():
            _check_identifier(name)
            lines.append(f"export {name}={shlex.quote(value)}")
        if self.unsets:
            lines.append("")
            for name in self.unsets:
                _check_identifier(name)
                lines.append(f"unset {name}")
        if self.background:
            lines.append("")
            for argv in self.background:
                lines.append(f"{shlex.join(argv)} &")
        if self.exec_command:
            lines.append("")
            lines.append(f"exec {shlex.join(self.exec_command)}")
        return "\n".join(lines) + "\n"


def _check_identifier(name: str) -> None:
    if not _IDENTIFIER_RE.match(name):
        raise DesktopError(f"Invalid shell variable name '{name}'")


def _check_single_line(key: str, value: str) -> None:
    if "\n" in value or "\r" in value:
        raise DesktopError(f"Value for '{key}' must not contain line breaks")


def render_properties(entries: Sequence[Tuple[str, str]], header: Optional[str] = None) -> str:
    """Serialize ``key: value`` pairs the way guacamole.properties expects."""
    lines = []
    if header:
        lines.append(f"# {header}")
    for key, value in entries:
        _check_single_line(key, key)
        _check_single_line(key, str(value))
        lines.append(f"{key}: {value}")
    return "\n".join(lines) + "\n"


def render_pulse_config(port: int, acl: str) -> str:
    _check_single_line("AUDIO_ACL", acl)
    if " " in acl:
        raise DesktopError(f"AUDIO_ACL must not contain spaces (got '{acl}')")
    module_args = {
        "port": str(port),
        "auth-ip-acl": acl,
        "auth-anonymous": "1",
    }
    rendered_args = " ".join(f"{key}={value}" for key, value in module_args.items())
    return (
        ".include /etc/pulse/default.pa\n"
        f"load-module module-native-protocol-tcp {rendered_args}\n"
    )


def build_xstartup(cfg: SessionConfig) -> ShellScript:
    script = ShellScript()
    if cfg.audio_enabled:
        script.exports["PULSE_SERVER"] = f"127.0.0.1:{cfg.pulse_port}"
    script.exports["XKL_XMODMAP_DISABLE"] = "1"
    script.unsets = ["SESSION_MANAGER", "DBUS_SESSION_BUS_ADDRESS"]
    chrome = [CHROME_BINARY, *cfg.chrome_flags, f"--user-data-dir={cfg.profile_dir}"]
    script.background = [["xterm"], chrome]
    script.exec_command = ["openbox"]
    return script


def render_user_mapping(cfg: SessionConfig) -> str:
    """Render user-mapping.xml with one authorized user and one VNC connection."""
    root = Element("user-mapping")
    authorize = SubElement(root, "authorize", username=cfg.guac_user, password=cfg.guac_password)
    connection = SubElement(authorize, "connection", name="Chrome VNC Desktop")
    SubElement(connection, "protocol").text = "vnc"
    params = [
        ("hostname", cfg.host_address),
        ("port", str(cfg.vnc_port)),
        ("password", cfg.vnc_password),
    ]
    if cfg.audio_enabled:
        params.append(("enable-audio", "true"))
        params.append(("audio-servername", f"{cfg.host_address}:{cfg.pulse_port}"))
    for name, value in params:
        SubElement(connection, "param", name=name).text = value
    return _element_to_str(root)


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML document."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).toprettyxml(indent="    ", encoding="UTF-8").decode("utf-8")


def _write(path: Path, content: str, mode: int, owner: Optional[UserInfo] = None) -> None:
    path.write_text(content)
    path.chmod(mode)
    if owner is not None:
        chown(path, owner)


class ArtifactWriter:
    """Writes every generated file for a session; rerunning overwrites them."""

    def __init__(self, cfg: SessionConfig) -> None:
        self.cfg = cfg

    def write_all(self) -> List[Path]:
        cfg = self.cfg
        log("INFO", f"Configuring VNC{', audio' if cfg.audio_enabled else ''} and {cfg.gateway} for {cfg.user.name}")
        written = [self.write_vnc_password(), self.write_xstartup()]
        if cfg.audio_enabled:
            written.append(self.write_pulse_config())
        if cfg.gateway == "guacamole":
            written.extend(self.write_gateway_config())
        log("SUCCESS", f"System configured for {cfg.user.name}")
        return written

    def write_vnc_password(self) -> Path:
        cfg = self.cfg
        ensure_directory(cfg.vnc_dir, owner=cfg.user)
        result = run_checked(
            user_command(cfg.user, ["vncpasswd", "-f"]),
            "vncpasswd",
            input=f"{cfg.vnc_password}\n".encode("utf-8"),
            capture_output=True,
            text=False,
        )
        cfg.passwd_file.write_bytes(result.stdout)
        cfg.passwd_file.chmod(0o600)
        chown(cfg.passwd_file, cfg.user)
        return cfg.passwd_file

    def write_xstartup(self) -> Path:
        cfg = self.cfg
        ensure_directory(cfg.vnc_dir, owner=cfg.user)
        _write(cfg.xstartup_file, build_xstartup(cfg).render(), 0o755, cfg.user)
        return cfg.xstartup_file

    def write_pulse_config(self) -> Path:
        cfg = self.cfg
        ensure_directory(cfg.pulse_config_file.parent.parent, owner=cfg.user)
        ensure_directory(cfg.pulse_config_file.parent, owner=cfg.user)
        _write(cfg.pulse_config_file, render_pulse_config(cfg.pulse_port, cfg.audio_acl), 0o644, cfg.user)
        return cfg.pulse_config_file

    def write_gateway_config(self) -> List[Path]:
        cfg = self.cfg
        log("INFO", f"Creating Guacamole configuration in {cfg.guac_config_dir}")
        ensure_directory(cfg.guac_config_dir)
        properties = render_properties(
            [
                ("guacd-hostname", cfg.guacd_hostname),
                ("guacd-port", str(cfg.guacd_port)),
                ("basic-user-mapping", "/etc/guacamole/user-mapping.xml"),
            ],
            header="Guacamole configuration",
        )
        _write(cfg.properties_file, properties, 0o644)
        _write(cfg.mapping_file, render_user_mapping(cfg), 0o644)
        return [cfg.properties_file, cfg.mapping_file]
