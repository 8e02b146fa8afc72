"""Configuration loading and environment variable parsing for browser-desktop."""

from __future__ import annotations

import getpass
import pwd
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from desktop.constants import (
    CHROME_FLAGS,
    DEFAULT_AUDIO_ACL,
    DEFAULT_CONFIG_PATH,
    GATEWAY_KINDS,
    GATEWAY_NETWORK_MODES,
    GEOMETRY_RE,
    GUACAMOLE_INTERNAL_PORT,
    GUACD_PORT,
    PULSE_PORT,
    SHM_SIZE_RE,
    SUPPORTED_DEPTHS,
    VNC_DISPLAY,
    VNC_PORT,
)
from desktop.exceptions import DesktopError
from desktop.models import SessionConfig, UserInfo
from desktop.utils import (
    generate_password,
    get_env,
    log,
    parse_bool,
    parse_float,
    parse_int,
)

_DEFAULT_GUAC_CREDENTIAL = "123"


def load_settings_file(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the optional YAML settings file; a missing file means no overrides."""
    if config_path is None:
        config_path = Path(get_env("DESKTOP_CONFIG") or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        return {}
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as exc:
        raise DesktopError(f"Settings file {config_path} contains invalid YAML: {exc}")
    except OSError as exc:
        raise DesktopError(f"Cannot read settings file {config_path}: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DesktopError(f"Settings file {config_path} must contain a YAML mapping")
    log("INFO", f"Loaded settings from {config_path}")
    return {str(key).lower(): value for key, value in data.items()}


def resolve_user(name: Optional[str] = None) -> UserInfo:
    """Resolve the desktop owner: the sudo caller if any, else ourselves."""
    if not name:
        name = get_env("SUDO_USER") or getpass.getuser()
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        raise DesktopError(f"Unknown target user '{name}'")
    return UserInfo(name=entry.pw_name, uid=entry.pw_uid, gid=entry.pw_gid, home=Path(entry.pw_dir))


def parse_env(settings: Optional[Dict[str, Any]] = None) -> SessionConfig:
    if settings is None:
        settings = load_settings_file()

    def setting(name: str, default: Optional[str] = None) -> Optional[str]:
        raw = get_env(name)
        if raw is not None:
            return raw
        value = settings.get(name.lower())
        if value is None:
            return default
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (list, tuple)):
            return " ".join(str(item) for item in value)
        return str(value)

    user = resolve_user(setting("TARGET_USER"))

    gateway = (setting("GATEWAY", "guacamole") or "guacamole").strip().lower()
    if gateway not in GATEWAY_KINDS:
        supported = ", ".join(sorted(GATEWAY_KINDS))
        raise DesktopError(f"Unsupported GATEWAY '{gateway}'. Supported: {supported}")

    network_mode = (setting("GATEWAY_NETWORK", "bridge") or "bridge").strip().lower()
    if network_mode not in GATEWAY_NETWORK_MODES:
        supported = ", ".join(sorted(GATEWAY_NETWORK_MODES))
        raise DesktopError(f"Unsupported GATEWAY_NETWORK '{network_mode}'. Supported: {supported}")
    network_name = (setting("GATEWAY_NETWORK_NAME", "guacnet") or "guacnet").strip()

    geometry = (setting("VNC_GEOMETRY", "1366x768") or "1366x768").strip().lower()
    if not GEOMETRY_RE.match(geometry):
        raise DesktopError(f"Invalid VNC_GEOMETRY '{geometry}'. Use WIDTHxHEIGHT (e.g. '1366x768')")

    depth = parse_int("VNC_DEPTH", setting("VNC_DEPTH", "24") or "24")
    if depth not in SUPPORTED_DEPTHS:
        supported = ", ".join(str(d) for d in sorted(SUPPORTED_DEPTHS))
        raise DesktopError(f"Unsupported VNC_DEPTH {depth}. Supported: {supported}")

    web_port = parse_int("WEB_PORT", setting("WEB_PORT", "8080") or "8080", min_val=1, max_val=65535)
    if web_port in {VNC_PORT, PULSE_PORT, GUACD_PORT}:
        raise DesktopError(f"WEB_PORT {web_port} collides with a fixed service port")
    if gateway == "guacamole" and network_mode == "host" and web_port != GUACAMOLE_INTERNAL_PORT:
        raise DesktopError(
            f"GATEWAY_NETWORK=host publishes the web interface on its own port {GUACAMOLE_INTERNAL_PORT}; "
            f"unset WEB_PORT or use GATEWAY_NETWORK=bridge (got WEB_PORT={web_port})"
        )

    audio_raw = setting("AUDIO_ENABLE")
    if gateway == "novnc":
        if parse_bool(audio_raw, False):
            log("WARN", "AUDIO_ENABLE ignored: the noVNC gateway has no audio channel")
        audio_enabled = False
    else:
        audio_enabled = parse_bool(audio_raw, True)
    audio_acl = (setting("AUDIO_ACL", DEFAULT_AUDIO_ACL) or DEFAULT_AUDIO_ACL).strip()

    vnc_password = setting("VNC_PASSWORD")
    password_generated = False
    if not vnc_password:
        vnc_password = generate_password()
        password_generated = True
        log("WARN", "No VNC_PASSWORD set; a random one was generated")
    elif len(vnc_password) > 8:
        log("WARN", "VNC_PASSWORD is longer than 8 characters; VNC authentication only uses the first 8")

    guac_user = setting("GUAC_USER", _DEFAULT_GUAC_CREDENTIAL) or _DEFAULT_GUAC_CREDENTIAL
    guac_password = setting("GUAC_PASS", _DEFAULT_GUAC_CREDENTIAL) or _DEFAULT_GUAC_CREDENTIAL
    if gateway == "guacamole" and guac_password == _DEFAULT_GUAC_CREDENTIAL:
        log("WARN", "GUAC_PASS is the built-in default; change it for anything but local testing")
    guac_config_dir = Path(setting("GUAC_CONFIG_DIR", "/etc/guacamole") or "/etc/guacamole")

    guacd_image = (setting("GUACD_IMAGE", "guacamole/guacd") or "guacamole/guacd").strip()
    guacamole_image = (setting("GUACAMOLE_IMAGE", "guacamole/guacamole") or "guacamole/guacamole").strip()

    if gateway == "guacamole":
        profile_dir = Path("/dev/shm") / f"chrome_profile_{user.name}"
    else:
        profile_dir = Path("/tmp") / f"chrome_profile_{user.name}"

    ready_attempts = parse_int("READY_ATTEMPTS", setting("READY_ATTEMPTS", "30") or "30")
    ready_interval = parse_float("READY_INTERVAL", setting("READY_INTERVAL", "2") or "2")
    ready_backoff = parse_float("READY_BACKOFF", setting("READY_BACKOFF", "1.0") or "1.0", min_val=1.0)

    shm_size = (setting("SHM_SIZE", "2G") or "2G").strip()
    if not SHM_SIZE_RE.match(shm_size):
        raise DesktopError(f"Invalid SHM_SIZE '{shm_size}'. Use a number with optional suffix: K, M, G")

    extra_packages = tuple((setting("EXTRA_PACKAGES", "") or "").replace(",", " ").split())

    return SessionConfig(
        user=user,
        gateway=gateway,
        network_mode=network_mode,
        network_name=network_name,
        geometry=geometry,
        depth=depth,
        display=VNC_DISPLAY,
        vnc_port=VNC_PORT,
        web_port=web_port,
        audio_enabled=audio_enabled,
        pulse_port=PULSE_PORT,
        audio_acl=audio_acl,
        guacd_port=GUACD_PORT,
        vnc_password=vnc_password,
        password_generated=password_generated,
        guac_user=guac_user,
        guac_password=guac_password,
        guac_config_dir=guac_config_dir,
        guacd_image=guacd_image,
        guacamole_image=guacamole_image,
        profile_dir=profile_dir,
        chrome_flags=CHROME_FLAGS,
        ready_attempts=ready_attempts,
        ready_interval=ready_interval,
        ready_backoff=ready_backoff,
        shm_size=shm_size,
        expand_resources=parse_bool(setting("EXPAND_RESOURCES"), True),
        skip_install=parse_bool(setting("SKIP_INSTALL"), False),
        extra_packages=extra_packages,
        codespaces=parse_bool(setting("CODESPACES"), False),
    )
