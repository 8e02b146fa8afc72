"""Global constants and path configuration for browser-desktop."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CONFIG_PATH = Path("/etc/browser-desktop/config.yaml")

TRUTHY = {"1", "true", "yes", "on"}
GEOMETRY_RE = re.compile(r"^[1-9]\d{1,4}x[1-9]\d{1,4}$")
SHM_SIZE_RE = re.compile(r"^\d+[KMGkmg]?$")

# Fixed service endpoints
VNC_DISPLAY = ":1"
VNC_PORT = 5900 + int(VNC_DISPLAY.lstrip(":"))
PULSE_PORT = 4713
GUACD_PORT = 4822
SUPPORTED_DEPTHS = {8, 16, 24, 32}

GATEWAY_KINDS = {"guacamole", "novnc"}
GATEWAY_NETWORK_MODES = {"bridge", "host"}
GUACD_CONTAINER = "guacd"
GUACAMOLE_CONTAINER = "guacamole"
GUACAMOLE_INTERNAL_PORT = 8080
HOST_ALIAS = "host.docker.internal"
DEFAULT_AUDIO_ACL = "127.0.0.1;172.16.0.0/12"

NOVNC_ROOT = Path("/usr/share/novnc")

# Marker substrings served by each gateway's web root
READY_MARKERS = {
    "guacamole": "Guacamole",
    "novnc": "noVNC",
}

# Process patterns matched by `pkill -f` during teardown
DISPLAY_PROCESS_PATTERN = "Xtigervnc"
AUDIO_PROCESS_PATTERN = "pulseaudio"
NOVNC_PROCESS_PATTERN = "websockify"

CHROME_BINARY = "google-chrome-stable"
CHROME_FLAGS = (
    "--no-sandbox",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--no-zygote",
    "--start-maximized",
    "--enable-low-end-device-mode",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-ipc-flooding-protection",
)
CHROME_SIGNING_KEY_URL = "https://dl.google.com/linux/linux_signing_key.pub"
CHROME_KEYRING = Path("/usr/share/keyrings/google-chrome.gpg")
CHROME_SOURCE_LIST = Path("/etc/apt/sources.list.d/google-chrome.list")
CHROME_APT_REPO = "http://dl.google.com/linux/chrome/deb/ stable main"

BASE_PACKAGES = (
    "tigervnc-standalone-server",
    "tigervnc-common",
    "openbox",
    "xterm",
    "ca-certificates",
    "gnupg",
)
AUDIO_PACKAGES = ("pulseaudio", "pavucontrol")
NOVNC_PACKAGES = ("novnc", "websockify")
DOCKER_PACKAGE = "docker.io"

DOCKERD_LOG = Path("/var/log/dockerd.log")
DOCKERD_PID = Path("/var/run/docker.pid")

SHM_PATH = Path("/dev/shm")
LIMITS_FILE = Path("/etc/security/limits.d/90-desktop.conf")
PAM_SESSION_FILE = Path("/etc/pam.d/common-session")
PAM_LIMITS_LINE = "session required pam_limits.so"
LIMIT_VALUE = 65535

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}

_SENSITIVE_FIELDS = {"vnc_password", "guac_password"}
