"""Container sandbox detection for browser-desktop."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from desktop.utils import get_env, log


@dataclass
class RuntimeInfo:
    engine: str  # "docker", "podman", "kubernetes", "codespaces", "none"
    rootless: bool
    privileged: bool

    @property
    def sandboxed(self) -> bool:
        """True when host tuning (remounts, limits) is likely to be refused."""
        return self.engine != "none" and (self.rootless or not self.privileged)


def _detect_engine() -> str:
    """Detect which container sandbox, if any, we are running in."""
    if get_env("CODESPACES", "").lower() == "true":
        return "codespaces"
    if Path("/var/run/secrets/kubernetes.io").exists():
        return "kubernetes"
    if Path("/run/.containerenv").exists():
        return "podman"
    if Path("/.dockerenv").exists():
        return "docker"
    return "none"


_FULL_CAPABILITY_SET = 0x3FFFFFFFFF  # every capability through CAP_AUDIT_READ


def _read_proc_self(name: str) -> str:
    try:
        return Path("/proc/self", name).read_text()
    except OSError:
        return ""


def _is_rootless() -> bool:
    """User-namespaced: uid 0 here maps onto a non-root host uid."""
    for line in _read_proc_self("uid_map").splitlines():
        fields = line.split()
        if len(fields) >= 3 and fields[0] == "0":
            return fields[1] != "0"
    return False


def _is_privileged() -> bool:
    for line in _read_proc_self("status").splitlines():
        key, _, value = line.partition(":")
        if key == "CapBnd":
            try:
                return int(value.strip(), 16) >= _FULL_CAPABILITY_SET
            except ValueError:
                return False
    return False


def detect_runtime() -> RuntimeInfo:
    """Detect container sandbox, rootless status, and privilege level."""
    engine = _detect_engine()
    rootless = _is_rootless()
    privileged = _is_privileged()

    if engine != "none":
        log("DEBUG", f"Running inside {engine} (rootless={rootless}, privileged={privileged})")

    return RuntimeInfo(engine=engine, rootless=rootless, privileged=privileged)
