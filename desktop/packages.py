"""Idempotent package, browser and Docker setup for browser-desktop."""

from __future__ import annotations

import grp
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List

try:
    import requests
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from desktop.constants import (
    AUDIO_PACKAGES,
    BASE_PACKAGES,
    CHROME_APT_REPO,
    CHROME_BINARY,
    CHROME_KEYRING,
    CHROME_SIGNING_KEY_URL,
    CHROME_SOURCE_LIST,
    DOCKER_PACKAGE,
    DOCKERD_LOG,
    DOCKERD_PID,
    NOVNC_PACKAGES,
)
from desktop.exceptions import DesktopError
from desktop.gateway import docker_available
from desktop.models import SessionConfig
from desktop.utils import ensure_directory, log, retry_until, run, run_checked

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class PackageInstaller:
    """Make sure every binary the session needs is present.

    Each check is a pure existence query, so a second run only refreshes the
    package cache.
    """

    def __init__(
        self,
        cfg: SessionConfig,
        docker_check: Callable[[], bool] = docker_available,
        dockerd_log: Path = DOCKERD_LOG,
    ) -> None:
        self.cfg = cfg
        self._docker_check = docker_check
        self.dockerd_log = dockerd_log

    def required_packages(self) -> List[str]:
        packages = list(BASE_PACKAGES)
        if self.cfg.audio_enabled:
            packages.extend(AUDIO_PACKAGES)
        if self.cfg.gateway == "novnc":
            packages.extend(NOVNC_PACKAGES)
        packages.extend(self.cfg.extra_packages)
        return list(dict.fromkeys(packages))

    def ensure_all(self) -> List[str]:
        """Install whatever is missing; returns the packages that were installed."""
        self.refresh_cache()
        missing = self.missing_packages()
        if missing:
            log("INFO", f"Installing {len(missing)} package(s): {' '.join(missing)}")
            self.install(missing)
        else:
            log("INFO", "All required packages already installed")
        installed = list(missing)
        installed.extend(self.ensure_browser())
        if self.cfg.gateway == "guacamole":
            installed.extend(self.ensure_docker())
            self.ensure_docker_daemon()
            self.ensure_docker_group()
        return installed

    def refresh_cache(self) -> None:
        log("INFO", "Updating package lists...")
        run_checked(["apt-get", "update"], "apt-get update", env=self._apt_env())

    def is_installed(self, package: str) -> bool:
        try:
            result = run(
                ["dpkg-query", "-W", "-f=${Status}", package],
                check=False,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise DesktopError("dpkg-query not found; only Debian-based systems are supported") from exc
        return result.returncode == 0 and "install ok installed" in result.stdout

    def missing_packages(self) -> List[str]:
        return [pkg for pkg in self.required_packages() if not self.is_installed(pkg)]

    def install(self, packages: List[str]) -> None:
        run_checked(
            ["apt-get", "install", "-y", "--no-install-recommends", *packages],
            f"Installing {' '.join(packages)}",
            env=self._apt_env(),
        )

    def ensure_browser(self) -> List[str]:
        if shutil.which(CHROME_BINARY):
            log("INFO", "Google Chrome already installed.")
            return []
        log("INFO", "Installing Google Chrome...")
        self._add_chrome_repository()
        self.refresh_cache()
        self.install([CHROME_BINARY])
        return [CHROME_BINARY]

    def _add_chrome_repository(self) -> None:
        try:
            response = requests.get(CHROME_SIGNING_KEY_URL, timeout=60)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DesktopError(f"Failed to download Chrome signing key: {exc}") from exc
        ensure_directory(CHROME_KEYRING.parent)
        run_checked(
            ["gpg", "--batch", "--yes", "--dearmor", "-o", str(CHROME_KEYRING)],
            "Importing Chrome signing key",
            input=response.content,
            capture_output=True,
            text=False,
        )
        CHROME_SOURCE_LIST.write_text(f"deb [arch=amd64 signed-by={CHROME_KEYRING}] {CHROME_APT_REPO}\n")

    def ensure_docker(self) -> List[str]:
        if shutil.which("docker"):
            log("INFO", "Docker is already installed. Skipping installation.")
            return []
        log("INFO", f"Docker not found. Installing {DOCKER_PACKAGE}...")
        self.install([DOCKER_PACKAGE])
        return [DOCKER_PACKAGE]

    def ensure_docker_daemon(self) -> None:
        if self._docker_check():
            log("INFO", "Docker daemon is already running and responsive.")
            return
        log("INFO", "Docker daemon is not responsive. Attempting to start it...")
        DOCKERD_PID.unlink(missing_ok=True)
        ensure_directory(self.dockerd_log.parent)
        try:
            with open(self.dockerd_log, "ab") as log_file:
                subprocess.Popen(
                    ["dockerd"],
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except FileNotFoundError as exc:
            raise DesktopError("dockerd not found; cannot start the Docker daemon") from exc
        if not retry_until(self._docker_check, attempts=10, interval=1.0):
            raise DesktopError(f"Failed to start the Docker daemon. Last log lines:\n{self._dockerd_log_tail()}")
        log("SUCCESS", "Docker daemon started successfully.")

    def _dockerd_log_tail(self, lines: int = 10) -> str:
        try:
            return "\n".join(self.dockerd_log.read_text(errors="replace").splitlines()[-lines:])
        except OSError:
            return "(no dockerd log available)"

    def ensure_docker_group(self) -> None:
        """Add the desktop user to the docker group. Best effort."""
        user = self.cfg.user
        if user.is_root:
            log("DEBUG", "Running as root - Docker group membership not needed.")
            return
        try:
            group = grp.getgrnam("docker")
        except KeyError:
            log("WARN", "Docker group not found - this may cause issues.")
            return
        if user.name in group.gr_mem or user.gid == group.gr_gid:
            return
        log("INFO", f"Adding {user.name} to docker group...")
        try:
            run(["usermod", "-aG", "docker", user.name], capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            log("WARN", f"Could not add {user.name} to the docker group: {exc}")
            return
        log("WARN", "User added to docker group. Log out and back in for it to take effect.")

    @staticmethod
    def _apt_env() -> dict:
        env = dict(os.environ)
        env.update(_APT_ENV)
        return env
