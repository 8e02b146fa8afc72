"""Remote-access gateways (Guacamole containers or a noVNC proxy)."""

from __future__ import annotations

import shutil
import subprocess
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

try:
    import docker
    import docker.errors
except ImportError as exc:  # pragma: no cover
    raise SystemExit("docker (Docker SDK for Python) is required but not installed") from exc

try:
    import requests
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from desktop.constants import (
    GUACAMOLE_CONTAINER,
    GUACAMOLE_INTERNAL_PORT,
    GUACD_CONTAINER,
    HOST_ALIAS,
    NOVNC_ROOT,
)
from desktop.exceptions import DesktopError
from desktop.models import ServiceHandle, SessionConfig
from desktop.utils import log, retry_until, user_command

_MANAGED_LABEL = "browser-desktop.managed"
_CONTAINER_CONFIG_DIR = "/etc/guacamole"


def docker_client() -> docker.DockerClient:
    try:
        return docker.from_env()
    except docker.errors.DockerException as exc:
        raise DesktopError(f"Cannot connect to the Docker daemon: {exc}") from exc


def docker_available() -> bool:
    """Return True when a Docker daemon answers a ping."""
    try:
        client = docker.from_env()
    except docker.errors.DockerException:
        return False
    try:
        client.ping()
    except (docker.errors.DockerException, requests.RequestException):
        return False
    finally:
        client.close()
    return True


def split_image(image: str) -> Tuple[str, str]:
    """Split ``repo[:tag]`` (registry ports are not tags)."""
    repo, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        return image, "latest"
    return repo, tag


def _follow(name: str, lines: Iterable[Union[str, bytes]], stop: threading.Event) -> None:
    for chunk in lines:
        if stop.is_set():
            return
        text = chunk.decode("utf-8", "replace") if isinstance(chunk, bytes) else chunk
        for line in text.splitlines():
            print(f"[{name}] {line}", flush=True)


def _start_follower(name: str, lines: Iterable[Union[str, bytes]], stop: threading.Event) -> threading.Thread:
    thread = threading.Thread(target=_follow, args=(name, lines, stop), name=f"logs-{name}", daemon=True)
    thread.start()
    return thread


class _PollingGateway:
    """Readiness polling shared by every gateway flavour."""

    label = "gateway"

    def __init__(self, cfg: SessionConfig) -> None:
        self.cfg = cfg

    def probe(self) -> bool:
        try:
            response = requests.get(self.cfg.ready_url, timeout=2)
        except requests.RequestException:
            return False
        return response.ok and self.cfg.ready_marker in response.text

    def wait_until_ready(self) -> bool:
        cfg = self.cfg
        log("INFO", f"Waiting for {self.label} to be ready on {cfg.ready_url}...")

        def _not_ready(attempt: int, attempts: int) -> None:
            log("INFO", f"Attempt {attempt}/{attempts}: {self.label} not ready yet...")

        if retry_until(
            self.probe,
            attempts=cfg.ready_attempts,
            interval=cfg.ready_interval,
            backoff=cfg.ready_backoff,
            on_failure=_not_ready,
        ):
            log("SUCCESS", f"{self.label} is ready!")
            return True
        log("ERROR", f"{self.label} failed to start within {cfg.ready_attempts} attempts")
        return False


class GuacamoleGateway(_PollingGateway):
    """guacd + guacamole web containers driven through the Docker SDK."""

    label = "Guacamole"
    containers = (GUACD_CONTAINER, GUACAMOLE_CONTAINER)

    def __init__(self, cfg: SessionConfig, client: Optional[docker.DockerClient] = None) -> None:
        super().__init__(cfg)
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker_client()
        return self._client

    def daemon_reachable(self) -> bool:
        try:
            self.client.ping()
        except (DesktopError, docker.errors.DockerException, requests.RequestException):
            return False
        return True

    def ensure_network(self) -> Optional[str]:
        """Create the bridge network when missing; host mode needs none."""
        if self.cfg.network_mode != "bridge":
            return None
        name = self.cfg.network_name
        try:
            self.client.networks.get(name)
            log("DEBUG", f"Docker network '{name}' already exists")
        except docker.errors.NotFound:
            log("INFO", f"Creating Docker network '{name}'")
            self.client.networks.create(name, driver="bridge")
        return name

    def pull_images(self) -> None:
        for image in (self.cfg.guacd_image, self.cfg.guacamole_image):
            repo, tag = split_image(image)
            log("INFO", f"Pulling {repo}:{tag}...")
            self.client.images.pull(repo, tag=tag)

    def remove_existing(self) -> List[str]:
        """Force-remove containers left over with our names."""
        removed = []
        for name in self.containers:
            try:
                container = self.client.containers.get(name)
            except docker.errors.NotFound:
                continue
            container.remove(force=True)
            removed.append(name)
            log("INFO", f"Removed existing container '{name}'")
        return removed

    def _network_kwargs(self) -> dict:
        if self.cfg.network_mode == "host":
            return {"network_mode": "host"}
        return {"network": self.cfg.network_name}

    def _run_guacd(self):
        kwargs = self._network_kwargs()
        if self.cfg.network_mode == "bridge":
            kwargs["extra_hosts"] = {HOST_ALIAS: "host-gateway"}
        log("INFO", "Launching guacd daemon...")
        return self.client.containers.run(
            self.cfg.guacd_image,
            name=GUACD_CONTAINER,
            detach=True,
            labels={_MANAGED_LABEL: "true"},
            **kwargs,
        )

    def _run_web(self):
        cfg = self.cfg
        kwargs = self._network_kwargs()
        if cfg.network_mode == "bridge":
            kwargs["ports"] = {f"{GUACAMOLE_INTERNAL_PORT}/tcp": ("0.0.0.0", cfg.web_port)}
        log("INFO", "Launching Guacamole web interface...")
        return self.client.containers.run(
            cfg.guacamole_image,
            name=GUACAMOLE_CONTAINER,
            detach=True,
            labels={_MANAGED_LABEL: "true"},
            volumes={str(cfg.guac_config_dir): {"bind": _CONTAINER_CONFIG_DIR, "mode": "ro"}},
            environment={
                "GUACAMOLE_HOME": _CONTAINER_CONFIG_DIR,
                "GUACD_HOSTNAME": cfg.guacd_hostname,
                "GUACD_PORT": str(cfg.guacd_port),
            },
            **kwargs,
        )

    def _wait_running(self, container, attempts: int = 10) -> None:
        def _running() -> bool:
            container.reload()
            if container.status == "exited":
                raise DesktopError(
                    f"Container '{container.name}' exited during startup:\n"
                    + container.logs(tail=20).decode("utf-8", "replace")
                )
            return container.status == "running"

        if not retry_until(_running, attempts=attempts, interval=0.5):
            raise DesktopError(f"Container '{container.name}' did not reach running state")

    def start(self) -> ServiceHandle:
        log("INFO", f"Starting Guacamole gateway ({self.cfg.network_mode} networking)")
        try:
            self.remove_existing()
            self.ensure_network()
            self.pull_images()
            guacd = self._run_guacd()
            self._wait_running(guacd)
            web = self._run_web()
            self._wait_running(web)
        except docker.errors.DockerException as exc:
            raise DesktopError(f"Failed to start Guacamole containers: {exc}") from exc
        return ServiceHandle(name="gateway", release=self.stop)

    def dump_logs(self, tail: int = 50) -> None:
        for name in self.containers:
            try:
                output = self.client.containers.get(name).logs(tail=tail)
            except docker.errors.NotFound:
                log("ERROR", f"Container '{name}' is not present")
                continue
            except docker.errors.DockerException as exc:
                log("ERROR", f"Could not read logs for '{name}': {exc}")
                continue
            log("ERROR", f"Last {tail} log lines from {name}:\n{output.decode('utf-8', 'replace')}")

    def follow_logs(self, stop: threading.Event) -> List[threading.Thread]:
        threads = []
        for name in self.containers:
            try:
                lines = self.client.containers.get(name).logs(stream=True, follow=True)
            except docker.errors.NotFound:
                log("WARN", f"Container '{name}' is gone; not streaming its logs")
                continue
            except docker.errors.DockerException as exc:
                raise DesktopError(f"Cannot stream logs for '{name}': {exc}") from exc
            print(f"── {name} " + "─" * max(0, 45 - len(name)), flush=True)
            threads.append(_start_follower(name, lines, stop))
        return threads

    def stop(self) -> None:
        if not self.daemon_reachable():
            log("DEBUG", "Docker daemon not reachable; no gateway containers to stop")
            return
        failed = []
        for name in reversed(self.containers):
            try:
                container = self.client.containers.get(name)
                container.stop(timeout=10)
                container.remove(force=True)
            except docker.errors.NotFound:
                continue
            except docker.errors.DockerException as exc:
                log("WARN", f"Could not stop container '{name}': {exc}")
                failed.append(name)
                continue
            log("INFO", f"Stopped container '{name}'")
        if failed:
            raise DesktopError(f"Failed to stop container(s): {', '.join(failed)}")


class NoVNCGateway(_PollingGateway):
    """websockify serving the noVNC client, running as the desktop user."""

    label = "noVNC"

    def __init__(self, cfg: SessionConfig, novnc_root: Path = NOVNC_ROOT) -> None:
        super().__init__(cfg)
        self.novnc_root = novnc_root
        self.process: Optional[subprocess.Popen] = None

    def start(self) -> ServiceHandle:
        cfg = self.cfg
        if shutil.which("websockify") is None:
            raise DesktopError("noVNC requested but websockify is missing. Install the websockify package.")
        if not self.novnc_root.exists():
            raise DesktopError(f"noVNC static assets not found at {self.novnc_root}.")
        cmd = user_command(
            cfg.user,
            ["websockify", "--web", str(self.novnc_root), str(cfg.web_port), f"localhost:{cfg.vnc_port}"],
        )
        log("INFO", f"Starting noVNC proxy (web:{cfg.web_port} -> VNC:{cfg.vnc_port}) as {cfg.user.name}")
        try:
            self.process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as exc:
            raise DesktopError(f"Failed to start noVNC proxy: {exc}") from exc
        return ServiceHandle(name="gateway", release=self.stop)

    def dump_logs(self, tail: int = 50) -> None:
        proc = self.process
        if proc is None:
            return
        if proc.poll() is None:
            proc.terminate()
        try:
            output, _ = proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            output, _ = proc.communicate()
        lines = (output or "").splitlines()[-tail:]
        log("ERROR", f"websockify exited with code {proc.returncode}:\n" + "\n".join(lines))

    def follow_logs(self, stop: threading.Event) -> List[threading.Thread]:
        if self.process is None or self.process.stdout is None:
            return []
        return [_start_follower("websockify", self.process.stdout, stop)]

    def stop(self) -> None:
        proc = self.process
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
        log("INFO", "Stopped noVNC proxy")


def create_gateway(cfg: SessionConfig) -> Union[GuacamoleGateway, NoVNCGateway]:
    if cfg.gateway == "novnc":
        return NoVNCGateway(cfg)
    return GuacamoleGateway(cfg)
