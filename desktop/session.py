"""Lifecycle orchestration: prepare, start, wait for interrupt, tear down."""

from __future__ import annotations

import signal
import threading
from contextlib import ExitStack
from typing import Callable, List, Optional, Union

from desktop.artifacts import ArtifactWriter
from desktop.exceptions import GatewayNotReadyError
from desktop.gateway import GuacamoleGateway, NoVNCGateway, create_gateway
from desktop.models import ServiceHandle, SessionConfig
from desktop.network import require_port_free
from desktop.packages import PackageInstaller
from desktop.resources import ResourceAdjuster
from desktop.services import AudioServer, DisplayServer
from desktop.status import StartupState, StartupTracker
from desktop.teardown import Teardown
from desktop.utils import log

Gateway = Union[GuacamoleGateway, NoVNCGateway]


class DesktopSession:
    """One invocation of the desktop: every started service is released on exit."""

    def __init__(
        self,
        cfg: SessionConfig,
        gateway: Optional[Gateway] = None,
        display: Optional[DisplayServer] = None,
        audio: Optional[AudioServer] = None,
        teardown: Optional[Teardown] = None,
        installer: Optional[PackageInstaller] = None,
        resources: Optional[ResourceAdjuster] = None,
        artifacts: Optional[ArtifactWriter] = None,
    ) -> None:
        self.cfg = cfg
        self.gateway = gateway if gateway is not None else create_gateway(cfg)
        self.display = display if display is not None else DisplayServer(cfg)
        self.audio = audio if audio is not None else AudioServer(cfg)
        guacamole = self.gateway if isinstance(self.gateway, GuacamoleGateway) else None
        self.teardown = teardown if teardown is not None else Teardown(cfg, guacamole)
        self._installer = installer
        self._resources = resources
        self.artifacts = artifacts if artifacts is not None else ArtifactWriter(cfg)
        self.tracker = StartupTracker(audio_enabled=cfg.audio_enabled)
        self.handles: List[ServiceHandle] = []
        self.stop_event = threading.Event()
        self._starting = False

    @property
    def installer(self) -> PackageInstaller:
        if self._installer is None:
            self._installer = PackageInstaller(self.cfg)
        return self._installer

    @property
    def resources(self) -> ResourceAdjuster:
        if self._resources is None:
            self._resources = ResourceAdjuster(self.cfg)
        return self._resources

    def prepare(self) -> None:
        """Host preparation: limits, packages and generated files."""
        if self.cfg.expand_resources:
            self.resources.apply()
        if self.cfg.skip_install:
            log("INFO", "SKIP_INSTALL set; not touching system packages")
        else:
            self.installer.ensure_all()
        self.artifacts.write_all()

    def start(self, stack: ExitStack) -> None:
        """Bring services up in order, registering each release on ``stack``."""
        cfg = self.cfg
        require_port_free(cfg.web_port)
        try:
            self._acquire(stack, self.display.start())
            self.tracker.advance(StartupState.DISPLAY_UP)
            if cfg.audio_enabled:
                self._acquire(stack, self.audio.start())
                self.tracker.advance(StartupState.AUDIO_UP)
            self.tracker.advance(StartupState.GATEWAY_STARTING)
            self._acquire(stack, self.gateway.start())
            if not self.gateway.wait_until_ready():
                self.gateway.dump_logs()
                raise GatewayNotReadyError(
                    f"{self.gateway.label} did not become ready after {cfg.ready_attempts} attempts"
                )
        except BaseException:
            self.tracker.fail()
            raise
        self.tracker.advance(StartupState.READY)

    def _acquire(self, stack: ExitStack, handle: ServiceHandle) -> None:
        self.handles.append(handle)
        stack.callback(self.teardown.step, handle.name, handle.release)

    def request_stop(self, signum: int = 0, frame: object = None) -> None:
        """Signal handler: end the wait, or abort a startup still in progress.

        Outside startup (waiting, or releasing services) a signal only sets
        the stop event, so cleanup always runs to the end.
        """
        if signum:
            log("INFO", f"Received {signal.Signals(signum).name}; shutting down")
        first_request = not self.stop_event.is_set()
        self.stop_event.set()
        if signum and self._starting and first_request:
            self._starting = False
            raise KeyboardInterrupt

    def wait(self, follow_logs: bool = True) -> None:
        """Stream gateway logs and block until a stop is requested."""
        if follow_logs:
            log("INFO", "Streaming gateway logs (CTRL+C to stop & cleanup)...")
            self.gateway.follow_logs(self.stop_event)
        while not self.stop_event.wait(timeout=1.0):
            pass

    def run(self, on_ready: Optional[Callable[[], None]] = None) -> None:
        """Full lifecycle; teardown runs on every exit path."""
        previous = {
            sig: signal.signal(sig, self.request_stop) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            with ExitStack() as stack:
                stack.callback(self.teardown.run)
                self._starting = True
                try:
                    self.teardown.run()
                    self.prepare()
                    self.start(stack)
                    if on_ready is not None:
                        on_ready()
                finally:
                    self._starting = False
                self.wait()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
