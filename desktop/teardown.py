"""Idempotent, best-effort cleanup of a desktop session."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from desktop.constants import (
    AUDIO_PROCESS_PATTERN,
    DISPLAY_PROCESS_PATTERN,
    NOVNC_PROCESS_PATTERN,
)
from desktop.gateway import GuacamoleGateway
from desktop.models import SessionConfig
from desktop.services import kill_user_processes
from desktop.utils import log


class Teardown:
    """Stop gateway containers, kill the user's desktop processes, drop profiles.

    Every step runs even if an earlier one failed. The gateway configuration
    directory (credentials and connection mapping) is never touched.
    """

    def __init__(self, cfg: SessionConfig, gateway: Optional[GuacamoleGateway] = None) -> None:
        self.cfg = cfg
        self._gateway = gateway
        self.failures: List[Tuple[str, Exception]] = []

    @property
    def gateway(self) -> GuacamoleGateway:
        if self._gateway is None:
            self._gateway = GuacamoleGateway(self.cfg)
        return self._gateway

    def steps(self) -> List[Tuple[str, Callable[[], None]]]:
        user = self.cfg.user
        return [
            ("gateway containers", self.gateway.stop),
            ("noVNC proxy", lambda: kill_user_processes(user, NOVNC_PROCESS_PATTERN)),
            ("VNC server", lambda: kill_user_processes(user, DISPLAY_PROCESS_PATTERN)),
            ("PulseAudio", lambda: kill_user_processes(user, AUDIO_PROCESS_PATTERN)),
            ("browser profiles", self.remove_profiles),
        ]

    def step(self, name: str, action: Callable[[], None]) -> bool:
        try:
            action()
        except Exception as exc:
            log("WARN", f"Cleanup step '{name}' failed: {exc}")
            self.failures.append((name, exc))
            return False
        return True

    def remove_profiles(self) -> None:
        protected = self.cfg.guac_config_dir.resolve()
        for path in self.cfg.profile_dirs:
            if not path.exists():
                continue
            if _is_within(path.resolve(), protected):
                log("WARN", f"Refusing to delete {path}: it lies inside {protected}")
                continue
            shutil.rmtree(path)
            log("DEBUG", f"Removed {path}")

    def run(self) -> bool:
        """Run every cleanup step; returns True when all of them succeeded."""
        log("INFO", "Cleaning up background processes and containers...")
        self.failures = []
        results = [self.step(name, action) for name, action in self.steps()]
        if all(results):
            log("SUCCESS", "Cleanup complete.")
        else:
            log("WARN", f"Cleanup finished with {len(self.failures)} failed step(s).")
        return all(results)


def _is_within(path: Path, parent: Path) -> bool:
    return path == parent or parent in path.parents
