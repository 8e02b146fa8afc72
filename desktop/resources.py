"""Best-effort shared memory and ulimit tuning for the desktop user."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Optional

from desktop.constants import (
    LIMIT_VALUE,
    LIMITS_FILE,
    PAM_LIMITS_LINE,
    PAM_SESSION_FILE,
    SHM_PATH,
)
from desktop.models import SessionConfig
from desktop.runtime import RuntimeInfo, detect_runtime
from desktop.utils import ensure_directory, log, run


def _format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.0f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


class ResourceAdjuster:
    """Raise /dev/shm and the user's process limits. Never fatal."""

    def __init__(
        self,
        cfg: SessionConfig,
        runtime: Optional[RuntimeInfo] = None,
        shm_path: Path = SHM_PATH,
        limits_file: Path = LIMITS_FILE,
        pam_file: Path = PAM_SESSION_FILE,
    ) -> None:
        self.cfg = cfg
        self.runtime = runtime if runtime is not None else detect_runtime()
        self.shm_path = shm_path
        self.limits_file = limits_file
        self.pam_file = pam_file

    def apply(self) -> None:
        self.expand_shared_memory()
        self.write_limits()
        self.enable_pam_limits()

    def expand_shared_memory(self) -> bool:
        size = self.cfg.shm_size
        log("INFO", f"Attempting to expand shared memory to {size}...")
        try:
            run(["mount", "-o", f"remount,size={size}", str(self.shm_path)], capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            log("WARN", f"Could not resize {self.shm_path}: {exc}")
            if self.runtime.sandboxed:
                log("WARN", f"This is common inside {self.runtime.engine}; run the container with a larger --shm-size")
            try:
                current = shutil.disk_usage(self.shm_path).total
            except OSError:
                return False
            log("INFO", f"Current {self.shm_path} size: {_format_size(current)}")
            return False
        log("SUCCESS", f"Shared memory expanded to {size}.")
        return True

    def render_limits(self) -> str:
        user = self.cfg.user.name
        lines = []
        for item in ("nproc", "nofile"):
            for kind in ("soft", "hard"):
                lines.append(f"{user} {kind} {item} {LIMIT_VALUE}")
        return "\n".join(lines) + "\n"

    def write_limits(self) -> bool:
        log("INFO", f"Setting high ulimits for {self.cfg.user.name}...")
        try:
            ensure_directory(self.limits_file.parent)
            self.limits_file.write_text(self.render_limits())
        except OSError as exc:
            log("WARN", f"Could not write {self.limits_file}: {exc}")
            return False
        return True

    def enable_pam_limits(self) -> bool:
        """Append the pam_limits session line once; absent PAM config is skipped."""
        if not self.pam_file.exists():
            log("DEBUG", f"{self.pam_file} not present; skipping pam_limits")
            return False
        try:
            content = self.pam_file.read_text()
            if "pam_limits.so" in content:
                log("DEBUG", "pam_limits already enabled")
                return False
            with self.pam_file.open("a") as f:
                if content and not content.endswith("\n"):
                    f.write("\n")
                f.write(PAM_LIMITS_LINE + "\n")
        except OSError as exc:
            log("WARN", f"Could not update {self.pam_file}: {exc}")
            return False
        log("INFO", f"Enabled pam_limits in {self.pam_file}")
        return True
