"""Utility functions for browser-desktop."""

from __future__ import annotations

import os
import secrets
import string
import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional

from desktop.constants import _LOG_VERBOSE, TRUTHY
from desktop.exceptions import DesktopError
from desktop.models import UserInfo

_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def parse_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None:
        return default
    return str(raw).strip().lower() in TRUTHY


def parse_int(name: str, raw: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise DesktopError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise DesktopError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise DesktopError(f"{name} must be <= {max_val} (got {value})")
    return value


def parse_float(name: str, raw: str, min_val: float = 0.0) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise DesktopError(f"{name} must be a number (got '{raw}')")
    if value < min_val:
        raise DesktopError(f"{name} must be >= {min_val} (got {value})")
    return value


def generate_password(length: int = 12) -> str:
    """Return a random alphanumeric password."""
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def retry_until(
    probe: Callable[[], bool],
    attempts: int,
    interval: float,
    backoff: float = 1.0,
    on_failure: Optional[Callable[[int, int], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Call ``probe`` up to ``attempts`` times until it returns True.

    Sleeps ``interval`` seconds between attempts, multiplying the delay by
    ``backoff`` after each failure. ``on_failure`` receives the attempt
    number and the attempt budget. No sleep follows the final attempt.
    """
    delay = interval
    for attempt in range(1, attempts + 1):
        if probe():
            return True
        if on_failure is not None:
            on_failure(attempt, attempts)
        if attempt < attempts:
            sleep(delay)
            delay *= backoff
    return False


def ensure_directory(path: Path, owner: Optional[UserInfo] = None, mode: Optional[int] = None) -> None:
    path.mkdir(parents=True, exist_ok=True)
    if mode is not None:
        path.chmod(mode)
    if owner is not None:
        chown(path, owner)


def chown(path: Path, owner: UserInfo) -> None:
    """Hand ``path`` to ``owner``; a no-op when we already are that user."""
    if os.geteuid() == owner.uid:
        return
    os.chown(path, owner.uid, owner.gid)


def user_command(user: UserInfo, cmd: List[str]) -> List[str]:
    """Wrap ``cmd`` so it runs as ``user`` (via sudo when we are someone else)."""
    if os.geteuid() == user.uid:
        return list(cmd)
    return ["sudo", "-u", user.name, "-H", "--", *cmd]


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    kwargs.setdefault("text", True)
    result = subprocess.run(cmd, check=check, **kwargs)
    return result


def run_checked(cmd: List[str], what: str, **kwargs) -> subprocess.CompletedProcess:
    """Run a mandatory command, converting failures into DesktopError."""
    try:
        return run(cmd, **kwargs)
    except FileNotFoundError as exc:
        raise DesktopError(f"{what} failed: {cmd[0]} not found") from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", "replace")
        detail = (stderr or "").strip()
        message = f"{what} failed (exit {exc.returncode})"
        if detail:
            message += f": {detail}"
        raise DesktopError(message) from exc
