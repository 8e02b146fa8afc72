"""Startup state tracking for browser-desktop."""

from __future__ import annotations

import enum
from typing import Dict, FrozenSet, List

from desktop.exceptions import DesktopError
from desktop.utils import log


class StartupState(enum.Enum):
    NOT_STARTED = "not-started"
    DISPLAY_UP = "display-up"
    AUDIO_UP = "audio-up"
    GATEWAY_STARTING = "gateway-starting"
    READY = "ready"
    FAILED = "failed"


_TRANSITIONS: Dict[StartupState, FrozenSet[StartupState]] = {
    StartupState.NOT_STARTED: frozenset({StartupState.DISPLAY_UP}),
    StartupState.DISPLAY_UP: frozenset({StartupState.AUDIO_UP, StartupState.GATEWAY_STARTING}),
    StartupState.AUDIO_UP: frozenset({StartupState.GATEWAY_STARTING}),
    StartupState.GATEWAY_STARTING: frozenset({StartupState.READY}),
    StartupState.READY: frozenset(),
    StartupState.FAILED: frozenset(),
}


class StartupTracker:
    """Enforce the display -> audio -> gateway startup order.

    ``DISPLAY_UP -> GATEWAY_STARTING`` is only legal when audio is disabled.
    Any non-terminal state may move to FAILED.
    """

    def __init__(self, audio_enabled: bool = True) -> None:
        self.audio_enabled = audio_enabled
        self.state = StartupState.NOT_STARTED
        self.history: List[StartupState] = [self.state]

    def advance(self, target: StartupState) -> None:
        allowed = set(_TRANSITIONS[self.state])
        if self.state is StartupState.DISPLAY_UP:
            allowed.discard(StartupState.GATEWAY_STARTING if self.audio_enabled else StartupState.AUDIO_UP)
        if target is StartupState.FAILED and not self.finished:
            allowed.add(StartupState.FAILED)
        if target not in allowed:
            raise DesktopError(f"Illegal startup transition {self.state.value} -> {target.value}")
        log("DEBUG", f"Startup: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def fail(self) -> None:
        if not self.finished:
            self.advance(StartupState.FAILED)

    @property
    def finished(self) -> bool:
        return self.state in {StartupState.READY, StartupState.FAILED}
