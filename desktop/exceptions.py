"""Custom exceptions for browser-desktop."""

from __future__ import annotations

from typing import List


class DesktopError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class PortInUseError(DesktopError):
    """Raised when the gateway web port already has a listener."""

    def __init__(self, port: int, listeners: List[str]) -> None:
        self.port = port
        self.listeners = listeners
        detail = ", ".join(listeners) if listeners else "unknown listener"
        super().__init__(f"Port {port} is already in use ({detail})")


class GatewayNotReadyError(DesktopError):
    """Raised when the gateway never answered within the attempt budget."""
