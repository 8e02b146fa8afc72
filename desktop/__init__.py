"""browser-desktop package."""

__all__ = [
    "artifacts",
    "cli",
    "config",
    "constants",
    "exceptions",
    "gateway",
    "models",
    "network",
    "packages",
    "resources",
    "runtime",
    "services",
    "session",
    "status",
    "teardown",
    "utils",
]
