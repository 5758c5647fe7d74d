"""Exception hierarchy for the OpenWork synchronizer.

One exception per failure mode a caller can act on. Event-loop internals
never raise these into the consumption loop; they are reserved for user
actions and connection setup.
"""
from __future__ import annotations


class OpenWorkError(Exception):
    """Base exception for all OpenWork client errors."""


class ServerClientError(OpenWorkError):
    """A REST call to the execution server failed."""
    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message or "Unknown error")


class HealthCheckError(OpenWorkError):
    """The server never reported healthy within the probe timeout."""
    def __init__(self, reason: str, timeout_seconds: float):
        self.reason = reason
        self.timeout_seconds = timeout_seconds
        super().__init__(reason)


class NotConnectedError(OpenWorkError):
    """A user action was attempted without a connected server."""
    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Cannot {action}: not connected to a server")


class ConfigError(OpenWorkError):
    """A configuration file could not be read or parsed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
