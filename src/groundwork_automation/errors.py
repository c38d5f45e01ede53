from __future__ import annotations

from typing import Optional


class ProvisionError(RuntimeError):
    """Base class for failures raised while provisioning a host."""


class ValidationError(ValueError):
    """Raised when a user supplied parameter is rejected."""

    def __init__(self, message: str, parameter: Optional[str] = None):
        if parameter:
            message = f"{parameter}: {message}"
        super().__init__(message)
        self.parameter = parameter


class TransientError(ProvisionError):
    """A network or fetch failure that persisted after every retry."""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class ResourceConflictError(ProvisionError):
    """The target resource is in a state an action cannot safely edit."""


class FatalSystemError(ProvisionError):
    """A mutation failed in a way that must halt the remaining steps."""


class SoftSystemError(ProvisionError):
    """A best-effort step failed; the run carries on."""
