"""Errors raised by the job bookkeeping layer."""


class JobctlError(RuntimeError):
    """Base class for job bookkeeping failures."""


class CreationError(JobctlError):
    """Raised when the registry cannot allocate a job identity."""


class StoreError(JobctlError):
    """Raised when a metadata read or write fails."""


class ValidationError(JobctlError, ValueError):
    """Raised when a status token is outside the fixed set."""


__all__ = ["JobctlError", "CreationError", "StoreError", "ValidationError"]
