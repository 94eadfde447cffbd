"""Capture subsystem exceptions."""


class CaptureError(Exception):
    """Base class for capture subsystem errors."""


class CaptureConfigError(CaptureError, ValueError):
    """Raised when capture options or sanitization config are invalid."""


class InterceptorInstallError(CaptureError):
    """Raised by an interceptor that cannot attach to its fault surface."""
