"""Report subsystem exceptions."""


class ReportError(Exception):
    """Base class for report errors."""


class ReportValidationError(ReportError):
    """Structured report failed schema or version validation."""
