"""Core models and deterministic primitives for FaultKit."""

from faultpack.core.canonical import canonical_json, parse_timestamp, to_json_safe, utc_isoformat
from faultpack.core.models import (
    ErrorFilter,
    FaultEvent,
    RuntimeErrorRecord,
    describe_reason,
    format_exception_stack,
)
from faultpack.core.types import (
    CATEGORIES,
    REPORTED_CATEGORIES,
    SEVERITIES,
    SEVERITY_RANK,
    SOURCE_TYPES,
    UNCLASSIFIED,
    Category,
    Severity,
    SourceType,
    normalize_severity,
    severity_at_least,
)

__all__ = [
    "FaultEvent",
    "RuntimeErrorRecord",
    "ErrorFilter",
    "describe_reason",
    "format_exception_stack",
    "SourceType",
    "Category",
    "Severity",
    "SOURCE_TYPES",
    "CATEGORIES",
    "REPORTED_CATEGORIES",
    "SEVERITIES",
    "SEVERITY_RANK",
    "UNCLASSIFIED",
    "normalize_severity",
    "severity_at_least",
    "canonical_json",
    "parse_timestamp",
    "to_json_safe",
    "utc_isoformat",
]
