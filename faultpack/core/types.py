"""Type definitions for the fault taxonomy."""

from typing import Literal

SourceType = Literal[
    "log",
    "uncaughtException",
    "unhandledRejection",
    "networkFailure",
    "agentAction",
]

SOURCE_TYPES: tuple[str, ...] = (
    "log",
    "uncaughtException",
    "unhandledRejection",
    "networkFailure",
    "agentAction",
)

Category = Literal[
    "agent-native",
    "api-integration",
    "network-error",
    "data-error",
    "hook-error",
    "component-error",
    "performance-error",
    "unclassified",
]

CATEGORIES: tuple[str, ...] = (
    "agent-native",
    "api-integration",
    "network-error",
    "data-error",
    "hook-error",
    "component-error",
    "performance-error",
)

# Only assigned when classification itself fails.
UNCLASSIFIED = "unclassified"

REPORTED_CATEGORIES: tuple[str, ...] = CATEGORIES + (UNCLASSIFIED,)

Severity = Literal["critical", "high", "medium", "low"]

# Ordered most severe first.
SEVERITIES: tuple[str, ...] = ("critical", "high", "medium", "low")

SEVERITY_RANK: dict[str, int] = {
    "critical": 3,
    "high": 2,
    "medium": 1,
    "low": 0,
}


def normalize_severity(value: str) -> str:
    """Validate a severity name, accepting any case."""
    normalized = str(value).strip().lower()
    if normalized not in SEVERITY_RANK:
        raise ValueError(
            f"Unsupported severity: {value!r}. Expected one of: {', '.join(SEVERITIES)}."
        )
    return normalized


def severity_at_least(severity: str, threshold: str) -> bool:
    return SEVERITY_RANK[severity] >= SEVERITY_RANK[threshold]
