"""Core data models for captured runtime faults."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
import traceback
from typing import Any, Iterable, Mapping

from faultpack.core.canonical import parse_timestamp, to_json_safe
from faultpack.core.types import (
    REPORTED_CATEGORIES,
    SEVERITY_RANK,
    SOURCE_TYPES,
    normalize_severity,
)


@dataclass(frozen=True, slots=True)
class FaultEvent:
    """A normalized, not yet classified observation from one interceptor."""

    source_type: str
    message: str
    stack: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.source_type not in SOURCE_TYPES:
            raise ValueError(f"Unsupported source type: {self.source_type}")

    @classmethod
    def from_exception(
        cls,
        source_type: str,
        error: BaseException,
        *,
        context: Mapping[str, Any] | None = None,
        prefix: str = "",
    ) -> "FaultEvent":
        return cls(
            source_type=source_type,
            message=f"{prefix}{_exception_message(error)}",
            stack=format_exception_stack(error),
            context=to_json_safe(dict(context or {})),
        )

    @classmethod
    def from_reason(
        cls,
        source_type: str,
        reason: Any,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> "FaultEvent":
        message, stack = describe_reason(reason)
        return cls(
            source_type=source_type,
            message=message,
            stack=stack,
            context=to_json_safe(dict(context or {})),
        )

    @property
    def status(self) -> int | None:
        status = self.context.get("status")
        if isinstance(status, int) and not isinstance(status, bool):
            return status
        return None


def describe_reason(reason: Any) -> tuple[str, str | None]:
    """Return ``(message, stack)`` for an arbitrary failure reason."""
    if isinstance(reason, BaseException):
        return _exception_message(reason), format_exception_stack(reason)
    if isinstance(reason, str):
        return reason, None
    if isinstance(reason, (dict, list, tuple)):
        try:
            return json.dumps(to_json_safe(reason), sort_keys=True), None
        except (TypeError, ValueError):
            return repr(reason), None
    return repr(reason), None


def format_exception_stack(error: BaseException) -> str | None:
    if error.__traceback__ is None:
        return None
    return "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    ).rstrip()


def _exception_message(error: BaseException) -> str:
    text = str(error)
    if not text:
        return error.__class__.__name__
    return text


@dataclass(frozen=True, slots=True)
class RuntimeErrorRecord:
    """A classified fault record owned by one capture session."""

    id: str
    timestamp: str
    source_type: str
    message: str
    category: str
    severity: str
    session_id: str
    stack: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)
    rule: str | None = None

    def __post_init__(self) -> None:
        if self.source_type not in SOURCE_TYPES:
            raise ValueError(f"Unsupported source type: {self.source_type}")
        if self.category not in REPORTED_CATEGORIES:
            raise ValueError(f"Unsupported category: {self.category}")
        if self.severity not in SEVERITY_RANK:
            raise ValueError(f"Unsupported severity: {self.severity}")

    @property
    def captured_at(self) -> datetime:
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "sourceType": self.source_type,
            "message": self.message,
            "stack": self.stack,
            "context": dict(self.context),
            "category": self.category,
            "severity": self.severity,
            "sessionId": self.session_id,
            "rule": self.rule,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RuntimeErrorRecord":
        return cls(
            id=raw["id"],
            timestamp=raw["timestamp"],
            source_type=raw["sourceType"],
            message=raw["message"],
            category=raw["category"],
            severity=raw["severity"],
            session_id=raw["sessionId"],
            stack=raw.get("stack"),
            context=dict(raw.get("context") or {}),
            rule=raw.get("rule"),
        )


_FILTER_KEYS = {
    "severity": "severity",
    "min_severity": "min_severity",
    "minSeverity": "min_severity",
    "category": "category",
    "source_type": "source_type",
    "sourceType": "source_type",
    "since": "since",
    "until": "until",
}


@dataclass(frozen=True, slots=True)
class ErrorFilter:
    """Predicate over records: severity, category, source type and time range."""

    severity: frozenset[str] | None = None
    min_severity: str | None = None
    category: frozenset[str] | None = None
    source_type: frozenset[str] | None = None
    since: datetime | None = None
    until: datetime | None = None

    @classmethod
    def build(
        cls,
        *,
        severity: str | Iterable[str] | None = None,
        min_severity: str | None = None,
        category: str | Iterable[str] | None = None,
        source_type: str | Iterable[str] | None = None,
        since: str | datetime | None = None,
        until: str | datetime | None = None,
    ) -> "ErrorFilter":
        severities = _as_frozenset(severity)
        if severities is not None:
            severities = frozenset(normalize_severity(item) for item in severities)
        return cls(
            severity=severities,
            min_severity=normalize_severity(min_severity) if min_severity else None,
            category=_as_frozenset(category),
            source_type=_as_frozenset(source_type),
            since=parse_timestamp(since) if since is not None else None,
            until=parse_timestamp(until) if until is not None else None,
        )

    @classmethod
    def coerce(
        cls,
        value: "ErrorFilter | Mapping[str, Any] | None" = None,
        **criteria: Any,
    ) -> "ErrorFilter":
        if isinstance(value, ErrorFilter):
            if criteria:
                raise ValueError("Pass either an ErrorFilter or keyword criteria, not both.")
            return value

        merged: dict[str, Any] = {}
        for raw in (value or {}, criteria):
            for key, item in raw.items():
                if key not in _FILTER_KEYS:
                    raise ValueError(
                        f"Unsupported filter key: {key}. "
                        f"Supported keys: {', '.join(sorted(_FILTER_KEYS))}"
                    )
                merged[_FILTER_KEYS[key]] = item
        return cls.build(**merged)

    def matches(self, record: RuntimeErrorRecord) -> bool:
        if self.severity is not None and record.severity not in self.severity:
            return False
        if (
            self.min_severity is not None
            and SEVERITY_RANK[record.severity] < SEVERITY_RANK[self.min_severity]
        ):
            return False
        if self.category is not None and record.category not in self.category:
            return False
        if self.source_type is not None and record.source_type not in self.source_type:
            return False
        if self.since is not None or self.until is not None:
            captured_at = record.captured_at
            if self.since is not None and captured_at < self.since:
                return False
            if self.until is not None and captured_at > self.until:
                return False
        return True


def _as_frozenset(value: str | Iterable[str] | None) -> frozenset[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return frozenset({value})
    return frozenset(str(item) for item in value)
