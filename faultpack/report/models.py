"""Report model built from an immutable snapshot of the fault log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from faultpack.classify.suggestions import CATEGORY_SUGGESTIONS, suggest_fix
from faultpack.core.canonical import utc_isoformat, utcnow
from faultpack.core.models import RuntimeErrorRecord
from faultpack.core.types import REPORTED_CATEGORIES, SEVERITIES, SEVERITY_RANK

REPORT_VERSION = "1.0"


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """Summary, ordered entries and fix suggestions for one capture session."""

    session_id: str
    generated_at: str
    summary: Mapping[str, Any]
    entries: tuple[RuntimeErrorRecord, ...] = ()
    fix_suggestions: Mapping[str, str] = field(default_factory=dict)
    report_version: str = REPORT_VERSION

    @property
    def total_errors(self) -> int:
        return int(self.summary["totalErrors"])

    @property
    def critical_entries(self) -> tuple[RuntimeErrorRecord, ...]:
        return tuple(entry for entry in self.entries if entry.severity == "critical")

    def entries_by_severity(self) -> dict[str, tuple[RuntimeErrorRecord, ...]]:
        return {
            severity: tuple(entry for entry in self.entries if entry.severity == severity)
            for severity in SEVERITIES
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "reportVersion": self.report_version,
            "sessionId": self.session_id,
            "generatedAt": self.generated_at,
            "summary": {
                "totalErrors": self.total_errors,
                "bySeverity": dict(self.summary["bySeverity"]),
                "byCategory": dict(self.summary["byCategory"]),
            },
            "errors": [_entry_dict(entry) for entry in self.entries],
            "criticalErrors": [entry.id for entry in self.critical_entries],
            "fixSuggestions": dict(self.fix_suggestions),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ErrorReport":
        summary = raw["summary"]
        return cls(
            session_id=raw["sessionId"],
            generated_at=raw["generatedAt"],
            summary={
                "totalErrors": summary["totalErrors"],
                "bySeverity": dict(summary["bySeverity"]),
                "byCategory": dict(summary["byCategory"]),
            },
            entries=tuple(RuntimeErrorRecord.from_dict(item) for item in raw["errors"]),
            fix_suggestions=dict(raw.get("fixSuggestions") or {}),
            report_version=raw.get("reportVersion", REPORT_VERSION),
        )


def summarize(records: Iterable[RuntimeErrorRecord]) -> dict[str, Any]:
    """Count records; every severity and category key is always present."""
    by_severity = {severity: 0 for severity in SEVERITIES}
    by_category = {category: 0 for category in REPORTED_CATEGORIES}
    total = 0
    for record in records:
        total += 1
        by_severity[record.severity] += 1
        by_category[record.category] += 1
    return {
        "totalErrors": total,
        "bySeverity": by_severity,
        "byCategory": by_category,
    }


def build_report(
    records: Iterable[RuntimeErrorRecord],
    *,
    session_id: str,
    generated_at: str | datetime | None = None,
    sort_by_severity: bool = False,
) -> ErrorReport:
    entries = tuple(records)
    if sort_by_severity:
        # Stable: delivery order is kept within one severity.
        entries = tuple(sorted(entries, key=lambda entry: -SEVERITY_RANK[entry.severity]))

    if generated_at is None:
        generated_at = utcnow()
    if isinstance(generated_at, datetime):
        generated_at = utc_isoformat(generated_at)

    present = {entry.category for entry in entries}
    fix_suggestions = {
        category: CATEGORY_SUGGESTIONS[category]
        for category in REPORTED_CATEGORIES
        if category in present
    }

    return ErrorReport(
        session_id=session_id,
        generated_at=generated_at,
        summary=summarize(entries),
        entries=entries,
        fix_suggestions=fix_suggestions,
    )


def _entry_dict(entry: RuntimeErrorRecord) -> dict[str, Any]:
    payload = entry.to_dict()
    payload["fixSuggestion"] = suggest_fix(entry)
    return payload
