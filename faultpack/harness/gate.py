"""Severity gate: pass/fail plus exit code for automated pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from faultpack.core.models import RuntimeErrorRecord
from faultpack.core.types import SEVERITIES, SEVERITY_RANK, normalize_severity
from faultpack.report.models import ErrorReport

GateSource = ErrorReport | Mapping[str, Any] | Iterable[RuntimeErrorRecord]


@dataclass(slots=True)
class GateResult:
    """Outcome of applying a severity threshold to a set of faults."""

    threshold: str
    passed: bool
    counts: dict[str, int]
    failing_ids: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    @property
    def gating_count(self) -> int:
        rank = SEVERITY_RANK[self.threshold]
        return sum(count for severity, count in self.counts.items() if SEVERITY_RANK[severity] >= rank)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "pass" if self.passed else "fail",
            "exit_code": self.exit_code,
            "threshold": self.threshold,
            "gating_count": self.gating_count,
            "counts": dict(self.counts),
            "failing_ids": list(self.failing_ids),
        }


@dataclass(frozen=True, slots=True)
class SeverityGate:
    """Fails when any fault is at or above ``threshold``."""

    threshold: str = "critical"

    def __post_init__(self) -> None:
        object.__setattr__(self, "threshold", normalize_severity(self.threshold))

    def evaluate(self, source: GateSource) -> GateResult:
        counts, failing_ids = _collect(source, self.threshold)
        rank = SEVERITY_RANK[self.threshold]
        gating = sum(count for severity, count in counts.items() if SEVERITY_RANK[severity] >= rank)
        return GateResult(
            threshold=self.threshold,
            passed=gating == 0,
            counts=counts,
            failing_ids=failing_ids,
        )


def evaluate_gate(source: GateSource, threshold: str = "critical") -> GateResult:
    """Apply a severity gate to records, a report, a structured report or a summary."""
    return SeverityGate(threshold).evaluate(source)


def _collect(source: GateSource, threshold: str) -> tuple[dict[str, int], list[str]]:
    if isinstance(source, ErrorReport):
        return _from_records(source.entries, threshold)

    if isinstance(source, Mapping):
        if "errors" in source:
            return _from_entry_dicts(source["errors"], threshold)
        summary = source.get("summary", source)
        by_severity = summary.get("bySeverity") if isinstance(summary, Mapping) else None
        if not isinstance(by_severity, Mapping):
            raise ValueError("Gate source mapping has no 'bySeverity' counts.")
        counts = {severity: 0 for severity in SEVERITIES}
        for severity, count in by_severity.items():
            counts[normalize_severity(severity)] += int(count)
        return counts, []

    return _from_records(source, threshold)


def _from_records(
    records: Iterable[RuntimeErrorRecord],
    threshold: str,
) -> tuple[dict[str, int], list[str]]:
    counts = {severity: 0 for severity in SEVERITIES}
    failing_ids: list[str] = []
    rank = SEVERITY_RANK[threshold]
    for record in records:
        counts[record.severity] += 1
        if SEVERITY_RANK[record.severity] >= rank:
            failing_ids.append(record.id)
    return counts, failing_ids


def _from_entry_dicts(
    entries: Iterable[Mapping[str, Any]],
    threshold: str,
) -> tuple[dict[str, int], list[str]]:
    counts = {severity: 0 for severity in SEVERITIES}
    failing_ids: list[str] = []
    rank = SEVERITY_RANK[threshold]
    for entry in entries:
        severity = normalize_severity(entry["severity"])
        counts[severity] += 1
        if SEVERITY_RANK[severity] >= rank:
            failing_ids.append(str(entry.get("id", "")))
    return counts, failing_ids
