"""Severity-grouped Markdown report rendering."""

from __future__ import annotations

from faultpack.classify.suggestions import suggest_fix
from faultpack.core.models import RuntimeErrorRecord
from faultpack.core.types import SEVERITIES
from faultpack.report.models import ErrorReport

_SEVERITY_TITLES = {
    "critical": "Critical Errors",
    "high": "High Severity Errors",
    "medium": "Medium Severity Errors",
    "low": "Low Severity Errors",
}

_STACK_PREVIEW_LINES = 8


def render_markdown(report: ErrorReport) -> str:
    sections = [_header(report), _summary(report)]

    if report.total_errors == 0:
        sections.append("No runtime errors were captured in this session.")
    else:
        grouped = report.entries_by_severity()
        for severity in SEVERITIES:
            if grouped[severity]:
                sections.append(_severity_section(severity, grouped[severity]))

    if report.fix_suggestions:
        sections.append(_fix_suggestions(report))

    return "\n\n".join(sections) + "\n"


def _header(report: ErrorReport) -> str:
    return "\n".join(
        [
            "# Runtime Error Report",
            "",
            f"- **Session:** `{report.session_id}`",
            f"- **Generated:** {report.generated_at}",
            f"- **Report Version:** {report.report_version}",
            f"- **Total Errors:** {report.total_errors}",
        ]
    )


def _summary(report: ErrorReport) -> str:
    lines = ["## Summary", "", "### Errors by Severity", "", "| Severity | Count |", "|---|---|"]
    for severity, count in report.summary["bySeverity"].items():
        lines.append(f"| {severity} | {count} |")
    lines.extend(["", "### Errors by Category", "", "| Category | Count |", "|---|---|"])
    for category, count in report.summary["byCategory"].items():
        lines.append(f"| {category} | {count} |")
    return "\n".join(lines)


def _severity_section(severity: str, entries: tuple[RuntimeErrorRecord, ...]) -> str:
    lines = [
        f"## {_SEVERITY_TITLES[severity]} ({len(entries)})",
        "",
        "| ID | Source | Category | Message | Rule |",
        "|---|---|---|---|---|",
    ]
    for entry in entries:
        lines.append(
            f"| `{entry.id}` | {entry.source_type} | {entry.category} | "
            f"{_cell(entry.message)} | {_cell(entry.rule or '')} |"
        )

    if severity == "critical":
        for entry in entries:
            lines.extend(["", *_entry_details(entry)])
    return "\n".join(lines)


def _entry_details(entry: RuntimeErrorRecord) -> list[str]:
    lines = [
        f"### `{entry.id}` {_inline(entry.message)}",
        "",
        f"- **Source:** {entry.source_type}",
        f"- **Captured:** {entry.timestamp}",
    ]
    for key in ("url", "method", "status", "action", "logger"):
        value = entry.context.get(key)
        if value not in (None, ""):
            lines.append(f"- **{key}:** `{_inline(str(value))}`")
    lines.append(f"- **Fix Suggestion:** {_inline(suggest_fix(entry))}")

    if entry.stack:
        preview = entry.stack.splitlines()[:_STACK_PREVIEW_LINES]
        lines.extend(["", "```text", *preview, "```"])
    return lines


def _fix_suggestions(report: ErrorReport) -> str:
    lines = ["## Fix Suggestions", ""]
    for category, suggestion in report.fix_suggestions.items():
        lines.append(f"- **{category}:** {suggestion}")
    return "\n".join(lines)


def _cell(text: str) -> str:
    return _inline(text).replace("|", "\\|")


def _inline(text: str) -> str:
    return " ".join(text.split()).replace("`", "'")
