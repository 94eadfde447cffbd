"""Report artifact read/write utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable

from faultpack.report.exceptions import ReportError, ReportValidationError
from faultpack.report.html import render_html
from faultpack.report.markdown import render_markdown
from faultpack.report.models import ErrorReport
from faultpack.report.schema import validate_structured_report
from faultpack.report.structured import render_structured

REPORT_FORMATS: dict[str, tuple[str, Callable[[ErrorReport], str]]] = {
    "json": ("report.json", render_structured),
    "markdown": ("report.md", render_markdown),
    "html": ("report.html", render_html),
}

_FORMAT_ALIASES = {"md": "markdown", "structured": "json"}


def normalize_formats(formats: Iterable[str]) -> tuple[str, ...]:
    normalized: list[str] = []
    for raw in formats:
        name = _FORMAT_ALIASES.get(raw.strip().lower(), raw.strip().lower())
        if name not in REPORT_FORMATS:
            raise ReportError(
                f"Unsupported report format: {raw}. Expected one of: {', '.join(REPORT_FORMATS)}."
            )
        if name not in normalized:
            normalized.append(name)
    return tuple(normalized)


def write_reports(
    report: ErrorReport,
    out_dir: str | Path,
    formats: Iterable[str] = ("json", "markdown", "html"),
) -> dict[str, Path]:
    """Render ``report`` in each format and write it under ``out_dir``."""
    selected = normalize_formats(formats)
    target_dir = Path(out_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    written: dict[str, Path] = {}
    for name in selected:
        filename, render = REPORT_FORMATS[name]
        content = render(report)
        if name == "json":
            validate_structured_report(json.loads(content))
        target = target_dir / filename
        target.write_text(content if content.endswith("\n") else content + "\n", encoding="utf-8")
        written[name] = target
    return written


def read_structured_payload(path: str | Path) -> dict[str, Any]:
    """Read and validate a structured report file."""
    target = Path(path)
    try:
        raw_text = target.read_text(encoding="utf-8")
    except UnicodeDecodeError as error:
        raise ReportValidationError(f"Report is not valid UTF-8 text: {target}") from error

    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as error:
        raise ReportValidationError(f"Report is not valid JSON: {target} ({error})") from error

    validate_structured_report(payload)
    return payload


def read_structured_report(path: str | Path) -> ErrorReport:
    return ErrorReport.from_dict(read_structured_payload(path))
