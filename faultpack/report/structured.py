"""Structured (JSON) report rendering."""

from __future__ import annotations

from faultpack.core.canonical import canonical_json
from faultpack.report.models import ErrorReport


def render_structured(report: ErrorReport, *, indent: int | None = 2) -> str:
    """Render a report as stable JSON with sorted keys."""
    return canonical_json(report.to_dict(), indent=indent)
