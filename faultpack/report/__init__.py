"""Report building, rendering and artifact IO."""

from faultpack.report.exceptions import ReportError, ReportValidationError
from faultpack.report.html import render_html
from faultpack.report.io import (
    REPORT_FORMATS,
    normalize_formats,
    read_structured_payload,
    read_structured_report,
    write_reports,
)
from faultpack.report.markdown import render_markdown
from faultpack.report.models import REPORT_VERSION, ErrorReport, build_report, summarize
from faultpack.report.schema import STRUCTURED_REPORT_SCHEMA, validate_structured_report
from faultpack.report.structured import render_structured

__all__ = [
    "ErrorReport",
    "REPORT_FORMATS",
    "REPORT_VERSION",
    "ReportError",
    "ReportValidationError",
    "STRUCTURED_REPORT_SCHEMA",
    "build_report",
    "normalize_formats",
    "read_structured_payload",
    "read_structured_report",
    "render_html",
    "render_markdown",
    "render_structured",
    "summarize",
    "validate_structured_report",
    "write_reports",
]
