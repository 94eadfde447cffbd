"""JSON schema and validation for structured fault reports."""

from __future__ import annotations

import re
from typing import Any

from jsonschema import Draft202012Validator

from faultpack.core.types import REPORTED_CATEGORIES, SEVERITIES, SOURCE_TYPES
from faultpack.report.exceptions import ReportValidationError
from faultpack.report.models import REPORT_VERSION

SUPPORTED_MAJOR_VERSION = 1

_VERSION_PATTERN = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)$")


def _count_map(keys: tuple[str, ...]) -> dict[str, Any]:
    return {
        "type": "object",
        "required": list(keys),
        "additionalProperties": False,
        "properties": {key: {"type": "integer", "minimum": 0} for key in keys},
    }


STRUCTURED_REPORT_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "faultkit structured error report",
    "type": "object",
    "required": [
        "reportVersion",
        "sessionId",
        "generatedAt",
        "summary",
        "errors",
        "criticalErrors",
        "fixSuggestions",
    ],
    "additionalProperties": True,
    "properties": {
        "reportVersion": {"type": "string", "pattern": r"^\d+\.\d+$"},
        "sessionId": {"type": "string", "minLength": 1},
        "generatedAt": {"type": "string"},
        "summary": {
            "type": "object",
            "required": ["totalErrors", "bySeverity", "byCategory"],
            "additionalProperties": True,
            "properties": {
                "totalErrors": {"type": "integer", "minimum": 0},
                "bySeverity": _count_map(SEVERITIES),
                "byCategory": _count_map(REPORTED_CATEGORIES),
            },
        },
        "errors": {
            "type": "array",
            "items": {
                "type": "object",
                "required": [
                    "id",
                    "timestamp",
                    "sourceType",
                    "message",
                    "context",
                    "category",
                    "severity",
                    "sessionId",
                ],
                "additionalProperties": True,
                "properties": {
                    "id": {"type": "string"},
                    "timestamp": {"type": "string"},
                    "sourceType": {"type": "string", "enum": list(SOURCE_TYPES)},
                    "message": {"type": "string"},
                    "stack": {"type": ["string", "null"]},
                    "context": {"type": "object"},
                    "category": {"type": "string", "enum": list(REPORTED_CATEGORIES)},
                    "severity": {"type": "string", "enum": list(SEVERITIES)},
                    "sessionId": {"type": "string"},
                    "rule": {"type": ["string", "null"]},
                    "fixSuggestion": {"type": "string"},
                },
            },
        },
        "criticalErrors": {"type": "array", "items": {"type": "string"}},
        "fixSuggestions": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
    },
}


def parse_report_version(version: str) -> tuple[int, int]:
    match = _VERSION_PATTERN.fullmatch(str(version).strip())
    if match is None:
        raise ReportValidationError(f"Invalid report version: {version}")
    return int(match.group("major")), int(match.group("minor"))


def validate_structured_report(payload: Any) -> None:
    """Raise ``ReportValidationError`` unless ``payload`` is a valid structured report."""
    if not isinstance(payload, dict):
        raise ReportValidationError("Structured report must be a JSON object.")

    version = str(payload.get("reportVersion", REPORT_VERSION))
    major, _minor = parse_report_version(version)
    if major != SUPPORTED_MAJOR_VERSION:
        raise ReportValidationError(
            f"Unsupported report version: {version}. Supported major: {SUPPORTED_MAJOR_VERSION}.x"
        )

    validator = Draft202012Validator(STRUCTURED_REPORT_SCHEMA)
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(map(str, err.path)))
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.path) or "$"
        raise ReportValidationError(f"Invalid report at {location}: {first.message}")

    summary = payload["summary"]
    if summary["totalErrors"] != len(payload["errors"]):
        raise ReportValidationError(
            "Invalid report at summary.totalErrors: "
            f"{summary['totalErrors']} does not match {len(payload['errors'])} errors"
        )
