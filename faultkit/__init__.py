"""Stable public API surface for faultkit.

This module is the supported import path for library users.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from faultpack.capture import (
    CaptureConfigError,
    CaptureDiagnostic,
    CaptureOptions,
    ErrorCaptureManager,
    ErrorQuery,
    SanitizationPolicy,
    capture_options_from_config,
    create_capture_manager,
    load_capture_options_from_file,
    sanitize_payload,
)
from faultpack.classify import (
    Classification,
    ClassificationRule,
    ErrorClassifier,
    classify,
    message_matches,
    suggest_fix,
)
from faultpack.core import ErrorFilter, FaultEvent, RuntimeErrorRecord
from faultpack.harness import (
    ExpectedError,
    GateResult,
    Scenario,
    ScenarioContext,
    ScenarioResult,
    ScenarioRunner,
    SeverityGate,
    evaluate_gate,
    run_scenarios,
)
from faultpack.report import (
    ErrorReport,
    ReportValidationError,
    build_report,
    read_structured_report,
    render_html,
    render_markdown,
    render_structured,
    validate_structured_report,
    write_reports,
)

__version__ = "0.1.0"


@dataclass(slots=True)
class _CaptureErrorsScope:
    """Context manager that captures faults raised in a code block.

    The manager is bound to the current context for the duration of the
    block, torn down on exit, and its report written when ``output_dir`` is
    set. Records stay queryable on the yielded manager after the block.
    """

    options: CaptureOptions | Mapping[str, Any] | None
    output_dir: str | Path | None
    formats: tuple[str, ...]
    collaborators: dict[str, Any]
    artifacts: dict[str, Path] = field(default_factory=dict)
    _manager: ErrorCaptureManager | None = field(default=None, init=False, repr=False)
    _binding: Any = field(default=None, init=False, repr=False)

    def __enter__(self) -> ErrorCaptureManager:
        manager = create_capture_manager(self.options, **self.collaborators)
        manager.initialize()
        self._binding = manager.bind()
        self._binding.__enter__()
        self._manager = manager
        return manager

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        if self._manager is None or self._binding is None:
            return False

        self._binding.__exit__(exc_type, exc, tb)
        self._manager.teardown()
        if self.output_dir is not None:
            self.artifacts = write_reports(self._manager.report(), self.output_dir, self.formats)
        return False


def capture_errors(
    options: CaptureOptions | Mapping[str, Any] | None = None,
    *,
    output_dir: str | Path | None = None,
    formats: Sequence[str] = ("json", "markdown", "html"),
    **collaborators: Any,
) -> _CaptureErrorsScope:
    """Capture faults raised inside a ``with`` block.

    Args:
        options: ``CaptureOptions`` or a mapping of option keys.
        output_dir: When set, report artifacts are written here on exit.
        formats: Report formats to write.
        collaborators: Passed to ``create_capture_manager`` (``classifier``,
            ``action_registry``, ``event_loop``, ``network_transports``,
            ``session_id_factory``, ``clock``).
    """
    return _CaptureErrorsScope(
        options=options,
        output_dir=output_dir,
        formats=tuple(formats),
        collaborators=dict(collaborators),
    )


__all__ = [
    "CaptureConfigError",
    "CaptureDiagnostic",
    "CaptureOptions",
    "Classification",
    "ClassificationRule",
    "ErrorCaptureManager",
    "ErrorClassifier",
    "ErrorFilter",
    "ErrorQuery",
    "ErrorReport",
    "ExpectedError",
    "FaultEvent",
    "GateResult",
    "ReportValidationError",
    "RuntimeErrorRecord",
    "SanitizationPolicy",
    "Scenario",
    "ScenarioContext",
    "ScenarioResult",
    "ScenarioRunner",
    "SeverityGate",
    "__version__",
    "build_report",
    "capture_errors",
    "capture_options_from_config",
    "classify",
    "create_capture_manager",
    "evaluate_gate",
    "load_capture_options_from_file",
    "message_matches",
    "read_structured_report",
    "render_html",
    "render_markdown",
    "render_structured",
    "run_scenarios",
    "sanitize_payload",
    "suggest_fix",
    "validate_structured_report",
    "write_reports",
]
