from importlib import import_module
from importlib.metadata import PackageNotFoundError, version as package_version
import json
from pathlib import Path
import runpy
from dataclasses import dataclass, replace
from typing import Any

import typer

from faultpack.capture import (
    CaptureConfigError,
    CaptureOptions,
    load_capture_options_from_file,
)
from faultpack.classify import classify as classify_event
from faultpack.core.models import FaultEvent
from faultpack.core.types import SEVERITIES, SOURCE_TYPES, normalize_severity
from faultpack.harness import (
    Scenario,
    ScenarioResult,
    ScenarioRunner,
    evaluate_gate,
    overall_exit_code,
    run_scenarios,
)
from faultpack.report import (
    ReportError,
    normalize_formats,
    read_structured_payload,
    render_html,
    render_markdown,
    render_structured,
)
from faultpack.report.models import ErrorReport

app = typer.Typer(help="faultkit CLI")


@dataclass(slots=True)
class _OutputOptions:
    quiet: bool = False
    no_color: bool = False
    stable_json: bool = True


_OUTPUT_OPTIONS = _OutputOptions()
_RENDERERS = {
    "json": render_structured,
    "markdown": render_markdown,
    "html": render_html,
}


def _resolve_cli_version() -> str:
    try:
        return package_version("faultkit")
    except PackageNotFoundError:
        from faultpack import __version__ as local_version

        return local_version


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(_resolve_cli_version(), color=False)
    raise typer.Exit()


@app.callback()
def app_options(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show faultkit version and exit.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        help="Suppress non-error text output.",
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Disable ANSI color output.",
    ),
    stable_json: bool = typer.Option(
        True,
        "--stable-json/--pretty-json",
        help="Emit stable compact JSON (or pretty JSON).",
    ),
) -> None:
    """Global output controls for all CLI commands."""
    _OUTPUT_OPTIONS.quiet = quiet
    _OUTPUT_OPTIONS.no_color = no_color
    _OUTPUT_OPTIONS.stable_json = stable_json


def _echo(message: str, *, err: bool = False, force: bool = False) -> None:
    if _OUTPUT_OPTIONS.quiet and not err and not force:
        return
    typer.echo(message, err=err, color=not _OUTPUT_OPTIONS.no_color)


def _echo_json(payload: dict[str, Any], *, err: bool = False) -> None:
    if _OUTPUT_OPTIONS.stable_json:
        rendered = json.dumps(
            payload,
            ensure_ascii=True,
            sort_keys=True,
            separators=(",", ":"),
        )
    else:
        rendered = json.dumps(
            payload,
            ensure_ascii=True,
            sort_keys=True,
            indent=2,
        )
    typer.echo(rendered, err=err, color=not _OUTPUT_OPTIONS.no_color)


def _usage_error(command: str, message: str, *, json_output: bool = False) -> typer.Exit:
    text = f"{command} failed: {message}"
    if json_output:
        _echo_json({"status": "error", "exit_code": 2, "message": text})
    else:
        _echo(text, err=True)
    return typer.Exit(code=2)


def _parse_severity(command: str, value: str, *, json_output: bool = False) -> str:
    try:
        return normalize_severity(value)
    except ValueError as error:
        raise _usage_error(command, str(error), json_output=json_output) from error


def _load_target(target: str) -> Any:
    module_ref, separator, attribute = target.partition(":")
    if not separator or not module_ref or not attribute:
        raise ValueError(f"target must look like 'module:attribute' or 'path.py:attribute', got {target!r}")

    if module_ref.endswith(".py"):
        namespace = runpy.run_path(module_ref)
        if attribute not in namespace:
            raise ValueError(f"{module_ref} defines no attribute {attribute!r}")
        return namespace[attribute]

    module = import_module(module_ref)
    try:
        return getattr(module, attribute)
    except AttributeError as error:
        raise ValueError(f"module {module_ref!r} has no attribute {attribute!r}") from error


def _collect_scenarios(obj: Any) -> list[Scenario]:
    if isinstance(obj, Scenario):
        return [obj]
    if isinstance(obj, (list, tuple)):
        scenarios = list(obj)
        for item in scenarios:
            if not isinstance(item, Scenario):
                raise ValueError(f"expected Scenario objects, got {type(item).__name__}")
        return scenarios
    if callable(obj):
        return _collect_scenarios(obj())
    raise ValueError(f"target must resolve to a Scenario or a list of them, got {type(obj).__name__}")


def _scenario_line(result: ScenarioResult) -> str:
    status = "PASS" if result.passed else "FAIL"
    line = (
        f"{status} {result.scenario}: errors={result.report.total_errors} "
        f"session={result.report.session_id}"
    )
    if result.unexpected:
        line += " unexpected=" + ",".join(record.id for record in result.unexpected)
    if result.missing:
        line += " missing=" + ",".join(expected.pattern for expected in result.missing)
    if result.error:
        line += f" error={result.error}"
    return line


@app.command()
def run(
    target: str = typer.Argument(
        ...,
        help="Scenario source: 'module:attribute' or 'path.py:attribute'.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Directory for per-scenario report artifacts.",
    ),
    formats: str = typer.Option(
        "json,markdown,html",
        "--format",
        help="Comma-separated report formats: json, markdown, html.",
    ),
    fail_on: str | None = typer.Option(
        None,
        "--fail-on",
        help="Severity gate threshold overriding each scenario's own.",
    ),
    parallel: int = typer.Option(
        1,
        "--parallel",
        min=1,
        help="Number of scenarios to run concurrently.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=0.0,
        help="Per-scenario timeout in seconds.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="JSON capture options applied to scenarios that define none.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable run output.",
    ),
) -> None:
    """Run scenarios with error capture and apply the severity gate."""
    try:
        selected_formats = normalize_formats(part for part in formats.split(",") if part.strip())
    except ReportError as error:
        raise _usage_error("run", str(error), json_output=json_output) from error

    threshold = _parse_severity("run", fail_on, json_output=json_output) if fail_on else None

    options: CaptureOptions | None = None
    if config is not None:
        try:
            options = load_capture_options_from_file(config)
        except FileNotFoundError as error:
            raise _usage_error("run", f"config not found: {config}", json_output=json_output) from error
        except CaptureConfigError as error:
            raise _usage_error("run", str(error), json_output=json_output) from error

    try:
        scenarios = _collect_scenarios(_load_target(target))
    except (ImportError, ValueError, OSError) as error:
        raise _usage_error("run", str(error), json_output=json_output) from error

    overrides: dict[str, Any] = {}
    if threshold is not None:
        overrides["gate_severity"] = threshold
    prepared = [
        replace(
            scenario,
            **overrides,
            **({"options": options} if options is not None and scenario.options is None else {}),
        )
        for scenario in scenarios
    ]

    runner = ScenarioRunner(
        output_dir=output,
        formats=selected_formats,
        default_timeout=timeout,
    )
    results = run_scenarios(prepared, parallel=parallel, runner=runner)
    exit_code = overall_exit_code(results)

    if json_output:
        _echo_json(
            {
                "status": "pass" if exit_code == 0 else "fail",
                "exit_code": exit_code,
                "scenarios": [result.to_dict() for result in results],
            }
        )
    else:
        for result in results:
            _echo(_scenario_line(result), force=not result.passed)
        passed = sum(1 for result in results if result.passed)
        _echo(f"scenarios: {passed}/{len(results)} passed", force=exit_code != 0)

    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command()
def gate(
    report: Path = typer.Argument(..., help="Path to a structured report.json."),
    fail_on: str = typer.Option(
        "critical",
        "--fail-on",
        help=f"Severity threshold: {', '.join(SEVERITIES)}.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable gate output.",
    ),
) -> None:
    """Apply a severity gate to a structured report."""
    threshold = _parse_severity("gate", fail_on, json_output=json_output)
    try:
        payload = read_structured_payload(report)
    except (ReportError, FileNotFoundError) as error:
        raise _usage_error("gate", str(error), json_output=json_output) from error

    result = evaluate_gate(payload, threshold)
    if json_output:
        body = result.to_dict()
        body["report"] = str(report)
        _echo_json(body)
    elif result.passed:
        _echo(f"gate passed: no errors at or above {threshold} (report={report})")
    else:
        _echo(
            f"gate failed: {result.gating_count} error(s) at or above {threshold} "
            f"(report={report}): {', '.join(result.failing_ids)}",
            force=True,
        )

    if not result.passed:
        raise typer.Exit(code=result.exit_code)


@app.command()
def render(
    report: Path = typer.Argument(..., help="Path to a structured report.json."),
    output_format: str = typer.Option(
        "markdown",
        "--format",
        help="Output format: markdown, html or json.",
    ),
    out: Path | None = typer.Option(
        None,
        "--out",
        help="Write to this path instead of stdout.",
    ),
) -> None:
    """Re-render a structured report as Markdown, HTML or JSON."""
    try:
        (selected,) = normalize_formats([output_format])
    except ReportError as error:
        raise _usage_error("render", str(error)) from error

    try:
        loaded = ErrorReport.from_dict(read_structured_payload(report))
    except (ReportError, FileNotFoundError) as error:
        raise _usage_error("render", str(error)) from error

    content = _RENDERERS[selected](loaded)
    if out is None:
        typer.echo(content.rstrip("\n"), color=not _OUTPUT_OPTIONS.no_color)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(content if content.endswith("\n") else content + "\n", encoding="utf-8")
    _echo(f"rendered {selected} report: {out}")


@app.command()
def classify(
    message: str = typer.Argument(..., help="Fault message to classify."),
    source_type: str = typer.Option(
        "log",
        "--source-type",
        help=f"Fault source type: {', '.join(SOURCE_TYPES)}.",
    ),
    status: int | None = typer.Option(
        None,
        "--status",
        help="HTTP status attached to the fault, if any.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable classification output.",
    ),
) -> None:
    """Classify a single fault message with the default rules."""
    if source_type not in SOURCE_TYPES:
        raise _usage_error(
            "classify",
            f"unsupported source type {source_type!r}; expected one of: {', '.join(SOURCE_TYPES)}",
            json_output=json_output,
        )

    context = {"status": status} if status is not None else {}
    event = FaultEvent(source_type=source_type, message=message, context=context)
    result = classify_event(event)
    if json_output:
        _echo_json(
            {
                "sourceType": source_type,
                "message": message,
                "category": result.category,
                "severity": result.severity,
                "rule": result.rule,
            }
        )
    else:
        _echo(f"category={result.category} severity={result.severity} rule={result.rule}", force=True)


def main() -> None:
    app()
