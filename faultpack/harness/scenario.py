"""Scenario runner: one isolated capture session per scenario."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
import contextvars
from dataclasses import dataclass, field
import gc
import inspect
from pathlib import Path
import re
import time
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from faultpack.capture.manager import ErrorCaptureManager, ErrorQuery, create_capture_manager
from faultpack.capture.policy import CaptureOptions
from faultpack.classify.classifier import ErrorClassifier
from faultpack.classify.rules import ClassificationRule
from faultpack.core.models import RuntimeErrorRecord
from faultpack.core.types import normalize_severity
from faultpack.harness.gate import GateResult, evaluate_gate
from faultpack.report.io import write_reports
from faultpack.report.models import ErrorReport


@dataclass(frozen=True, slots=True)
class ExpectedError:
    """Acknowledges faults a scenario provokes on purpose.

    A record is acknowledged when ``pattern`` matches its message and the
    optional category and severity agree. With ``count`` set, exactly that
    many captured records must match.
    """

    pattern: str
    category: str | None = None
    severity: str | None = None
    count: int | None = None

    def matches(self, record: RuntimeErrorRecord) -> bool:
        if re.search(self.pattern, record.message) is None:
            return False
        if self.category is not None and record.category != self.category:
            return False
        if self.severity is not None and record.severity != self.severity:
            return False
        return True


class ScenarioContext:
    """What a scenario body receives: its manager and action helpers."""

    def __init__(self, name: str, manager: ErrorCaptureManager) -> None:
        self.name = name
        self.manager = manager

    def register_action(self, name: str, action: Callable[..., Any]) -> Callable[..., Any]:
        return self.manager.register_action(name, action)

    def action(self, name: str) -> Callable[..., Any]:
        return self.manager.action(name)

    def invoke(self, name: str, *args: Any, **kwargs: Any) -> Any:
        return self.action(name)(*args, **kwargs)

    def query(self, **criteria: Any) -> ErrorQuery:
        return self.manager.query(**criteria)


ScenarioBody = Callable[[ScenarioContext], Any]


@dataclass(frozen=True, slots=True)
class Scenario:
    name: str
    run: ScenarioBody
    expected_errors: tuple[ExpectedError, ...] = ()
    options: CaptureOptions | Mapping[str, Any] | None = None
    gate_severity: str = "critical"
    timeout: float | None = None
    network_transports: tuple[tuple[Any, str], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "gate_severity", normalize_severity(self.gate_severity))
        object.__setattr__(self, "expected_errors", tuple(self.expected_errors))

    @property
    def slug(self) -> str:
        return scenario_slug(self.name)


@dataclass(slots=True)
class ScenarioResult:
    """Outcome of one scenario; always carries the full session report."""

    scenario: str
    passed: bool
    report: ErrorReport
    gate: GateResult
    unexpected: tuple[RuntimeErrorRecord, ...] = ()
    missing: tuple[ExpectedError, ...] = ()
    error: str | None = None
    duration_ms: float = 0.0
    artifacts: dict[str, Path] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "status": "pass" if self.passed else "fail",
            "exit_code": self.exit_code,
            "session_id": self.report.session_id,
            "summary": {
                "totalErrors": self.report.total_errors,
                "bySeverity": dict(self.report.summary["bySeverity"]),
                "byCategory": dict(self.report.summary["byCategory"]),
            },
            "gate": self.gate.to_dict(),
            "unexpected": [record.id for record in self.unexpected],
            "missing": [expected.pattern for expected in self.missing],
            "error": self.error,
            "duration_ms": round(self.duration_ms, 3),
            "artifacts": {name: str(path) for name, path in self.artifacts.items()},
        }


class ScenarioRunner:
    """Runs scenarios, each against its own capture manager."""

    def __init__(
        self,
        *,
        output_dir: str | Path | None = None,
        formats: Sequence[str] = ("json", "markdown", "html"),
        rules: Iterable[ClassificationRule] = (),
        default_timeout: float | None = None,
        sort_by_severity: bool = False,
    ) -> None:
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.formats = tuple(formats)
        self.rules = tuple(rules)
        self.default_timeout = default_timeout
        self.sort_by_severity = sort_by_severity

    def run(self, scenario: Scenario) -> ScenarioResult:
        loop = asyncio.new_event_loop()
        manager = create_capture_manager(
            scenario.options,
            classifier=ErrorClassifier(self.rules),
            event_loop=loop,
            network_transports=scenario.network_transports,
        )
        timeout = scenario.timeout if scenario.timeout is not None else self.default_timeout
        body_error: str | None = None
        started = time.perf_counter()

        try:
            manager.initialize()
            with manager.bind():
                try:
                    _execute(scenario.run, ScenarioContext(scenario.name, manager), loop, timeout)
                except Exception as error:
                    body_error = f"{error.__class__.__name__}: {error}"
                _drain(loop)
        finally:
            manager.teardown()
            _close(loop)

        duration_ms = (time.perf_counter() - started) * 1000.0
        return self._result(scenario, manager, body_error, duration_ms)

    def _result(
        self,
        scenario: Scenario,
        manager: ErrorCaptureManager,
        body_error: str | None,
        duration_ms: float,
    ) -> ScenarioResult:
        records = manager.snapshot()
        expected = scenario.expected_errors
        gating = manager.query(min_severity=scenario.gate_severity).to_list()
        unexpected = tuple(
            record for record in gating if not any(item.matches(record) for item in expected)
        )
        missing = tuple(
            item
            for item in expected
            if item.count is not None
            and sum(1 for record in records if item.matches(record)) != item.count
        )

        report = manager.report(sort_by_severity=self.sort_by_severity)
        result = ScenarioResult(
            scenario=scenario.name,
            passed=body_error is None and not unexpected and not missing,
            report=report,
            gate=evaluate_gate(unexpected, scenario.gate_severity),
            unexpected=unexpected,
            missing=missing,
            error=body_error,
            duration_ms=duration_ms,
        )
        if self.output_dir is not None:
            result.artifacts = write_reports(report, self.output_dir / scenario.slug, self.formats)
        return result


def run_scenarios(
    scenarios: Iterable[Scenario],
    *,
    parallel: int = 1,
    runner: ScenarioRunner | None = None,
) -> list[ScenarioResult]:
    """Run scenarios sequentially or on a thread pool; results keep input order."""
    selected = list(scenarios)
    active_runner = runner or ScenarioRunner()
    if parallel <= 1 or len(selected) <= 1:
        return [active_runner.run(scenario) for scenario in selected]
    with ThreadPoolExecutor(max_workers=parallel, thread_name_prefix="faultkit-scenario") as pool:
        return list(pool.map(active_runner.run, selected))


def overall_exit_code(results: Iterable[ScenarioResult]) -> int:
    return 0 if all(result.passed for result in results) else 1


def scenario_slug(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "scenario"


def _execute(
    body: ScenarioBody,
    context: ScenarioContext,
    loop: asyncio.AbstractEventLoop,
    timeout: float | None,
) -> None:
    if inspect.iscoroutinefunction(body):
        loop.run_until_complete(_await(body(context), timeout))
        return

    if timeout is None:
        outcome = body(context)
    else:
        outcome = _call_with_timeout(body, context, timeout)
    if inspect.isawaitable(outcome):
        loop.run_until_complete(_await(outcome, timeout))


async def _await(awaitable: Awaitable[Any], timeout: float | None) -> Any:
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)


def _call_with_timeout(body: ScenarioBody, context: ScenarioContext, timeout: float) -> Any:
    # Synchronous bodies cannot be interrupted; the worker keeps the bound context.
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="faultkit-sync-body")
    try:
        future = pool.submit(contextvars.copy_context().run, body, context)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as error:
            raise TimeoutError(f"Scenario exceeded timeout of {timeout}s") from error
    finally:
        pool.shutdown(wait=False)


def _drain(loop: asyncio.AbstractEventLoop) -> None:
    """Let pending callbacks run and report never-retrieved task exceptions."""
    if loop.is_closed():
        return
    pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    loop.run_until_complete(asyncio.sleep(0))
    gc.collect()


def _close(loop: asyncio.AbstractEventLoop) -> None:
    if loop.is_closed():
        return
    try:
        loop.run_until_complete(loop.shutdown_asyncgens())
    finally:
        loop.close()
