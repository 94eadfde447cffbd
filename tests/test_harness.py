import asyncio
import json
import logging
from pathlib import Path
import threading

import httpx
import pytest

from faultpack.classify import ClassificationRule, message_matches
from faultpack.core.models import RuntimeErrorRecord
from faultpack.harness import (
    ExpectedError,
    Scenario,
    ScenarioContext,
    ScenarioRunner,
    SeverityGate,
    evaluate_gate,
    overall_exit_code,
    run_scenarios,
    scenario_slug,
)
from faultpack.report import build_report, render_structured

_LOGGER = logging.getLogger("faultkit.tests.harness")


def _record(record_id: str, severity: str) -> RuntimeErrorRecord:
    return RuntimeErrorRecord(
        id=record_id,
        timestamp="2026-03-01T12:00:00.000000Z",
        source_type="log",
        message=f"{severity} failure",
        category="component-error",
        severity=severity,
        session_id="session-gate",
    )


def _failing_search(params: dict) -> list:
    raise LookupError(f"No album named {params['album']}")


def test_gate_fails_at_or_above_threshold() -> None:
    records = [_record("err-000001", "medium"), _record("err-000002", "high")]

    critical_gate = evaluate_gate(records)
    high_gate = evaluate_gate(records, "high")
    medium_gate = SeverityGate("MEDIUM").evaluate(records)

    assert critical_gate.passed and critical_gate.exit_code == 0
    assert not high_gate.passed and high_gate.exit_code == 1
    assert high_gate.failing_ids == ["err-000002"]
    assert medium_gate.gating_count == 2
    assert medium_gate.to_dict() == {
        "status": "fail",
        "exit_code": 1,
        "threshold": "medium",
        "gating_count": 2,
        "counts": {"critical": 0, "high": 1, "medium": 1, "low": 0},
        "failing_ids": ["err-000001", "err-000002"],
    }


def test_gate_accepts_reports_structured_payloads_and_summaries() -> None:
    report = build_report([_record("err-000001", "critical")], session_id="session-gate")
    payload = json.loads(render_structured(report))

    assert not evaluate_gate(report).passed
    assert evaluate_gate(payload).failing_ids == ["err-000001"]
    assert not evaluate_gate({"bySeverity": {"critical": 1}}).passed
    assert evaluate_gate({"summary": {"bySeverity": {"low": 3}}}, "medium").passed

    with pytest.raises(ValueError, match="bySeverity"):
        evaluate_gate({"totals": {}})
    with pytest.raises(ValueError, match="Unsupported severity"):
        evaluate_gate([], "fatal")


def test_scenario_with_only_noncritical_faults_passes() -> None:
    def body(context: ScenarioContext) -> None:
        _LOGGER.error("Widget exploded")

    result = ScenarioRunner().run(Scenario("gallery renders", body))

    assert result.passed
    assert result.exit_code == 0
    assert result.report.total_errors == 1
    assert result.gate.passed
    assert result.error is None


def test_unacknowledged_critical_fault_fails_scenario() -> None:
    def body(context: ScenarioContext) -> None:
        context.register_action("search-photos", _failing_search)
        with pytest.raises(LookupError):
            context.invoke("search-photos", {"album": "holidays"})

    result = ScenarioRunner().run(Scenario("search photos", body))

    assert not result.passed
    assert [record.message for record in result.unexpected] == [
        "Agent action 'search-photos' failed: No album named holidays"
    ]
    assert result.gate.failing_ids == [result.unexpected[0].id]
    assert result.to_dict()["status"] == "fail"


def test_expected_errors_acknowledge_faults_and_enforce_counts() -> None:
    def body(context: ScenarioContext) -> None:
        context.register_action("search-photos", _failing_search)
        for album in ("holidays", "birthdays"):
            try:
                context.invoke("search-photos", {"album": album})
            except LookupError:
                pass

    acknowledged = ScenarioRunner().run(
        Scenario(
            "search photos expected",
            body,
            expected_errors=(ExpectedError(r"No album named", category="agent-native", count=2),),
        )
    )
    miscounted = ScenarioRunner().run(
        Scenario(
            "search photos miscounted",
            body,
            expected_errors=(ExpectedError(r"No album named", count=1),),
        )
    )
    wrong_category = ScenarioRunner().run(
        Scenario(
            "search photos wrong category",
            body,
            expected_errors=(ExpectedError(r"No album named", category="data-error"),),
        )
    )

    assert acknowledged.passed
    assert acknowledged.unexpected == ()
    assert not miscounted.passed
    assert [item.pattern for item in miscounted.missing] == ["No album named"]
    assert not wrong_category.passed
    assert len(wrong_category.unexpected) == 2


def test_gate_severity_decides_which_faults_fail() -> None:
    def body(context: ScenarioContext) -> None:
        _LOGGER.error("Widget exploded")

    result = ScenarioRunner().run(Scenario("strict gate", body, gate_severity="medium"))

    assert not result.passed
    assert result.gate.threshold == "medium"


def test_scenario_body_exception_is_reported() -> None:
    def body(context: ScenarioContext) -> None:
        context.action("missing-action")

    result = ScenarioRunner().run(Scenario("missing action", body))

    assert not result.passed
    assert result.error == "KeyError: \"Action 'missing-action' is not registered\""
    assert [record.message for record in result.unexpected] == [
        "Agent action 'missing-action' not registered. Action was called before registration."
    ]


def test_async_scenario_captures_network_and_rejection_faults() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    async def fail_upload() -> None:
        raise ValueError("Upload failed: invalid JSON in response")

    async def body(context: ScenarioContext) -> None:
        async with httpx.AsyncClient(transport=transport) as client:
            await client.post("https://api.example.test/upload")
        asyncio.ensure_future(fail_upload())
        await asyncio.sleep(0)

    result = ScenarioRunner().run(
        Scenario(
            "upload flow",
            body,
            expected_errors=(ExpectedError(r"^HTTP 503"),),
            gate_severity="high",
        )
    )

    assert result.passed, result.to_dict()
    assert [entry.source_type for entry in result.report.entries] == [
        "networkFailure",
        "unhandledRejection",
    ]


def test_custom_runner_rules_apply_to_scenarios() -> None:
    rule = ClassificationRule(
        name="known-flaky-widget",
        predicate=message_matches(r"Widget exploded"),
        category="component-error",
        severity="critical",
    )

    def body(context: ScenarioContext) -> None:
        _LOGGER.error("Widget exploded")

    result = ScenarioRunner(rules=[rule]).run(Scenario("custom rules", body))

    assert not result.passed
    assert result.unexpected[0].rule == "known-flaky-widget"


def test_sync_scenario_timeout_is_reported() -> None:
    release = threading.Event()

    def body(context: ScenarioContext) -> None:
        release.wait(timeout=5)

    try:
        result = ScenarioRunner(default_timeout=0.05).run(Scenario("slow sync", body))
    finally:
        release.set()

    assert not result.passed
    assert result.error is not None and result.error.startswith("TimeoutError")


def test_async_scenario_timeout_is_reported() -> None:
    async def body(context: ScenarioContext) -> None:
        await asyncio.sleep(5)

    result = ScenarioRunner().run(Scenario("slow async", body, timeout=0.05))

    assert not result.passed
    assert result.error is not None and result.error.startswith("TimeoutError")


def test_runner_writes_artifacts_per_scenario(tmp_path: Path) -> None:
    def body(context: ScenarioContext) -> None:
        _LOGGER.error("Widget exploded")

    result = ScenarioRunner(output_dir=tmp_path, formats=("json", "md")).run(
        Scenario("Gallery Renders!", body)
    )

    assert sorted(result.artifacts) == ["json", "markdown"]
    assert result.artifacts["json"] == tmp_path / "gallery-renders" / "report.json"
    payload = json.loads(result.artifacts["json"].read_text(encoding="utf-8"))
    assert payload["summary"]["totalErrors"] == 1


def test_parallel_scenarios_keep_their_faults_separate() -> None:
    def make_body(index: int):
        def body(context: ScenarioContext) -> None:
            for attempt in range(3):
                _LOGGER.error("scenario %s failure %s", index, attempt)

        return body

    scenarios = [Scenario(f"parallel {index}", make_body(index)) for index in range(4)]

    results = run_scenarios(scenarios, parallel=4)

    assert [result.scenario for result in results] == [scenario.name for scenario in scenarios]
    for index, result in enumerate(results):
        assert [entry.message for entry in result.report.entries] == [
            f"scenario {index} failure {attempt}" for attempt in range(3)
        ]
    assert len({result.report.session_id for result in results}) == 4
    assert overall_exit_code(results) == 0


def test_overall_exit_code_and_slugs() -> None:
    def failing(context: ScenarioContext) -> None:
        raise RuntimeError("broken fixture")

    results = run_scenarios([Scenario("ok", lambda context: None), Scenario("bad", failing)])

    assert [result.passed for result in results] == [True, False]
    assert overall_exit_code(results) == 1
    assert scenario_slug("Search Photos: happy path!") == "search-photos-happy-path"
    assert scenario_slug("***") == "scenario"
