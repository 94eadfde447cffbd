"""Test harness integration: isolated scenarios and the severity gate."""

from faultpack.harness.gate import GateResult, SeverityGate, evaluate_gate
from faultpack.harness.scenario import (
    ExpectedError,
    Scenario,
    ScenarioContext,
    ScenarioResult,
    ScenarioRunner,
    overall_exit_code,
    run_scenarios,
    scenario_slug,
)

__all__ = [
    "ExpectedError",
    "GateResult",
    "Scenario",
    "ScenarioContext",
    "ScenarioResult",
    "ScenarioRunner",
    "SeverityGate",
    "evaluate_gate",
    "overall_exit_code",
    "run_scenarios",
    "scenario_slug",
]
