import pytest

from faultpack.classify import (
    DEFAULT_RULES,
    ClassificationRule,
    ErrorClassifier,
    classify,
    message_matches,
    source_type_is,
)
from faultpack.core.models import FaultEvent


def _network_event(message: str, status: int | None) -> FaultEvent:
    return FaultEvent(
        source_type="networkFailure",
        message=message,
        context={"url": "https://api.example.test/photos", "method": "GET", "status": status},
    )


def test_null_dereference_from_uncaught_exception_is_high_data_error() -> None:
    event = FaultEvent(
        source_type="uncaughtException",
        message="Cannot read property 'Uris' of undefined",
    )

    result = classify(event)

    assert result.category == "data-error"
    assert result.severity == "high"
    assert result.rule == "null-dereference"


def test_server_error_response_is_high_api_integration() -> None:
    result = classify(
        _network_event("HTTP 500 Internal Server Error - GET https://api.example.test/photos", 500)
    )

    assert (result.category, result.severity, result.rule) == ("api-integration", "high", "server-error")


def test_auth_status_outranks_server_and_client_rules() -> None:
    unauthorized = classify(_network_event("HTTP 401 Unauthorized - GET /albums", 401))
    forbidden = classify(_network_event("HTTP 403 Forbidden - GET /albums", 403))
    not_found = classify(_network_event("HTTP 404 Not Found - GET /albums", 404))
    throttled = classify(_network_event("HTTP 429 Too Many Requests - GET /albums", 429))

    assert (unauthorized.category, unauthorized.severity) == ("api-integration", "critical")
    assert (forbidden.category, forbidden.severity) == ("api-integration", "critical")
    assert (not_found.category, not_found.severity, not_found.rule) == (
        "api-integration",
        "medium",
        "client-error",
    )
    assert throttled.rule == "rate-limited"


def test_transport_failure_without_status_is_network_error() -> None:
    result = classify(
        _network_event("Network Error: Connection refused - GET https://api.example.test/photos", None)
    )

    assert (result.category, result.severity, result.rule) == (
        "network-error",
        "high",
        "network-transport-failure",
    )


def test_agent_action_failures_are_always_critical_agent_native() -> None:
    result = classify(
        FaultEvent(source_type="agentAction", message="Agent action 'search-photos' failed: timeout")
    )

    assert (result.category, result.severity) == ("agent-native", "critical")
    assert result.rule == "agent-action-failure"


@pytest.mark.parametrize(
    ("message", "category", "severity"),
    [
        ("Agent interface registration failed", "agent-native", "critical"),
        ("useEffect dependency array changed size", "hook-error", "medium"),
        ("Failed to parse JSON payload", "data-error", "medium"),
        ("Maximum update depth exceeded", "performance-error", "low"),
        ("Connection reset while streaming", "network-error", "high"),
    ],
)
def test_log_messages_follow_keyword_rules(message: str, category: str, severity: str) -> None:
    result = classify(FaultEvent(source_type="log", message=message))

    assert (result.category, result.severity) == (category, severity)


def test_unmatched_events_fall_back_per_source_type() -> None:
    log_result = classify(FaultEvent(source_type="log", message="Widget exploded"))
    uncaught_result = classify(FaultEvent(source_type="uncaughtException", message="Widget exploded"))
    rejection_result = classify(FaultEvent(source_type="unhandledRejection", message="Widget exploded"))

    assert (log_result.category, log_result.severity, log_result.rule) == (
        "component-error",
        "medium",
        "fallback:log",
    )
    assert (uncaught_result.category, uncaught_result.severity) == ("component-error", "critical")
    assert (rejection_result.category, rejection_result.severity) == ("data-error", "medium")


def test_classification_is_deterministic() -> None:
    event = FaultEvent(source_type="log", message="Failed to parse JSON payload")

    assert [classify(event) for _ in range(5)] == [classify(event)] * 5


def test_custom_rules_take_precedence_over_defaults() -> None:
    classifier = ErrorClassifier(
        [
            ClassificationRule(
                name="legacy-widget",
                predicate=message_matches(r"cannot read property"),
                category="component-error",
                severity="low",
            )
        ]
    )

    result = classifier.classify(
        FaultEvent(source_type="uncaughtException", message="Cannot read property 'Uris' of undefined")
    )

    assert (result.category, result.severity, result.rule) == ("component-error", "low", "legacy-widget")
    assert classifier.rules[0].name == "legacy-widget"
    assert classifier.rules[1:] == tuple(sorted(DEFAULT_RULES, key=lambda rule: -rule.priority))


def test_latest_registered_custom_rule_wins_on_equal_priority() -> None:
    classifier = ErrorClassifier()
    classifier.register(
        ClassificationRule("first", source_type_is("log"), "data-error", "low")
    )
    classifier.register(
        ClassificationRule("second", source_type_is("log"), "hook-error", "high")
    )

    result = classifier.classify(FaultEvent(source_type="log", message="anything"))

    assert result.rule == "second"


def test_higher_priority_custom_rule_beats_later_registration() -> None:
    classifier = ErrorClassifier(
        [
            ClassificationRule("important", source_type_is("log"), "data-error", "critical", priority=5),
            ClassificationRule("later", source_type_is("log"), "hook-error", "low"),
        ]
    )

    assert classifier.classify(FaultEvent(source_type="log", message="x")).rule == "important"


def test_rules_with_unknown_category_or_severity_are_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported category"):
        ErrorClassifier([ClassificationRule("bad", source_type_is("log"), "ui-error", "low")])

    with pytest.raises(ValueError, match="unsupported severity"):
        ErrorClassifier([ClassificationRule("bad", source_type_is("log"), "data-error", "urgent")])


def test_fault_event_rejects_unknown_source_type() -> None:
    with pytest.raises(ValueError, match="Unsupported source type"):
        FaultEvent(source_type="console", message="boom")
