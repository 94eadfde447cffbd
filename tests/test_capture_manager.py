from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Callable, Iterator
import warnings

import pytest

from faultpack.capture import (
    CLASSIFICATION_FAILED_RULE,
    CaptureConfigError,
    CaptureOptions,
    ErrorCaptureManager,
    create_capture_manager,
    current_bound_manager,
)
from faultpack.classify import ClassificationRule, ErrorClassifier
from faultpack.classify.rules import Classification
from faultpack.core.models import ErrorFilter, FaultEvent

_LOGGER = logging.getLogger("faultkit.tests.manager")

_LOG_ONLY = CaptureOptions(
    capture_network_errors=False,
    capture_unhandled_rejections=False,
    capture_agent_errors=False,
    capture_uncaught_exceptions=False,
)


def _session_ids(*ids: str) -> Callable[[], str]:
    remaining: Iterator[str] = iter(ids)
    return lambda: next(remaining)


def _stepping_clock(start: datetime, step: timedelta) -> Callable[[], datetime]:
    state = {"now": start - step}

    def clock() -> datetime:
        state["now"] += step
        return state["now"]

    return clock


def test_lifecycle_moves_from_uninitialized_to_active_to_torn_down() -> None:
    manager = create_capture_manager(_LOG_ONLY)
    assert manager.state == "uninitialized"
    assert manager.capture(FaultEvent(source_type="log", message="too early")) is None

    assert manager.initialize() is manager
    assert manager.state == "active"
    assert [interceptor.name for interceptor in manager.interceptors] == ["log"]

    manager.teardown()
    assert manager.state == "torn_down"
    assert manager.interceptors == ()
    assert manager.classifier is None
    assert manager.capture(FaultEvent(source_type="log", message="too late")) is None


def test_initialize_twice_warns_and_keeps_interceptors() -> None:
    manager = create_capture_manager(_LOG_ONLY).initialize()
    try:
        installed = manager.interceptors
        with pytest.warns(RuntimeWarning, match=r"initialize\(\) ignored"):
            manager.initialize()
        assert manager.interceptors == installed
    finally:
        manager.teardown()

    with pytest.warns(RuntimeWarning, match="torn_down"):
        manager.initialize()
    assert manager.state == "torn_down"


def test_teardown_is_idempotent_and_restores_logging() -> None:
    original = logging.Logger.callHandlers
    manager = create_capture_manager(_LOG_ONLY).initialize()
    assert logging.Logger.callHandlers is not original

    manager.teardown()
    manager.teardown()

    assert logging.Logger.callHandlers is original
    _LOGGER.error("after teardown")
    assert manager.snapshot() == ()


def test_capture_assigns_sequential_ids_and_session() -> None:
    manager = create_capture_manager(
        _LOG_ONLY,
        session_id_factory=_session_ids("session-one"),
        clock=lambda: datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    ).initialize()
    try:
        first = manager.capture(FaultEvent(source_type="log", message="Widget exploded"))
        second = manager.capture(
            FaultEvent(source_type="uncaughtException", message="Cannot read property 'Uris' of undefined")
        )
    finally:
        manager.teardown()

    assert first is not None and second is not None
    assert [first.id, second.id] == ["err-000001", "err-000002"]
    assert {first.session_id, second.session_id} == {"session-one"}
    assert first.timestamp == "2026-03-01T12:00:00.000000Z"
    assert (second.category, second.severity) == ("data-error", "high")
    assert [record.id for record in manager.snapshot()] == ["err-000001", "err-000002"]


def test_records_stay_queryable_after_teardown() -> None:
    manager = create_capture_manager(_LOG_ONLY).initialize()
    _LOGGER.error("Widget exploded")
    manager.teardown()

    assert manager.query().count() == 1
    assert manager.report().total_errors == 1


def test_reset_clears_log_and_starts_new_session() -> None:
    manager = create_capture_manager(
        _LOG_ONLY,
        session_id_factory=_session_ids("session-a", "session-b"),
    ).initialize()
    try:
        manager.capture(FaultEvent(source_type="log", message="first"))
        manager.reset()
        record = manager.capture(FaultEvent(source_type="log", message="second"))
    finally:
        manager.teardown()

    assert manager.session_id == "session-b"
    assert record is not None
    assert record.id == "err-000001"
    assert record.session_id == "session-b"
    assert [item.message for item in manager.snapshot()] == ["second"]

    manager.reset()
    assert manager.session_id == "session-b"


def test_classifier_failure_records_unclassified_and_diagnostic() -> None:
    class ExplodingClassifier(ErrorClassifier):
        def classify(self, event: FaultEvent) -> Classification:
            raise RuntimeError("rule table corrupted")

    manager = create_capture_manager(_LOG_ONLY, classifier=ExplodingClassifier()).initialize()
    try:
        with pytest.warns(RuntimeWarning, match="component=classifier operation=classify"):
            record = manager.capture(FaultEvent(source_type="log", message="Widget exploded"))
    finally:
        manager.teardown()

    assert record is not None
    assert (record.category, record.severity, record.rule) == (
        "unclassified",
        "medium",
        CLASSIFICATION_FAILED_RULE,
    )
    assert manager.diagnostics[0].to_dict() == {
        "component": "classifier",
        "operation": "classify",
        "error_type": "RuntimeError",
        "message": "rule table corrupted",
    }
    assert manager.stats()["byCategory"]["unclassified"] == 1


def test_classifier_failure_is_stored_when_warnings_are_errors() -> None:
    def corrupted(event: FaultEvent) -> bool:
        raise RuntimeError("rule table corrupted")

    rule = ClassificationRule(
        name="corrupted-rule",
        predicate=corrupted,
        category="data-error",
        severity="high",
    )
    manager = create_capture_manager(_LOG_ONLY, classifier=ErrorClassifier([rule])).initialize()
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            _LOGGER.error("Widget exploded")
    finally:
        manager.teardown()

    (record,) = manager.query()
    assert record.message == "Widget exploded"
    assert (record.category, record.severity, record.rule) == (
        "unclassified",
        "medium",
        CLASSIFICATION_FAILED_RULE,
    )
    assert [diagnostic.error_type for diagnostic in manager.diagnostics] == ["RuntimeError"]


def test_teardown_during_capture_keeps_stored_records() -> None:
    class TearingClassifier(ErrorClassifier):
        manager: ErrorCaptureManager | None = None

        def classify(self, event: FaultEvent) -> Classification:
            if event.message == "second" and self.manager is not None:
                self.manager.teardown()
            return super().classify(event)

    classifier = TearingClassifier()
    manager = create_capture_manager(_LOG_ONLY, classifier=classifier).initialize()
    classifier.manager = manager

    _LOGGER.error("first")
    _LOGGER.error("second")
    _LOGGER.error("third")

    assert manager.state == "torn_down"
    assert [record.message for record in manager.query()] == ["first", "second"]
    assert manager.diagnostics == []


def test_capture_never_raises_into_caller() -> None:
    def broken_clock() -> datetime:
        raise RuntimeError("clock unavailable")

    manager = ErrorCaptureManager(_LOG_ONLY, clock=broken_clock).initialize()
    try:
        assert manager.capture(FaultEvent(source_type="log", message="Widget exploded")) is None
    finally:
        manager.teardown()

    assert manager.snapshot() == ()
    assert manager.diagnostics[-1].component == "manager"
    assert manager.diagnostics[-1].error_type == "RuntimeError"


def test_faults_raised_while_capturing_are_not_recaptured() -> None:
    class ChattyClassifier(ErrorClassifier):
        def classify(self, event: FaultEvent) -> Classification:
            _LOGGER.error("classifier is logging while it works")
            return super().classify(event)

    manager = create_capture_manager(_LOG_ONLY, classifier=ChattyClassifier()).initialize()
    try:
        _LOGGER.error("Widget exploded")
    finally:
        manager.teardown()

    assert [record.message for record in manager.snapshot()] == ["Widget exploded"]


def test_query_filters_by_severity_category_source_and_time() -> None:
    manager = create_capture_manager(
        _LOG_ONLY,
        clock=_stepping_clock(datetime(2026, 3, 1, tzinfo=timezone.utc), timedelta(minutes=1)),
    ).initialize()
    try:
        manager.capture(FaultEvent(source_type="log", message="Widget exploded"))
        manager.capture(FaultEvent(source_type="agentAction", message="Agent action 'x' failed: boom"))
        manager.capture(FaultEvent(source_type="log", message="Maximum update depth exceeded"))
    finally:
        manager.teardown()

    assert [record.message for record in manager.query(severity="critical")] == [
        "Agent action 'x' failed: boom"
    ]
    assert manager.query(min_severity="medium").count() == 2
    assert manager.query(category=["component-error", "performance-error"]).count() == 2
    assert manager.query({"sourceType": "log"}).count() == 2
    assert manager.query(since="2026-03-01T00:01:00Z").count() == 2
    assert manager.query(until="2026-03-01T00:01:00Z").count() == 2
    assert manager.query(ErrorFilter.build(severity="LOW")).count() == 1

    with pytest.raises(ValueError, match="Unsupported filter key"):
        manager.query(owner="me")
    with pytest.raises(ValueError, match="either an ErrorFilter"):
        manager.query(ErrorFilter(), severity="low")


def test_query_is_lazy_restartable_view_over_snapshot() -> None:
    manager = create_capture_manager(_LOG_ONLY).initialize()
    try:
        manager.capture(FaultEvent(source_type="log", message="first"))
        query = manager.query()
        manager.capture(FaultEvent(source_type="log", message="second"))

        assert [record.message for record in query] == ["first"]
        assert [record.message for record in query] == ["first"]
        assert len(query) == 1
        assert manager.query().count() == 2
    finally:
        manager.teardown()


def test_stats_always_list_every_key() -> None:
    manager = create_capture_manager(_LOG_ONLY).initialize()
    try:
        empty = manager.stats()
        manager.capture(FaultEvent(source_type="agentAction", message="Agent action 'x' failed"))
        stats = manager.stats()
    finally:
        manager.teardown()

    assert empty["total"] == 0
    assert set(empty["bySeverity"]) == {"critical", "high", "medium", "low"}
    assert empty["bySourceType"]["networkFailure"] == 0
    assert stats["total"] == 1
    assert stats["bySeverity"]["critical"] == 1
    assert stats["byCategory"]["agent-native"] == 1
    assert stats["bySourceType"]["agentAction"] == 1
    assert manager.has_errors_at_or_above("high")
    assert not create_capture_manager().has_errors_at_or_above("low")


def test_log_errors_are_captured_with_stack_and_level_threshold() -> None:
    manager = create_capture_manager(_LOG_ONLY).initialize()
    try:
        _LOGGER.warning("below threshold")
        try:
            {}["missing"]
        except KeyError:
            _LOGGER.exception("Lookup failed")
    finally:
        manager.teardown()

    (record,) = manager.snapshot()
    assert record.source_type == "log"
    assert record.message == "Lookup failed"
    assert record.stack is not None and "KeyError" in record.stack
    assert record.context["logger"] == "faultkit.tests.manager"
    assert record.context["level"] == "ERROR"


def test_log_level_and_ignore_patterns_come_from_options() -> None:
    manager = create_capture_manager(
        {
            "captureNetworkErrors": False,
            "captureUnhandledRejections": False,
            "captureAgentErrors": False,
            "captureUncaughtExceptions": False,
            "logLevel": "WARNING",
            "ignorePatterns": ["^heartbeat"],
        }
    ).initialize()
    try:
        _LOGGER.warning("Image cache is filling up")
        _LOGGER.error("heartbeat missed")
    finally:
        manager.teardown()

    assert [record.message for record in manager.snapshot()] == ["Image cache is filling up"]


def test_interceptor_install_failure_is_diagnosed_and_others_keep_running() -> None:
    manager = create_capture_manager(
        CaptureOptions(network_adapters=(), capture_unhandled_rejections=False),
        network_transports=((object(), "send"),),
    )
    with pytest.warns(RuntimeWarning, match="component=network operation=install"):
        manager.initialize()
    try:
        assert manager.state == "active"
        _LOGGER.error("Widget exploded")
    finally:
        manager.teardown()

    assert manager.diagnostics[0].error_type == "InterceptorInstallError"
    assert [record.message for record in manager.snapshot()] == ["Widget exploded"]


def test_bound_manager_receives_global_faults_exclusively() -> None:
    first = create_capture_manager(_LOG_ONLY).initialize()
    second = create_capture_manager(_LOG_ONLY).initialize()
    try:
        with first.bind():
            assert current_bound_manager() is first
            _LOGGER.error("only for first")
        assert current_bound_manager() is None
        _LOGGER.error("for everyone")
    finally:
        first.teardown()
        second.teardown()

    assert [record.message for record in first.snapshot()] == ["only for first", "for everyone"]
    assert [record.message for record in second.snapshot()] == ["for everyone"]


def test_concurrent_managers_in_threads_stay_isolated() -> None:
    managers = [create_capture_manager(_LOG_ONLY).initialize() for _ in range(4)]
    barrier = threading.Barrier(len(managers))

    def worker(index: int) -> None:
        with managers[index].bind():
            barrier.wait(timeout=5)
            for attempt in range(3):
                _LOGGER.error("worker %s failure %s", index, attempt)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(len(managers))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)
    for manager in managers:
        manager.teardown()

    for index, manager in enumerate(managers):
        messages = [record.message for record in manager.snapshot()]
        assert messages == [f"worker {index} failure {attempt}" for attempt in range(3)]
        assert len({record.session_id for record in manager.snapshot()}) == 1
    assert len({manager.session_id for manager in managers}) == len(managers)


def test_manager_rejects_unknown_option_keys() -> None:
    with pytest.raises(CaptureConfigError, match="captureConsole"):
        create_capture_manager({"captureConsole": True})
