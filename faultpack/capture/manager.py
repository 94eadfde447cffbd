"""Session-scoped capture manager owning the fault log."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
import asyncio
import threading
from typing import Any, Callable, Iterable, Iterator, Literal, Mapping, MutableMapping
import uuid
import warnings

from faultpack.capture.adapters import NetworkInterceptor
from faultpack.capture.hooks import warn_capture_failure
from faultpack.capture.interceptors import (
    ActionInterceptor,
    Interceptor,
    LogInterceptor,
    RejectionInterceptor,
    UncaughtExceptionInterceptor,
)
from faultpack.capture.policy import CaptureOptions, coerce_capture_options
from faultpack.capture.sanitize import sanitize_payload
from faultpack.classify.classifier import ErrorClassifier
from faultpack.core.canonical import utc_isoformat, utcnow
from faultpack.core.models import ErrorFilter, FaultEvent, RuntimeErrorRecord
from faultpack.core.types import (
    REPORTED_CATEGORIES,
    SEVERITIES,
    SEVERITY_RANK,
    SOURCE_TYPES,
    UNCLASSIFIED,
    normalize_severity,
)
from faultpack.report.models import ErrorReport, build_report

ManagerState = Literal["uninitialized", "active", "torn_down"]

CLASSIFICATION_FAILED_RULE = "classification-failed"

_BOUND_MANAGER: ContextVar["ErrorCaptureManager | None"] = ContextVar(
    "faultpack_bound_capture_manager", default=None
)
_IN_CAPTURE: ContextVar[bool] = ContextVar("faultpack_in_capture", default=False)


@dataclass(frozen=True, slots=True)
class CaptureDiagnostic:
    """A failure inside the capture machinery itself."""

    component: str
    operation: str
    error_type: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "component": self.component,
            "operation": self.operation,
            "error_type": self.error_type,
            "message": self.message,
        }


class ErrorQuery:
    """Lazy, restartable view over a snapshot of the fault log."""

    __slots__ = ("_records", "_filter")

    def __init__(self, records: tuple[RuntimeErrorRecord, ...], error_filter: ErrorFilter) -> None:
        self._records = records
        self._filter = error_filter

    def __iter__(self) -> Iterator[RuntimeErrorRecord]:
        return (record for record in self._records if self._filter.matches(record))

    def __len__(self) -> int:
        return self.count()

    def count(self) -> int:
        return sum(1 for _ in self)

    def to_list(self) -> list[RuntimeErrorRecord]:
        return list(self)


class ErrorCaptureManager:
    """Installs interceptors, classifies what they observe and keeps the session log.

    Lifecycle: ``uninitialized -> active -> torn_down``. ``reset()`` starts a
    new session while active; ``torn_down`` is terminal. ``capture()`` never
    raises into the caller.
    """

    def __init__(
        self,
        options: CaptureOptions | Mapping[str, Any] | None = None,
        *,
        classifier: ErrorClassifier | None = None,
        action_registry: MutableMapping[str, Callable[..., Any]] | None = None,
        event_loop: asyncio.AbstractEventLoop | None = None,
        network_transports: Iterable[tuple[Any, str]] = (),
        session_id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.options = coerce_capture_options(options)
        self.action_registry: MutableMapping[str, Callable[..., Any]] = (
            action_registry if action_registry is not None else {}
        )
        self.diagnostics: list[CaptureDiagnostic] = []
        self._classifier: ErrorClassifier | None = classifier or ErrorClassifier()
        self._event_loop = event_loop
        self._network_transports = tuple(network_transports)
        self._session_id_factory = session_id_factory or _new_session_id
        self._clock = clock or utcnow
        self._state: ManagerState = "uninitialized"
        self._interceptors: tuple[Interceptor, ...] = ()
        self._records: list[RuntimeErrorRecord] = []
        self._counter = 0
        self._lock = threading.RLock()
        self.session_id = self._session_id_factory()

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def interceptors(self) -> tuple[Interceptor, ...]:
        return self._interceptors

    @property
    def classifier(self) -> ErrorClassifier | None:
        return self._classifier

    def initialize(
        self,
        options: CaptureOptions | Mapping[str, Any] | None = None,
    ) -> "ErrorCaptureManager":
        """Install the interceptors selected by ``options``.

        Calling again without a teardown, or after teardown, only warns.
        """
        if self._state != "uninitialized":
            warnings.warn(
                f"faultkit capture manager is {self._state}; initialize() ignored.",
                RuntimeWarning,
                stacklevel=2,
            )
            return self

        if options is not None:
            self.options = coerce_capture_options(options)

        with self._lock:
            self._interceptors = self._compose(self.options)
            self._state = "active"

        for interceptor in self._interceptors:
            try:
                interceptor.install()
            except Exception as error:
                self._diagnose(interceptor.name, "install", error)
        return self

    def capture(self, event: FaultEvent) -> RuntimeErrorRecord | None:
        """Classify ``event`` and append it to the session log."""
        if self._state != "active" or _IN_CAPTURE.get():
            return None
        token = _IN_CAPTURE.set(True)
        try:
            return self._capture(event)
        except Exception as error:
            self._diagnose("manager", "capture", error, warn=False)
            return None
        finally:
            _IN_CAPTURE.reset(token)

    def query(
        self,
        error_filter: ErrorFilter | Mapping[str, Any] | None = None,
        **criteria: Any,
    ) -> ErrorQuery:
        return ErrorQuery(self.snapshot(), ErrorFilter.coerce(error_filter, **criteria))

    def snapshot(self) -> tuple[RuntimeErrorRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def stats(self) -> dict[str, Any]:
        records = self.snapshot()
        by_severity = {severity: 0 for severity in SEVERITIES}
        by_category = {category: 0 for category in REPORTED_CATEGORIES}
        by_source_type = {source_type: 0 for source_type in SOURCE_TYPES}
        for record in records:
            by_severity[record.severity] += 1
            by_category[record.category] += 1
            by_source_type[record.source_type] += 1
        return {
            "total": len(records),
            "bySeverity": by_severity,
            "byCategory": by_category,
            "bySourceType": by_source_type,
        }

    def has_errors_at_or_above(self, severity: str) -> bool:
        threshold = SEVERITY_RANK[normalize_severity(severity)]
        return any(SEVERITY_RANK[record.severity] >= threshold for record in self.snapshot())

    def report(self, *, sort_by_severity: bool = False) -> ErrorReport:
        return build_report(
            self.snapshot(),
            session_id=self.session_id,
            generated_at=self._clock(),
            sort_by_severity=sort_by_severity,
        )

    def reset(self) -> None:
        """Clear the log and start a new session."""
        with self._lock:
            if self._state == "torn_down":
                return
            self._records.clear()
            self._counter = 0
            self.session_id = self._session_id_factory()

    def teardown(self) -> None:
        """Uninstall interceptors; captured records stay queryable."""
        with self._lock:
            if self._state == "torn_down":
                return
            self._state = "torn_down"
            interceptors = self._interceptors
            self._interceptors = ()

        for interceptor in reversed(interceptors):
            try:
                interceptor.uninstall()
            except Exception as error:
                self._diagnose(interceptor.name, "uninstall", error)

        self._classifier = None
        self._event_loop = None
        self._network_transports = ()

    @contextmanager
    def bind(self) -> Iterator["ErrorCaptureManager"]:
        """Route global-surface faults raised in this context to this manager only."""
        token = _BOUND_MANAGER.set(self)
        try:
            yield self
        finally:
            _BOUND_MANAGER.reset(token)

    def register_action(self, name: str, action: Callable[..., Any]) -> Callable[..., Any]:
        """Add an action to the registry; wrapped when action capture is active."""
        for interceptor in self._interceptors:
            if isinstance(interceptor, ActionInterceptor) and interceptor.installed:
                return interceptor.register(name, action)
        self.action_registry[name] = action
        return action

    def action(self, name: str) -> Callable[..., Any]:
        """Look up a registered action; a missing one is captured, then raises ``KeyError``."""
        try:
            return self.action_registry[name]
        except KeyError:
            for interceptor in self._interceptors:
                if isinstance(interceptor, ActionInterceptor):
                    interceptor.report_missing(name)
            raise KeyError(f"Action '{name}' is not registered") from None

    def _capture(self, event: FaultEvent) -> RuntimeErrorRecord:
        classifier = self._classifier
        failure: Exception | None = None
        try:
            if classifier is None:
                raise RuntimeError("capture manager has no classifier")
            classification = classifier.classify(event)
            category = classification.category
            severity = classification.severity
            rule = classification.rule
        except Exception as error:
            failure = error
            category, severity, rule = UNCLASSIFIED, "medium", CLASSIFICATION_FAILED_RULE

        context = sanitize_payload(dict(event.context), policy=self.options.sanitization)
        timestamp = utc_isoformat(self._clock())

        with self._lock:
            self._counter += 1
            record = RuntimeErrorRecord(
                id=f"err-{self._counter:06d}",
                timestamp=timestamp,
                source_type=event.source_type,
                message=event.message,
                category=category,
                severity=severity,
                session_id=self.session_id,
                stack=event.stack,
                context=context,
                rule=rule,
            )
            self._records.append(record)

        if failure is not None:
            self._diagnose("classifier", "classify", failure)
        return record

    def _capture_routed(self, event: FaultEvent) -> RuntimeErrorRecord | None:
        bound = _BOUND_MANAGER.get()
        if bound is not None and bound is not self:
            return None
        return self.capture(event)

    def _compose(self, options: CaptureOptions) -> tuple[Interceptor, ...]:
        interceptors: list[Interceptor] = []
        if options.capture_log_errors:
            interceptors.append(
                LogInterceptor(
                    self._capture_routed,
                    level=options.log_level,
                    is_ignored=options.is_ignored if options.ignore_patterns else None,
                    on_failure=self._on_interceptor_failure,
                )
            )
        if options.capture_uncaught_exceptions:
            interceptors.append(
                UncaughtExceptionInterceptor(
                    self._capture_routed,
                    on_failure=self._on_interceptor_failure,
                )
            )
        if options.capture_unhandled_rejections:
            interceptors.append(
                RejectionInterceptor(
                    self.capture,
                    loop=self._event_loop,
                    suppress_default=options.suppress_default_rejection_handling,
                    on_failure=self._on_interceptor_failure,
                )
            )
        if options.capture_network_errors:
            interceptors.append(
                NetworkInterceptor(
                    self._capture_routed,
                    adapters=options.network_adapters,
                    transports=self._network_transports,
                    on_failure=self._on_interceptor_failure,
                )
            )
        if options.capture_agent_errors:
            interceptors.append(
                ActionInterceptor(
                    self.capture,
                    self.action_registry,
                    sanitization=options.sanitization,
                    on_failure=self._on_interceptor_failure,
                )
            )
        return tuple(interceptors)

    def _on_interceptor_failure(self, component: str, operation: str, error: BaseException) -> None:
        self._diagnose(component, operation, error)

    def _diagnose(
        self,
        component: str,
        operation: str,
        error: BaseException,
        *,
        warn: bool = True,
    ) -> None:
        diagnostic = CaptureDiagnostic(
            component=component,
            operation=operation,
            error_type=error.__class__.__name__,
            message=str(error),
        )
        self.diagnostics.append(diagnostic)
        if warn:
            warn_capture_failure(
                f"faultkit capture failure: component={diagnostic.component} "
                f"operation={diagnostic.operation} "
                f"error={diagnostic.error_type}: {diagnostic.message}",
                stacklevel=4,
            )


def create_capture_manager(
    options: CaptureOptions | Mapping[str, Any] | None = None,
    **collaborators: Any,
) -> ErrorCaptureManager:
    """Build an independent, uninitialized capture manager."""
    return ErrorCaptureManager(options, **collaborators)


def current_bound_manager() -> ErrorCaptureManager | None:
    return _BOUND_MANAGER.get()


def _new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"
