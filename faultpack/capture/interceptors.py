"""Interceptors for the log, asyncio, uncaught-exception and action surfaces.

Every interceptor observes one surface and forwards a normalized
:class:`FaultEvent` to the capture callable it was built with. Observation
never changes what the host sees: original handlers still run, original
return values are returned and original exceptions re-raised.
"""

from __future__ import annotations

import asyncio
from contextvars import ContextVar
import functools
import inspect
import logging
import sys
import threading
import traceback
from typing import Any, Awaitable, Callable, MutableMapping

from faultpack.capture.hooks import PatchedCall, Subscription, subscribe, warn_capture_failure
from faultpack.capture.sanitize import (
    DEFAULT_SANITIZATION_POLICY,
    SanitizationPolicy,
    sanitize_payload,
)
from faultpack.core.models import FaultEvent, describe_reason

CaptureSink = Callable[[FaultEvent], Any]
FailureSink = Callable[[str, str, BaseException], None]
LoopHandler = Callable[[asyncio.AbstractEventLoop, dict[str, Any]], Any]

# Set while a fault already captured elsewhere is forwarded to a handler that logs it.
_FORWARDING_CAPTURED: ContextVar[bool] = ContextVar("faultpack_forwarding_captured", default=False)


class Interceptor:
    """Base class: one fault surface, installed once, uninstalled once."""

    name = "interceptor"

    def __init__(
        self,
        capture: CaptureSink,
        *,
        on_failure: FailureSink | None = None,
    ) -> None:
        self._capture = capture
        self._on_failure = on_failure
        self.installed = False

    def install(self) -> None:
        if self.installed:
            return
        try:
            self._attach()
        except Exception:
            self._detach()
            raise
        self.installed = True

    def uninstall(self) -> None:
        if not self.installed:
            return
        self.installed = False
        self._detach()

    def _attach(self) -> None:
        raise NotImplementedError

    def _detach(self) -> None:
        raise NotImplementedError

    def _emit(self, build: Callable[[], FaultEvent | None]) -> None:
        if not self.installed:
            return
        try:
            event = build()
            if event is not None:
                self._capture(event)
        except Exception as error:
            self._report_failure("observe", error)

    def _report_failure(self, operation: str, error: BaseException) -> None:
        if self._on_failure is not None:
            self._on_failure(self.name, operation, error)
            return
        warn_capture_failure(
            f"faultkit interceptor failure: interceptor={self.name} "
            f"operation={operation} error={error.__class__.__name__}: {error}"
        )


class LogInterceptor(Interceptor):
    """Captures log records at or above ``level`` emitted by any logger."""

    name = "log"

    def __init__(
        self,
        capture: CaptureSink,
        *,
        level: int = logging.ERROR,
        is_ignored: Callable[[str], bool] | None = None,
        on_failure: FailureSink | None = None,
    ) -> None:
        super().__init__(capture, on_failure=on_failure)
        self.level = level
        self._is_ignored = is_ignored
        self._subscription: Subscription | None = None

    def _attach(self) -> None:
        # callHandlers runs once per record after logger filtering and walks the
        # handler hierarchy itself, including the lastResort fallback.
        self._subscription = subscribe(logging.Logger, "callHandlers", self._observe)

    def _detach(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _observe(self, call: PatchedCall) -> None:
        if len(call.args) < 2:
            return
        record = call.args[1]
        if not isinstance(record, logging.LogRecord) or record.levelno < self.level:
            return
        if _FORWARDING_CAPTURED.get():
            return
        self._emit(lambda: self._event_for(record))

    def _event_for(self, record: logging.LogRecord) -> FaultEvent | None:
        message = record.getMessage()
        if self._is_ignored is not None and self._is_ignored(message):
            return None
        return FaultEvent(
            source_type="log",
            message=message,
            stack=_record_stack(record),
            context={
                "logger": record.name,
                "level": record.levelname,
                "module": record.module,
                "funcName": record.funcName,
                "lineno": record.lineno,
            },
        )


def _record_stack(record: logging.LogRecord) -> str | None:
    if record.exc_info and record.exc_info[1] is not None:
        exc_type, exc_value, exc_tb = record.exc_info
        return "".join(traceback.format_exception(exc_type, exc_value, exc_tb)).rstrip()
    if record.exc_text:
        return record.exc_text
    if record.stack_info:
        return record.stack_info
    return None


class RejectionInterceptor(Interceptor):
    """Captures failures asyncio reports through the loop exception handler.

    This covers task and future exceptions that were never retrieved as well
    as exceptions escaping loop callbacks. The previously installed handler
    (or the loop's default handler) still runs unless ``suppress_default`` is
    set.
    """

    name = "rejection"

    def __init__(
        self,
        capture: CaptureSink,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        suppress_default: bool = False,
        on_failure: FailureSink | None = None,
    ) -> None:
        super().__init__(capture, on_failure=on_failure)
        self._requested_loop = loop
        self._suppress_default = suppress_default
        self.loop: asyncio.AbstractEventLoop | None = None
        self._previous: LoopHandler | None = None

    @property
    def attached(self) -> bool:
        return self.loop is not None

    def _attach(self) -> None:
        loop = self._requested_loop or _running_loop()
        if loop is None:
            return
        self.loop = loop
        self._previous = loop.get_exception_handler()
        loop.set_exception_handler(self._handle)

    def _detach(self) -> None:
        loop = self.loop
        if loop is None:
            return
        if loop.get_exception_handler() == self._handle:
            loop.set_exception_handler(self._previous)
        self.loop = None

    def _handle(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        previous = self._previous
        self._emit(lambda: _event_for_loop_context(context))
        if self.installed and self._suppress_default:
            return
        token = _FORWARDING_CAPTURED.set(self.installed)
        try:
            if previous is not None:
                previous(loop, context)
            else:
                loop.default_exception_handler(context)
        finally:
            _FORWARDING_CAPTURED.reset(token)


def _event_for_loop_context(context: dict[str, Any]) -> FaultEvent:
    loop_message = str(context.get("message") or "Unhandled exception in event loop")
    details: dict[str, Any] = {"loopMessage": loop_message}
    for key in ("task", "future", "handle"):
        if context.get(key) is not None:
            details[key] = repr(context[key])

    reason = context.get("exception")
    if reason is None:
        return FaultEvent(source_type="unhandledRejection", message=loop_message, context=details)
    return FaultEvent.from_reason("unhandledRejection", reason, context=details)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class UncaughtExceptionInterceptor(Interceptor):
    """Captures exceptions reaching ``sys.excepthook`` or ``threading.excepthook``."""

    name = "uncaught"

    def __init__(
        self,
        capture: CaptureSink,
        *,
        on_failure: FailureSink | None = None,
    ) -> None:
        super().__init__(capture, on_failure=on_failure)
        self._subscriptions: list[Subscription] = []

    def _attach(self) -> None:
        self._subscriptions = [
            subscribe(sys, "excepthook", self._observe_main),
            subscribe(threading, "excepthook", self._observe_thread),
        ]

    def _detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []

    def _observe_main(self, call: PatchedCall) -> None:
        if len(call.args) < 2:
            return
        exc_value = call.args[1]
        self._emit(lambda: _event_for_uncaught(exc_value, thread_name="MainThread"))

    def _observe_thread(self, call: PatchedCall) -> None:
        if not call.args:
            return
        hook_args = call.args[0]
        exc_value = getattr(hook_args, "exc_value", None)
        thread = getattr(hook_args, "thread", None)
        thread_name = getattr(thread, "name", None)
        self._emit(lambda: _event_for_uncaught(exc_value, thread_name=thread_name))


def _event_for_uncaught(
    exc_value: BaseException | None,
    *,
    thread_name: str | None,
) -> FaultEvent | None:
    if exc_value is None or isinstance(exc_value, (KeyboardInterrupt, SystemExit)):
        return None
    return FaultEvent.from_exception(
        "uncaughtException",
        exc_value,
        context={
            "thread": thread_name,
            "exceptionType": exc_value.__class__.__name__,
        },
    )


class ActionInterceptor(Interceptor):
    """Wraps every callable in an action registry to capture failures.

    Synchronous actions, coroutine functions and synchronous actions that
    return an awaitable are all supported. A returned future or task is
    handed back as-is and observed through a done callback. The original
    exception always reaches the caller.
    """

    name = "action"

    def __init__(
        self,
        capture: CaptureSink,
        registry: MutableMapping[str, Callable[..., Any]],
        *,
        sanitization: SanitizationPolicy = DEFAULT_SANITIZATION_POLICY,
        on_failure: FailureSink | None = None,
    ) -> None:
        super().__init__(capture, on_failure=on_failure)
        self.registry = registry
        self._sanitization = sanitization
        self._wrapped: dict[str, tuple[Callable[..., Any], Callable[..., Any]]] = {}

    def register(self, name: str, action: Callable[..., Any]) -> Callable[..., Any]:
        """Add an action to the registry, wrapped when the interceptor is installed."""
        self.registry[name] = action
        if self.installed:
            self._wrap_entry(name, action)
        return self.registry[name]

    def report_missing(self, name: str) -> None:
        """Record a lookup of an action that was never registered."""
        self._emit(
            lambda: FaultEvent(
                source_type="agentAction",
                message=f"Agent action '{name}' not registered. Action was called before registration.",
                context={"action": name, "params": None, "exceptionType": "KeyError"},
            )
        )

    def _attach(self) -> None:
        for name, action in list(self.registry.items()):
            self._wrap_entry(name, action)

    def _detach(self) -> None:
        for name, (original, wrapper) in self._wrapped.items():
            if self.registry.get(name) is wrapper:
                self.registry[name] = original
        self._wrapped.clear()

    def _wrap_entry(self, name: str, action: Callable[..., Any]) -> None:
        if not callable(action):
            return
        wrapper = self._wrap(name, action)
        self.registry[name] = wrapper
        self._wrapped[name] = (action, wrapper)

    def _wrap(self, name: str, action: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(action):

            @functools.wraps(action)
            async def async_action(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await action(*args, **kwargs)
                except Exception as error:
                    self._record(name, error, args, kwargs)
                    raise

            return async_action

        @functools.wraps(action)
        def sync_action(*args: Any, **kwargs: Any) -> Any:
            try:
                result = action(*args, **kwargs)
            except Exception as error:
                self._record(name, error, args, kwargs)
                raise
            if asyncio.isfuture(result):
                result.add_done_callback(
                    functools.partial(self._settled, name, args=args, kwargs=kwargs)
                )
                return result
            if inspect.isawaitable(result):
                return self._watch(name, result, args, kwargs)
            return result

        return sync_action

    def _settled(
        self,
        name: str,
        future: asyncio.Future[Any],
        *,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if isinstance(error, Exception):
            self._record(name, error, args, kwargs)

    async def _watch(
        self,
        name: str,
        pending: Awaitable[Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        try:
            return await pending
        except Exception as error:
            self._record(name, error, args, kwargs)
            raise

    def _record(
        self,
        name: str,
        error: BaseException,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> None:
        self._emit(lambda: self._event_for(name, error, args, kwargs))

    def _event_for(
        self,
        name: str,
        error: BaseException,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> FaultEvent:
        message, stack = describe_reason(error)
        return FaultEvent(
            source_type="agentAction",
            message=f"Agent action '{name}' failed: {message}",
            stack=stack,
            context={
                "action": name,
                "params": sanitize_payload(_action_params(args, kwargs), policy=self._sanitization),
                "exceptionType": error.__class__.__name__,
            },
        )


def _action_params(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
    if not args:
        return dict(kwargs)
    if len(args) == 1 and not kwargs:
        return args[0]
    return {"args": list(args), "kwargs": dict(kwargs)}
