"""Network failure interception for requests, httpx and custom transports."""

from __future__ import annotations

from importlib import import_module
from typing import Any, Iterable

from faultpack.capture.exceptions import InterceptorInstallError
from faultpack.capture.hooks import PatchedCall, Subscription, subscribe
from faultpack.capture.interceptors import CaptureSink, FailureSink, Interceptor
from faultpack.core.models import FaultEvent, describe_reason

_ADAPTER_TARGETS: dict[str, tuple[tuple[str, str, str], ...]] = {
    "requests": (("requests.sessions", "Session", "request"),),
    "httpx": (
        ("httpx", "Client", "request"),
        ("httpx", "AsyncClient", "request"),
    ),
}


class NetworkInterceptor(Interceptor):
    """Captures HTTP responses with status >= 400 and transport exceptions.

    Adapters name client libraries (``"requests"``, ``"httpx"``). Extra
    transports are ``(owner, attribute)`` pairs whose callable takes
    ``(method, url, ...)`` (after ``self`` for methods) and returns an object
    with a ``status_code`` or ``status`` attribute.
    """

    name = "network"

    def __init__(
        self,
        capture: CaptureSink,
        *,
        adapters: Iterable[str] = ("requests", "httpx"),
        transports: Iterable[tuple[Any, str]] = (),
        on_failure: FailureSink | None = None,
    ) -> None:
        super().__init__(capture, on_failure=on_failure)
        self.adapters = tuple(adapters)
        self.transports = tuple(transports)
        self._subscriptions: list[Subscription] = []

    def _attach(self) -> None:
        for adapter in self.adapters:
            for module_name, class_name, attribute in _ADAPTER_TARGETS[adapter]:
                try:
                    owner = getattr(import_module(module_name), class_name)
                except ImportError as error:
                    self._report_failure(f"install:{adapter}", error)
                    continue
                self._subscribe(owner, attribute, adapter)

        for owner, attribute in self.transports:
            self._subscribe(owner, attribute, _transport_name(owner, attribute))

    def _detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []

    def _subscribe(self, owner: Any, attribute: str, adapter: str) -> None:
        bound = isinstance(owner, type)

        def observe(call: PatchedCall) -> None:
            self._emit(lambda: _event_for_call(call, adapter=adapter, bound=bound))

        try:
            subscription = subscribe(owner, attribute, observe)
        except AttributeError as error:
            raise InterceptorInstallError(
                f"Cannot patch network transport {_transport_name(owner, attribute)}: {error}"
            ) from error
        self._subscriptions.append(subscription)


def _event_for_call(call: PatchedCall, *, adapter: str, bound: bool) -> FaultEvent | None:
    args = call.args[1:] if bound else call.args
    method = str(call.kwargs.get("method") or (args[0] if args else "GET")).upper()
    url = str(call.kwargs.get("url") or (args[1] if len(args) > 1 else ""))

    if call.error is not None:
        if not isinstance(call.error, Exception):
            return None
        message, stack = describe_reason(call.error)
        return FaultEvent(
            source_type="networkFailure",
            message=f"Network Error: {message} - {method} {url}",
            stack=stack,
            context={
                "url": url,
                "method": method,
                "status": None,
                "reason": call.error.__class__.__name__,
                "adapter": adapter,
            },
        )

    status = _response_status(call.result)
    if status is None or status < 400:
        return None
    reason = _response_reason(call.result)
    status_line = f"{status} {reason}".strip()
    return FaultEvent(
        source_type="networkFailure",
        message=f"HTTP {status_line} - {method} {url}",
        context={
            "url": url,
            "method": method,
            "status": status,
            "reason": reason,
            "adapter": adapter,
        },
    )


def _response_status(response: Any) -> int | None:
    for attribute in ("status_code", "status"):
        value = getattr(response, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _response_reason(response: Any) -> str:
    for attribute in ("reason", "reason_phrase", "status_text"):
        value = getattr(response, attribute, None)
        if isinstance(value, bytes):
            value = value.decode("latin-1", errors="replace")
        if isinstance(value, str) and value:
            return value
    return ""


def _transport_name(owner: Any, attribute: str) -> str:
    owner_name = getattr(owner, "__qualname__", None) or getattr(
        owner, "__name__", type(owner).__name__
    )
    return f"{owner_name}.{attribute}"
