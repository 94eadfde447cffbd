"""Reference-counted patch points over shared global callables.

Several capture managers may observe the same global surface (for example
``requests.Session.request``). Each surface is patched at most once; the
wrapper fans calls out to every subscribed observer and is removed when the
last subscriber leaves, so subscribers can detach in any order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import functools
import inspect
import threading
from typing import Any, Callable
import warnings


@dataclass(frozen=True, slots=True)
class PatchedCall:
    """One completed call through a patch point."""

    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    result: Any = None
    error: BaseException | None = None


Observer = Callable[[PatchedCall], None]

_MISSING = object()
_REGISTRY: dict[tuple[int, str], "PatchPoint"] = {}
_REGISTRY_LOCK = threading.RLock()


@dataclass(eq=False, slots=True)
class Subscription:
    point: "PatchPoint"
    observer: Observer
    active: bool = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self.point._unsubscribe(self)


@dataclass(eq=False, slots=True)
class PatchPoint:
    owner: Any
    attribute: str
    original: Any = None
    wrapper: Any = None
    own_attribute: bool = True
    subscriptions: list[Subscription] = field(default_factory=list)

    @property
    def installed(self) -> bool:
        return self.wrapper is not None

    def subscribe(self, observer: Observer) -> Subscription:
        with _REGISTRY_LOCK:
            registered = _REGISTRY.setdefault((id(self.owner), self.attribute), self)
            if registered is not self:
                return registered.subscribe(observer)
            if not self.installed:
                self._install()
            subscription = Subscription(point=self, observer=observer)
            self.subscriptions.append(subscription)
            return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with _REGISTRY_LOCK:
            if subscription in self.subscriptions:
                self.subscriptions.remove(subscription)
            if not self.subscriptions:
                self._uninstall()

    def _install(self) -> None:
        namespace = _own_namespace(self.owner)
        self.own_attribute = namespace is None or self.attribute in namespace
        self.original = getattr(self.owner, self.attribute)
        self.wrapper = _build_wrapper(self)
        setattr(self.owner, self.attribute, self.wrapper)

    def _uninstall(self) -> None:
        current = getattr(self.owner, self.attribute, _MISSING)
        # When another patch sits on top, our wrapper stays in its chain, inert.
        if current is self.wrapper:
            if self.own_attribute:
                setattr(self.owner, self.attribute, self.original)
            else:
                delattr(self.owner, self.attribute)
        self.wrapper = None
        self.original = None
        _REGISTRY.pop((id(self.owner), self.attribute), None)

    def _notify(self, call: PatchedCall) -> None:
        for subscription in tuple(self.subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.observer(call)
            except Exception as error:  # pragma: no cover - observers guard themselves
                warn_capture_failure(
                    f"faultkit observer failure on {_target_name(self)}: "
                    f"{error.__class__.__name__}: {error}"
                )


def patch_point(owner: Any, attribute: str) -> PatchPoint:
    """Return the shared patch point for ``owner.attribute``."""
    if not hasattr(owner, attribute):
        raise AttributeError(f"{owner!r} has no attribute {attribute!r}")
    key = (id(owner), attribute)
    with _REGISTRY_LOCK:
        point = _REGISTRY.get(key)
        if point is None:
            point = PatchPoint(owner=owner, attribute=attribute)
            _REGISTRY[key] = point
        return point


def subscribe(owner: Any, attribute: str, observer: Observer) -> Subscription:
    return patch_point(owner, attribute).subscribe(observer)


def active_patch_points() -> tuple[PatchPoint, ...]:
    with _REGISTRY_LOCK:
        return tuple(point for point in _REGISTRY.values() if point.installed)


def warn_capture_failure(message: str, *, stacklevel: int = 3) -> None:
    """Emit a capture-path ``RuntimeWarning`` that cannot abort the caller.

    Under a warnings-as-errors filter the warning is raised as an exception;
    the failure has already been recorded by then, so it is dropped here.
    """
    try:
        warnings.warn(message, RuntimeWarning, stacklevel=stacklevel)
    except Warning:
        pass


def _build_wrapper(point: PatchPoint) -> Callable[..., Any]:
    original = point.original

    if inspect.iscoroutinefunction(original):

        @functools.wraps(original)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                result = await original(*args, **kwargs)
            except BaseException as error:
                point._notify(PatchedCall(args=args, kwargs=kwargs, error=error))
                raise
            point._notify(PatchedCall(args=args, kwargs=kwargs, result=result))
            return result

        return async_wrapper

    @functools.wraps(original)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            result = original(*args, **kwargs)
        except BaseException as error:
            point._notify(PatchedCall(args=args, kwargs=kwargs, error=error))
            raise
        point._notify(PatchedCall(args=args, kwargs=kwargs, result=result))
        return result

    return wrapper


def _own_namespace(owner: Any) -> Any:
    try:
        return vars(owner)
    except TypeError:
        return None


def _target_name(point: PatchPoint) -> str:
    owner_name = getattr(point.owner, "__qualname__", None) or getattr(
        point.owner, "__name__", type(point.owner).__name__
    )
    return f"{owner_name}.{point.attribute}"
