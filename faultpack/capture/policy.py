"""Capture options: which fault surfaces a manager observes and how."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import json
import logging
from pathlib import Path
import re
from typing import Any, Mapping

from faultpack.capture.exceptions import CaptureConfigError
from faultpack.capture.sanitize import (
    DEFAULT_SANITIZATION_POLICY,
    SanitizationPolicy,
    sanitization_policy_from_config,
)

SUPPORTED_NETWORK_ADAPTERS = ("requests", "httpx")

_BOOLEAN_KEYS = {
    "captureLogErrors": "capture_log_errors",
    "capture_log_errors": "capture_log_errors",
    "captureNetworkErrors": "capture_network_errors",
    "capture_network_errors": "capture_network_errors",
    "captureUnhandledRejections": "capture_unhandled_rejections",
    "capture_unhandled_rejections": "capture_unhandled_rejections",
    "captureAgentErrors": "capture_agent_errors",
    "capture_agent_errors": "capture_agent_errors",
    "captureUncaughtExceptions": "capture_uncaught_exceptions",
    "capture_uncaught_exceptions": "capture_uncaught_exceptions",
    "suppressDefaultRejectionHandling": "suppress_default_rejection_handling",
    "suppress_default_rejection_handling": "suppress_default_rejection_handling",
}

_LIST_KEYS = {
    "ignorePatterns": "ignore_patterns",
    "ignore_patterns": "ignore_patterns",
    "networkAdapters": "network_adapters",
    "network_adapters": "network_adapters",
}

_LEVEL_KEYS = ("logLevel", "log_level")
_SANITIZATION_KEYS = ("sanitization",)


@dataclass(frozen=True, slots=True)
class CaptureOptions:
    """Options a capture manager composes its interceptors from."""

    capture_log_errors: bool = True
    capture_network_errors: bool = True
    capture_unhandled_rejections: bool = True
    capture_agent_errors: bool = True
    capture_uncaught_exceptions: bool = True
    log_level: int = logging.ERROR
    ignore_patterns: tuple[str, ...] = ()
    network_adapters: tuple[str, ...] = SUPPORTED_NETWORK_ADAPTERS
    suppress_default_rejection_handling: bool = False
    sanitization: SanitizationPolicy = field(default_factory=lambda: DEFAULT_SANITIZATION_POLICY)

    def __post_init__(self) -> None:
        for adapter in self.network_adapters:
            if adapter not in SUPPORTED_NETWORK_ADAPTERS:
                raise CaptureConfigError(
                    f"Unsupported network adapter: {adapter}. "
                    f"Expected one of: {', '.join(SUPPORTED_NETWORK_ADAPTERS)}."
                )
        for pattern in self.ignore_patterns:
            try:
                re.compile(pattern)
            except re.error as error:
                raise CaptureConfigError(
                    f"Invalid regex in 'ignore_patterns': {pattern!r} ({error})"
                ) from error

    def with_overrides(self, **changes: Any) -> "CaptureOptions":
        return replace(self, **changes)

    def is_ignored(self, message: str) -> bool:
        return any(re.search(pattern, message) for pattern in self.ignore_patterns)


DEFAULT_CAPTURE_OPTIONS = CaptureOptions()


def capture_options_from_config(
    config: Mapping[str, Any],
    *,
    base_options: CaptureOptions = DEFAULT_CAPTURE_OPTIONS,
) -> CaptureOptions:
    """Create capture options from a mapping with camelCase or snake_case keys."""
    supported = set(_BOOLEAN_KEYS) | set(_LIST_KEYS) | set(_LEVEL_KEYS) | set(_SANITIZATION_KEYS)
    unknown = sorted(set(config.keys()) - supported)
    if unknown:
        raise CaptureConfigError("Unsupported capture option keys: " + ", ".join(unknown))

    changes: dict[str, Any] = {}
    for key, value in config.items():
        if key in _BOOLEAN_KEYS:
            if not isinstance(value, bool):
                raise CaptureConfigError(f"capture option '{key}' must be a boolean.")
            changes[_BOOLEAN_KEYS[key]] = value
        elif key in _LIST_KEYS:
            if not isinstance(value, (list, tuple)) or not all(
                isinstance(item, str) for item in value
            ):
                raise CaptureConfigError(f"capture option '{key}' must be a list of strings.")
            changes[_LIST_KEYS[key]] = tuple(value)
        elif key in _LEVEL_KEYS:
            changes["log_level"] = _parse_log_level(key, value)
        else:
            if isinstance(value, SanitizationPolicy):
                changes["sanitization"] = value
            elif isinstance(value, Mapping):
                changes["sanitization"] = sanitization_policy_from_config(value)
            else:
                raise CaptureConfigError(f"capture option '{key}' must be an object.")

    return base_options.with_overrides(**changes)


def load_capture_options_from_file(
    path: str | Path,
    *,
    base_options: CaptureOptions = DEFAULT_CAPTURE_OPTIONS,
) -> CaptureOptions:
    """Load capture options from a JSON file."""
    config_path = Path(path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise
    except json.JSONDecodeError as error:
        raise CaptureConfigError(
            f"Invalid capture options JSON ({config_path}): {error}"
        ) from error

    if not isinstance(raw, dict):
        raise CaptureConfigError(f"Capture options must be a JSON object ({config_path}).")

    return capture_options_from_config(raw, base_options=base_options)


def coerce_capture_options(
    value: "CaptureOptions | Mapping[str, Any] | None",
    *,
    default: CaptureOptions = DEFAULT_CAPTURE_OPTIONS,
) -> CaptureOptions:
    if value is None:
        return default
    if isinstance(value, CaptureOptions):
        return value
    if isinstance(value, Mapping):
        return capture_options_from_config(value)
    raise CaptureConfigError(
        f"Capture options must be CaptureOptions, a mapping or None, not {type(value).__name__}."
    )


def _parse_log_level(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.strip().upper())
        if isinstance(level, int):
            return level
    raise CaptureConfigError(
        f"capture option '{key}' must be a logging level name or number, got {value!r}."
    )
