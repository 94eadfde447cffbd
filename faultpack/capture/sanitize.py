"""Credential masking for parameters and context captured with a fault."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Mapping

from faultpack.capture.exceptions import CaptureConfigError
from faultpack.core.canonical import to_json_safe

SENSITIVE_FIELD_NAMES = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "x-api-key",
        "api-key",
        "apikey",
        "api_key",
        "token",
        "access_token",
        "refresh_token",
        "id_token",
        "oauth_token",
        "oauth_token_secret",
        "oauth_signature",
        "consumer_secret",
        "client_secret",
        "password",
        "passwd",
        "secret",
        "private_key",
        "credentials",
        "set-cookie",
        "cookie",
    }
)

# Any key containing one of these fragments is treated as credential-like.
SENSITIVE_NAME_FRAGMENTS = (
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "credential",
    "authorization",
)

SECRET_VALUE_PATTERNS = (
    re.compile(r"\bsk-[A-Za-z0-9_-]{10,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bghp_[A-Za-z0-9]{20,}\b"),
    re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]{8,}"),
    re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\b"),
)


@dataclass(frozen=True, slots=True)
class SanitizationPolicy:
    """Which keys and values are masked before they enter a fault record."""

    enabled: bool = True
    mask: str = "[REDACTED]"
    sensitive_field_names: frozenset[str] = field(default_factory=lambda: SENSITIVE_FIELD_NAMES)
    sensitive_name_fragments: tuple[str, ...] = SENSITIVE_NAME_FRAGMENTS
    secret_value_patterns: tuple[re.Pattern[str], ...] = field(
        default_factory=lambda: SECRET_VALUE_PATTERNS
    )

    def is_sensitive_key(self, key: str) -> bool:
        lowered = key.strip().lower()
        if lowered in self.sensitive_field_names:
            return True
        return any(fragment in lowered for fragment in self.sensitive_name_fragments)


DEFAULT_SANITIZATION_POLICY = SanitizationPolicy()


def build_sanitization_policy(
    *,
    enabled: bool = True,
    mask: str = "[REDACTED]",
    base_policy: SanitizationPolicy = DEFAULT_SANITIZATION_POLICY,
    extra_sensitive_field_names: tuple[str, ...] = (),
    extra_secret_value_patterns: tuple[str, ...] = (),
) -> SanitizationPolicy:
    """Extend a base policy; the defaults can be added to but never weakened."""
    if not mask:
        raise CaptureConfigError("Sanitization mask cannot be empty.")

    names = set(base_policy.sensitive_field_names)
    for name in extra_sensitive_field_names:
        if not isinstance(name, str):
            raise CaptureConfigError("extra_sensitive_field_names must contain strings.")
        if name.strip():
            names.add(name.strip().lower())

    patterns = list(base_policy.secret_value_patterns)
    for pattern in extra_secret_value_patterns:
        if not isinstance(pattern, str):
            raise CaptureConfigError("extra_secret_value_patterns must contain strings.")
        try:
            patterns.append(re.compile(pattern))
        except re.error as error:
            raise CaptureConfigError(
                f"Invalid regex in 'extra_secret_value_patterns': {pattern!r} ({error})"
            ) from error

    return SanitizationPolicy(
        enabled=enabled,
        mask=mask,
        sensitive_field_names=frozenset(names),
        sensitive_name_fragments=base_policy.sensitive_name_fragments,
        secret_value_patterns=tuple(patterns),
    )


def sanitization_policy_from_config(config: Mapping[str, Any]) -> SanitizationPolicy:
    """Create a sanitization policy from a config mapping."""
    supported_keys = {
        "enabled",
        "mask",
        "extra_sensitive_field_names",
        "extra_secret_value_patterns",
    }
    unknown = sorted(set(config.keys()) - supported_keys)
    if unknown:
        raise CaptureConfigError("Unsupported sanitization config keys: " + ", ".join(unknown))

    enabled = config.get("enabled", True)
    if not isinstance(enabled, bool):
        raise CaptureConfigError("sanitization config key 'enabled' must be a boolean.")
    mask = config.get("mask", "[REDACTED]")
    if not isinstance(mask, str):
        raise CaptureConfigError("sanitization config key 'mask' must be a string.")

    return build_sanitization_policy(
        enabled=enabled,
        mask=mask,
        extra_sensitive_field_names=_read_string_list(config, "extra_sensitive_field_names"),
        extra_secret_value_patterns=_read_string_list(config, "extra_secret_value_patterns"),
    )


def sanitize_payload(
    value: Any,
    *,
    policy: SanitizationPolicy = DEFAULT_SANITIZATION_POLICY,
) -> Any:
    """Return a JSON-safe copy of ``value`` with credential-like data masked."""
    safe = to_json_safe(value)
    if not policy.enabled:
        return safe
    return _sanitize(safe, policy=policy)


def _sanitize(value: Any, *, policy: SanitizationPolicy) -> Any:
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for key, item in value.items():
            if policy.is_sensitive_key(key):
                sanitized[key] = policy.mask
                continue
            sanitized[key] = _sanitize(item, policy=policy)
        return sanitized

    if isinstance(value, list):
        return [_sanitize(item, policy=policy) for item in value]

    if isinstance(value, str):
        masked = value
        for pattern in policy.secret_value_patterns:
            masked = pattern.sub(policy.mask, masked)
        return masked

    return value


def _read_string_list(config: Mapping[str, Any], key: str) -> tuple[str, ...]:
    if key not in config:
        return ()
    value = config[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise CaptureConfigError(
            f"sanitization config key '{key}' must be a JSON array of strings."
        )
    return tuple(item.strip() for item in value if item.strip())
