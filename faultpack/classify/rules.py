"""Classification rules and the default rule table.

Rules are evaluated over a :class:`FaultEvent`. Matching is text based
(lower-cased message and stack) plus the structured context an interceptor
attached, most notably the HTTP ``status`` of network failures.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable

from faultpack.core.models import FaultEvent

Predicate = Callable[[FaultEvent], bool]


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """Maps faults matching ``predicate`` to a category and severity."""

    name: str
    predicate: Predicate
    category: str
    severity: str
    priority: int = 0


@dataclass(frozen=True, slots=True)
class Classification:
    category: str
    severity: str
    rule: str


# Used when no rule matches.
FALLBACK_TABLE: dict[str, tuple[str, str]] = {
    "log": ("component-error", "medium"),
    "uncaughtException": ("component-error", "critical"),
    "unhandledRejection": ("data-error", "medium"),
    "networkFailure": ("api-integration", "high"),
    "agentAction": ("agent-native", "critical"),
}


def _message(event: FaultEvent) -> str:
    return event.message.lower()


def message_matches(pattern: str) -> Predicate:
    """Build a predicate matching a case-insensitive regex against the message."""
    compiled = re.compile(pattern, re.IGNORECASE)

    def predicate(event: FaultEvent) -> bool:
        return compiled.search(event.message) is not None

    return predicate


def source_type_is(*source_types: str) -> Predicate:
    wanted = frozenset(source_types)

    def predicate(event: FaultEvent) -> bool:
        return event.source_type in wanted

    return predicate


def status_in(low: int, high: int) -> Predicate:
    def predicate(event: FaultEvent) -> bool:
        status = event.status
        return status is not None and low <= status <= high

    return predicate


def _contains_any(haystack: str, needles: tuple[str, ...]) -> bool:
    return any(needle in haystack for needle in needles)


_AUTH_STATUSES = frozenset({401, 403})
_AUTH_KEYWORDS = re.compile(r"\b(401|403|unauthori[sz]ed|forbidden|authentication|authori[sz]ation)\b")
_AGENT_KEYWORDS = re.compile(r"\bagent\b|\bagent[-_ ]?actions?\b|\binterface\b|schema\.org|dual-interface")
_AGENT_STACK_MARKERS = ("agentinterfaces", "agentactions", "agent_actions")
_API_KEYWORDS = re.compile(r"\bapi\b|\bhttp\s+\d{3}\b|\b(429|500|502|503|504)\b|smugmug|gemini|generativelanguage")
_NETWORK_KEYWORDS = (
    "network",
    "connection",
    "connect timeout",
    "timeout",
    "timed out",
    "aborted",
    "fetch",
    "dns",
    "unreachable",
)
_NULL_DEREFERENCE = (
    "cannot read property",
    "cannot read properties",
    "undefined is not",
    "'nonetype' object",
    "nonetype object",
)
_HOOK_KEYWORDS = (
    "hook",
    "useeffect",
    "usememo",
    "usecallback",
    "usestate",
    "dependency",
)
_DATA_KEYWORDS = (
    "null",
    "undefined",
    "cannot read",
    "cannot access",
    "parse",
    "json",
    "invalid",
    "decode",
    "keyerror",
)
_PERFORMANCE_KEYWORDS = (
    "memory",
    "leak",
    "performance",
    "too many re-renders",
    "maximum update depth",
    "recursion depth",
)


def _is_auth_failure(event: FaultEvent) -> bool:
    if event.status is not None:
        return event.status in _AUTH_STATUSES
    return _AUTH_KEYWORDS.search(_message(event)) is not None


def _is_agent_message(event: FaultEvent) -> bool:
    if _AGENT_KEYWORDS.search(_message(event)) is not None:
        return True
    return _contains_any((event.stack or "").lower(), _AGENT_STACK_MARKERS)


def _is_transport_failure(event: FaultEvent) -> bool:
    return event.source_type == "networkFailure" and event.status is None


def _is_client_error(event: FaultEvent) -> bool:
    status = event.status
    return status is not None and 400 <= status < 500


def _is_api_message(event: FaultEvent) -> bool:
    return _API_KEYWORDS.search(_message(event)) is not None


def _is_network_message(event: FaultEvent) -> bool:
    return _contains_any(_message(event), _NETWORK_KEYWORDS)


def _is_null_dereference(event: FaultEvent) -> bool:
    return _contains_any(_message(event), _NULL_DEREFERENCE)


def _is_hook_message(event: FaultEvent) -> bool:
    return _contains_any(_message(event), _HOOK_KEYWORDS)


def _is_data_message(event: FaultEvent) -> bool:
    return _contains_any(_message(event), _DATA_KEYWORDS)


def _is_performance_message(event: FaultEvent) -> bool:
    return _contains_any(_message(event), _PERFORMANCE_KEYWORDS)


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        name="agent-action-failure",
        predicate=source_type_is("agentAction"),
        category="agent-native",
        severity="critical",
        priority=130,
    ),
    ClassificationRule(
        name="auth-failure",
        predicate=_is_auth_failure,
        category="api-integration",
        severity="critical",
        priority=120,
    ),
    ClassificationRule(
        name="agent-native-message",
        predicate=_is_agent_message,
        category="agent-native",
        severity="critical",
        priority=110,
    ),
    ClassificationRule(
        name="network-transport-failure",
        predicate=_is_transport_failure,
        category="network-error",
        severity="high",
        priority=100,
    ),
    ClassificationRule(
        name="rate-limited",
        predicate=status_in(429, 429),
        category="api-integration",
        severity="high",
        priority=90,
    ),
    ClassificationRule(
        name="server-error",
        predicate=status_in(500, 599),
        category="api-integration",
        severity="high",
        priority=80,
    ),
    ClassificationRule(
        name="client-error",
        predicate=_is_client_error,
        category="api-integration",
        severity="medium",
        priority=70,
    ),
    ClassificationRule(
        name="api-message",
        predicate=_is_api_message,
        category="api-integration",
        severity="high",
        priority=60,
    ),
    ClassificationRule(
        name="network-message",
        predicate=_is_network_message,
        category="network-error",
        severity="high",
        priority=50,
    ),
    ClassificationRule(
        name="null-dereference",
        predicate=_is_null_dereference,
        category="data-error",
        severity="high",
        priority=40,
    ),
    ClassificationRule(
        name="hook-message",
        predicate=_is_hook_message,
        category="hook-error",
        severity="medium",
        priority=30,
    ),
    ClassificationRule(
        name="data-validation",
        predicate=_is_data_message,
        category="data-error",
        severity="medium",
        priority=20,
    ),
    ClassificationRule(
        name="performance-message",
        predicate=_is_performance_message,
        category="performance-error",
        severity="low",
        priority=10,
    ),
)
