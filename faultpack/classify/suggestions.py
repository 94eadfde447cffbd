"""Remediation hints keyed by category and refined per record."""

from __future__ import annotations

from faultpack.core.models import RuntimeErrorRecord

CATEGORY_SUGGESTIONS: dict[str, str] = {
    "agent-native": (
        "Register actions before they are invoked and validate action parameters; "
        "wrap action bodies so failures surface a structured result to the caller."
    ),
    "api-integration": (
        "Check credentials and endpoint paths, handle 4xx responses explicitly, and "
        "retry 429/5xx responses with exponential backoff."
    ),
    "network-error": (
        "Check connectivity and proxy settings, set explicit request timeouts, and "
        "retry idempotent requests on transport failures."
    ),
    "data-error": (
        "Guard against missing values before attribute access and validate or "
        "parse payloads defensively before use."
    ),
    "hook-error": (
        "Declare every dependency a callback or effect reads and release "
        "subscriptions when the owner is torn down."
    ),
    "component-error": (
        "Inspect the logged stack trace, add error handling around the failing "
        "component, and render a fallback instead of failing the whole view."
    ),
    "performance-error": (
        "Profile the hot path for unbounded growth or recursion and cap caches, "
        "retries and re-renders."
    ),
    "unclassified": (
        "Classification failed for this fault; inspect the raw message and stack "
        "and add a classification rule for it."
    ),
}


def suggest_fix(record: RuntimeErrorRecord) -> str:
    """Return the most specific remediation text for one record."""
    status = record.context.get("status")
    if isinstance(status, int) and not isinstance(status, bool):
        status_hint = _status_suggestion(status)
        if status_hint is not None:
            return status_hint

    message = record.message.lower()
    if record.source_type == "networkFailure" or record.category == "network-error":
        if "timeout" in message or "timed out" in message:
            return "Request timed out. Increase the timeout or reduce the request payload size."
        if "aborted" in message or "cancel" in message:
            return "Request aborted. Check whether the caller was cancelled while the request was in flight."
        if "connection" in message or "network" in message:
            return "Network connection failed. Check connectivity, DNS and proxy configuration."

    if "not registered" in message:
        return "Register the action before it is invoked."

    if record.source_type == "agentAction":
        action = record.context.get("action")
        if action:
            return (
                f"Action '{action}' raised. Validate its parameters and handle the "
                "failure inside the action so callers receive a structured error."
            )

    return CATEGORY_SUGGESTIONS.get(record.category, CATEGORY_SUGGESTIONS["unclassified"])


def _status_suggestion(status: int) -> str | None:
    if status == 401:
        return "Authentication required. Check credentials and token validity."
    if status == 403:
        return "Access forbidden. Verify permissions and authorization scopes."
    if status == 404:
        return "Endpoint not found. Verify the API version and endpoint path."
    if status == 429:
        return "Rate limit exceeded. Throttle requests and retry with exponential backoff."
    if status >= 500:
        return "Server error. Implement retry logic with exponential backoff."
    if status >= 400:
        return f"HTTP {status} error. Check the request payload against the API documentation."
    return None
