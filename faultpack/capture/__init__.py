"""Fault capture: interceptors, patch points, sanitization and the capture manager."""

from faultpack.capture.adapters import NetworkInterceptor
from faultpack.capture.exceptions import (
    CaptureConfigError,
    CaptureError,
    InterceptorInstallError,
)
from faultpack.capture.hooks import PatchedCall, PatchPoint, Subscription, active_patch_points, subscribe
from faultpack.capture.interceptors import (
    ActionInterceptor,
    Interceptor,
    LogInterceptor,
    RejectionInterceptor,
    UncaughtExceptionInterceptor,
)
from faultpack.capture.manager import (
    CLASSIFICATION_FAILED_RULE,
    CaptureDiagnostic,
    ErrorCaptureManager,
    ErrorQuery,
    create_capture_manager,
    current_bound_manager,
)
from faultpack.capture.policy import (
    DEFAULT_CAPTURE_OPTIONS,
    CaptureOptions,
    capture_options_from_config,
    load_capture_options_from_file,
)
from faultpack.capture.sanitize import (
    DEFAULT_SANITIZATION_POLICY,
    SanitizationPolicy,
    build_sanitization_policy,
    sanitization_policy_from_config,
    sanitize_payload,
)

__all__ = [
    "ActionInterceptor",
    "CLASSIFICATION_FAILED_RULE",
    "CaptureConfigError",
    "CaptureDiagnostic",
    "CaptureError",
    "CaptureOptions",
    "DEFAULT_CAPTURE_OPTIONS",
    "DEFAULT_SANITIZATION_POLICY",
    "ErrorCaptureManager",
    "ErrorQuery",
    "Interceptor",
    "InterceptorInstallError",
    "LogInterceptor",
    "NetworkInterceptor",
    "PatchPoint",
    "PatchedCall",
    "RejectionInterceptor",
    "SanitizationPolicy",
    "Subscription",
    "UncaughtExceptionInterceptor",
    "active_patch_points",
    "build_sanitization_policy",
    "capture_options_from_config",
    "create_capture_manager",
    "current_bound_manager",
    "load_capture_options_from_file",
    "sanitization_policy_from_config",
    "sanitize_payload",
    "subscribe",
]
