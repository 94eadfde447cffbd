"""Classification subsystem for FaultKit."""

from faultpack.classify.classifier import ErrorClassifier, classify
from faultpack.classify.rules import (
    DEFAULT_RULES,
    FALLBACK_TABLE,
    Classification,
    ClassificationRule,
    message_matches,
    source_type_is,
    status_in,
)
from faultpack.classify.suggestions import CATEGORY_SUGGESTIONS, suggest_fix

__all__ = [
    "ErrorClassifier",
    "Classification",
    "ClassificationRule",
    "DEFAULT_RULES",
    "FALLBACK_TABLE",
    "CATEGORY_SUGGESTIONS",
    "classify",
    "suggest_fix",
    "message_matches",
    "source_type_is",
    "status_in",
]
