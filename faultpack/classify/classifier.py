"""Deterministic, extensible fault classifier."""

from __future__ import annotations

from typing import Iterable

from faultpack.classify.rules import (
    DEFAULT_RULES,
    FALLBACK_TABLE,
    Classification,
    ClassificationRule,
)
from faultpack.core.models import FaultEvent
from faultpack.core.types import CATEGORIES, SEVERITY_RANK


class ErrorClassifier:
    """Ordered rule engine: custom rules first, then defaults, then the fallback table.

    Within each group rules are ordered by ``priority`` (highest first). Ties
    among custom rules resolve to the most recently registered rule; ties among
    defaults keep table order. The first matching predicate wins.

    ``classify`` holds no mutable state beyond the rule lists, so identical
    input always produces identical output.
    """

    def __init__(
        self,
        rules: Iterable[ClassificationRule] = (),
        *,
        default_rules: Iterable[ClassificationRule] = DEFAULT_RULES,
    ) -> None:
        self._custom: list[ClassificationRule] = []
        self._defaults: tuple[ClassificationRule, ...] = _ordered(
            [_validated(rule) for rule in default_rules]
        )
        self._ordered: tuple[ClassificationRule, ...] = self._defaults
        for rule in rules:
            self.register(rule)

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        """Rules in evaluation order."""
        return self._ordered

    def register(self, rule: ClassificationRule) -> None:
        """Prepend a custom rule ahead of the defaults."""
        self._custom.insert(0, _validated(rule))
        self._ordered = _ordered(self._custom) + self._defaults

    def classify(self, event: FaultEvent) -> Classification:
        for rule in self._ordered:
            if rule.predicate(event):
                return Classification(
                    category=rule.category,
                    severity=rule.severity,
                    rule=rule.name,
                )

        category, severity = FALLBACK_TABLE[event.source_type]
        return Classification(
            category=category,
            severity=severity,
            rule=f"fallback:{event.source_type}",
        )


def classify(event: FaultEvent) -> Classification:
    """Classify with the default rule table only."""
    return _DEFAULT_CLASSIFIER.classify(event)


def _ordered(rules: list[ClassificationRule]) -> tuple[ClassificationRule, ...]:
    # sorted() is stable, so equal priorities keep list order.
    return tuple(sorted(rules, key=lambda rule: -rule.priority))


def _validated(rule: ClassificationRule) -> ClassificationRule:
    if rule.category not in CATEGORIES:
        raise ValueError(
            f"Rule {rule.name!r} uses unsupported category {rule.category!r}. "
            f"Expected one of: {', '.join(CATEGORIES)}."
        )
    if rule.severity not in SEVERITY_RANK:
        raise ValueError(f"Rule {rule.name!r} uses unsupported severity {rule.severity!r}.")
    if not callable(rule.predicate):
        raise TypeError(f"Rule {rule.name!r} predicate must be callable.")
    return rule


_DEFAULT_CLASSIFIER = ErrorClassifier()
