"""Ordered first-match classifiers.

Every keyword classification in ThreatLens (asset criticality, guidance
category, privileged identities, sensitive assets) is expressed as a
priority list of (predicate, result) pairs evaluated top to bottom, so the
reason a value classified as X can be inspected with `Classifier.match`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

Predicate = Callable[[str], bool]


def pattern(regex: str) -> Predicate:
    """Case-insensitive regex search predicate."""
    compiled = re.compile(regex, re.IGNORECASE)

    def _match(text: str) -> bool:
        return bool(compiled.search(text))

    _match.__name__ = f"pattern({regex})"
    return _match


def contains(*keywords: str) -> Predicate:
    """Case-insensitive substring predicate, true if any keyword is present."""
    lowered = tuple(k.lower() for k in keywords)

    def _match(text: str) -> bool:
        text = text.lower()
        return any(k in text for k in lowered)

    _match.__name__ = f"contains({', '.join(keywords)})"
    return _match


@dataclass(frozen=True)
class Rule(Generic[T]):
    """One entry of a classifier's priority list."""

    name: str
    predicate: Predicate
    result: T


class Classifier(Generic[T]):
    """Evaluates rules in order; the first matching rule wins."""

    def __init__(self, rules: list[Rule[T]], default: T):
        self.rules = list(rules)
        self.default = default

    def match(self, text: Optional[str]) -> Optional[Rule[T]]:
        """Return the first rule matching ``text``, or None."""
        if not text:
            return None
        for rule in self.rules:
            if rule.predicate(text):
                return rule
        return None

    def classify(self, text: Optional[str]) -> T:
        """Return the winning rule's result, or the default."""
        rule = self.match(text)
        return rule.result if rule is not None else self.default

    def __call__(self, text: Optional[str]) -> T:
        return self.classify(text)
