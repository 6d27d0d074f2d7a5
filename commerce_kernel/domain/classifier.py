"""
EscalationClassifier -- rule-based detection of messages the agent should
hand to a human.

Responsibility:
    Decide, from the text of one inbound buyer message, whether the
    conversation must be escalated and why.  Pure and deterministic: the same
    text and rules always give the same Classification.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Rules are injected
    (built from configuration by ``commerce_config.bridges``); this module
    never reads configuration itself.

Invariants enforced:
    - Fixed priority: defect_refund > discount > delivery > complexity.
      Families are evaluated in CLASSIFICATION_PRIORITY order no matter how
      they were supplied; the first family with any match wins.
    - Within that family, ``matched`` is the keyword found earliest in the
      text (list order breaks ties at the same position), so the note an
      operator reads quotes what the buyer said first.
    - Keywords match case-insensitively at word starts, so "refund" matches
      "refunded" but "deal" does not match "ideal".
    - No match => Classification(escalate=False).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from commerce_kernel.domain.dtos import Classification
from commerce_kernel.domain.values import EscalationReason

CLASSIFICATION_PRIORITY: tuple[EscalationReason, ...] = (
    EscalationReason.DEFECT_REFUND,
    EscalationReason.DISCOUNT,
    EscalationReason.DELIVERY,
)


@dataclass(frozen=True)
class KeywordRule:
    """A keyword family mapped to one escalation reason."""

    reason: EscalationReason
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class ComplexityRule:
    """Low-confidence signal: very long text or many questions."""

    max_length: int = 200
    max_question_marks: int = 2

    def matches(self, text: str) -> bool:
        return len(text) > self.max_length or text.count("?") > self.max_question_marks


@dataclass(frozen=True)
class EscalationRules:
    keyword_rules: tuple[KeywordRule, ...]
    complexity: ComplexityRule = ComplexityRule()


class EscalationClassifier:
    """
    Classifies inbound text against keyword families and a complexity rule.

    Contract:
        ``classify`` never raises for any string input and never consults
        anything but its rules.
    """

    def __init__(self, rules: EscalationRules):
        self._rules = rules
        by_reason = {rule.reason: rule for rule in rules.keyword_rules}
        unknown = set(by_reason) - set(CLASSIFICATION_PRIORITY)
        if unknown:
            raise ValueError(
                "Keyword families must be one of "
                f"{[r.value for r in CLASSIFICATION_PRIORITY]}, got "
                f"{sorted(r.value for r in unknown)}"
            )
        self._compiled: list[tuple[EscalationReason, list[tuple[str, re.Pattern]]]] = []
        for reason in CLASSIFICATION_PRIORITY:
            rule = by_reason.get(reason)
            if rule is None:
                continue
            patterns = [
                (kw, re.compile(r"(?<!\w)" + re.escape(kw.casefold())))
                for kw in rule.keywords
                if kw.strip()
            ]
            self._compiled.append((reason, patterns))

    @property
    def rules(self) -> EscalationRules:
        return self._rules

    def classify(self, text: str) -> Classification:
        normalized = (text or "").casefold()

        for reason, patterns in self._compiled:
            hits = [
                (found.start(), index, keyword)
                for index, (keyword, pattern) in enumerate(patterns)
                if (found := pattern.search(normalized)) is not None
            ]
            if hits:
                _, _, keyword = min(hits)
                return Classification(escalate=True, reason=reason, matched=keyword)

        if self._rules.complexity.matches(normalized):
            return Classification(
                escalate=True,
                reason=EscalationReason.COMPLEXITY,
                matched="complexity",
            )

        return Classification.none()
