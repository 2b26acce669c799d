"""Ordered evaluation rules deciding automation suitability.

Rules are plain value objects interpreted by ``RuleEngine``. They run in
declared order; each match may overwrite the running suitability, appends
its reasoning and adds its recommendations. A matching ``final`` rule stops
evaluation. When nothing matches, suitability stays ``unknown``.

The two safety rules run first so that nothing later can override their
veto.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional, Sequence

from issue_dispatch.exceptions import EvaluationError
from issue_dispatch.models.common import (
    Evaluation, Issue, Level, NO_MATCH, RuleOutcome, Score, Suitability
)


Predicate = Callable[[Evaluation, Issue], bool]


@dataclass(frozen=True)
class EvaluationRule:
    """A named predicate plus what a match contributes."""
    name: str
    predicate: Predicate
    suitability: Optional[Suitability]
    reasoning: str
    recommendations: FrozenSet[str] = frozenset()
    final: bool = False

    def evaluate(self, evaluation: Evaluation, issue: Issue) -> RuleOutcome:
        if not self.predicate(evaluation, issue):
            return NO_MATCH
        return RuleOutcome(
            matches=True,
            suitability=self.suitability,
            reasoning=self.reasoning,
            recommendations=self.recommendations,
            final=self.final,
        )


SECURITY_PATTERN = re.compile(
    r'\b(security|vulnerab\w*|auth|authentication|authorization|secret[- ]leak|leaked (secret|key|token)s?|'
    r'(sql |command |code )?injection|xss|csrf|credentials?|cve-\d+)\b',
    re.IGNORECASE,
)
SIMPLE_FIX_PATTERN = re.compile(r'\b(typos?|spelling|import|lint|format(ting)?)\b', re.IGNORECASE)
TEST_PATTERN = re.compile(
    r'\b(test (failure|failing|fails)|failing tests?|add(ing)? (unit |integration )?tests?|coverage)\b',
    re.IGNORECASE,
)
DOCUMENTATION_PATTERN = re.compile(r'\b(docs?|documentation|readme|comments?|docstrings?)\b', re.IGNORECASE)


def _is_security(evaluation: Evaluation, issue: Issue) -> bool:
    return 'security' in issue.normalized_labels or bool(SECURITY_PATTERN.search(issue.text))


def _is_high_complexity(evaluation: Evaluation, issue: Issue) -> bool:
    return evaluation.complexity.level == Level.HIGH or evaluation.risk.level == Level.HIGH


def _is_simple_fix(evaluation: Evaluation, issue: Issue) -> bool:
    return bool(SIMPLE_FIX_PATTERN.search(issue.text)) and evaluation.complexity.level == Level.LOW


def _is_test_related(evaluation: Evaluation, issue: Issue) -> bool:
    return bool(TEST_PATTERN.search(issue.text))


def _is_documentation(evaluation: Evaluation, issue: Issue) -> bool:
    return 'documentation' in issue.normalized_labels or bool(DOCUMENTATION_PATTERN.search(issue.text))


def _is_supervised_candidate(evaluation: Evaluation, issue: Issue) -> bool:
    return (evaluation.complexity.level == Level.MEDIUM
            and evaluation.confidence.level == Level.MEDIUM
            and evaluation.risk.level != Level.HIGH
            and evaluation.suitability == Suitability.UNKNOWN)


DEFAULT_RULES = (
    EvaluationRule(
        name='security-issues',
        predicate=_is_security,
        suitability=Suitability.LOW,
        reasoning='Security-sensitive issue requires human review',
        recommendations=frozenset({'security-review'}),
        final=True,
    ),
    EvaluationRule(
        name='high-complexity',
        predicate=_is_high_complexity,
        suitability=Suitability.LOW,
        reasoning='High complexity or high risk requires human judgment',
        recommendations=frozenset({'human-review', 'break-down-issue'}),
        final=True,
    ),
    EvaluationRule(
        name='simple-fixes',
        predicate=_is_simple_fix,
        suitability=Suitability.HIGH,
        reasoning='Simple mechanical fix suitable for automation',
        recommendations=frozenset({'auto-fix'}),
        final=True,
    ),
    EvaluationRule(
        name='test-related',
        predicate=_is_test_related,
        suitability=Suitability.HIGH,
        reasoning='Test-related work is well suited to automation',
        recommendations=frozenset({'run-tests'}),
    ),
    EvaluationRule(
        name='documentation',
        predicate=_is_documentation,
        suitability=Suitability.MEDIUM,
        reasoning='Documentation change can be drafted automatically',
        recommendations=frozenset({'docs-review'}),
    ),
    EvaluationRule(
        name='supervised-candidates',
        predicate=_is_supervised_candidate,
        suitability=Suitability.MEDIUM,
        reasoning='Moderate complexity and confidence; automation under supervision',
        recommendations=frozenset({'supervised-execution'}),
    ),
)


class RuleEngine:
    """Runs evaluation rules over assessed issues."""

    def __init__(self, rules: Sequence[EvaluationRule] = DEFAULT_RULES):
        self.rules = tuple(rules)
        self.logger = logging.getLogger(__name__)

    def evaluate(self, issue: Issue, complexity: Score, confidence: Score, risk: Score) -> Evaluation:
        """Apply the rules to an assessed issue.

        Args:
            issue: The issue being evaluated
            complexity: Complexity score from the assessor
            confidence: Confidence score from the assessor
            risk: Risk score from the assessor

        Returns:
            Evaluation with suitability, reasoning and recommendations

        Raises:
            EvaluationError: If a rule raises
        """
        evaluation = Evaluation(complexity=complexity, confidence=confidence, risk=risk)

        for rule in self.rules:
            try:
                outcome = rule.evaluate(evaluation, issue)
            except Exception as e:
                self.logger.error(f"Rule {rule.name} failed for issue {issue.id}: {e}", exc_info=True)
                raise EvaluationError(f"Rule {rule.name} failed: {e}") from e

            if not outcome.matches:
                continue

            self.logger.debug(f"Rule {rule.name} matched issue {issue.id}")
            if outcome.suitability is not None:
                evaluation.suitability = outcome.suitability
            if outcome.reasoning:
                evaluation.reasoning.append(outcome.reasoning)
            evaluation.recommendations.update(outcome.recommendations)

            if outcome.final:
                break

        if not evaluation.reasoning:
            evaluation.reasoning.append('No evaluation rule matched')

        return evaluation
