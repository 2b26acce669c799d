"""Heuristic complexity, confidence and risk scoring of issues.

Every score is a weighted sum of factors in [0, 1], rounded to two
decimals and banded into a Level. Weights and band thresholds come from
``ScoringConfig``; the factor functions themselves are keyword heuristics.
"""

import logging
import re
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from issue_dispatch.config.settings import ScoringConfig
from issue_dispatch.exceptions import EvaluationError
from issue_dispatch.models.common import (
    Issue, IssueType, Level, PatternRule, Priority, Score
)
from issue_dispatch.sources.heuristics import infer_type
from .patterns import DEFAULT_PATTERNS, best_match


def _words(*terms: str) -> re.Pattern:
    return re.compile(r'\b(' + '|'.join(terms) + r')\b', re.IGNORECASE)


COMPLEX_VOCABULARY = _words(
    'architecture', 'architectural', 'refactor', 'refactoring', 'migration', 'migrate',
    'performance', 'concurrency', 'race condition', 'redesign', 'security', 'integration',
)
SIMPLE_VOCABULARY = _words(
    'typo', 'typos', 'spelling', 'rename', 'format', 'formatting', 'lint', 'comment',
    'comments', 'readme', 'docs', 'import',
)
TECHNICAL_TERMS = (
    'database', 'schema', 'auth', 'cache', 'async', 'thread', 'memory', 'protocol',
    'algorithm', 'distributed', 'api', 'kubernetes',
)
SCOPE_WORDS = ('across', 'all', 'multiple', 'every', 'entire')
DEPENDENCY_MARKERS = (
    re.compile(r'depends on', re.IGNORECASE),
    re.compile(r'blocked by', re.IGNORECASE),
    re.compile(r'(?<![\w&])#\d+\b'),
    re.compile(r'\bupgrade\b', re.IGNORECASE),
    re.compile(r'\bdependenc(y|ies)\b', re.IGNORECASE),
    re.compile(r'\bpackages?\b', re.IGNORECASE),
)
FILE_PATH = re.compile(
    r'[\w./-]*\w\.(py|js|ts|tsx|jsx|md|rst|txt|json|ya?ml|toml|go|rs|java|rb|css|html|cfg|ini|sql|sh)\b',
    re.IGNORECASE,
)
CODE_FENCE = re.compile(r'```')
STACK_TRACE = re.compile(
    r'(Traceback \(most recent call last\)|^\s+at [\w.$<>]+\(|^\s+File ".+", line \d+|'
    r'\b\w+(Error|Exception): )',
    re.MULTILINE,
)
CONCRETE_TARGET = re.compile(
    r'(' + FILE_PATH.pattern + r'|\b(README|CHANGELOG|LICENSE|CONTRIBUTING)\b|`[^`]+`)',
    re.IGNORECASE,
)

SEVERITY_KEYWORDS = (
    'production', 'data loss', 'outage', 'crash', 'payment', 'migration', 'corrupt', 'delete',
)
SENSITIVE_LABELS = frozenset({'security', 'breaking-change', 'production', 'data-loss', 'critical'})
NO_TESTS = _words('no tests?', 'untested', 'no test coverage', 'without tests?', 'missing tests?', 'lacks tests?')
TESTS_PRESENT = _words(
    r'tests? (pass|passes|passing|exist|exists)', 'covered by tests?', 'has tests',
    r'test coverage (exists|is good)', r'existing tests?',
)

CAPABILITY_BY_TYPE = {
    IssueType.DOCUMENTATION: 0.9,
    IssueType.TESTING: 0.85,
    IssueType.BUG: 0.8,
    IssueType.GENERAL: 0.5,
    IssueType.FEATURE: 0.4,
}
PRIORITY_RISK = {
    Priority.CRITICAL: 1.0,
    Priority.HIGH: 0.7,
    Priority.MEDIUM: 0.3,
    Priority.LOW: 0.1,
}

_TOKEN = re.compile(r'[a-z0-9]+')


def tokenize(text: str) -> FrozenSet[str]:
    """Lowercase word tokens of three or more characters."""
    return frozenset(t for t in _TOKEN.findall(text.lower()) if len(t) > 2)


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


@dataclass(frozen=True)
class ResolutionRecord:
    """A previously handled issue and whether automation resolved it."""
    issue_id: str
    tokens: FrozenSet[str]
    success: bool


class ResolutionHistory:
    """In-memory history of resolved issues used for similarity scoring."""

    def __init__(self, records: Optional[Iterable[ResolutionRecord]] = None, max_records: int = 1000):
        self._records: List[ResolutionRecord] = list(records or [])
        self._max_records = max_records
        self._lock = threading.Lock()

    def record(self, issue: Issue, success: bool) -> None:
        with self._lock:
            self._records.append(ResolutionRecord(issue.id, tokenize(issue.text), success))
            if len(self._records) > self._max_records:
                self._records = self._records[-self._max_records:]

    def similar(self, issue: Issue, threshold: float) -> List[Tuple[float, ResolutionRecord]]:
        """Return records whose similarity to the issue exceeds the threshold."""
        tokens = tokenize(issue.text)
        with self._lock:
            records = list(self._records)
        matches = []
        for record in records:
            if record.issue_id == issue.id:
                continue
            similarity = jaccard(tokens, record.tokens)
            if similarity > threshold:
                matches.append((similarity, record))
        return matches

    def __len__(self) -> int:
        return len(self._records)


def band(score: float, thresholds: Tuple[float, float]) -> Level:
    """Map a score onto low/medium/high using (low_below, medium_below)."""
    low_below, medium_below = thresholds
    if score < low_below:
        return Level.LOW
    if score < medium_below:
        return Level.MEDIUM
    return Level.HIGH


def _weighted(factors: Dict[str, float], weights) -> float:
    return round(sum(weights[name] * value for name, value in factors.items()), 2)


def _count_hits(text: str, terms: Iterable[str]) -> int:
    lowered = text.lower()
    return sum(1 for term in terms if re.search(r'\b' + re.escape(term) + r'\b', lowered))


class IssueAssessor:
    """Scores issues for complexity, confidence and risk.

    The assessor is pure: the same issue, configuration and history always
    produce the same scores.
    """

    def __init__(self, scoring: Optional[ScoringConfig] = None,
                 patterns: Tuple[PatternRule, ...] = DEFAULT_PATTERNS,
                 history: Optional[ResolutionHistory] = None):
        self.scoring = scoring or ScoringConfig()
        self.patterns = patterns
        self.history = history if history is not None else ResolutionHistory()
        self.logger = logging.getLogger(__name__)

    def assess(self, issue: Issue) -> Tuple[Score, Score, Score]:
        """Score an issue.

        Args:
            issue: Canonical issue to assess

        Returns:
            Tuple of (complexity, confidence, risk) scores

        Raises:
            EvaluationError: If any factor computation fails
        """
        try:
            complexity = self.assess_complexity(issue)
            confidence = self.assess_confidence(issue)
            risk = self.assess_risk(issue)
        except Exception as e:
            self.logger.error(f"Assessment failed for issue {issue.id}: {e}", exc_info=True)
            raise EvaluationError(f"Assessment failed for issue {issue.id}: {e}") from e

        self.logger.debug(
            f"Assessed {issue.id}: complexity={complexity.score} confidence={confidence.score} "
            f"risk={risk.score}"
        )
        return complexity, confidence, risk

    def assess_complexity(self, issue: Issue) -> Score:
        text = issue.text
        body = issue.body or ''

        if COMPLEX_VOCABULARY.search(text):
            text_complexity = 0.8
        elif SIMPLE_VOCABULARY.search(text):
            text_complexity = 0.2
        else:
            text_complexity = 0.5

        depth_hits = _count_hits(text, TECHNICAL_TERMS)
        technical_depth = min(1.0, 0.1 + 0.2 * depth_hits) if depth_hits else 0.1

        paths = len(FILE_PATH.findall(text)) + len(CODE_FENCE.findall(body)) // 2
        scope_hits = _count_hits(text, SCOPE_WORDS)
        scope_size = min(1.0, 0.1 + 0.1 * paths + 0.2 * scope_hits + 0.1 * (len(body) // 500))

        dependency_hits = sum(1 for marker in DEPENDENCY_MARKERS if marker.search(text))
        dependencies = min(1.0, 0.1 + 0.3 * dependency_hits) if dependency_hits else 0.1

        factors = {
            'textComplexity': text_complexity,
            'technicalDepth': round(technical_depth, 2),
            'scopeSize': round(scope_size, 2),
            'dependencies': round(dependencies, 2),
        }
        score = _weighted(factors, self.scoring.complexity_weights)
        return Score(score, band(score, self.scoring.complexity_thresholds), factors)

    def assess_confidence(self, issue: Issue) -> Score:
        text = issue.text
        body = issue.body or ''

        pattern = best_match(text, self.patterns)
        pattern_match = pattern.confidence if pattern else self.scoring.default_pattern_confidence

        similar = self.history.similar(issue, self.scoring.similarity_threshold)
        if similar:
            success_rate = sum(1 for _, record in similar if record.success) / len(similar)
            average_similarity = sum(similarity for similarity, _ in similar) / len(similar)
            similarity_score = success_rate * average_similarity
        else:
            similarity_score = self.scoring.default_similarity

        issue_type = issue.type
        if issue_type == IssueType.GENERAL:
            issue_type = infer_type(issue.title, issue.body, issue.labels)
        capability = CAPABILITY_BY_TYPE[issue_type]
        if pattern and pattern.automation_suitable:
            capability += 0.1
        capability = min(1.0, capability)

        length = len(body.strip())
        if length >= 200:
            context = 0.9
        elif length >= 50:
            context = 0.6
        elif length > 0:
            context = 0.4
        else:
            context = 0.3
        if CODE_FENCE.search(body) or STACK_TRACE.search(body):
            context += 0.1
        if CONCRETE_TARGET.search(issue.title):
            context += 0.5
        context = min(1.0, context)

        factors = {
            'patternMatch': pattern_match,
            'similarityScore': round(similarity_score, 2),
            'capabilityMatch': round(capability, 2),
            'contextAvailable': round(context, 2),
        }
        score = _weighted(factors, self.scoring.confidence_weights)
        return Score(score, band(score, self.scoring.confidence_thresholds), factors)

    def assess_risk(self, issue: Issue) -> Score:
        text = issue.text

        severity_hits = _count_hits(text, SEVERITY_KEYWORDS)
        severity = min(1.0, 0.3 * severity_hits)

        sensitive = 1.0 if issue.normalized_labels & SENSITIVE_LABELS else 0.0

        if NO_TESTS.search(text):
            test_absence = 1.0
        elif TESTS_PRESENT.search(text):
            test_absence = 0.0
        else:
            test_absence = 0.5

        factors = {
            'severityKeywords': round(severity, 2),
            'sensitiveLabels': sensitive,
            'testAbsence': test_absence,
            'priority': PRIORITY_RISK[issue.priority],
        }
        score = _weighted(factors, self.scoring.risk_weights)
        return Score(score, band(score, self.scoring.risk_thresholds), factors)
