"""Static library of recognizable issue patterns.

Each pattern carries the confidence that an issue matching it can be
resolved without a human, and whether it is a candidate for automation at
all. The library is read-only; build a new tuple to extend it.
"""

import re
from typing import Iterable, List, Optional, Tuple

from issue_dispatch.models.common import PatternRule


def _pattern(name: str, regex: str, keywords: Tuple[str, ...], confidence: float,
             automation_suitable: bool = True) -> PatternRule:
    return PatternRule(
        name=name,
        pattern=re.compile(regex, re.IGNORECASE),
        keywords=keywords,
        confidence=confidence,
        automation_suitable=automation_suitable,
    )


DEFAULT_PATTERNS: Tuple[PatternRule, ...] = (
    _pattern('typo-fix', r'\b(typo|typos|spelling|misspell\w*|grammar)\b',
             ('typo', 'spelling', 'misspelled'), 0.9),
    _pattern('lint-error', r'\b(lint|linter|linting|eslint|flake8|pylint|ruff)\b',
             ('lint', 'eslint', 'flake8'), 0.85),
    _pattern('missing-import', r'\b(missing import|unused import|import error|importerror|'
                               r'modulenotfounderror|cannot find module)\b',
             ('import',), 0.85),
    _pattern('formatting', r'\b(format(ting)?|indentation|whitespace|prettier|black)\b',
             ('format', 'formatting', 'indentation'), 0.85),
    _pattern('dependency-bump', r'\b(bump|upgrade|update)\b.*\b(dependency|dependencies|package|version)\b',
             ('bump', 'upgrade dependency'), 0.75),
    _pattern('test-failure', r'\b(test(s)? (fail(s|ing|ed)?|broken)|failing test(s)?|flaky test(s)?)\b',
             ('failing test', 'test failure'), 0.7),
    _pattern('add-tests', r'\b(add(ing)? (unit |integration )?tests?|test coverage|missing tests?)\b',
             ('add tests', 'coverage'), 0.7),
    _pattern('null-reference', r'\b(null pointer|nullpointerexception|null reference|'
                               r'undefined is not|nonetype|cannot read propert(y|ies) of (null|undefined))\b',
             ('null', 'undefined', 'nonetype'), 0.6),
    _pattern('documentation-update', r'\b(readme|docs?|documentation|docstring|changelog)\b',
             ('readme', 'docs', 'documentation'), 0.8),
    _pattern('performance-regression', r'\b(slow(er|ness)?|performance|latency|regression|memory leak)\b',
             ('performance', 'slow', 'latency'), 0.3, automation_suitable=False),
    _pattern('security-vulnerability', r'\b(security|vulnerab\w*|cve-\d+|injection|xss|csrf|exploit)\b',
             ('security', 'vulnerability', 'cve'), 0.2, automation_suitable=False),
)


def match_patterns(text: str, patterns: Iterable[PatternRule] = DEFAULT_PATTERNS) -> List[PatternRule]:
    """Return every pattern matching the text, highest confidence first."""
    matched = [p for p in patterns if p.matches(text)]
    return sorted(matched, key=lambda p: p.confidence, reverse=True)


def best_match(text: str, patterns: Iterable[PatternRule] = DEFAULT_PATTERNS) -> Optional[PatternRule]:
    """Return the highest-confidence matching pattern, if any."""
    matched = match_patterns(text, patterns)
    return matched[0] if matched else None
