"""Issue scoring and suitability rules."""

from .patterns import DEFAULT_PATTERNS, match_patterns, best_match
from .assessor import IssueAssessor, ResolutionHistory, ResolutionRecord, band
from .rules import EvaluationRule, RuleEngine, DEFAULT_RULES

__all__ = [
    'DEFAULT_PATTERNS',
    'match_patterns',
    'best_match',
    'IssueAssessor',
    'ResolutionHistory',
    'ResolutionRecord',
    'band',
    'EvaluationRule',
    'RuleEngine',
    'DEFAULT_RULES',
]
