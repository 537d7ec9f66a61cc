"""
Deterministic importance heuristic for events the extractor did not score.
"""

import math
import re

DECISION_KEYWORDS = (
    'recommend', 'suggest', 'decide', 'chose', 'selected', 'will use', 'going with', 'strategy', 'plan', 'approach',
    'solution', 'resolved', 'concluded', 'agreed', 'determined', 'confirmed', 'approved', 'rejected'
)

HIGH_VALUE_KEYWORDS = (
    'important', 'critical', 'urgent', 'deadline', 'budget', 'contract', 'deal', 'launch', 'release', 'migration',
    'issue', 'problem', 'blocked', 'risk', 'security', 'compliance', 'legal', 'revenue', 'customer'
)

POSITIVE_FEEDBACK = re.compile(r'thank|great|perfect|exactly|confirmed|approved|works')

BASE_SCORE = 0.3


def score_importance(text: str) -> float:
    """Score text in [0, 1] from decision language, high-stakes terms, length and tone."""
    lower = (text or '').lower()
    score = BASE_SCORE

    decision_hits = sum(1 for keyword in DECISION_KEYWORDS if keyword in lower)
    score += min(decision_hits * 0.08, 0.3)

    high_value_hits = sum(1 for keyword in HIGH_VALUE_KEYWORDS if keyword in lower)
    score += min(high_value_hits * 0.05, 0.15)

    word_count = len(lower.split())
    score += min(math.log10(word_count + 1) / 5, 0.1)

    if '?' in lower:
        score += 0.05

    if POSITIVE_FEEDBACK.search(lower):
        score += 0.05

    return min(score, 1.0)
