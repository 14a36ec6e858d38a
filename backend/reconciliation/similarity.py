"""
Text Similarity Scoring

Scores how alike two free-text strings are (merchant names, vendor names,
income sources). All scorers report on a fixed 0-100 scale; the matching
engine converts to 0-1 once via normalise_similarity().

Default heuristics, best of:
- SequenceMatcher ratio
- containment (one string inside the other) = 80
- word overlap (shared words / longest word list)
"""

import re
from difflib import SequenceMatcher
from typing import Protocol, Optional


SIMILARITY_SCALE = 100.0
CONTAINMENT_SCORE = 80.0

_WORD_SPLIT = re.compile(r"\s+")


class SimilarityScorer(Protocol):
    """Anything that can score two strings on the 0-100 scale"""

    def score(self, a: str, b: str) -> float:
        ...


class SequenceSimilarityScorer:
    """
    Default case-insensitive scorer.

    Empty input on either side scores 0 so that blank descriptions never
    contribute to a match.
    """

    def score(self, a: Optional[str], b: Optional[str]) -> float:
        s1 = (a or "").lower().strip()
        s2 = (b or "").lower().strip()

        if not s1 or not s2:
            return 0.0

        if s1 == s2:
            return SIMILARITY_SCALE

        ratio = SequenceMatcher(None, s1, s2).ratio()

        containment = 0.0
        if s1 in s2 or s2 in s1:
            containment = CONTAINMENT_SCORE / SIMILARITY_SCALE

        words1 = _WORD_SPLIT.split(s1)
        words2 = _WORD_SPLIT.split(s2)
        common = len([w for w in words1 if w in words2])
        overlap = common / max(len(words1), len(words2))

        best = max(ratio, containment, overlap)
        return round(min(best, 1.0) * SIMILARITY_SCALE, 2)


def normalise_similarity(score: float) -> float:
    """Convert a 0-100 similarity score to 0-1, clamped"""
    return max(0.0, min(score / SIMILARITY_SCALE, 1.0))


default_scorer = SequenceSimilarityScorer()
