"""
similarity.py
--------------
Normalized edit-distance similarity between merchant strings.

Scores are 1 - levenshtein / max_len over the normalized forms, so they
always fall in [0.0, 1.0]. Normalization is case- and whitespace-insensitive:
"MY  SHOP" and "my shop" score 1.0.
"""

import re
from dataclasses import dataclass
from typing import Iterable

from rapidfuzz.distance import Levenshtein

from config.config_loader import get_similarity_config


_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class SimilarityMatch:
    """Best candidate returned by find_best_match."""
    match: str
    score: float


class SimilarityScorer:
    """
    Levenshtein-based string similarity.

    Usage:
        scorer = SimilarityScorer()
        scorer.similarity("MY CHICKEN SHOP", "MY CHICKEN STORE")
    """

    def __init__(self, threshold: float | None = None):
        self.config = get_similarity_config()
        self.threshold = threshold if threshold is not None else self.config["default_threshold"]

    @staticmethod
    def normalize(s: str) -> str:
        """Uppercase, collapse whitespace runs to a single space, trim."""
        return _WHITESPACE_RE.sub(" ", s.upper()).strip()

    @staticmethod
    def levenshtein_distance(s1: str, s2: str) -> int:
        """Edit distance; insert, delete and substitute each cost 1."""
        return Levenshtein.distance(s1, s2)

    def similarity(self, a: str, b: str) -> float:
        s1 = self.normalize(a)
        s2 = self.normalize(b)

        if s1 == s2:
            return 1.0
        if not s1 or not s2:
            return 0.0

        distance = self.levenshtein_distance(s1, s2)
        return 1.0 - distance / max(len(s1), len(s2))

    def is_similar(self, a: str, b: str, threshold: float | None = None) -> bool:
        threshold = self.threshold if threshold is None else threshold
        return self.similarity(a, b) >= threshold

    def find_best_match(
        self, query: str, candidates: Iterable[str], threshold: float | None = None
    ) -> SimilarityMatch | None:
        """
        Returns the candidate with the strictly highest score >= threshold.

        Ties keep the first candidate seen. None if nothing clears the threshold.
        """
        threshold = self.threshold if threshold is None else threshold
        best: SimilarityMatch | None = None

        for candidate in candidates:
            score = self.similarity(query, candidate)
            if score < threshold:
                continue
            if best is None or score > best.score:
                best = SimilarityMatch(match=candidate, score=score)

        return best
