"""Text similarity between item titles, descriptions and tags using rapidfuzz."""

from __future__ import annotations

import logging
import re
from typing import Any

from rapidfuzz import fuzz

from hopelink.matching.config import FuzzyMatchConfig

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9]+")


def tokenize(text: str | None) -> set[str]:
    """Lowercase word tokens of a string."""
    if not text:
        return set()
    return set(_WORD.findall(text.lower()))


def jaccard(a: set[str], b: set[str]) -> float:
    """Overlap of two token sets, 0 when either is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class FuzzyMatcher:
    """Fuzzy string matching using rapidfuzz."""

    def __init__(self, config: FuzzyMatchConfig | None = None):
        """
        Initialize fuzzy matcher.

        Args:
            config: Fuzzy matching configuration
        """
        self.config = config or FuzzyMatchConfig()

    def token_set_ratio(self, str1: str | None, str2: str | None) -> float:
        """
        Order-independent similarity that tolerates extra words.

        "Rice sacks 25kg" vs "rice" scores high, which suits short request
        titles against longer donation titles.

        Returns:
            Similarity ratio (0-1), 0 below ``min_similarity``
        """
        if not str1 or not str2:
            return 0.0

        score = fuzz.token_set_ratio(str1.lower(), str2.lower()) / 100.0
        return score if score >= self.config.min_similarity else 0.0

    def item_similarity(
        self,
        title1: str | None,
        title2: str | None,
        tags1: list[str] | None = None,
        tags2: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Compare two items by title and tags.

        Args:
            title1: Offered item title
            title2: Needed item title
            tags1: Offered item tags
            tags2: Needed item tags

        Returns:
            Dict of individual scores plus ``best`` (0-1)
        """
        title_words = jaccard(tokenize(title1), tokenize(title2))
        title_fuzzy = (
            self.token_set_ratio(title1, title2) if self.config.use_fuzzy_titles else 0.0
        )
        tag_overlap = jaccard(
            {t.strip().lower() for t in tags1 or [] if t and t.strip()},
            {t.strip().lower() for t in tags2 or [] if t and t.strip()},
        )

        scores = {
            "title_jaccard": round(title_words, 4),
            "title_fuzzy": round(title_fuzzy, 4),
            "tag_overlap": round(tag_overlap, 4),
        }
        scores["best"] = max(scores.values())
        return scores
