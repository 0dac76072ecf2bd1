"""Query scoring.

``overall`` is a weighted sum of relevance, diversity and coverage with
non-negative weights normalized to 1, so it never decreases when any one
sub-score increases.
"""
from __future__ import annotations

from dataclasses import dataclass

from contact_finder.config import settings
from contact_finder.models.queries import GeneratedQuery, QueryScores
from contact_finder.models.schemas import SearchCriteria
from contact_finder.tools.web_utils import jaccard_similarity, normalize_text, tokenize

MEDIA_KEYWORDS = frozenset({"journalist", "reporter", "media", "editor", "writer", "author", "contact"})

COUNTRY_SYNONYMS: dict[str, tuple[str, ...]] = {
    "us": ("us", "usa", "united states", "america", "american"),
    "gb": ("gb", "uk", "united kingdom", "britain", "british"),
    "ca": ("ca", "canada", "canadian"),
    "au": ("au", "australia", "australian"),
    "de": ("de", "germany", "german"),
    "fr": ("fr", "france", "french"),
}

# relevance contribution per criterion dimension when fully matched
CRITERIA_WEIGHTS = {"categories": 0.15, "beats": 0.15, "countries": 0.1, "topics": 0.1}


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    relevance: float = 0.4
    diversity: float = 0.25
    coverage: float = 0.35

    def normalized(self) -> "ScoreWeights":
        parts = [max(self.relevance, 0.0), max(self.diversity, 0.0), max(self.coverage, 0.0)]
        total = sum(parts)
        if total <= 0:
            return ScoreWeights(1 / 3, 1 / 3, 1 / 3)
        return ScoreWeights(*(p / total for p in parts))

    @classmethod
    def from_settings(cls) -> "ScoreWeights":
        return cls(
            relevance=settings.query_weight_relevance,
            diversity=settings.query_weight_diversity,
            coverage=settings.query_weight_coverage,
        )


def _term_variants(dimension: str, value: str) -> tuple[str, ...]:
    lowered = value.lower().strip()
    if dimension == "countries":
        for synonyms in COUNTRY_SYNONYMS.values():
            if lowered in synonyms:
                return synonyms
    return (lowered,)


def mentions(query_text: str, dimension: str, value: str) -> bool:
    """True when the query names ``value`` (or a known synonym)."""
    normalized = f" {normalize_text(query_text)} "
    for variant in _term_variants(dimension, value):
        needle = normalize_text(variant)
        if needle and f" {needle} " in normalized:
            return True
    return False


def covered_dimensions(query_text: str, criteria: SearchCriteria) -> set[str]:
    return {
        dimension
        for dimension, values in criteria.requested_dimensions().items()
        if any(mentions(query_text, dimension, value) for value in values)
    }


class QueryScorer:
    def __init__(self, weights: ScoreWeights | None = None):
        self.weights = (weights or ScoreWeights.from_settings()).normalized()

    def relevance(self, query_text: str, original: str, criteria: SearchCriteria) -> float:
        tokens = tokenize(query_text)
        score = 0.5 + jaccard_similarity(tokenize(original), tokens) * 0.3
        requested = criteria.requested_dimensions()
        for dimension, weight in CRITERIA_WEIGHTS.items():
            values = requested.get(dimension)
            if not values:
                continue
            matched = sum(1 for v in values if mentions(query_text, dimension, v))
            score += weight * (matched / len(values))
        if tokens & MEDIA_KEYWORDS:
            score += 0.1
        return min(score, 1.0)

    def diversity(self, query_text: str, existing: list[str]) -> float:
        tokens = tokenize(query_text)
        if not existing:
            score = 1.0
        else:
            similarity = sum(jaccard_similarity(tokens, tokenize(e)) for e in existing) / len(existing)
            score = 1.0 - similarity
        if len(tokens) > 2:
            score += 0.1
        return max(0.0, min(score, 1.0))

    def coverage(self, query_text: str, criteria: SearchCriteria) -> float:
        requested = criteria.requested_dimensions()
        if not requested:
            return 1.0
        return len(covered_dimensions(query_text, criteria)) / len(requested)

    def combine(self, relevance: float, diversity: float, coverage: float) -> float:
        w = self.weights
        return w.relevance * relevance + w.diversity * diversity + w.coverage * coverage

    def score(
        self,
        query_text: str,
        original: str,
        criteria: SearchCriteria,
        existing: list[str] | None = None,
    ) -> QueryScores:
        relevance = self.relevance(query_text, original, criteria)
        diversity = self.diversity(query_text, existing or [])
        coverage = self.coverage(query_text, criteria)
        return QueryScores(
            relevance=relevance,
            diversity=diversity,
            coverage=coverage,
            overall=self.combine(relevance, diversity, coverage),
        )

    def score_all(
        self,
        queries: list[GeneratedQuery],
        original: str,
        criteria: SearchCriteria,
    ) -> list[GeneratedQuery]:
        """Score in priority order; diversity compares against queries scored before."""
        ordered = sorted(enumerate(queries), key=lambda item: (-item[1].priority, item[0]))
        seen: list[str] = []
        for _, query in ordered:
            query.scores = self.score(query.text, original, criteria, seen)
            seen.append(query.text)
        return queries
