from __future__ import annotations

from contact_finder.models.queries import GeneratedQuery
from contact_finder.tools.web_utils import jaccard_similarity, normalize_text, tokenize


def rank_key(indexed: tuple[int, GeneratedQuery]) -> tuple[float, int, int]:
    index, query = indexed
    return (-query.overall, -query.priority, index)


def dedupe_queries(
    queries: list[GeneratedQuery],
    *,
    similarity_threshold: float = 0.8,
) -> tuple[list[GeneratedQuery], int]:
    """Drop near-duplicate queries, keeping the best-ranked member of each cluster.

    Returns the survivors in rank order (overall desc, priority desc, input order)
    and the number removed.
    """
    kept: list[GeneratedQuery] = []
    kept_tokens: list[set[str]] = []
    kept_texts: set[str] = set()

    for _, query in sorted(enumerate(queries), key=rank_key):
        normalized = normalize_text(query.text)
        tokens = tokenize(query.text)
        if normalized in kept_texts:
            continue
        if any(jaccard_similarity(tokens, other) >= similarity_threshold for other in kept_tokens):
            continue
        kept.append(query)
        kept_tokens.append(tokens)
        kept_texts.add(normalized)

    return kept, len(queries) - len(kept)
