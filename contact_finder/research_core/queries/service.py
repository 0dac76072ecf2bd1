from __future__ import annotations

import time

from contact_finder.config import settings
from contact_finder.models.queries import (
    EnhancementType,
    GeneratedQuery,
    QueryGenerationResult,
    QueryType,
)
from contact_finder.models.schemas import SearchConfiguration
from contact_finder.research_core.queries.dedupe import dedupe_queries
from contact_finder.research_core.queries.enhancer import AIQueryEnhancer
from contact_finder.research_core.queries.scoring import QueryScorer, covered_dimensions
from contact_finder.research_core.queries.templates import (
    TemplateEngine,
    TemplateError,
    normalize_query,
    validate_query,
)
from contact_finder.services.logger import logger
from contact_finder.services.retry import RetryMechanism

AI_QUERY_PRIORITY = 60


class QueryGenerationService:
    """Templates, optional AI enhancement, scoring, dedupe and selection."""

    def __init__(
        self,
        *,
        template_engine: TemplateEngine | None = None,
        enhancer: AIQueryEnhancer | None = None,
        scorer: QueryScorer | None = None,
        retry: RetryMechanism | None = None,
        similarity_threshold: float | None = None,
    ):
        self.template_engine = template_engine or TemplateEngine()
        self.enhancer = enhancer
        self.scorer = scorer or QueryScorer()
        self.retry = retry or RetryMechanism()
        self.similarity_threshold = (
            settings.query_similarity_threshold if similarity_threshold is None else similarity_threshold
        )

    async def _enhanced_queries(self, config: SearchConfiguration) -> list[GeneratedQuery]:
        enhancer = self.enhancer
        if enhancer is None:
            return []
        started = time.monotonic()
        outcome = await self.retry.execute_with_config(
            lambda: enhancer.enhance(config.query, config.criteria),
            "ai_service",
        )
        if not outcome.success:
            raise outcome.classified_error or RuntimeError("AI enhancement failed")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        queries: list[GeneratedQuery] = []
        for item in outcome.result or []:
            queries.append(
                GeneratedQuery(
                    text=normalize_query(item.text),
                    query_type=QueryType.AI_ENHANCED,
                    priority=AI_QUERY_PRIORITY,
                    enhanced=True,
                    enhancement_type=EnhancementType(item.enhancement_type),
                    processing_time_ms=elapsed_ms,
                    metadata={"confidence": item.confidence},
                )
            )
        return queries

    async def generate(self, config: SearchConfiguration) -> QueryGenerationResult:
        """Never raises for enhancement failures; they are reported in ``errors``."""
        started = time.monotonic()
        criteria = config.criteria
        candidates, errors = self.template_engine.generate(config.query, criteria)

        ai_enhanced = False
        if config.options.enable_ai_enhancement and self.enhancer is not None:
            try:
                enhanced = await self._enhanced_queries(config)
                candidates.extend(enhanced)
                ai_enhanced = bool(enhanced)
            except Exception as exc:
                logger.warning(f"AI enhancement unavailable, using template queries only: {exc}")
                errors.append(f"AI enhancement failed: {exc}")

        valid: list[GeneratedQuery] = []
        for query in candidates:
            try:
                validate_query(query.text)
            except TemplateError as exc:
                errors.append(str(exc))
                continue
            query.criteria_used = query.criteria_used or {
                dim: list(getattr(criteria, dim)) for dim in covered_dimensions(query.text, criteria)
            }
            valid.append(query)

        self.scorer.score_all(valid, config.query, criteria)
        unique, duplicates_removed = dedupe_queries(valid, similarity_threshold=self.similarity_threshold)
        max_queries = min(config.options.max_queries, settings.max_generated_queries)
        selected = unique[:max_queries]

        coverage_by_criteria: dict[str, int] = {dim: 0 for dim in criteria.requested_dimensions()}
        for query in selected:
            for dim in covered_dimensions(query.text, criteria):
                coverage_by_criteria[dim] += 1

        average = sum(q.overall for q in selected) / len(selected) if selected else 0.0
        diversity = (
            sum(q.scores.diversity for q in selected if q.scores) / len(selected) if selected else 0.0
        )
        result = QueryGenerationResult(
            queries=selected,
            total_generated=len(candidates),
            duplicates_removed=duplicates_removed,
            average_score=average,
            diversity_score=diversity,
            coverage_by_criteria=coverage_by_criteria,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            ai_enhanced=ai_enhanced,
            errors=errors,
        )
        logger.info(
            f"Generated {len(selected)} queries ({duplicates_removed} duplicates removed, "
            f"ai_enhanced={ai_enhanced}) for '{config.query}'"
        )
        return result
