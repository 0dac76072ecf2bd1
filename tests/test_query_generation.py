from __future__ import annotations

import pytest

from contact_finder.models.queries import EnhancementType, GeneratedQuery, QueryScores, QueryTemplate, QueryType, TemplateType
from contact_finder.models.schemas import SearchConfiguration, SearchCriteria, SearchOptions
from contact_finder.research_core.models.interfaces import EnhancedQuery
from contact_finder.research_core.queries.dedupe import dedupe_queries
from contact_finder.research_core.queries.enhancer import AIQueryEnhancer, parse_numbered_list
from contact_finder.research_core.queries.scoring import QueryScorer, ScoreWeights, covered_dimensions
from contact_finder.research_core.queries.service import QueryGenerationService
from contact_finder.research_core.queries.templates import (
    TemplateEngine,
    TemplateError,
    render_template,
    validate_query,
)
from contact_finder.services.retry import RetryMechanism


async def _no_sleep(_seconds: float) -> None:
    return None


def _query(text: str, overall: float, priority: int = 50) -> GeneratedQuery:
    return GeneratedQuery(
        text=text,
        query_type=QueryType.BASE,
        priority=priority,
        scores=QueryScores(relevance=overall, diversity=overall, coverage=overall, overall=overall),
    )


class FakeEnhancer:
    def __init__(self, variants: list[EnhancedQuery] | None = None, error: Exception | None = None):
        self.variants = variants or []
        self.error = error
        self.calls = 0

    async def enhance(self, query, criteria, types=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.variants)


class FakeProvider:
    def __init__(self, responses: dict[str, str]):
        self.responses = responses
        self.callers: list[str] = []

    async def complete(self, *, system: str, prompt: str, caller: str) -> str:
        self.callers.append(caller)
        for key, response in self.responses.items():
            if caller.endswith(key):
                return response
        raise RuntimeError("model overloaded")


def test_template_engine_without_criteria_uses_only_unconditional_templates():
    queries, errors = TemplateEngine().generate("climate policy", SearchCriteria())
    assert errors == []
    assert [q.template_id for q in queries] == ["base-media"]
    assert queries[0].text == "climate policy media contact journalist reporter"


def test_template_engine_applies_filtered_templates():
    criteria = SearchCriteria(categories=["Technology"], beats=["politics"], countries=["us"])
    queries, _ = TemplateEngine().generate("AI regulation", criteria)
    ids = {q.template_id for q in queries}

    assert {"category-technology", "beat-politics", "country-us", "composite-category-beat"} <= ids
    assert "country-gb" not in ids
    assert "language-media" not in ids
    for query in queries:
        assert "{" not in query.text
        assert query.query_type == QueryType.BASE


def test_template_engine_respects_template_priority_order():
    engine = TemplateEngine(
        [
            QueryTemplate("low", "Low", "{query} low", TemplateType.BASE, 10),
            QueryTemplate("high", "High", "{query} high", TemplateType.BASE, 90),
        ]
    )
    queries, _ = engine.generate("budget", SearchCriteria())
    assert [q.template_id for q in queries] == ["high", "low"]

    engine.remove_template("high")
    assert [t.template_id for t in engine.templates()] == ["low"]


def test_render_template_joins_multi_value_dimensions():
    template = QueryTemplate("multi", "Multi", "{query} {categories}", TemplateType.COMPOSITE, 50)
    text = render_template(template, "press", SearchCriteria(categories=["tech", "science"]))
    assert text == "press tech OR science"


@pytest.mark.parametrize("text", ["", "  ", "ab", "reporters {beat}"])
def test_validate_query_rejects_bad_queries(text):
    with pytest.raises(TemplateError):
        validate_query(text)


def test_scorer_overall_is_normalized_weighted_sum():
    scorer = QueryScorer(ScoreWeights(relevance=2, diversity=1, coverage=1))
    assert scorer.combine(1.0, 1.0, 1.0) == pytest.approx(1.0)
    assert scorer.combine(1.0, 0.0, 0.0) == pytest.approx(0.5)
    assert scorer.combine(0.6, 0.5, 0.5) > scorer.combine(0.5, 0.5, 0.5)


def test_coverage_understands_country_synonyms():
    criteria = SearchCriteria(countries=["us"], beats=["health"])
    assert covered_dimensions("American health journalists", criteria) == {"countries", "beats"}
    assert QueryScorer().coverage("American reporters", criteria) == pytest.approx(0.5)
    assert QueryScorer().coverage("anything", SearchCriteria()) == 1.0


def test_coverage_never_drops_when_a_dimension_is_added():
    criteria = SearchCriteria(countries=["us"], beats=["health"], categories=["politics"])
    scorer = QueryScorer()
    values = [
        scorer.coverage("reporters", criteria),
        scorer.coverage("American reporters", criteria),
        scorer.coverage("American health reporters", criteria),
        scorer.coverage("American health politics reporters", criteria),
    ]
    assert values == sorted(values)
    assert values[0] == 0.0
    assert values[-1] == pytest.approx(1.0)


def test_scores_stay_in_unit_interval():
    criteria = SearchCriteria(categories=["technology"], countries=["gb"])
    scores = QueryScorer().score("tech journalist UK technology media", "tech", criteria, ["tech media"])
    for value in (scores.relevance, scores.diversity, scores.coverage, scores.overall):
        assert 0.0 <= value <= 1.0


def test_dedupe_keeps_best_ranked_member():
    weak = _query("tech journalists london", 0.4)
    strong = _query("Tech journalists, London!", 0.9)
    other = _query("health reporters paris", 0.5)
    kept, removed = dedupe_queries([weak, strong, other])

    assert removed == 1
    assert kept == [strong, other]


def test_parse_numbered_list_strips_numbers_and_quotes():
    text = "Here you go:\n1. \"tech reporters\"\n2) health editors\nnot numbered\n3.  "
    assert parse_numbered_list(text) == ["tech reporters", "health editors"]


@pytest.mark.asyncio
async def test_enhancer_adds_localization_for_countries_and_tolerates_partial_failure():
    provider = FakeProvider({"expansion": "1. tech reporters\n2. tech editors", "localization": "1. UK tech reporters"})
    enhancer = AIQueryEnhancer(provider, variants_per_type=2)

    enhanced = await enhancer.enhance("tech", SearchCriteria(countries=["gb"]))

    assert provider.callers == [
        "query_enhancer.expansion",
        "query_enhancer.refinement",
        "query_enhancer.localization",
    ]
    assert [e.text for e in enhanced] == ["tech reporters", "tech editors", "UK tech reporters"]
    assert enhanced[-1].enhancement_type == "localization"


@pytest.mark.asyncio
async def test_enhancer_raises_when_every_type_fails():
    enhancer = AIQueryEnhancer(FakeProvider({}))
    with pytest.raises(RuntimeError):
        await enhancer.enhance("tech", SearchCriteria())


@pytest.mark.asyncio
async def test_generation_service_merges_ai_queries():
    enhancer = FakeEnhancer(
        [EnhancedQuery(text="independent technology newsletter writers", enhancement_type="expansion")]
    )
    service = QueryGenerationService(enhancer=enhancer, retry=RetryMechanism(sleep=_no_sleep))
    config = SearchConfiguration(query="AI startups", criteria=SearchCriteria(categories=["technology"]))

    result = await service.generate(config)

    assert result.ai_enhanced is True
    assert result.errors == []
    ai_queries = [q for q in result.queries if q.query_type == QueryType.AI_ENHANCED]
    assert len(ai_queries) == 1
    assert ai_queries[0].enhanced is True
    assert ai_queries[0].enhancement_type == EnhancementType.EXPANSION
    overalls = [q.overall for q in result.queries]
    assert overalls == sorted(overalls, reverse=True)
    assert result.coverage_by_criteria["categories"] >= 1


@pytest.mark.asyncio
async def test_generation_service_survives_ai_failure():
    enhancer = FakeEnhancer(error=RuntimeError("model overloaded"))
    service = QueryGenerationService(enhancer=enhancer, retry=RetryMechanism(sleep=_no_sleep))
    config = SearchConfiguration(query="AI startups")

    result = await service.generate(config)

    assert result.queries
    assert result.ai_enhanced is False
    assert any("AI enhancement failed" in e for e in result.errors)
    assert enhancer.calls == 3


@pytest.mark.asyncio
async def test_generation_service_skips_ai_when_disabled_and_caps_queries():
    enhancer = FakeEnhancer([EnhancedQuery(text="should not appear", enhancement_type="expansion")])
    service = QueryGenerationService(enhancer=enhancer)
    config = SearchConfiguration(
        query="climate",
        criteria=SearchCriteria(categories=["technology", "business"], beats=["politics"], countries=["us"]),
        options=SearchOptions(max_queries=2, enable_ai_enhancement=False),
    )

    result = await service.generate(config)

    assert enhancer.calls == 0
    assert len(result.queries) == 2
    assert result.total_generated > 2
    for query in result.queries:
        assert query.scores is not None
