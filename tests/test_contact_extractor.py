from __future__ import annotations

import json

import pytest

from contact_finder.models.schemas import SearchCriteria, SearchOptions
from contact_finder.models.search import ExtractionMethod
from contact_finder.research_core.extract.ai import AIResponseError, parse_contacts_payload
from contact_finder.research_core.extract.patterns import (
    clean_person_name,
    find_emails,
    is_valid_email,
    parse_social_url,
)
from contact_finder.research_core.extract.rules import RuleBasedExtractor
from contact_finder.research_core.extract.scoring import quality_score, relevance_score
from contact_finder.research_core.extract.service import ContactExtractor
from contact_finder.research_core.models.interfaces import RawContent

ARTICLE_HTML = """
<html>
  <head>
    <title>Inside the chip race</title>
    <meta property="og:site_name" content="Tech Daily">
    <script type="application/ld+json">
      {"@type": "NewsArticle",
       "author": {"@type": "Person", "name": "Jane Smith",
                  "jobTitle": "Senior Technology Reporter",
                  "email": "jane.smith@techdaily.com",
                  "sameAs": ["https://twitter.com/janesmith"]}}
    </script>
  </head>
  <body>
    <div class="author-box">
      <a rel="author" href="/authors/jane">Jane Smith</a>
      <p class="author-bio">Jane Smith covers semiconductors and technology policy for Tech Daily.</p>
    </div>
    <p>Send tips to the newsroom at news@techdaily.com</p>
  </body>
</html>
"""

PLAIN_BYLINE_HTML = "<html><body><p>By John Doe</p><p>markets rallied today.</p></body></html>"


def _content(html: str, url: str = "https://techdaily.com/chips") -> RawContent:
    return RawContent(url=url, final_url=url, status_code=200, html=html, provider="custom")


class FakeProvider:
    def __init__(self, response: str | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls = 0

    async def complete(self, *, system: str, prompt: str, caller: str) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.response or ""


class ExplodingRules(RuleBasedExtractor):
    def extract(self, html, *, source_url=None, outlet=None):
        raise RuntimeError("parser exploded")


def test_clean_person_name_handles_bylines():
    assert clean_person_name("By Jane Smith | Reuters") == "Jane Smith"
    assert clean_person_name("Staff Writer") is None
    assert clean_person_name("jane") is None
    assert clean_person_name("Agent 007 Bond") is None


def test_email_helpers_skip_placeholders():
    assert is_valid_email("jane@techdaily.com") is True
    assert is_valid_email("someone@example.com") is False
    assert find_emails("mail JANE@TechDaily.com or jane@techdaily.com.") == ["jane@techdaily.com"]


def test_parse_social_url_canonicalizes_and_skips_share_links():
    profile = parse_social_url("https://x.com/janesmith")
    assert profile is not None
    assert profile.platform == "twitter"
    assert profile.url == "https://twitter.com/janesmith"
    assert profile.handle == "janesmith"
    assert parse_social_url("https://twitter.com/intent") is None
    assert parse_social_url("https://www.linkedin.com/in/jane-smith").platform == "linkedin"


def test_rule_extractor_merges_structured_data_and_author_box():
    contacts = RuleBasedExtractor().extract(ARTICLE_HTML, source_url="https://techdaily.com/chips", outlet="Tech Daily")

    assert len(contacts) == 1
    jane = contacts[0]
    assert jane.name == "Jane Smith"
    assert jane.email == "jane.smith@techdaily.com"
    assert jane.title == "Senior Technology Reporter"
    assert jane.bio and "semiconductors" in jane.bio
    assert [p.handle for p in jane.social_profiles] == ["janesmith"]
    assert jane.metadata["rule_source"] == "json_ld"
    assert jane.confidence_score == pytest.approx(0.95)


def test_scores_reward_complete_relevant_profiles():
    jane = RuleBasedExtractor().extract(ARTICLE_HTML)[0]
    criteria = SearchCriteria(categories=["technology"])
    assert quality_score(jane) > 0.8
    assert relevance_score(jane, criteria) > relevance_score(jane, SearchCriteria(categories=["sports"]))


@pytest.mark.asyncio
async def test_extractor_rule_based_outcome():
    extractor = ContactExtractor()
    outcome = await extractor.extract(
        _content(ARTICLE_HTML),
        criteria=SearchCriteria(categories=["technology"]),
        options=SearchOptions(extraction_method="rule_based"),
    )

    assert outcome.method == ExtractionMethod.RULE_BASED
    assert outcome.page_title == "Inside the chip race"
    assert outcome.errors == []
    assert [c.name for c in outcome.contacts] == ["Jane Smith"]
    jane = outcome.contacts[0]
    assert jane.outlet == "Tech Daily"
    assert 0.0 < jane.quality_score <= 1.0
    assert 0.0 < jane.relevance_score <= 1.0
    assert outcome.metadata()["contacts_found"] == 1


@pytest.mark.asyncio
async def test_extractor_filters_contacts_below_confidence_threshold():
    outcome = await ContactExtractor().extract(
        _content(PLAIN_BYLINE_HTML),
        criteria=SearchCriteria(),
        options=SearchOptions(confidence_threshold=0.6),
    )
    assert outcome.total_found == 1
    assert outcome.filtered_out == 1
    assert outcome.contacts == []


@pytest.mark.asyncio
async def test_extractor_without_ai_provider_degrades_to_rules():
    outcome = await ContactExtractor().extract(
        _content(ARTICLE_HTML),
        criteria=SearchCriteria(),
        options=SearchOptions(extraction_method="ai_based"),
    )
    assert outcome.method == ExtractionMethod.RULE_BASED
    assert outcome.contacts


@pytest.mark.asyncio
async def test_extractor_hybrid_merges_ai_and_rule_contacts():
    provider = FakeProvider(
        json.dumps(
            {
                "contacts": [
                    {"name": "Jane Smith", "title": "Chip Reporter", "confidence": 0.9},
                    {"name": "Mark Lee", "email": "mark.lee@techdaily.com", "title": "Editor", "confidence": 0.7},
                    {"name": "newsroom", "confidence": 0.9},
                ]
            }
        )
    )
    outcome = await ContactExtractor(ai_provider=provider).extract(
        _content(ARTICLE_HTML),
        criteria=SearchCriteria(),
        options=SearchOptions(extraction_method="hybrid", confidence_threshold=0.5),
    )

    by_name = {c.name: c for c in outcome.contacts}
    assert provider.calls == 1
    assert set(by_name) == {"Jane Smith", "Mark Lee"}
    assert by_name["Jane Smith"].extraction_method == ExtractionMethod.HYBRID
    assert by_name["Jane Smith"].confidence_score == pytest.approx(0.95)
    assert by_name["Jane Smith"].email == "jane.smith@techdaily.com"
    assert by_name["Mark Lee"].extraction_method == ExtractionMethod.AI_BASED
    assert by_name["Mark Lee"].outlet == "Tech Daily"


@pytest.mark.asyncio
async def test_extractor_ai_failure_falls_back_to_rules():
    provider = FakeProvider(error=RuntimeError("model overloaded"))
    outcome = await ContactExtractor(ai_provider=provider).extract(
        _content(ARTICLE_HTML),
        criteria=SearchCriteria(),
        options=SearchOptions(extraction_method="ai_based"),
    )
    assert outcome.method == ExtractionMethod.AI_BASED
    assert [c.name for c in outcome.contacts] == ["Jane Smith"]
    assert any("AI extraction failed" in e for e in outcome.errors)


@pytest.mark.asyncio
async def test_extractor_never_raises():
    extractor = ContactExtractor(rule_extractor=ExplodingRules())
    outcome = await extractor.extract(
        _content(ARTICLE_HTML),
        criteria=SearchCriteria(),
        options=SearchOptions(extraction_method="rule_based"),
    )
    assert outcome.contacts == []
    assert outcome.errors == ["Extraction failed: parser exploded"]


@pytest.mark.asyncio
async def test_extractor_caps_contacts_per_source():
    html = "<html><body>" + "".join(
        f'<span class="byline">{name}</span>' for name in ("Ann Lee", "Bob Marsh", "Cara Diaz")
    ) + "</body></html>"
    outcome = await ContactExtractor().extract(
        _content(html),
        criteria=SearchCriteria(),
        options=SearchOptions(max_contacts_per_source=2, confidence_threshold=0.1),
    )
    assert outcome.total_found == 3
    assert len(outcome.contacts) == 2
    assert outcome.filtered_out == 1


def test_parse_contacts_payload_accepts_fenced_json():
    text = '```json\n{"contacts": [{"name": "Jane Smith"}, "noise"]}\n```'
    assert parse_contacts_payload(text) == [{"name": "Jane Smith"}]

    with pytest.raises(AIResponseError):
        parse_contacts_payload("no json here")
    with pytest.raises(AIResponseError):
        parse_contacts_payload('{"people": []}')
