from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup

from contact_finder.models.schemas import SearchCriteria, SearchOptions
from contact_finder.models.search import ExtractedContact, ExtractionMethod
from contact_finder.research_core.extract.ai import AIContactExtractor
from contact_finder.research_core.extract.rules import RuleBasedExtractor
from contact_finder.research_core.extract.scoring import apply_scores
from contact_finder.research_core.models.interfaces import AIProvider, RawContent
from contact_finder.services.logger import logger
from contact_finder.tools.web_utils import extract_domain

MERGED_FIELDS = ("title", "bio", "email", "phone", "outlet")


@dataclass(slots=True)
class ExtractionOutcome:
    contacts: list[ExtractedContact]
    method: ExtractionMethod
    total_found: int = 0
    filtered_out: int = 0
    processing_time_ms: int = 0
    page_title: str = ""
    errors: list[str] = field(default_factory=list)

    def metadata(self) -> dict[str, Any]:
        return {
            "extraction_method": self.method.value,
            "contacts_found": self.total_found,
            "contacts_filtered": self.filtered_out,
            "processing_time_ms": self.processing_time_ms,
            "extraction_errors": list(self.errors),
        }


def page_text_and_meta(html: str) -> tuple[str, str, str | None]:
    """Visible text, title and og:site_name of a page."""
    soup = BeautifulSoup(html or "", "html.parser")
    for node in soup(["script", "style", "noscript", "svg"]):
        node.decompose()
    title = soup.title.get_text(strip=True) if soup.title else ""
    site = soup.find("meta", attrs={"property": "og:site_name"})
    outlet = str(site.get("content")).strip() if site and site.get("content") else None
    text = " ".join(soup.get_text(" ", strip=True).split())
    return text, title, outlet


def merge_contacts(rule: list[ExtractedContact], ai: list[ExtractedContact]) -> list[ExtractedContact]:
    """Combine rule and AI candidates by name; each field comes from the more confident source."""
    by_name = {c.name.lower(): c for c in rule}
    merged: list[ExtractedContact] = list(rule)
    for candidate in ai:
        existing = by_name.get(candidate.name.lower())
        if existing is None:
            merged.append(candidate)
            by_name[candidate.name.lower()] = candidate
            continue
        primary, secondary = (
            (existing, candidate)
            if existing.confidence_score >= candidate.confidence_score
            else (candidate, existing)
        )
        for name in MERGED_FIELDS:
            value = getattr(primary, name) or getattr(secondary, name)
            setattr(existing, name, value)
        known = {p.url for p in existing.social_profiles}
        existing.social_profiles.extend(p for p in candidate.social_profiles if p.url not in known)
        existing.confidence_score = max(existing.confidence_score, candidate.confidence_score)
        existing.extraction_method = ExtractionMethod.HYBRID
    return merged


class ContactExtractor:
    """Turns fetched pages into scored, threshold-filtered contacts. Never raises."""

    def __init__(
        self,
        *,
        rule_extractor: RuleBasedExtractor | None = None,
        ai_provider: AIProvider | None = None,
    ):
        self.rule_extractor = rule_extractor or RuleBasedExtractor()
        self.ai_extractor = AIContactExtractor(ai_provider) if ai_provider is not None else None

    def _method_for(self, options: SearchOptions) -> ExtractionMethod:
        requested = ExtractionMethod(options.extraction_method)
        if self.ai_extractor is None and requested != ExtractionMethod.RULE_BASED:
            return ExtractionMethod.RULE_BASED
        return requested

    async def extract(
        self,
        content: RawContent,
        *,
        criteria: SearchCriteria,
        options: SearchOptions,
        title: str = "",
    ) -> ExtractionOutcome:
        started = time.monotonic()
        method = self._method_for(options)
        outcome = ExtractionOutcome(contacts=[], method=method)
        try:
            text, page_title, outlet = page_text_and_meta(content.html)
            outcome.page_title = page_title or title
            outlet = outlet or extract_domain(content.final_url or content.url)

            rule_contacts: list[ExtractedContact] = []
            ai_contacts: list[ExtractedContact] = []
            if method in (ExtractionMethod.RULE_BASED, ExtractionMethod.HYBRID):
                rule_contacts = self.rule_extractor.extract(
                    content.html, source_url=content.url, outlet=outlet
                )
            if method in (ExtractionMethod.AI_BASED, ExtractionMethod.HYBRID) and self.ai_extractor:
                focus = ", ".join([*criteria.beats, *criteria.categories, *criteria.topics])
                try:
                    ai_contacts = await self.ai_extractor.extract(
                        text,
                        url=content.url,
                        title=outcome.page_title,
                        focus=focus,
                        outlet=outlet,
                    )
                except Exception as exc:
                    logger.warning(f"AI extraction failed for {content.url}: {exc}")
                    outcome.errors.append(f"AI extraction failed: {exc}")
                    if method == ExtractionMethod.AI_BASED:
                        rule_contacts = self.rule_extractor.extract(
                            content.html, source_url=content.url, outlet=outlet
                        )

            candidates = merge_contacts(rule_contacts, ai_contacts)
            for contact in candidates:
                apply_scores(contact, criteria, text)

            outcome.total_found = len(candidates)
            kept = [c for c in candidates if c.confidence_score >= options.confidence_threshold]
            kept.sort(key=lambda c: (-c.confidence_score, c.name.lower()))
            outcome.contacts = kept[: options.max_contacts_per_source]
            outcome.filtered_out = outcome.total_found - len(outcome.contacts)
        except Exception as exc:
            logger.warning(f"Contact extraction failed for {content.url}: {exc}")
            outcome.contacts = []
            outcome.errors.append(f"Extraction failed: {exc}")

        outcome.processing_time_ms = int((time.monotonic() - started) * 1000)
        return outcome
