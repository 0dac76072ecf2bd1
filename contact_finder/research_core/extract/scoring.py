"""Contact scores.

confidence: certainty the candidate is a real media contact (set by the extractor).
relevance:  fit of the contact to the requested beats/categories/topics.
quality:    completeness of the record (name, email, title, bio, socials).
"""
from __future__ import annotations

from contact_finder.models.schemas import SearchCriteria
from contact_finder.models.search import ExtractedContact
from contact_finder.research_core.extract.patterns import (
    JOURNALIST_INDICATORS,
    is_generic_email,
    is_professional_title,
)
from contact_finder.tools.web_utils import normalize_text

# rule-based confidence by where the name was found
SOURCE_CONFIDENCE = {
    "json_ld": 0.8,
    "meta": 0.75,
    "rel_author": 0.7,
    "byline": 0.65,
    "text": 0.5,
}


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


def rule_confidence(source: str, contact: ExtractedContact) -> float:
    score = SOURCE_CONFIDENCE.get(source, 0.5)
    if contact.email:
        score += 0.1
    if contact.title:
        score += 0.05
    if contact.social_profiles:
        score += 0.05
    return min(score, 0.95)


def quality_score(contact: ExtractedContact) -> float:
    score = 0.0
    if len(contact.name.split()) >= 2:
        score += 0.2
    if contact.email:
        score += 0.1 if is_generic_email(contact.email) else 0.25
    if contact.title:
        score += 0.2 if is_professional_title(contact.title) else 0.1
    if contact.bio:
        score += 0.15 if len(contact.bio) > 50 else 0.075
    if contact.social_profiles:
        score += 0.2
    return _clamp(score)


def completeness(contact: ExtractedContact) -> float:
    present = [
        bool(contact.name),
        bool(contact.title),
        bool(contact.email),
        bool(contact.bio),
        bool(contact.social_profiles),
    ]
    return sum(present) / len(present)


def relevance_score(
    contact: ExtractedContact,
    criteria: SearchCriteria,
    page_text: str = "",
) -> float:
    profile_text = normalize_text(" ".join(filter(None, [contact.title, contact.bio, contact.outlet])))
    score = 0.4
    if any(indicator in profile_text for indicator in JOURNALIST_INDICATORS):
        score += 0.2

    terms = [*criteria.beats, *criteria.categories, *criteria.topics]
    if terms:
        haystack = f" {profile_text} {normalize_text(page_text[:5000])} "
        matched = sum(1 for term in terms if f" {normalize_text(term)} " in haystack)
        score += 0.3 * matched / len(terms)
    else:
        score += 0.15

    if contact.email:
        score += 0.1
    return _clamp(score)


def apply_scores(contact: ExtractedContact, criteria: SearchCriteria, page_text: str = "") -> None:
    contact.quality_score = quality_score(contact)
    contact.relevance_score = relevance_score(contact, criteria, page_text)
    contact.metadata["completeness"] = completeness(contact)
