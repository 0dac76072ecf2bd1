from __future__ import annotations

import json
import re
from typing import Any

from contact_finder.models.search import ExtractedContact, ExtractionMethod
from contact_finder.research_core.extract.patterns import (
    clean_person_name,
    find_social_profiles,
    is_valid_email,
)
from contact_finder.research_core.models.interfaces import AIProvider
from contact_finder.services.prompt_store import render_prompt
from contact_finder.tools.web_utils import clean_content

AI_CONTENT_CHARS = 4000
DEFAULT_AI_CONFIDENCE = 0.6

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class AIResponseError(ValueError):
    pass


def parse_contacts_payload(text: str) -> list[dict[str, Any]]:
    """Pull the ``contacts`` list out of a model response."""
    cleaned = _FENCE.sub("", (text or "").strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise AIResponseError("AI response did not contain a JSON object")
    try:
        payload = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise AIResponseError(f"AI response was not valid JSON: {exc}") from exc
    contacts = payload.get("contacts") if isinstance(payload, dict) else None
    if not isinstance(contacts, list):
        raise AIResponseError("AI response is missing a 'contacts' list")
    return [c for c in contacts if isinstance(c, dict)]


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class AIContactExtractor:
    """Structured contact extraction through an AI provider."""

    def __init__(self, provider: AIProvider, *, max_chars: int = AI_CONTENT_CHARS):
        self.provider = provider
        self.max_chars = max_chars

    async def extract(
        self,
        text: str,
        *,
        url: str,
        title: str = "",
        focus: str = "",
        outlet: str | None = None,
    ) -> list[ExtractedContact]:
        prompt = render_prompt(
            "contact_extraction.user_prompt",
            url=url,
            title=title or "unknown",
            focus=focus or "media contacts",
            content=clean_content(text, self.max_chars),
        )
        response = await self.provider.complete(
            system=render_prompt("contact_extraction.system_prompt"),
            prompt=prompt,
            caller="contact_extractor",
        )

        contacts: list[ExtractedContact] = []
        for item in parse_contacts_payload(response):
            name = clean_person_name(str(item.get("name", "")))
            if not name:
                continue
            email = _str_or_none(item.get("email"))
            if email and not is_valid_email(email):
                email = None
            socials = item.get("social_profiles") or []
            try:
                confidence = float(item.get("confidence", DEFAULT_AI_CONFIDENCE))
            except (TypeError, ValueError):
                confidence = DEFAULT_AI_CONFIDENCE
            contacts.append(
                ExtractedContact(
                    name=name,
                    title=_str_or_none(item.get("title")),
                    bio=_str_or_none(item.get("bio")),
                    email=email.lower() if email else None,
                    phone=_str_or_none(item.get("phone")),
                    outlet=_str_or_none(item.get("outlet")) or outlet,
                    social_profiles=find_social_profiles([str(s) for s in socials if s]),
                    confidence_score=max(0.0, min(confidence, 1.0)),
                    extraction_method=ExtractionMethod.AI_BASED,
                    source_url=url,
                )
            )
        return contacts
