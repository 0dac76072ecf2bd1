from __future__ import annotations

import re

from contact_finder.models.queries import EnhancementType
from contact_finder.models.schemas import SearchCriteria
from contact_finder.research_core.models.interfaces import AIProvider, EnhancedQuery
from contact_finder.services.logger import logger
from contact_finder.services.prompt_store import render_prompt

NUMBERED_LINE = re.compile(r"^\s*\d+[.)]\s*(.+)$")

COUNTRY_CONTEXT = {
    "us": "Major publications include The New York Times, Washington Post, Wall Street Journal, CNN and NPR.",
    "gb": "Major publications include BBC, The Guardian, The Times, Financial Times and Reuters.",
    "uk": "Major publications include BBC, The Guardian, The Times, Financial Times and Reuters.",
    "ca": "Major publications include CBC, The Globe and Mail, Toronto Star and National Post.",
    "au": "Major publications include ABC, The Sydney Morning Herald, The Australian and news.com.au.",
    "de": "Major publications include Der Spiegel, Die Zeit, Frankfurter Allgemeine and Süddeutsche Zeitung.",
    "fr": "Major publications include Le Monde, Le Figaro, Libération and AFP.",
}
DEFAULT_COUNTRY_CONTEXT = "Focus on local and national media outlets."


def parse_numbered_list(text: str) -> list[str]:
    queries: list[str] = []
    for line in (text or "").splitlines():
        match = NUMBERED_LINE.match(line)
        if not match:
            continue
        candidate = match.group(1).strip().strip("\"'").strip()
        if candidate:
            queries.append(candidate)
    return queries


def describe_criteria(criteria: SearchCriteria) -> str:
    parts = [f"{name}: {', '.join(values)}" for name, values in criteria.requested_dimensions().items()]
    return "; ".join(parts) or "none"


class AIQueryEnhancer:
    """Asks an AI provider for expanded, refined and localized query variants."""

    def __init__(self, provider: AIProvider, *, variants_per_type: int = 3):
        self.provider = provider
        self.variants_per_type = max(int(variants_per_type), 1)

    def _types_for(self, criteria: SearchCriteria) -> list[EnhancementType]:
        types = [EnhancementType.EXPANSION, EnhancementType.REFINEMENT]
        if criteria.countries:
            types.append(EnhancementType.LOCALIZATION)
        return types

    def _prompt(self, enhancement: EnhancementType, query: str, criteria: SearchCriteria) -> str:
        values = {
            "count": self.variants_per_type,
            "query": query,
            "criteria": describe_criteria(criteria),
        }
        if enhancement == EnhancementType.LOCALIZATION:
            country = criteria.countries[0]
            values["country"] = country
            values["country_context"] = COUNTRY_CONTEXT.get(country.lower(), DEFAULT_COUNTRY_CONTEXT)
        return render_prompt(f"query_enhancement.{enhancement.value}", **values)

    async def enhance(
        self,
        query: str,
        criteria: SearchCriteria,
        types: list[EnhancementType] | None = None,
    ) -> list[EnhancedQuery]:
        """Return variants for each enhancement type.

        Raises when every requested type fails; partial failures are logged.
        """
        system = render_prompt("query_enhancement.system_prompt")
        enhanced: list[EnhancedQuery] = []
        failures: list[Exception] = []
        requested = types or self._types_for(criteria)

        for enhancement in requested:
            try:
                response = await self.provider.complete(
                    system=system,
                    prompt=self._prompt(enhancement, query, criteria),
                    caller=f"query_enhancer.{enhancement.value}",
                )
            except Exception as exc:
                logger.warning(f"Query enhancement '{enhancement.value}' failed: {exc}")
                failures.append(exc)
                continue
            for text in parse_numbered_list(response)[: self.variants_per_type]:
                enhanced.append(EnhancedQuery(text=text, enhancement_type=enhancement.value))

        if failures and len(failures) == len(requested):
            raise failures[-1]
        return enhanced
