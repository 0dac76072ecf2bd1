from __future__ import annotations

import re
import time

from contact_finder.models.queries import GeneratedQuery, QueryTemplate, QueryType, TemplateType
from contact_finder.models.schemas import SearchCriteria

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

# placeholder root -> SearchCriteria attribute
PLACEHOLDER_DIMENSIONS = {
    "country": "countries",
    "category": "categories",
    "beat": "beats",
    "language": "languages",
    "topic": "topics",
}

US = ("us", "usa", "united states", "america", "american")
GB = ("gb", "uk", "united kingdom", "britain", "great britain", "british")
CA = ("ca", "canada", "canadian")

DEFAULT_TEMPLATES: tuple[QueryTemplate, ...] = (
    QueryTemplate("base-media", "Media contact", "{query} media contact journalist reporter", TemplateType.BASE, 100),
    QueryTemplate("base-beat", "Beat journalist", "{query} {beat} journalist reporter", TemplateType.BASE, 90),
    QueryTemplate("base-category", "Category media", "{query} {category} media journalism", TemplateType.BASE, 90),
    QueryTemplate(
        "country-gb", "UK media", "{query} UK British media journalist reporter",
        TemplateType.COUNTRY, 85, applies_to={"countries": GB},
    ),
    QueryTemplate(
        "country-us", "US media", "{query} US American media journalist reporter",
        TemplateType.COUNTRY, 85, applies_to={"countries": US},
    ),
    QueryTemplate(
        "country-ca", "Canadian media", "{query} Canada Canadian media journalist reporter",
        TemplateType.COUNTRY, 85, applies_to={"countries": CA},
    ),
    QueryTemplate(
        "category-technology", "Technology journalists",
        "{query} technology tech journalist reporter media",
        TemplateType.CATEGORY, 88, applies_to={"categories": ("technology", "tech")},
    ),
    QueryTemplate(
        "category-business", "Business journalists",
        "{query} business finance journalist reporter media",
        TemplateType.CATEGORY, 88, applies_to={"categories": ("business", "finance")},
    ),
    QueryTemplate(
        "category-sports", "Sports journalists",
        "{query} sports journalist reporter media athletics",
        TemplateType.CATEGORY, 88, applies_to={"categories": ("sports", "sport")},
    ),
    QueryTemplate(
        "beat-politics", "Political reporters",
        "{query} politics government journalist reporter political",
        TemplateType.BEAT, 87, applies_to={"beats": ("politics", "government")},
    ),
    QueryTemplate(
        "beat-healthcare", "Health reporters",
        "{query} health medical journalist reporter healthcare",
        TemplateType.BEAT, 87, applies_to={"beats": ("healthcare", "health", "medical")},
    ),
    QueryTemplate(
        "beat-entertainment", "Entertainment reporters",
        "{query} entertainment celebrity journalist reporter media",
        TemplateType.BEAT, 87, applies_to={"beats": ("entertainment", "celebrity")},
    ),
    QueryTemplate(
        "language-media", "Language media", "{query} {language} language media journalist reporter",
        TemplateType.LANGUAGE, 82,
    ),
    QueryTemplate(
        "topic-coverage", "Topic coverage", "{query} {topic} journalist reporter coverage",
        TemplateType.COMPOSITE, 84,
    ),
    QueryTemplate(
        "composite-category-beat", "Category and beat",
        "{query} {category} {beat} journalist reporter media",
        TemplateType.COMPOSITE, 75,
    ),
    QueryTemplate(
        "composite-country-category", "Country and category",
        "{query} {country} {category} media journalist reporter",
        TemplateType.COMPOSITE, 80,
    ),
    QueryTemplate(
        "composite-site", "Author pages",
        "{query} site:.com OR site:.org {category} journalist reporter author contact",
        TemplateType.COMPOSITE, 70,
    ),
)


class TemplateError(ValueError):
    pass


def normalize_query(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def validate_query(text: str) -> None:
    """Raise ``TemplateError`` for empty, too-short or partially rendered queries."""
    if not text or not text.strip():
        raise TemplateError("Query is empty")
    if len(text.strip()) < 3:
        raise TemplateError(f"Query too short: {text!r}")
    if "{" in text or "}" in text:
        raise TemplateError(f"Unresolved placeholder in query: {text!r}")


def _placeholder_values(criteria: SearchCriteria) -> dict[str, str]:
    values: dict[str, str] = {}
    for root, attr in PLACEHOLDER_DIMENSIONS.items():
        items: list[str] = getattr(criteria, attr)
        if not items:
            continue
        values[root] = items[0]
        values[attr] = " OR ".join(items)
    return values


def render_template(template: QueryTemplate, query: str, criteria: SearchCriteria) -> str:
    values = {"query": query, **_placeholder_values(criteria), **template.variables}

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            raise TemplateError(f"No value for placeholder '{name}' in template {template.template_id}")
        return values[name]

    rendered = normalize_query(PLACEHOLDER_PATTERN.sub(_sub, template.template))
    validate_query(rendered)
    return rendered


def _criteria_used(template: QueryTemplate, criteria: SearchCriteria) -> dict[str, list[str]]:
    used: dict[str, list[str]] = {}
    for name in PLACEHOLDER_PATTERN.findall(template.template):
        if name in PLACEHOLDER_DIMENSIONS:
            attr = PLACEHOLDER_DIMENSIONS[name]
        elif name in PLACEHOLDER_DIMENSIONS.values():
            attr = name
        else:
            continue
        used[attr] = list(getattr(criteria, attr))
    for attr in template.applies_to:
        used[attr] = list(getattr(criteria, attr))
    return used


class TemplateEngine:
    """Expands templates whose placeholders and filters match the criteria."""

    def __init__(self, templates: list[QueryTemplate] | tuple[QueryTemplate, ...] | None = None):
        self._templates: dict[str, QueryTemplate] = {
            t.template_id: t for t in (templates if templates is not None else DEFAULT_TEMPLATES)
        }

    def add_template(self, template: QueryTemplate) -> None:
        self._templates[template.template_id] = template

    def remove_template(self, template_id: str) -> None:
        self._templates.pop(template_id, None)

    def templates(self) -> list[QueryTemplate]:
        return sorted(
            (t for t in self._templates.values() if t.is_active),
            key=lambda t: (-t.priority, t.template_id),
        )

    def is_applicable(self, template: QueryTemplate, criteria: SearchCriteria) -> bool:
        for name in PLACEHOLDER_PATTERN.findall(template.template):
            if name == "query" or name in template.variables:
                continue
            attr = PLACEHOLDER_DIMENSIONS.get(name, name)
            if not getattr(criteria, attr, None):
                return False
        for attr, accepted in template.applies_to.items():
            requested = {v.lower() for v in getattr(criteria, attr, [])}
            if not requested.intersection(accepted):
                return False
        return True

    def generate(self, query: str, criteria: SearchCriteria) -> tuple[list[GeneratedQuery], list[str]]:
        """Render every applicable template. Returns (queries, errors)."""
        generated: list[GeneratedQuery] = []
        errors: list[str] = []
        for template in self.templates():
            if not self.is_applicable(template, criteria):
                continue
            started = time.monotonic()
            try:
                text = render_template(template, query, criteria)
            except TemplateError as exc:
                errors.append(str(exc))
                continue
            generated.append(
                GeneratedQuery(
                    text=text,
                    query_type=QueryType.BASE,
                    template_id=template.template_id,
                    priority=template.priority,
                    criteria_used=_criteria_used(template, criteria),
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                )
            )
        return generated, errors
