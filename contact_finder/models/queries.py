from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class QueryType(str, Enum):
    BASE = "base"
    AI_ENHANCED = "ai_enhanced"
    VARIANT = "variant"


class TemplateType(str, Enum):
    BASE = "base"
    COUNTRY = "country"
    CATEGORY = "category"
    BEAT = "beat"
    LANGUAGE = "language"
    COMPOSITE = "composite"


class EnhancementType(str, Enum):
    EXPANSION = "expansion"
    REFINEMENT = "refinement"
    LOCALIZATION = "localization"


@dataclass(frozen=True, slots=True)
class QueryTemplate:
    template_id: str
    name: str
    template: str
    template_type: TemplateType
    priority: int
    # criteria dimension -> accepted values (case-insensitive); empty means always applicable
    applies_to: dict[str, tuple[str, ...]] = field(default_factory=dict)
    variables: dict[str, str] = field(default_factory=dict)
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class QueryScores:
    relevance: float
    diversity: float
    coverage: float
    overall: float


@dataclass(slots=True)
class GeneratedQuery:
    text: str
    query_type: QueryType
    template_id: str | None = None
    priority: int = 0
    scores: QueryScores | None = None
    criteria_used: dict[str, list[str]] = field(default_factory=dict)
    query_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enhanced: bool = False
    enhancement_type: EnhancementType | None = None
    processing_time_ms: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def overall(self) -> float:
        return self.scores.overall if self.scores else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_id": self.query_id,
            "text": self.text,
            "query_type": self.query_type.value,
            "template_id": self.template_id,
            "priority": self.priority,
            "scores": (
                {
                    "relevance": round(self.scores.relevance, 4),
                    "diversity": round(self.scores.diversity, 4),
                    "coverage": round(self.scores.coverage, 4),
                    "overall": round(self.scores.overall, 4),
                }
                if self.scores
                else None
            ),
            "enhanced": self.enhanced,
            "enhancement_type": self.enhancement_type.value if self.enhancement_type else None,
        }


@dataclass(slots=True)
class QueryGenerationResult:
    queries: list[GeneratedQuery]
    total_generated: int
    duplicates_removed: int
    average_score: float
    diversity_score: float
    coverage_by_criteria: dict[str, int]
    processing_time_ms: int
    ai_enhanced: bool
    errors: list[str] = field(default_factory=list)
