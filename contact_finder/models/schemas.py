from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_date: date | None = Field(default=None, alias="from")
    to_date: date | None = Field(default=None, alias="to")

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("date_range.from must not be after date_range.to")
        return self


class SearchCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    countries: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    beats: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    domains: list[str] = Field(default_factory=list)
    exclude_domains: list[str] = Field(default_factory=list)
    date_range: DateRange | None = None
    safe_search: bool = True

    @field_validator(
        "countries", "categories", "beats", "languages", "topics", "domains", "exclude_domains"
    )
    @classmethod
    def strip_blank(cls, values: list[str]) -> list[str]:
        return [v.strip() for v in values if v and v.strip()]

    def requested_dimensions(self) -> dict[str, list[str]]:
        """Non-empty criterion dimensions a query can cover."""
        dims = {
            "countries": self.countries,
            "categories": self.categories,
            "beats": self.beats,
            "languages": self.languages,
            "topics": self.topics,
        }
        return {name: values for name, values in dims.items() if values}


class SearchOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_results: int = Field(default=50, ge=1, le=1000)
    max_contacts_per_source: int = Field(default=10, ge=1)
    max_queries: int = Field(default=20, ge=1)
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    enable_ai_enhancement: bool = True
    enable_contact_extraction: bool = True
    enable_content_scraping: bool = True
    enable_caching: bool = True
    extraction_method: Literal["rule_based", "ai_based", "hybrid"] = "hybrid"
    processing_timeout_ms: int | None = Field(default=None, ge=1000)
    priority: Literal["low", "normal", "high"] = "normal"


class SearchConfiguration(BaseModel):
    """Immutable input to one search job."""

    model_config = ConfigDict(frozen=True)

    query: str
    criteria: SearchCriteria = Field(default_factory=SearchCriteria)
    options: SearchOptions = Field(default_factory=SearchOptions)

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("query must not be empty")
        return value


class CancellationResponse(BaseModel):
    search_id: str
    success: bool
    message: str
    cancelled_at: datetime | None = None
