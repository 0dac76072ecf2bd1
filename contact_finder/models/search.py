from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from contact_finder.models.queries import GeneratedQuery
from contact_finder.models.schemas import SearchConfiguration
from contact_finder.services.errors import JobErrorRecord


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SearchStage(str, Enum):
    INITIALIZING = "initializing"
    QUERY_GENERATION = "query_generation"
    WEB_SEARCH = "web_search"
    CONTENT_SCRAPING = "content_scraping"
    CONTACT_EXTRACTION = "contact_extraction"
    RESULT_AGGREGATION = "result_aggregation"
    FINALIZATION = "finalization"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PIPELINE_ORDER: tuple[SearchStage, ...] = (
    SearchStage.INITIALIZING,
    SearchStage.QUERY_GENERATION,
    SearchStage.WEB_SEARCH,
    SearchStage.CONTENT_SCRAPING,
    SearchStage.CONTACT_EXTRACTION,
    SearchStage.RESULT_AGGREGATION,
    SearchStage.FINALIZATION,
)

TERMINAL_STAGES = frozenset({SearchStage.COMPLETED, SearchStage.FAILED, SearchStage.CANCELLED})

# stages reported in stage_progress (initializing and terminal states excluded)
TRACKED_STAGES: tuple[SearchStage, ...] = PIPELINE_ORDER[1:]


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    MANUAL_REVIEW = "manual_review"


class ExtractionMethod(str, Enum):
    AI_BASED = "ai_based"
    RULE_BASED = "rule_based"
    HYBRID = "hybrid"
    MANUAL = "manual"


class DuplicateType(str, Enum):
    EMAIL = "email"
    NAME_OUTLET = "name_outlet"
    NAME_TITLE = "name_title"
    OUTLET_TITLE = "outlet_title"
    SIMILAR_BIO = "similar_bio"
    SOCIAL_MEDIA = "social_media"


class SourceType(str, Enum):
    SEARCH_PROVIDER = "search_provider"
    SCRAPE_PROVIDER = "scrape_provider"
    MANUAL = "manual"


class InvalidStageTransition(Exception):
    pass


@dataclass(slots=True)
class SocialProfile:
    platform: str
    url: str
    handle: str | None = None
    verified: bool = False


@dataclass(slots=True)
class ExtractedContact:
    name: str
    title: str | None = None
    bio: str | None = None
    email: str | None = None
    phone: str | None = None
    outlet: str | None = None
    social_profiles: list[SocialProfile] = field(default_factory=list)
    confidence_score: float = 0.0
    relevance_score: float = 0.0
    quality_score: float = 0.0
    verification_status: VerificationStatus = VerificationStatus.PENDING
    extraction_method: ExtractionMethod = ExtractionMethod.RULE_BASED
    source_url: str | None = None
    result_id: str | None = None
    contact_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    extracted_at: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "name": self.name,
            "title": self.title,
            "bio": self.bio,
            "email": self.email,
            "phone": self.phone,
            "outlet": self.outlet,
            "social_profiles": [
                {"platform": p.platform, "url": p.url, "handle": p.handle, "verified": p.verified}
                for p in self.social_profiles
            ],
            "confidence_score": round(self.confidence_score, 4),
            "relevance_score": round(self.relevance_score, 4),
            "quality_score": round(self.quality_score, 4),
            "verification_status": self.verification_status.value,
            "extraction_method": self.extraction_method.value,
            "source_url": self.source_url,
            "result_id": self.result_id,
        }


@dataclass(frozen=True, slots=True)
class SearchResult:
    """One fetched source with its extracted contacts. Append-only within a job."""

    result_id: str
    url: str
    title: str
    domain: str
    summary: str = ""
    authority: float = 0.0
    relevance_score: float = 0.0
    confidence_score: float = 0.0
    content_ref: str | None = None
    published_date: str | None = None
    contacts: tuple[ExtractedContact, ...] = ()
    source_type: SourceType = SourceType.SEARCH_PROVIDER
    query_id: str | None = None
    processing_time_ms: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "result_id": self.result_id,
            "url": self.url,
            "title": self.title,
            "domain": self.domain,
            "summary": self.summary,
            "authority": self.authority,
            "relevance_score": self.relevance_score,
            "confidence_score": self.confidence_score,
            "published_date": self.published_date,
            "source_type": self.source_type.value,
            "query_id": self.query_id,
            "processing_time_ms": self.processing_time_ms,
            "contacts": [c.to_dict() for c in self.contacts],
            "metadata": self.metadata,
        }


@dataclass(slots=True)
class DuplicateGroup:
    group_id: str
    duplicate_type: DuplicateType
    similarity_score: float
    contact_ids: list[str]
    selected_contact_id: str
    verification_status: VerificationStatus = VerificationStatus.PENDING
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "duplicate_type": self.duplicate_type.value,
            "similarity_score": round(self.similarity_score, 4),
            "contact_ids": list(self.contact_ids),
            "selected_contact_id": self.selected_contact_id,
            "verification_status": self.verification_status.value,
            "reason": self.reason,
        }


@dataclass(slots=True)
class StageProgress:
    status: StageStatus = StageStatus.PENDING
    progress: float = 0.0
    message: str = ""
    started_at: str | None = None
    completed_at: str | None = None


@dataclass(slots=True)
class SearchProgress:
    percentage: float = 0.0
    stage: SearchStage = SearchStage.INITIALIZING
    message: str = "Search queued"
    current_step: int = 0
    total_steps: int = len(TRACKED_STAGES)
    stage_progress: dict[SearchStage, StageProgress] = field(
        default_factory=lambda: {stage: StageProgress() for stage in TRACKED_STAGES}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentage": round(self.percentage, 2),
            "stage": self.stage.value,
            "message": self.message,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "stage_progress": {
                stage.value: {
                    "status": sp.status.value,
                    "progress": round(sp.progress, 2),
                    "message": sp.message,
                    "started_at": sp.started_at,
                    "completed_at": sp.completed_at,
                }
                for stage, sp in self.stage_progress.items()
            },
        }


@dataclass(slots=True)
class QueryMetrics:
    total_generated: int = 0
    total_duplicates: int = 0
    average_score: float = 0.0
    diversity_score: float = 0.0
    coverage_by_criteria: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class SourceMetrics:
    total_sources: int = 0
    successful_sources: int = 0
    failed_sources: int = 0
    average_authority: float = 0.0
    content_quality_distribution: dict[str, int] = field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0}
    )


@dataclass(slots=True)
class ContactMetrics:
    total_found: int = 0
    total_filtered: int = 0
    total_imported: int = 0
    average_confidence: float = 0.0
    average_quality: float = 0.0
    confidence_distribution: dict[str, int] = field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0}
    )
    extraction_method_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class PerformanceMetrics:
    total_time_ms: int = 0
    stage_times_ms: dict[str, int] = field(default_factory=dict)
    processing_speed: float = 0.0  # sources per second
    accuracy_estimate: float = 0.0
    cache_effectiveness: float = 0.0
    cost_efficiency: float = 0.0  # unique contacts per query


@dataclass(slots=True)
class SearchMetrics:
    query_metrics: QueryMetrics = field(default_factory=QueryMetrics)
    source_metrics: SourceMetrics = field(default_factory=SourceMetrics)
    contact_metrics: ContactMetrics = field(default_factory=ContactMetrics)
    performance_metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)

    def to_dict(self) -> dict[str, Any]:
        qm, sm, cm, pm = (
            self.query_metrics,
            self.source_metrics,
            self.contact_metrics,
            self.performance_metrics,
        )
        return {
            "query_metrics": {
                "total_generated": qm.total_generated,
                "total_duplicates": qm.total_duplicates,
                "average_score": round(qm.average_score, 4),
                "diversity_score": round(qm.diversity_score, 4),
                "coverage_by_criteria": dict(qm.coverage_by_criteria),
            },
            "source_metrics": {
                "total_sources": sm.total_sources,
                "successful_sources": sm.successful_sources,
                "failed_sources": sm.failed_sources,
                "average_authority": round(sm.average_authority, 4),
                "content_quality_distribution": dict(sm.content_quality_distribution),
            },
            "contact_metrics": {
                "total_found": cm.total_found,
                "total_filtered": cm.total_filtered,
                "total_imported": cm.total_imported,
                "average_confidence": round(cm.average_confidence, 4),
                "average_quality": round(cm.average_quality, 4),
                "confidence_distribution": dict(cm.confidence_distribution),
                "extraction_method_breakdown": dict(cm.extraction_method_breakdown),
            },
            "performance_metrics": {
                "total_time_ms": pm.total_time_ms,
                "stage_times_ms": dict(pm.stage_times_ms),
                "processing_speed": round(pm.processing_speed, 4),
                "accuracy_estimate": round(pm.accuracy_estimate, 4),
                "cache_effectiveness": round(pm.cache_effectiveness, 4),
                "cost_efficiency": round(pm.cost_efficiency, 4),
            },
        }


@dataclass(slots=True)
class AggregatedSearchResult:
    search_id: str
    status: SearchStage
    total_results: int
    unique_contacts: int
    duplicate_contacts: int
    average_confidence: float
    average_quality: float
    processing_time_ms: int
    results: list[SearchResult]
    contacts: list[ExtractedContact]
    duplicates: list[DuplicateGroup]
    metrics: SearchMetrics
    errors: list[JobErrorRecord]
    from_cache: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "search_id": self.search_id,
            "status": self.status.value,
            "total_results": self.total_results,
            "unique_contacts": self.unique_contacts,
            "duplicate_contacts": self.duplicate_contacts,
            "average_confidence": round(self.average_confidence, 4),
            "average_quality": round(self.average_quality, 4),
            "processing_time_ms": self.processing_time_ms,
            "results": [r.to_dict() for r in self.results],
            "contacts": [c.to_dict() for c in self.contacts],
            "duplicates": [g.to_dict() for g in self.duplicates],
            "metrics": self.metrics.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "from_cache": self.from_cache,
        }


@dataclass(slots=True)
class SearchJob:
    """Mutable state of one search. Only the orchestrator mutates it."""

    search_id: str
    user_id: str
    configuration: SearchConfiguration
    stage: SearchStage = SearchStage.INITIALIZING
    progress: SearchProgress = field(default_factory=SearchProgress)
    queries: list[GeneratedQuery] = field(default_factory=list)
    results: list[SearchResult] = field(default_factory=list)
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)
    final_contacts: list[ExtractedContact] = field(default_factory=list)
    errors: list[JobErrorRecord] = field(default_factory=list)
    metrics: SearchMetrics = field(default_factory=SearchMetrics)
    events: list[Any] = field(default_factory=list)
    aggregated: AggregatedSearchResult | None = None
    cancel_reason: str | None = None
    created_at: str = field(default_factory=_utc_now)
    started_at: str | None = None
    completed_at: str | None = None
    updated_at: str = field(default_factory=_utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def transition_to(self, stage: SearchStage) -> None:
        """Move to ``stage``. Pipeline stages only advance; terminal stages absorb."""
        if self.is_terminal:
            raise InvalidStageTransition(
                f"Search {self.search_id} is already {self.stage.value}"
            )
        if stage not in TERMINAL_STAGES:
            if PIPELINE_ORDER.index(stage) <= PIPELINE_ORDER.index(self.stage):
                raise InvalidStageTransition(
                    f"Cannot move search {self.search_id} from {self.stage.value} to {stage.value}"
                )
        self.stage = stage
        self.progress.stage = stage
        self.updated_at = _utc_now()
        if stage in TERMINAL_STAGES:
            self.completed_at = self.updated_at

    def set_progress(self, percentage: float, message: str | None = None) -> None:
        """Raise the overall percentage; lower values are ignored."""
        self.progress.percentage = min(max(self.progress.percentage, float(percentage)), 100.0)
        if message:
            self.progress.message = message
        self.updated_at = _utc_now()

    def set_stage_progress(
        self,
        stage: SearchStage,
        *,
        status: StageStatus | None = None,
        progress: float | None = None,
        message: str | None = None,
    ) -> None:
        sp = self.progress.stage_progress.get(stage)
        if sp is None:
            return
        if status is not None:
            sp.status = status
            if status == StageStatus.RUNNING and sp.started_at is None:
                sp.started_at = _utc_now()
            if status in (StageStatus.COMPLETED, StageStatus.FAILED, StageStatus.SKIPPED):
                sp.completed_at = _utc_now()
        if progress is not None:
            sp.progress = min(max(sp.progress, float(progress)), 100.0)
        if message:
            sp.message = message

    def add_result(self, result: SearchResult) -> None:
        self.results.append(result)

    def record_error(self, error: JobErrorRecord) -> None:
        self.errors.append(error)

    def all_contacts(self) -> list[ExtractedContact]:
        return [contact for result in self.results for contact in result.contacts]
