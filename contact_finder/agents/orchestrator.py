from __future__ import annotations

import asyncio
import copy
import html
import time
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from contact_finder.config import settings
from contact_finder.llm_client import client as llm_client
from contact_finder.models.events import SearchEvent
from contact_finder.models.orchestration import SearchOrchestrationConfig
from contact_finder.models.queries import GeneratedQuery
from contact_finder.models.schemas import CancellationResponse, DateRange, SearchConfiguration
from contact_finder.models.search import (
    TRACKED_STAGES,
    AggregatedSearchResult,
    ExtractedContact,
    SearchJob,
    SearchResult,
    SearchStage,
    SourceType,
    StageStatus,
)
from contact_finder.research_core.dedupe.service import ContactDeduplicator
from contact_finder.research_core.extract.service import ContactExtractor, ExtractionOutcome
from contact_finder.research_core.models.interfaces import (
    FetchContentFn,
    ProviderSearchOptions,
    RawContent,
    SearchFn,
    SourceHit,
)
from contact_finder.research_core.queries.enhancer import AIQueryEnhancer
from contact_finder.research_core.queries.service import QueryGenerationService
from contact_finder.research_core.scrape.service import ScrapeService
from contact_finder.services import streaming
from contact_finder.services.errors import ErrorCategory, JobErrorRecord, classify_error
from contact_finder.services.logger import log_event, log_search_stage, logger
from contact_finder.services.repository import SearchRepository, get_repository
from contact_finder.services.retry import RetryMechanism, RetryOptions, RetryResult, is_retryable_error
from contact_finder.services.search_cache import SearchCache
from contact_finder.services.throttler import DomainBlockedError, RequestThrottler, get_recommended_config
from contact_finder.tools import search_provider
from contact_finder.tools.web_utils import estimate_authority, extract_domain

T = TypeVar("T")

EventListener = Callable[[SearchEvent], Awaitable[None]]

# overall percentage at (start, end) of each stage
STAGE_PROGRESS: dict[SearchStage, tuple[float, float]] = {
    SearchStage.QUERY_GENERATION: (10.0, 20.0),
    SearchStage.WEB_SEARCH: (25.0, 50.0),
    SearchStage.CONTENT_SCRAPING: (55.0, 70.0),
    SearchStage.CONTACT_EXTRACTION: (70.0, 90.0),
    SearchStage.RESULT_AGGREGATION: (90.0, 95.0),
    SearchStage.FINALIZATION: (95.0, 100.0),
}

STAGE_MESSAGES: dict[SearchStage, str] = {
    SearchStage.QUERY_GENERATION: "Generating search queries",
    SearchStage.WEB_SEARCH: "Searching the web",
    SearchStage.CONTENT_SCRAPING: "Fetching source pages",
    SearchStage.CONTACT_EXTRACTION: "Extracting contacts",
    SearchStage.RESULT_AGGREGATION: "Deduplicating contacts",
    SearchStage.FINALIZATION: "Finalizing results",
}

SNIPPET_PROVIDER = "search_snippet"


class SearchCancelled(Exception):
    pass


class SearchFailure(Exception):
    """Unrecoverable job failure; the job moves to ``failed``."""

    def __init__(
        self,
        message: str,
        *,
        stage: SearchStage | None = None,
        category: ErrorCategory = ErrorCategory.APPLICATION,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.stage = stage
        self.category = category
        self.retryable = retryable


@dataclass(slots=True)
class SourceCandidate:
    query: GeneratedQuery
    hit: SourceHit
    query_rank: int
    hit_rank: int


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _time_range(date_range: DateRange | None) -> str | None:
    if date_range is None or date_range.from_date is None:
        return None
    days = (date.today() - date_range.from_date).days
    if days <= 1:
        return "day"
    if days <= 7:
        return "week"
    if days <= 31:
        return "month"
    return "year"


def _url_key(url: str) -> str:
    return url.strip().rstrip("/").lower()


def _result_order(result: SearchResult) -> tuple[int, int, str]:
    return (
        int(result.metadata.get("query_rank", 0)),
        int(result.metadata.get("hit_rank", 0)),
        result.url,
    )


def _contact_order(contact: ExtractedContact) -> tuple[float, float, str, str]:
    return (-contact.confidence_score, -contact.quality_score, contact.name.lower(), contact.contact_id)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _fetch_retryable(error: BaseException) -> bool:
    # blocked domains are terminal for the url
    return not isinstance(error, DomainBlockedError) and is_retryable_error(error)


def _snippet_content(hit: SourceHit) -> RawContent:
    body = (
        f"<html><head><title>{html.escape(hit.title)}</title></head>"
        f"<body><p>{html.escape(hit.snippet)}</p></body></html>"
    )
    return RawContent(url=hit.url, final_url=hit.url, status_code=200, html=body, provider=SNIPPET_PROVIDER)


class SearchOrchestrator:
    """Drives search jobs through the contact-discovery pipeline.

    Flow:
      1. Generate, score and dedupe queries from the configuration
      2. Fan out: provider search per query (bounded, retried)
      3. Fetch every selected source through the throttler (bounded, retried)
      4. Extract contacts from each page (bounded)
      5. Deduplicate contacts across all sources
      6. Aggregate metrics, persist and cache the outcome

    Each stage emits ``SearchEvent``s and writes a status row. Cancellation is
    cooperative through one ``asyncio.Event`` per job.
    """

    def __init__(
        self,
        config: SearchOrchestrationConfig | None = None,
        *,
        search_fn: SearchFn | None = None,
        fetch_fn: FetchContentFn | None = None,
        query_service: QueryGenerationService | None = None,
        extractor: ContactExtractor | None = None,
        deduplicator: ContactDeduplicator | None = None,
        throttler: RequestThrottler | None = None,
        retry: RetryMechanism | None = None,
        repository: SearchRepository | None = None,
        cache: SearchCache | None = None,
        listener: EventListener | None = None,
    ):
        self.config = config or SearchOrchestrationConfig.from_settings()
        self.retry = retry or RetryMechanism()
        self.throttler = throttler or RequestThrottler()
        self.search_fn = search_fn or search_provider.search
        self.fetch_fn = fetch_fn or ScrapeService().fetch_content

        ai_provider = None
        if query_service is None or extractor is None:
            ai_provider = llm_client()
        self.query_service = query_service or QueryGenerationService(
            enhancer=AIQueryEnhancer(ai_provider) if ai_provider is not None else None,
            retry=self.retry,
        )
        self.extractor = extractor or ContactExtractor(ai_provider=ai_provider)
        self.deduplicator = deduplicator or ContactDeduplicator()
        self.repository = repository or get_repository()
        self.cache = cache or SearchCache(
            ttl_ms=self.config.cache.ttl_ms,
            max_size=self.config.cache.max_size,
            enabled=self.config.cache.enabled,
        )
        self.listener = listener

        self._jobs: dict[str, SearchJob] = {}
        self._aborts: dict[str, asyncio.Event] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._slots = asyncio.Semaphore(max(self.config.concurrency.max_concurrent_searches, 1))

    # --- Public API ---

    async def submit_search(self, config: SearchConfiguration, user_id: str) -> SearchJob:
        """Queue a search in the background and return its job immediately."""
        job = await self._create_job(config, user_id)
        task = asyncio.create_task(self._run(job), name=f"search-{job.search_id}")
        self._tasks[job.search_id] = task
        task.add_done_callback(lambda _task, search_id=job.search_id: self._tasks.pop(search_id, None))
        return job

    async def run_search(self, config: SearchConfiguration, user_id: str) -> AggregatedSearchResult:
        """Run a search inline. Failed and cancelled jobs still return their partial result."""
        job = await self._create_job(config, user_id)
        await self._run(job)
        if job.aggregated is None:
            raise RuntimeError(f"Search {job.search_id} finished without an aggregated result")
        return job.aggregated

    async def wait_for_search(self, search_id: str) -> AggregatedSearchResult | None:
        task = self._tasks.get(search_id)
        if task is not None:
            await task
        job = self._jobs.get(search_id)
        return job.aggregated if job is not None else None

    def get_job(self, search_id: str) -> SearchJob | None:
        return self._jobs.get(search_id)

    def get_search_status(self, search_id: str, user_id: str | None = None) -> dict[str, Any] | None:
        job = self._jobs.get(search_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            return None
        return {
            "search_id": job.search_id,
            "status": job.stage.value,
            "progress": job.progress.to_dict(),
            "results": len(job.results),
            "contacts": len(job.final_contacts) or len(job.all_contacts()),
            "errors": [e.to_dict() for e in job.errors],
            "metrics": job.metrics.to_dict(),
            "created_at": job.created_at,
            "started_at": job.started_at,
            "updated_at": job.updated_at,
            "completed_at": job.completed_at,
        }

    async def cancel_search(
        self,
        search_id: str,
        user_id: str,
        reason: str | None = None,
    ) -> CancellationResponse:
        job = self._jobs.get(search_id)
        if job is None:
            return CancellationResponse(search_id=search_id, success=False, message="Search not found")
        if job.user_id != user_id:
            return CancellationResponse(search_id=search_id, success=False, message="Access denied")
        if job.is_terminal:
            return CancellationResponse(
                search_id=search_id,
                success=False,
                message=f"Search cannot be cancelled: {job.stage.value}",
            )

        job.cancel_reason = reason or "Cancelled by user"
        job.transition_to(SearchStage.CANCELLED)
        job.progress.message = f"Search cancelled: {job.cancel_reason}"
        self._aborts[search_id].set()
        log_search_stage(search_id, SearchStage.CANCELLED.value, "cancelled", {"reason": job.cancel_reason})
        await self._persist_status(job)
        return CancellationResponse(
            search_id=search_id,
            success=True,
            message="Search cancelled successfully",
            cancelled_at=datetime.now(timezone.utc),
        )

    def get_statistics(self) -> dict[str, Any]:
        by_status = {stage.value: 0 for stage in SearchStage}
        for job in self._jobs.values():
            by_status[job.stage.value] += 1
        throttle_states = self.throttler.get_all_stats()
        return {
            "total_searches": len(self._jobs),
            "active_searches": sum(1 for job in self._jobs.values() if not job.is_terminal),
            "by_status": by_status,
            "cache": self.cache.stats(),
            "tracked_domains": len(throttle_states),
            "blocked_domains": sum(1 for state in throttle_states.values() if state.is_blocked),
        }

    def cleanup_completed(self, max_age_seconds: float = 3600) -> int:
        """Forget terminal jobs older than ``max_age_seconds`` and sweep idle throttle state."""
        now = datetime.now(timezone.utc)
        removed = 0
        for search_id, job in list(self._jobs.items()):
            if not job.is_terminal or job.completed_at is None:
                continue
            age = (now - datetime.fromisoformat(job.completed_at)).total_seconds()
            if age >= max_age_seconds:
                self._jobs.pop(search_id, None)
                self._aborts.pop(search_id, None)
                removed += 1
        self.throttler.cleanup()
        self.cache.prune()
        if removed:
            logger.info(f"Cleaned up {removed} finished search job(s)")
        return removed

    # --- Job lifecycle ---

    async def _create_job(self, config: SearchConfiguration, user_id: str) -> SearchJob:
        job = SearchJob(search_id=str(uuid.uuid4()), user_id=user_id, configuration=config)
        self._jobs[job.search_id] = job
        self._aborts[job.search_id] = asyncio.Event()
        log_search_stage(job.search_id, SearchStage.INITIALIZING.value, "queued", {"query": config.query})
        await self._persist(job, "save_job", lambda: self.repository.save_job(job))
        await self._emit(job, streaming.search_queued(job.search_id, config.query, user_id))
        return job

    def _total_timeout_ms(self, config: SearchConfiguration) -> int:
        return config.options.processing_timeout_ms or self.config.timeouts.total_search_ms

    async def _run(self, job: SearchJob) -> None:
        abort = self._aborts[job.search_id]
        async with self._slots:
            started = time.monotonic()
            job.started_at = _utc_now()
            try:
                await self._pipeline(job, abort, started)
            except SearchCancelled:
                await self._finish_cancelled(job, started)
            except SearchFailure as exc:
                await self._finish_failed(job, exc, started)
            except Exception as exc:
                logger.exception(f"Search {job.search_id} crashed in {job.stage.value}")
                await self._finish_failed(job, SearchFailure(f"Search crashed: {exc}"), started)

    async def _pipeline(self, job: SearchJob, abort: asyncio.Event, started: float) -> None:
        config = job.configuration
        options = config.options
        deadline = started + self._total_timeout_ms(config) / 1000.0
        if abort.is_set() or job.is_terminal:
            raise SearchCancelled()

        cached = self.cache.get(config)
        if cached is not None:
            await self._complete_from_cache(job, cached, started)
            return

        # Stage: query generation
        stage_started = await self._enter_stage(job, SearchStage.QUERY_GENERATION, abort)
        generation = await self._run_stage(
            job,
            SearchStage.QUERY_GENERATION,
            lambda: self.query_service.generate(config),
            self.config.timeouts.query_generation_ms,
            abort,
            deadline,
        )
        job.queries = list(generation.queries)
        for message in generation.errors:
            job.record_error(
                JobErrorRecord(
                    stage=SearchStage.QUERY_GENERATION.value,
                    message=message,
                    category=classify_error(RuntimeError(message)).category.value,
                    source=config.query,
                )
            )
        qm = job.metrics.query_metrics
        qm.total_generated = generation.total_generated
        qm.total_duplicates = generation.duplicates_removed
        qm.average_score = generation.average_score
        qm.diversity_score = generation.diversity_score
        qm.coverage_by_criteria = dict(generation.coverage_by_criteria)
        if not job.queries:
            raise SearchFailure(
                "No valid queries could be generated",
                stage=SearchStage.QUERY_GENERATION,
                category=ErrorCategory.VALIDATION,
            )
        await self._complete_stage(
            job,
            SearchStage.QUERY_GENERATION,
            stage_started,
            started,
            queries=len(job.queries),
            ai_enhanced=generation.ai_enhanced,
        )

        # Stage: web search
        stage_started = await self._enter_stage(job, SearchStage.WEB_SEARCH, abort)
        candidates = await self._run_stage(
            job,
            SearchStage.WEB_SEARCH,
            lambda: self._search_stage(job, abort),
            self.config.timeouts.web_search_ms,
            abort,
            deadline,
        )
        await self._complete_stage(job, SearchStage.WEB_SEARCH, stage_started, started, sources=len(candidates))

        # Stage: content scraping
        stage_started = await self._enter_stage(job, SearchStage.CONTENT_SCRAPING, abort)
        if options.enable_content_scraping:
            pages = await self._run_stage(
                job,
                SearchStage.CONTENT_SCRAPING,
                lambda: self._scrape_stage(job, candidates, abort),
                self.config.timeouts.content_scraping_ms,
                abort,
                deadline,
            )
            await self._complete_stage(job, SearchStage.CONTENT_SCRAPING, stage_started, started, pages=len(pages))
        else:
            pages = [(candidate, _snippet_content(candidate.hit)) for candidate in candidates]
            job.metrics.source_metrics.total_sources = len(pages)
            job.metrics.source_metrics.successful_sources = len(pages)
            await self._complete_stage(job, SearchStage.CONTENT_SCRAPING, stage_started, started, skipped=True)

        # Stage: contact extraction
        stage_started = await self._enter_stage(job, SearchStage.CONTACT_EXTRACTION, abort)
        await self._run_stage(
            job,
            SearchStage.CONTACT_EXTRACTION,
            lambda: self._extraction_stage(job, pages, abort),
            self.config.timeouts.contact_extraction_ms,
            abort,
            deadline,
        )
        job.results.sort(key=_result_order)
        await self._complete_stage(
            job,
            SearchStage.CONTACT_EXTRACTION,
            stage_started,
            started,
            skipped=not options.enable_contact_extraction,
            results=len(job.results),
            contacts=len(job.all_contacts()),
        )

        # Stage: result aggregation
        stage_started = await self._enter_stage(job, SearchStage.RESULT_AGGREGATION, abort)
        dedupe = self.deduplicator.deduplicate(job.all_contacts())
        job.duplicate_groups = dedupe.groups
        job.final_contacts = sorted(dedupe.unique_contacts, key=_contact_order)
        await self._persist_outputs(job)
        await self._complete_stage(
            job,
            SearchStage.RESULT_AGGREGATION,
            stage_started,
            started,
            unique_contacts=len(job.final_contacts),
            duplicate_groups=len(job.duplicate_groups),
        )

        # Stage: finalization
        stage_started = await self._enter_stage(job, SearchStage.FINALIZATION, abort)
        await self._complete_stage(job, SearchStage.FINALIZATION, stage_started, started)
        if job.is_terminal:
            raise SearchCancelled()
        job.aggregated = self._aggregate(job, SearchStage.COMPLETED, started)
        job.transition_to(SearchStage.COMPLETED)
        job.set_progress(100.0, "Search completed")
        self.cache.set(config, job.aggregated)

        log_search_stage(job.search_id, SearchStage.COMPLETED.value, "completed", self._summary(job.aggregated))
        await self._persist_status(job)
        await self._emit(job, streaming.search_complete(job.search_id, self._summary(job.aggregated)))

    async def _complete_from_cache(
        self,
        job: SearchJob,
        cached: AggregatedSearchResult,
        started: float,
    ) -> None:
        job.results = list(cached.results)
        job.duplicate_groups = list(cached.duplicates)
        job.final_contacts = list(cached.contacts)
        job.metrics = copy.deepcopy(cached.metrics)
        job.metrics.performance_metrics.cache_effectiveness = 1.0
        job.metrics.performance_metrics.total_time_ms = int((time.monotonic() - started) * 1000)
        for stage in TRACKED_STAGES:
            job.set_stage_progress(stage, status=StageStatus.SKIPPED, progress=100.0, message="Served from cache")
        job.aggregated = replace(
            cached,
            search_id=job.search_id,
            processing_time_ms=job.metrics.performance_metrics.total_time_ms,
            metrics=job.metrics,
            errors=[],
            from_cache=True,
        )
        job.transition_to(SearchStage.COMPLETED)
        job.set_progress(100.0, "Search completed from cache")
        log_search_stage(job.search_id, SearchStage.COMPLETED.value, "completed", {"from_cache": True})
        await self._persist_status(job)
        await self._emit(job, streaming.search_complete(job.search_id, self._summary(job.aggregated)))

    async def _finish_failed(self, job: SearchJob, failure: SearchFailure, started: float) -> None:
        if job.stage == SearchStage.CANCELLED:
            await self._finish_cancelled(job, started)
            return
        failed_stage = failure.stage or job.stage
        message = str(failure)
        job.record_error(
            JobErrorRecord(
                stage=failed_stage.value,
                message=message,
                category=failure.category.value,
                retryable=failure.retryable,
            )
        )
        job.set_stage_progress(failed_stage, status=StageStatus.FAILED, message=message)
        job.results.sort(key=_result_order)
        self._refresh_metrics(job, started)
        job.aggregated = self._aggregate(job, SearchStage.FAILED, started)
        job.transition_to(SearchStage.FAILED)
        job.progress.message = f"Search failed: {message}"

        log_search_stage(job.search_id, failed_stage.value, "failed", {"error": message})
        await self._persist_status(job, error=message)
        await self._persist_outputs(job)
        await self._emit(job, streaming.search_failed(job.search_id, message, job.errors))

    async def _finish_cancelled(self, job: SearchJob, started: float) -> None:
        job.results.sort(key=_result_order)
        self._refresh_metrics(job, started)
        job.aggregated = self._aggregate(job, SearchStage.CANCELLED, started)
        if not job.is_terminal:
            job.transition_to(SearchStage.CANCELLED)
        for sp in job.progress.stage_progress.values():
            if sp.status == StageStatus.RUNNING:
                sp.message = "Cancelled"

        log_event(
            "search_cancelled",
            f"Search {job.search_id} cancelled with {len(job.results)} result(s) kept",
            reason=job.cancel_reason,
        )
        await self._persist_status(job)
        await self._persist_outputs(job)
        await self._emit(job, streaming.search_cancelled(job.search_id, job.cancel_reason, len(job.results)))

    # --- Stage plumbing ---

    async def _enter_stage(self, job: SearchJob, stage: SearchStage, abort: asyncio.Event) -> float:
        if abort.is_set() or job.is_terminal:
            raise SearchCancelled()
        job.transition_to(stage)
        job.progress.current_step = TRACKED_STAGES.index(stage) + 1
        job.set_stage_progress(stage, status=StageStatus.RUNNING, message=STAGE_MESSAGES[stage])
        job.set_progress(STAGE_PROGRESS[stage][0], STAGE_MESSAGES[stage])
        log_search_stage(job.search_id, stage.value, "started")
        await self._persist_status(job)
        await self._emit(job, streaming.stage_started(job.search_id, stage.value))
        await self._emit(job, streaming.progress(job.search_id, job.progress))
        return time.monotonic()

    async def _complete_stage(
        self,
        job: SearchJob,
        stage: SearchStage,
        stage_started: float,
        job_started: float,
        *,
        skipped: bool = False,
        **data: Any,
    ) -> None:
        duration_ms = int((time.monotonic() - stage_started) * 1000)
        job.metrics.performance_metrics.stage_times_ms[stage.value] = duration_ms
        job.set_stage_progress(
            stage,
            status=StageStatus.SKIPPED if skipped else StageStatus.COMPLETED,
            progress=100.0,
        )
        job.set_progress(STAGE_PROGRESS[stage][1])
        self._refresh_metrics(job, job_started)
        log_search_stage(job.search_id, stage.value, "skipped" if skipped else "completed", data or None)
        await self._emit(job, streaming.stage_completed(job.search_id, stage.value, duration_ms, skipped=skipped, **data))

    async def _run_stage(
        self,
        job: SearchJob,
        stage: SearchStage,
        factory: Callable[[], Awaitable[T]],
        timeout_ms: int,
        abort: asyncio.Event,
        deadline: float,
    ) -> T:
        """Run one stage body, racing it against the abort event and both timeouts."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise SearchFailure(
                f"Total search timeout of {self._total_timeout_ms(job.configuration)}ms exceeded",
                stage=stage,
                category=ErrorCategory.NETWORK,
                retryable=True,
            )
        stage_budget = timeout_ms / 1000.0
        budget = min(stage_budget, remaining)

        work = asyncio.ensure_future(factory())
        aborted = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait({work, aborted}, timeout=budget, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            aborted.cancel()

        if work in done:
            return work.result()

        work.cancel()
        await asyncio.wait({work})
        if abort.is_set():
            raise SearchCancelled()
        if budget < stage_budget:
            raise SearchFailure(
                f"Total search timeout of {self._total_timeout_ms(job.configuration)}ms exceeded",
                stage=stage,
                category=ErrorCategory.NETWORK,
                retryable=True,
            )
        raise SearchFailure(
            f"Stage {stage.value} timed out after {timeout_ms}ms",
            stage=stage,
            category=ErrorCategory.NETWORK,
            retryable=True,
        )

    async def _stage_tick(self, job: SearchJob, stage: SearchStage, done: int, total: int, verb: str) -> None:
        start, end = STAGE_PROGRESS[stage]
        fraction = done / total if total else 1.0
        job.set_stage_progress(stage, progress=fraction * 100.0, message=f"{verb} {done}/{total}")
        job.set_progress(start + (end - start) * fraction)
        await self._emit(job, streaming.progress(job.search_id, job.progress))

    # --- Stage bodies ---

    def _provider_options(self, config: SearchConfiguration) -> ProviderSearchOptions:
        criteria = config.criteria
        return ProviderSearchOptions(
            max_results=max(1, min(settings.search_max_results_per_query, config.options.max_results)),
            include_domains=list(criteria.domains),
            exclude_domains=list(criteria.exclude_domains),
            time_range=_time_range(criteria.date_range),
            safe_search=criteria.safe_search,
        )

    async def _search_stage(self, job: SearchJob, abort: asyncio.Event) -> list[SourceCandidate]:
        queries = job.queries
        provider_options = self._provider_options(job.configuration)
        retry_options = self.config.retry.to_options(abort_signal=abort)
        semaphore = asyncio.Semaphore(max(self.config.concurrency.max_concurrent_queries, 1))
        hits_by_query: dict[int, list[SourceHit]] = {}
        failures = 0
        done = 0

        async def run_one(index: int, query: GeneratedQuery) -> None:
            nonlocal failures, done
            async with semaphore:
                if abort.is_set():
                    return
                outcome = await self.retry.execute(
                    lambda: self.search_fn(query.text, provider_options),
                    retry_options,
                )
            done += 1
            if outcome.success:
                hits_by_query[index] = list(outcome.result or [])
            elif not abort.is_set():
                failures += 1
                await self._record_failure(job, SearchStage.WEB_SEARCH, outcome, query.text)
            await self._stage_tick(job, SearchStage.WEB_SEARCH, done, len(queries), "Searched")

        await asyncio.gather(*(run_one(i, q) for i, q in enumerate(queries)))
        if abort.is_set():
            raise SearchCancelled()
        if failures == len(queries):
            raise SearchFailure(
                f"All {len(queries)} search queries failed",
                stage=SearchStage.WEB_SEARCH,
                category=ErrorCategory.NETWORK,
                retryable=True,
            )

        # merge in query rank order so completion order never leaks into the output
        seen: set[str] = set()
        candidates: list[SourceCandidate] = []
        for index in sorted(hits_by_query):
            for rank, hit in enumerate(hits_by_query[index]):
                key = _url_key(hit.url)
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(SourceCandidate(query=queries[index], hit=hit, query_rank=index, hit_rank=rank))
        return candidates[: job.configuration.options.max_results]

    async def _fetch(
        self,
        url: str,
        retry_options: RetryOptions,
        abort: asyncio.Event,
    ) -> RetryResult[RawContent] | JobErrorRecord:
        throttle_config = get_recommended_config(url, self.throttler.default_config)
        gate = self.throttler.check_request(url, throttle_config)
        if not gate.allowed and gate.retry_after is not None:
            return JobErrorRecord(
                stage=SearchStage.CONTENT_SCRAPING.value,
                message=f"{gate.reason}; retry after {gate.retry_after}s",
                category=ErrorCategory.RATE_LIMIT.value,
                retryable=True,
                source=url,
            )
        return await self.retry.execute(
            lambda: self.throttler.execute_throttled_request(
                url,
                lambda: self.fetch_fn(url),
                throttle_config,
                abort_signal=abort,
            ),
            retry_options,
        )

    async def _scrape_stage(
        self,
        job: SearchJob,
        candidates: list[SourceCandidate],
        abort: asyncio.Event,
    ) -> list[tuple[SourceCandidate, RawContent]]:
        retry_options = replace(self.config.retry.to_options(abort_signal=abort), retry_condition=_fetch_retryable)
        semaphore = asyncio.Semaphore(max(self.config.concurrency.max_concurrent_queries, 1))
        sm = job.metrics.source_metrics
        sm.total_sources = len(candidates)
        fetched: dict[int, RawContent] = {}
        done = 0

        async def run_one(position: int, candidate: SourceCandidate) -> None:
            nonlocal done
            url = candidate.hit.url
            async with semaphore:
                if abort.is_set():
                    return
                outcome = await self._fetch(url, retry_options, abort)
            done += 1
            if isinstance(outcome, JobErrorRecord):
                sm.failed_sources += 1
                job.record_error(outcome)
                await self._emit(job, streaming.error(job.search_id, outcome))
            elif outcome.success and outcome.result is not None:
                content = outcome.result
                content.attempts = outcome.attempts
                fetched[position] = content
                sm.successful_sources += 1
            elif not abort.is_set():
                sm.failed_sources += 1
                await self._record_failure(job, SearchStage.CONTENT_SCRAPING, outcome, url)
            await self._stage_tick(job, SearchStage.CONTENT_SCRAPING, done, len(candidates), "Fetched")

        await asyncio.gather(*(run_one(i, c) for i, c in enumerate(candidates)))
        return [(candidates[i], fetched[i]) for i in sorted(fetched)]

    async def _extraction_stage(
        self,
        job: SearchJob,
        pages: list[tuple[SourceCandidate, RawContent]],
        abort: asyncio.Event,
    ) -> None:
        config = job.configuration
        options = config.options
        per_source_cap = min(options.max_contacts_per_source, self.config.thresholds.max_results_per_source)
        semaphore = asyncio.Semaphore(max(self.config.concurrency.max_concurrent_extractions, 1))
        cm = job.metrics.contact_metrics
        done = 0

        async def run_one(candidate: SourceCandidate, content: RawContent) -> None:
            nonlocal done
            outcome: ExtractionOutcome | None = None
            async with semaphore:
                if abort.is_set():
                    return
                if options.enable_contact_extraction:
                    try:
                        outcome = await self.extractor.extract(
                            content,
                            criteria=config.criteria,
                            options=options,
                            title=candidate.hit.title,
                        )
                    except Exception as exc:
                        logger.warning(f"Contact extraction crashed for {content.url}: {exc}")
                        job.record_error(
                            JobErrorRecord(
                                stage=SearchStage.CONTACT_EXTRACTION.value,
                                message=f"Extraction failed: {exc}",
                                source=content.url,
                            )
                        )
            if abort.is_set():
                return

            result = self._build_result(candidate, content, outcome, per_source_cap)
            job.add_result(result)
            done += 1
            if outcome is not None:
                cm.total_found += outcome.total_found
                cm.total_filtered += outcome.filtered_out
                for message in outcome.errors:
                    job.record_error(
                        JobErrorRecord(
                            stage=SearchStage.CONTACT_EXTRACTION.value,
                            message=message,
                            source=content.url,
                        )
                    )
            await self._emit(job, streaming.search_result(job.search_id, result))
            await self._stage_tick(job, SearchStage.CONTACT_EXTRACTION, done, len(pages), "Processed")

        await asyncio.gather(*(run_one(candidate, content) for candidate, content in pages))

    def _build_result(
        self,
        candidate: SourceCandidate,
        content: RawContent,
        outcome: ExtractionOutcome | None,
        per_source_cap: int,
    ) -> SearchResult:
        hit = candidate.hit
        result_id = str(uuid.uuid4())
        contacts = list(outcome.contacts[:per_source_cap]) if outcome is not None else []
        for contact in contacts:
            contact.result_id = result_id
            contact.source_url = contact.source_url or hit.url

        hit_score = min(max(float(hit.score), 0.0), 1.0)
        relevance = hit_score
        if contacts:
            relevance = (hit_score + _mean([c.relevance_score for c in contacts])) / 2
        metadata: dict[str, Any] = {
            "query_rank": candidate.query_rank,
            "hit_rank": candidate.hit_rank,
            "search_provider": hit.provider,
            "fetch_provider": content.provider,
            "status_code": content.status_code,
            "fetch_attempts": content.attempts,
        }
        if outcome is not None:
            metadata.update(outcome.metadata())

        page_title = outcome.page_title if outcome is not None and outcome.page_title else ""
        return SearchResult(
            result_id=result_id,
            url=hit.url,
            title=page_title or hit.title,
            domain=extract_domain(content.final_url or hit.url),
            summary=hit.snippet[:500],
            authority=estimate_authority(hit.url),
            relevance_score=round(relevance, 4),
            confidence_score=round(_mean([c.confidence_score for c in contacts]), 4),
            content_ref=content.final_url or content.url,
            published_date=hit.published_date,
            contacts=tuple(contacts),
            source_type=(
                SourceType.SEARCH_PROVIDER if content.provider == SNIPPET_PROVIDER else SourceType.SCRAPE_PROVIDER
            ),
            query_id=candidate.query.query_id,
            processing_time_ms=content.timing_ms + (outcome.processing_time_ms if outcome is not None else 0),
            metadata=metadata,
        )

    # --- Metrics and aggregation ---

    def _refresh_metrics(self, job: SearchJob, started: float) -> None:
        thresholds = self.config.thresholds
        sm = job.metrics.source_metrics
        sm.average_authority = _mean([r.authority for r in job.results])
        quality = {"high": 0, "medium": 0, "low": 0}
        for result in job.results:
            if result.authority >= 0.7:
                quality["high"] += 1
            elif result.authority >= 0.4:
                quality["medium"] += 1
            else:
                quality["low"] += 1
        sm.content_quality_distribution = quality

        contacts = job.final_contacts or job.all_contacts()
        cm = job.metrics.contact_metrics
        cm.total_imported = len(job.final_contacts)
        cm.average_confidence = _mean([c.confidence_score for c in contacts])
        cm.average_quality = _mean([c.quality_score for c in contacts])
        distribution = {"high": 0, "medium": 0, "low": 0}
        methods: dict[str, int] = {}
        accurate = 0
        for contact in contacts:
            if contact.confidence_score >= 0.8:
                distribution["high"] += 1
            elif contact.confidence_score >= thresholds.min_confidence_score:
                distribution["medium"] += 1
            else:
                distribution["low"] += 1
            methods[contact.extraction_method.value] = methods.get(contact.extraction_method.value, 0) + 1
            if (
                contact.quality_score >= thresholds.min_quality_score
                and contact.relevance_score >= thresholds.min_relevance_score
            ):
                accurate += 1
        cm.confidence_distribution = distribution
        cm.extraction_method_breakdown = methods

        pm = job.metrics.performance_metrics
        pm.total_time_ms = int((time.monotonic() - started) * 1000)
        seconds = max(pm.total_time_ms / 1000.0, 0.001)
        pm.processing_speed = sm.successful_sources / seconds
        pm.accuracy_estimate = accurate / len(contacts) if contacts else 0.0
        pm.cost_efficiency = len(contacts) / len(job.queries) if job.queries else 0.0

    def _aggregate(self, job: SearchJob, status: SearchStage, started: float) -> AggregatedSearchResult:
        contacts = job.final_contacts or sorted(job.all_contacts(), key=_contact_order)
        return AggregatedSearchResult(
            search_id=job.search_id,
            status=status,
            total_results=len(job.results),
            unique_contacts=len(contacts),
            duplicate_contacts=sum(len(g.contact_ids) - 1 for g in job.duplicate_groups),
            average_confidence=_mean([c.confidence_score for c in contacts]),
            average_quality=_mean([c.quality_score for c in contacts]),
            processing_time_ms=int((time.monotonic() - started) * 1000),
            results=list(job.results),
            contacts=contacts,
            duplicates=list(job.duplicate_groups),
            metrics=job.metrics,
            errors=list(job.errors),
        )

    @staticmethod
    def _summary(aggregated: AggregatedSearchResult) -> dict[str, Any]:
        return {
            "status": aggregated.status.value,
            "total_results": aggregated.total_results,
            "unique_contacts": aggregated.unique_contacts,
            "duplicate_contacts": aggregated.duplicate_contacts,
            "average_confidence": round(aggregated.average_confidence, 4),
            "average_quality": round(aggregated.average_quality, 4),
            "processing_time_ms": aggregated.processing_time_ms,
            "errors": len(aggregated.errors),
            "from_cache": aggregated.from_cache,
        }

    # --- Errors, events, persistence ---

    async def _record_failure(
        self,
        job: SearchJob,
        stage: SearchStage,
        outcome: RetryResult[Any],
        source: str,
    ) -> None:
        error = outcome.classified_error or classify_error(outcome.error or RuntimeError("Unknown failure"))
        record = JobErrorRecord(
            stage=stage.value,
            message=f"{error.message} (after {outcome.attempts} attempt(s))",
            category=error.category.value,
            retryable=error.retryable,
            source=source,
        )
        job.record_error(record)
        logger.warning(f"Search {job.search_id} {stage.value} failure for {source}: {error.message}")
        await self._emit(job, streaming.error(job.search_id, record))

    async def _emit(self, job: SearchJob, event: SearchEvent) -> None:
        job.events.append(event)
        if self.listener is None:
            return
        try:
            await self.listener(event)
        except Exception as exc:
            logger.warning(f"Search event listener failed for {job.search_id}: {exc}")

    async def _persist(self, job: SearchJob, operation: str, call: Callable[[], Awaitable[None]]) -> None:
        outcome = await self.retry.execute_with_config(call, "database")
        if outcome.success:
            return
        error = outcome.classified_error or classify_error(outcome.error or RuntimeError("Unknown failure"))
        logger.warning(f"Persistence {operation} failed for search {job.search_id}: {error.message}")
        job.record_error(
            JobErrorRecord(
                stage="persistence",
                message=f"{operation} failed: {error.message}",
                category=error.category.value,
                retryable=error.retryable,
            )
        )

    async def _persist_status(self, job: SearchJob, error: str | None = None) -> None:
        await self._persist(
            job,
            "update_job_status",
            lambda: self.repository.update_job_status(
                job.search_id,
                job.stage.value,
                job.progress.to_dict(),
                error=error,
            ),
        )

    async def _persist_outputs(self, job: SearchJob) -> None:
        await self._persist(job, "save_results", lambda: self.repository.save_results(job.search_id, job.results))
        await self._persist(
            job,
            "save_contacts",
            lambda: self.repository.save_contacts(job.search_id, job.all_contacts()),
        )
        await self._persist(
            job,
            "save_duplicate_groups",
            lambda: self.repository.save_duplicate_groups(job.search_id, job.duplicate_groups),
        )
