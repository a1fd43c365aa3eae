"""Discovery Scheduler — orchestrates keyword discovery jobs.

Per job:
  1. Load the target app's metadata (and peer apps for category trending)
  2. Generate candidates once
  3. Fan candidates out to a bounded worker pool; each worker does
     budget reservation → SERP fetch → ranking + volume → persistence
  4. Record every candidate's terminal outcome, keyed by term
  5. Cluster the successful terms and persist the terminal job state

Per-candidate failures never fail the job. Only scheduler-level faults
(persistence unavailable, invariant violations, missing app metadata) do.
Cancellation and the job timeout apply from the moment a job is claimed.
They stop new candidates and abandon in-flight fetches and budget waits.
Writes already started run to completion, so every stored snapshot is
also in the job results.

Usage:
    scheduler = DiscoveryScheduler(store, {Platform.IOS: client}, limiter)
    await scheduler.start()                 # inline mode: runs a dispatcher task

    job_id = await scheduler.submit(request)
    job = await scheduler.get_status(job_id)
    await scheduler.cancel(job_id)
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from keyword_engine.analysis.candidates import CandidateGenerator
from keyword_engine.analysis.clustering import cluster_keywords
from keyword_engine.analysis.ranking import compute_snapshot
from keyword_engine.analysis.types import (
    AppMetadata,
    Candidate,
    CompetitorKeywordEntry,
    DiscoveryMethod,
    Platform,
    SerpResult,
    TrackedKeyword,
)
from keyword_engine.analysis.volume import VolumeEstimator, category_context_for
from keyword_engine.collectors.base import BaseSerpClient
from keyword_engine.core.exceptions import (
    EngineError,
    FetchError,
    FetchErrorKind,
    InvalidRequest,
    InvalidTerm,
    JobNotFound,
    MetadataUnavailable,
    PersistenceUnavailable,
    RateLimited,
    ReasonCode,
)
from keyword_engine.core.metrics import CANDIDATE_RESULTS, DISCOVERY_JOBS
from keyword_engine.gateway.backoff import next_retry_delay
from keyword_engine.gateway.rate_limiter import TokenBucketRateLimiter
from keyword_engine.gateway.redis_rate_limiter import RedisTokenBucketRateLimiter
from keyword_engine.gateway.types import RetryPolicy
from keyword_engine.scheduler.queue_manager import JobPriority, JobQueue
from keyword_engine.scheduler.types import (
    CancelResult,
    CandidateResult,
    CandidateStatus,
    DiscoveryJob,
    DiscoveryRequest,
    JobStatus,
)
from keyword_engine.services.volume_service import VolumeService
from keyword_engine.storage.base import EngineStore

logger = logging.getLogger(__name__)

COMPETITOR_DEPTH = 10  # top non-target apps recorded per SERP
PEER_PAGES = 1


@dataclass
class _CallStats:
    attempts: int = 0
    waits: int = 0


@dataclass
class _JobRuntime:
    """In-process state of a running job. Single writer: this scheduler."""

    job_id: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    cancel_reason: ReasonCode | None = None
    candidates: list[Candidate] = field(default_factory=list)
    results: dict[str, CandidateResult] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    tasks: list[asyncio.Task] = field(default_factory=list)
    writes: list[asyncio.Task] = field(default_factory=list)
    deadline: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def request_cancel(self, reason: ReasonCode) -> None:
        if not self.cancel_event.is_set():
            self.cancel_reason = reason
            self.cancel_event.set()

    def set_deadline(self, when: float) -> None:
        """(Re)arm the job timeout at loop time ``when``."""
        self.clear_deadline()
        self.deadline = asyncio.get_running_loop().call_at(when, self.request_cancel, ReasonCode.TIMEOUT)

    def clear_deadline(self) -> None:
        if self.deadline is not None:
            self.deadline.cancel()
            self.deadline = None


class DiscoveryScheduler:
    def __init__(
        self,
        store: EngineStore,
        serp_clients: dict[Platform, BaseSerpClient],
        rate_limiter: TokenBucketRateLimiter | RedisTokenBucketRateLimiter,
        *,
        generator: CandidateGenerator | None = None,
        estimator: VolumeEstimator | None = None,
        retry_policy: RetryPolicy | None = None,
        max_concurrent_jobs: int = 2,
        workers_per_job: int = 4,
        job_timeout_base: float = 300.0,
        job_timeout_per_candidate: float = 15.0,
        cancel_poll_interval: float = 2.0,
        volume_staleness_days: int = 7,
        cluster_min_size: int = 2,
        cluster_similarity_threshold: float = 0.3,
        dispatch: Callable[[str], Awaitable[None] | None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            store: Persistence for keywords, snapshots, volumes and jobs.
            serp_clients: One SERP client per supported platform.
            rate_limiter: Shared per (tenant, region) request budget.
            dispatch: Hands a submitted job id to an external runner (e.g. a
                Celery task). None runs jobs inline through the job queue.
            clock: Returns the current UTC time; snapshot dates derive from it.
        """
        if workers_per_job < 1 or max_concurrent_jobs < 1:
            raise ValueError("worker and job limits must be positive")

        self.store = store
        self.serp_clients = dict(serp_clients)
        self.rate_limiter = rate_limiter
        self.generator = generator or CandidateGenerator()
        self.volume_service = VolumeService(store, estimator, staleness_days=volume_staleness_days)
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrent_jobs = max_concurrent_jobs
        self.workers_per_job = workers_per_job
        self.job_timeout_base = job_timeout_base
        self.job_timeout_per_candidate = job_timeout_per_candidate
        self.cancel_poll_interval = cancel_poll_interval
        self.cluster_min_size = cluster_min_size
        self.cluster_similarity_threshold = cluster_similarity_threshold
        self._dispatch = dispatch
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.queue = JobQueue()
        self._runtimes: dict[str, _JobRuntime] = {}
        self._job_tasks: dict[str, asyncio.Task] = {}
        self._job_slots = asyncio.Semaphore(max_concurrent_jobs)
        self._dispatcher: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings,
        store: EngineStore,
        serp_clients: dict[Platform, BaseSerpClient],
        rate_limiter: TokenBucketRateLimiter | RedisTokenBucketRateLimiter,
        **kwargs,
    ) -> DiscoveryScheduler:
        return cls(
            store,
            serp_clients,
            rate_limiter,
            retry_policy=RetryPolicy(
                max_retries=settings.candidate_max_retries,
                base_delay=settings.retry_base_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                max_rate_limited_waits=settings.max_rate_limited_waits,
            ),
            max_concurrent_jobs=settings.scheduler_max_concurrent_jobs,
            workers_per_job=settings.scheduler_workers_per_job,
            job_timeout_base=settings.job_timeout_base_seconds,
            job_timeout_per_candidate=settings.job_timeout_per_candidate_seconds,
            cancel_poll_interval=settings.cancel_poll_interval_seconds,
            volume_staleness_days=settings.volume_staleness_days,
            cluster_min_size=settings.cluster_min_size,
            cluster_similarity_threshold=settings.cluster_similarity_threshold,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lifecycle (inline mode)
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the inline dispatcher. No-op when jobs are dispatched externally."""
        if self._dispatch is None and self._dispatcher is None:
            self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="discovery-dispatcher")
            logger.info("Discovery dispatcher started (max %d concurrent jobs)", self.max_concurrent_jobs)

    async def stop(self, grace_seconds: float = 10.0) -> None:
        """Stop dispatching and cancel running jobs; they end as failed/cancelled."""
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None

        for runtime in list(self._runtimes.values()):
            runtime.request_cancel(ReasonCode.CANCELLED)
        tasks = list(self._job_tasks.values())
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=grace_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Discovery scheduler stopped")

    async def _dispatch_loop(self) -> None:
        while True:
            job_id = await self.queue.wait_next()
            await self._job_slots.acquire()
            self._job_tasks[job_id] = asyncio.create_task(self._run_slot(job_id), name=f"discovery-job-{job_id}")

    async def _run_slot(self, job_id: str) -> None:
        try:
            await self.run_job(job_id)
        except Exception:
            logger.exception("Discovery job %s crashed", job_id)
        finally:
            self._job_slots.release()
            self._job_tasks.pop(job_id, None)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def submit(self, request: DiscoveryRequest) -> str:
        """Validate, persist as pending and enqueue. Returns immediately."""
        request.validate()
        if request.platform not in self.serp_clients:
            raise InvalidRequest(f"Platform {request.platform.value} is not supported")

        job = DiscoveryJob(request=request, created_at=self._clock())
        await self.store.create_job(job)

        if self._dispatch is not None:
            outcome = self._dispatch(job.id)
            if asyncio.iscoroutine(outcome):
                await outcome
        else:
            await self.queue.enqueue(job.id, JobPriority.for_depth(request.depth))

        logger.info(
            "Submitted discovery job %s: app=%s region=%s target=%d depth=%s",
            job.id,
            request.app_id,
            request.region,
            request.target_count,
            request.depth.value,
            extra={"job_id": job.id},
        )
        return job.id

    async def get_status(self, job_id: str) -> DiscoveryJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    async def list_jobs(self, tenant_id: str, app_id: str | None = None, limit: int = 20) -> list[DiscoveryJob]:
        return await self.store.list_jobs(tenant_id, app_id=app_id, limit=limit)

    async def cancel(self, job_id: str) -> CancelResult:
        job = await self.get_status(job_id)
        if job.status.is_terminal:
            return CancelResult.ALREADY_TERMINAL

        if job.status is JobStatus.PENDING:
            job.status = JobStatus.FAILED
            job.reason = ReasonCode.CANCELLED
            job.error_detail = "Cancelled before start"
            job.finished_at = self._clock()
            if await self.store.transition_job(job, JobStatus.PENDING):
                await self.queue.remove(job_id)
                DISCOVERY_JOBS.labels(status=JobStatus.FAILED.value, reason=ReasonCode.CANCELLED.value).inc()
                logger.info("Discovery job %s cancelled while pending", job_id)
                return CancelResult.OK
            # Lost the race: the job started meanwhile

        if not await self.store.request_cancel(job_id):
            return CancelResult.ALREADY_TERMINAL

        runtime = self._runtimes.get(job_id)
        if runtime is not None:
            runtime.request_cancel(ReasonCode.CANCELLED)
        logger.info("Cancellation requested for discovery job %s", job_id)
        return CancelResult.OK

    async def run_job(self, job_id: str) -> DiscoveryJob:
        """Execute one job to a terminal state. Safe to call from a worker process."""
        job = await self.get_status(job_id)
        if job.status is not JobStatus.PENDING:
            logger.info("Skipping discovery job %s: status is %s", job_id, job.status.value)
            return job

        if job.cancel_requested:
            job.status = JobStatus.FAILED
            job.reason = ReasonCode.CANCELLED
            job.finished_at = self._clock()
            await self.store.transition_job(job, JobStatus.PENDING)
            return job

        job.status = JobStatus.RUNNING
        job.started_at = self._clock()
        if not await self.store.transition_job(job, JobStatus.PENDING):
            logger.info("Discovery job %s was claimed or cancelled before start", job_id)
            return await self.get_status(job_id)

        runtime = _JobRuntime(job_id=job_id)
        self._runtimes[job_id] = runtime
        logger.info("Discovery job %s running", job_id, extra={"job_id": job_id})
        try:
            await self._execute(job, runtime)
        except PersistenceUnavailable as e:
            await self._finish(job, runtime, JobStatus.FAILED, e.reason, e.message)
        except MetadataUnavailable as e:
            await self._finish(job, runtime, JobStatus.FAILED, e.reason, e.message)
        except EngineError as e:
            logger.exception("Discovery job %s hit a scheduler fault", job_id)
            await self._finish(job, runtime, JobStatus.FAILED, ReasonCode.SCHEDULER_FAULT, e.message)
        except Exception:
            logger.exception("Discovery job %s hit an unexpected error", job_id)
            await self._finish(job, runtime, JobStatus.FAILED, ReasonCode.SCHEDULER_FAULT, "Internal scheduler error")
        else:
            if runtime.cancel_reason is not None:
                detail = "Job timed out" if runtime.cancel_reason is ReasonCode.TIMEOUT else "Cancelled by request"
                await self._finish(job, runtime, JobStatus.FAILED, runtime.cancel_reason, detail)
            else:
                await self._finish(job, runtime, JobStatus.COMPLETED)
        finally:
            self._runtimes.pop(job_id, None)
        return job

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _execute(self, job: DiscoveryJob, runtime: _JobRuntime) -> None:
        """Run the job body until it finishes or the job is cancelled or times out.

        The deadline and the cancel flag cover the whole body: metadata and
        peer loading as well as the candidate fan-out.
        """
        started = asyncio.get_running_loop().time()
        runtime.set_deadline(started + self.job_timeout_base)

        body = asyncio.create_task(self._run_body(job, runtime, started))
        cancel_wait = asyncio.create_task(runtime.cancel_event.wait())
        watcher = asyncio.create_task(self._watch_cancel_flag(job.id, runtime))
        try:
            done, _ = await asyncio.wait({body, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
            if body in done:
                body.result()  # surfaces scheduler faults from the body
            elif runtime.cancel_reason is ReasonCode.TIMEOUT:
                logger.warning(
                    "Discovery job %s timed out after %.1fs",
                    job.id,
                    asyncio.get_running_loop().time() - started,
                )
            else:
                logger.info("Discovery job %s stopping: %s", job.id, runtime.cancel_reason.value)
        finally:
            runtime.clear_deadline()
            for task in (body, cancel_wait, watcher):
                task.cancel()
            await asyncio.gather(body, cancel_wait, watcher, return_exceptions=True)

    async def _run_body(self, job: DiscoveryJob, runtime: _JobRuntime, started: float) -> None:
        request = job.request
        client = self.serp_clients[request.platform]

        app = await self._load_app(request, client)
        peers = await self._load_peers(request, client, app)

        candidates = self.generator.generate(
            app,
            seed_keywords=request.seed_keywords,
            competitor_apps=peers,
            region=request.region,
            max_candidates=request.target_count,
            methods=request.depth.methods,
        )
        runtime.candidates = list(candidates)
        job.progress.total = len(candidates)
        job.by_method = dict(Counter(c.method.value for c in candidates))
        await self.store.save_job(job)

        # Full budget is known only once candidates exist; measured from the claim
        runtime.set_deadline(started + self.job_timeout_base + self.job_timeout_per_candidate * len(candidates))
        await self._fan_out(job, runtime, candidates, client, app)

    async def _fan_out(
        self,
        job: DiscoveryJob,
        runtime: _JobRuntime,
        candidates: Sequence[Candidate],
        client: BaseSerpClient,
        app: AppMetadata,
    ) -> None:
        pool = asyncio.Semaphore(self.workers_per_job)

        async def worker(candidate: Candidate) -> None:
            async with pool:
                if not runtime.cancelled:
                    await self._process_candidate(job, runtime, candidate, client, app)

        runtime.tasks = [asyncio.create_task(worker(c)) for c in candidates]
        try:
            await asyncio.gather(*runtime.tasks)
        finally:
            for task in runtime.tasks:
                task.cancel()
            await asyncio.gather(*runtime.tasks, return_exceptions=True)
            # Writes already under way complete, so every stored snapshot is in the results
            for outcome in await asyncio.gather(*runtime.writes, return_exceptions=True):
                if runtime.cancelled and isinstance(outcome, PersistenceUnavailable):
                    logger.warning("Job %s: in-flight write failed while stopping: %s", job.id, outcome.message)

    async def _watch_cancel_flag(self, job_id: str, runtime: _JobRuntime) -> None:
        """Poll the persisted cancel flag so a cancel from another process is seen."""
        while not runtime.cancelled:
            await asyncio.sleep(self.cancel_poll_interval)
            try:
                if await self.store.is_cancel_requested(job_id):
                    runtime.request_cancel(ReasonCode.CANCELLED)
            except PersistenceUnavailable:
                logger.warning("Could not poll cancel flag for job %s", job_id)

    async def _record(self, job: DiscoveryJob, runtime: _JobRuntime, result: CandidateResult) -> None:
        async with runtime.lock:
            if result.term in runtime.results:
                return
            runtime.results[result.term] = result
            current = len(runtime.results)
            job.progress.advance_to(current)

        CANDIDATE_RESULTS.labels(
            status=result.status.value, reason=result.reason.value if result.reason else ""
        ).inc()
        await self.store.update_progress(job.id, current)

    async def _finish(
        self,
        job: DiscoveryJob,
        runtime: _JobRuntime,
        status: JobStatus,
        reason: ReasonCode | None = None,
        detail: str | None = None,
    ) -> None:
        # Candidate order, not completion order
        ordered = [runtime.results[c.term] for c in runtime.candidates if c.term in runtime.results]
        job.results = ordered
        job.progress.advance_to(len(ordered))
        job.status = status
        job.reason = reason
        job.error_detail = detail
        job.finished_at = self._clock()

        if reason is not ReasonCode.PERSISTENCE_UNAVAILABLE:
            try:
                job.clusters = await self._cluster(job)
                await self.store.transition_job(job, JobStatus.RUNNING)
            except PersistenceUnavailable:
                logger.exception("Could not persist terminal state of job %s", job.id)
        else:
            try:
                await self.store.transition_job(job, JobStatus.RUNNING)
            except PersistenceUnavailable:
                logger.error("Job %s failed: persistence unavailable, terminal state not stored", job.id)

        DISCOVERY_JOBS.labels(status=status.value, reason=reason.value if reason else "").inc()
        log = logger.info if status is JobStatus.COMPLETED else logger.warning
        log(
            "Discovery job %s %s%s: %d/%d candidates, %d succeeded",
            job.id,
            status.value,
            f" ({reason.value})" if reason else "",
            len(ordered),
            job.progress.total,
            len(job.succeeded),
            extra={"job_id": job.id},
        )

    async def _cluster(self, job: DiscoveryJob) -> list[dict]:
        terms = [r.term for r in job.succeeded]
        if not terms:
            return []
        volumes = await self.store.get_volumes(terms, job.request.platform, job.request.region)
        clusters = cluster_keywords(
            terms,
            min_cluster_size=self.cluster_min_size,
            similarity_threshold=self.cluster_similarity_threshold,
            volumes=volumes,
        )
        return [c.to_dict() for c in clusters]

    # ------------------------------------------------------------------
    # Candidate processing
    # ------------------------------------------------------------------

    async def _process_candidate(
        self,
        job: DiscoveryJob,
        runtime: _JobRuntime,
        candidate: Candidate,
        client: BaseSerpClient,
        app: AppMetadata,
    ) -> None:
        """Fetch, then persist and record. Only the fetch is abandoned on cancel."""
        fetched = await self._fetch_candidate(job, candidate, client)
        if runtime.cancelled:
            return

        async def persist() -> None:
            if isinstance(fetched, CandidateResult):
                result = fetched
            else:
                serp, attempts = fetched
                result = await self._record_success(job, candidate, serp, app, attempts)
            await self._record(job, runtime, result)

        write = asyncio.create_task(persist())
        runtime.writes.append(write)
        await asyncio.shield(write)

    async def _fetch_candidate(
        self,
        job: DiscoveryJob,
        candidate: Candidate,
        client: BaseSerpClient,
    ) -> CandidateResult | tuple[SerpResult, int]:
        """SERP plus attempt count, or the candidate's terminal failure."""
        request = job.request
        stats = _CallStats()

        def outcome(status: CandidateStatus, reason: ReasonCode | None = None) -> CandidateResult:
            return CandidateResult(
                term=candidate.term,
                method=candidate.method,
                status=status,
                relevance=candidate.relevance,
                attempts=stats.attempts,
                reason=reason,
            )

        try:
            serp = await self._call_source(
                request,
                lambda: client.fetch_serp(candidate.term, request.region, request.depth.max_pages),
                stats,
            )
        except InvalidTerm as e:
            logger.warning(
                "Generator defect: discarded invalid term %r (job %s, method %s): %s",
                candidate.term,
                job.id,
                candidate.method.value,
                e.message,
            )
            return outcome(CandidateStatus.DISCARDED, ReasonCode.INVALID_TERM)
        except (FetchError, RateLimited) as e:
            logger.warning(
                "Candidate %r failed permanently in job %s after %d attempts: %s",
                candidate.term,
                job.id,
                stats.attempts,
                e.reason.value,
            )
            return outcome(CandidateStatus.FAILED, e.reason)

        return serp, stats.attempts

    async def _record_success(
        self,
        job: DiscoveryJob,
        candidate: Candidate,
        serp: SerpResult,
        app: AppMetadata,
        attempts: int,
    ) -> CandidateResult:
        request = job.request
        now = self._clock()
        today = now.date()

        keyword = await self.store.upsert_keyword(
            TrackedKeyword(
                tenant_id=str(request.tenant_id),
                app_id=str(request.app_id),
                term=candidate.term,
                platform=request.platform,
                region=request.region,
                discovery_method=candidate.method.keyword_source,
                generation_method=candidate.method,
                created_at=now,
                last_tracked_at=now,
            )
        )
        previous = await self.store.get_latest_snapshot(keyword.id, before=today)
        volume = await self.volume_service.get_or_refresh(
            candidate.term,
            request.platform,
            request.region,
            serp.apps,
            category_context_for(app.category),
            now,
        )
        snapshot = compute_snapshot(
            previous,
            serp.apps,
            str(request.app_id),
            keyword_id=keyword.id,
            snapshot_date=today,
            estimated_volume=volume.estimated_monthly_searches,
            max_tracked_position=serp.max_position,
        )
        stored = await self.store.insert_snapshot(snapshot)

        if request.include_competitors:
            await self.store.add_competitor_entries(self._competitor_entries(keyword.id, serp, request, today))

        return CandidateResult(
            term=candidate.term,
            method=candidate.method,
            status=CandidateStatus.SUCCEEDED,
            relevance=candidate.relevance,
            keyword_id=keyword.id,
            position=stored.position,
            trend=stored.trend,
            visibility_score=stored.visibility_score,
            popularity_score=volume.popularity_score,
            estimated_monthly_searches=volume.estimated_monthly_searches,
            attempts=attempts,
        )

    @staticmethod
    def _competitor_entries(
        keyword_id: int,
        serp: SerpResult,
        request: DiscoveryRequest,
        snapshot_date: date,
    ) -> list[CompetitorKeywordEntry]:
        target = str(request.app_id)
        entries: dict[str, CompetitorKeywordEntry] = {}
        for ranked in serp.apps:
            if ranked.app_id == target:
                continue
            if len(entries) >= COMPETITOR_DEPTH:
                break
            entries[ranked.app_id] = CompetitorKeywordEntry(
                keyword_id=keyword_id,
                competitor_app_id=ranked.app_id,
                snapshot_date=snapshot_date,
                position=ranked.position,
                competitor_name=ranked.name,
            )

        # Named competitors are always recorded, absent ones as not ranking
        by_id = {a.app_id: a for a in serp.apps}
        for competitor_id in request.competitor_app_ids:
            competitor_id = str(competitor_id)
            if competitor_id in entries or competitor_id == target:
                continue
            ranked = by_id.get(competitor_id)
            entries[competitor_id] = CompetitorKeywordEntry(
                keyword_id=keyword_id,
                competitor_app_id=competitor_id,
                snapshot_date=snapshot_date,
                position=ranked.position if ranked else None,
                competitor_name=ranked.name if ranked else "",
            )
        return list(entries.values())

    async def _call_source(self, request: DiscoveryRequest, call: Callable[[], Awaitable], stats: _CallStats):
        """Run one SERP-source call under the request budget with retries.

        Raises the last ``FetchError`` once the retry budget is spent, or
        ``RateLimited`` after too many budget waits. ``InvalidTerm`` is
        never retried.
        """
        policy = self.retry_policy
        while True:
            reservation = await self.rate_limiter.reserve(request.tenant_id, request.region)
            if not reservation.granted:
                stats.waits += 1
                if stats.waits > policy.max_rate_limited_waits:
                    raise RateLimited(
                        f"Budget still exhausted after {stats.waits - 1} waits",
                        wait_until=reservation.wait_until,
                    )
                await asyncio.sleep(reservation.retry_after)
                continue

            stats.attempts += 1
            try:
                return await call()
            except InvalidTerm:
                raise
            except FetchError as e:
                if e.kind is FetchErrorKind.BLOCKED:
                    await self.rate_limiter.block_region(request.region)
                delay = next_retry_delay(policy, stats.attempts)
                if delay is None:
                    raise
                logger.info(
                    "Retrying SERP call in %s (attempt %d/%d) after %s",
                    request.region,
                    stats.attempts,
                    policy.max_retries + 1,
                    e.kind.value,
                )
                # Blocked calls wait out the region cooldown at the next reservation
                if e.kind is FetchErrorKind.TRANSIENT:
                    await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Generation inputs
    # ------------------------------------------------------------------

    async def _load_app(self, request: DiscoveryRequest, client: BaseSerpClient) -> AppMetadata:
        try:
            return await self._call_source(
                request, lambda: client.lookup_app(str(request.app_id), request.region), _CallStats()
            )
        except (FetchError, RateLimited) as e:
            raise MetadataUnavailable(f"Metadata for app {request.app_id} unavailable ({e.reason.value})") from e

    async def _load_peers(
        self,
        request: DiscoveryRequest,
        client: BaseSerpClient,
        app: AppMetadata,
    ) -> list[AppMetadata]:
        """Best-effort: category peers and named competitors feed category trending."""
        if DiscoveryMethod.CATEGORY_TRENDING not in request.depth.methods:
            return []

        peers: list[AppMetadata] = []
        if app.category:
            try:
                serp = await self._call_source(
                    request, lambda: client.fetch_serp(app.category, request.region, PEER_PAGES), _CallStats()
                )
                peers.extend(
                    AppMetadata(
                        app_id=a.app_id,
                        name=a.name,
                        category=a.category,
                        developer=a.developer,
                        platform=request.platform,
                    )
                    for a in serp.apps
                    if a.app_id != str(request.app_id)
                )
            except (FetchError, RateLimited) as e:
                logger.warning("Category peers for %r unavailable: %s", app.category, e.reason.value)

        for competitor_id in request.competitor_app_ids:
            try:
                peers.append(
                    await self._call_source(
                        request, lambda cid=competitor_id: client.lookup_app(str(cid), request.region), _CallStats()
                    )
                )
            except (FetchError, RateLimited, MetadataUnavailable) as e:
                logger.warning("Competitor %s metadata unavailable: %s", competitor_id, e.reason.value)
        return peers
