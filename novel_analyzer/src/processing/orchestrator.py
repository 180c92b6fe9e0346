"""Chunked analysis job orchestration.

``AnalysisOrchestrator`` wires the chunk source, scheduler, analysis client,
knowledge map, state machine, progress store and finalizer together. All of
its state lives on one asyncio event loop: chunk requests run as tasks,
``tick()`` applies the scheduler's plan, and every durable change is
snapshotted through the progress store.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, List, Optional

from loguru import logger

from ..config import Config
from ..connectors.chunk_source import (
    ChunkBatch,
    ChunkingCompleted,
    ChunkingFailed,
    ChunkingProgress,
    ChunkingStarted,
    ChunkSource,
    FirstChunk,
)
from ..errors import (
    AnalysisError,
    AuthError,
    ChunkSourceError,
    FinalizationError,
    InvalidTransitionError,
    RateLimitError,
    TransientError,
)
from ..models import AnalysisMode, AnalysisRequest, AnalysisResult, Chunk, ChunkStatus, Job, JobStatus
from ..utils import TextUtils
from .finalizer import ReportFinalizer
from .knowledge import KnowledgeMap, build_historical_context, format_known_entities, merge_entities
from .progress_store import ProgressStore, build_snapshot
from .scheduler import ChunkScheduler
from .state_machine import JobStateMachine
from .time_estimator import TimeEstimator

Subscriber = Callable[[Optional[Job]], None]


class AnalysisOrchestrator:
    """Runs one analysis job at a time over a chunked document."""

    def __init__(
        self,
        client,
        store: Optional[ProgressStore] = None,
        *,
        max_concurrent_full: int = None,
        delay: float = None,
        clock: Callable[[], float] = time.monotonic,
        rate_limit_cooldown: float = None,
        historical_limit: int = None,
        entity_limit: int = None,
        max_chunks_for_opening: int = None,
        state_machine: Optional[JobStateMachine] = None,
        finalizer: Optional[ReportFinalizer] = None,
        estimator: Optional[TimeEstimator] = None,
    ):
        self.client = client
        self.store = store or ProgressStore()
        self.state_machine = state_machine or JobStateMachine()
        self.finalizer = finalizer or ReportFinalizer(client)
        self.estimator = estimator or TimeEstimator()
        self._max_concurrent_full = max_concurrent_full
        self._delay = delay
        self._clock = clock
        # 0 disables the automatic resume after a rate-limit pause
        self.rate_limit_cooldown = (
            Config.RATE_LIMIT_COOLDOWN_SECONDS if rate_limit_cooldown is None else rate_limit_cooldown
        )
        self.historical_limit = historical_limit
        self.entity_limit = entity_limit
        self.max_chunks_for_opening = (
            Config.MAX_CHUNKS_FOR_OPENING if max_chunks_for_opening is None else max_chunks_for_opening
        )

        self.job: Optional[Job] = None
        self.chunks: Dict[int, Chunk] = {}
        self.knowledge: KnowledgeMap = {}
        self.scheduler: Optional[ChunkScheduler] = None
        self.peak_in_flight = 0

        self._source: Optional[ChunkSource] = None
        self._conversation: Optional[str] = None
        self._tasks: Dict[int, asyncio.Task] = {}
        self._started_at: Dict[int, float] = {}
        self._last_dispatch_at: Optional[float] = None
        self._rate_limited_at: Optional[float] = None
        self._chunking_task: Optional[asyncio.Task] = None
        self._final_task: Optional[asyncio.Task] = None
        self._subscribers: List[Subscriber] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def status(self) -> JobStatus:
        return self.job.status if self.job else JobStatus.IDLE

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def conversation(self) -> Optional[str]:
        return self._conversation

    @property
    def tick_interval(self) -> float:
        return self.scheduler.tick_interval if self.scheduler else 0.5

    @property
    def is_settled(self) -> bool:
        """True when nothing will change without a user action."""
        if self._tasks or (self._final_task and not self._final_task.done()):
            return False
        status = self.status
        if status is JobStatus.PAUSED_RATE_LIMITED:
            return not self.rate_limit_cooldown
        return status in (
            JobStatus.IDLE,
            JobStatus.MODE_SELECTED,
            JobStatus.PAUSED_AWAITING_RESUME,
            JobStatus.COMPLETED,
            JobStatus.CANCELLED,
            JobStatus.ERROR,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self.job)

    def sorted_chunks(self) -> List[Chunk]:
        return [self.chunks[order] for order in sorted(self.chunks)]

    def estimated_time_remaining(self) -> Optional[int]:
        if not self.job or not self.scheduler:
            return None
        settled = sum(1 for c in self.chunks.values() if c.status.is_terminal)
        return self.estimator.estimate_seconds(
            self.job.total_chunks_to_process - settled,
            self.scheduler.concurrency,
            self.scheduler.delay,
        )

    # ------------------------------------------------------------------
    # User controls
    # ------------------------------------------------------------------
    def select_mode(self, mode: AnalysisMode) -> Job:
        if self.job is None:
            self.job = Job(job_id="", mode=mode, document_name="")
        elif self.state_machine.is_active(self.job.status):
            raise InvalidTransitionError(self.job.status, JobStatus.MODE_SELECTED)
        self.state_machine.transition(self.job, JobStatus.MODE_SELECTED)
        self._clear_run_state()
        self.job = Job(job_id="", mode=mode, document_name="", status=JobStatus.MODE_SELECTED)
        logger.info(f"[job] mode selected: {mode.value}")
        self._notify()
        return self.job

    async def submit_document(self, source: ChunkSource, resume: bool = True) -> Job:
        """Start chunking ``source``, or restore its saved progress in a paused state."""
        job = self.job
        if job is None or job.status is not JobStatus.MODE_SELECTED:
            raise InvalidTransitionError(self.status, JobStatus.PREPARING)

        job.job_id = f"{source.identity}-{job.mode.value}"
        job.document_name = source.name
        self._source = source
        self.scheduler = ChunkScheduler.for_mode(job.mode, self._max_concurrent_full, self._delay)
        logger.info(
            f"[job] submit id={job.job_id} mode={job.mode.value} "
            f"concurrency={self.scheduler.concurrency} delay={self.scheduler.delay}"
        )

        snapshot = self.store.load(job.job_id) if resume else None
        if not resume:
            self.store.clear(job.job_id)
        if snapshot is not None and snapshot.job.total_chunks_to_process > 0:
            self._restore(snapshot)
            return job

        self.state_machine.transition(job, JobStatus.PREPARING)
        if job.mode is AnalysisMode.OPENING:
            self._conversation = self.client.open_conversation(job.mode)
        self._notify()
        self._chunking_task = asyncio.create_task(self._consume_source(source))
        return job

    def pause(self) -> None:
        job = self._require_job()
        self.state_machine.transition(job, JobStatus.PAUSED_AWAITING_RESUME)
        self._abort_in_flight()
        logger.info(f"[job] {job.job_id} paused at cursor={job.cursor}")
        self._save()
        self._notify()

    def resume(self) -> None:
        job = self._require_job()
        if not self.state_machine.is_paused(job.status):
            raise InvalidTransitionError(job.status, JobStatus.ANALYZING_CHUNKS)
        self.state_machine.transition(job, JobStatus.ANALYZING_CHUNKS)
        job.cursor = job.last_completed_index + 1
        job.error = None
        self._rate_limited_at = None
        self._last_dispatch_at = None
        if job.mode is AnalysisMode.OPENING and self._conversation is None:
            self._conversation = self.client.open_conversation(job.mode)
        logger.info(f"[job] {job.job_id} resumed at chunk {job.cursor + 1}")
        self._save()
        self._notify()

    def cancel(self, clear_progress: bool = True) -> None:
        job = self._require_job()
        if not self.state_machine.is_active(job.status):
            raise InvalidTransitionError(job.status, JobStatus.CANCELLED)
        self._stop_background()
        self.state_machine.transition(job, JobStatus.CANCELLED)
        if clear_progress:
            self.store.clear(job.job_id)
        else:
            self._save()
        self._close_conversation()
        self._notify()

    async def override_credentials(self, api_key: str) -> None:
        """Validate and install a new key; a rate-limited job resumes right away."""
        await self.client.override_credentials(api_key)
        if self.status is JobStatus.PAUSED_RATE_LIMITED:
            logger.info("[job] credentials replaced; resuming rate-limited job")
            self.resume()

    def clear_error(self) -> None:
        job = self._require_job()
        if job.status is not JobStatus.ERROR:
            return
        self.select_mode(job.mode)

    def reset(self) -> None:
        if self.job is not None:
            self._stop_background()
        self._clear_run_state()
        self.job = None
        self.scheduler = None
        logger.info("[job] reset")
        self._notify()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    async def tick(self) -> None:
        job = self.job
        if job is None or self.scheduler is None:
            return
        now = self._clock()
        if (
            job.status is JobStatus.PAUSED_RATE_LIMITED
            and self.rate_limit_cooldown
            and self._rate_limited_at is not None
            and now - self._rate_limited_at >= self.rate_limit_cooldown
        ):
            logger.info(f"[job] {job.job_id} rate-limit cooldown elapsed; resuming")
            self.resume()
        if job.status is not JobStatus.ANALYZING_CHUNKS:
            return

        plan = self.scheduler.plan(job, self.chunks, self.in_flight, now, self._last_dispatch_at)
        if plan.is_noop:
            return
        job.cursor = plan.cursor
        for order in plan.skipped:
            logger.debug(f"[chunk] {order + 1} already settled; skipping")
        for order in plan.dispatch:
            self._dispatch(order)
        if plan.dispatch:
            self._last_dispatch_at = now
            self._notify()
        if plan.finalize and self.state_machine.may_finalize(job, self.in_flight):
            self._start_finalization()

    # ------------------------------------------------------------------
    # Chunk source
    # ------------------------------------------------------------------
    async def _consume_source(self, source: ChunkSource) -> None:
        async for event in source.events(self.job.mode, self.max_chunks_for_opening):
            self.handle_source_event(event)
            if self.job is None or self.state_machine.is_terminal(self.job.status):
                break

    def handle_source_event(self, event) -> None:
        job = self.job
        if job is None or self.state_machine.is_terminal(job.status):
            return
        if isinstance(event, ChunkingStarted):
            job.total_chunks_discovered = event.total_discovered
            job.total_chunks_to_process = event.total_to_process
            job.chunking_progress = 0
            logger.info(
                f"[source] {job.job_id} discovered={event.total_discovered} "
                f"to_process={event.total_to_process}"
            )
            if event.total_to_process == 0:
                self._fail("the document produced no chunks")
                return
        elif isinstance(event, FirstChunk):
            self._add_chunks([event.chunk])
            if job.status is JobStatus.PREPARING:
                self.state_machine.transition(job, JobStatus.ANALYZING_CHUNKS)
        elif isinstance(event, ChunkBatch):
            self._add_chunks(event.chunks)
        elif isinstance(event, ChunkingProgress):
            job.chunking_progress = event.percent
        elif isinstance(event, ChunkingCompleted):
            job.chunking_progress = 100
            job.total_chunks_discovered = event.total_discovered
            job.total_chunks_to_process = event.total_processed
            logger.info(f"[source] {job.job_id} chunking complete: {event.total_processed} chunks")
        elif isinstance(event, ChunkingFailed):
            self._fail(f"Chunking failed: {event.message}")
            return
        self._notify()

    def _add_chunks(self, chunks: List[Chunk]) -> None:
        for chunk in chunks:
            existing = self.chunks.get(chunk.order)
            if existing is None:
                self.chunks[chunk.order] = chunk
            elif existing.text is None and not existing.status.is_terminal:
                existing.text = chunk.text

    # ------------------------------------------------------------------
    # Chunk processing
    # ------------------------------------------------------------------
    def _dispatch(self, order: int) -> None:
        chunk = self.chunks[order]
        chunk.status = ChunkStatus.READING
        chunk.error = None
        self._started_at[order] = self._clock()
        self._tasks[order] = asyncio.create_task(self._process_chunk(chunk))
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        logger.info(f"[chunk] dispatch {order + 1}/{self.job.total_chunks_to_process} in_flight={self.in_flight}")

    def _context_for(self, order: int) -> Optional[str]:
        if self.job.mode is not AnalysisMode.OPENING:
            return None
        parts = [
            build_historical_context(self.chunks.values(), order, self.historical_limit),
            format_known_entities(self.knowledge, self.entity_limit),
        ]
        return "\n\n".join(p for p in parts if p) or None

    def _previous_summary(self, order: int) -> Optional[str]:
        previous = self.chunks.get(order - 1)
        if previous is not None and previous.status is ChunkStatus.ANALYZED:
            return previous.summary
        return None

    async def _process_chunk(self, chunk: Chunk) -> None:
        order = chunk.order
        try:
            if chunk.text is None:
                chunk.text = self._source.read_chunk(order)
            if Config.LOG_CHUNK_FULL:
                logger.debug(f"[chunk] {order + 1} text: {chunk.text}")
            else:
                logger.debug(f"[chunk] {order + 1} preview: {TextUtils.preview(chunk.text)}")
            chunk.status = ChunkStatus.ANALYZING
            self._notify()
            request = AnalysisRequest(
                chunk_text=chunk.text,
                position_index=order,
                total_count=max(self.job.total_chunks_to_process, order + 1),
                previous_chunk_summary=self._previous_summary(order),
                historical_context=self._context_for(order),
            )
            result = await self.client.analyze(request, self.job.mode, conversation=self._conversation)
        except AuthError as exc:
            self._on_auth_error(order, exc)
        except RateLimitError as exc:
            self._on_rate_limited(order, exc)
        except (TransientError, ChunkSourceError, OSError) as exc:
            self._on_chunk_failed(order, str(exc))
        else:
            self._on_chunk_analyzed(order, result)

    def _settle(self, order: int) -> Chunk:
        self._tasks.pop(order, None)
        started = self._started_at.pop(order, None)
        if started is not None:
            self.estimator.record(self._clock() - started)
        self.job.cursor += 1
        chunk = self.chunks[order]
        chunk.text = None
        return chunk

    def _on_chunk_analyzed(self, order: int, result: AnalysisResult) -> None:
        chunk = self._settle(order)
        chunk.status = ChunkStatus.ANALYZED
        chunk.summary = result.summary
        chunk.detail_analysis = result.analysis
        chunk.error = None
        self.knowledge = merge_entities(self.knowledge, result.entities, order)
        self._advance_watermark()
        logger.info(
            f"[chunk] {order + 1} analyzed entities={len(result.entities)} "
            f"known={len(self.knowledge)} last_completed={self.job.last_completed_index}"
        )
        self._save()
        self._notify()

    def _on_chunk_failed(self, order: int, message: str) -> None:
        chunk = self._settle(order)
        chunk.status = ChunkStatus.ERRORED
        chunk.error = message
        self._advance_watermark()
        logger.warning(f"[chunk] {order + 1} failed: {message}")
        self._save()
        self._notify()

    def _on_rate_limited(self, order: int, exc: RateLimitError) -> None:
        self._rewind(order)
        job = self.job
        if job.status is not JobStatus.ANALYZING_CHUNKS:
            return
        self._abort_in_flight()
        self.state_machine.transition(job, JobStatus.PAUSED_RATE_LIMITED)
        self._rate_limited_at = self._clock()
        job.error = f"Rate limit reached: {exc.message}"
        logger.warning(
            f"[job] {job.job_id} paused by rate limit at chunk {order + 1} "
            f"retries={exc.retries} cooldown={self.rate_limit_cooldown}"
        )
        self._save()
        self._notify()

    def _on_auth_error(self, order: int, exc: AuthError) -> None:
        self._rewind(order)
        if self.state_machine.is_terminal(self.job.status):
            return
        self._fail(f"Authentication failed: {exc.message}")

    def _rewind(self, order: int) -> None:
        self._tasks.pop(order, None)
        self._started_at.pop(order, None)
        chunk = self.chunks.get(order)
        if chunk is not None and chunk.status.is_in_flight:
            chunk.status = ChunkStatus.QUEUED

    def _abort_in_flight(self) -> None:
        """Cancel every running request and requeue its chunk."""
        for order, task in list(self._tasks.items()):
            task.cancel()
            self._rewind(order)
        self._tasks.clear()
        self._started_at.clear()
        self._last_dispatch_at = None
        if self.job is not None:
            self.job.cursor = self.job.last_completed_index + 1

    def _advance_watermark(self) -> None:
        job = self.job
        index = job.last_completed_index
        while (chunk := self.chunks.get(index + 1)) is not None and chunk.status.is_terminal:
            index += 1
        job.last_completed_index = index

    # ------------------------------------------------------------------
    # Finalization and failure
    # ------------------------------------------------------------------
    def _start_finalization(self) -> None:
        self.state_machine.transition(self.job, JobStatus.GENERATING_FINAL_REPORT)
        self._notify()
        self._final_task = asyncio.create_task(self._finalize())

    async def _finalize(self) -> None:
        job = self.job
        try:
            reports = await self.finalizer.finalize(job, self.chunks.values())
        except FinalizationError as exc:
            self._fail(str(exc))
            return
        except AnalysisError as exc:
            self._fail(f"Report generation failed: {exc.message}")
            return
        job.reports = reports
        self.state_machine.transition(job, JobStatus.COMPLETED)
        self.store.clear(job.job_id)
        self._close_conversation()
        logger.info(f"[final] {job.job_id} completed with reports={sorted(reports)}")
        self._notify()

    def _fail(self, message: str) -> None:
        job = self.job
        self._stop_background(keep_final_task=True)
        job.error = message
        self.state_machine.transition(job, JobStatus.ERROR)
        logger.error(f"[job] {job.job_id} failed: {message}")
        self._save()
        self._close_conversation()
        self._notify()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_job(self) -> Job:
        if self.job is None:
            raise InvalidTransitionError(JobStatus.IDLE, JobStatus.MODE_SELECTED)
        return self.job

    def _restore(self, snapshot) -> None:
        job = self.job
        saved = snapshot.job
        job.total_chunks_discovered = saved.total_chunks_discovered
        job.total_chunks_to_process = saved.total_chunks_to_process
        job.last_completed_index = saved.last_completed_index
        job.cursor = saved.last_completed_index + 1
        job.chunking_progress = 100
        self.chunks = {c.order: c for c in snapshot.chunks if c.order < job.total_chunks_to_process}
        for order in range(job.total_chunks_to_process):
            self.chunks.setdefault(order, Chunk.create(order))
        self.knowledge = {e.name: e for e in snapshot.knowledge}
        self.state_machine.transition(job, JobStatus.PAUSED_AWAITING_RESUME)
        logger.info(
            f"[job] restored id={job.job_id} last_completed={job.last_completed_index} "
            f"total={job.total_chunks_to_process} entities={len(self.knowledge)}"
        )
        self._notify()

    def _stop_background(self, keep_final_task: bool = False) -> None:
        self._abort_in_flight()
        if self._source is not None:
            self._source.stop()
        task = self._chunking_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._chunking_task = None
        if not keep_final_task and self._final_task is not None:
            self._final_task.cancel()
            self._final_task = None

    def _close_conversation(self) -> None:
        if self._conversation is not None:
            self.client.close_conversation(self._conversation)
            self._conversation = None

    def _clear_run_state(self) -> None:
        self._close_conversation()
        self.chunks = {}
        self.knowledge = {}
        self.peak_in_flight = 0
        self._source = None
        self._tasks = {}
        self._started_at = {}
        self._last_dispatch_at = None
        self._rate_limited_at = None
        self._chunking_task = None
        self._final_task = None
        self.estimator.reset()

    def _save(self) -> None:
        if self.job is None or not self.job.job_id:
            return
        self.store.save(build_snapshot(self.job, self.chunks.values(), self.knowledge.values()))


__all__ = ["AnalysisOrchestrator"]
