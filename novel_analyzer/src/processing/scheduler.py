"""Decides which chunks to submit on each tick.

``ChunkScheduler.plan`` is a pure function of the job, the chunk table, the
number of requests in flight and the current time, so it can be driven
deterministically in tests. The orchestrator applies the returned plan.

The submission cursor counts settled chunks: the next chunk to submit is
always ``cursor + in_flight``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from ..config import Config
from ..models import AnalysisMode, Chunk, ChunkStatus, Job, JobStatus


def concurrency_ceiling(mode: AnalysisMode, full_mode_limit: int = None) -> int:
    if mode is AnalysisMode.OPENING:
        return 1
    limit = Config.MAX_CONCURRENT_REQUESTS_FULL if full_mode_limit is None else full_mode_limit
    return max(1, limit)


def submission_delay(mode: AnalysisMode) -> float:
    if mode is AnalysisMode.OPENING:
        return Config.INTER_CHUNK_DELAY_OPENING
    return Config.INTER_CHUNK_DELAY_FULL


@dataclass
class SchedulePlan:
    cursor: int
    dispatch: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    finalize: bool = False

    @property
    def is_noop(self) -> bool:
        return not (self.dispatch or self.skipped or self.finalize)


class ChunkScheduler:
    """Enforces the concurrency ceiling and the inter-submission delay."""

    def __init__(self, concurrency: int, delay: float = 0.0):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.delay = max(0.0, delay)

    @classmethod
    def for_mode(
        cls, mode: AnalysisMode, full_mode_limit: int = None, delay: float = None
    ) -> "ChunkScheduler":
        """Opening mode is always sequential; ``full_mode_limit`` only applies to full mode."""
        return cls(
            concurrency_ceiling(mode, full_mode_limit),
            submission_delay(mode) if delay is None else delay,
        )

    @property
    def tick_interval(self) -> float:
        """Check twice per delay window to keep latency low."""
        return self.delay / 2

    def _delay_elapsed(self, now: float, last_dispatch_at: Optional[float]) -> bool:
        return last_dispatch_at is None or now - last_dispatch_at >= self.delay

    def plan(
        self,
        job: Job,
        chunks: Mapping[int, Chunk],
        in_flight: int,
        now: float = 0.0,
        last_dispatch_at: Optional[float] = None,
    ) -> SchedulePlan:
        plan = SchedulePlan(cursor=job.cursor)
        if job.status is not JobStatus.ANALYZING_CHUNKS:
            return plan

        total = job.total_chunks_to_process
        if not job.total_known:
            # first chunk arrived before the total; submit what has been delivered
            total = max(chunks, default=-1) + 1
        active = in_flight
        may_dispatch = self._delay_elapsed(now, last_dispatch_at)
        while active < self.concurrency and plan.cursor + active < total:
            order = plan.cursor + active
            chunk = chunks.get(order)
            if chunk is None:
                break
            if chunk.status.is_terminal:
                plan.skipped.append(order)
                plan.cursor += 1
                continue
            if chunk.status is not ChunkStatus.QUEUED or not may_dispatch:
                break
            plan.dispatch.append(order)
            active += 1
            if self.delay > 0:
                may_dispatch = False

        plan.finalize = job.total_known and plan.cursor >= total and active == 0
        return plan


__all__ = ["ChunkScheduler", "SchedulePlan", "concurrency_ceiling", "submission_delay"]
