import asyncio
from typing import List, Tuple

import pytest

from novel_analyzer.src.errors import FinalizationError  # type: ignore
from novel_analyzer.src.models import AnalysisMode, Chunk, ChunkStatus, Job, JobStatus  # type: ignore
from novel_analyzer.src.processing.finalizer import ReportFinalizer, collect_summaries  # type: ignore


class RecordingClient:
    def __init__(self):
        self.requests: List[Tuple[str, str, str]] = []

    async def synthesize(self, system_prompt: str, prompt: str, label: str = "report") -> str:
        self.requests.append((system_prompt, prompt, label))
        return f"{label} text"


def make_job(mode: AnalysisMode) -> Job:
    return Job(
        job_id=f"doc-{mode.value}",
        mode=mode,
        document_name="The Novel",
        status=JobStatus.GENERATING_FINAL_REPORT,
    )


def make_chunk(order: int, status: ChunkStatus) -> Chunk:
    chunk = Chunk.create(order)
    chunk.status = status
    if status is ChunkStatus.ANALYZED:
        chunk.summary = f"part {order}"
    return chunk


def test_collect_summaries_orders_by_chunk_order():
    chunks = [make_chunk(3, ChunkStatus.ANALYZED), make_chunk(0, ChunkStatus.ANALYZED), make_chunk(1, ChunkStatus.ERRORED)]
    assert [c.order for c in collect_summaries(chunks)] == [0, 3]


def test_full_mode_single_report_in_order():
    client = RecordingClient()
    chunks = [make_chunk(i, ChunkStatus.ERRORED if i == 2 else ChunkStatus.ANALYZED) for i in (5, 4, 3, 2, 1, 0)]
    reports = asyncio.run(ReportFinalizer(client).finalize(make_job(AnalysisMode.FULL), chunks))
    assert reports == {"full_report": "full_report text"}
    assert len(client.requests) == 1
    prompt = client.requests[0][1]
    positions = [prompt.index(f"Chunk {n} summary") for n in (1, 2, 4, 5, 6)]
    assert positions == sorted(positions)
    assert "Chunk 3 summary" not in prompt
    assert "The Novel" in prompt


def test_opening_mode_report_type():
    client = RecordingClient()
    reports = asyncio.run(
        ReportFinalizer(client).finalize(make_job(AnalysisMode.OPENING), [make_chunk(0, ChunkStatus.ANALYZED)])
    )
    assert list(reports) == ["opening_assessment"]


def test_no_analyzed_chunks_raises_without_request():
    client = RecordingClient()
    with pytest.raises(FinalizationError):
        asyncio.run(
            ReportFinalizer(client).finalize(make_job(AnalysisMode.FULL), [make_chunk(0, ChunkStatus.ERRORED)])
        )
    assert client.requests == []
