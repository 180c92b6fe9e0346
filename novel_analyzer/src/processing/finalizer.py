from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from loguru import logger

from ..errors import FinalizationError
from ..models import AnalysisMode, Chunk, ChunkStatus, Job
from .agent_prompts import REPORT_PROMPTS, render

REPORT_TYPES: Dict[AnalysisMode, Tuple[str, ...]] = {
    AnalysisMode.OPENING: ("opening_assessment",),
    AnalysisMode.FULL: ("full_report",),
}


def collect_summaries(chunks: Iterable[Chunk]) -> List[Chunk]:
    """Analyzed chunks with a summary, sorted by order, never by completion."""
    return sorted(
        (c for c in chunks if c.status is ChunkStatus.ANALYZED and c.summary),
        key=lambda c: c.order,
    )


def format_summaries(chunks: Iterable[Chunk]) -> str:
    return "\n\n".join(f"Chunk {c.order + 1} summary:\n{c.summary}" for c in chunks)


class ReportFinalizer:
    """Folds per-chunk summaries into the report(s) required by the mode."""

    def __init__(self, client):
        self.client = client

    async def finalize(self, job: Job, chunks: Iterable[Chunk]) -> Dict[str, str]:
        analyzed = collect_summaries(chunks)
        if not analyzed:
            raise FinalizationError("no chunk was analyzed successfully; nothing to synthesize")

        summaries = format_summaries(analyzed)
        reports: Dict[str, str] = {}
        for report_type in REPORT_TYPES[job.mode]:
            system_prompt, tmpl = REPORT_PROMPTS[report_type]
            prompt = render(
                tmpl,
                ANALYZED_COUNT=len(analyzed),
                TITLE=job.document_name,
                SUMMARIES=summaries,
            )
            logger.info(
                f"[final] {job.job_id} requesting {report_type} from {len(analyzed)} summaries"
            )
            reports[report_type] = await self.client.synthesize(system_prompt, prompt, label=report_type)
        return reports


__all__ = ["ReportFinalizer", "REPORT_TYPES", "collect_summaries", "format_summaries"]
