import asyncio
import re
from typing import Any, Dict, List, Optional

import httpx
import orjson
from langchain_core.messages import AIMessage

from novel_analyzer.src.connectors.chunk_source import TextChunkSource  # type: ignore
from novel_analyzer.src.processing.analysis_client import AnalysisClient  # type: ignore
from novel_analyzer.src.processing.retry import RetryController  # type: ignore

CHUNK_MARKER = re.compile(r"CHUNK-(\d{4})")
CHUNK_SIZE = 10


class ProviderError(Exception):
    """Stands in for an SDK exception carrying an HTTP status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def rate_limit_error() -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://model.test/api/chat")
    response = httpx.Response(429, request=request)
    return httpx.HTTPStatusError("429 Too Many Requests", request=request, response=response)


def auth_error() -> ProviderError:
    return ProviderError("401 Unauthorized", status_code=401)


def chunk_reply(order: int) -> str:
    return orjson.dumps(
        {
            "summary": f"Summary of part {order}",
            "analysis": f"Analysis of part {order}",
            "extractedEntities": [
                {"name": "Hero", "category": "character", "context": f"seen in part {order}"},
                {"name": f"Place {order}", "category": "location", "context": ""},
            ],
        }
    ).decode()


class ScriptedChatModel:
    """Answers chunk prompts by the CHUNK-nnnn marker in the last message.

    ``script`` maps a chunk order to outcomes consumed one per call: an
    exception is raised, a string is returned as the raw reply. When the
    script for an order is exhausted the call succeeds.
    """

    def __init__(
        self,
        script: Optional[Dict[int, List[Any]]] = None,
        report_text: str = "Final report",
        latency: float = 0.0,
        gate: Optional[asyncio.Event] = None,
    ):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.report_text = report_text
        self.latency = latency
        self.gate = gate
        self.calls: List[List[Any]] = []
        self.chunk_calls: List[int] = []
        self.synthesis_prompts: List[str] = []
        self.active = 0
        self.peak = 0

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        last = messages[-1].content
        match = CHUNK_MARKER.search(last)
        if match is None:
            self.synthesis_prompts.append(last)
            return AIMessage(content=self.report_text)

        order = int(match.group(1))
        self.chunk_calls.append(order)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.latency)
        finally:
            self.active -= 1
        outcomes = self.script.get(order)
        if outcomes:
            outcome = outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return AIMessage(content=outcome)
        return AIMessage(content=chunk_reply(order))


class ManualSource:
    """A chunk source whose events are fed by the test."""

    def __init__(self, total: int, identity: str = "manual-doc", name: str = "manual.txt"):
        self.text = novel_text(total)
        self._identity = identity
        self._name = name
        self.stopped = False
        self.reads: List[int] = []

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def name(self) -> str:
        return self._name

    async def events(self, mode, max_chunks_for_opening=None):
        for _ in ():
            yield _

    def read_chunk(self, order: int) -> str:
        self.reads.append(order)
        return self.text[order * CHUNK_SIZE:(order + 1) * CHUNK_SIZE]

    def stop(self) -> None:
        self.stopped = True


async def _no_sleep(_seconds: float) -> None:
    return None


def novel_text(total: int) -> str:
    return "".join(f"CHUNK-{i:04d}" for i in range(total))


def make_source(total: int, **kwargs) -> TextChunkSource:
    kwargs.setdefault("name", "novel.txt")
    return TextChunkSource.from_text(novel_text(total), chunk_size=CHUNK_SIZE, **kwargs)


def make_client(model, factory=None) -> AnalysisClient:
    retry = RetryController(max_retries=3, sleep=_no_sleep, rng=lambda: 0.0)
    return AnalysisClient(model, model_factory=factory, retry=retry)


async def drain(orchestrator) -> None:
    """Wait until every running chunk request has finished."""
    while orchestrator._tasks:  # noqa: SLF001
        await asyncio.gather(*list(orchestrator._tasks.values()), return_exceptions=True)  # noqa: SLF001
    final_task = orchestrator._final_task  # noqa: SLF001
    if final_task is not None:
        await asyncio.gather(final_task, return_exceptions=True)
