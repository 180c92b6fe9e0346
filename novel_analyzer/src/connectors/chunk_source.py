"""Turns a UTF-8 text document into an ordered stream of chunk events.

Slicing runs in a worker thread so the scheduler's tick loop is never
blocked; events cross into the event loop through an ``asyncio.Queue``.
Chunks after the first are delivered in batches.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import threading
from pathlib import Path
from typing import AsyncIterator, Iterator, List, Optional, Protocol, Union

from loguru import logger
from pydantic import BaseModel

from ..config import Config
from ..errors import ChunkSourceError
from ..models import AnalysisMode, Chunk
from ..utils import TextUtils


class ChunkingStarted(BaseModel):
    total_discovered: int
    total_to_process: int


class FirstChunk(BaseModel):
    chunk: Chunk


class ChunkBatch(BaseModel):
    chunks: List[Chunk]


class ChunkingProgress(BaseModel):
    percent: int


class ChunkingCompleted(BaseModel):
    total_discovered: int
    total_processed: int


class ChunkingFailed(BaseModel):
    message: str


ChunkSourceEvent = Union[
    ChunkingStarted, FirstChunk, ChunkBatch, ChunkingProgress, ChunkingCompleted, ChunkingFailed
]

_DONE = object()


class ChunkSource(Protocol):
    @property
    def identity(self) -> str: ...  # noqa: E701

    @property
    def name(self) -> str: ...  # noqa: E701

    def events(self, mode: AnalysisMode, max_chunks_for_opening: int = None) -> AsyncIterator[ChunkSourceEvent]: ...  # noqa: E701

    def read_chunk(self, order: int) -> str: ...  # noqa: E701

    def stop(self) -> None: ...  # noqa: E701


class TextChunkSource:
    """Byte-sliced chunks of a text file or of pasted text."""

    def __init__(
        self,
        path: Optional[Path] = None,
        text: Optional[str] = None,
        name: Optional[str] = None,
        chunk_size: int = None,
        batch_size: int = None,
    ):
        if (path is None) == (text is None):
            raise ValueError("provide exactly one of path or text")
        self.path = Path(path) if path is not None else None
        self._text = text
        self._name = name
        self.chunk_size = chunk_size or Config.CHUNK_SIZE
        self.batch_size = max(1, batch_size or Config.CHUNK_BATCH_SIZE)
        self._data: Optional[bytes] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()

    @classmethod
    def from_file(cls, path: Path, **kwargs) -> "TextChunkSource":
        return cls(path=path, **kwargs)

    @classmethod
    def from_text(cls, text: str, **kwargs) -> "TextChunkSource":
        return cls(text=text, **kwargs)

    @property
    def name(self) -> str:
        if self._name:
            return self._name
        if self.path is not None:
            return self.path.name
        return f"Pasted Text ({len(self._text.encode('utf-8')) / 1024:.2f} KB)"

    @property
    def identity(self) -> str:
        """Stable document identity; combined with the mode it keys saved progress."""
        if self.path is not None:
            try:
                stat = self.path.stat()
            except OSError as exc:
                raise ChunkSourceError(f"cannot stat {self.path}: {exc}") from exc
            return f"file-{self.path.name}-{stat.st_size}-{stat.st_mtime_ns}"
        digest = hashlib.sha256(self._text.encode("utf-8")).hexdigest()[:16]
        return f"pasted-{digest}"

    def load_bytes(self) -> bytes:
        with self._lock:
            if self._data is None:
                if self.path is not None:
                    try:
                        self._data = self.path.read_bytes()
                    except OSError as exc:
                        raise ChunkSourceError(f"cannot read {self.path}: {exc}") from exc
                else:
                    self._data = self._text.encode("utf-8")
            return self._data

    def read_chunk(self, order: int) -> str:
        """Re-slice the payload of a chunk whose text was not retained."""
        piece = TextUtils.slice_bytes(self.load_bytes(), order, self.chunk_size)
        return TextUtils.decode_chunk(piece)

    def stop(self) -> None:
        self._stop.set()

    def iter_events(self, mode: AnalysisMode, max_chunks_for_opening: int = None) -> Iterator[ChunkSourceEvent]:
        """Blocking event generator; run it off the event loop."""
        if max_chunks_for_opening is None:
            max_chunks_for_opening = Config.MAX_CHUNKS_FOR_OPENING
        data = self.load_bytes()
        if not TextUtils.decode_chunk(data).strip():
            raise ChunkSourceError("extracted text is empty; cannot chunk the document")

        total = TextUtils.count_chunks(len(data), self.chunk_size)
        to_process = total
        if mode is AnalysisMode.OPENING and total > max_chunks_for_opening:
            to_process = max_chunks_for_opening
            logger.info(f"[source] opening mode: first {to_process} of {total} chunks")
        else:
            logger.info(f"[source] processing all {total} chunks of {self.name}")

        yield ChunkingStarted(total_discovered=total, total_to_process=to_process)
        if to_process == 0:
            yield ChunkingCompleted(total_discovered=total, total_processed=0)
            return

        yield FirstChunk(chunk=Chunk.create(0, self.read_chunk(0)))
        batch: List[Chunk] = []
        for order in range(1, to_process):
            if self._stop.is_set():
                logger.info("[source] stop requested; abandoning chunking")
                return
            batch.append(Chunk.create(order, self.read_chunk(order)))
            if len(batch) >= self.batch_size:
                yield ChunkBatch(chunks=batch)
                yield ChunkingProgress(percent=int((order + 1) * 100 / to_process))
                batch = []
        if batch:
            yield ChunkBatch(chunks=batch)
        yield ChunkingProgress(percent=100)
        yield ChunkingCompleted(total_discovered=total, total_processed=to_process)

    async def events(
        self, mode: AnalysisMode, max_chunks_for_opening: int = None
    ) -> AsyncIterator[ChunkSourceEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        self._stop.clear()

        def _post(item) -> None:
            # The loop may already be closed when a stopped worker finishes.
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(queue.put_nowait, item)

        def _worker() -> None:
            try:
                for event in self.iter_events(mode, max_chunks_for_opening):
                    _post(event)
            except (ChunkSourceError, OSError, ValueError) as exc:
                logger.error(f"[source] chunking failed: {exc}")
                _post(ChunkingFailed(message=str(exc)))
            finally:
                _post(_DONE)

        worker = threading.Thread(target=_worker, name="chunk-source", daemon=True)
        worker.start()
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item
        finally:
            self._stop.set()


__all__ = [
    "ChunkSource",
    "TextChunkSource",
    "ChunkSourceEvent",
    "ChunkingStarted",
    "FirstChunk",
    "ChunkBatch",
    "ChunkingProgress",
    "ChunkingCompleted",
    "ChunkingFailed",
]
