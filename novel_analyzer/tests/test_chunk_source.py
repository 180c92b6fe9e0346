import asyncio

import pytest

from novel_analyzer.src.connectors.chunk_source import (  # type: ignore
    ChunkBatch,
    ChunkingCompleted,
    ChunkingFailed,
    ChunkingProgress,
    ChunkingStarted,
    FirstChunk,
    TextChunkSource,
)
from novel_analyzer.src.errors import ChunkSourceError  # type: ignore
from novel_analyzer.src.models import AnalysisMode  # type: ignore

from fakes import CHUNK_SIZE, make_source, novel_text


def collect(source, mode, max_chunks=None):
    async def run():
        return [event async for event in source.events(mode, max_chunks)]

    return asyncio.run(run())


def test_full_mode_events_in_order():
    source = make_source(5, batch_size=2)
    events = collect(source, AnalysisMode.FULL)
    assert isinstance(events[0], ChunkingStarted)
    assert events[0].total_discovered == 5 and events[0].total_to_process == 5
    assert isinstance(events[1], FirstChunk)
    assert events[1].chunk.order == 0 and events[1].chunk.text == "CHUNK-0000"
    batches = [e for e in events if isinstance(e, ChunkBatch)]
    assert [[c.order for c in b.chunks] for b in batches] == [[1, 2], [3, 4]]
    assert [e.percent for e in events if isinstance(e, ChunkingProgress)][-1] == 100
    assert isinstance(events[-1], ChunkingCompleted)
    assert events[-1].total_processed == 5


def test_opening_mode_caps_chunk_count():
    source = make_source(20)
    events = collect(source, AnalysisMode.OPENING, max_chunks=15)
    assert events[0].total_discovered == 20
    assert events[0].total_to_process == 15
    orders = [events[1].chunk.order] + [c.order for e in events if isinstance(e, ChunkBatch) for c in e.chunks]
    assert orders == list(range(15))


def test_empty_text_fails():
    source = TextChunkSource.from_text("   \n ", chunk_size=CHUNK_SIZE)
    events = collect(source, AnalysisMode.FULL)
    assert len(events) == 1 and isinstance(events[0], ChunkingFailed)


def test_read_chunk_rehydrates_by_order():
    source = make_source(4)
    assert source.read_chunk(2) == "CHUNK-0002"
    assert source.read_chunk(9) == ""


def test_multibyte_boundary_is_replaced_not_raised():
    source = TextChunkSource.from_text("aé" * 3, chunk_size=2)
    assert source.read_chunk(0) == "a\ufffd"


def test_identity_for_file_and_text(tmp_path):
    path = tmp_path / "book.txt"
    path.write_text(novel_text(3), encoding="utf-8")
    identity = TextChunkSource.from_file(path, chunk_size=CHUNK_SIZE).identity
    assert identity.startswith("file-book.txt-30-")
    assert make_source(3).identity == make_source(3).identity
    assert make_source(3).identity.startswith("pasted-")
    assert make_source(3).identity != make_source(4).identity


def test_missing_file_identity_raises(tmp_path):
    with pytest.raises(ChunkSourceError):
        _ = TextChunkSource.from_file(tmp_path / "missing.txt").identity


def test_requires_exactly_one_input():
    with pytest.raises(ValueError):
        TextChunkSource()
