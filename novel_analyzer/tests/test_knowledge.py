from novel_analyzer.src.models import Chunk, ChunkStatus, Entity  # type: ignore
from novel_analyzer.src.processing.knowledge import (  # type: ignore
    build_historical_context,
    format_known_entities,
    merge_entities,
)


def analyzed(order: int, summary: str = None) -> Chunk:
    chunk = Chunk.create(order)
    chunk.status = ChunkStatus.ANALYZED
    chunk.summary = summary if summary is not None else f"summary {order}"
    return chunk


def test_merge_is_pure_and_drops_nameless():
    existing = {}
    merged = merge_entities(existing, [Entity(name="Alice"), Entity(name="   ")], order=0)
    assert existing == {}
    assert list(merged) == ["Alice"]


def test_merge_same_entity_twice_yields_one_entry():
    merged = merge_entities({}, [Entity(name="Alice", context_snippet="a")], order=0)
    merged = merge_entities(merged, [Entity(name="Alice", context_snippet="a")], order=0)
    assert len(merged) == 1


def test_merge_keeps_first_seen_and_newest_context():
    merged = merge_entities({}, [Entity(name="Alice", category="character", context_snippet="old")], order=1)
    merged = merge_entities(merged, [Entity(name="Bob")], order=2)
    merged = merge_entities(merged, [Entity(name="Alice", category="character", context_snippet="new")], order=5)
    alice = merged["Alice"]
    assert alice.first_seen_order == 1
    assert alice.last_seen_order == 5
    assert alice.context_snippet == "new"
    # most recently mentioned last
    assert list(merged) == ["Bob", "Alice"]


def test_historical_context_takes_most_recent_before_target():
    chunks = [analyzed(i) for i in range(8)]
    chunks[6].summary = ""
    text = build_historical_context(chunks, target_order=7, limit=3)
    assert "Earlier chunk 4 summary" in text
    assert "Earlier chunk 5 summary" in text
    assert "Earlier chunk 6 summary" in text
    assert "Earlier chunk 7 summary" not in text
    assert "Earlier chunk 3 summary" not in text


def test_historical_context_skips_unanalyzed_and_first_chunk():
    errored = Chunk.create(0)
    errored.status = ChunkStatus.ERRORED
    assert build_historical_context([errored], target_order=1) == ""
    assert build_historical_context([analyzed(0)], target_order=0) == ""


def test_format_known_entities_limits_to_most_recent():
    knowledge = {}
    for i in range(5):
        knowledge = merge_entities(knowledge, [Entity(name=f"E{i}", context_snippet=f"c{i}")], order=i)
    text = format_known_entities(knowledge, limit=2)
    assert "E3" in text and "E4" in text
    assert "E2" not in text
    assert format_known_entities({}, limit=2) == ""
