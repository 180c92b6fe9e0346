"""Entity knowledge accumulated across chunks and fed back into prompts."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..config import Config
from ..models import Chunk, ChunkStatus, Entity

KnowledgeMap = Dict[str, Entity]


def merge_entities(
    existing: KnowledgeMap, extracted: Iterable[Entity], order: Optional[int] = None
) -> KnowledgeMap:
    """Return a new map with ``extracted`` folded into ``existing``.

    Nameless entities are dropped. A repeated name keeps its first-seen order
    and takes the newest category and context. Touched entries move to the
    end so iteration order is least to most recently mentioned.
    """
    merged: KnowledgeMap = dict(existing)
    for entity in extracted:
        name = (entity.name or "").strip()
        if not name:
            continue
        previous = merged.pop(name, None)
        first_seen = previous.first_seen_order if previous is not None else None
        if first_seen is None:
            first_seen = entity.first_seen_order if entity.first_seen_order is not None else order
        merged[name] = entity.model_copy(
            update={
                "name": name,
                "first_seen_order": first_seen,
                "last_seen_order": order if order is not None else entity.last_seen_order,
            }
        )
    return merged


def build_historical_context(
    chunks: Iterable[Chunk], target_order: int, limit: int = None
) -> str:
    """Summaries of the most recent analyzed chunks before ``target_order``."""
    if limit is None:
        limit = Config.MAX_RELEVANT_HISTORICAL_SUMMARIES
    if target_order <= 0 or limit <= 0:
        return ""
    earlier = sorted(
        (
            c
            for c in chunks
            if c.order < target_order
            and c.status is ChunkStatus.ANALYZED
            and c.summary
            and c.summary.strip()
        ),
        key=lambda c: c.order,
    )[-limit:]
    if not earlier:
        return ""
    lines = [f'Earlier chunk {c.order + 1} summary: "{c.summary}"' for c in earlier]
    return "Recap of earlier content to help with the current chunk:\n" + "\n".join(lines)


def format_known_entities(knowledge: KnowledgeMap, limit: int = None) -> str:
    """List the most recently mentioned entities, newest last."""
    if limit is None:
        limit = Config.MAX_CONTEXT_ENTITIES
    if not knowledge or limit <= 0:
        return ""
    recent: List[Entity] = list(knowledge.values())[-limit:]
    lines = [
        f"- {e.name} ({e.category}): {e.context_snippet}" if e.context_snippet else f"- {e.name} ({e.category})"
        for e in recent
    ]
    return "Known entities so far:\n" + "\n".join(lines)


__all__ = ["KnowledgeMap", "merge_entities", "build_historical_context", "format_known_entities"]
