"""Connector modules for chunk sources and the model service."""

from .chunk_source import (
    ChunkBatch,
    ChunkingCompleted,
    ChunkingFailed,
    ChunkingProgress,
    ChunkingStarted,
    ChunkSource,
    FirstChunk,
    TextChunkSource,
)
from .llm_connector import LLMConnector

__all__ = [
    'ChunkSource',
    'TextChunkSource',
    'ChunkingStarted',
    'FirstChunk',
    'ChunkBatch',
    'ChunkingProgress',
    'ChunkingCompleted',
    'ChunkingFailed',
    'LLMConnector',
]
