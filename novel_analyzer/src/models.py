from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalysisMode(str, Enum):
    OPENING = "opening"
    FULL = "full"


class ChunkStatus(str, Enum):
    QUEUED = "queued"
    READING = "reading"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (ChunkStatus.ANALYZED, ChunkStatus.ERRORED)

    @property
    def is_in_flight(self) -> bool:
        return self in (ChunkStatus.READING, ChunkStatus.ANALYZING)


class JobStatus(str, Enum):
    IDLE = "idle"
    MODE_SELECTED = "mode_selected"
    PREPARING = "preparing"
    ANALYZING_CHUNKS = "analyzing_chunks"
    GENERATING_FINAL_REPORT = "generating_final_report"
    COMPLETED = "completed"
    PAUSED_AWAITING_RESUME = "paused_awaiting_resume"
    PAUSED_RATE_LIMITED = "paused_rate_limited"
    CANCELLED = "cancelled"
    ERROR = "error"


class Entity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Unique key within the knowledge map")
    category: str = Field("other", description="character, location, item, faction, plot_thread or other")
    context_snippet: str = Field("", description="Context of the most recent mention")
    first_seen_order: Optional[int] = Field(None, description="Order of the chunk that introduced the entity")
    last_seen_order: Optional[int] = Field(None, description="Order of the chunk that last mentioned the entity")


class Chunk(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    order: int = Field(..., ge=0, description="0-based processing and display order")
    status: ChunkStatus = ChunkStatus.QUEUED
    summary: Optional[str] = None
    detail_analysis: Optional[str] = None
    error: Optional[str] = None
    text: Optional[str] = Field(None, exclude=True, description="Transient payload, never persisted")

    @classmethod
    def create(cls, order: int, text: Optional[str] = None) -> "Chunk":
        return cls(id=f"chunk-{order}", order=order, text=text)


class Job(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(..., description="Fingerprint of document identity and mode")
    mode: AnalysisMode
    document_name: str
    status: JobStatus = JobStatus.IDLE
    cursor: int = 0
    last_completed_index: int = -1
    total_chunks_discovered: int = 0
    total_chunks_to_process: int = 0
    error: Optional[str] = None
    chunking_progress: Optional[int] = None
    reports: Dict[str, str] = Field(default_factory=dict)

    @property
    def total_known(self) -> bool:
        """False until the source has reported how many chunks to process."""
        return self.chunking_progress is not None


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunk_text: str
    position_index: int = Field(..., ge=0)
    total_count: int = Field(..., ge=1)
    previous_chunk_summary: Optional[str] = None
    historical_context: Optional[str] = None


class AnalysisResult(BaseModel):
    summary: str
    analysis: str
    entities: List[Entity] = Field(default_factory=list)


class PersistedSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str
    job: Job
    chunks: List[Chunk] = Field(default_factory=list)
    knowledge: List[Entity] = Field(default_factory=list)
    saved_at: float = 0.0
