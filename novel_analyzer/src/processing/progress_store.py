import hashlib
import os
import time
from pathlib import Path
from typing import Iterable, Optional

import orjson
from loguru import logger
from pydantic import ValidationError

from ..config import Config
from ..models import Chunk, ChunkStatus, Entity, Job, PersistedSnapshot

SCHEMA_VERSION = "2.0.0"


def build_snapshot(job: Job, chunks: Iterable[Chunk], knowledge: Iterable[Entity]) -> PersistedSnapshot:
    """Snapshot durable state only; in-flight chunks are stored as queued."""
    records = []
    for chunk in sorted(chunks, key=lambda c: c.order):
        record = chunk.model_copy(update={"text": None})
        if record.status.is_in_flight:
            record.status = ChunkStatus.QUEUED
        records.append(record)
    return PersistedSnapshot(
        schema_version=SCHEMA_VERSION,
        job=job.model_copy(deep=True),
        chunks=records,
        knowledge=[e.model_copy() for e in knowledge],
        saved_at=time.time(),
    )


class ProgressStore:
    """Durable per-job progress snapshots, one JSON file per job id."""

    def __init__(self, directory: Path | None = None, schema_version: str = SCHEMA_VERSION):
        self.directory = Path(directory or Config.PROGRESS_DIR)
        self.schema_version = schema_version

    def path_for(self, job_id: str) -> Path:
        digest = hashlib.sha256(job_id.encode("utf-8")).hexdigest()[:24]
        return self.directory / f"progress-{digest}.json"

    def save(self, snapshot: PersistedSnapshot) -> bool:
        """Write the snapshot; failures are logged and never raised."""
        job = snapshot.job
        path = self.path_for(job.job_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(orjson.dumps(snapshot.model_dump(mode="json")))
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning(f"[store] save failed id={job.job_id}: {exc}")
            return False
        logger.info(
            f"[store] saved id={job.job_id} status={job.status.value} "
            f"last_completed={job.last_completed_index} chunks={len(snapshot.chunks)}"
        )
        return True

    def load(self, job_id: str) -> Optional[PersistedSnapshot]:
        """Return the snapshot for ``job_id``, or None when missing or stale."""
        path = self.path_for(job_id)
        if not path.exists():
            return None
        try:
            raw = orjson.loads(path.read_bytes())
        except (OSError, ValueError) as exc:
            logger.warning(f"[store] unreadable snapshot id={job_id}: {exc}; discarding")
            self.clear(job_id)
            return None

        job_data = raw.get("job") if isinstance(raw, dict) else None
        if (
            not isinstance(job_data, dict)
            or raw.get("schema_version") != self.schema_version
            or job_data.get("job_id") != job_id
        ):
            logger.warning(f"[store] snapshot id={job_id} is outdated or mismatched; discarding")
            self.clear(job_id)
            return None

        try:
            snapshot = PersistedSnapshot.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"[store] invalid snapshot id={job_id}: {exc.error_count()} errors; discarding")
            self.clear(job_id)
            return None
        logger.info(
            f"[store] loaded id={job_id} last_completed={snapshot.job.last_completed_index}"
        )
        return snapshot

    def clear(self, job_id: str) -> None:
        try:
            self.path_for(job_id).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f"[store] clear failed id={job_id}: {exc}")
            return
        logger.info(f"[store] cleared id={job_id}")
