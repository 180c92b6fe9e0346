import orjson

from novel_analyzer.src.models import AnalysisMode, Chunk, ChunkStatus, Entity, Job, JobStatus  # type: ignore
from novel_analyzer.src.processing.progress_store import ProgressStore, build_snapshot  # type: ignore


def make_job(job_id: str = "file-book.txt-100-1-full") -> Job:
    return Job(
        job_id=job_id,
        mode=AnalysisMode.FULL,
        document_name="book.txt",
        status=JobStatus.PAUSED_AWAITING_RESUME,
        cursor=2,
        last_completed_index=1,
        total_chunks_discovered=4,
        total_chunks_to_process=4,
    )


def make_chunks():
    chunks = [Chunk.create(i, text=f"payload {i}") for i in range(4)]
    chunks[0].status = ChunkStatus.ANALYZED
    chunks[0].summary = "s0"
    chunks[1].status = ChunkStatus.ERRORED
    chunks[1].error = "bad json"
    chunks[2].status = ChunkStatus.ANALYZING
    chunks[3].status = ChunkStatus.READING
    return chunks


def test_snapshot_requeues_in_flight_and_drops_payloads():
    snapshot = build_snapshot(make_job(), make_chunks(), [Entity(name="Alice")])
    statuses = [c.status for c in snapshot.chunks]
    assert statuses == [ChunkStatus.ANALYZED, ChunkStatus.ERRORED, ChunkStatus.QUEUED, ChunkStatus.QUEUED]
    assert all(c.text is None for c in snapshot.chunks)


def test_round_trip(store):
    job = make_job()
    assert store.save(build_snapshot(job, make_chunks(), [Entity(name="Alice", first_seen_order=0)]))
    loaded = store.load(job.job_id)
    assert loaded is not None
    assert loaded.job.last_completed_index == 1
    assert loaded.chunks[0].summary == "s0"
    assert loaded.knowledge[0].name == "Alice"
    raw = store.path_for(job.job_id).read_bytes()
    assert b"payload" not in raw


def test_missing_snapshot(store):
    assert store.load("nothing-here") is None


def test_version_mismatch_is_discarded(store):
    job = make_job()
    store.save(build_snapshot(job, [], []).model_copy(update={"schema_version": "1.0.0"}))
    assert store.path_for(job.job_id).exists()
    assert store.load(job.job_id) is None
    assert not store.path_for(job.job_id).exists()


def test_job_id_mismatch_is_discarded(store):
    job = make_job()
    store.save(build_snapshot(job, [], []))
    path = store.path_for(job.job_id)
    data = orjson.loads(path.read_bytes())
    data["job"]["job_id"] = "someone-else"
    path.write_bytes(orjson.dumps(data))
    assert store.load(job.job_id) is None
    assert not path.exists()


def test_corrupt_file_is_discarded(store):
    job = make_job()
    path = store.path_for(job.job_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"{not json")
    assert store.load(job.job_id) is None
    assert not path.exists()


def test_save_failure_is_logged_not_raised(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("a file where a directory should be")
    store = ProgressStore(blocker / "progress")
    assert store.save(build_snapshot(make_job(), [], [])) is False


def test_clear(store):
    job = make_job()
    store.save(build_snapshot(job, [], []))
    store.clear(job.job_id)
    store.clear(job.job_id)
    assert store.load(job.job_id) is None
