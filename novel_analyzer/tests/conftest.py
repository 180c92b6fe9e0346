import pytest

from novel_analyzer.src.processing.progress_store import ProgressStore  # type: ignore


@pytest.fixture
def store(tmp_path):
    return ProgressStore(tmp_path / "progress")
