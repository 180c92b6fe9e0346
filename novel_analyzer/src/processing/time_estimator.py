from collections import deque
from typing import Optional

# Assumed model latency per chunk before any timing samples exist.
INITIAL_CALL_ESTIMATE = 5.0


class TimeEstimator:
    """Remaining-time estimate from a rolling window of chunk durations."""

    def __init__(self, window: int = 10):
        self._durations = deque(maxlen=window)

    def record(self, seconds: float) -> None:
        if seconds >= 0:
            self._durations.append(seconds)

    def reset(self) -> None:
        self._durations.clear()

    @property
    def samples(self) -> int:
        return len(self._durations)

    def estimate_seconds(self, remaining: int, concurrency: int, delay: float) -> Optional[int]:
        if remaining <= 0:
            return None
        if len(self._durations) >= 2:
            per_chunk = sum(self._durations) / len(self._durations)
        else:
            per_chunk = delay + INITIAL_CALL_ESTIMATE
        seconds = round(remaining * per_chunk / max(1, concurrency))
        return seconds if seconds > 0 else None

    @staticmethod
    def format_eta(seconds: Optional[int]) -> Optional[str]:
        if not seconds:
            return None
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}m {secs:02d}s" if minutes else f"{secs}s"
