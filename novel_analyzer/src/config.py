import os
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: str = "0") -> bool:
    return str(os.getenv(name, default)).lower() in {"1", "true", "yes"}


class Config:
    """Centralized configuration management for the novel analyzer."""

    # Ollama Configuration
    OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://localhost:11434")
    OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "qwen2.5:14b")
    OLLAMA_API_KEY: Optional[str] = os.getenv("OLLAMA_API_KEY")
    OLLAMA_API_KEY_FILE: Optional[str] = os.getenv("OLLAMA_API_KEY_FILE")
    OLLAMA_TEMPERATURE: float = float(os.getenv("OLLAMA_TEMPERATURE", "0.2"))

    # Chunking Configuration
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", str(100 * 1024)))
    CHUNK_BATCH_SIZE: int = int(os.getenv("CHUNK_BATCH_SIZE", "200"))
    MAX_CHUNKS_FOR_OPENING: int = int(os.getenv("MAX_CHUNKS_FOR_OPENING", "15"))

    # Prompt context bounds
    MAX_RELEVANT_HISTORICAL_SUMMARIES: int = int(
        os.getenv("MAX_RELEVANT_HISTORICAL_SUMMARIES", "5")
    )
    MAX_CONTEXT_ENTITIES: int = int(os.getenv("MAX_CONTEXT_ENTITIES", "20"))

    # Scheduling Configuration (seconds)
    MAX_CONCURRENT_REQUESTS_FULL: int = int(os.getenv("MAX_CONCURRENT_REQUESTS_FULL", "2"))
    INTER_CHUNK_DELAY_OPENING: float = float(os.getenv("INTER_CHUNK_DELAY_OPENING", "3.0"))
    INTER_CHUNK_DELAY_FULL: float = float(os.getenv("INTER_CHUNK_DELAY_FULL", "5.0"))

    # Retry Configuration
    RETRY_MAX_RETRIES: int = int(os.getenv("RETRY_MAX_RETRIES", "3"))
    RETRY_INITIAL_DELAY: float = float(os.getenv("RETRY_INITIAL_DELAY", "2.0"))
    RETRY_BACKOFF_FACTOR: float = float(os.getenv("RETRY_BACKOFF_FACTOR", "2.0"))
    RETRY_MAX_JITTER: float = float(os.getenv("RETRY_MAX_JITTER", "1.0"))
    # 0 disables the automatic resume after a rate-limit pause
    RATE_LIMIT_COOLDOWN_SECONDS: float = float(os.getenv("RATE_LIMIT_COOLDOWN_SECONDS", "60"))

    # File Paths
    PROGRESS_DIR: Path = Path(os.getenv("PROGRESS_DIR", ".novel_analyzer/progress"))
    LOG_FILE: str = os.getenv("LOG_FILE", ".novel_analyzer/novel_analyzer.log")

    # Logging Controls
    LOG_CHUNK_FULL: bool = _env_bool("LOG_CHUNK_FULL")
    LOG_PREVIEW_MAX: int = int(os.getenv("LOG_PREVIEW_MAX", "600"))
    LOG_LLM_OUTPUT_MAX: int = int(os.getenv("LOG_LLM_OUTPUT_MAX", "2000"))

    # Bootstrap
    BOOTSTRAP_TIMEOUT: int = int(os.getenv("BOOTSTRAP_TIMEOUT", "60"))

    @classmethod
    def initialize_directories(cls):
        """Initialize required directories."""
        cls.PROGRESS_DIR.mkdir(parents=True, exist_ok=True)
        Path(cls.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
