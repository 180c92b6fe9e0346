import contextlib
import os
from pathlib import Path
from typing import Optional

from langchain_ollama import ChatOllama
from loguru import logger

from ..config import Config


class LLMConnector:
    """Builds the chat model used for chunk analysis and synthesis."""

    @staticmethod
    def resolve_api_key() -> Optional[str]:
        """Return the API key from the environment or the key file, if any."""
        if Config.OLLAMA_API_KEY:
            return Config.OLLAMA_API_KEY

        key_path = Config.OLLAMA_API_KEY_FILE
        if not key_path:
            return None

        with contextlib.suppress(OSError):
            if os.path.isfile(key_path) and os.path.getsize(key_path) > 0:
                content = Path(key_path).read_text(encoding="utf-8").strip()
                if content and content.upper() != "PENDING":
                    logger.info("[bootstrap] API key read from key file.")
                    return content
        logger.warning(f"[bootstrap] API key file {key_path} is missing or empty")
        return None

    @staticmethod
    def build_chat_model(api_key: Optional[str] = None) -> ChatOllama:
        kwargs = {}
        if api_key:
            kwargs["client_kwargs"] = {"headers": {"Authorization": f"Bearer {api_key}"}}
        logger.info(f"[llm] model={Config.OLLAMA_MODEL} url={Config.OLLAMA_URL} auth={'yes' if api_key else 'no'}")
        return ChatOllama(
            model=Config.OLLAMA_MODEL,
            base_url=Config.OLLAMA_URL,
            temperature=Config.OLLAMA_TEMPERATURE,
            **kwargs,
        )
